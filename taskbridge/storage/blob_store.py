"""Local blob store for task attachments.

Blobs are opaque byte strings addressed by a generated reference. Only
get/put/delete are offered.
"""

import os
import re
import uuid
from pathlib import Path

from taskbridge.logging_config import get_logger

logger = get_logger(__name__)

_SAFE_REF = re.compile(r"^[A-Za-z0-9._-]+$")


class BlobNotFoundError(LookupError):
    """No blob stored under the given reference."""


class LocalBlobStore:
    """Stores blobs as files in a single directory."""

    def __init__(self, root):
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)

    def _path(self, ref: str) -> Path:
        # refs are generated by put(); reject anything that could escape root
        name = Path(str(ref)).name
        if not name or not _SAFE_REF.match(name) or name.startswith("."):
            raise BlobNotFoundError(f"Invalid blob reference: {ref!r}")
        return self.root / name

    def put(self, data: bytes, filename: str = "") -> str:
        suffix = Path(filename).suffix.lower() if filename else ""
        if suffix and not _SAFE_REF.match(suffix):
            suffix = ""
        ref = f"{uuid.uuid4().hex}{suffix}"
        self._path(ref).write_bytes(data)
        logger.debug("Blob stored", ref=ref, size=len(data))
        return ref

    def get(self, ref: str) -> bytes:
        path = self._path(ref)
        if not path.exists():
            raise BlobNotFoundError(f"Blob not found: {ref}")
        return path.read_bytes()

    def delete(self, ref: str) -> bool:
        """Remove a blob. Returns False if it was already gone."""
        path = self._path(ref)
        try:
            os.remove(path)
        except FileNotFoundError:
            return False
        logger.debug("Blob deleted", ref=ref)
        return True


_store = None


def get_blob_store():
    '''
    Returns a singleton LocalBlobStore rooted at BLOB_STORE_DIR.
    '''
    global _store
    if _store is None:
        from flask import current_app
        _store = LocalBlobStore(current_app.config.get("BLOB_STORE_DIR", "blobs"))
    return _store


def reset_blob_store():
    global _store
    _store = None
