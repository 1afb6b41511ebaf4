"""Upload and clean up task attachments on the CRM side."""

import uuid
from dataclasses import dataclass, field
from typing import Dict, List

from taskbridge.logging_config import get_logger

logger = get_logger(__name__)


def collision_resistant_name(name: str) -> str:
    return f"{uuid.uuid4().hex[:8]}_{name or 'attachment'}"


@dataclass
class AttachmentSyncResult:
    attachments: List[Dict] = field(default_factory=list)
    uploaded: int = 0
    failed: int = 0
    errors: List[str] = field(default_factory=list)

    @property
    def remote_file_ids(self) -> List[str]:
        return [a["remote_file_id"] for a in self.attachments if a.get("remote_file_id")]


class AttachmentSynchronizer:
    """
    Mirrors attachment blobs to the CRM disk.

    An attachment that already carries a `remote_file_id` is never uploaded
    again. One failed upload does not stop the others.
    """

    def __init__(self, client, blob_store):
        self.client = client
        self.blob_store = blob_store

    def sync(self, attachments) -> AttachmentSyncResult:
        result = AttachmentSyncResult()
        for original in attachments or []:
            attachment = dict(original)
            result.attachments.append(attachment)
            if attachment.get("remote_file_id"):
                continue
            name = attachment.get("name") or "attachment"
            try:
                content = self.blob_store.get(attachment.get("url"))
                attachment["remote_file_id"] = self.client.upload_file(
                    collision_resistant_name(name), content
                )
                result.uploaded += 1
                logger.info(
                    "Attachment uploaded",
                    attachment=name,
                    remote_file_id=attachment["remote_file_id"],
                )
            except Exception as e:
                result.failed += 1
                result.errors.append(f"{name}: {e}")
                logger.warning(
                    "Attachment upload failed",
                    attachment=name,
                    error=str(e),
                    error_type=type(e).__name__,
                )
        return result

    def purge(self, attachments, delete_remote=True) -> List[str]:
        """
        Delete each attachment's blob and, when present, its remote file.

        Every deletion is attempted independently; returns the error messages.
        """
        errors = []
        for attachment in attachments or []:
            name = attachment.get("name") or "attachment"
            ref = attachment.get("url")
            if ref:
                try:
                    self.blob_store.delete(ref)
                except Exception as e:
                    errors.append(f"{name} (local): {e}")
                    logger.warning("Blob cleanup failed", attachment=name, error=str(e))
            file_id = attachment.get("remote_file_id")
            if delete_remote and file_id and self.client is not None:
                try:
                    self.client.delete_file(file_id)
                except Exception as e:
                    errors.append(f"{name} (remote): {e}")
                    logger.warning(
                        "Remote file cleanup failed",
                        attachment=name,
                        remote_file_id=file_id,
                        error=str(e),
                    )
        return errors
