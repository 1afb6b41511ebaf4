"""
Audit logging for materializer and relay outcomes.

Writes go to the append-only `sync_log_entries` table. Writes retry on
database errors and never raise; failures are reported to the standard
logger instead.
"""

import time
from datetime import datetime, timedelta
from typing import Optional

from taskbridge.logging_config import get_logger
from taskbridge.models import SyncLogEntry, SyncOutcome, db

logger = get_logger(__name__)

MAX_WRITE_ATTEMPTS = 3


class SyncLogService:
    """Service for the SyncLogEntry audit stream"""

    @staticmethod
    def record(owner: str, item_name: str, outcome: SyncOutcome,
               error_detail: Optional[str] = None,
               timestamp: Optional[datetime] = None) -> Optional[SyncLogEntry]:
        """
        Append one audit entry in its own commit.

        Returns:
            The stored entry, or None if every attempt failed.
        """
        for attempt in range(MAX_WRITE_ATTEMPTS):
            try:
                entry = SyncLogEntry(
                    owner=owner,
                    item_name=(item_name or "")[:300],
                    outcome=outcome.value,
                    error_detail=error_detail,
                    timestamp=timestamp or datetime.utcnow(),
                )
                db.session.add(entry)
                db.session.commit()
                return entry
            except Exception as e:
                db.session.rollback()
                if attempt < MAX_WRITE_ATTEMPTS - 1:
                    time.sleep(0.1 * (2 ** attempt))
                    continue
                logger.warning(
                    "Failed to write sync log entry after retries",
                    error=str(e),
                    error_type=type(e).__name__,
                    owner=owner,
                    item_name=item_name,
                    outcome=outcome.value,
                    attempt=attempt + 1,
                )
        return None

    @staticmethod
    def success(owner, item_name, timestamp=None):
        return SyncLogService.record(owner, item_name, SyncOutcome.SUCCESS, timestamp=timestamp)

    @staticmethod
    def error(owner, item_name, error_detail, timestamp=None):
        return SyncLogService.record(
            owner, item_name, SyncOutcome.ERROR, error_detail=str(error_detail), timestamp=timestamp
        )

    @staticmethod
    def has_recent_entry(owner: str, item_name: str, window_seconds: float,
                         now: Optional[datetime] = None) -> bool:
        """True if an entry for this owner and item name exists within the window."""
        now = now or datetime.utcnow()
        cutoff = now - timedelta(seconds=window_seconds)
        existing = (
            SyncLogEntry.query
            .filter(
                SyncLogEntry.owner == owner,
                SyncLogEntry.item_name == item_name,
                SyncLogEntry.timestamp > cutoff,
            )
            .first()
        )
        return existing is not None

    @staticmethod
    def history(owner: Optional[str] = None, limit: int = 100):
        query = SyncLogEntry.query
        if owner:
            query = query.filter(SyncLogEntry.owner == owner)
        return query.order_by(SyncLogEntry.timestamp.desc(), SyncLogEntry.id.desc()).limit(limit).all()
