"""
Logging utilities for bulk import sessions.

This module provides safe logging that handles JSON serialization issues
and integrates with the ImportOperation / ImportLog database models.
"""

import time
from typing import Any, Optional
from datetime import datetime, date

from taskbridge.models import ImportLog, ImportOperation, ImportStatus, db
from taskbridge.logging_config import get_logger


logger = get_logger(__name__)


def make_json_safe(obj: Any) -> Any:
    """Convert values for the JSON data column; dates become ISO strings, other objects their str()."""
    if obj is None or isinstance(obj, (str, int, float, bool)):
        return obj
    if isinstance(obj, (datetime, date)):
        return obj.isoformat()
    if isinstance(obj, dict):
        return {str(k): make_json_safe(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple, set)):
        return [make_json_safe(item) for item in obj]
    return str(obj)


def start_import_operation(operation_id: str, owner: Optional[str], source_name: Optional[str],
                           total_rows: int) -> Optional[ImportOperation]:
    """Create the audit row for an import session; None if the database is unavailable."""
    try:
        operation = ImportOperation(
            operation_id=operation_id,
            owner=owner,
            source_name=source_name,
            total_rows=total_rows,
            status=ImportStatus.IN_PROGRESS,
        )
        db.session.add(operation)
        db.session.commit()
        return operation
    except Exception as e:
        db.session.rollback()
        logger.warning(
            "Failed to create import operation",
            error=str(e),
            error_type=type(e).__name__,
            operation_id=operation_id,
        )
        return None


def finish_import_operation(operation: Optional[ImportOperation], summary, error: Optional[str] = None) -> None:
    """Store final counts on the session's audit row."""
    if operation is None:
        return
    try:
        operation.completed_at = datetime.utcnow()
        operation.duration_seconds = (operation.completed_at - operation.started_at).total_seconds()
        operation.records_created = summary.created
        operation.records_skipped = summary.skipped
        operation.records_failed = summary.errors
        operation.rounds = summary.rounds
        operation.status = ImportStatus.FAILED if error else ImportStatus.COMPLETED
        operation.error_message = error
        db.session.commit()
    except Exception as e:
        db.session.rollback()
        logger.warning(
            "Failed to finalize import operation",
            error=str(e),
            error_type=type(e).__name__,
            operation_id=operation.operation_id,
        )


def safe_log_import_event(
    operation_id: str,
    level: str,
    message: str,
    **kwargs
) -> bool:
    """
    Safely log an import event to the database.

    This function handles JSON serialization issues and retries on failure.
    It will not raise exceptions - failures are logged to the standard logger.

    Args:
        operation_id: ID of the import operation
        level: Log level (INFO, WARNING, ERROR)
        message: Log message
        **kwargs: Additional data to log (will be JSON-serialized)

    Returns:
        True if logging succeeded, False otherwise

    Example:
        >>> safe_log_import_event(
        ...     "abc123",
        ...     "INFO",
        ...     "Deal created",
        ...     natural_key="250601ABC",
        ...     remote_id="881",
        ... )
        True
    """
    max_retries = 3
    natural_key = kwargs.pop("natural_key", None)
    remote_id = kwargs.pop("remote_id", None)
    safe_data = make_json_safe(kwargs) or None

    for attempt in range(max_retries):
        try:
            entry = ImportLog(
                operation_id=operation_id,
                level=level,
                message=message,
                natural_key=str(natural_key) if natural_key is not None else None,
                remote_id=str(remote_id) if remote_id is not None else None,
                data=safe_data,
            )
            db.session.add(entry)
            db.session.commit()
            return True

        except Exception as e:
            db.session.rollback()

            if attempt < max_retries - 1:
                time.sleep(0.1 * (2 ** attempt))
                continue
            logger.warning(
                "Failed to log import event after retries",
                error=str(e),
                error_type=type(e).__name__,
                operation_id=operation_id,
                message=message,
                attempt=attempt + 1
            )
            return False

    return False
