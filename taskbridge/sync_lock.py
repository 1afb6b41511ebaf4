import threading
from contextlib import contextmanager
from typing import Optional

from taskbridge.logging_config import get_logger

logger = get_logger(__name__)


class SyncLockManager:
    """
    Process-wide lock so two triggers never run the same job concurrently
    (e.g. the scheduler tick and a manual POST /recurring/run).
    """

    def __init__(self):
        self._lock = threading.RLock()
        self._is_syncing = False
        self._current_operation = None
        self._holder_thread_id = None
        self._timeout_seconds = 60

    @contextmanager
    def acquire_sync_lock(self, operation_name: str, timeout_seconds: Optional[int] = None):
        """
        Context manager to acquire sync lock

        Args:
            operation_name: Name of the operation acquiring the lock

        Raises:
            RuntimeError: If unable to acquire lock (another sync is running)
        """
        acquired = False
        timeout = timeout_seconds or self._timeout_seconds
        try:
            if not self._lock.acquire(timeout=timeout):
                raise RuntimeError(f"Lock acquisition timed out after {timeout}s for '{operation_name}'")
            try:
                current_thread_id = threading.get_ident()
                if self._is_syncing:
                    current_op = self._current_operation
                    if self._holder_thread_id == current_thread_id:
                        logger.info("Re-entrant sync lock", operation=operation_name)
                    else:
                        logger.warning(
                            "Sync lock already held",
                            held_by=current_op,
                            requested_by=operation_name,
                        )
                        raise RuntimeError(f"Sync already in progress: {current_op}")
                else:
                    self._is_syncing = True
                    self._current_operation = operation_name
                    self._holder_thread_id = current_thread_id
                    acquired = True
                    logger.info("Sync lock acquired", operation=operation_name)
            finally:
                # Release the manager mutex so work can happen while state is busy
                self._lock.release()

            yield

        finally:
            if acquired:
                with self._lock:
                    self._is_syncing = False
                    self._current_operation = None
                    self._holder_thread_id = None
                    logger.info("Sync lock released", operation=operation_name)


# Global instance - create once and reuse
sync_lock_manager = SyncLockManager()
