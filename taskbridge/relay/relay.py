"""
One-way relay of task lifecycle events to the CRM.

Local state is authoritative. Remote failures are logged to the sync log
and never raised to the caller; nothing is retried automatically.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

from taskbridge.crm.errors import CrmError
from taskbridge.crm.fields import TaskPayload
from taskbridge.datetime_utils import format_remote_datetime, parse_iso_datetime
from taskbridge.logging_config import get_logger
from taskbridge.relay.attachments import AttachmentSynchronizer
from taskbridge.relay.events import ChangeEvent, EventType
from taskbridge.relay.guards import is_duplicate_submission, is_echo_update
from taskbridge.services.sync_log_service import SyncLogService

logger = get_logger(__name__)


@dataclass
class RelayResult:
    action: str                 # create, update, delete
    status: str                 # success, error, ignored
    reason: Optional[str] = None
    external_id: Optional[str] = None

    def to_dict(self):
        return {
            "action": self.action,
            "status": self.status,
            "reason": self.reason,
            "external_id": self.external_id,
        }


class ChangeRelay:
    """Pushes create/update/delete of tasks to the CRM."""

    def __init__(self, client_factory: Callable, blob_store, write_back: Callable,
                 timezone: str = "UTC", duplicate_window_seconds: float = 5.0,
                 clock: Callable[[], datetime] = datetime.utcnow):
        self.client_factory = client_factory
        self.blob_store = blob_store
        self.write_back = write_back
        self.timezone = timezone
        self.duplicate_window_seconds = duplicate_window_seconds
        self.clock = clock

    def handle(self, event: ChangeEvent) -> RelayResult:
        action = event.type.value.lower()
        subject = event.subject
        try:
            return self._handle(event)
        except Exception as e:
            # Last line of defence: the relay never breaks the caller
            logger.error(
                "Change relay failed",
                action=action,
                task_id=subject.get("id"),
                error=str(e),
                error_type=type(e).__name__,
                exc_info=True,
            )
            SyncLogService.error(event.owner or "", self._item_name(event), e)
            return RelayResult(action, "error", reason=str(e))

    def _item_name(self, event):
        title = event.subject.get("title") or f"Task {event.subject.get('id')}"
        if event.type == EventType.UPDATE:
            return f"{title} (Update)"
        if event.type == EventType.DELETE:
            return f"{title} (Delete)"
        return title

    def _handle(self, event):
        action = event.type.value.lower()
        subject = event.subject

        if is_echo_update(event):
            logger.info("Ignoring echo update", task_id=subject.get("id"))
            return RelayResult(action, "ignored", reason="echo")

        if event.type == EventType.CREATE and is_duplicate_submission(
            event, self.duplicate_window_seconds, now=self.clock()
        ):
            logger.info("Ignoring duplicate submission", task_id=subject.get("id"), title=subject.get("title"))
            return RelayResult(action, "ignored", reason="duplicate")

        client = self.client_factory(event.owner)
        try:
            return self._dispatch(event, client)
        finally:
            if client is not None:
                client.close()

    def _dispatch(self, event, client):
        action = event.type.value.lower()
        subject = event.subject
        external_id = subject.get("external_id")

        if event.type == EventType.DELETE and not external_id:
            self._synchronizer(client).purge(subject.get("attachments"), delete_remote=client is not None)
            return RelayResult(action, "ignored", reason="not mirrored")

        if client is None:
            if event.type == EventType.DELETE:
                self._synchronizer(None).purge(subject.get("attachments"), delete_remote=False)
            logger.info("No active CRM integration", owner=event.owner, action=action)
            return RelayResult(action, "ignored", reason="integration inactive")

        if event.type == EventType.CREATE:
            return self._create(event, client)
        if not external_id:
            return RelayResult(action, "ignored", reason="not mirrored")
        if event.type == EventType.UPDATE:
            return self._update(event, client, external_id)
        return self._delete(event, client, external_id)

    def _synchronizer(self, client):
        return AttachmentSynchronizer(client, self.blob_store)

    def _deadline(self, record):
        deadline = record.get("deadline")
        if not deadline:
            return None
        try:
            return format_remote_datetime(parse_iso_datetime(deadline), self.timezone)
        except ValueError:
            return None

    def _create(self, event, client):
        record = event.record
        owner = event.owner
        title = record.get("title")

        sync = self._synchronizer(client).sync(record.get("attachments"))
        payload = TaskPayload.from_record(
            record, deadline=self._deadline(record), remote_file_ids=sync.remote_file_ids
        )

        try:
            external_id = client.create(payload.to_remote(), entity="task")
        except CrmError as e:
            logger.warning("CRM task create failed", task_id=record.get("id"), error=str(e))
            SyncLogService.error(owner, title, e)
            if sync.uploaded:
                # keep the uploaded ids so a later sync does not upload twice
                self.write_back(record.get("id"), attachments=sync.attachments)
            return RelayResult("create", "error", reason=str(e))

        for item in record.get("checklist") or []:
            item_title = item.get("title") or item.get("text") or "Item"
            try:
                client.add_checklist_item(external_id, item_title, done=bool(item.get("done")))
            except CrmError as e:
                logger.warning("Checklist item sync failed", external_id=external_id, item=item_title, error=str(e))

        self.write_back(record.get("id"), external_id=external_id, attachments=sync.attachments)
        SyncLogService.success(owner, title)
        logger.info("Task mirrored to CRM", task_id=record.get("id"), external_id=external_id)
        return RelayResult("create", "success", external_id=external_id)

    def _update(self, event, client, external_id):
        record = event.record
        old_record = event.old_record or {}
        attachments = record.get("attachments") or []

        sync = None
        if attachments != (old_record.get("attachments") or []):
            sync = self._synchronizer(client).sync(attachments)
            remote_file_ids = sync.remote_file_ids
        else:
            remote_file_ids = [a["remote_file_id"] for a in attachments if a.get("remote_file_id")]

        payload = TaskPayload.from_record(
            record, deadline=self._deadline(record), include_status=True, remote_file_ids=remote_file_ids
        )

        error = None
        try:
            client.update(external_id, payload.to_remote(), entity="task")
        except CrmError as e:
            error = e
            logger.warning("CRM task update failed", task_id=record.get("id"), external_id=external_id, error=str(e))

        if sync is not None and sync.uploaded:
            self.write_back(record.get("id"), attachments=sync.attachments)

        if error is not None:
            SyncLogService.error(event.owner, self._item_name(event), error)
            return RelayResult("update", "error", reason=str(error), external_id=external_id)
        SyncLogService.success(event.owner, self._item_name(event))
        return RelayResult("update", "success", external_id=external_id)

    def _delete(self, event, client, external_id):
        subject = event.subject
        cleanup_errors = self._synchronizer(client).purge(subject.get("attachments"), delete_remote=True)
        if cleanup_errors:
            SyncLogService.error(
                event.owner,
                f"{subject.get('title')} (Attachment cleanup)",
                "; ".join(cleanup_errors),
            )

        try:
            client.delete(external_id, entity="task")
        except CrmError as e:
            logger.warning("CRM task delete failed", external_id=external_id, error=str(e))
            SyncLogService.error(event.owner, self._item_name(event), e)
            return RelayResult("delete", "error", reason=str(e), external_id=external_id)

        SyncLogService.success(event.owner, self._item_name(event))
        return RelayResult("delete", "success", external_id=external_id)
