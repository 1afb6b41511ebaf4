"""Guards that turn a lifecycle event into an intentional no-op."""

from datetime import datetime
from typing import Optional

from taskbridge.models import TaskOrigin
from taskbridge.relay.events import ChangeEvent, EventTag, EventType
from taskbridge.services.sync_log_service import SyncLogService

# Fields that change on every write-back and say nothing about user intent
ECHO_IGNORED_FIELDS = frozenset({"updated_at", "external_id"})


def _strip_remote_ids(attachments):
    stripped = []
    for att in attachments or []:
        att = dict(att)
        att.pop("remote_file_id", None)
        stripped.append(att)
    return stripped


def changed_fields(record, old_record, ignored=ECHO_IGNORED_FIELDS):
    """
    Names of fields whose values differ between two snapshots.

    Attachments are compared without `remote_file_id`, which only the
    relay writes.
    """
    old_record = old_record or {}
    changed = set()
    for key in set(record) | set(old_record):
        if key in ignored:
            continue
        new_value, old_value = record.get(key), old_record.get(key)
        if key == "attachments":
            new_value, old_value = _strip_remote_ids(new_value), _strip_remote_ids(old_value)
        if new_value != old_value:
            changed.add(key)
    return changed


def is_echo_update(event: ChangeEvent) -> bool:
    """
    True for updates caused by the relay writing back `external_id`.

    Tagged events are trusted directly; untagged ones fall back to a diff:
    external_id newly set and nothing else changed.
    """
    if event.type != EventType.UPDATE:
        return False
    if event.tag == EventTag.SYSTEM_ECHO:
        return True
    old_record = event.old_record or {}
    if event.record.get("external_id") and not old_record.get("external_id"):
        return not changed_fields(event.record, old_record)
    return False


def is_duplicate_submission(event: ChangeEvent, window_seconds: float,
                            now: Optional[datetime] = None) -> bool:
    """
    True for a manual create that repeats one already logged moments ago
    (a retried client submit).
    """
    if event.type != EventType.CREATE:
        return False
    if event.record.get("origin") == TaskOrigin.RECURRING.value:
        return False
    owner = event.owner
    title = event.record.get("title")
    if not owner or not title:
        return False
    return SyncLogService.has_recent_entry(owner, title, window_seconds, now=now)
