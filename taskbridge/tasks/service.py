"""
Task lifecycle: create, edit and delete tasks, then hand the committed
change to the CRM relay.
"""

from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from flask import current_app

from taskbridge.datetime_utils import parse_iso_datetime
from taskbridge.logging_config import get_logger
from taskbridge.models import Task, TaskOrigin, TaskStatus, db
from taskbridge.relay.dispatch import emit_change
from taskbridge.relay.events import ChangeEvent, EventTag, EventType

logger = get_logger(__name__)

# Fields a user edit may change. external_id belongs to the relay.
EDITABLE_FIELDS = frozenset({
    "title", "description", "status", "priority", "deadline",
    "checklist", "attachments", "responsible_id",
})


def normalize_checklist(items: Optional[Iterable]) -> List[Dict[str, Any]]:
    """Coerce checklist entries to {title, done}; blank titles are dropped."""
    normalized = []
    for item in items or []:
        if isinstance(item, str):
            title, done = item, False
        else:
            title = item.get("title") or item.get("text") or ""
            done = item.get("done", item.get("is_completed", False))
        title = str(title).strip()
        if title:
            normalized.append({"title": title, "done": bool(done)})
    return normalized


def normalize_attachments(items: Optional[Iterable]) -> List[Dict[str, Any]]:
    normalized = []
    for item in items or []:
        if not item.get("url"):
            raise ValueError("Attachment is missing its blob reference ('url')")
        normalized.append({
            "name": item.get("name") or "attachment",
            "url": item["url"],
            "content_type": item.get("content_type") or item.get("type"),
            "size": int(item.get("size") or 0),
            "remote_file_id": item.get("remote_file_id"),
        })
    return normalized


def _parse_status(value):
    if isinstance(value, TaskStatus):
        return value.value
    try:
        return TaskStatus(str(value).strip().upper()).value
    except ValueError:
        raise ValueError(f"Invalid status: {value!r}") from None


def _parse_deadline(value):
    """Deadlines are stored as naive wall-clock time in SCHEDULE_TIMEZONE."""
    if value in (None, ""):
        return None
    return parse_iso_datetime(value, current_app.config.get("SCHEDULE_TIMEZONE", "UTC"))


def build_task(owner, title, description=None, status=TaskStatus.PENDING, origin=TaskOrigin.MANUAL,
               priority=False, deadline=None, checklist=None, attachments=None,
               responsible_id=None, recurring_task_id=None) -> Task:
    """Validated, unsaved Task."""
    if not owner:
        raise ValueError("Task owner is required")
    title = (title or "").strip()
    if not title:
        raise ValueError("Task title is required")
    return Task(
        owner=owner,
        title=title,
        description=description,
        status=_parse_status(status),
        origin=origin.value if isinstance(origin, TaskOrigin) else TaskOrigin(origin).value,
        priority=bool(priority),
        deadline=_parse_deadline(deadline),
        checklist=normalize_checklist(checklist),
        attachments=normalize_attachments(attachments),
        responsible_id=str(responsible_id) if responsible_id not in (None, "") else None,
        recurring_task_id=recurring_task_id,
    )


def notify_created(task: Task):
    return emit_change(ChangeEvent(EventType.CREATE, task.to_dict()))


def create_task(owner, title, **fields) -> Task:
    task = build_task(owner, title, **fields)
    db.session.add(task)
    db.session.commit()
    logger.info("Task created", task_id=task.id, owner=owner, origin=task.origin)
    notify_created(task)
    return task


def update_task(task: Task, changes: Dict[str, Any]) -> Task:
    unknown = set(changes) - EDITABLE_FIELDS
    if unknown:
        raise ValueError(f"Fields cannot be edited: {', '.join(sorted(unknown))}")

    old_record = task.to_dict()
    if "title" in changes:
        title = (changes["title"] or "").strip()
        if not title:
            raise ValueError("Task title is required")
        task.title = title
    if "description" in changes:
        task.description = changes["description"]
    if "status" in changes:
        task.status = _parse_status(changes["status"])
    if "priority" in changes:
        task.priority = bool(changes["priority"])
    if "deadline" in changes:
        task.deadline = _parse_deadline(changes["deadline"])
    if "checklist" in changes:
        task.checklist = normalize_checklist(changes["checklist"])
    if "attachments" in changes:
        task.attachments = normalize_attachments(changes["attachments"])
    if "responsible_id" in changes:
        value = changes["responsible_id"]
        task.responsible_id = str(value) if value not in (None, "") else None

    task.updated_at = datetime.utcnow()
    db.session.commit()
    logger.info("Task updated", task_id=task.id, fields=sorted(changes))
    emit_change(ChangeEvent(EventType.UPDATE, task.to_dict(), old_record))
    return task


def delete_task(task: Task):
    old_record = task.to_dict()
    db.session.delete(task)
    db.session.commit()
    logger.info("Task deleted", task_id=old_record["id"], external_id=old_record["external_id"])
    return emit_change(ChangeEvent(EventType.DELETE, old_record, old_record))


def _merge_remote_file_ids(current, synced):
    """Copy remote_file_id from synced attachments onto the stored list, matched by blob ref."""
    by_ref = {a.get("url"): a.get("remote_file_id") for a in synced or [] if a.get("remote_file_id")}
    merged = []
    for attachment in current or []:
        attachment = dict(attachment)
        if not attachment.get("remote_file_id") and attachment.get("url") in by_ref:
            attachment["remote_file_id"] = by_ref[attachment["url"]]
        merged.append(attachment)
    return merged


def apply_relay_write_back(task_id, external_id=None, attachments=None):
    """
    Store what the relay learned from the CRM on the task.

    external_id is only set if the task has none yet. The resulting update is
    emitted as a SYSTEM_ECHO event so the relay does not sync it again.
    """
    task = db.session.get(Task, task_id) if task_id is not None else None
    if task is None:
        logger.warning("Write-back target missing", task_id=task_id, external_id=external_id)
        return None

    old_record = task.to_dict()
    if external_id and not task.external_id:
        task.external_id = str(external_id)
    elif external_id and task.external_id != str(external_id):
        logger.warning(
            "Task already mirrored, keeping existing external id",
            task_id=task.id,
            external_id=task.external_id,
            ignored_external_id=external_id,
        )
    if attachments is not None:
        task.attachments = _merge_remote_file_ids(task.attachments, attachments)

    new_record = task.to_dict()
    if new_record == old_record:
        return task

    task.updated_at = datetime.utcnow()
    db.session.commit()
    emit_change(ChangeEvent(EventType.UPDATE, task.to_dict(), old_record, tag=EventTag.SYSTEM_ECHO))
    return task


def store_attachment(blob_store, filename, content: bytes, content_type=None) -> Dict[str, Any]:
    """Save uploaded bytes and describe them as an attachment entry."""
    ref = blob_store.put(content, filename=filename)
    return {
        "name": filename or "attachment",
        "url": ref,
        "content_type": content_type,
        "size": len(content),
        "remote_file_id": None,
    }
