"""Task lifecycle events consumed by the change relay."""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional


class EventType(Enum):
    CREATE = "CREATE"
    UPDATE = "UPDATE"
    DELETE = "DELETE"

    @classmethod
    def parse(cls, value):
        key = str(value or "").strip().upper()
        key = {"INSERT": "CREATE"}.get(key, key)
        try:
            return cls(key)
        except ValueError:
            raise ValueError(f"Unknown event type: {value!r}") from None


class EventTag(Enum):
    USER = "USER"
    # Emitted by the relay's own write-back; never re-synced
    SYSTEM_ECHO = "SYSTEM_ECHO"


@dataclass
class ChangeEvent:
    type: EventType
    record: Dict[str, Any]
    old_record: Optional[Dict[str, Any]] = None
    tag: EventTag = EventTag.USER

    @property
    def owner(self):
        owner = self.record.get("owner") if self.record else None
        if not owner and self.old_record:
            owner = self.old_record.get("owner")
        return owner

    @property
    def subject(self) -> Dict[str, Any]:
        """The record that describes the task: old record for deletes."""
        if self.type == EventType.DELETE:
            return self.old_record or self.record or {}
        return self.record or {}

    @classmethod
    def from_webhook(cls, payload: Dict[str, Any]) -> "ChangeEvent":
        """
        Build an event from a database-webhook body:
        {"type": "INSERT|UPDATE|DELETE", "record": {...}, "old_record": {...}}.

        DELETE webhooks may carry only `old_record`.
        """
        event_type = EventType.parse(payload.get("type"))
        record = payload.get("record") or {}
        old_record = payload.get("old_record")
        if event_type == EventType.DELETE and not record:
            record = dict(old_record or {})
        if not record:
            raise ValueError("Event has no record")
        tag = EventTag.SYSTEM_ECHO if payload.get("tag") == EventTag.SYSTEM_ECHO.value else EventTag.USER
        return cls(type=event_type, record=record, old_record=old_record, tag=tag)
