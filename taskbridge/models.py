from flask_sqlalchemy import SQLAlchemy
from datetime import datetime
from enum import Enum

from taskbridge.datetime_utils import isoformat_or_none

db = SQLAlchemy()


class Frequency(Enum):
    DAILY = "DAILY"
    WEEKLY = "WEEKLY"
    MONTHLY = "MONTHLY"

    @classmethod
    def parse(cls, value):
        """Accept enum members, canonical names and the legacy Portuguese labels."""
        if isinstance(value, cls):
            return value
        if not value:
            raise ValueError("Frequency is required")
        key = str(value).strip().upper()
        key = FREQUENCY_ALIASES.get(key, key)
        try:
            return cls(key)
        except ValueError:
            raise ValueError(f"Unknown frequency: {value!r}") from None


FREQUENCY_ALIASES = {
    "DIÁRIO": "DAILY",
    "DIARIO": "DAILY",
    "SEMANAL": "WEEKLY",
    "MENSAL": "MONTHLY",
}


class TaskStatus(Enum):
    PENDING = "PENDING"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    BACKLOG = "BACKLOG"


class TaskOrigin(Enum):
    MANUAL = "MANUAL"
    RECURRING = "RECURRING"


class SyncOutcome(Enum):
    SUCCESS = "SUCCESS"
    ERROR = "ERROR"


class ImportStatus(Enum):
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"


class Integration(db.Model):
    """Per-owner CRM webhook configuration."""
    __tablename__ = "integrations"
    __table_args__ = (db.UniqueConstraint("owner", "service_name", name="_owner_service_uc"),)

    id = db.Column(db.Integer, primary_key=True)
    owner = db.Column(db.String(64), nullable=False, index=True)
    service_name = db.Column(db.String(32), nullable=False)
    webhook_url = db.Column(db.String(512), nullable=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    def __repr__(self):
        return f"<Integration {self.owner} - {self.service_name} - active={self.is_active}>"


class RecurringTask(db.Model):
    """A stored schedule that spawns tasks."""
    __tablename__ = "recurring_tasks"

    id = db.Column(db.Integer, primary_key=True)
    owner = db.Column(db.String(64), nullable=False, index=True)
    name = db.Column(db.String(256), nullable=False)
    description = db.Column(db.Text, nullable=True)
    frequency = db.Column(db.String(16), nullable=False, default=Frequency.DAILY.value)
    time_of_day = db.Column(db.String(8), nullable=False)  # "HH:MM" or "HH:MM:SS"
    days_of_week = db.Column(db.JSON, nullable=False, default=list)  # 0 = Sunday .. 6 = Saturday
    checklist_template = db.Column(db.JSON, nullable=False, default=list)
    relative_deadline_minutes = db.Column(db.Integer, nullable=False, default=0)
    responsible_id = db.Column(db.String(32), nullable=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)

    # Schedule state, written by the materializer
    last_run = db.Column(db.DateTime, nullable=True)
    next_run = db.Column(db.DateTime, nullable=False, index=True)

    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def __repr__(self):
        return f"<RecurringTask {self.id} - {self.name} - {self.frequency} @ {self.time_of_day}>"

    def to_dict(self):
        return {
            "id": self.id,
            "owner": self.owner,
            "name": self.name,
            "description": self.description,
            "frequency": self.frequency,
            "time_of_day": self.time_of_day,
            "days_of_week": list(self.days_of_week or []),
            "checklist_template": list(self.checklist_template or []),
            "relative_deadline_minutes": self.relative_deadline_minutes,
            "responsible_id": self.responsible_id,
            "is_active": self.is_active,
            "last_run": isoformat_or_none(self.last_run),
            "next_run": isoformat_or_none(self.next_run),
        }


class Task(db.Model):
    """A concrete work item, optionally mirrored to the CRM."""
    __tablename__ = "tasks"

    id = db.Column(db.Integer, primary_key=True)
    owner = db.Column(db.String(64), nullable=False, index=True)
    title = db.Column(db.String(256), nullable=False)
    description = db.Column(db.Text, nullable=True)
    status = db.Column(db.String(16), nullable=False, default=TaskStatus.PENDING.value)
    origin = db.Column(db.String(16), nullable=False, default=TaskOrigin.MANUAL.value)
    priority = db.Column(db.Boolean, nullable=False, default=False)
    deadline = db.Column(db.DateTime, nullable=True)
    checklist = db.Column(db.JSON, nullable=False, default=list)
    # [{name, url, content_type, size, remote_file_id}]
    attachments = db.Column(db.JSON, nullable=False, default=list)
    responsible_id = db.Column(db.String(32), nullable=True)

    # CRM mirror id, written back by the change relay only
    external_id = db.Column(db.String(64), nullable=True, index=True)

    recurring_task_id = db.Column(db.Integer, db.ForeignKey("recurring_tasks.id"), nullable=True)

    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def __repr__(self):
        return f"<Task {self.id} - {self.title} - {self.status}>"

    def to_dict(self):
        """Snapshot used both for API responses and as lifecycle event records."""
        return {
            "id": self.id,
            "owner": self.owner,
            "title": self.title,
            "description": self.description,
            "status": self.status,
            "origin": self.origin,
            "priority": bool(self.priority),
            "deadline": isoformat_or_none(self.deadline),
            "checklist": [dict(item) for item in (self.checklist or [])],
            "attachments": [dict(att) for att in (self.attachments or [])],
            "responsible_id": self.responsible_id,
            "external_id": self.external_id,
            "recurring_task_id": self.recurring_task_id,
            "created_at": isoformat_or_none(self.created_at),
            "updated_at": isoformat_or_none(self.updated_at),
        }


class SyncLogEntry(db.Model):
    """Append-only audit record of materializer and relay outcomes."""
    __tablename__ = "sync_log_entries"
    __table_args__ = (
        db.Index("idx_sync_log_owner_item", "owner", "item_name"),
    )

    id = db.Column(db.Integer, primary_key=True)
    owner = db.Column(db.String(64), nullable=False)
    item_name = db.Column(db.String(300), nullable=False)
    outcome = db.Column(db.String(10), nullable=False)  # SUCCESS, ERROR
    error_detail = db.Column(db.Text, nullable=True)
    timestamp = db.Column(db.DateTime, nullable=False, default=datetime.utcnow, index=True)

    def __repr__(self):
        return f"<SyncLogEntry {self.owner} - {self.item_name[:40]} - {self.outcome}>"

    def to_dict(self):
        return {
            "id": self.id,
            "owner": self.owner,
            "item_name": self.item_name,
            "outcome": self.outcome,
            "error_detail": self.error_detail,
            "timestamp": isoformat_or_none(self.timestamp),
        }


class ImportOperation(db.Model):
    """Track one bulk import session."""
    __tablename__ = "import_operations"

    id = db.Column(db.Integer, primary_key=True)
    operation_id = db.Column(db.String(32), unique=True, nullable=False, index=True)
    owner = db.Column(db.String(64), nullable=True, index=True)
    source_name = db.Column(db.String(256), nullable=True)  # uploaded file name
    status = db.Column(db.Enum(ImportStatus), nullable=False, default=ImportStatus.IN_PROGRESS)

    started_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    completed_at = db.Column(db.DateTime, nullable=True)
    duration_seconds = db.Column(db.Float, nullable=True)

    total_rows = db.Column(db.Integer, default=0)
    records_created = db.Column(db.Integer, default=0)
    records_skipped = db.Column(db.Integer, default=0)
    records_failed = db.Column(db.Integer, default=0)
    rounds = db.Column(db.Integer, default=0)

    error_message = db.Column(db.Text, nullable=True)

    def __repr__(self):
        return f"<ImportOperation {self.operation_id} - {self.status}>"

    def to_dict(self):
        return {
            "operation_id": self.operation_id,
            "owner": self.owner,
            "source_name": self.source_name,
            "status": self.status.value,
            "started_at": isoformat_or_none(self.started_at),
            "completed_at": isoformat_or_none(self.completed_at),
            "duration_seconds": self.duration_seconds,
            "total_rows": self.total_rows,
            "records_created": self.records_created,
            "records_skipped": self.records_skipped,
            "records_failed": self.records_failed,
            "rounds": self.rounds,
            "error_message": self.error_message,
        }


class ImportLog(db.Model):
    """Line-by-line log of an import session."""
    __tablename__ = "import_logs"

    id = db.Column(db.Integer, primary_key=True)
    operation_id = db.Column(db.String(32), nullable=False, index=True)
    timestamp = db.Column(db.DateTime, nullable=False, default=datetime.utcnow, index=True)
    level = db.Column(db.String(10), nullable=False)  # INFO, WARNING, ERROR
    message = db.Column(db.Text, nullable=False)

    natural_key = db.Column(db.String(128), nullable=True, index=True)
    remote_id = db.Column(db.String(64), nullable=True)

    data = db.Column(db.JSON, nullable=True)

    def __repr__(self):
        return f"<ImportLog {self.operation_id} - {self.level} - {self.message[:50]}...>"

    def to_dict(self):
        return {
            "id": self.id,
            "operation_id": self.operation_id,
            "timestamp": isoformat_or_none(self.timestamp),
            "level": self.level,
            "message": self.message,
            "natural_key": self.natural_key,
            "remote_id": self.remote_id,
            "data": self.data,
        }
