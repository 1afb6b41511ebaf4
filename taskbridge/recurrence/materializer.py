"""
Materializes due recurring task definitions into concrete tasks.

Invoked by an external trigger (the app scheduler or POST /recurring/run);
never schedules itself.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, List, Optional

from taskbridge.datetime_utils import isoformat_or_none, local_now
from taskbridge.logging_config import RunContext, get_logger
from taskbridge.models import RecurringTask, TaskOrigin, db
from taskbridge.recurrence.calculator import ConfigurationError, plan_transition, validate_definition
from taskbridge.services.sync_log_service import SyncLogService
from taskbridge.sync_lock import sync_lock_manager
from taskbridge.tasks.service import build_task, normalize_checklist, notify_created

logger = get_logger(__name__)


@dataclass
class Outcome:
    definition_id: int
    name: str
    status: str                          # success, error
    task_id: Optional[int] = None
    next_run: Optional[datetime] = None
    message: Optional[str] = None
    warning: Optional[str] = None

    def to_dict(self):
        return {
            "definition_id": self.definition_id,
            "name": self.name,
            "status": self.status,
            "task_id": self.task_id,
            "next_run": isoformat_or_none(self.next_run),
            "message": self.message,
            "warning": self.warning,
        }


def default_description(name):
    return f"Created by recurrence: {name}"


class TaskMaterializer:
    """Turns due RecurringTask rows into Task rows, one definition at a time."""

    def __init__(self, timezone: str = "UTC", notify: Callable = notify_created):
        self.timezone = timezone
        self.notify = notify

    def due_definitions(self, now: datetime) -> List[RecurringTask]:
        return (
            RecurringTask.query
            .filter(RecurringTask.is_active.is_(True), RecurringTask.next_run <= now)
            .order_by(RecurringTask.next_run, RecurringTask.id)
            .all()
        )

    def run_once(self, now: Optional[datetime] = None) -> List[Outcome]:
        """
        Materialize every due definition.

        A failure on one definition never blocks the others. Only a failure
        to read the due list propagates.
        """
        now = now or local_now(self.timezone)
        with sync_lock_manager.acquire_sync_lock("recurring-materializer"):
            with RunContext("recurring_materialize") as ctx:
                definitions = self.due_definitions(now)
                if not definitions:
                    logger.debug("No recurring tasks due", now=now.isoformat())
                    return []

                logger.info(
                    "Materializing recurring tasks",
                    count=len(definitions),
                    now=now.isoformat(),
                    operation_id=ctx.operation_id,
                )
                outcomes = [self.materialize(definition, now) for definition in definitions]

                logger.info(
                    "Recurring run finished",
                    operation_id=ctx.operation_id,
                    succeeded=sum(1 for o in outcomes if o.status == "success"),
                    failed=sum(1 for o in outcomes if o.status == "error"),
                )
                return outcomes

    def materialize(self, definition: RecurringTask, now: datetime) -> Outcome:
        definition_id = definition.id
        owner = definition.owner
        name = definition.name

        try:
            validate_definition(definition)
        except ConfigurationError as e:
            detail = str(e)
            logger.warning("Skipping misconfigured recurring task", definition_id=definition_id, error=str(e))
            SyncLogService.error(owner, name, detail)
            return Outcome(definition_id, name, "error", message=detail, warning=detail)

        try:
            transition = plan_transition(definition, now)
            deadline = None
            if definition.relative_deadline_minutes and definition.relative_deadline_minutes > 0:
                deadline = now + timedelta(minutes=definition.relative_deadline_minutes)

            task = build_task(
                owner,
                name,
                description=definition.description or default_description(name),
                origin=TaskOrigin.RECURRING,
                deadline=deadline,
                checklist=[
                    {"title": item["title"], "done": False}
                    for item in normalize_checklist(definition.checklist_template)
                ],
                responsible_id=definition.responsible_id,
                recurring_task_id=definition_id,
            )
            db.session.add(task)
            # task insert and schedule advance commit together
            definition.last_run = transition.last_run
            definition.next_run = transition.next_run
            db.session.commit()
        except Exception as e:
            db.session.rollback()
            logger.error(
                "Failed to materialize recurring task",
                definition_id=definition_id,
                error=str(e),
                error_type=type(e).__name__,
                exc_info=True,
            )
            SyncLogService.error(owner, name, e)
            return Outcome(definition_id, name, "error", message=str(e))

        if transition.warning:
            logger.warning(
                "Recurring task catch-up exhausted",
                definition_id=definition_id,
                next_run=transition.next_run.isoformat(),
            )

        if SyncLogService.success(owner, name) is None:
            logger.error(
                "Materialized task but audit log write failed",
                definition_id=definition_id,
                task_id=task.id,
            )

        try:
            self.notify(task)
        except Exception as e:
            logger.error(
                "Relay notification failed after materialization",
                definition_id=definition_id,
                task_id=task.id,
                error=str(e),
                exc_info=True,
            )

        logger.info(
            "Recurring task materialized",
            definition_id=definition_id,
            task_id=task.id,
            next_run=transition.next_run.isoformat(),
        )
        return Outcome(
            definition_id,
            name,
            "success",
            task_id=task.id,
            next_run=transition.next_run,
            warning=transition.warning,
        )
