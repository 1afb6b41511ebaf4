"""
Create and edit recurring task definitions.

`time_of_day` and `next_run` are kept consistent: when a first run is given
its clock time becomes the schedule time; otherwise the first run is the
next slot at `time_of_day`.
"""

from taskbridge.datetime_utils import format_time_of_day, local_now, parse_iso_datetime, parse_time_of_day
from taskbridge.models import Frequency, RecurringTask, db
from taskbridge.recurrence.calculator import first_run_on_or_after
from taskbridge.tasks.service import normalize_checklist

DEFINITION_FIELDS = frozenset({
    "name", "description", "frequency", "time_of_day", "days_of_week",
    "checklist_template", "relative_deadline_minutes", "responsible_id", "next_run",
})


def _parse_days(values):
    days = []
    for value in values or []:
        day = int(value)
        if not 0 <= day <= 6:
            raise ValueError(f"Day of week out of range (0=Sunday..6=Saturday): {value!r}")
        if day not in days:
            days.append(day)
    return sorted(days)


def _parse_minutes(value):
    minutes = int(value or 0)
    if minutes < 0:
        raise ValueError("relative_deadline_minutes must be >= 0")
    return minutes


def apply_definition_fields(definition: RecurringTask, data: dict, timezone: str = "UTC") -> RecurringTask:
    unknown = set(data) - DEFINITION_FIELDS
    if unknown:
        raise ValueError(f"Unknown fields: {', '.join(sorted(unknown))}")

    if "name" in data:
        name = (data["name"] or "").strip()
        if not name:
            raise ValueError("Recurring task name is required")
        definition.name = name
    if "description" in data:
        definition.description = data["description"]
    if "frequency" in data:
        definition.frequency = Frequency.parse(data["frequency"]).value
    if "days_of_week" in data:
        definition.days_of_week = _parse_days(data["days_of_week"])
    if "checklist_template" in data:
        definition.checklist_template = [
            {"title": item["title"], "done": False}
            for item in normalize_checklist(data["checklist_template"])
        ]
    if "relative_deadline_minutes" in data:
        definition.relative_deadline_minutes = _parse_minutes(data["relative_deadline_minutes"])
    if "responsible_id" in data:
        value = data["responsible_id"]
        definition.responsible_id = str(value) if value not in (None, "") else None

    if data.get("next_run"):
        next_run = parse_iso_datetime(data["next_run"], timezone)
        definition.next_run = next_run.replace(microsecond=0)
        definition.time_of_day = format_time_of_day(next_run.time().replace(microsecond=0))
    elif "time_of_day" in data or definition.next_run is None:
        clock = parse_time_of_day(data.get("time_of_day") or definition.time_of_day)
        definition.time_of_day = format_time_of_day(clock)
        definition.next_run = first_run_on_or_after(
            definition.frequency or Frequency.DAILY.value,
            clock,
            definition.days_of_week,
            local_now(timezone),
        )

    if not definition.name:
        raise ValueError("Recurring task name is required")
    return definition


def create_definition(owner: str, data: dict, timezone: str = "UTC") -> RecurringTask:
    if not owner:
        raise ValueError("Recurring task owner is required")
    if not data.get("next_run") and not data.get("time_of_day"):
        raise ValueError("Either next_run or time_of_day is required")
    definition = RecurringTask(
        owner=owner,
        frequency=Frequency.DAILY.value,
        days_of_week=[],
        checklist_template=[],
        relative_deadline_minutes=0,
        is_active=True,
    )
    apply_definition_fields(definition, data, timezone)
    db.session.add(definition)
    db.session.commit()
    return definition


def update_definition(definition: RecurringTask, data: dict, timezone: str = "UTC") -> RecurringTask:
    apply_definition_fields(definition, data, timezone)
    db.session.commit()
    return definition


def set_active(definition: RecurringTask, is_active: bool) -> RecurringTask:
    """Pause or resume; a paused definition keeps its schedule state."""
    definition.is_active = bool(is_active)
    db.session.commit()
    return definition
