"""
DateTime utility functions for the application.
"""
from datetime import datetime, time, timezone
from zoneinfo import ZoneInfo


def local_now(tz_name="UTC"):
    """
    Current wall-clock time in `tz_name`, returned naive.

    Schedule columns are stored as naive wall-clock datetimes in the
    configured scheduling timezone.
    """
    return datetime.now(ZoneInfo(tz_name)).replace(tzinfo=None)


def parse_time_of_day(value):
    """
    Parse a schedule time such as "09:00" or "09:00:30".

    Args:
        value: str, datetime.time, or None

    Returns:
        datetime.time

    Raises:
        ValueError: if the value cannot be read as a clock time
    """
    if isinstance(value, time):
        return value.replace(microsecond=0)
    if not value or not isinstance(value, str):
        raise ValueError(f"Invalid time of day: {value!r}")

    parts = value.strip().split(":")
    if len(parts) not in (2, 3):
        raise ValueError(f"Invalid time of day: {value!r}")
    try:
        numbers = [int(p) for p in parts]
    except ValueError:
        raise ValueError(f"Invalid time of day: {value!r}") from None
    hour, minute = numbers[0], numbers[1]
    second = numbers[2] if len(numbers) == 3 else 0
    # time() raises ValueError for out-of-range fields
    return time(hour, minute, second)


def format_time_of_day(value):
    """Render a datetime.time as "HH:MM" (or "HH:MM:SS" when seconds are set)."""
    if value.second:
        return value.strftime("%H:%M:%S")
    return value.strftime("%H:%M")


def parse_iso_datetime(value, tz_name=None):
    """
    Parse an ISO-8601 string into a naive datetime.

    Aware values are converted to `tz_name` (UTC if not given) before
    dropping the offset; naive values are taken as already local.
    Returns None for empty input.
    """
    if not value:
        return None
    if isinstance(value, datetime):
        dt = value
    else:
        dt = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    if dt.tzinfo is not None:
        target = ZoneInfo(tz_name) if tz_name else timezone.utc
        dt = dt.astimezone(target).replace(tzinfo=None)
    return dt


def format_remote_datetime(dt, tz_name="UTC"):
    """
    Format a naive wall-clock datetime for the CRM: ISO-8601, no
    fractional seconds, explicit offset (e.g. "2024-06-03T09:00:00+00:00").

    Args:
        dt: naive datetime in `tz_name`, aware datetime, ISO string or None
    """
    if not dt:
        return None
    if isinstance(dt, str):
        try:
            dt = datetime.fromisoformat(dt.replace("Z", "+00:00"))
        except ValueError:
            return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=ZoneInfo(tz_name))
    return dt.replace(microsecond=0).isoformat()


def isoformat_or_none(dt):
    return dt.isoformat() if dt else None
