"""Week keying and timezone-aware schedule matching.

Every function takes an optional ``now`` (an aware datetime, normally UTC) so
callers and tests can evaluate the schedule at a fixed instant. A naive ``now``
is interpreted as UTC.
"""

import logging
from datetime import date, datetime, time, timedelta, timezone
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pulse_checkin.config import TIME_OF_DAY_PATTERN, WEEKDAYS, settings
from pulse_checkin.exceptions import ValidationError

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def get_zone(tz_name: str | None) -> ZoneInfo:
    """Resolve an IANA timezone name, falling back to the default timezone."""
    if tz_name:
        try:
            return ZoneInfo(tz_name)
        except (ZoneInfoNotFoundError, ValueError):
            logger.warning(
                f"Unknown timezone {tz_name!r}, falling back to {settings.DEFAULT_TIMEZONE}"
            )
    return ZoneInfo(settings.DEFAULT_TIMEZONE)


def local_now(tz_name: str | None, now: datetime | None = None) -> datetime:
    """Return ``now`` converted to the wall clock of ``tz_name``."""
    now = now or utcnow()
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    return now.astimezone(get_zone(tz_name))


def get_week_start(day: date | datetime | None = None, tz_name: str | None = None) -> date:
    """Get the Monday that identifies the week containing ``day``.

    Sunday belongs to the week that started six days earlier. When ``day`` is
    omitted, "today" is taken in ``tz_name`` (or UTC when no timezone is given).
    """
    if day is None:
        day = local_now(tz_name) if tz_name else utcnow()
    if isinstance(day, datetime):
        day = day.date()
    return day - timedelta(days=day.weekday())


def parse_time_of_day(value: str) -> time:
    """Parse an ``HH:MM`` (or ``H:MM``) string."""
    if not isinstance(value, str) or not TIME_OF_DAY_PATTERN.match(value.strip()):
        raise ValidationError(f"Invalid time format: {value}. Must be in HH:MM format.")
    hours, minutes = value.strip().split(":")
    return time(int(hours), int(minutes))


def normalize_weekday(name: str) -> str:
    """Lower-case a weekday name, rejecting anything that isn't one."""
    day = (name or "").strip().lower()
    if day not in WEEKDAYS:
        raise ValidationError(f"Invalid day {name!r}. Must be a day of the week.")
    return day


def next_weekday(name: str) -> str:
    """Day after ``name``, wrapping sunday -> monday."""
    index = WEEKDAYS.index(normalize_weekday(name))
    return WEEKDAYS[(index + 1) % len(WEEKDAYS)]


def weekday_name(moment: datetime | date) -> str:
    return WEEKDAYS[moment.weekday()]


def is_day_in_timezone(day_name: str, tz_name: str | None, now: datetime | None = None) -> bool:
    """Check whether today in ``tz_name`` is ``day_name``."""
    return weekday_name(local_now(tz_name, now)) == normalize_weekday(day_name)


def is_time_match(
    target: str,
    tz_name: str | None,
    now: datetime | None = None,
    tolerance_minutes: int | None = None,
) -> bool:
    """Check if the local time in ``tz_name`` is within the tolerance of ``target``.

    The target is today's ``HH:MM`` on the local wall clock; the window is
    inclusive on both sides and compared at minute resolution.
    """
    if tolerance_minutes is None:
        tolerance_minutes = settings.TIME_MATCH_TOLERANCE_MINUTES
    target_time = parse_time_of_day(target)
    current = local_now(tz_name, now).replace(second=0, microsecond=0)
    scheduled = current.replace(hour=target_time.hour, minute=target_time.minute)
    diff_minutes = abs((current - scheduled).total_seconds()) / 60
    return diff_minutes <= tolerance_minutes
