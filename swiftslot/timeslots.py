import re
from datetime import date, datetime, time, timedelta, timezone

from dateutil import parser, tz

from .errors import ValidationError

SLOT_DAY_START = time(9, 0)
SLOT_MINUTES = 30
SLOTS_PER_DAY = 16

_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")


def get_zone(tz_name: str):
    zone = tz.gettz(tz_name)
    if zone is None:
        raise ValidationError(f"Unknown timezone: {tz_name}")
    return zone


def parse_date(value: str) -> date:
    if not value or not _DATE_RE.match(value):
        raise ValidationError("Invalid date format. Use YYYY-MM-DD")
    try:
        return date.fromisoformat(value)
    except ValueError:
        raise ValidationError("Invalid date format. Use YYYY-MM-DD")


def parse_instant(value) -> datetime:
    """ISO-8601 string or datetime -> aware UTC datetime. Naive input is taken as UTC."""
    if isinstance(value, datetime):
        dt = value
    else:
        try:
            dt = parser.isoparse(value)
        except (TypeError, ValueError):
            raise ValidationError(f"Invalid ISO-8601 timestamp: {value}")
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    try:
        return truncate_ms(dt.astimezone(timezone.utc))
    except OverflowError:
        raise ValidationError(f"Timestamp out of range: {value}")


def truncate_ms(dt: datetime) -> datetime:
    return dt.replace(microsecond=(dt.microsecond // 1000) * 1000)


def isoformat_utc(dt: datetime) -> str:
    return dt.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def isoformat_local(dt: datetime, tz_name: str) -> str:
    return to_local(dt, tz_name).isoformat(timespec="milliseconds")


def to_local(dt: datetime, tz_name: str) -> datetime:
    zone = get_zone(tz_name)
    try:
        return dt.astimezone(zone)
    except OverflowError:
        raise ValidationError(f"Timestamp out of range for {tz_name}: {isoformat_utc(dt)}")


def local_to_utc(day: date, wall: time, tz_name: str) -> datetime:
    """
    Wall-clock time on `day` in `tz_name` -> UTC instant.

    Times that do not exist (spring-forward gap) are shifted forward by the
    gap; ambiguous times (fall-back) resolve to the first occurrence.
    """
    zone = get_zone(tz_name)
    local = datetime.combine(day, wall).replace(tzinfo=zone)
    local = tz.resolve_imaginary(local)
    return local.astimezone(timezone.utc)


def generate_slots(day: date, tz_name: str) -> list[datetime]:
    slots = []
    first = datetime.combine(day, SLOT_DAY_START)
    for i in range(SLOTS_PER_DAY):
        wall = (first + timedelta(minutes=i * SLOT_MINUTES)).time()
        slots.append(local_to_utc(day, wall, tz_name))
    return slots
