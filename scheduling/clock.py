from datetime import datetime, timezone
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from scheduling.errors import ValidationError


def utcnow() -> datetime:
    # Server clock is the single time source for a scheduling request.
    return datetime.now(timezone.utc)


def get_zone(name: str) -> ZoneInfo:
    if not name:
        raise ValidationError("timezone required")
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        raise ValidationError("Unknown timezone", details={"timezone": name})


def as_utc(instant: datetime) -> datetime:
    # Stored instants are naive UTC (SQLite drops tzinfo)
    if instant.tzinfo is None:
        return instant.replace(tzinfo=timezone.utc)
    return instant.astimezone(timezone.utc)


def to_naive_utc(instant: datetime) -> datetime:
    return as_utc(instant).replace(tzinfo=None)
