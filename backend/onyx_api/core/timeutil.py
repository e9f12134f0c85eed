"""Timezone helpers; all timestamps are stored and compared in UTC."""
from datetime import datetime, timezone
from typing import Optional


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to naive datetimes (some drivers drop the offset)."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def start_of_utc_day(moment: Optional[datetime] = None) -> datetime:
    """Midnight UTC of the day containing ``moment`` (default: now)."""
    moment = as_utc(moment) if moment else utcnow()
    return moment.replace(hour=0, minute=0, second=0, microsecond=0)
