"""Date manipulation utilities"""

from datetime import datetime, timedelta, timezone
from typing import Optional


def utcnow() -> datetime:
    """Timezone-aware current UTC time"""
    return datetime.now(timezone.utc)


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to naive datetimes (SQLite returns them without tzinfo)"""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def add_days(from_date: datetime, days: int) -> datetime:
    return from_date + timedelta(days=days)


def months_between(start: datetime, end: datetime) -> int:
    """Whole calendar months elapsed from start to end (never negative)"""
    start, end = ensure_utc(start), ensure_utc(end)
    months = (end.year - start.year) * 12 + (end.month - start.month)
    if end.day < start.day:
        months -= 1
    return max(months, 0)
