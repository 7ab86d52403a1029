"""UTC time helpers shared by the ledger services."""

from datetime import datetime, timedelta, timezone
from typing import Optional, Tuple


def utc_now() -> datetime:
    """Timezone-aware UTC now."""
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to naive timestamps read back from storage."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def normalize_now(now: Optional[datetime]) -> datetime:
    if now is None:
        return utc_now()
    return as_utc(now)


def month_bounds(now: datetime) -> Tuple[datetime, datetime]:
    """First and last instant of the UTC calendar month containing `now`."""
    now = as_utc(now)
    start = datetime(now.year, now.month, 1, tzinfo=timezone.utc)
    if now.month == 12:
        next_start = datetime(now.year + 1, 1, 1, tzinfo=timezone.utc)
    else:
        next_start = datetime(now.year, now.month + 1, 1, tzinfo=timezone.utc)
    return start, next_start - timedelta(microseconds=1)


def months_ago(now: datetime, months: int) -> datetime:
    """Same instant `months` calendar months earlier, clamped to the month's length."""
    now = as_utc(now)
    year = now.year
    month = now.month - months
    while month <= 0:
        month += 12
        year -= 1
    _, end = month_bounds(datetime(year, month, 1, tzinfo=timezone.utc))
    day = min(now.day, end.day)
    return now.replace(year=year, month=month, day=day)
