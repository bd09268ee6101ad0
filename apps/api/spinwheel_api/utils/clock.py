"""Time helpers. All persisted timestamps are naive UTC."""

from datetime import datetime, timezone
from typing import Optional


def utcnow() -> datetime:
    """Current time as naive UTC."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def month_key(moment: datetime) -> str:
    """Calendar month identifier, e.g. ``2026-10``."""
    return f"{moment.year:04d}-{moment.month:02d}"


def previous_month_key(moment: datetime) -> str:
    """Month identifier for the month before ``moment``."""
    if moment.month == 1:
        return f"{moment.year - 1:04d}-12"
    return f"{moment.year:04d}-{moment.month - 1:02d}"


def start_of_day(moment: datetime) -> datetime:
    return moment.replace(hour=0, minute=0, second=0, microsecond=0)


def as_naive_utc(moment: Optional[datetime]) -> Optional[datetime]:
    """Normalize an aware timestamp to naive UTC; naive input is taken as UTC."""
    if moment is None or moment.tzinfo is None:
        return moment
    return moment.astimezone(timezone.utc).replace(tzinfo=None)
