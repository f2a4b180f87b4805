"""Time helpers shared by services and stores."""

from datetime import datetime, timezone
from typing import Callable, Optional


Clock = Callable[[], datetime]


def utcnow() -> datetime:
    """Current time as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to naive datetimes and convert aware ones to UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def to_epoch(value: Optional[datetime]) -> Optional[float]:
    """Seconds since the epoch, used for indexed timestamp columns."""
    if value is None:
        return None
    return ensure_utc(value).timestamp()


def to_epoch_ms(value: datetime) -> int:
    """Milliseconds since the epoch."""
    return int(ensure_utc(value).timestamp() * 1000)
