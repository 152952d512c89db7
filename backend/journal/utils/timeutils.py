"""UTC helpers shared by the sync pipeline."""

from datetime import datetime, timezone
from typing import Optional
import uuid


def utcnow() -> datetime:
    """Timezone-aware current UTC time."""
    return datetime.now(timezone.utc)


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """
    Attach UTC to naive datetimes.

    Some drivers (SQLite) hand back naive values for timezone-aware columns;
    everything stored by this service is UTC.
    """
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def from_epoch_ms(value: Optional[int]) -> Optional[datetime]:
    """Convert broker epoch milliseconds to an aware datetime."""
    if value is None:
        return None
    return datetime.fromtimestamp(int(value) / 1000.0, tz=timezone.utc)


def new_id() -> str:
    """String UUID primary key."""
    return str(uuid.uuid4())
