"""Time utilities: UTC storage, restaurant-local display."""

from datetime import datetime, timezone
from zoneinfo import ZoneInfo
from typing import Optional

from dineflow.config import RESTAURANT_TIMEZONE

try:
    LOCAL_TZ = ZoneInfo(RESTAURANT_TIMEZONE)
except Exception:
    # Fallback to system local timezone when tzdata is unavailable (Windows)
    LOCAL_TZ = datetime.now().astimezone().tzinfo


def utcnow() -> datetime:
    """Return naive UTC now, the format every timestamp column stores."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_local(dt: Optional[datetime]) -> Optional[datetime]:
    """Convert a stored (naive UTC) datetime to the restaurant's timezone."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(LOCAL_TZ)


def iso(dt: Optional[datetime]) -> Optional[str]:
    """ISO-8601 string with explicit UTC marker for a stored timestamp."""
    if dt is None:
        return None
    if dt.tzinfo is not None:
        dt = dt.astimezone(timezone.utc).replace(tzinfo=None)
    return dt.isoformat() + "Z"
