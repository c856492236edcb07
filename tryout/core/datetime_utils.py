"""
Timezone-aware time helpers shared by the timer, store and API.
"""
import math
from datetime import datetime, timezone
from typing import Optional


def utc_now() -> datetime:
    """Current time in UTC. Injected as the engine clock via ``get_clock``."""
    return datetime.now(timezone.utc)


def ensure_timezone_aware(dt: Optional[datetime]) -> datetime:
    """
    Attach UTC to a naive datetime.

    SQLite hands back naive values for ``DateTime(timezone=True)`` columns, so
    anything read from the store passes through here before arithmetic.

    Raises:
        ValueError: If dt is None
    """
    if dt is None:
        raise ValueError("datetime cannot be None")
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt


def elapsed_seconds(start: datetime, end: datetime) -> float:
    """Signed number of seconds from ``start`` to ``end``.

    Negative when ``end`` precedes ``start`` (clock skew); callers decide
    how to clamp.
    """
    return (ensure_timezone_aware(end) - ensure_timezone_aware(start)).total_seconds()


def format_countdown(remaining_seconds: float) -> str:
    """
    Format a remaining duration for display.

    Hours are shown only when present: ``1:05:09`` or ``05:09``.
    Fractions of a second round up so a countdown never shows ``00:00``
    while time is still left.

    Args:
        remaining_seconds: Seconds left on the timer (negative treated as 0)

    Returns:
        Formatted countdown string
    """
    total = math.ceil(max(remaining_seconds, 0.0))
    hours, rest = divmod(total, 3600)
    minutes, seconds = divmod(rest, 60)
    if hours > 0:
        return f"{hours}:{minutes:02d}:{seconds:02d}"
    return f"{minutes:02d}:{seconds:02d}"
