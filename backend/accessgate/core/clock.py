"""
Clock helpers.

All persisted timestamps are naive UTC datetimes, matching the DateTime
columns used by the SQL store. Components that make time-based decisions
take a Clock so tests can pin "now".
"""

from datetime import datetime, timezone
from typing import Callable


Clock = Callable[[], datetime]


def utcnow() -> datetime:
    """Current time as a naive UTC datetime."""
    return datetime.now(timezone.utc).replace(tzinfo=None)
