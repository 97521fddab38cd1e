"""Time helpers for consistent UTC timestamps across services."""

import time
from datetime import datetime, timezone
from typing import Callable

Clock = Callable[[], float]


def utc_now() -> datetime:
    """Return current UTC datetime with timezone attached."""

    return datetime.now(timezone.utc)


def utc_iso() -> str:
    """Return current UTC time as an ISO-8601 string."""

    return utc_now().isoformat()


def monotonic() -> float:
    """Default clock for TTL and interval bookkeeping; immune to wall-clock jumps."""

    return time.monotonic()
