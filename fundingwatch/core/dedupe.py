"""Notification throttling and failure-streak bookkeeping for the monitor."""

import threading

from fundingwatch.core.time_utils import Clock, monotonic

_PRUNE_FACTOR = 10


class AlertDeduplicator:
    """Allow at most one notification per key per minimum interval."""

    def __init__(self, min_interval: float, clock: Clock = monotonic) -> None:
        self.min_interval = min_interval
        self._clock = clock
        self._last_sent: dict[str, float] = {}
        self._lock = threading.Lock()

    def allow(self, key: str, min_interval: float | None = None) -> bool:
        """Return True and record the send time, or False without touching state."""

        interval = self.min_interval if min_interval is None else min_interval
        with self._lock:
            now = self._clock()
            last = self._last_sent.get(key)
            if last is not None and now - last < interval:
                return False

            self._last_sent[key] = now
            self._prune(now, interval)
            return True

    def last_sent(self, key: str) -> float | None:
        with self._lock:
            return self._last_sent.get(key)

    def _prune(self, now: float, interval: float) -> None:
        horizon = _PRUNE_FACTOR * interval
        stale = [key for key, sent in self._last_sent.items() if now - sent > horizon]
        for key in stale:
            del self._last_sent[key]

    def __len__(self) -> int:
        with self._lock:
            return len(self._last_sent)


class ConsecutiveFailureCounter:
    """Per-resource count of failures since the last success."""

    def __init__(self) -> None:
        self._counts: dict[str, int] = {}
        self._lock = threading.Lock()

    def record_failure(self, key: str) -> int:
        """Count one more failure for ``key`` and return the streak length."""

        with self._lock:
            count = self._counts.get(key, 0) + 1
            self._counts[key] = count
            return count

    def record_success(self, key: str) -> None:
        """End the failure streak for ``key``."""

        with self._lock:
            self._counts[key] = 0

    def get(self, key: str) -> int:
        """Current streak for ``key``; zero for keys never seen."""

        with self._lock:
            return self._counts.get(key, 0)
