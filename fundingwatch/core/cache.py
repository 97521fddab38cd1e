"""In-memory TTL cache holding the last known good upstream payload per key."""

import math
import threading
from collections.abc import Mapping
from typing import Any

from cachetools import TLRUCache

from fundingwatch.core.time_utils import Clock, monotonic
from fundingwatch.core.types import CacheEntry


def cache_key(resource: str, symbol: str, params: Mapping[str, Any] | None = None) -> str:
    """Build a deterministic key from resource, symbol and any extra query parameters."""

    key = f"{resource}:{symbol.upper()}"
    if params:
        extras = "&".join(f"{name}={params[name]}" for name in sorted(params))
        key = f"{key}?{extras}"
    return key


def _expires_at(_key: str, entry: CacheEntry, _now: float) -> float:
    # cachetools expires at ``now >= expires``; an entry stays fresh through ``stored_at + ttl``.
    return math.nextafter(entry.stored_at + entry.ttl, math.inf)


class ResponseCache:
    """Time-bounded mapping with lazy expiry on read, backed by ``cachetools.TLRUCache``.

    Each entry carries its own TTL. Keys are bounded by the monitored
    resource/symbol pairs; ``maxsize`` only guards against unbounded symbols.
    """

    def __init__(self, default_ttl: float, clock: Clock = monotonic, maxsize: int = 1024) -> None:
        self.default_ttl = default_ttl
        self._clock = clock
        self._entries = TLRUCache(maxsize=maxsize, ttu=_expires_at, timer=clock)
        self._lock = threading.Lock()

    def get(self, key: str) -> Any | None:
        """Return the fresh payload for ``key``, or None when absent or expired."""

        entry = self.get_entry(key)
        if entry is None:
            return None
        return entry.payload

    def get_entry(self, key: str) -> CacheEntry | None:
        """Fresh entry with its metadata, for callers that report its age."""

        with self._lock:
            self._entries.expire()
            return self._entries.get(key)

    def set(self, key: str, payload: Any, ttl: float | None = None) -> CacheEntry:
        """Store ``payload`` under ``key``, replacing any previous entry."""

        entry = CacheEntry(
            key=key,
            stored_at=self._clock(),
            payload=payload,
            ttl=self.default_ttl if ttl is None else ttl,
        )
        with self._lock:
            self._entries[key] = entry
        return entry

    def age(self, entry: CacheEntry) -> float:
        """Seconds since ``entry`` was stored."""

        return self._clock() - entry.stored_at

    def sweep(self) -> int:
        """Drop every expired entry and return how many were removed."""

        with self._lock:
            return len(self._entries.expire())

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
