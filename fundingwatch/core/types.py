"""Shared lightweight types to keep module interfaces explicit and typed."""

from dataclasses import dataclass
from typing import Any

ERROR_NETWORK = "network"
ERROR_STATUS = "status"
ERROR_APPLICATION = "application"
ERROR_CONFIG = "config"

EXCERPT_LIMIT = 2000


@dataclass(frozen=True, slots=True)
class FetchResult:
    """Normalized outcome of one HTTP attempt against an upstream.

    ``http_status`` is None when no response was received. ``error`` names the
    failure stage (network, status, application, config) and is None on success.
    ``parsed_body`` is only set when ``raw_body`` parsed as JSON.
    """

    succeeded: bool
    http_status: int | None = None
    content_type: str = ""
    raw_body: str = ""
    parsed_body: Any | None = None
    error: str | None = None
    url: str = ""

    @property
    def is_transient(self) -> bool:
        """Whether repeating the same request could plausibly succeed."""

        if self.succeeded:
            return False
        if self.error == ERROR_NETWORK:
            return True
        return self.http_status is not None and self.http_status >= 500

    def excerpt(self, limit: int = EXCERPT_LIMIT) -> str:
        """Raw body bounded for logs and alert text."""

        return truncate(self.raw_body, limit)


@dataclass(slots=True)
class CacheEntry:
    """Last known good payload for a cache key."""

    key: str
    stored_at: float
    payload: Any
    ttl: float


def truncate(text: str, limit: int) -> str:
    if limit <= 0:
        return ""
    if len(text) <= limit:
        return text
    return text[: max(0, limit - 3)] + "..."
