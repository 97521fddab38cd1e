"""Environment-driven settings shared by the proxy and monitor services."""

from functools import lru_cache
from typing import Callable

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

FUNDING = "funding"
OPEN_INTEREST = "open-interest"

_PROXY_TIMEOUT_MARGIN_S = 5.0


class Settings(BaseSettings):
    """Simple application settings loaded from environment variables or a local .env file."""

    APP_NAME: str = "Funding Watch"
    ENV: str = "dev"
    LOG_LEVEL: str = "INFO"
    VERSION: str = "0.1.0"
    HOST: str = "0.0.0.0"
    PORT: int = 3000
    UPSTREAM_BASE_URL: str = "https://open-api-v4.coinglass.com"
    UPSTREAM_API_KEY: str = Field(
        default="",
        validation_alias=AliasChoices("UPSTREAM_API_KEY", "CG_API_KEY", "API_KEY"),
    )
    UPSTREAM_API_KEY_HEADER: str = "CG-API-KEY"
    UPSTREAM_FUNDING_PATH: str = "/api/futures/funding-rate/exchange-list"
    UPSTREAM_OPEN_INTEREST_PATH: str = "/api/futures/open-interest/exchange-list"
    UPSTREAM_TIMEOUT_S: float = 10.0
    RETRY_MAX_ATTEMPTS: int = 3
    RETRY_INITIAL_BACKOFF_S: float = 0.5
    CACHE_TTL_S: float = 15.0
    CACHE_MAX_ENTRIES: int = 1024
    DEFAULT_SYMBOL: str = "BTC"
    MESSAGE_MAX_CHARS: int = 1500
    PROXY_BASE_URL: str = "http://localhost:3000"
    PROXY_TIMEOUT_S: float = 0.0
    MONITOR_SYMBOLS: str = "BTC"
    MONITOR_RESOURCES: str = FUNDING
    POLL_INTERVAL_S: float = 30.0
    ALERT_THRESHOLD: int = 2
    DEDUPE_MIN_INTERVAL_S: float = 60.0
    NOTIFY_STARTUP: bool = True
    NOTIFY_UPDATES: bool = True
    DISCORD_WEBHOOK_URL: str = Field(
        default="",
        validation_alias=AliasChoices("DISCORD_WEBHOOK_URL", "DISCORD_WEBHOOK"),
    )
    WEBHOOK_TIMEOUT_S: float = 10.0

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    def upstream_paths(self) -> dict[str, str]:
        """Return the resource-to-path mapping for the market-data API."""

        return {
            FUNDING: self.UPSTREAM_FUNDING_PATH,
            OPEN_INTEREST: self.UPSTREAM_OPEN_INTEREST_PATH,
        }

    def monitor_symbols(self) -> tuple[str, ...]:
        """Return normalized symbol list from MONITOR_SYMBOLS."""

        symbols = self._split_csv(self.MONITOR_SYMBOLS, transform=str.upper)
        if symbols:
            return symbols

        return (self.DEFAULT_SYMBOL.upper(),)

    def monitor_resources(self) -> tuple[str, ...]:
        """Return normalized resource names from MONITOR_RESOURCES."""

        return self._split_csv(self.MONITOR_RESOURCES, transform=_normalize_resource)

    def retry_max_attempts(self) -> int:
        return max(1, self.RETRY_MAX_ATTEMPTS)

    def retry_initial_backoff_s(self) -> float:
        return max(0.0, self.RETRY_INITIAL_BACKOFF_S)

    def alert_threshold(self) -> int:
        return max(1, self.ALERT_THRESHOLD)

    def proxy_timeout_s(self) -> float:
        """Timeout for monitor requests to the proxy.

        Defaults to the proxy's worst-case answer time (every attempt timing out
        plus all backoff delays) plus a margin.
        """

        if self.PROXY_TIMEOUT_S > 0:
            return self.PROXY_TIMEOUT_S

        attempts = self.retry_max_attempts()
        backoff_total = self.retry_initial_backoff_s() * (2 ** (attempts - 1) - 1)
        return attempts * self.UPSTREAM_TIMEOUT_S + backoff_total + _PROXY_TIMEOUT_MARGIN_S

    @staticmethod
    def _split_csv(value: str, transform: Callable[[str], str]) -> tuple[str, ...]:
        """Split comma-separated values while removing empty entries and duplicates."""

        items: list[str] = []
        seen: set[str] = set()

        for raw in value.split(","):
            item = transform(raw.strip())
            if not item or item in seen:
                continue
            seen.add(item)
            items.append(item)

        return tuple(items)


def _normalize_resource(value: str) -> str:
    value = value.lower()
    if value == "oi":
        return OPEN_INTEREST
    return value


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached settings to avoid repeated environment parsing."""

    return Settings()
