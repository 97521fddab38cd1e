"""Best-effort chat webhook delivery plus the embed payloads the monitor sends."""

import logging
from typing import Any

import httpx

from fundingwatch.core.time_utils import utc_iso
from fundingwatch.core.types import FetchResult, truncate

logger = logging.getLogger(__name__)

COLOR_ERROR = 15158332
COLOR_STARTED = 3066993
COLOR_UPDATE = 5763719
_EMBED_TEXT_LIMIT = 1900


class WebhookNotifier:
    """POST JSON messages to a Discord-style webhook without ever raising."""

    def __init__(
        self,
        url: str,
        *,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.url = url.strip()
        self.client = httpx.AsyncClient(timeout=timeout, transport=transport)

    @property
    def enabled(self) -> bool:
        return bool(self.url)

    async def send(self, message: dict[str, Any]) -> bool:
        """Deliver ``message``; failures are logged and reported as False."""

        if not self.enabled:
            logger.info("notifier_disabled", extra={"notification": message})
            return False

        try:
            response = await self.client.post(self.url, json=message)
        except (httpx.HTTPError, httpx.InvalidURL) as exc:
            logger.error("notifier_send_failed", extra={"error": str(exc) or type(exc).__name__})
            return False

        if not response.is_success:
            logger.error(
                "notifier_rejected",
                extra={"status": response.status_code, "body": truncate(response.text, 300)},
            )
            return False
        return True

    async def aclose(self) -> None:
        await self.client.aclose()


def build_started_message(symbols: list[str], resources: list[str]) -> dict[str, Any]:
    """Green embed announcing which symbols and resources are being watched."""

    return {
        "embeds": [
            {
                "title": "Monitor started",
                "color": COLOR_STARTED,
                "fields": [
                    {"name": "Symbol", "value": ", ".join(symbols) or "-"},
                    {"name": "Resource", "value": ", ".join(resources) or "-"},
                ],
                "timestamp": utc_iso(),
            }
        ]
    }


def build_error_message(
    resource: str,
    symbol: str,
    result: FetchResult,
    failure_class: str,
    consecutive_failures: int,
) -> dict[str, Any]:
    """Red embed describing a failed fetch, with a bounded body excerpt."""

    status = result.http_status if result.http_status is not None else ""
    text = f"Monitor error: {status} -> {result.excerpt(_EMBED_TEXT_LIMIT)}"
    return {
        "embeds": [
            {
                "title": f"Monitor error: {resource} fetch failed",
                "color": COLOR_ERROR,
                "description": f"```{text}```",
                "fields": [
                    {"name": "symbol", "value": symbol, "inline": True},
                    {"name": "class", "value": failure_class, "inline": True},
                    {"name": "consecutive", "value": str(consecutive_failures), "inline": True},
                    {"name": "url", "value": result.url or "-", "inline": False},
                ],
                "timestamp": utc_iso(),
            }
        ]
    }


def build_update_message(
    resource: str,
    symbol: str,
    snapshot: str,
    rate: float | None,
) -> dict[str, Any]:
    """Embed carrying the changed snapshot and, when one was found, its headline rate."""

    fields = [{"name": "symbol", "value": symbol, "inline": True}]
    if rate is not None:
        fields.append({"name": "value", "value": f"{rate:g}", "inline": True})
    return {
        "embeds": [
            {
                "title": f"{resource.capitalize()} update",
                "color": COLOR_UPDATE,
                "description": f"```{truncate(snapshot, _EMBED_TEXT_LIMIT)}```",
                "fields": fields,
                "timestamp": utc_iso(),
            }
        ]
    }
