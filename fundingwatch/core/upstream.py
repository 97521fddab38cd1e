"""HTTP adapter that turns one GET against a configured base URL into a FetchResult."""

import json
import logging
from collections.abc import Mapping
from typing import Any

import httpx

from fundingwatch.core.extract import detect_application_error
from fundingwatch.core.types import (
    ERROR_APPLICATION,
    ERROR_CONFIG,
    ERROR_NETWORK,
    ERROR_STATUS,
    FetchResult,
)

logger = logging.getLogger(__name__)


def parse_body(text: str) -> Any | None:
    """Parse JSON regardless of declared content type; None when the text is not JSON."""

    if not text.strip():
        return None
    try:
        return json.loads(text)
    except ValueError:
        return None


class UpstreamAdapter:
    """Thin async wrapper around a GET-only JSON API.

    Base URL, auth header and resource paths are all constructor arguments so the
    same adapter talks to the market-data API or to the proxy itself.
    """

    def __init__(
        self,
        *,
        base_url: str,
        paths: Mapping[str, str],
        api_key: str = "",
        api_key_header: str = "CG-API-KEY",
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.strip().rstrip("/")
        self.paths = dict(paths)
        self.api_key = api_key
        self.api_key_header = api_key_header
        self.timeout = timeout
        self.client = httpx.AsyncClient(timeout=timeout, transport=transport)

    def resolve_url(self, resource: str) -> str | None:
        path = self.paths.get(resource)
        if path is None or not self.base_url:
            return None
        return f"{self.base_url}/{path.lstrip('/')}"

    def _headers(self) -> dict[str, str]:
        headers = {"accept": "application/json"}
        if self.api_key:
            headers[self.api_key_header] = self.api_key
        return headers

    async def fetch(self, resource: str, params: Mapping[str, Any] | None = None) -> FetchResult:
        url = self.resolve_url(resource)
        if url is None:
            reason = "missing base URL" if not self.base_url else f"unknown resource {resource!r}"
            logger.error("upstream_config_error", extra={"resource": resource, "reason": reason})
            return FetchResult(succeeded=False, raw_body=reason, error=ERROR_CONFIG)

        try:
            response = await self.client.get(url, params=dict(params or {}), headers=self._headers())
            text = response.text
        except (httpx.HTTPError, httpx.InvalidURL) as exc:
            logger.warning(
                "upstream_network_error",
                extra={"url": url, "error": str(exc) or type(exc).__name__},
            )
            return FetchResult(
                succeeded=False,
                raw_body=str(exc) or type(exc).__name__,
                error=ERROR_NETWORK,
                url=url,
            )

        parsed = parse_body(text)
        status = response.status_code
        content_type = response.headers.get("content-type", "")

        if not response.is_success:
            error: str | None = ERROR_STATUS
        elif detect_application_error(parsed) is not None:
            error = ERROR_APPLICATION
        else:
            error = None

        if error is not None:
            logger.warning(
                "upstream_request_failed",
                extra={"url": url, "status": status, "stage": error},
            )

        return FetchResult(
            succeeded=error is None,
            http_status=status,
            content_type=content_type,
            raw_body=text,
            parsed_body=parsed,
            error=error,
            url=url,
        )

    async def aclose(self) -> None:
        await self.client.aclose()
