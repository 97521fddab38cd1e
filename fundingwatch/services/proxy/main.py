"""FastAPI proxy forwarding funding and open-interest lookups with retry and cache fallback."""

import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from fundingwatch.core.cache import ResponseCache, cache_key
from fundingwatch.core.config import FUNDING, OPEN_INTEREST, Settings, get_settings
from fundingwatch.core.extract import detect_application_error
from fundingwatch.core.logging import configure_logging
from fundingwatch.core.retry import Sleep, fetch_with_retry
from fundingwatch.core.time_utils import utc_iso
from fundingwatch.core.types import (
    ERROR_APPLICATION,
    ERROR_CONFIG,
    ERROR_NETWORK,
    FetchResult,
    truncate,
)
from fundingwatch.core.upstream import UpstreamAdapter

logger = logging.getLogger(__name__)

STAGE_NETWORK = "network"
STAGE_STATUS = "upstream_status"
STAGE_APPLICATION = "application"
STAGE_PARSE = "parse"
STAGE_CONFIG = "config"

_STAGE_HTTP_STATUS = {
    STAGE_NETWORK: 504,
    STAGE_CONFIG: 400,
}


def failure_stage(result: FetchResult) -> str:
    """Name the stage a failed fetch broke at, as reported to proxy clients."""

    if result.error == ERROR_NETWORK:
        return STAGE_NETWORK
    if result.error == ERROR_CONFIG:
        return STAGE_CONFIG
    if result.error == ERROR_APPLICATION:
        return STAGE_APPLICATION
    if result.succeeded:
        return STAGE_PARSE
    return STAGE_STATUS


def failure_message(result: FetchResult, stage: str) -> str:
    """Human-readable reason for a failure body; the caller bounds its length."""

    if stage == STAGE_NETWORK:
        return f"upstream unreachable: {result.raw_body}"
    if stage == STAGE_CONFIG:
        return f"proxy misconfigured: {result.raw_body}"
    if stage == STAGE_APPLICATION:
        reason = detect_application_error(result.parsed_body) or "application error"
        return f"upstream reported an error: {reason}"
    if stage == STAGE_PARSE:
        return f"upstream returned a non-JSON body: {result.raw_body}"
    return f"upstream returned HTTP {result.http_status}: {result.raw_body}"


class ProxyHandler:
    """Route-independent core of the proxy: fetch, cache on success, fall back on failure."""

    def __init__(
        self,
        adapter: UpstreamAdapter,
        cache: ResponseCache,
        *,
        max_attempts: int,
        initial_backoff: float,
        cache_ttl: float,
        default_symbol: str = "BTC",
        message_max_chars: int = 1500,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self.adapter = adapter
        self.cache = cache
        self.max_attempts = max_attempts
        self.initial_backoff = initial_backoff
        self.cache_ttl = cache_ttl
        self.default_symbol = default_symbol
        self.message_max_chars = message_max_chars
        self._sleep = sleep

    def normalize_symbol(self, symbol: str | None) -> str:
        if symbol is None or not symbol.strip():
            return self.default_symbol.upper()
        return symbol.strip().upper()

    async def handle(self, resource: str, symbol: str | None) -> tuple[int, Any]:
        """Return ``(http_status, body)`` for one proxied lookup."""

        symbol = self.normalize_symbol(symbol)
        key = cache_key(resource, symbol)
        result = await fetch_with_retry(
            self.adapter,
            resource,
            {"symbol": symbol},
            max_attempts=self.max_attempts,
            initial_backoff=self.initial_backoff,
            sleep=self._sleep,
        )

        if result.succeeded and result.parsed_body is not None:
            self.cache.set(key, result.parsed_body, self.cache_ttl)
            return 200, result.parsed_body

        stage = failure_stage(result)
        upstream_status: int | str = (
            result.http_status if result.http_status is not None else STAGE_NETWORK
        )
        entry = self.cache.get_entry(key)
        if entry is not None and stage != STAGE_CONFIG:
            logger.warning(
                "proxy_serving_cache",
                extra={"key": key, "stage": stage, "upstream_status": upstream_status},
            )
            return 200, {
                "fromCache": True,
                "data": entry.payload,
                "note": f"upstream failed at {stage}; serving cached data",
                "upstream_status": upstream_status,
                "stage": stage,
                "cache_age_s": round(self.cache.age(entry), 3),
            }

        logger.error(
            "proxy_upstream_failed",
            extra={"key": key, "stage": stage, "upstream_status": upstream_status},
        )
        return _STAGE_HTTP_STATUS.get(stage, 502), {
            "success": False,
            "upstream_status": upstream_status,
            "stage": stage,
            "message": truncate(failure_message(result, stage), self.message_max_chars),
        }


def _error_body(stage: str, message: str) -> dict[str, Any]:
    return {"success": False, "stage": stage, "message": message}


def build_handler(settings: Settings, sleep: Sleep = asyncio.sleep) -> ProxyHandler:
    """Wire the upstream adapter and cache from settings."""

    adapter = UpstreamAdapter(
        base_url=settings.UPSTREAM_BASE_URL,
        paths=settings.upstream_paths(),
        api_key=settings.UPSTREAM_API_KEY,
        api_key_header=settings.UPSTREAM_API_KEY_HEADER,
        timeout=settings.UPSTREAM_TIMEOUT_S,
    )
    return ProxyHandler(
        adapter,
        ResponseCache(default_ttl=settings.CACHE_TTL_S, maxsize=max(1, settings.CACHE_MAX_ENTRIES)),
        max_attempts=settings.retry_max_attempts(),
        initial_backoff=settings.retry_initial_backoff_s(),
        cache_ttl=settings.CACHE_TTL_S,
        default_symbol=settings.DEFAULT_SYMBOL,
        message_max_chars=settings.MESSAGE_MAX_CHARS,
        sleep=sleep,
    )


def create_app(settings: Settings | None = None, handler: ProxyHandler | None = None) -> FastAPI:
    """Build the proxy application; tests pass their own handler with a mock transport."""

    settings = settings or get_settings()
    configure_logging(settings.LOG_LEVEL)
    proxy = handler or build_handler(settings)

    @asynccontextmanager
    async def lifespan(_: FastAPI) -> AsyncIterator[None]:
        """Log startup metadata and close the upstream client on shutdown."""

        if not settings.UPSTREAM_API_KEY:
            logger.warning("proxy_api_key_missing", extra={"header": settings.UPSTREAM_API_KEY_HEADER})
        logger.info(
            "proxy_startup",
            extra={
                "service": "proxy",
                "env": settings.ENV,
                "version": settings.VERSION,
                "upstream": proxy.adapter.base_url,
                "cache_ttl_s": proxy.cache_ttl,
                "max_attempts": proxy.max_attempts,
            },
        )
        yield
        await proxy.adapter.aclose()
        logger.info("proxy_shutdown")

    app = FastAPI(title=settings.APP_NAME, version=settings.VERSION, lifespan=lifespan)
    app.state.proxy = proxy
    app.add_middleware(CORSMiddleware, allow_origins=["*"], allow_methods=["GET"], allow_headers=["*"])

    @app.exception_handler(StarletteHTTPException)
    async def http_error(_: Request, exc: StarletteHTTPException) -> JSONResponse:
        stage = "route" if exc.status_code in (404, 405) else "request"
        return JSONResponse(status_code=exc.status_code, content=_error_body(stage, str(exc.detail)))

    @app.exception_handler(Exception)
    async def internal_error(_: Request, exc: Exception) -> JSONResponse:
        logger.exception("proxy_unhandled_error")
        return JSONResponse(status_code=500, content=_error_body("internal", str(exc)))

    async def proxied(resource: str, symbol: str | None) -> JSONResponse:
        try:
            status_code, body = await proxy.handle(resource, symbol)
        except Exception as exc:  # noqa: BLE001
            logger.exception("proxy_handler_error", extra={"resource": resource})
            return JSONResponse(status_code=500, content=_error_body("internal", str(exc)))
        return JSONResponse(status_code=status_code, content=body)

    @app.get("/funding")
    async def funding(symbol: str | None = Query(default=None)) -> JSONResponse:
        """Funding rate per exchange for a symbol."""

        return await proxied(FUNDING, symbol)

    @app.get("/oi")
    @app.get("/open-interest")
    async def open_interest(symbol: str | None = Query(default=None)) -> JSONResponse:
        """Open interest per exchange for a symbol."""

        return await proxied(OPEN_INTEREST, symbol)

    @app.get("/healthz")
    def healthz() -> dict[str, Any]:
        """Return process liveness status."""

        return {"ok": True, "ts": utc_iso()}

    @app.get("/")
    def root() -> dict[str, Any]:
        return {
            "name": settings.APP_NAME,
            "version": settings.VERSION,
            "env": settings.ENV,
            "routes": ["/funding", "/oi", "/open-interest", "/healthz"],
        }

    @app.get("/version")
    def version() -> dict[str, str]:
        """Return application metadata from shared settings."""

        return {
            "name": settings.APP_NAME,
            "version": settings.VERSION,
            "env": settings.ENV,
        }

    return app


app = create_app()
