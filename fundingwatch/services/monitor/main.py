"""Polling monitor that watches the proxy and posts update and failure alerts to a webhook."""

import asyncio
import hashlib
import logging
import signal
from dataclasses import dataclass
from typing import Any

import httpx

from fundingwatch.core.config import FUNDING, OPEN_INTEREST, Settings, get_settings
from fundingwatch.core.dedupe import AlertDeduplicator, ConsecutiveFailureCounter
from fundingwatch.core.extract import extract_rate, snapshot_text
from fundingwatch.core.logging import configure_logging
from fundingwatch.core.notifier import (
    WebhookNotifier,
    build_error_message,
    build_started_message,
    build_update_message,
)
from fundingwatch.core.time_utils import Clock, monotonic
from fundingwatch.core.types import ERROR_APPLICATION, ERROR_CONFIG, ERROR_NETWORK, FetchResult
from fundingwatch.core.upstream import UpstreamAdapter

PROXY_PATHS = {FUNDING: "/funding", OPEN_INTEREST: "/oi"}

CLASS_NETWORK = "network"
CLASS_PARSE = "parse"
CLASS_APPLICATION = "application"
CLASS_CONFIG = "config"
CLASS_CACHE = "cache"

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class TickOutcome:
    """What a single poll decided; returned for logging and tests."""

    failure_class: str | None
    consecutive_failures: int
    alerted: bool = False
    suppressed: bool = False
    changed: bool = False
    notified_update: bool = False

    @property
    def ok(self) -> bool:
        return self.failure_class is None


def classify(result: FetchResult) -> str | None:
    """Return the failure class of a proxy response, or None when it carries fresh data."""

    if result.error == ERROR_NETWORK:
        return CLASS_NETWORK
    if result.error == ERROR_CONFIG:
        return CLASS_CONFIG

    body = result.parsed_body
    if isinstance(body, dict) and body.get("success") is False and "stage" in body:
        stage = body.get("stage")
        if stage == "upstream_status":
            return str(body.get("upstream_status"))
        return str(stage)

    if result.error == ERROR_APPLICATION:
        return CLASS_APPLICATION
    if not result.succeeded:
        return str(result.http_status)
    if body is None:
        return CLASS_PARSE
    if isinstance(body, dict) and body.get("fromCache") is True:
        return CLASS_CACHE
    return None


class ResourcePoller:
    """Serialized poll loop for one (resource, symbol) pair."""

    def __init__(
        self,
        resource: str,
        symbol: str,
        *,
        client: UpstreamAdapter,
        notifier: WebhookNotifier,
        deduper: AlertDeduplicator,
        failures: ConsecutiveFailureCounter,
        alert_threshold: int,
        notify_updates: bool = True,
    ) -> None:
        self.resource = resource
        self.symbol = symbol.upper()
        self.key = f"{resource}:{self.symbol}"
        self.client = client
        self.notifier = notifier
        self.deduper = deduper
        self.failures = failures
        self.alert_threshold = max(1, alert_threshold)
        self.notify_updates = notify_updates
        self.last_snapshot: str | None = None

    async def tick(self) -> TickOutcome:
        """Fetch once through the proxy, classify, and notify if warranted."""

        result = await self.client.fetch(self.resource, {"symbol": self.symbol})
        failure_class = classify(result)
        if failure_class is not None:
            return await self._on_failure(result, failure_class)
        return await self._on_success(result.parsed_body)

    async def _on_failure(self, result: FetchResult, failure_class: str) -> TickOutcome:
        count = self.failures.record_failure(self.key)
        outcome = TickOutcome(failure_class=failure_class, consecutive_failures=count)
        logger.warning(
            "monitor_fetch_failed",
            extra={
                "key": self.key,
                "class": failure_class,
                "status": result.http_status,
                "consecutive_failures": count,
            },
        )

        if count < self.alert_threshold:
            logger.info(
                "monitor_alert_below_threshold",
                extra={"key": self.key, "consecutive_failures": count, "threshold": self.alert_threshold},
            )
            return outcome

        alert_key = f"error:{self.key}:{failure_class}"
        if not self.deduper.allow(alert_key):
            outcome.suppressed = True
            logger.debug("monitor_alert_suppressed", extra={"alert_key": alert_key})
            return outcome

        message = build_error_message(self.resource, self.symbol, result, failure_class, count)
        await self.notifier.send(message)
        outcome.alerted = True
        logger.info("monitor_alert_sent", extra={"alert_key": alert_key})
        return outcome

    async def _on_success(self, body: Any) -> TickOutcome:
        self.failures.record_success(self.key)
        outcome = TickOutcome(failure_class=None, consecutive_failures=0)

        snapshot = snapshot_text(body)
        if snapshot == self.last_snapshot:
            return outcome

        self.last_snapshot = snapshot
        outcome.changed = True
        rate = extract_rate(body)
        logger.info(
            "monitor_update",
            extra={"key": self.key, "rate": rate, "snapshot": snapshot[:200]},
        )
        if not self.notify_updates:
            return outcome

        if rate is not None:
            marker = f"{rate:.8g}"
        else:
            marker = hashlib.sha1(snapshot.encode("utf-8")).hexdigest()[:12]
        update_key = f"update:{self.key}:{marker}"
        if self.deduper.allow(update_key):
            await self.notifier.send(build_update_message(self.resource, self.symbol, snapshot, rate))
            outcome.notified_update = True
        return outcome

    async def safe_tick(self) -> TickOutcome | None:
        """Run one tick, logging any exception instead of raising it."""

        try:
            return await self.tick()
        except asyncio.CancelledError:
            raise
        except Exception:  # noqa: BLE001
            logger.exception("monitor_tick_failed", extra={"key": self.key})
            return None

    async def run(self, stop_event: asyncio.Event, interval: float, clock: Clock = monotonic) -> None:
        """Tick on a fixed schedule until ``stop_event`` is set.

        Ticks never overlap: one that overruns its slot delays the next, which then
        starts immediately.
        """

        next_due = clock()
        while not stop_event.is_set():
            delay = next_due - clock()
            if delay > 0 and await _wait_for_stop(stop_event, delay):
                break
            await self.safe_tick()
            next_due += interval


async def _wait_for_stop(stop_event: asyncio.Event, timeout: float) -> bool:
    try:
        await asyncio.wait_for(stop_event.wait(), timeout=timeout)
    except asyncio.TimeoutError:
        return False
    return True


def _request_shutdown(
    shutdown_event: asyncio.Event, logger: logging.Logger, signal_name: str
) -> None:
    if shutdown_event.is_set():
        return
    logger.info("monitor_shutdown_signal", extra={"signal": signal_name})
    shutdown_event.set()


def _install_signal_handlers(shutdown_event: asyncio.Event, logger: logging.Logger) -> None:
    loop = asyncio.get_running_loop()

    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(
                sig,
                _request_shutdown,
                shutdown_event,
                logger,
                sig.name,
            )
        except NotImplementedError:
            signal_name = sig.name
            signal.signal(
                sig,
                lambda *_, signal_name=signal_name: _request_shutdown(
                    shutdown_event, logger, signal_name
                ),
            )


def build_proxy_client(
    settings: Settings, transport: httpx.AsyncBaseTransport | None = None
) -> UpstreamAdapter:
    """Client the monitor uses to call the proxy like any external caller would.

    Its timeout covers the proxy's full retry budget.
    """

    return UpstreamAdapter(
        base_url=settings.PROXY_BASE_URL,
        paths=PROXY_PATHS,
        timeout=settings.proxy_timeout_s(),
        transport=transport,
    )


def build_pollers(
    settings: Settings,
    client: UpstreamAdapter,
    notifier: WebhookNotifier,
) -> list[ResourcePoller]:
    """One poller per (resource, symbol), sharing a deduplicator and failure counter."""

    deduper = AlertDeduplicator(min_interval=settings.DEDUPE_MIN_INTERVAL_S)
    failures = ConsecutiveFailureCounter()
    return [
        ResourcePoller(
            resource,
            symbol,
            client=client,
            notifier=notifier,
            deduper=deduper,
            failures=failures,
            alert_threshold=settings.alert_threshold(),
            notify_updates=settings.NOTIFY_UPDATES,
        )
        for resource in settings.monitor_resources()
        for symbol in settings.monitor_symbols()
    ]


async def _run() -> int:
    settings = get_settings()
    configure_logging(settings.LOG_LEVEL)
    shutdown_event = asyncio.Event()

    resources = settings.monitor_resources()
    unknown = [resource for resource in resources if resource not in PROXY_PATHS]
    if not resources or unknown:
        logger.error("monitor_invalid_resources", extra={"resources": list(resources), "unknown": unknown})
        return 1
    if settings.POLL_INTERVAL_S <= 0:
        logger.error("monitor_invalid_interval", extra={"interval_s": settings.POLL_INTERVAL_S})
        return 1

    client = build_proxy_client(settings)
    notifier = WebhookNotifier(settings.DISCORD_WEBHOOK_URL, timeout=settings.WEBHOOK_TIMEOUT_S)
    if not notifier.enabled:
        logger.warning("monitor_webhook_missing")

    pollers = build_pollers(settings, client, notifier)
    _install_signal_handlers(shutdown_event, logger)
    logger.info(
        "monitor_startup",
        extra={
            "proxy": client.base_url,
            "proxy_timeout_s": client.timeout,
            "symbols": list(settings.monitor_symbols()),
            "resources": list(resources),
            "interval_s": settings.POLL_INTERVAL_S,
            "alert_threshold": settings.alert_threshold(),
            "dedupe_min_interval_s": settings.DEDUPE_MIN_INTERVAL_S,
        },
    )

    try:
        if settings.NOTIFY_STARTUP:
            await notifier.send(
                build_started_message(list(settings.monitor_symbols()), list(resources))
            )
        await asyncio.gather(
            *(poller.run(shutdown_event, settings.POLL_INTERVAL_S) for poller in pollers)
        )
    finally:
        await client.aclose()
        await notifier.aclose()

    logger.info("monitor_shutdown")
    return 0


def main() -> int:
    """Run the monitor process until interrupted."""

    try:
        return asyncio.run(_run())
    except KeyboardInterrupt:
        return 0


if __name__ == "__main__":
    raise SystemExit(main())
