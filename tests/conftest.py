"""Shared fakes: a hand-driven clock, a recording sleep and mock-transport adapters."""

from collections.abc import Callable

import httpx
import pytest

from fundingwatch.core.upstream import UpstreamAdapter

UPSTREAM_BASE = "https://upstream.test"
UPSTREAM_PATHS = {
    "funding": "/api/futures/funding-rate/exchange-list",
    "open-interest": "/api/futures/open-interest/exchange-list",
}


class FakeClock:
    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingSleep:
    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def recording_sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def make_adapter() -> Callable[..., UpstreamAdapter]:
    """Build an adapter whose HTTP calls are answered by ``handler``."""

    def _make(
        handler: Callable[[httpx.Request], httpx.Response],
        *,
        base_url: str = UPSTREAM_BASE,
        paths: dict[str, str] | None = None,
        api_key: str = "",
    ) -> UpstreamAdapter:
        return UpstreamAdapter(
            base_url=base_url,
            paths=UPSTREAM_PATHS if paths is None else paths,
            api_key=api_key,
            transport=httpx.MockTransport(handler),
        )

    return _make
