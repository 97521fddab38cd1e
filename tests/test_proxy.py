"""Proxy routes: pass-through, cache fallback, structured failures and health metadata."""

import httpx
import pytest
from fastapi.testclient import TestClient

from fundingwatch.core.cache import ResponseCache
from fundingwatch.core.config import Settings
from fundingwatch.services.proxy.main import ProxyHandler, create_app

PAYLOAD = {"code": "0", "msg": "success", "data": [{"symbol": "BTC", "funding_rate": 0.01}]}


class Upstream:
    """Scriptable upstream: set ``response`` (or an exception) between requests."""

    def __init__(self) -> None:
        self.response: httpx.Response | Exception = httpx.Response(200, json=PAYLOAD)
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if isinstance(self.response, Exception):
            raise self.response
        return self.response


@pytest.fixture
def upstream() -> Upstream:
    return Upstream()


@pytest.fixture
def settings() -> Settings:
    return Settings(APP_NAME="Funding Watch Test", VERSION="9.9.9", ENV="test", UPSTREAM_API_KEY="k")


@pytest.fixture
def proxy(make_adapter, upstream, clock, recording_sleep) -> ProxyHandler:
    return ProxyHandler(
        make_adapter(upstream),
        ResponseCache(default_ttl=15, clock=clock),
        max_attempts=3,
        initial_backoff=0.5,
        cache_ttl=15,
        sleep=recording_sleep,
    )


@pytest.fixture
def client(settings, proxy) -> TestClient:
    return TestClient(create_app(settings, handler=proxy), raise_server_exceptions=False)


def test_funding_passes_upstream_body_through(client, upstream) -> None:
    response = client.get("/funding", params={"symbol": "eth"})

    assert response.status_code == 200
    assert response.json() == PAYLOAD
    assert upstream.requests[0].url.params["symbol"] == "ETH"


def test_missing_symbol_defaults_to_btc(client, upstream) -> None:
    client.get("/funding")
    client.get("/oi", params={"symbol": "  "})

    assert [request.url.params["symbol"] for request in upstream.requests] == ["BTC", "BTC"]
    assert upstream.requests[1].url.path.endswith("/open-interest/exchange-list")


def test_open_interest_alias(client, upstream) -> None:
    response = client.get("/open-interest", params={"symbol": "SOL"})

    assert response.status_code == 200
    assert upstream.requests[0].url.path == "/api/futures/open-interest/exchange-list"


def test_cache_fallback_within_ttl(client, upstream, clock, recording_sleep) -> None:
    """A failure 10 s after a good fetch serves the cached payload tagged fromCache."""

    assert client.get("/funding", params={"symbol": "BTC"}).status_code == 200

    upstream.response = httpx.Response(503, text="unavailable")
    clock.advance(10)
    response = client.get("/funding", params={"symbol": "BTC"})

    assert response.status_code == 200
    body = response.json()
    assert body["fromCache"] is True
    assert body["data"] == PAYLOAD
    assert body["upstream_status"] == 503
    assert body["stage"] == "upstream_status"
    assert "upstream failed" in body["note"]
    assert recording_sleep.delays == [0.5, 1.0]


def test_expired_cache_is_a_full_failure(client, upstream, clock) -> None:
    client.get("/funding", params={"symbol": "BTC"})

    upstream.response = httpx.Response(503, text="unavailable")
    clock.advance(16)
    response = client.get("/funding", params={"symbol": "BTC"})

    assert response.status_code == 502
    body = response.json()
    assert body["success"] is False
    assert body["upstream_status"] == 503
    assert "fromCache" not in body


def test_cache_is_keyed_by_symbol(client, upstream) -> None:
    client.get("/funding", params={"symbol": "BTC"})

    upstream.response = httpx.Response(500, text="boom")
    response = client.get("/funding", params={"symbol": "ETH"})

    assert response.status_code == 502
    assert response.json()["success"] is False


def test_network_failure_without_cache(client, upstream) -> None:
    upstream.response = httpx.ConnectError("connection refused", request=httpx.Request("GET", "https://x"))

    response = client.get("/funding")

    assert response.status_code == 504
    body = response.json()
    assert body == {
        "success": False,
        "upstream_status": "network",
        "stage": "network",
        "message": "upstream unreachable: connection refused",
    }
    assert len(upstream.requests) == 3


def test_client_error_is_not_retried_and_message_is_truncated(client, upstream) -> None:
    upstream.response = httpx.Response(403, text="denied " * 1000)

    response = client.get("/funding")

    assert response.status_code == 502
    body = response.json()
    assert body["upstream_status"] == 403
    assert len(body["message"]) <= 1500
    assert len(upstream.requests) == 1


def test_application_error_body(client, upstream) -> None:
    upstream.response = httpx.Response(200, json={"code": "40001", "msg": "invalid symbol"})

    body = client.get("/funding", params={"symbol": "NOPE"}).json()

    assert body["stage"] == "application"
    assert body["upstream_status"] == 200
    assert "invalid symbol" in body["message"]


def test_non_json_success_is_a_parse_failure(client, upstream) -> None:
    upstream.response = httpx.Response(200, text="<html>maintenance</html>")

    response = client.get("/funding")

    assert response.status_code == 502
    assert response.json()["stage"] == "parse"


def test_config_error_is_400(settings, make_adapter, upstream, recording_sleep) -> None:
    handler = ProxyHandler(
        make_adapter(upstream, paths={}),
        ResponseCache(default_ttl=15),
        max_attempts=3,
        initial_backoff=0.5,
        cache_ttl=15,
        sleep=recording_sleep,
    )
    client = TestClient(create_app(settings, handler=handler))

    response = client.get("/funding")

    assert response.status_code == 400
    assert response.json()["stage"] == "config"
    assert upstream.requests == []


def test_unexpected_exception_still_returns_json(client, upstream) -> None:
    upstream.response = RuntimeError("kaboom")

    response = client.get("/funding")

    assert response.status_code == 500
    assert response.json() == {"success": False, "stage": "internal", "message": "kaboom"}


def test_unknown_route_is_json_404(client) -> None:
    response = client.get("/liquidations")

    assert response.status_code == 404
    assert response.json()["success"] is False
    assert response.json()["stage"] == "route"


def test_health_and_metadata(client) -> None:
    health = client.get("/healthz").json()
    assert health["ok"] is True
    assert health["ts"]

    assert client.get("/version").json() == {
        "name": "Funding Watch Test",
        "version": "9.9.9",
        "env": "test",
    }
    assert "/funding" in client.get("/").json()["routes"]


def test_lifespan_closes_upstream_client(settings, proxy) -> None:
    with TestClient(create_app(settings, handler=proxy)) as client:
        assert client.get("/healthz").status_code == 200

    assert proxy.adapter.client.is_closed
