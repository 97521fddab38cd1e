"""Best-effort readers for drifting payload shapes."""

from fundingwatch.core.extract import (
    detect_application_error,
    extract_rate,
    extract_snapshot,
    snapshot_text,
)

COINGLASS_FUNDING = {
    "code": "0",
    "msg": "success",
    "data": [
        {
            "symbol": "BTC",
            "stablecoin_margin_list": [
                {"exchange": "Binance", "funding_rate": "0.0100", "next_funding_time": 1},
                {"exchange": "OKX", "funding_rate": 0.008},
            ],
            "token_margin_list": [],
        }
    ],
}


def test_snapshot_prefers_first_data_element() -> None:
    assert extract_snapshot(COINGLASS_FUNDING)["symbol"] == "BTC"
    assert extract_snapshot({"data": {"rate": 1}}) == {"rate": 1}
    assert extract_snapshot({"open_interest_usd": 5}) == {"open_interest_usd": 5}
    assert extract_snapshot({"data": []}) == {"data": []}
    assert extract_snapshot("raw text") == "raw text"


def test_rate_from_nested_exchange_list() -> None:
    assert extract_rate(COINGLASS_FUNDING) == 0.01


def test_rate_candidate_order() -> None:
    assert extract_rate({"data": {"value": 3, "fundingRate": "0.5"}}) == 0.5
    assert extract_rate({"open_interest_usd": 123.0}) == 123.0
    assert extract_rate({"data": {"rate": True, "value": "7"}}) == 7.0
    assert extract_rate({"data": {"note": "nothing"}}) is None
    assert extract_rate([1, 2]) is None


def test_application_error_flags() -> None:
    assert detect_application_error({"code": "0", "data": []}) is None
    assert detect_application_error({"success": True}) is None
    assert detect_application_error([{"code": 5}]) is None
    assert detect_application_error({"success": False, "message": "nope"}) == "nope"
    assert detect_application_error({"code": "30001", "msg": "bad key"}) == "code=30001: bad key"
    assert detect_application_error({"code": 1}) == "code=1: application error"


def test_snapshot_text_is_stable_and_truncated() -> None:
    assert snapshot_text({"data": {"b": 1, "a": 2}}) == '{"a":2,"b":1}'
    assert len(snapshot_text({"data": {"x": "y" * 5000}})) == 1000
