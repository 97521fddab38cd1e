"""Best-effort readers for market-data payloads whose shape drifts between API versions."""

import json
from typing import Any

# Checked in order; the first numeric hit wins.
RATE_FIELD_CANDIDATES = (
    "funding_rate",
    "fundingRate",
    "rate",
    "open_interest_usd",
    "openInterestUsd",
    "open_interest",
    "openInterest",
    "value",
)
_NESTED_LIST_FIELDS = ("stablecoin_margin_list", "token_margin_list")
_SUCCESS_CODES = (0, "0", 200, "200")
_MESSAGE_FIELDS = ("msg", "message", "error")


def _as_float(value: Any) -> float | None:
    if isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def detect_application_error(body: Any) -> str | None:
    """Return a short reason when a 2xx body carries an application-level error flag."""

    if not isinstance(body, dict):
        return None

    flagged = body.get("success") is False
    if "code" in body and body["code"] not in _SUCCESS_CODES:
        flagged = True
    if not flagged:
        return None

    for field in _MESSAGE_FIELDS:
        message = body.get(field)
        if isinstance(message, str) and message:
            break
    else:
        message = "application error"

    code = body.get("code")
    if code is None:
        return message
    return f"code={code}: {message}"


def extract_snapshot(body: Any) -> Any:
    """Pick the part of a payload that represents the current value."""

    if not isinstance(body, dict):
        return body

    data = body.get("data")
    if isinstance(data, list):
        if data:
            return data[0]
        return body
    if data:
        return data
    return body


def extract_rate(body: Any) -> float | None:
    """Find the first numeric field from RATE_FIELD_CANDIDATES, or None."""

    snapshot = extract_snapshot(body)
    if not isinstance(snapshot, dict):
        return _as_float(snapshot)

    candidates = [snapshot]
    for field in _NESTED_LIST_FIELDS:
        nested = snapshot.get(field)
        if isinstance(nested, list) and nested and isinstance(nested[0], dict):
            candidates.append(nested[0])

    for candidate in candidates:
        for field in RATE_FIELD_CANDIDATES:
            if field not in candidate:
                continue
            value = _as_float(candidate[field])
            if value is not None:
                return value
    return None


def snapshot_text(body: Any, limit: int = 1000) -> str:
    """Stable, truncated text form of a payload's snapshot for change detection."""

    text = json.dumps(
        extract_snapshot(body),
        ensure_ascii=True,
        separators=(",", ":"),
        sort_keys=True,
        default=str,
    )
    return text[:limit]
