from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from unittest.mock import Mock

import pytest
import requests

from services.bithumb_client import BithumbAPIError, BithumbClient


def _mock_response(payload: object, status_code: int = 200) -> Mock:
    response = Mock()
    response.status_code = status_code
    response.json.return_value = payload
    response.text = "payload"
    response.raise_for_status.return_value = None
    return response


def test_get_last_price_parses_tick() -> None:
    session = Mock()
    session.request.return_value = _mock_response(
        [
            {
                "market": "KRW-XRP",
                "trade_date_utc": "2023-11-14",
                "trade_price": 4197.5,
                "trade_volume": "12.5",
                "timestamp": 1_700_000_000_000,
                "sequential_id": 17000000000001,
            }
        ]
    )

    client = BithumbClient(session=session)
    ticks = client.get_recent_trades(symbol="xrp")

    assert ticks[0].trade_price == Decimal("4197.5")
    assert ticks[0].trade_volume == Decimal("12.5")
    assert ticks[0].timestamp == datetime(2023, 11, 14, 22, 13, 20, tzinfo=timezone.utc)
    assert client.get_last_price(symbol="XRP") == Decimal("4197.5")

    kwargs = session.request.call_args.kwargs
    assert kwargs["params"] == {"market": "KRW-XRP", "count": 1}
    assert session.request.call_args.args == ("GET", "https://api.bithumb.com/v1/trades/ticks")


def test_error_payload_raises() -> None:
    session = Mock()
    session.request.return_value = _mock_response({"error": {"name": "400", "message": "Code not found"}})

    with pytest.raises(BithumbAPIError, match="Code not found"):
        BithumbClient(session=session).get_last_price(symbol="NOPE")


def test_no_trades_raises() -> None:
    session = Mock()
    session.request.return_value = _mock_response([])

    with pytest.raises(BithumbAPIError):
        BithumbClient(session=session).get_last_price(symbol="XRP")


def test_tick_without_price_raises() -> None:
    session = Mock()
    session.request.return_value = _mock_response([{"market": "KRW-XRP"}])

    with pytest.raises(BithumbAPIError):
        BithumbClient(session=session).get_recent_trades(symbol="XRP")


def test_invalid_arguments() -> None:
    client = BithumbClient(session=Mock())

    with pytest.raises(ValueError):
        client.get_recent_trades(symbol="")
    with pytest.raises(ValueError):
        client.get_recent_trades(symbol="XRP", count=0)


def test_rate_limited_requests_are_retried() -> None:
    session = requests.Session()
    BithumbClient(session=session, retry_attempts=3)

    retry = session.get_adapter("https://api.bithumb.com/v1/trades/ticks").max_retries

    assert retry.total == 3
    assert 429 in retry.status_forcelist
    assert "GET" in retry.allowed_methods
