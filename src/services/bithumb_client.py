from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any

import requests
from requests.adapters import HTTPAdapter
from urllib3.util import Retry


class BithumbAPIError(RuntimeError):
    def __init__(self, message: str, *, status_code: int | None = None, payload: Any | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.payload = payload


@dataclass(frozen=True)
class TradeTick:
    market: str
    trade_price: Decimal
    trade_volume: Decimal | None
    timestamp: datetime | None
    sequential_id: int | None


class BithumbClient:
    """Public Bithumb REST API client (no key required for market data)."""

    def __init__(
        self,
        *,
        base_url: str = "https://api.bithumb.com",
        timeout: float = 10.0,
        session: requests.Session | None = None,
        retry_attempts: int = 5,
        retry_backoff_seconds: float = 1,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._session = session or requests.Session()

        retry = Retry(
            total=retry_attempts,
            backoff_factor=retry_backoff_seconds,
            status_forcelist={429},
            allowed_methods={"GET"},
        )
        adapter = HTTPAdapter(max_retries=retry)
        self._session.mount("https://", adapter)
        self._session.mount("http://", adapter)

    def get_recent_trades(self, *, symbol: str, quote: str = "KRW", count: int = 1) -> list[TradeTick]:
        if not symbol:
            msg = "symbol must be provided"
            raise ValueError(msg)
        if count <= 0:
            msg = "count must be > 0"
            raise ValueError(msg)

        market = f"{quote.upper()}-{symbol.upper()}"
        payload = self._request("GET", "/v1/trades/ticks", params={"market": market, "count": count})
        return [self._parse_tick(entry) for entry in payload]

    def get_last_price(self, *, symbol: str, quote: str = "KRW") -> Decimal:
        ticks = self.get_recent_trades(symbol=symbol, quote=quote, count=1)
        if not ticks:
            raise BithumbAPIError(f"Bithumb returned no trades for {quote.upper()}-{symbol.upper()}")
        return ticks[0].trade_price

    def _request(self, method: str, path: str, *, params: dict[str, Any] | None = None) -> list[dict[str, Any]]:
        url = f"{self.base_url}{path}"
        try:
            response = self._session.request(method, url, params=params, timeout=self.timeout)
            response.raise_for_status()
        except requests.HTTPError as exc:
            resp = exc.response
            status_code = getattr(resp, "status_code", None)
            error_payload: Any | None = None
            message = "Bithumb API request failed"
            if resp is not None:
                try:
                    error_payload = resp.json()
                    err = error_payload.get("error") if isinstance(error_payload, dict) else None
                    if isinstance(err, dict) and err.get("message"):
                        message = err["message"]
                except ValueError:
                    error_payload = resp.text
            raise BithumbAPIError(message, status_code=status_code, payload=error_payload) from exc
        except requests.RequestException as exc:
            status_code = getattr(getattr(exc, "response", None), "status_code", None)
            raise BithumbAPIError("Bithumb API request failed", status_code=status_code) from exc

        try:
            payload = response.json()
        except ValueError as exc:
            raise BithumbAPIError("Bithumb API returned invalid JSON", payload=response.text) from exc

        if isinstance(payload, dict) and isinstance(payload.get("error"), dict):
            raise BithumbAPIError(
                payload["error"].get("message", "Bithumb API error"), status_code=response.status_code, payload=payload
            )
        if not isinstance(payload, list):
            raise BithumbAPIError("Bithumb API returned unexpected payload type", payload=payload)
        return payload

    @staticmethod
    def _parse_tick(entry: dict[str, Any]) -> TradeTick:
        price_raw = entry.get("trade_price")
        if price_raw is None:
            raise BithumbAPIError("Bithumb tick missing trade_price field", payload=entry)

        ts_raw = entry.get("timestamp")
        volume_raw = entry.get("trade_volume")
        seq_raw = entry.get("sequential_id")
        return TradeTick(
            market=str(entry.get("market", "")),
            trade_price=Decimal(str(price_raw)),
            trade_volume=Decimal(str(volume_raw)) if volume_raw is not None else None,
            timestamp=datetime.fromtimestamp(int(ts_raw) / 1000, tz=timezone.utc) if ts_raw is not None else None,
            sequential_id=int(seq_raw) if seq_raw is not None else None,
        )


__all__ = ["BithumbAPIError", "BithumbClient", "TradeTick"]
