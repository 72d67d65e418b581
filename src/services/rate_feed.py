from __future__ import annotations

import logging
from decimal import Decimal
from typing import Protocol

from domain.base_types import RateSource
from domain.exchange_rate import ExchangeRate

from .rate_registry import RateRegistry

logger = logging.getLogger(__name__)


class LastPriceSource(Protocol):
    def get_last_price(self, *, symbol: str, quote: str = "KRW") -> Decimal: ...


class RateFeed:
    """Pulls the latest traded price from an exchange and records it as the current rate."""

    def __init__(
        self,
        *,
        source: LastPriceSource,
        registry: RateRegistry,
        quote_currency: str = "KRW",
        provider: str = "bithumb",
    ) -> None:
        self.source = source
        self.registry = registry
        self.quote_currency = quote_currency.upper()
        self.provider = provider

    def refresh(self, symbol: str) -> ExchangeRate:
        price = self.source.get_last_price(symbol=symbol, quote=self.quote_currency)
        logger.info("Fetched %s/%s price %s from %s", symbol.upper(), self.quote_currency, price, self.provider)
        return self.registry.set_rate(
            symbol,
            self.quote_currency,
            price,
            source=RateSource.API,
            source_metadata={"provider": self.provider, "confidence": 1.0},
            created_by="SYSTEM",
        )


__all__ = ["LastPriceSource", "RateFeed"]
