from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import timedelta
from decimal import Decimal
from typing import Any, Iterable

from db.repositories import ExchangeRateRepository
from domain.base_types import ConversionDirection, RateId, RateSource
from domain.errors import NotFoundError, SwapEngineError
from domain.exchange_rate import Conversion, ExchangeRate, convert, convert_with, deactivate, direction_for
from domain.validation import require_currency
from utils.clock import Clock, utc_now

logger = logging.getLogger(__name__)

STATISTICS_PERIODS = {
    "1h": timedelta(hours=1),
    "24h": timedelta(hours=24),
    "7d": timedelta(days=7),
    "30d": timedelta(days=30),
}


@dataclass(frozen=True)
class RateUpdate:
    base_currency: str
    quote_currency: str
    rate: Decimal
    spread: Decimal | None = None
    source: RateSource = RateSource.BATCH_UPDATE
    source_metadata: dict[str, Any] | None = None


@dataclass(frozen=True)
class RateUpdateOutcome:
    pair: str
    success: bool
    rate: Decimal
    rate_id: RateId | None = None
    error: str | None = None


@dataclass(frozen=True)
class RateStatistics:
    pair: str
    period: str
    count: int
    avg_rate: Decimal
    min_rate: Decimal
    max_rate: Decimal
    first_rate: Decimal
    last_rate: Decimal

    @property
    def change(self) -> Decimal:
        return self.last_rate - self.first_rate

    @property
    def change_percent(self) -> Decimal:
        if self.first_rate <= 0:
            return Decimal(0)
        return (self.last_rate - self.first_rate) / self.first_rate * 100


class RateRegistry:
    """Resolves and versions exchange rates per currency pair."""

    def __init__(
        self,
        repository: ExchangeRateRepository,
        *,
        default_spread: Decimal = Decimal("0.001"),
        clock: Clock = utc_now,
    ) -> None:
        self.repository = repository
        self.default_spread = default_spread
        self._clock = clock

    def find_current_rate(self, base_currency: str, quote_currency: str) -> ExchangeRate | None:
        base = require_currency(base_currency)
        quote = require_currency(quote_currency)
        return self.repository.find_current(base, quote, self._clock())

    def get_current_rate(self, base_currency: str, quote_currency: str) -> ExchangeRate:
        record = self.find_current_rate(base_currency, quote_currency)
        if record is None:
            raise NotFoundError(f"No active {base_currency.upper()}/{quote_currency.upper()} exchange rate found")
        return record

    def set_rate(
        self,
        base_currency: str,
        quote_currency: str,
        rate: Decimal,
        *,
        spread: Decimal | None = None,
        source: RateSource = RateSource.MANUAL,
        source_metadata: dict[str, Any] | None = None,
        created_by: str = "admin_update",
    ) -> ExchangeRate:
        now = self._clock()
        record = ExchangeRate(
            base_currency=require_currency(base_currency),
            quote_currency=require_currency(quote_currency),
            rate=rate,
            spread=self.default_spread if spread is None else spread,
            valid_from=now,
            source=source,
            source_metadata={**(source_metadata or {}), "last_updated": now.isoformat()},
            created_by=created_by,
            created_at=now,
        )
        self.repository.replace_active(record)
        logger.info("Exchange rate %s set to %s (spread=%s, source=%s)", record.pair, rate, record.spread, source)
        return record

    def deactivate_rate(self, rate_id: RateId) -> ExchangeRate:
        record = self.repository.get(rate_id)
        if record is None:
            raise NotFoundError(f"Exchange rate {rate_id} not found")
        retired = self.repository.save(deactivate(record, self._clock()))
        logger.info("Exchange rate %s (%s) deactivated", retired.pair, rate_id)
        return retired

    def batch_update_rates(self, updates: Iterable[RateUpdate], *, created_by: str = "admin_batch") -> list[RateUpdateOutcome]:
        outcomes: list[RateUpdateOutcome] = []
        for item in updates:
            pair = f"{item.base_currency.upper()}/{item.quote_currency.upper()}"
            try:
                record = self.set_rate(
                    item.base_currency,
                    item.quote_currency,
                    item.rate,
                    spread=item.spread,
                    source=item.source,
                    source_metadata=item.source_metadata,
                    created_by=created_by,
                )
            except (SwapEngineError, ValueError) as exc:
                logger.warning("Batch rate update for %s failed: %s", pair, exc)
                outcomes.append(RateUpdateOutcome(pair=pair, success=False, rate=item.rate, error=str(exc)))
                continue
            outcomes.append(RateUpdateOutcome(pair=pair, success=True, rate=item.rate, rate_id=record.id))
        return outcomes

    def rate_history(self, base_currency: str, quote_currency: str, *, limit: int = 50) -> list[ExchangeRate]:
        return self.repository.history(require_currency(base_currency), require_currency(quote_currency), limit=limit)

    def rate_statistics(self, base_currency: str, quote_currency: str, *, period: str = "24h") -> RateStatistics:
        window = STATISTICS_PERIODS.get(period, STATISTICS_PERIODS["24h"])
        base = require_currency(base_currency)
        quote = require_currency(quote_currency)
        records = self.repository.created_since(base, quote, self._clock() - window)
        rates = [record.rate for record in records]
        zero = Decimal(0)
        return RateStatistics(
            pair=f"{base}/{quote}",
            period=period if period in STATISTICS_PERIODS else "24h",
            count=len(rates),
            avg_rate=sum(rates, start=zero) / len(rates) if rates else zero,
            min_rate=min(rates, default=zero),
            max_rate=max(rates, default=zero),
            first_rate=rates[0] if rates else zero,
            last_rate=rates[-1] if rates else zero,
        )

    def calculate_swap_rate(
        self,
        amount: Decimal,
        from_currency: str,
        to_currency: str,
        *,
        include_spread: bool = True,
    ) -> Conversion:
        """Convert ``amount`` using whichever orientation of the pair is on record."""
        record = self.find_current_rate(from_currency, to_currency) or self.find_current_rate(to_currency, from_currency)
        if record is None:
            raise NotFoundError(f"No exchange rate found for {from_currency.upper()}/{to_currency.upper()}")
        return convert_with(record, amount, direction_for(record, from_currency), include_spread=include_spread)

    def initialize_default_rate(
        self,
        base_currency: str,
        quote_currency: str,
        rate: Decimal,
        *,
        spread: Decimal | None = None,
    ) -> ExchangeRate | None:
        if self.find_current_rate(base_currency, quote_currency) is not None:
            logger.info("%s/%s exchange rate already exists", base_currency.upper(), quote_currency.upper())
            return None
        return self.set_rate(
            base_currency,
            quote_currency,
            rate,
            spread=spread,
            source=RateSource.SYSTEM,
            source_metadata={"provider": "SYSTEM_INIT", "confidence": 1.0},
            created_by="system_init",
        )

    @staticmethod
    def convert(amount: Decimal, rate: Decimal, direction: ConversionDirection) -> Decimal:
        return convert(amount, rate, direction)


__all__ = ["RateRegistry", "RateStatistics", "RateUpdate", "RateUpdateOutcome", "STATISTICS_PERIODS"]
