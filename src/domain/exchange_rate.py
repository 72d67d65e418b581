from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, computed_field, model_validator

from domain.base_types import ConversionDirection, CurrencyCode, RateId, RateSource
from domain.errors import ValidationError


class ExchangeRate(BaseModel):
    """Versioned exchange rate: 1 ``base_currency`` = ``rate`` ``quote_currency``.

    Bid and ask are derived from ``rate`` and ``spread`` on every access, so a
    record produced by ``reprice`` can never carry stale bid/ask values.
    """

    model_config = ConfigDict(frozen=True)

    id: RateId = RateId(Field(default_factory=uuid4))
    base_currency: CurrencyCode
    quote_currency: CurrencyCode
    rate: Decimal
    spread: Decimal = Decimal("0.001")
    is_active: bool = True
    valid_from: datetime
    valid_to: datetime | None = None
    source: RateSource = RateSource.MANUAL
    source_metadata: dict[str, Any] = Field(default_factory=dict)
    created_by: str
    created_at: datetime | None = None

    @model_validator(mode="after")
    def _validate_fields(self) -> ExchangeRate:
        if self.rate < 0:
            raise ValueError("rate must be >= 0")
        if self.spread < 0:
            raise ValueError("spread must be >= 0")
        if self.base_currency == self.quote_currency:
            raise ValueError("base_currency and quote_currency must differ")
        return self

    @computed_field  # type: ignore[prop-decorator]
    @property
    def bid_rate(self) -> Decimal:
        return self.rate * (1 - self.spread)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def ask_rate(self) -> Decimal:
        return self.rate * (1 + self.spread)

    @property
    def pair(self) -> str:
        return f"{self.base_currency}/{self.quote_currency}"

    def is_current(self, at: datetime) -> bool:
        if not self.is_active or self.valid_from > at:
            return False
        return self.valid_to is None or self.valid_to >= at


class Conversion(BaseModel):
    original_amount: Decimal
    original_currency: CurrencyCode
    converted_amount: Decimal
    converted_currency: CurrencyCode
    rate: Decimal
    direction: ConversionDirection
    spread_applied: bool = False


def reprice(record: ExchangeRate, *, rate: Decimal | None = None, spread: Decimal | None = None) -> ExchangeRate:
    update: dict[str, Decimal] = {}
    if rate is not None:
        update["rate"] = rate
    if spread is not None:
        update["spread"] = spread
    return ExchangeRate.model_validate({**record.model_dump(exclude={"bid_rate", "ask_rate"}), **update})


def deactivate(record: ExchangeRate, at: datetime) -> ExchangeRate:
    valid_to = record.valid_to if record.valid_to is not None and record.valid_to < at else at
    return record.model_copy(update={"is_active": False, "valid_to": valid_to})


def convert(amount: Decimal, rate: Decimal, direction: ConversionDirection) -> Decimal:
    if direction is ConversionDirection.BASE_TO_QUOTE:
        return amount * rate
    if rate == 0:
        raise ValidationError("Cannot convert with a zero exchange rate")
    return amount / rate


def swap_rate(record: ExchangeRate, direction: ConversionDirection) -> Decimal:
    # Selling base is priced at bid, buying base at ask; the spread always favours the operator.
    if direction is ConversionDirection.BASE_TO_QUOTE:
        return record.bid_rate
    return record.ask_rate


def direction_for(record: ExchangeRate, from_currency: str) -> ConversionDirection:
    source = from_currency.upper()
    if source == record.base_currency:
        return ConversionDirection.BASE_TO_QUOTE
    if source == record.quote_currency:
        return ConversionDirection.QUOTE_TO_BASE
    raise ValidationError(f"Currency {from_currency} is not part of {record.pair}")


def convert_with(
    record: ExchangeRate,
    amount: Decimal,
    direction: ConversionDirection,
    *,
    include_spread: bool = False,
) -> Conversion:
    applied_rate = swap_rate(record, direction) if include_spread else record.rate
    if direction is ConversionDirection.BASE_TO_QUOTE:
        original, target = record.base_currency, record.quote_currency
    else:
        original, target = record.quote_currency, record.base_currency
    return Conversion(
        original_amount=amount,
        original_currency=original,
        converted_amount=convert(amount, applied_rate, direction),
        converted_currency=target,
        rate=applied_rate,
        direction=direction,
        spread_applied=include_spread,
    )


__all__ = [
    "Conversion",
    "ExchangeRate",
    "convert",
    "convert_with",
    "deactivate",
    "direction_for",
    "reprice",
    "swap_rate",
]
