from __future__ import annotations

from decimal import Decimal

from domain.exchange_rate import ExchangeRate


def format_decimal(value: Decimal) -> str:
    normalized = value.normalize()
    # Avoid scientific notation for integers.
    if normalized == normalized.to_integral():
        return f"{normalized:.0f}"
    return format(normalized, "f")


def format_rate(record: ExchangeRate) -> str:
    return (
        f"{record.pair}: {format_decimal(record.rate)} "
        f"(bid {format_decimal(record.bid_rate)}, ask {format_decimal(record.ask_rate)}, "
        f"spread {format_decimal(record.spread)})"
    )
