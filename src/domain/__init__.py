"""Domain models and pure rules for the KRW IOU swap engine.

Pydantic models for exchange rates, fee configs and the permissioned domain,
plus the functions that price and validate swaps. They are independent from
persistence models so the pricing rules can be tested without a database.
"""

__all__ = [
    "access",
    "exchange_rate",
    "fee",
    "swap",
]
