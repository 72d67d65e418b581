from __future__ import annotations

from enum import StrEnum
from typing import NewType
from uuid import UUID

Address = NewType("Address", str)
CurrencyCode = NewType("CurrencyCode", str)
RateId = NewType("RateId", UUID)
FeeConfigId = NewType("FeeConfigId", UUID)
DomainId = NewType("DomainId", UUID)


class SwapType(StrEnum):
    """Swap directions the operator prices.

    A is the native ledger asset (XRP), B the issued token (KRW IOU).
    """

    A_TO_B = "A_TO_B"
    B_TO_A = "B_TO_A"
    TRANSFER = "TRANSFER"


class FeeType(StrEnum):
    PERCENTAGE = "PERCENTAGE"
    FIXED = "FIXED"
    TIERED = "TIERED"


class RateSource(StrEnum):
    MANUAL = "MANUAL"
    API = "API"
    EXCHANGE = "EXCHANGE"
    SYSTEM = "SYSTEM"
    BATCH_UPDATE = "BATCH_UPDATE"


class ConversionDirection(StrEnum):
    BASE_TO_QUOTE = "base_to_quote"
    QUOTE_TO_BASE = "quote_to_base"


class DomainType(StrEnum):
    WHITELIST = "whitelist"
    BLACKLIST = "blacklist"
    KYC_REQUIRED = "kyc_required"


class DomainStatus(StrEnum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    SUSPENDED = "suspended"


class KycStatus(StrEnum):
    PENDING = "pending"
    VERIFIED = "verified"
    REJECTED = "rejected"


__all__ = [
    "Address",
    "ConversionDirection",
    "CurrencyCode",
    "DomainId",
    "DomainStatus",
    "DomainType",
    "FeeConfigId",
    "FeeType",
    "KycStatus",
    "RateId",
    "RateSource",
    "SwapType",
]
