from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, model_validator

from domain.base_types import FeeConfigId, FeeType, SwapType
from domain.errors import ValidationError


class FeeTier(BaseModel):
    model_config = ConfigDict(frozen=True)

    min_amount: Decimal
    max_amount: Decimal | None = None
    fee_rate: Decimal

    @model_validator(mode="after")
    def _validate_fields(self) -> FeeTier:
        if self.min_amount < 0:
            raise ValueError("min_amount must be >= 0")
        if self.fee_rate < 0:
            raise ValueError("fee_rate must be >= 0")
        return self

    def contains(self, amount: Decimal) -> bool:
        return amount >= self.min_amount and (self.max_amount is None or amount <= self.max_amount)


class FeeConfig(BaseModel):
    """Time-windowed fee policy for one swap type.

    ``tiered_rates`` is kept in the order the operator supplied it; the first
    containing tier wins, later overlapping tiers are never consulted.
    """

    model_config = ConfigDict(frozen=True)

    id: FeeConfigId = FeeConfigId(Field(default_factory=uuid4))
    swap_type: SwapType
    fee_type: FeeType = FeeType.PERCENTAGE
    base_fee: Decimal = Decimal("0.003")
    min_fee: Decimal = Decimal(0)
    max_fee: Decimal | None = None
    tiered_rates: tuple[FeeTier, ...] = ()
    is_active: bool = True
    effective_from: datetime
    effective_to: datetime | None = None
    description: str = ""
    created_by: str
    created_at: datetime | None = None

    @model_validator(mode="after")
    def _validate_fields(self) -> FeeConfig:
        if self.base_fee < 0:
            raise ValueError("base_fee must be >= 0")
        if self.min_fee < 0:
            raise ValueError("min_fee must be >= 0")
        return self

    def is_current(self, at: datetime) -> bool:
        if not self.is_active or self.effective_from > at:
            return False
        return self.effective_to is None or self.effective_to >= at


class FeeCalculation(BaseModel):
    gross_amount: Decimal
    fee: Decimal
    net_amount: Decimal
    fee_rate: Decimal | None
    fee_type: FeeType
    config_id: FeeConfigId | None = None


def calculate_fee(config: FeeConfig, amount: Decimal) -> FeeCalculation:
    fee = Decimal(0)
    if config.fee_type is FeeType.PERCENTAGE:
        fee = amount * config.base_fee
    elif config.fee_type is FeeType.FIXED:
        fee = config.base_fee
    elif config.fee_type is FeeType.TIERED:
        for tier in config.tiered_rates:
            if tier.contains(amount):
                fee = amount * tier.fee_rate
                break

    # Min clamp runs first, so a max_fee below min_fee wins.
    fee = max(fee, config.min_fee)
    if config.max_fee is not None:
        fee = min(fee, config.max_fee)

    return FeeCalculation(
        gross_amount=amount,
        fee=fee,
        net_amount=amount - fee,
        fee_rate=config.base_fee if config.fee_type is FeeType.PERCENTAGE else None,
        fee_type=config.fee_type,
        config_id=config.id,
    )


def default_fee_calculation(amount: Decimal, fee_rate: Decimal) -> FeeCalculation:
    """Degraded-mode fee used when no config is active for a swap type."""
    fee = amount * fee_rate
    return FeeCalculation(
        gross_amount=amount,
        fee=fee,
        net_amount=amount - fee,
        fee_rate=fee_rate,
        fee_type=FeeType.PERCENTAGE,
        config_id=None,
    )


def validate_tiers(tiers: tuple[FeeTier, ...] | list[FeeTier]) -> None:
    """Optional write-time check: tiers must be increasing and non-overlapping."""
    previous: FeeTier | None = None
    for index, tier in enumerate(tiers):
        if tier.max_amount is not None and tier.max_amount < tier.min_amount:
            raise ValidationError(f"Tier {index}: max_amount is below min_amount")
        if previous is not None:
            if previous.max_amount is None:
                raise ValidationError(f"Tier {index}: follows an open-ended tier")
            if tier.min_amount < previous.max_amount:
                raise ValidationError(f"Tier {index}: overlaps the previous tier")
        previous = tier


def deactivate(config: FeeConfig, at: datetime) -> FeeConfig:
    effective_to = config.effective_to if config.effective_to is not None and config.effective_to < at else at
    return config.model_copy(update={"is_active": False, "effective_to": effective_to})


__all__ = [
    "FeeCalculation",
    "FeeConfig",
    "FeeTier",
    "calculate_fee",
    "deactivate",
    "default_fee_calculation",
    "validate_tiers",
]
