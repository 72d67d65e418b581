from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Iterable

from db.repositories import FeeConfigRepository
from domain.base_types import FeeConfigId, FeeType, SwapType
from domain.errors import NotFoundError, ValidationError
from domain.fee import (
    FeeCalculation,
    FeeConfig,
    FeeTier,
    calculate_fee,
    deactivate,
    default_fee_calculation,
    validate_tiers,
)
from domain.validation import normalize_pagination, require_amount, require_utc
from utils.clock import Clock, utc_now

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FeeConfigDraft:
    swap_type: SwapType
    fee_type: FeeType = FeeType.PERCENTAGE
    base_fee: Decimal = Decimal("0.003")
    min_fee: Decimal = Decimal(0)
    max_fee: Decimal | None = None
    tiered_rates: tuple[FeeTier, ...] = ()
    effective_from: datetime | None = None
    effective_to: datetime | None = None
    description: str = ""


@dataclass(frozen=True)
class FeeConfigPage:
    configs: list[FeeConfig]
    page: int
    limit: int
    total: int

    @property
    def pages(self) -> int:
        return -(-self.total // self.limit)


class FeePolicyStore:
    """Current fee configuration per swap type plus the degraded-mode default.

    When no config is active the same ``default_fee_rate`` percentage applies
    to every swap type; this is a fallback, not an error.
    """

    def __init__(
        self,
        repository: FeeConfigRepository,
        *,
        default_fee_rate: Decimal = Decimal("0.003"),
        validate_tier_ranges: bool = True,
        clock: Clock = utc_now,
    ) -> None:
        self.repository = repository
        self.default_fee_rate = default_fee_rate
        self.validate_tier_ranges = validate_tier_ranges
        self._clock = clock

    def get_current_fee_config(self, swap_type: SwapType) -> FeeConfig | None:
        return self.repository.find_current(swap_type, self._clock())

    def calculate_swap_fee(self, swap_type: SwapType, amount: Decimal) -> FeeCalculation:
        config = self.get_current_fee_config(swap_type)
        if config is None:
            logger.info("No active fee config for %s, using default rate %s", swap_type, self.default_fee_rate)
            return default_fee_calculation(amount, self.default_fee_rate)
        return calculate_fee(config, amount)

    def simulate(self, draft: FeeConfigDraft, amount: Decimal) -> FeeCalculation:
        return calculate_fee(self._build(draft, created_by="simulation"), require_amount(amount))

    def create_fee_config(self, draft: FeeConfigDraft, *, created_by: str) -> FeeConfig:
        """Append a config; it coexists with older active configs and wins by latest ``effective_from``."""
        config = self._build(draft, created_by=created_by)
        self.repository.add(config)
        logger.info("Fee config %s created for %s (%s)", config.id, config.swap_type, config.fee_type)
        return config

    def replace_fee_config(self, draft: FeeConfigDraft, *, created_by: str) -> FeeConfig:
        config = self._build(draft, created_by=created_by)
        self.repository.replace_active(config, config.effective_from)
        logger.info("Fee config %s replaced active configs for %s", config.id, config.swap_type)
        return config

    def deactivate_fee_config(self, config_id: FeeConfigId) -> FeeConfig:
        config = self.repository.get(config_id)
        if config is None:
            raise NotFoundError(f"Swap fee config {config_id} not found")
        retired = self.repository.save(deactivate(config, self._clock()))
        logger.info("Fee config %s deactivated", config_id)
        return retired

    def get_fee_config(self, config_id: FeeConfigId) -> FeeConfig:
        config = self.repository.get(config_id)
        if config is None:
            raise NotFoundError(f"Swap fee config {config_id} not found")
        return config

    def list_fee_configs(
        self,
        *,
        swap_type: SwapType | None = None,
        is_active: bool | None = None,
        page: int | None = None,
        limit: int | None = None,
    ) -> FeeConfigPage:
        valid_page, valid_limit = normalize_pagination(page, limit)
        configs, total = self.repository.list(
            swap_type=swap_type,
            is_active=is_active,
            offset=(valid_page - 1) * valid_limit,
            limit=valid_limit,
        )
        return FeeConfigPage(configs=configs, page=valid_page, limit=valid_limit, total=total)

    def initialize_default_fees(self, swap_types: Iterable[SwapType] = tuple(SwapType)) -> list[FeeConfig]:
        created: list[FeeConfig] = []
        for swap_type in swap_types:
            if self.get_current_fee_config(swap_type) is not None:
                continue
            draft = FeeConfigDraft(
                swap_type=swap_type,
                base_fee=self.default_fee_rate,
                description=f"Default {swap_type} swap fee",
            )
            created.append(self.create_fee_config(draft, created_by="system_init"))
        return created

    def _build(self, draft: FeeConfigDraft, *, created_by: str) -> FeeConfig:
        if draft.fee_type is FeeType.TIERED:
            if not draft.tiered_rates:
                raise ValidationError("TIERED fee configs need at least one tier")
            if self.validate_tier_ranges:
                validate_tiers(draft.tiered_rates)
        effective_from = require_utc(draft.effective_from, "effective_from") if draft.effective_from is not None else None
        effective_to = require_utc(draft.effective_to, "effective_to") if draft.effective_to is not None else None
        if effective_to is not None and effective_from is not None and effective_to < effective_from:
            raise ValidationError("effective_to must not precede effective_from")

        now = self._clock()
        return FeeConfig(
            swap_type=draft.swap_type,
            fee_type=draft.fee_type,
            base_fee=draft.base_fee,
            min_fee=draft.min_fee,
            max_fee=draft.max_fee,
            tiered_rates=draft.tiered_rates,
            effective_from=effective_from or now,
            effective_to=effective_to,
            description=draft.description,
            created_by=created_by,
            created_at=now,
        )


__all__ = ["FeeConfigDraft", "FeeConfigPage", "FeePolicyStore"]
