from datetime import timedelta, timezone
from decimal import Decimal
from uuid import uuid4

import pytest

from domain.base_types import FeeType, SwapType
from domain.errors import NotFoundError, ValidationError
from domain.fee import FeeTier
from services.fee_policy import FeeConfigDraft, FeePolicyStore
from tests.helpers.clock import FixedClock

TIERS = (
    FeeTier(min_amount=Decimal(0), max_amount=Decimal(100), fee_rate=Decimal("0.01")),
    FeeTier(min_amount=Decimal(100), max_amount=None, fee_rate=Decimal("0.005")),
)


def test_default_rate_applies_to_every_swap_type_without_config(fee_policy: FeePolicyStore) -> None:
    for swap_type in SwapType:
        calculation = fee_policy.calculate_swap_fee(swap_type, Decimal(1000))
        assert calculation.fee == Decimal(3)
        assert calculation.config_id is None


def test_active_config_wins_over_default(fee_policy: FeePolicyStore) -> None:
    config = fee_policy.create_fee_config(
        FeeConfigDraft(swap_type=SwapType.A_TO_B, fee_type=FeeType.FIXED, base_fee=Decimal(7)), created_by="admin"
    )

    calculation = fee_policy.calculate_swap_fee(SwapType.A_TO_B, Decimal(1000))

    assert calculation.fee == Decimal(7)
    assert calculation.config_id == config.id
    assert fee_policy.calculate_swap_fee(SwapType.B_TO_A, Decimal(1000)).config_id is None


def test_create_appends_and_latest_effective_from_wins(fee_policy: FeePolicyStore, clock: FixedClock) -> None:
    fee_policy.create_fee_config(FeeConfigDraft(swap_type=SwapType.A_TO_B), created_by="admin")
    clock.advance(minutes=1)
    newer = fee_policy.create_fee_config(
        FeeConfigDraft(swap_type=SwapType.A_TO_B, base_fee=Decimal("0.001")), created_by="admin"
    )

    assert fee_policy.get_current_fee_config(SwapType.A_TO_B).id == newer.id
    assert fee_policy.list_fee_configs(swap_type=SwapType.A_TO_B, is_active=True).total == 2


def test_replace_retires_previous_configs(fee_policy: FeePolicyStore, clock: FixedClock) -> None:
    old = fee_policy.create_fee_config(FeeConfigDraft(swap_type=SwapType.B_TO_A), created_by="admin")
    clock.advance(minutes=1)
    new = fee_policy.replace_fee_config(
        FeeConfigDraft(swap_type=SwapType.B_TO_A, base_fee=Decimal("0.002")), created_by="admin"
    )

    assert not fee_policy.get_fee_config(old.id).is_active
    assert fee_policy.get_current_fee_config(SwapType.B_TO_A).id == new.id


def test_future_config_is_not_current_yet(fee_policy: FeePolicyStore, clock: FixedClock) -> None:
    fee_policy.create_fee_config(
        FeeConfigDraft(swap_type=SwapType.A_TO_B, effective_from=clock() + timedelta(days=1)), created_by="admin"
    )

    assert fee_policy.get_current_fee_config(SwapType.A_TO_B) is None
    clock.advance(days=2)
    assert fee_policy.get_current_fee_config(SwapType.A_TO_B) is not None


def test_scheduled_replacement_keeps_current_config_until_it_starts(fee_policy: FeePolicyStore, clock: FixedClock) -> None:
    old = fee_policy.create_fee_config(
        FeeConfigDraft(swap_type=SwapType.A_TO_B, base_fee=Decimal("0.01")), created_by="admin"
    )
    starts = clock() + timedelta(days=1)
    new = fee_policy.replace_fee_config(
        FeeConfigDraft(swap_type=SwapType.A_TO_B, base_fee=Decimal("0.02"), effective_from=starts), created_by="admin"
    )

    current = fee_policy.get_current_fee_config(SwapType.A_TO_B)
    assert current is not None
    assert current.id == old.id
    assert current.is_active
    assert current.effective_to == starts

    clock.advance(days=2)
    assert fee_policy.get_current_fee_config(SwapType.A_TO_B).id == new.id


def test_effective_from_with_offset_is_stored_as_utc(fee_policy: FeePolicyStore, clock: FixedClock) -> None:
    kst = timezone(timedelta(hours=9))
    config = fee_policy.create_fee_config(
        FeeConfigDraft(swap_type=SwapType.A_TO_B, effective_from=clock().astimezone(kst)), created_by="admin"
    )

    current = fee_policy.get_current_fee_config(SwapType.A_TO_B)
    assert current is not None
    assert current.id == config.id
    assert current.effective_from == clock()
    assert current.effective_from.utcoffset() == timedelta(0)


def test_naive_effective_from_rejected(fee_policy: FeePolicyStore, clock: FixedClock) -> None:
    with pytest.raises(ValidationError):
        fee_policy.create_fee_config(
            FeeConfigDraft(swap_type=SwapType.A_TO_B, effective_from=clock().replace(tzinfo=None)), created_by="admin"
        )


def test_tiered_config_requires_tiers(fee_policy: FeePolicyStore) -> None:
    with pytest.raises(ValidationError):
        fee_policy.create_fee_config(FeeConfigDraft(swap_type=SwapType.A_TO_B, fee_type=FeeType.TIERED), created_by="admin")


def test_overlapping_tiers_rejected_at_write_time(fee_policy: FeePolicyStore) -> None:
    overlapping = (TIERS[1], TIERS[0])
    draft = FeeConfigDraft(swap_type=SwapType.A_TO_B, fee_type=FeeType.TIERED, tiered_rates=overlapping)

    with pytest.raises(ValidationError):
        fee_policy.create_fee_config(draft, created_by="admin")


def test_tier_validation_can_be_disabled(fee_policy: FeePolicyStore) -> None:
    lenient = FeePolicyStore(fee_policy.repository, validate_tier_ranges=False)
    shadowing = (
        FeeTier(min_amount=Decimal(0), max_amount=None, fee_rate=Decimal("0.01")),
        FeeTier(min_amount=Decimal(0), max_amount=Decimal(100), fee_rate=Decimal("0.02")),
    )
    draft = FeeConfigDraft(swap_type=SwapType.A_TO_B, fee_type=FeeType.TIERED, tiered_rates=shadowing)

    config = lenient.create_fee_config(draft, created_by="admin")

    # First containing tier wins, so the open-ended tier shadows the second one.
    assert lenient.calculate_swap_fee(SwapType.A_TO_B, Decimal(50)).fee == Decimal("0.5")
    assert config.tiered_rates == shadowing


def test_effective_to_before_effective_from_rejected(fee_policy: FeePolicyStore, clock: FixedClock) -> None:
    draft = FeeConfigDraft(
        swap_type=SwapType.A_TO_B, effective_from=clock(), effective_to=clock() - timedelta(seconds=1)
    )

    with pytest.raises(ValidationError):
        fee_policy.create_fee_config(draft, created_by="admin")


def test_simulate_does_not_persist(fee_policy: FeePolicyStore) -> None:
    draft = FeeConfigDraft(swap_type=SwapType.A_TO_B, fee_type=FeeType.TIERED, tiered_rates=TIERS)

    assert fee_policy.simulate(draft, Decimal(500)).fee == Decimal("2.5")
    assert fee_policy.list_fee_configs().total == 0
    with pytest.raises(ValidationError):
        fee_policy.simulate(draft, Decimal(0))


def test_deactivate_fee_config(fee_policy: FeePolicyStore) -> None:
    config = fee_policy.create_fee_config(FeeConfigDraft(swap_type=SwapType.A_TO_B), created_by="admin")

    retired = fee_policy.deactivate_fee_config(config.id)

    assert not retired.is_active
    assert fee_policy.get_current_fee_config(SwapType.A_TO_B) is None


def test_unknown_config_id_raises(fee_policy: FeePolicyStore) -> None:
    with pytest.raises(NotFoundError):
        fee_policy.get_fee_config(uuid4())  # type: ignore[arg-type]


def test_initialize_default_fees_skips_existing(fee_policy: FeePolicyStore) -> None:
    fee_policy.create_fee_config(FeeConfigDraft(swap_type=SwapType.TRANSFER), created_by="admin")

    created = fee_policy.initialize_default_fees()

    assert sorted(config.swap_type for config in created) == [SwapType.A_TO_B, SwapType.B_TO_A]
    assert fee_policy.initialize_default_fees() == []


def test_list_fee_configs_paginates(fee_policy: FeePolicyStore, clock: FixedClock) -> None:
    for _ in range(5):
        clock.advance(seconds=1)
        fee_policy.create_fee_config(FeeConfigDraft(swap_type=SwapType.A_TO_B), created_by="admin")

    page = fee_policy.list_fee_configs(page=2, limit=2)

    assert page.total == 5
    assert page.pages == 3
    assert len(page.configs) == 2
