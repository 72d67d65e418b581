from decimal import Decimal

import pytest
from sqlalchemy.exc import OperationalError

from domain.base_types import FeeType, SwapType
from domain.errors import NotFoundError
from domain.swap import SagaState, SwapStatus
from services.access_gate import AccessGate
from services.fee_policy import FeeConfigDraft, FeePolicyStore
from services.ledger import LedgerSubmission, LedgerTransportError, WalletIdentity
from services.rate_registry import RateRegistry
from services.swap_orchestrator import SwapEngineConfig, SwapOrchestrator
from tests.constants import ISSUER, USER, USER_SECRET
from tests.helpers.fake_ledger import FakeLedger

USER_WALLET = WalletIdentity(address=USER, secret=USER_SECRET)


@pytest.fixture(autouse=True)
def _current_rate(rate_registry: RateRegistry) -> None:
    rate_registry.set_rate("XRP", "KRW", Decimal(4197), spread=Decimal("0.001"))


def test_quote_base_to_token_uses_bid(orchestrator: SwapOrchestrator, engine_config: SwapEngineConfig) -> None:
    quote = orchestrator.quote(SwapType.A_TO_B, Decimal(1000), config=engine_config)

    assert quote.input_currency == "XRP"
    assert quote.output_currency == "KRW"
    assert quote.fee == Decimal(3)
    assert quote.net_amount == Decimal(997)
    assert quote.rate_used == Decimal("4192.803")
    assert quote.output_amount == Decimal("4180224.591")


def test_quote_token_to_base_uses_ask(orchestrator: SwapOrchestrator, engine_config: SwapEngineConfig) -> None:
    quote = orchestrator.quote(SwapType.B_TO_A, Decimal(4201197), config=engine_config)

    assert quote.rate_used == Decimal("4201.197")
    assert quote.output_amount == Decimal(997)


def test_base_to_token_issues_net_amount(
    orchestrator: SwapOrchestrator, engine_config: SwapEngineConfig, fake_ledger: FakeLedger
) -> None:
    result = orchestrator.swap_base_to_token(USER, Decimal(1000), config=engine_config)

    assert result.status is SwapStatus.SUCCEEDED
    assert result.saga_state is SagaState.LEG2_OK
    assert [leg.tx_hash for leg in result.leg_results] == ["H1"]

    wallet, intent = fake_ledger.submissions[0]
    assert wallet.address == ISSUER
    assert intent.destination == USER
    assert intent.currency == "KRW"
    assert intent.issuer == ISSUER
    assert intent.amount == Decimal("4180224.591")


def test_token_to_base_runs_both_legs(
    orchestrator: SwapOrchestrator, engine_config: SwapEngineConfig, fake_ledger: FakeLedger
) -> None:
    result = orchestrator.swap_token_to_base(USER_WALLET, Decimal(4201197), config=engine_config)

    assert result.status is SwapStatus.SUCCEEDED
    assert result.saga_state is SagaState.LEG2_OK
    assert [leg.name for leg in result.leg_results] == ["return_token", "payout_base"]

    (first_wallet, first_intent), (second_wallet, second_intent) = fake_ledger.submissions
    assert first_wallet == USER_WALLET
    assert first_intent.destination == ISSUER
    assert first_intent.amount == Decimal(4201197)
    assert first_intent.currency == "KRW"
    assert second_wallet.address == ISSUER
    assert second_intent.destination == USER
    assert second_intent.is_native
    assert second_intent.amount == Decimal(997)


def test_failed_payout_is_partial_and_not_reversed(
    orchestrator: SwapOrchestrator, engine_config: SwapEngineConfig, fake_ledger: FakeLedger
) -> None:
    fake_ledger.outcomes = [
        LedgerSubmission(success=True, tx_hash="H1"),
        LedgerSubmission(success=False, tx_hash="H2", error_code="tecUNFUNDED_PAYMENT"),
    ]

    result = orchestrator.swap_token_to_base(USER_WALLET, Decimal(4201197), config=engine_config)

    assert result.status is SwapStatus.PARTIAL
    assert result.saga_state is SagaState.LEG1_OK_LEG2_FAILED
    assert result.error_code == "PARTIAL_FAILURE"
    first, second = result.leg_results
    assert first.success and first.tx_hash == "H1"
    assert not second.success and second.error_code == "tecUNFUNDED_PAYMENT"
    assert "H1" in (result.error_message or "")
    assert len(fake_ledger.submissions) == 2


def test_payout_transport_error_is_partial(
    orchestrator: SwapOrchestrator, engine_config: SwapEngineConfig, fake_ledger: FakeLedger
) -> None:
    fake_ledger.outcomes = [
        LedgerSubmission(success=True, tx_hash="H1"),
        LedgerTransportError("timed out", error_code="ledgerTimeout"),
    ]

    result = orchestrator.swap_token_to_base(USER_WALLET, Decimal(10000), config=engine_config)

    assert result.status is SwapStatus.PARTIAL
    assert result.leg_results[1].error_code == "ledgerTimeout"
    assert len(fake_ledger.submissions) == 2


def test_unconfirmed_payout_stays_in_leg1_ok(
    orchestrator: SwapOrchestrator, engine_config: SwapEngineConfig, fake_ledger: FakeLedger
) -> None:
    fake_ledger.outcomes = [
        LedgerSubmission(success=True, tx_hash="H1"),
        LedgerSubmission(success=False, tx_hash="H2", error_code="validationTimeout"),
    ]

    result = orchestrator.swap_token_to_base(USER_WALLET, Decimal(10000), config=engine_config)

    assert result.status is SwapStatus.PARTIAL
    assert result.saga_state is SagaState.LEG1_OK
    assert result.error_code == "PARTIAL_FAILURE"
    assert result.leg_results[1].tx_hash == "H2"
    assert "unconfirmed (tx=H2" in (result.error_message or "")


def test_unconfirmed_return_leg_keeps_hash(
    orchestrator: SwapOrchestrator, engine_config: SwapEngineConfig, fake_ledger: FakeLedger
) -> None:
    fake_ledger.outcomes = [LedgerSubmission(success=False, tx_hash="ABC", error_code="ledgerTimeout")]

    result = orchestrator.swap_token_to_base(USER_WALLET, Decimal(10000), config=engine_config)

    assert result.status is SwapStatus.FAILED
    assert result.leg_results[0].tx_hash == "ABC"
    assert result.leg_results[0].error_code == "ledgerTimeout"
    assert len(fake_ledger.submissions) == 1


def test_payout_below_one_drop_is_rejected_before_return_leg(
    orchestrator: SwapOrchestrator, engine_config: SwapEngineConfig, fake_ledger: FakeLedger
) -> None:
    result = orchestrator.swap_token_to_base(USER_WALLET, Decimal("0.001"), config=engine_config)

    assert result.status is SwapStatus.FAILED
    assert result.saga_state is SagaState.PENDING
    assert result.error_code == "VALIDATION_ERROR"
    assert "below one drop" in (result.error_message or "")
    assert fake_ledger.submissions == []


def test_failed_return_leg_stops_before_payout(
    orchestrator: SwapOrchestrator, engine_config: SwapEngineConfig, fake_ledger: FakeLedger
) -> None:
    fake_ledger.outcomes = [LedgerSubmission(success=False, tx_hash=None, error_code="tecPATH_DRY")]

    result = orchestrator.swap_token_to_base(USER_WALLET, Decimal(10000), config=engine_config)

    assert result.status is SwapStatus.FAILED
    assert result.saga_state is SagaState.PENDING
    assert result.error_code == "LEDGER_ERROR"
    assert result.leg_results[0].error_code == "tecPATH_DRY"
    assert len(fake_ledger.submissions) == 1


def test_failed_issuance_is_failed(
    orchestrator: SwapOrchestrator, engine_config: SwapEngineConfig, fake_ledger: FakeLedger
) -> None:
    fake_ledger.outcomes = [LedgerTransportError("down")]

    result = orchestrator.swap_base_to_token(USER, Decimal(10), config=engine_config)

    assert result.status is SwapStatus.FAILED
    assert result.leg_results[0].error_code == "ledgerUnavailable"


def test_permission_denied_submits_nothing(
    orchestrator: SwapOrchestrator,
    engine_config: SwapEngineConfig,
    fake_ledger: FakeLedger,
    access_gate: AccessGate,
) -> None:
    access_gate.initialize_domain("krw-iou.local")

    result = orchestrator.swap_base_to_token(USER, Decimal(10), config=engine_config)

    assert result.status is SwapStatus.FAILED
    assert result.error_code == "PERMISSION_DENIED"
    assert "Account not in whitelist" in (result.error_message or "")
    assert fake_ledger.submissions == []


def test_whitelisted_account_can_swap(
    orchestrator: SwapOrchestrator, engine_config: SwapEngineConfig, access_gate: AccessGate
) -> None:
    access_gate.initialize_domain("krw-iou.local")
    access_gate.add_to_whitelist(USER)

    assert orchestrator.swap_base_to_token(USER, Decimal(10), config=engine_config).succeeded


def test_missing_rate_is_quote_unavailable(
    orchestrator: SwapOrchestrator,
    engine_config: SwapEngineConfig,
    fake_ledger: FakeLedger,
    rate_registry: RateRegistry,
) -> None:
    rate_registry.deactivate_rate(rate_registry.get_current_rate("XRP", "KRW").id)

    result = orchestrator.swap_token_to_base(USER_WALLET, Decimal(10), config=engine_config)

    assert result.status is SwapStatus.FAILED
    assert result.error_code == "QUOTE_UNAVAILABLE"
    assert fake_ledger.submissions == []


def test_store_failure_fails_swap_without_submission(
    orchestrator: SwapOrchestrator,
    engine_config: SwapEngineConfig,
    fake_ledger: FakeLedger,
    access_gate: AccessGate,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    def _broken(address: str) -> None:
        raise OperationalError("SELECT", {}, Exception("database is locked"))

    monkeypatch.setattr(access_gate, "check_permission", _broken)

    result = orchestrator.swap_base_to_token(USER, Decimal(10), config=engine_config)

    assert result.status is SwapStatus.FAILED
    assert result.error_code == "SWAP_ENGINE_ERROR"
    assert fake_ledger.submissions == []


@pytest.mark.parametrize("amount", ["0", "-5", "100000001", "abc"])
def test_invalid_amount_is_rejected(
    orchestrator: SwapOrchestrator, engine_config: SwapEngineConfig, amount: str
) -> None:
    result = orchestrator.swap_base_to_token(USER, amount, config=engine_config)

    assert result.error_code == "VALIDATION_ERROR"


def test_invalid_address_is_rejected(orchestrator: SwapOrchestrator, engine_config: SwapEngineConfig) -> None:
    result = orchestrator.swap_base_to_token("bogus", Decimal(10), config=engine_config)

    assert result.status is SwapStatus.FAILED
    assert result.error_code == "VALIDATION_ERROR"


def test_fee_above_amount_is_rejected_before_submission(
    orchestrator: SwapOrchestrator,
    engine_config: SwapEngineConfig,
    fee_policy: FeePolicyStore,
    fake_ledger: FakeLedger,
) -> None:
    fee_policy.create_fee_config(
        FeeConfigDraft(swap_type=SwapType.A_TO_B, fee_type=FeeType.FIXED, base_fee=Decimal(5)), created_by="admin"
    )

    result = orchestrator.swap_base_to_token(USER, Decimal(2), config=engine_config)

    assert result.error_code == "VALIDATION_ERROR"
    assert fake_ledger.submissions == []


def test_preview_reports_negative_output(
    orchestrator: SwapOrchestrator, engine_config: SwapEngineConfig, fee_policy: FeePolicyStore
) -> None:
    fee_policy.create_fee_config(
        FeeConfigDraft(swap_type=SwapType.B_TO_A, fee_type=FeeType.FIXED, base_fee=Decimal(5)), created_by="admin"
    )

    preview = orchestrator.preview(SwapType.B_TO_A, Decimal(2), config=engine_config)

    assert preview.output_amount == Decimal(-3)
    assert preview.fee_percentage is None
    assert preview.ask_rate == Decimal("4201.197")


def test_preview_with_default_fee(orchestrator: SwapOrchestrator, engine_config: SwapEngineConfig) -> None:
    preview = orchestrator.preview(SwapType.A_TO_B, Decimal(1000), config=engine_config)

    assert preview.fee == Decimal(3)
    assert preview.fee_percentage == "0.300%"


def test_conversions_use_mid_rate(orchestrator: SwapOrchestrator, engine_config: SwapEngineConfig) -> None:
    to_token = orchestrator.convert_base_to_token(Decimal(2), config=engine_config)
    to_base = orchestrator.convert_token_to_base(Decimal(8394), config=engine_config)

    assert to_token.converted_amount == Decimal(8394)
    assert to_base.converted_amount == Decimal(2)
    assert not to_token.spread_applied


def test_conversion_without_rate_raises(
    orchestrator: SwapOrchestrator, engine_config: SwapEngineConfig, rate_registry: RateRegistry
) -> None:
    rate_registry.deactivate_rate(rate_registry.get_current_rate("XRP", "KRW").id)

    with pytest.raises(NotFoundError):
        orchestrator.convert_base_to_token(Decimal(1), config=engine_config)


def test_market_info(
    orchestrator: SwapOrchestrator, engine_config: SwapEngineConfig, fee_policy: FeePolicyStore
) -> None:
    fee_policy.create_fee_config(FeeConfigDraft(swap_type=SwapType.A_TO_B, base_fee=Decimal("0.002")), created_by="admin")

    info = orchestrator.market_info(config=engine_config)

    assert info.issuer == ISSUER
    assert info.issuance_active
    assert info.exchange_rate is not None and info.exchange_rate.rate == Decimal(4197)
    assert info.swap_fees[SwapType.A_TO_B].base_fee == Decimal("0.002")
    assert not info.swap_fees[SwapType.A_TO_B].is_default
    assert info.swap_fees[SwapType.B_TO_A].is_default
