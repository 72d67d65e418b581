from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal

from pydantic import BaseModel
from sqlalchemy.exc import SQLAlchemyError

from domain.base_types import Address, ConversionDirection, CurrencyCode, FeeType, SwapType
from domain.errors import (
    LedgerError,
    NotFoundError,
    PartialFailureError,
    PermissionDeniedError,
    QuoteUnavailableError,
    SwapEngineError,
    ValidationError,
)
from domain.exchange_rate import Conversion, ExchangeRate, convert, convert_with, swap_rate
from domain.swap import LegResult, SagaState, SwapPreview, SwapQuote, SwapResult, SwapStatus
from domain.validation import require_address, require_amount, require_currency

from .access_gate import AccessGate
from .fee_policy import FeePolicyStore
from .ledger import UNCONFIRMED_CODES, LedgerService, LedgerTransportError, PaymentIntent, WalletIdentity, to_drops
from .rate_registry import RateRegistry

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SwapEngineConfig:
    """Issuer wallet and currencies for one call; replaces process-global admin state."""

    issuer: WalletIdentity
    token_currency: str = "KRW"
    base_currency: str = "XRP"

    @property
    def token(self) -> CurrencyCode:
        return require_currency(self.token_currency)

    @property
    def base(self) -> CurrencyCode:
        return require_currency(self.base_currency)


class FeeSummary(BaseModel):
    fee_type: FeeType
    base_fee: Decimal
    min_fee: Decimal
    max_fee: Decimal | None
    is_default: bool


class MarketInfo(BaseModel):
    token_currency: CurrencyCode
    base_currency: CurrencyCode
    issuer: str
    issuance_active: bool
    exchange_rate: ExchangeRate | None
    swap_fees: dict[SwapType, FeeSummary]


class SwapOrchestrator:
    """Quotes and settles swaps between the native asset and the issued token.

    Issuance (base -> token) is a single leg: the base asset has already been
    collected outside this engine, so only the token payout is submitted.
    Redemption (token -> base) runs two sequential legs. A failed second leg
    leaves the first leg in place and is reported as PARTIAL; a second leg
    with a hash but no validated outcome is PARTIAL in saga state LEG1_OK.
    Nothing is reversed or retried here. Requests are not deduplicated.
    """

    def __init__(
        self,
        *,
        rates: RateRegistry,
        fees: FeePolicyStore,
        access_gate: AccessGate,
        ledger: LedgerService,
    ) -> None:
        self.rates = rates
        self.fees = fees
        self.access_gate = access_gate
        self.ledger = ledger

    def quote(self, swap_type: SwapType, amount: Decimal, *, config: SwapEngineConfig) -> SwapQuote:
        if swap_type is SwapType.A_TO_B:
            direction = ConversionDirection.BASE_TO_QUOTE
            input_currency, output_currency = config.base, config.token
        elif swap_type is SwapType.B_TO_A:
            direction = ConversionDirection.QUOTE_TO_BASE
            input_currency, output_currency = config.token, config.base
        else:
            raise ValidationError(f"{swap_type} is not a priced swap")

        try:
            record = self.rates.get_current_rate(config.base, config.token)
        except NotFoundError as exc:
            raise QuoteUnavailableError(str(exc)) from exc

        calculation = self.fees.calculate_swap_fee(swap_type, amount)
        rate_used = swap_rate(record, direction)
        return SwapQuote(
            swap_type=swap_type,
            input_currency=input_currency,
            output_currency=output_currency,
            gross_amount=calculation.gross_amount,
            fee=calculation.fee,
            net_amount=calculation.net_amount,
            fee_rate=calculation.fee_rate,
            fee_type=calculation.fee_type,
            fee_config_id=calculation.config_id,
            rate_used=rate_used,
            output_amount=convert(calculation.net_amount, rate_used, direction),
        )

    def swap_base_to_token(self, user_address: str, amount: Decimal | str, *, config: SwapEngineConfig) -> SwapResult:
        swap_type = SwapType.A_TO_B
        try:
            account = require_address(user_address)
            quote = self._prepare(swap_type, account, amount, config=config)
        except SwapEngineError as exc:
            logger.warning("Swap %s for %s rejected: %s", swap_type, user_address, exc)
            return SwapResult.failed(swap_type=swap_type, address=str(user_address), error=exc)

        issue_leg = self._run_leg(
            "issue_token",
            config.issuer,
            PaymentIntent(
                destination=account,
                amount=quote.output_amount,
                currency=config.token,
                issuer=config.issuer.address,
            ),
        )
        if not issue_leg.success:
            error = LedgerError(f"Token issuance failed: {issue_leg.error_code}", error_code=issue_leg.error_code)
            return SwapResult.failed(
                swap_type=swap_type, address=account, error=error, quote=quote, leg_results=[issue_leg]
            )

        logger.info(
            "Swap %s completed for %s: %s %s in, fee %s, %s %s issued (tx=%s)",
            swap_type,
            account,
            quote.gross_amount,
            quote.input_currency,
            quote.fee,
            quote.output_amount,
            quote.output_currency,
            issue_leg.tx_hash,
        )
        return SwapResult(
            status=SwapStatus.SUCCEEDED,
            saga_state=SagaState.LEG2_OK,
            swap_type=swap_type,
            address=account,
            quote=quote,
            leg_results=[issue_leg],
        )

    def swap_token_to_base(self, user_wallet: WalletIdentity, amount: Decimal | str, *, config: SwapEngineConfig) -> SwapResult:
        swap_type = SwapType.B_TO_A
        try:
            account = require_address(user_wallet.address)
            quote = self._prepare(swap_type, account, amount, config=config)
        except SwapEngineError as exc:
            logger.warning("Swap %s for %s rejected: %s", swap_type, user_wallet.address, exc)
            return SwapResult.failed(swap_type=swap_type, address=str(user_wallet.address), error=exc)

        return_leg = self._run_leg(
            "return_token",
            user_wallet,
            PaymentIntent(
                destination=config.issuer.address,
                amount=quote.gross_amount,
                currency=config.token,
                issuer=config.issuer.address,
            ),
        )
        if not return_leg.success:
            error = LedgerError(f"Token return failed: {return_leg.error_code}", error_code=return_leg.error_code)
            return SwapResult.failed(
                swap_type=swap_type, address=account, error=error, quote=quote, leg_results=[return_leg]
            )

        payout_leg = self._run_leg(
            "payout_base",
            config.issuer,
            PaymentIntent(destination=account, amount=quote.output_amount, currency=config.base),
        )
        if not payout_leg.success:
            unconfirmed = payout_leg.tx_hash is not None and payout_leg.error_code in UNCONFIRMED_CODES
            partial = PartialFailureError(return_leg, payout_leg, unconfirmed=unconfirmed)
            logger.error("Swap %s for %s needs reconciliation: %s", swap_type, account, partial)
            return SwapResult(
                status=SwapStatus.PARTIAL,
                saga_state=SagaState.LEG1_OK if unconfirmed else SagaState.LEG1_OK_LEG2_FAILED,
                swap_type=swap_type,
                address=account,
                quote=quote,
                leg_results=[return_leg, payout_leg],
                error_code=partial.code,
                error_message=str(partial),
            )

        logger.info(
            "Swap %s completed for %s: %s %s returned, fee %s, %s %s paid (tx=%s, %s)",
            swap_type,
            account,
            quote.gross_amount,
            quote.input_currency,
            quote.fee,
            quote.output_amount,
            quote.output_currency,
            return_leg.tx_hash,
            payout_leg.tx_hash,
        )
        return SwapResult(
            status=SwapStatus.SUCCEEDED,
            saga_state=SagaState.LEG2_OK,
            swap_type=swap_type,
            address=account,
            quote=quote,
            leg_results=[return_leg, payout_leg],
        )

    def preview(self, swap_type: SwapType, amount: Decimal | str, *, config: SwapEngineConfig) -> SwapPreview:
        """Fee breakdown for ``amount``; a negative output is reported, not clamped."""
        gross = require_amount(amount)
        calculation = self.fees.calculate_swap_fee(swap_type, gross)
        record = self.rates.find_current_rate(config.base, config.token) if swap_type is not SwapType.TRANSFER else None
        return SwapPreview(
            swap_type=swap_type,
            input_amount=gross,
            fee=calculation.fee,
            output_amount=calculation.net_amount,
            fee_rate=calculation.fee_rate,
            fee_type=calculation.fee_type,
            fee_percentage=f"{calculation.fee_rate * 100}%" if calculation.fee_rate is not None else None,
            rate=record.rate if record else None,
            bid_rate=record.bid_rate if record else None,
            ask_rate=record.ask_rate if record else None,
            spread=record.spread if record else None,
        )

    def convert_base_to_token(self, amount: Decimal | str, *, config: SwapEngineConfig) -> Conversion:
        record = self.rates.get_current_rate(config.base, config.token)
        return convert_with(record, require_amount(amount), ConversionDirection.BASE_TO_QUOTE)

    def convert_token_to_base(self, amount: Decimal | str, *, config: SwapEngineConfig) -> Conversion:
        record = self.rates.get_current_rate(config.base, config.token)
        return convert_with(record, require_amount(amount), ConversionDirection.QUOTE_TO_BASE)

    def market_info(self, *, config: SwapEngineConfig) -> MarketInfo:
        swap_fees: dict[SwapType, FeeSummary] = {}
        for swap_type in SwapType:
            current = self.fees.get_current_fee_config(swap_type)
            if current is None:
                swap_fees[swap_type] = FeeSummary(
                    fee_type=FeeType.PERCENTAGE,
                    base_fee=self.fees.default_fee_rate,
                    min_fee=Decimal(0),
                    max_fee=None,
                    is_default=True,
                )
            else:
                swap_fees[swap_type] = FeeSummary(
                    fee_type=current.fee_type,
                    base_fee=current.base_fee,
                    min_fee=current.min_fee,
                    max_fee=current.max_fee,
                    is_default=False,
                )
        return MarketInfo(
            token_currency=config.token,
            base_currency=config.base,
            issuer=config.issuer.address,
            issuance_active=bool(config.issuer.address),
            exchange_rate=self.rates.find_current_rate(config.base, config.token),
            swap_fees=swap_fees,
        )

    def _prepare(self, swap_type: SwapType, account: Address, amount: Decimal | str, *, config: SwapEngineConfig) -> SwapQuote:
        gross = require_amount(amount)

        try:
            permission = self.access_gate.check_permission(account)
            if not permission.allowed:
                raise PermissionDeniedError(account, permission.reason)
            quote = self.quote(swap_type, gross, config=config)
        except SQLAlchemyError as exc:
            raise SwapEngineError(f"Rate and policy store unavailable: {exc}") from exc

        if quote.output_amount <= 0:
            raise ValidationError(
                f"Fee {quote.fee} leaves nothing to pay out for {quote.gross_amount} {quote.input_currency}"
            )
        # Native payouts are truncated to whole drops by the ledger client.
        if swap_type is SwapType.B_TO_A and to_drops(quote.output_amount) == "0":
            raise ValidationError(
                f"Payout {quote.output_amount} {quote.output_currency} for {quote.gross_amount} "
                f"{quote.input_currency} is below one drop"
            )
        return quote

    def _run_leg(self, name: str, wallet: WalletIdentity, intent: PaymentIntent) -> LegResult:
        try:
            submission = self.ledger.submit(wallet, intent)
        except LedgerTransportError as exc:
            logger.warning("Leg %s from %s failed at transport level: %s", name, wallet.address, exc)
            return self._leg_result(name, wallet, intent, success=False, tx_hash=None, error_code=exc.error_code)

        if submission.unconfirmed:
            logger.warning("Leg %s from %s unconfirmed: %s (tx=%s)", name, wallet.address, submission.error_code, submission.tx_hash)
        elif not submission.success:
            logger.warning("Leg %s from %s failed: %s (tx=%s)", name, wallet.address, submission.error_code, submission.tx_hash)
        return self._leg_result(
            name,
            wallet,
            intent,
            success=submission.success,
            tx_hash=submission.tx_hash,
            error_code=submission.error_code if not submission.success else None,
        )

    @staticmethod
    def _leg_result(
        name: str,
        wallet: WalletIdentity,
        intent: PaymentIntent,
        *,
        success: bool,
        tx_hash: str | None,
        error_code: str | None,
    ) -> LegResult:
        return LegResult(
            name=name,
            success=success,
            amount=intent.amount,
            currency=CurrencyCode(intent.currency),
            source=Address(wallet.address),
            destination=Address(intent.destination),
            tx_hash=tx_hash,
            error_code=error_code or ("ledgerFailure" if not success else None),
        )


__all__ = ["FeeSummary", "MarketInfo", "SwapEngineConfig", "SwapOrchestrator"]
