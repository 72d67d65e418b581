from __future__ import annotations

from decimal import Decimal
from enum import StrEnum

from pydantic import BaseModel

from domain.base_types import Address, CurrencyCode, FeeConfigId, FeeType, SwapType
from domain.errors import SwapEngineError


class SwapStatus(StrEnum):
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"
    PARTIAL = "PARTIAL"


class SagaState(StrEnum):
    """Progress of a two-leg swap.

    ``LEG1_OK`` marks a settled first leg whose second leg was submitted but
    never observed in a validated ledger; it may still settle.
    """

    PENDING = "PENDING"
    LEG1_OK = "LEG1_OK"
    LEG2_OK = "LEG2_OK"
    LEG1_OK_LEG2_FAILED = "LEG1_OK_LEG2_FAILED"


class SwapQuote(BaseModel):
    """Priced swap before any ledger write.

    ``gross_amount``, ``fee`` and ``net_amount`` are in ``input_currency``;
    ``output_amount`` is ``net_amount`` converted at ``rate_used``.
    """

    swap_type: SwapType
    input_currency: CurrencyCode
    output_currency: CurrencyCode
    gross_amount: Decimal
    fee: Decimal
    net_amount: Decimal
    fee_rate: Decimal | None
    fee_type: FeeType
    fee_config_id: FeeConfigId | None = None
    rate_used: Decimal
    output_amount: Decimal


class LegResult(BaseModel):
    name: str
    success: bool
    amount: Decimal
    currency: CurrencyCode
    source: Address
    destination: Address
    tx_hash: str | None = None
    error_code: str | None = None


class SwapResult(BaseModel):
    status: SwapStatus
    saga_state: SagaState
    swap_type: SwapType
    address: str
    quote: SwapQuote | None = None
    leg_results: list[LegResult] = []
    error_code: str | None = None
    error_message: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.status is SwapStatus.SUCCEEDED

    @classmethod
    def failed(
        cls,
        *,
        swap_type: SwapType,
        address: str,
        error: SwapEngineError,
        quote: SwapQuote | None = None,
        leg_results: list[LegResult] | None = None,
    ) -> SwapResult:
        return cls(
            status=SwapStatus.FAILED,
            saga_state=SagaState.PENDING,
            swap_type=swap_type,
            address=address,
            quote=quote,
            leg_results=leg_results or [],
            error_code=error.code,
            error_message=str(error),
        )


class SwapPreview(BaseModel):
    swap_type: SwapType
    input_amount: Decimal
    fee: Decimal
    output_amount: Decimal
    fee_rate: Decimal | None
    fee_type: FeeType
    fee_percentage: str | None
    rate: Decimal | None = None
    bid_rate: Decimal | None = None
    ask_rate: Decimal | None = None
    spread: Decimal | None = None


__all__ = [
    "LegResult",
    "SagaState",
    "SwapPreview",
    "SwapQuote",
    "SwapResult",
    "SwapStatus",
]
