from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from domain.swap import LegResult


class SwapEngineError(Exception):
    code = "SWAP_ENGINE_ERROR"


class ValidationError(SwapEngineError):
    """Malformed address, amount or currency; raised before any lookup."""

    code = "VALIDATION_ERROR"


class NotFoundError(SwapEngineError):
    code = "NOT_FOUND"


class QuoteUnavailableError(NotFoundError):
    code = "QUOTE_UNAVAILABLE"


class PermissionDeniedError(SwapEngineError):
    code = "PERMISSION_DENIED"

    def __init__(self, address: str, reason: str) -> None:
        self.address = address
        self.reason = reason
        super().__init__(f"Account {address} is not permitted: {reason}")


class LedgerError(SwapEngineError):
    code = "LEDGER_ERROR"

    def __init__(self, message: str, *, error_code: str | None = None, tx_hash: str | None = None) -> None:
        self.error_code = error_code
        self.tx_hash = tx_hash
        super().__init__(message)


class PartialFailureError(SwapEngineError):
    """First leg settled, second leg failed or unconfirmed. Needs manual reconciliation."""

    code = "PARTIAL_FAILURE"

    def __init__(self, first_leg: LegResult, second_leg: LegResult, *, unconfirmed: bool = False) -> None:
        self.first_leg = first_leg
        self.second_leg = second_leg
        self.unconfirmed = unconfirmed
        outcome = f"unconfirmed (tx={second_leg.tx_hash}, " if unconfirmed else "failed ("
        message = (
            f"{first_leg.name} settled (tx={first_leg.tx_hash}) but {second_leg.name} {outcome}"
            f"error={second_leg.error_code}); manual reconciliation required"
        )
        super().__init__(message)


__all__ = [
    "LedgerError",
    "NotFoundError",
    "PartialFailureError",
    "PermissionDeniedError",
    "QuoteUnavailableError",
    "SwapEngineError",
    "ValidationError",
]
