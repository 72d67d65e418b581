from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_DOWN, Decimal
from typing import Any, Protocol

DROPS_PER_XRP = Decimal(1_000_000)
# Failures after which a submitted transaction may still validate.
UNCONFIRMED_CODES = frozenset({"validationTimeout", "ledgerTimeout", "ledgerUnavailable"})


def to_drops(amount: Decimal) -> str:
    return str(int((amount * DROPS_PER_XRP).to_integral_value(rounding=ROUND_DOWN)))


class LedgerTransportError(RuntimeError):
    """The ledger could not be reached or answered with something unusable."""

    def __init__(
        self,
        message: str,
        *,
        error_code: str = "ledgerUnavailable",
        status_code: int | None = None,
        payload: Any | None = None,
    ) -> None:
        super().__init__(message)
        self.error_code = error_code
        self.status_code = status_code
        self.payload = payload


@dataclass(frozen=True)
class WalletIdentity:
    address: str
    secret: str

    def __repr__(self) -> str:
        return f"WalletIdentity(address={self.address!r})"


@dataclass(frozen=True)
class PaymentIntent:
    """Payment of ``amount`` from the signing wallet to ``destination``.

    ``issuer`` is None for the native asset, which the ledger counts in drops.
    """

    destination: str
    amount: Decimal
    currency: str
    issuer: str | None = None
    memo: str | None = None

    @property
    def is_native(self) -> bool:
        return self.issuer is None


@dataclass(frozen=True)
class LedgerSubmission:
    success: bool
    tx_hash: str | None
    error_code: str | None = None

    @property
    def unconfirmed(self) -> bool:
        """Submitted with a known hash but final outcome not observed."""
        return not self.success and self.tx_hash is not None and self.error_code in UNCONFIRMED_CODES


@dataclass(frozen=True)
class TrustLineBalance:
    """One trust line as seen from the queried account.

    ``counterparty`` is the other side of the line; a negative ``balance`` on
    the issuer's own lines is token it owes to that holder.
    """

    currency: str
    counterparty: str
    balance: Decimal


class LedgerService(Protocol):
    def submit(self, wallet: WalletIdentity, intent: PaymentIntent) -> LedgerSubmission: ...

    def get_balances(self, address: str) -> list[TrustLineBalance]: ...


__all__ = [
    "DROPS_PER_XRP",
    "LedgerService",
    "LedgerSubmission",
    "LedgerTransportError",
    "PaymentIntent",
    "TrustLineBalance",
    "UNCONFIRMED_CODES",
    "WalletIdentity",
    "to_drops",
]
