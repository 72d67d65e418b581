from __future__ import annotations

import re
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation

from domain.base_types import Address, CurrencyCode, KycStatus
from domain.errors import ValidationError

MAX_AMOUNT = Decimal("100000000")
MAX_PAGE_SIZE = 100

_CLASSIC_ADDRESS_RE = re.compile(r"^r[1-9A-HJ-NP-Za-km-z]{24,34}$")
_EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
_HEX_CURRENCY_RE = re.compile(r"^[0-9A-Fa-f]{40}$")


def is_valid_address(address: object) -> bool:
    return isinstance(address, str) and _CLASSIC_ADDRESS_RE.match(address) is not None


def is_valid_email(email: object) -> bool:
    return isinstance(email, str) and _EMAIL_RE.match(email) is not None


def require_address(address: object) -> Address:
    if not is_valid_address(address):
        raise ValidationError(f"Invalid ledger address: {address!r}")
    return Address(str(address))


def require_amount(amount: object) -> Decimal:
    """Parse a strictly positive amount no larger than ``MAX_AMOUNT``."""
    if isinstance(amount, bool):
        raise ValidationError(f"Invalid amount: {amount!r}")
    try:
        value = amount if isinstance(amount, Decimal) else Decimal(str(amount))
    except (InvalidOperation, ValueError) as exc:
        raise ValidationError(f"Invalid amount: {amount!r}") from exc
    if not value.is_finite() or value <= 0 or value > MAX_AMOUNT:
        raise ValidationError(f"Amount must be > 0 and <= {MAX_AMOUNT}, got {amount!r}")
    return value


def require_currency(currency: object) -> CurrencyCode:
    if not isinstance(currency, str):
        raise ValidationError(f"Invalid currency code: {currency!r}")
    if len(currency) == 3 and currency.isalnum():
        return CurrencyCode(currency.upper())
    if _HEX_CURRENCY_RE.match(currency):
        return CurrencyCode(currency.upper())
    raise ValidationError(f"Invalid currency code: {currency!r}")


def require_email(email: object) -> str:
    if not is_valid_email(email):
        raise ValidationError(f"Invalid email address: {email!r}")
    return str(email)


def require_kyc_status(status: object) -> KycStatus:
    try:
        return KycStatus(str(status))
    except ValueError as exc:
        raise ValidationError(f"Invalid KYC status: {status!r}") from exc


def require_utc(value: datetime, field: str) -> datetime:
    if value.tzinfo is None or value.utcoffset() is None:
        raise ValidationError(f"{field} must carry a UTC offset")
    return value.astimezone(timezone.utc)


def normalize_pagination(page: int | None, limit: int | None) -> tuple[int, int]:
    page_num = page or 1
    limit_num = limit or 20
    return max(1, page_num), min(max(1, limit_num), MAX_PAGE_SIZE)


__all__ = [
    "MAX_AMOUNT",
    "is_valid_address",
    "is_valid_email",
    "normalize_pagination",
    "require_address",
    "require_amount",
    "require_currency",
    "require_email",
    "require_kyc_status",
    "require_utc",
]
