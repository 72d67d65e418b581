from __future__ import annotations

import logging
from decimal import Decimal

from domain.validation import require_address, require_currency

from .ledger import LedgerService

logger = logging.getLogger(__name__)


class IssuanceAccounting:
    """Outstanding supply of an issued token, read from the issuer's trust lines."""

    def __init__(self, ledger: LedgerService) -> None:
        self.ledger = ledger

    def get_total_issued(self, issuer_address: str, currency: str) -> Decimal:
        issuer = require_address(issuer_address)
        code = require_currency(currency)
        total = Decimal(0)
        holders = 0
        for line in self.ledger.get_balances(issuer):
            # Issuer-side balances are negative for token held by others.
            if line.currency.upper() != code or line.balance >= 0:
                continue
            total += -line.balance
            holders += 1
        logger.info("Total %s issued by %s: %s across %d holders", code, issuer, total, holders)
        return total


__all__ = ["IssuanceAccounting"]
