from __future__ import annotations

from dataclasses import dataclass, field

from services.ledger import LedgerSubmission, PaymentIntent, TrustLineBalance, WalletIdentity


@dataclass
class FakeLedger:
    """Ledger double that replays scripted outcomes in submission order.

    Unscripted submissions succeed with hashes H1, H2, ... An exception in
    ``outcomes`` is raised instead of returned.
    """

    outcomes: list[LedgerSubmission | Exception] = field(default_factory=list)
    balances: dict[str, list[TrustLineBalance]] = field(default_factory=dict)
    submissions: list[tuple[WalletIdentity, PaymentIntent]] = field(default_factory=list)

    def submit(self, wallet: WalletIdentity, intent: PaymentIntent) -> LedgerSubmission:
        self.submissions.append((wallet, intent))
        if self.outcomes:
            outcome = self.outcomes.pop(0)
            if isinstance(outcome, Exception):
                raise outcome
            return outcome
        return LedgerSubmission(success=True, tx_hash=f"H{len(self.submissions)}")

    def get_balances(self, address: str) -> list[TrustLineBalance]:
        return list(self.balances.get(address, []))
