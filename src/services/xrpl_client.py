from __future__ import annotations

import logging
import time
from decimal import Decimal
from typing import TYPE_CHECKING, Any, Callable

import httpx
from xrpl.clients import JsonRpcClient, XRPLRequestFailureException
from xrpl.constants import XRPLException
from xrpl.models.amounts import IssuedCurrencyAmount
from xrpl.models.requests import AccountLines, Tx
from xrpl.models.transactions import Memo, Payment
from xrpl.transaction import autofill_and_sign, submit
from xrpl.wallet import Wallet

from .ledger import LedgerSubmission, LedgerTransportError, PaymentIntent, TrustLineBalance, WalletIdentity, to_drops

if TYPE_CHECKING:
    from xrpl.clients.sync_client import SyncClient
    from xrpl.models.requests.request import Request

logger = logging.getLogger(__name__)

SUCCESS_RESULT = "tesSUCCESS"
# Provisional engine results that can still end up validated as success.
_PROVISIONAL_PREFIXES = ("tes", "ter")


class XrplClient:
    """XRPL JSON-RPC client implementing the ledger service contract.

    Payments are autofilled and signed locally with xrpl-py, so wallet seeds
    never leave the process; only the signed blob is submitted. The
    transaction is then polled with ``tx`` until it appears in a validated
    ledger or ``validation_wait`` seconds pass. Once a hash is known, later
    failures are reported on the submission instead of raised.
    """

    def __init__(
        self,
        *,
        rpc_url: str,
        validation_wait: float = 20.0,
        poll_interval: float = 1.0,
        client: SyncClient | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if not rpc_url:
            msg = "rpc_url must be provided"
            raise ValueError(msg)

        self.rpc_url = rpc_url
        self.validation_wait = validation_wait
        self.poll_interval = poll_interval
        self._client = client or JsonRpcClient(rpc_url)
        self._sleep = sleep

    def submit(self, wallet: WalletIdentity, intent: PaymentIntent) -> LedgerSubmission:
        try:
            signer = Wallet.from_seed(wallet.secret)
        except (ValueError, XRPLException):
            logger.error("Wallet secret for %s could not be decoded", wallet.address)
            return LedgerSubmission(success=False, tx_hash=None, error_code="badSecret")
        if signer.address != wallet.address:
            logger.error("Wallet secret does not derive %s", wallet.address)
            return LedgerSubmission(success=False, tx_hash=None, error_code="walletMismatch")

        payment = Payment(
            account=wallet.address,
            destination=intent.destination,
            amount=self._amount_field(intent),
            memos=[Memo(memo_data=intent.memo.encode("utf-8").hex().upper())] if intent.memo else None,
        )
        signed = self._call(lambda: autofill_and_sign(payment, self._client, signer), "autofill")
        tx_hash = signed.get_hash()

        try:
            response = self._call(lambda: submit(signed, self._client), "submit")
        except LedgerTransportError as exc:
            # The blob may have reached the network before the failure.
            logger.warning("Submission of %s from %s unconfirmed: %s", tx_hash, wallet.address, exc)
            return LedgerSubmission(success=False, tx_hash=tx_hash, error_code=exc.error_code)

        engine_result = str(response.result.get("engine_result", ""))
        logger.info("Submitted payment from %s to %s: %s (%s)", wallet.address, intent.destination, engine_result, tx_hash)
        if not engine_result.startswith(_PROVISIONAL_PREFIXES):
            return LedgerSubmission(success=False, tx_hash=tx_hash, error_code=engine_result or "submitFailed")

        try:
            final_result = self._wait_for_validation(tx_hash)
        except LedgerTransportError as exc:
            logger.warning("Validation of %s unconfirmed: %s", tx_hash, exc)
            return LedgerSubmission(success=False, tx_hash=tx_hash, error_code=exc.error_code)
        return LedgerSubmission(
            success=final_result == SUCCESS_RESULT,
            tx_hash=tx_hash,
            error_code=None if final_result == SUCCESS_RESULT else final_result,
        )

    def get_balances(self, address: str) -> list[TrustLineBalance]:
        balances: list[TrustLineBalance] = []
        marker: Any = None
        while True:
            result = self._request(AccountLines(account=address, ledger_index="validated", marker=marker))
            for line in result.get("lines") or []:
                balances.append(
                    TrustLineBalance(
                        currency=str(line["currency"]),
                        counterparty=str(line["account"]),
                        balance=Decimal(str(line["balance"])),
                    )
                )
            marker = result.get("marker")
            if marker is None:
                return balances

    def _wait_for_validation(self, tx_hash: str) -> str:
        deadline = time.monotonic() + self.validation_wait
        while True:
            try:
                result = self._request(Tx(transaction=tx_hash))
            except LedgerTransportError as exc:
                if exc.error_code != "txnNotFound":
                    raise
                result = {}
            if result.get("validated"):
                return str((result.get("meta") or {}).get("TransactionResult", "unknown"))
            if time.monotonic() >= deadline:
                return "validationTimeout"
            self._sleep(self.poll_interval)

    def _request(self, request: Request) -> dict[str, Any]:
        method = request.method.value
        response = self._call(lambda: self._client.request(request), method)
        if not response.is_successful():
            error_code = str(response.result.get("error", "unknownError"))
            message = response.result.get("error_message") or f"XRPL {method} failed: {error_code}"
            raise LedgerTransportError(message, error_code=error_code, payload=response.result)
        return response.result

    @staticmethod
    def _call(operation: Callable[[], Any], method: str) -> Any:
        try:
            return operation()
        except httpx.TimeoutException as exc:
            raise LedgerTransportError(f"XRPL {method} timed out", error_code="ledgerTimeout") from exc
        except httpx.HTTPStatusError as exc:
            raise LedgerTransportError(f"XRPL {method} request failed", status_code=exc.response.status_code) from exc
        except httpx.HTTPError as exc:
            raise LedgerTransportError(f"XRPL {method} request failed") from exc
        except XRPLRequestFailureException as exc:
            raise LedgerTransportError(str(exc), error_code=str(exc.error), payload=exc.error_message) from exc
        except XRPLException as exc:
            raise LedgerTransportError(f"XRPL {method} failed: {exc}") from exc

    @staticmethod
    def _amount_field(intent: PaymentIntent) -> str | IssuedCurrencyAmount:
        if intent.is_native:
            return to_drops(intent.amount)
        return IssuedCurrencyAmount(currency=intent.currency, issuer=str(intent.issuer), value=format(intent.amount, "f"))


__all__ = ["XrplClient"]
