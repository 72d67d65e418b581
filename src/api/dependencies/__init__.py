from typing import Annotated, Generator

from fastapi import Depends, Request
from sqlalchemy.orm import Session

from config import AppSettings, config
from db.repositories import ExchangeRateRepository, FeeConfigRepository, PermissionedDomainRepository
from services.access_gate import AccessGate
from services.fee_policy import FeePolicyStore
from services.issuance import IssuanceAccounting
from services.ledger import LedgerService, WalletIdentity
from services.rate_registry import RateRegistry
from services.swap_orchestrator import SwapEngineConfig, SwapOrchestrator


def get_settings() -> AppSettings:
    return config()


def get_session(request: Request) -> Generator[Session, None, None]:
    with request.app.state.sessionmaker() as session:
        yield session


def get_ledger(request: Request) -> LedgerService:
    return request.app.state.ledger


def get_engine_config(settings: Annotated[AppSettings, Depends(get_settings)]) -> SwapEngineConfig:
    return SwapEngineConfig(
        issuer=WalletIdentity(address=settings.issuer_address, secret=settings.issuer_secret),
        token_currency=settings.token_currency,
        base_currency=settings.base_currency,
    )


def get_rate_registry(
    session: Annotated[Session, Depends(get_session)],
    settings: Annotated[AppSettings, Depends(get_settings)],
) -> RateRegistry:
    return RateRegistry(ExchangeRateRepository(session), default_spread=settings.default_spread)


def get_fee_policy(
    session: Annotated[Session, Depends(get_session)],
    settings: Annotated[AppSettings, Depends(get_settings)],
) -> FeePolicyStore:
    return FeePolicyStore(FeeConfigRepository(session), default_fee_rate=settings.default_fee_rate)


def get_access_gate(
    session: Annotated[Session, Depends(get_session)],
    settings: Annotated[AppSettings, Depends(get_settings)],
) -> AccessGate:
    return AccessGate(PermissionedDomainRepository(session), issuer_address=settings.issuer_address or None)


def get_issuance_accounting(ledger: Annotated[LedgerService, Depends(get_ledger)]) -> IssuanceAccounting:
    return IssuanceAccounting(ledger)


def get_swap_orchestrator(
    rates: Annotated[RateRegistry, Depends(get_rate_registry)],
    fees: Annotated[FeePolicyStore, Depends(get_fee_policy)],
    access_gate: Annotated[AccessGate, Depends(get_access_gate)],
    ledger: Annotated[LedgerService, Depends(get_ledger)],
) -> SwapOrchestrator:
    return SwapOrchestrator(rates=rates, fees=fees, access_gate=access_gate, ledger=ledger)
