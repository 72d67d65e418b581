from typing import Generator

import pytest
from sqlalchemy import Engine, create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from db.models import Base
from db.repositories import ExchangeRateRepository, FeeConfigRepository, PermissionedDomainRepository
from services.access_gate import AccessGate
from services.fee_policy import FeePolicyStore
from services.ledger import WalletIdentity
from services.rate_registry import RateRegistry
from services.swap_orchestrator import SwapEngineConfig, SwapOrchestrator
from tests.constants import ISSUER, ISSUER_SECRET
from tests.helpers.clock import FixedClock
from tests.helpers.fake_ledger import FakeLedger

# One shared connection so API handlers running in worker threads see the same in-memory database.
engine: Engine = create_engine(
    "sqlite:///:memory:", connect_args={"check_same_thread": False}, poolclass=StaticPool
)
session_factory = sessionmaker(engine)


@pytest.fixture(scope="function")
def test_session() -> Generator[Session, None, None]:
    with session_factory() as session:
        yield session


@pytest.fixture(scope="function", autouse=True)
def reset_db() -> Generator[None, None, None]:
    Base.metadata.create_all(engine)
    yield
    Base.metadata.drop_all(engine)


@pytest.fixture(scope="function")
def clock() -> FixedClock:
    return FixedClock()


@pytest.fixture(scope="function")
def rate_registry(test_session: Session, clock: FixedClock) -> RateRegistry:
    return RateRegistry(ExchangeRateRepository(test_session), clock=clock)


@pytest.fixture(scope="function")
def fee_policy(test_session: Session, clock: FixedClock) -> FeePolicyStore:
    return FeePolicyStore(FeeConfigRepository(test_session), clock=clock)


@pytest.fixture(scope="function")
def access_gate(test_session: Session, clock: FixedClock) -> AccessGate:
    return AccessGate(PermissionedDomainRepository(test_session), issuer_address=ISSUER, clock=clock)


@pytest.fixture(scope="function")
def fake_ledger() -> FakeLedger:
    return FakeLedger()


@pytest.fixture(scope="function")
def engine_config() -> SwapEngineConfig:
    return SwapEngineConfig(issuer=WalletIdentity(address=ISSUER, secret=ISSUER_SECRET))


@pytest.fixture(scope="function")
def orchestrator(
    rate_registry: RateRegistry,
    fee_policy: FeePolicyStore,
    access_gate: AccessGate,
    fake_ledger: FakeLedger,
) -> SwapOrchestrator:
    return SwapOrchestrator(rates=rate_registry, fees=fee_policy, access_gate=access_gate, ledger=fake_ledger)
