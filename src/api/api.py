import logging
from contextlib import asynccontextmanager
from decimal import Decimal
from time import perf_counter
from typing import Annotated, Any, AsyncGenerator, Awaitable, Callable

import pydantic
from fastapi import Depends, FastAPI, Request, Response
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from sqlalchemy.orm import sessionmaker

from api.dependencies import (
    get_access_gate,
    get_engine_config,
    get_fee_policy,
    get_issuance_accounting,
    get_rate_registry,
    get_settings,
    get_swap_orchestrator,
)
from config import AppSettings, config
from db.db import create_db_engine
from domain.access import BlacklistEntry, DomainSettings, KycUpdate, PermissionCheck, PermissionedDomain, WhitelistEntry
from domain.base_types import FeeConfigId, FeeType, KycStatus, RateId, RateSource, SwapType
from domain.errors import (
    LedgerError,
    NotFoundError,
    PartialFailureError,
    PermissionDeniedError,
    QuoteUnavailableError,
    SwapEngineError,
    ValidationError,
)
from domain.exchange_rate import Conversion, ExchangeRate
from domain.fee import FeeCalculation, FeeConfig, FeeTier
from domain.swap import SwapPreview, SwapResult, SwapStatus
from services.access_gate import AccessGate
from services.fee_policy import FeeConfigDraft, FeePolicyStore
from services.issuance import IssuanceAccounting
from services.ledger import WalletIdentity
from services.rate_registry import RateRegistry, RateUpdate
from services.swap_orchestrator import MarketInfo, SwapEngineConfig, SwapOrchestrator
from services.xrpl_client import XrplClient

logger = logging.getLogger(__name__)

ERROR_STATUS = {
    ValidationError.code: 400,
    NotFoundError.code: 404,
    QuoteUnavailableError.code: 404,
    PermissionDeniedError.code: 403,
    LedgerError.code: 502,
    PartialFailureError.code: 502,
}


@asynccontextmanager
async def lifespan(fastapi_app: FastAPI) -> AsyncGenerator[None, None]:
    settings = config()
    engine = create_db_engine(settings.database_url)
    fastapi_app.state.sessionmaker = sessionmaker(engine)
    fastapi_app.state.ledger = XrplClient(
        rpc_url=settings.xrpl_rpc_url,
        validation_wait=settings.ledger_validation_wait_seconds,
    )
    yield
    engine.dispose()


app = FastAPI(lifespan=lifespan)


@app.middleware("http")
async def log_process_time(request: Request, call_next: Callable[[Request], Awaitable[Response]]) -> Response:
    start_time = perf_counter()
    response = await call_next(request)
    process_time = perf_counter() - start_time
    logger.info("Request time: %s %s: %.4fs", request.method, request.url, process_time)
    return response


@app.exception_handler(SwapEngineError)
async def swap_engine_error_handler(request: Request, exc: SwapEngineError) -> JSONResponse:
    return JSONResponse(status_code=ERROR_STATUS.get(exc.code, 500), content={"error": exc.code, "message": str(exc)})


@app.exception_handler(pydantic.ValidationError)
async def model_validation_error_handler(request: Request, exc: pydantic.ValidationError) -> JSONResponse:
    return JSONResponse(status_code=400, content={"error": ValidationError.code, "message": str(exc)})


class RateRequest(BaseModel):
    base_currency: str
    quote_currency: str
    rate: Decimal
    spread: Decimal | None = None
    source: RateSource = RateSource.MANUAL


class BatchRateRequest(BaseModel):
    rates: list[RateRequest]


class FeeConfigRequest(BaseModel):
    swap_type: SwapType
    fee_type: FeeType = FeeType.PERCENTAGE
    base_fee: Decimal = Decimal("0.003")
    min_fee: Decimal = Decimal(0)
    max_fee: Decimal | None = None
    tiered_rates: list[FeeTier] = []
    description: str = ""

    def to_draft(self) -> FeeConfigDraft:
        return FeeConfigDraft(
            swap_type=self.swap_type,
            fee_type=self.fee_type,
            base_fee=self.base_fee,
            min_fee=self.min_fee,
            max_fee=self.max_fee,
            tiered_rates=tuple(self.tiered_rates),
            description=self.description,
        )


class FeeSimulationRequest(FeeConfigRequest):
    amount: Decimal


class WhitelistRequest(BaseModel):
    address: str
    email: str | None = None


class BlacklistRequest(BaseModel):
    address: str
    reason: str | None = None


class KycRequest(BaseModel):
    address: str
    kyc_status: KycStatus


class DomainSettingsRequest(BaseModel):
    require_kyc: bool | None = None
    auto_approval: bool | None = None
    max_trust_line_amount: str | None = None
    require_email_verification: bool | None = None


class AccountListResponse(BaseModel):
    accounts: list[WhitelistEntry] | list[BlacklistEntry]
    total: int
    page: int
    limit: int
    total_pages: int


class FeeConfigListResponse(BaseModel):
    configs: list[FeeConfig]
    total: int
    page: int
    limit: int
    pages: int


class TotalIssuedResponse(BaseModel):
    issuer: str
    currency: str
    total_issued: Decimal


class BaseToTokenRequest(BaseModel):
    address: str
    amount: Decimal


class TokenToBaseRequest(BaseModel):
    address: str
    secret: str
    amount: Decimal


class RegistrationRequest(BaseModel):
    address: str
    email: str | None = None


RatesDep = Annotated[RateRegistry, Depends(get_rate_registry)]
FeesDep = Annotated[FeePolicyStore, Depends(get_fee_policy)]
AccessDep = Annotated[AccessGate, Depends(get_access_gate)]
SwapsDep = Annotated[SwapOrchestrator, Depends(get_swap_orchestrator)]
EngineDep = Annotated[SwapEngineConfig, Depends(get_engine_config)]


def _swap_response(result: SwapResult) -> JSONResponse:
    if result.status is SwapStatus.SUCCEEDED:
        status_code = 200
    elif result.status is SwapStatus.PARTIAL:
        status_code = 502
    else:
        status_code = ERROR_STATUS.get(result.error_code or "", 502)
    return JSONResponse(status_code=status_code, content=result.model_dump(mode="json"))


# Admin: exchange rates


@app.put("/admin/rates")
def set_rate(body: RateRequest, rates: RatesDep) -> ExchangeRate:
    return rates.set_rate(body.base_currency, body.quote_currency, body.rate, spread=body.spread, source=body.source)


@app.post("/admin/rates/batch")
def batch_update_rates(body: BatchRateRequest, rates: RatesDep) -> list[dict[str, Any]]:
    updates = [
        RateUpdate(base_currency=item.base_currency, quote_currency=item.quote_currency, rate=item.rate, spread=item.spread)
        for item in body.rates
    ]
    return [
        {"pair": o.pair, "success": o.success, "rate": str(o.rate), "rate_id": str(o.rate_id) if o.rate_id else None, "error": o.error}
        for o in rates.batch_update_rates(updates)
    ]


@app.delete("/admin/rates/{rate_id}")
def deactivate_rate(rate_id: RateId, rates: RatesDep) -> ExchangeRate:
    return rates.deactivate_rate(rate_id)


@app.get("/admin/rates/{base}/{quote}/history")
def rate_history(base: str, quote: str, rates: RatesDep, limit: int = 50) -> list[ExchangeRate]:
    return rates.rate_history(base, quote, limit=limit)


@app.get("/admin/rates/{base}/{quote}/statistics")
def rate_statistics(base: str, quote: str, rates: RatesDep, period: str = "24h") -> dict[str, Any]:
    stats = rates.rate_statistics(base, quote, period=period)
    return {
        "pair": stats.pair,
        "period": stats.period,
        "count": stats.count,
        "avg_rate": str(stats.avg_rate),
        "min_rate": str(stats.min_rate),
        "max_rate": str(stats.max_rate),
        "change": str(stats.change),
        "change_percent": str(stats.change_percent),
    }


# Admin: fee configs


@app.post("/admin/fees")
def create_fee_config(body: FeeConfigRequest, fees: FeesDep) -> FeeConfig:
    return fees.create_fee_config(body.to_draft(), created_by="admin")


@app.put("/admin/fees")
def replace_fee_config(body: FeeConfigRequest, fees: FeesDep) -> FeeConfig:
    return fees.replace_fee_config(body.to_draft(), created_by="admin")


@app.get("/admin/fees")
def list_fee_configs(
    fees: FeesDep,
    swap_type: SwapType | None = None,
    is_active: bool | None = None,
    page: int | None = None,
    limit: int | None = None,
) -> FeeConfigListResponse:
    result = fees.list_fee_configs(swap_type=swap_type, is_active=is_active, page=page, limit=limit)
    return FeeConfigListResponse(
        configs=result.configs, total=result.total, page=result.page, limit=result.limit, pages=result.pages
    )


@app.get("/admin/fees/{config_id}")
def get_fee_config(config_id: FeeConfigId, fees: FeesDep) -> FeeConfig:
    return fees.get_fee_config(config_id)


@app.delete("/admin/fees/{config_id}")
def deactivate_fee_config(config_id: FeeConfigId, fees: FeesDep) -> FeeConfig:
    return fees.deactivate_fee_config(config_id)


@app.post("/admin/fees/simulate")
def simulate_fee(body: FeeSimulationRequest, fees: FeesDep) -> FeeCalculation:
    return fees.simulate(body.to_draft(), body.amount)


# Admin: permissioned domain


@app.post("/admin/domain")
def initialize_domain(gate: AccessDep, settings: Annotated[AppSettings, Depends(get_settings)]) -> PermissionedDomain:
    return gate.initialize_domain(settings.domain_name)


@app.post("/admin/whitelist")
def add_to_whitelist(body: WhitelistRequest, gate: AccessDep) -> PermissionedDomain:
    return gate.add_to_whitelist(body.address, email=body.email, approved_by="admin")


@app.get("/admin/whitelist")
def list_allowed_accounts(gate: AccessDep, page: int | None = None, limit: int | None = None) -> AccountListResponse:
    result = gate.list_allowed_accounts(page=page, limit=limit)
    return AccountListResponse(
        accounts=result.accounts, total=result.total, page=result.page, limit=result.limit, total_pages=result.total_pages
    )


@app.post("/admin/blacklist")
def add_to_blacklist(body: BlacklistRequest, gate: AccessDep) -> PermissionedDomain:
    return gate.add_to_blacklist(body.address, reason=body.reason, blocked_by="admin")


@app.get("/admin/blacklist")
def list_blocked_accounts(gate: AccessDep, page: int | None = None, limit: int | None = None) -> AccountListResponse:
    result = gate.list_blocked_accounts(page=page, limit=limit)
    return AccountListResponse(
        accounts=result.accounts, total=result.total, page=result.page, limit=result.limit, total_pages=result.total_pages
    )


@app.delete("/admin/blacklist/{address}")
def remove_from_blacklist(address: str, gate: AccessDep) -> PermissionedDomain:
    return gate.remove_from_blacklist(address)


@app.put("/admin/kyc")
def update_kyc_status(body: KycRequest, gate: AccessDep) -> KycUpdate:
    return gate.update_kyc_status(body.address, body.kyc_status)


@app.get("/admin/domain/settings")
def get_domain_settings(gate: AccessDep) -> PermissionedDomain:
    return gate.get_domain_settings()


@app.patch("/admin/domain/settings")
def update_domain_settings(body: DomainSettingsRequest, gate: AccessDep) -> DomainSettings:
    return gate.update_domain_settings(**body.model_dump())


@app.get("/admin/permissions/{address}")
def check_permission(address: str, gate: AccessDep) -> PermissionCheck:
    return gate.check_permission(address)


@app.get("/admin/total-issued")
def total_issued(
    issuance: Annotated[IssuanceAccounting, Depends(get_issuance_accounting)], engine_config: EngineDep
) -> TotalIssuedResponse:
    total = issuance.get_total_issued(engine_config.issuer.address, engine_config.token_currency)
    return TotalIssuedResponse(
        issuer=engine_config.issuer.address, currency=engine_config.token, total_issued=total
    )


# User endpoints


@app.post("/accounts/register")
def register_account(body: RegistrationRequest, gate: AccessDep) -> dict[str, Any]:
    domain = gate.auto_add_to_whitelist(body.address, email=body.email)
    return {"address": body.address, "whitelisted": domain is not None}


@app.post("/swap/base-to-token")
def swap_base_to_token(body: BaseToTokenRequest, swaps: SwapsDep, engine_config: EngineDep) -> JSONResponse:
    return _swap_response(swaps.swap_base_to_token(body.address, body.amount, config=engine_config))


@app.post("/swap/token-to-base")
def swap_token_to_base(body: TokenToBaseRequest, swaps: SwapsDep, engine_config: EngineDep) -> JSONResponse:
    wallet = WalletIdentity(address=body.address, secret=body.secret)
    return _swap_response(swaps.swap_token_to_base(wallet, body.amount, config=engine_config))


@app.get("/swap/preview")
def preview_swap(swap_type: SwapType, amount: Decimal, swaps: SwapsDep, engine_config: EngineDep) -> SwapPreview:
    return swaps.preview(swap_type, amount, config=engine_config)


@app.get("/convert/base-to-token")
def convert_base_to_token(amount: Decimal, swaps: SwapsDep, engine_config: EngineDep) -> Conversion:
    return swaps.convert_base_to_token(amount, config=engine_config)


@app.get("/convert/token-to-base")
def convert_token_to_base(amount: Decimal, swaps: SwapsDep, engine_config: EngineDep) -> Conversion:
    return swaps.convert_token_to_base(amount, config=engine_config)


@app.get("/rates/current")
def current_rate(rates: RatesDep, engine_config: EngineDep) -> ExchangeRate:
    return rates.get_current_rate(engine_config.base_currency, engine_config.token_currency)


@app.get("/market")
def market_info(swaps: SwapsDep, engine_config: EngineDep) -> MarketInfo:
    return swaps.market_info(config=engine_config)
