from __future__ import annotations

from decimal import Decimal
from functools import cache
from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict

PROJECT_ROOT = Path(__file__).resolve().parents[1]
ARTIFACTS_DIR = PROJECT_ROOT / "artifacts"
DB_FILE = ARTIFACTS_DIR / "iou_swap.db"


class AppSettings(BaseSettings):
    database_url: str = f"sqlite:///{DB_FILE}"

    xrpl_rpc_url: str = "https://s.altnet.rippletest.net:51234/"
    ledger_validation_wait_seconds: float = 20.0

    issuer_address: str = ""
    issuer_secret: str = ""

    token_currency: str = "KRW"
    base_currency: str = "XRP"
    default_fee_rate: Decimal = Decimal("0.003")
    default_spread: Decimal = Decimal("0.001")
    domain_name: str = "krw-iou.local"

    bithumb_base_url: str = "https://api.bithumb.com"

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")


@cache
def config() -> AppSettings:
    return AppSettings()
