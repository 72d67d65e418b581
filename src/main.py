from __future__ import annotations

import argparse
import logging
from decimal import Decimal
from typing import Sequence

from sqlalchemy.orm import Session

from config import AppSettings, config
from db.db import init_db
from db.repositories import ExchangeRateRepository, FeeConfigRepository, PermissionedDomainRepository
from services.access_gate import AccessGate
from services.bithumb_client import BithumbClient
from services.fee_policy import FeePolicyStore
from services.issuance import IssuanceAccounting
from services.rate_feed import RateFeed
from services.rate_registry import RateRegistry
from services.xrpl_client import XrplClient
from utils.formatting import format_decimal, format_rate

DEFAULT_RATE = Decimal("4197")

logger = logging.getLogger(__name__)


def build_rate_registry(session: Session, settings: AppSettings) -> RateRegistry:
    return RateRegistry(ExchangeRateRepository(session), default_spread=settings.default_spread)


def initialize(session: Session, settings: AppSettings) -> None:
    registry = build_rate_registry(session, settings)
    registry.initialize_default_rate(settings.base_currency, settings.token_currency, DEFAULT_RATE)

    fees = FeePolicyStore(FeeConfigRepository(session), default_fee_rate=settings.default_fee_rate)
    created = fees.initialize_default_fees()
    print(f"Default fee configs created: {len(created)}")

    if settings.issuer_address:
        gate = AccessGate(PermissionedDomainRepository(session), issuer_address=settings.issuer_address)
        domain = gate.initialize_domain(settings.domain_name)
        print(f"Permissioned domain: {domain.domain} ({domain.domain_type})")
    else:
        logger.warning("ISSUER_ADDRESS not set, permissioned domain not created")


def fetch_rate(session: Session, settings: AppSettings, symbol: str) -> None:
    feed = RateFeed(
        source=BithumbClient(base_url=settings.bithumb_base_url),
        registry=build_rate_registry(session, settings),
        quote_currency=settings.token_currency,
    )
    record = feed.refresh(symbol)
    print(format_rate(record))


def show_rate(session: Session, settings: AppSettings) -> None:
    record = build_rate_registry(session, settings).find_current_rate(settings.base_currency, settings.token_currency)
    if record is None:
        print(f"No active {settings.base_currency}/{settings.token_currency} rate")
        return
    print(f"{record.pair}: {format_decimal(record.rate)}")
    print(f"  Bid:    {format_decimal(record.bid_rate)}")
    print(f"  Ask:    {format_decimal(record.ask_rate)}")
    print(f"  Spread: {format_decimal(record.spread)}")
    print(f"  Source: {record.source} since {record.valid_from.isoformat()}")


def total_issued(settings: AppSettings) -> None:
    ledger = XrplClient(
        rpc_url=settings.xrpl_rpc_url,
        validation_wait=settings.ledger_validation_wait_seconds,
    )
    total = IssuanceAccounting(ledger).get_total_issued(settings.issuer_address, settings.token_currency)
    print(f"Total {settings.token_currency} issued by {settings.issuer_address}: {format_decimal(total)}")


def main(argv: Sequence[str] | None = None) -> None:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s %(message)s")
    parser = argparse.ArgumentParser(description="KRW IOU swap engine maintenance commands.")
    commands = parser.add_subparsers(dest="command", required=True)
    commands.add_parser("init", help="Create schema, default rate, default fees and permissioned domain.")
    fetch = commands.add_parser("fetch-rate", help="Record the latest Bithumb trade price as the current rate.")
    fetch.add_argument("symbol", nargs="?", default="XRP")
    commands.add_parser("show-rate", help="Print the current exchange rate.")
    commands.add_parser("total-issued", help="Print outstanding token supply from the ledger.")
    args = parser.parse_args(argv)

    settings = config()
    if args.command == "total-issued":
        total_issued(settings)
        return

    with init_db(settings.database_url) as session:
        if args.command == "init":
            initialize(session, settings)
        elif args.command == "fetch-rate":
            fetch_rate(session, settings, args.symbol)
        elif args.command == "show-rate":
            show_rate(session, settings)


if __name__ == "__main__":
    main()
