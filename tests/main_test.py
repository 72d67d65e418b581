from decimal import Decimal

import pytest
from sqlalchemy.orm import Session

from config import AppSettings
from db.repositories import ExchangeRateRepository, FeeConfigRepository, PermissionedDomainRepository
from domain.base_types import SwapType
from main import initialize, show_rate
from tests.constants import ISSUER


def test_initialize_seeds_rate_fees_and_domain(test_session: Session, capsys: pytest.CaptureFixture[str]) -> None:
    settings = AppSettings(issuer_address=ISSUER, domain_name="krw-iou.test")

    initialize(test_session, settings)
    initialize(test_session, settings)

    rates = ExchangeRateRepository(test_session).history("XRP", "KRW")
    assert [record.rate for record in rates] == [Decimal(4197)]
    _, total = FeeConfigRepository(test_session).list()
    assert total == len(SwapType)
    assert PermissionedDomainRepository(test_session).find_by_name("krw-iou.test") is not None
    assert "Default fee configs created: 3" in capsys.readouterr().out


def test_initialize_without_issuer_skips_domain(test_session: Session) -> None:
    initialize(test_session, AppSettings(issuer_address=""))

    assert PermissionedDomainRepository(test_session).find_active() is None


def test_show_rate(test_session: Session, capsys: pytest.CaptureFixture[str]) -> None:
    settings = AppSettings()
    show_rate(test_session, settings)
    assert "No active XRP/KRW rate" in capsys.readouterr().out

    initialize(test_session, settings)
    show_rate(test_session, settings)

    out = capsys.readouterr().out
    assert "XRP/KRW: 4197" in out
    assert "Bid:    4192.803" in out
