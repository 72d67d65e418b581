from __future__ import annotations

from datetime import datetime, timezone
from typing import Iterable, Sequence, TypeVar

from sqlalchemy import ColumnElement, and_, func, or_, select, update
from sqlalchemy.orm import Session

from db import models
from domain.access import BlacklistEntry, DomainSettings, PermissionedDomain, WhitelistEntry
from domain.base_types import (
    Address,
    CurrencyCode,
    DomainId,
    DomainStatus,
    DomainType,
    FeeConfigId,
    FeeType,
    KycStatus,
    RateId,
    RateSource,
    SwapType,
)
from domain.exchange_rate import ExchangeRate
from domain.fee import FeeConfig, FeeTier

_Child = TypeVar("_Child", models.WhitelistEntryOrm, models.BlacklistEntryOrm)

# Stored datetimes come back naive from SQLite, so in-session evaluation against aware values is skipped.
_BULK_UPDATE = {"synchronize_session": False}


def _as_utc(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _to_utc(value: datetime | None) -> datetime | None:
    """Normalize before writing; SQLite keeps wall-clock time and drops the offset."""
    if value is None:
        return None
    if value.tzinfo is None:
        raise ValueError(f"Naive datetime {value.isoformat()} cannot be stored")
    return value.astimezone(timezone.utc)


def _window_open(valid_from: ColumnElement[datetime], valid_to: ColumnElement[datetime | None], at: datetime):  # type: ignore[no-untyped-def]
    at = _to_utc(at)
    return and_(valid_from <= at, or_(valid_to.is_(None), valid_to >= at))


class ExchangeRateRepository:
    """Append-only store of exchange-rate versions."""

    def __init__(self, session: Session) -> None:
        self._session = session

    def add(self, record: ExchangeRate) -> ExchangeRate:
        self._session.add(self._to_orm(record))
        self._session.commit()
        return record

    def save(self, record: ExchangeRate) -> ExchangeRate:
        orm_rate = self._session.get(models.ExchangeRateOrm, record.id)
        if orm_rate is None:
            return self.add(record)
        orm_rate.rate = record.rate
        orm_rate.spread = record.spread
        orm_rate.bid_rate = record.bid_rate
        orm_rate.ask_rate = record.ask_rate
        orm_rate.is_active = record.is_active
        orm_rate.valid_to = _to_utc(record.valid_to)
        orm_rate.source_metadata = dict(record.source_metadata)
        self._session.commit()
        return record

    def get(self, rate_id: RateId) -> ExchangeRate | None:
        orm_rate = self._session.get(models.ExchangeRateOrm, rate_id)
        if orm_rate is None:
            return None
        return self._to_domain(orm_rate)

    def find_current(self, base_currency: str, quote_currency: str, at: datetime) -> ExchangeRate | None:
        stmt = (
            select(models.ExchangeRateOrm)
            .where(
                models.ExchangeRateOrm.base_currency == base_currency,
                models.ExchangeRateOrm.quote_currency == quote_currency,
                models.ExchangeRateOrm.is_active.is_(True),
                _window_open(models.ExchangeRateOrm.valid_from, models.ExchangeRateOrm.valid_to, at),
            )
            .order_by(models.ExchangeRateOrm.valid_from.desc(), models.ExchangeRateOrm.created_at.desc())
            .limit(1)
        )
        orm_rate = self._session.scalars(stmt).first()
        if orm_rate is None:
            return None
        return self._to_domain(orm_rate)

    def deactivate_all(self, base_currency: str, quote_currency: str, at: datetime) -> int:
        count = self._deactivate_pair(base_currency, quote_currency, _to_utc(at), retire=True)
        self._session.commit()
        return count

    def replace_active(self, record: ExchangeRate) -> ExchangeRate:
        """Close every active record of the pair at ``record.valid_from`` and insert ``record`` in one transaction.

        Records are retired immediately unless ``record`` starts after it was
        written; until then the previous record stays current.
        """
        starts_at = _to_utc(record.valid_from)
        written_at = _to_utc(record.created_at) or starts_at
        try:
            self._deactivate_pair(record.base_currency, record.quote_currency, starts_at, retire=starts_at <= written_at)
            self._session.add(self._to_orm(record))
            self._session.commit()
        except Exception:
            self._session.rollback()
            raise
        return record

    def history(self, base_currency: str, quote_currency: str, *, limit: int = 50) -> list[ExchangeRate]:
        stmt = (
            select(models.ExchangeRateOrm)
            .where(
                models.ExchangeRateOrm.base_currency == base_currency,
                models.ExchangeRateOrm.quote_currency == quote_currency,
            )
            .order_by(models.ExchangeRateOrm.created_at.desc())
            .limit(limit)
        )
        return [self._to_domain(orm_rate) for orm_rate in self._session.scalars(stmt)]

    def created_since(self, base_currency: str, quote_currency: str, start: datetime) -> list[ExchangeRate]:
        stmt = (
            select(models.ExchangeRateOrm)
            .where(
                models.ExchangeRateOrm.base_currency == base_currency,
                models.ExchangeRateOrm.quote_currency == quote_currency,
                models.ExchangeRateOrm.created_at >= _to_utc(start),
            )
            .order_by(models.ExchangeRateOrm.created_at.asc())
        )
        return [self._to_domain(orm_rate) for orm_rate in self._session.scalars(stmt)]

    def _deactivate_pair(self, base_currency: str, quote_currency: str, at: datetime, *, retire: bool) -> int:
        pair_active = (
            models.ExchangeRateOrm.base_currency == base_currency,
            models.ExchangeRateOrm.quote_currency == quote_currency,
            models.ExchangeRateOrm.is_active.is_(True),
        )
        closed = self._session.execute(
            update(models.ExchangeRateOrm)
            .where(*pair_active, or_(models.ExchangeRateOrm.valid_to.is_(None), models.ExchangeRateOrm.valid_to > at))
            .values(valid_to=at),
            execution_options=_BULK_UPDATE,
        )
        if not retire:
            return int(closed.rowcount or 0)  # type: ignore[attr-defined]
        result = self._session.execute(
            update(models.ExchangeRateOrm).where(*pair_active).values(is_active=False),
            execution_options=_BULK_UPDATE,
        )
        return int(result.rowcount or 0)  # type: ignore[attr-defined]

    @staticmethod
    def _to_orm(record: ExchangeRate) -> models.ExchangeRateOrm:
        return models.ExchangeRateOrm(
            id=record.id,
            base_currency=record.base_currency,
            quote_currency=record.quote_currency,
            rate=record.rate,
            spread=record.spread,
            bid_rate=record.bid_rate,
            ask_rate=record.ask_rate,
            is_active=record.is_active,
            valid_from=_to_utc(record.valid_from),
            valid_to=_to_utc(record.valid_to),
            source=record.source.value,
            source_metadata=dict(record.source_metadata),
            created_by=record.created_by,
            created_at=_to_utc(record.created_at or record.valid_from),
        )

    @staticmethod
    def _to_domain(orm_rate: models.ExchangeRateOrm) -> ExchangeRate:
        return ExchangeRate(
            id=RateId(orm_rate.id),
            base_currency=CurrencyCode(orm_rate.base_currency),
            quote_currency=CurrencyCode(orm_rate.quote_currency),
            rate=orm_rate.rate,
            spread=orm_rate.spread,
            is_active=orm_rate.is_active,
            valid_from=_as_utc(orm_rate.valid_from),
            valid_to=_as_utc(orm_rate.valid_to),
            source=RateSource(orm_rate.source),
            source_metadata=dict(orm_rate.source_metadata or {}),
            created_by=orm_rate.created_by,
            created_at=_as_utc(orm_rate.created_at),
        )


class FeeConfigRepository:
    """Append-only store of fee-config versions; tiers keep their written order."""

    def __init__(self, session: Session) -> None:
        self._session = session

    def add(self, config: FeeConfig) -> FeeConfig:
        self._session.add(self._to_orm(config))
        self._session.commit()
        return config

    def save(self, config: FeeConfig) -> FeeConfig:
        orm_config = self._session.get(models.FeeConfigOrm, config.id)
        if orm_config is None:
            return self.add(config)
        orm_config.is_active = config.is_active
        orm_config.effective_to = _to_utc(config.effective_to)
        orm_config.description = config.description
        self._session.commit()
        return config

    def get(self, config_id: FeeConfigId) -> FeeConfig | None:
        orm_config = self._session.get(models.FeeConfigOrm, config_id)
        if orm_config is None:
            return None
        return self._to_domain(orm_config)

    def find_current(self, swap_type: SwapType, at: datetime) -> FeeConfig | None:
        stmt = (
            select(models.FeeConfigOrm)
            .where(
                models.FeeConfigOrm.swap_type == swap_type.value,
                models.FeeConfigOrm.is_active.is_(True),
                _window_open(models.FeeConfigOrm.effective_from, models.FeeConfigOrm.effective_to, at),
            )
            .order_by(models.FeeConfigOrm.effective_from.desc(), models.FeeConfigOrm.created_at.desc())
            .limit(1)
        )
        orm_config = self._session.scalars(stmt).first()
        if orm_config is None:
            return None
        return self._to_domain(orm_config)

    def replace_active(self, config: FeeConfig, at: datetime) -> FeeConfig:
        """Close active configs of the swap type at ``at`` and insert ``config`` in one transaction.

        Configs are retired immediately unless ``at`` is after ``config`` was
        written; until then the previous config stays current.
        """
        at = _to_utc(at)
        written_at = _to_utc(config.created_at) or at
        try:
            active = (
                models.FeeConfigOrm.swap_type == config.swap_type.value,
                models.FeeConfigOrm.is_active.is_(True),
            )
            self._session.execute(
                update(models.FeeConfigOrm)
                .where(
                    *active,
                    or_(models.FeeConfigOrm.effective_to.is_(None), models.FeeConfigOrm.effective_to > at),
                )
                .values(effective_to=at),
                execution_options=_BULK_UPDATE,
            )
            if at <= written_at:
                self._session.execute(
                    update(models.FeeConfigOrm).where(*active).values(is_active=False),
                    execution_options=_BULK_UPDATE,
                )
            self._session.add(self._to_orm(config))
            self._session.commit()
        except Exception:
            self._session.rollback()
            raise
        return config

    def list(
        self,
        *,
        swap_type: SwapType | None = None,
        is_active: bool | None = None,
        offset: int = 0,
        limit: int = 20,
    ) -> tuple[list[FeeConfig], int]:
        filters: list[ColumnElement[bool]] = []
        if swap_type is not None:
            filters.append(models.FeeConfigOrm.swap_type == swap_type.value)
        if is_active is not None:
            filters.append(models.FeeConfigOrm.is_active.is_(is_active))

        total = self._session.scalar(select(func.count()).select_from(models.FeeConfigOrm).where(*filters)) or 0
        stmt = (
            select(models.FeeConfigOrm)
            .where(*filters)
            .order_by(models.FeeConfigOrm.created_at.desc())
            .offset(offset)
            .limit(limit)
        )
        return [self._to_domain(orm_config) for orm_config in self._session.scalars(stmt)], int(total)

    @staticmethod
    def _to_orm(config: FeeConfig) -> models.FeeConfigOrm:
        orm_config = models.FeeConfigOrm(
            id=config.id,
            swap_type=config.swap_type.value,
            fee_type=config.fee_type.value,
            base_fee=config.base_fee,
            min_fee=config.min_fee,
            max_fee=config.max_fee,
            is_active=config.is_active,
            effective_from=_to_utc(config.effective_from),
            effective_to=_to_utc(config.effective_to),
            description=config.description,
            created_by=config.created_by,
            created_at=_to_utc(config.created_at or config.effective_from),
        )
        orm_config.tiers = [
            models.FeeTierOrm(
                position=position,
                min_amount=tier.min_amount,
                max_amount=tier.max_amount,
                fee_rate=tier.fee_rate,
            )
            for position, tier in enumerate(config.tiered_rates)
        ]
        return orm_config

    @staticmethod
    def _to_domain(orm_config: models.FeeConfigOrm) -> FeeConfig:
        return FeeConfig(
            id=FeeConfigId(orm_config.id),
            swap_type=SwapType(orm_config.swap_type),
            fee_type=FeeType(orm_config.fee_type),
            base_fee=orm_config.base_fee,
            min_fee=orm_config.min_fee,
            max_fee=orm_config.max_fee,
            tiered_rates=tuple(
                FeeTier(min_amount=tier.min_amount, max_amount=tier.max_amount, fee_rate=tier.fee_rate)
                for tier in orm_config.tiers
            ),
            is_active=orm_config.is_active,
            effective_from=_as_utc(orm_config.effective_from),
            effective_to=_as_utc(orm_config.effective_to),
            description=orm_config.description,
            created_by=orm_config.created_by,
            created_at=_as_utc(orm_config.created_at),
        )


class PermissionedDomainRepository:
    def __init__(self, session: Session) -> None:
        self._session = session

    def get(self, domain_id: DomainId) -> PermissionedDomain | None:
        orm_domain = self._session.get(models.PermissionedDomainOrm, domain_id)
        if orm_domain is None:
            return None
        return self._to_domain(orm_domain)

    def find_by_name(self, name: str) -> PermissionedDomain | None:
        stmt = select(models.PermissionedDomainOrm).where(models.PermissionedDomainOrm.domain == name.lower())
        return self._first(stmt)

    def find_active(
        self,
        *,
        issuer_address: str | None = None,
        domain_types: Iterable[DomainType] | None = None,
        auto_approval: bool | None = None,
    ) -> PermissionedDomain | None:
        stmt = select(models.PermissionedDomainOrm).where(
            models.PermissionedDomainOrm.status == DomainStatus.ACTIVE.value
        )
        if issuer_address is not None:
            stmt = stmt.where(models.PermissionedDomainOrm.issuer_address == issuer_address)
        if domain_types is not None:
            stmt = stmt.where(models.PermissionedDomainOrm.domain_type.in_([kind.value for kind in domain_types]))
        if auto_approval is not None:
            stmt = stmt.where(models.PermissionedDomainOrm.auto_approval.is_(auto_approval))
        return self._first(stmt)

    def save(self, domain: PermissionedDomain) -> PermissionedDomain:
        """Insert or update the aggregate, keyed by id."""
        orm_domain = self._session.get(models.PermissionedDomainOrm, domain.id)
        if orm_domain is None:
            orm_domain = models.PermissionedDomainOrm(id=domain.id)
            self._session.add(orm_domain)

        orm_domain.domain = domain.domain.lower()
        orm_domain.issuer_address = domain.issuer_address
        orm_domain.domain_type = domain.domain_type.value
        orm_domain.status = domain.status.value
        orm_domain.description = domain.description
        orm_domain.require_kyc = domain.settings.require_kyc
        orm_domain.auto_approval = domain.settings.auto_approval
        orm_domain.max_trust_line_amount = domain.settings.max_trust_line_amount
        orm_domain.require_email_verification = domain.settings.require_email_verification

        orm_domain.allowed_accounts = self._sync_children(
            orm_domain.allowed_accounts,
            domain.allowed_accounts,
            models.WhitelistEntryOrm,
        )
        orm_domain.blocked_accounts = self._sync_children(
            orm_domain.blocked_accounts,
            domain.blocked_accounts,
            models.BlacklistEntryOrm,
        )
        self._session.commit()
        return domain

    def _first(self, stmt) -> PermissionedDomain | None:  # type: ignore[no-untyped-def]
        orm_domain = self._session.scalars(stmt.limit(1)).first()
        if orm_domain is None:
            return None
        return self._to_domain(orm_domain)

    @staticmethod
    def _sync_children(
        existing: list[_Child],
        entries: Sequence[WhitelistEntry] | Sequence[BlacklistEntry],
        orm_type: type[_Child],
    ) -> list[_Child]:
        # Rows are updated in place by address so the unit of work never inserts a duplicate before a delete.
        by_address = {row.address: row for row in existing}
        synced: list[_Child] = []
        for position, entry in enumerate(entries):
            row = by_address.pop(entry.address, None) or orm_type()
            row.position = position
            for field, value in entry.model_dump().items():
                setattr(row, field, value.value if isinstance(value, KycStatus) else value)
            synced.append(row)
        return synced

    @staticmethod
    def _to_domain(orm_domain: models.PermissionedDomainOrm) -> PermissionedDomain:
        return PermissionedDomain(
            id=DomainId(orm_domain.id),
            domain=orm_domain.domain,
            issuer_address=Address(orm_domain.issuer_address),
            domain_type=DomainType(orm_domain.domain_type),
            status=DomainStatus(orm_domain.status),
            description=orm_domain.description,
            allowed_accounts=tuple(
                WhitelistEntry(
                    address=Address(row.address),
                    email=row.email,
                    kyc_status=KycStatus(row.kyc_status),
                    approved_at=_as_utc(row.approved_at),
                    approved_by=row.approved_by,
                )
                for row in orm_domain.allowed_accounts
            ),
            blocked_accounts=tuple(
                BlacklistEntry(
                    address=Address(row.address),
                    reason=row.reason,
                    blocked_at=_as_utc(row.blocked_at),
                    blocked_by=row.blocked_by,
                )
                for row in orm_domain.blocked_accounts
            ),
            settings=DomainSettings(
                require_kyc=orm_domain.require_kyc,
                auto_approval=orm_domain.auto_approval,
                max_trust_line_amount=orm_domain.max_trust_line_amount,
                require_email_verification=orm_domain.require_email_verification,
            ),
        )
