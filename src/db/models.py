from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import JSON, Boolean, DateTime, ForeignKey, Index, Integer, String, Uuid
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship
from sqlalchemy.types import TypeDecorator


class DecimalAsString(TypeDecorator):
    impl = String
    cache_ok = True

    def process_bind_param(self, value: Decimal | None, dialect: object) -> str | None:
        if value is None:
            return None
        return str(value)

    def process_result_value(self, value: str | None, dialect: object) -> Decimal | None:
        if value is None:
            return None
        return Decimal(value)


class Base(DeclarativeBase):
    pass


class ExchangeRateOrm(Base):
    __tablename__ = "exchange_rates"
    __table_args__ = (Index("ix_exchange_rates_current", "base_currency", "quote_currency", "is_active", "valid_from"),)

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    base_currency: Mapped[str] = mapped_column(String, nullable=False)
    quote_currency: Mapped[str] = mapped_column(String, nullable=False)
    rate: Mapped[Decimal] = mapped_column(DecimalAsString, nullable=False)
    spread: Mapped[Decimal] = mapped_column(DecimalAsString, nullable=False)
    bid_rate: Mapped[Decimal] = mapped_column(DecimalAsString, nullable=False)
    ask_rate: Mapped[Decimal] = mapped_column(DecimalAsString, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    valid_from: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    valid_to: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    source: Mapped[str] = mapped_column(String, nullable=False)
    source_metadata: Mapped[dict[str, Any]] = mapped_column(JSON, default=dict, nullable=False)
    created_by: Mapped[str] = mapped_column(String, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class FeeConfigOrm(Base):
    __tablename__ = "swap_fee_configs"
    __table_args__ = (Index("ix_swap_fee_configs_current", "swap_type", "is_active", "effective_from"),)

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    swap_type: Mapped[str] = mapped_column(String, nullable=False)
    fee_type: Mapped[str] = mapped_column(String, nullable=False)
    base_fee: Mapped[Decimal] = mapped_column(DecimalAsString, nullable=False)
    min_fee: Mapped[Decimal] = mapped_column(DecimalAsString, nullable=False)
    max_fee: Mapped[Decimal | None] = mapped_column(DecimalAsString, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    effective_from: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    effective_to: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    description: Mapped[str] = mapped_column(String, default="", nullable=False)
    created_by: Mapped[str] = mapped_column(String, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    tiers: Mapped[list["FeeTierOrm"]] = relationship(
        cascade="all, delete-orphan",
        back_populates="config",
        lazy="selectin",
        order_by="FeeTierOrm.position",
    )


class FeeTierOrm(Base):
    __tablename__ = "swap_fee_tiers"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    config_id: Mapped[UUID] = mapped_column(Uuid, ForeignKey("swap_fee_configs.id"), nullable=False)
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    min_amount: Mapped[Decimal] = mapped_column(DecimalAsString, nullable=False)
    max_amount: Mapped[Decimal | None] = mapped_column(DecimalAsString, nullable=True)
    fee_rate: Mapped[Decimal] = mapped_column(DecimalAsString, nullable=False)

    config: Mapped[FeeConfigOrm] = relationship(back_populates="tiers")


class PermissionedDomainOrm(Base):
    __tablename__ = "permissioned_domains"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    domain: Mapped[str] = mapped_column(String, unique=True, nullable=False)
    issuer_address: Mapped[str] = mapped_column(String, nullable=False)
    domain_type: Mapped[str] = mapped_column(String, nullable=False)
    status: Mapped[str] = mapped_column(String, nullable=False)
    description: Mapped[str] = mapped_column(String, default="", nullable=False)
    require_kyc: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    auto_approval: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    max_trust_line_amount: Mapped[str] = mapped_column(String, default="1000000", nullable=False)
    require_email_verification: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    allowed_accounts: Mapped[list["WhitelistEntryOrm"]] = relationship(
        cascade="all, delete-orphan",
        back_populates="domain",
        lazy="selectin",
        order_by="WhitelistEntryOrm.position",
    )
    blocked_accounts: Mapped[list["BlacklistEntryOrm"]] = relationship(
        cascade="all, delete-orphan",
        back_populates="domain",
        lazy="selectin",
        order_by="BlacklistEntryOrm.position",
    )


class WhitelistEntryOrm(Base):
    __tablename__ = "domain_allowed_accounts"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    domain_id: Mapped[UUID] = mapped_column(Uuid, ForeignKey("permissioned_domains.id"), nullable=False)
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    address: Mapped[str] = mapped_column(String, nullable=False, index=True)
    email: Mapped[str | None] = mapped_column(String, nullable=True)
    kyc_status: Mapped[str] = mapped_column(String, nullable=False)
    approved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    approved_by: Mapped[str | None] = mapped_column(String, nullable=True)

    domain: Mapped[PermissionedDomainOrm] = relationship(back_populates="allowed_accounts")


class BlacklistEntryOrm(Base):
    __tablename__ = "domain_blocked_accounts"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    domain_id: Mapped[UUID] = mapped_column(Uuid, ForeignKey("permissioned_domains.id"), nullable=False)
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    address: Mapped[str] = mapped_column(String, nullable=False, index=True)
    reason: Mapped[str | None] = mapped_column(String, nullable=True)
    blocked_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    blocked_by: Mapped[str | None] = mapped_column(String, nullable=True)

    domain: Mapped[PermissionedDomainOrm] = relationship(back_populates="blocked_accounts")
