from __future__ import annotations

from datetime import datetime
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field

from domain.base_types import Address, DomainId, DomainStatus, DomainType, KycStatus


class WhitelistEntry(BaseModel):
    model_config = ConfigDict(frozen=True)

    address: Address
    email: str | None = None
    kyc_status: KycStatus = KycStatus.PENDING
    approved_at: datetime | None = None
    approved_by: str | None = None


class BlacklistEntry(BaseModel):
    model_config = ConfigDict(frozen=True)

    address: Address
    reason: str | None = None
    blocked_at: datetime
    blocked_by: str | None = None


class DomainSettings(BaseModel):
    model_config = ConfigDict(frozen=True)

    require_kyc: bool = False
    auto_approval: bool = False
    max_trust_line_amount: str = "1000000"
    require_email_verification: bool = True


class PermissionedDomain(BaseModel):
    """Access-list aggregate governing who may hold and trade the issued token."""

    model_config = ConfigDict(frozen=True)

    id: DomainId = DomainId(Field(default_factory=uuid4))
    domain: str
    issuer_address: Address
    domain_type: DomainType = DomainType.WHITELIST
    status: DomainStatus = DomainStatus.ACTIVE
    description: str = ""
    allowed_accounts: tuple[WhitelistEntry, ...] = ()
    blocked_accounts: tuple[BlacklistEntry, ...] = ()
    settings: DomainSettings = DomainSettings()

    def whitelist_entry(self, address: str) -> WhitelistEntry | None:
        return next((entry for entry in self.allowed_accounts if entry.address == address), None)

    def blacklist_entry(self, address: str) -> BlacklistEntry | None:
        return next((entry for entry in self.blocked_accounts if entry.address == address), None)


class PermissionCheck(BaseModel):
    allowed: bool
    reason: str
    domain_type: DomainType | None = None
    domain: str | None = None


class KycUpdate(BaseModel):
    updated: bool
    address: Address
    kyc_status: KycStatus
    domain: str | None = None
    reason: str


def is_account_allowed(domain: PermissionedDomain, address: str) -> bool:
    if domain.domain_type is DomainType.BLACKLIST:
        return domain.blacklist_entry(address) is None

    entry = domain.whitelist_entry(address)
    if entry is None:
        return False
    if domain.domain_type is DomainType.KYC_REQUIRED:
        return entry.kyc_status is KycStatus.VERIFIED
    return not domain.settings.require_kyc or entry.kyc_status is KycStatus.VERIFIED


def check_permission(domain: PermissionedDomain | None, address: str) -> PermissionCheck:
    if domain is None:
        # Fail-open while no domain has been configured.
        return PermissionCheck(allowed=True, reason="No domain restrictions")

    allowed = is_account_allowed(domain, address)
    if allowed:
        reason = "Account is permitted"
    elif domain.domain_type is DomainType.BLACKLIST:
        reason = "Account is blocked"
    elif domain.whitelist_entry(address) is None:
        reason = "Account not in whitelist"
    else:
        reason = "Account KYC not verified"
    return PermissionCheck(allowed=allowed, reason=reason, domain_type=domain.domain_type, domain=domain.domain)


def add_to_whitelist(
    domain: PermissionedDomain,
    address: Address,
    *,
    email: str | None,
    approved_by: str,
    at: datetime,
) -> PermissionedDomain:
    existing = domain.whitelist_entry(address)
    if existing is not None:
        refreshed = existing.model_copy(update={"email": email, "approved_at": at, "approved_by": approved_by})
        accounts = tuple(refreshed if entry.address == address else entry for entry in domain.allowed_accounts)
    else:
        entry = WhitelistEntry(
            address=address,
            email=email,
            kyc_status=KycStatus.PENDING if domain.settings.require_kyc else KycStatus.VERIFIED,
            approved_at=at,
            approved_by=approved_by,
        )
        accounts = (*domain.allowed_accounts, entry)
    return domain.model_copy(update={"allowed_accounts": accounts})


def add_to_blacklist(
    domain: PermissionedDomain,
    address: Address,
    *,
    reason: str | None,
    blocked_by: str,
    at: datetime,
) -> PermissionedDomain:
    entry = BlacklistEntry(address=address, reason=reason, blocked_at=at, blocked_by=blocked_by)
    if domain.blacklist_entry(address) is not None:
        accounts = tuple(entry if blocked.address == address else blocked for blocked in domain.blocked_accounts)
    else:
        accounts = (*domain.blocked_accounts, entry)
    return domain.model_copy(update={"blocked_accounts": accounts})


def remove_from_blacklist(domain: PermissionedDomain, address: Address) -> PermissionedDomain:
    accounts = tuple(blocked for blocked in domain.blocked_accounts if blocked.address != address)
    return domain.model_copy(update={"blocked_accounts": accounts})


def update_kyc_status(
    domain: PermissionedDomain,
    address: Address,
    status: KycStatus,
    *,
    at: datetime,
) -> tuple[PermissionedDomain, bool]:
    """Returns the new aggregate and whether any whitelist entry changed."""
    existing = domain.whitelist_entry(address)
    if existing is None:
        return domain, False

    update: dict[str, object] = {"kyc_status": status}
    if status is KycStatus.VERIFIED:
        update["approved_at"] = at
    refreshed = existing.model_copy(update=update)
    accounts = tuple(refreshed if entry.address == address else entry for entry in domain.allowed_accounts)
    return domain.model_copy(update={"allowed_accounts": accounts}), True


def update_settings(domain: PermissionedDomain, **changes: object) -> PermissionedDomain:
    applied = {key: value for key, value in changes.items() if value is not None}
    settings = DomainSettings.model_validate({**domain.settings.model_dump(), **applied})
    return domain.model_copy(update={"settings": settings})


__all__ = [
    "BlacklistEntry",
    "DomainSettings",
    "KycUpdate",
    "PermissionCheck",
    "PermissionedDomain",
    "WhitelistEntry",
    "add_to_blacklist",
    "add_to_whitelist",
    "check_permission",
    "is_account_allowed",
    "remove_from_blacklist",
    "update_kyc_status",
    "update_settings",
]
