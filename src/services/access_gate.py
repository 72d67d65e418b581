from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Generic, TypeVar

from db.repositories import PermissionedDomainRepository
from domain import access
from domain.access import BlacklistEntry, DomainSettings, KycUpdate, PermissionCheck, PermissionedDomain, WhitelistEntry
from domain.base_types import DomainStatus, DomainType, KycStatus
from domain.errors import NotFoundError
from domain.validation import normalize_pagination, require_address, require_email, require_kyc_status
from utils.clock import Clock, utc_now

logger = logging.getLogger(__name__)

_Entry = TypeVar("_Entry", WhitelistEntry, BlacklistEntry)


@dataclass(frozen=True)
class AccountPage(Generic[_Entry]):
    accounts: list[_Entry]
    total: int
    page: int
    limit: int

    @property
    def total_pages(self) -> int:
        return -(-self.total // self.limit)


class AccessGate:
    """Evaluates and edits the permissioned domain of one issuer.

    With no active domain every account is allowed.
    """

    def __init__(
        self,
        repository: PermissionedDomainRepository,
        *,
        issuer_address: str | None = None,
        clock: Clock = utc_now,
    ) -> None:
        self.repository = repository
        self.issuer_address = issuer_address
        self._clock = clock

    def active_domain(self) -> PermissionedDomain | None:
        return self.repository.find_active(issuer_address=self.issuer_address)

    def check_permission(self, address: str) -> PermissionCheck:
        return access.check_permission(self.active_domain(), require_address(address))

    def initialize_domain(self, name: str, *, issuer_address: str | None = None) -> PermissionedDomain:
        existing = self.repository.find_by_name(name)
        if existing is not None:
            return existing

        issuer = issuer_address or self.issuer_address
        if issuer is None:
            raise NotFoundError("Issuer address not configured")
        domain = PermissionedDomain(
            domain=name.lower(),
            issuer_address=require_address(issuer),
            domain_type=DomainType.WHITELIST,
            status=DomainStatus.ACTIVE,
            description="KRW IOU Permissioned Domain",
            settings=DomainSettings(
                require_kyc=False,
                auto_approval=True,
                max_trust_line_amount="1000000",
                require_email_verification=False,
            ),
        )
        self.repository.save(domain)
        logger.info("Permissioned domain created: %s", domain.domain)
        return domain

    def add_to_whitelist(self, address: str, *, email: str | None = None, approved_by: str = "system") -> PermissionedDomain:
        account = require_address(address)
        if email:
            require_email(email)
        domain = self.repository.find_active(
            issuer_address=self.issuer_address,
            domain_types=(DomainType.WHITELIST, DomainType.KYC_REQUIRED),
        )
        if domain is None:
            raise NotFoundError("Active whitelist domain not found")

        updated = access.add_to_whitelist(domain, account, email=email, approved_by=approved_by, at=self._clock())
        self.repository.save(updated)
        logger.info("Account %s whitelisted in %s by %s", account, domain.domain, approved_by)
        return updated

    def add_to_blacklist(self, address: str, *, reason: str | None = None, blocked_by: str = "system") -> PermissionedDomain:
        account = require_address(address)
        domain = self._require_active_domain()
        updated = access.add_to_blacklist(domain, account, reason=reason, blocked_by=blocked_by, at=self._clock())
        self.repository.save(updated)
        logger.info("Account %s blacklisted in %s by %s: %s", account, domain.domain, blocked_by, reason)
        return updated

    def remove_from_blacklist(self, address: str) -> PermissionedDomain:
        account = require_address(address)
        domain = self._require_active_domain()
        updated = access.remove_from_blacklist(domain, account)
        self.repository.save(updated)
        logger.info("Account %s removed from blacklist of %s", account, domain.domain)
        return updated

    def update_kyc_status(self, address: str, status: KycStatus | str) -> KycUpdate:
        account = require_address(address)
        kyc_status = require_kyc_status(status)
        domain = self.active_domain()
        if domain is None:
            return KycUpdate(updated=False, address=account, kyc_status=kyc_status, reason="No active domain")

        updated, changed = access.update_kyc_status(domain, account, kyc_status, at=self._clock())
        if not changed:
            logger.info("KYC update skipped, %s is not whitelisted in %s", account, domain.domain)
            return KycUpdate(
                updated=False,
                address=account,
                kyc_status=kyc_status,
                domain=domain.domain,
                reason="Account not found in whitelist",
            )

        self.repository.save(updated)
        logger.info("KYC status of %s set to %s", account, kyc_status)
        return KycUpdate(
            updated=True,
            address=account,
            kyc_status=kyc_status,
            domain=domain.domain,
            reason=f"KYC status updated to {kyc_status}",
        )

    def auto_add_to_whitelist(self, address: str, *, email: str | None = None) -> PermissionedDomain | None:
        """Whitelist a newly registered account when the active domain auto-approves."""
        account = require_address(address)
        domain = self.repository.find_active(issuer_address=self.issuer_address, auto_approval=True)
        if domain is None:
            logger.info("Auto approval not enabled, %s left as is", account)
            return None
        updated = access.add_to_whitelist(domain, account, email=email, approved_by="auto_registration", at=self._clock())
        self.repository.save(updated)
        logger.info("Account %s auto-added to whitelist of %s", account, domain.domain)
        return updated

    def get_domain_settings(self) -> PermissionedDomain:
        return self._require_active_domain()

    def update_domain_settings(
        self,
        *,
        require_kyc: bool | None = None,
        auto_approval: bool | None = None,
        max_trust_line_amount: str | None = None,
        require_email_verification: bool | None = None,
    ) -> DomainSettings:
        domain = self._require_active_domain()
        updated = access.update_settings(
            domain,
            require_kyc=require_kyc,
            auto_approval=auto_approval,
            max_trust_line_amount=max_trust_line_amount,
            require_email_verification=require_email_verification,
        )
        self.repository.save(updated)
        logger.info("Domain settings of %s updated: %s", domain.domain, updated.settings)
        return updated.settings

    def list_allowed_accounts(self, *, page: int | None = None, limit: int | None = None) -> AccountPage[WhitelistEntry]:
        domain = self._require_active_domain()
        return self._paginate(list(domain.allowed_accounts), page, limit)

    def list_blocked_accounts(self, *, page: int | None = None, limit: int | None = None) -> AccountPage[BlacklistEntry]:
        domain = self._require_active_domain()
        return self._paginate(list(domain.blocked_accounts), page, limit)

    def _require_active_domain(self) -> PermissionedDomain:
        domain = self.active_domain()
        if domain is None:
            raise NotFoundError("Active domain not found")
        return domain

    @staticmethod
    def _paginate(entries: list[_Entry], page: int | None, limit: int | None) -> AccountPage[_Entry]:
        valid_page, valid_limit = normalize_pagination(page, limit)
        start = (valid_page - 1) * valid_limit
        return AccountPage(accounts=entries[start : start + valid_limit], total=len(entries), page=valid_page, limit=valid_limit)


__all__ = ["AccessGate", "AccountPage"]
