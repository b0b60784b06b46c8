"""Tenant records and company registration.

Each tenant has:
- A tenant_id equal to its owner's principal id
- A subscription tier (free or pro) and an expiry date
- Exactly one admin account, created at registration
"""

from __future__ import annotations

from datetime import datetime

from uuid_extensions import uuid7

from invoicer.core.constants import MIN_PASSWORD_LENGTH
from invoicer.core.exceptions import InvalidInput, OrphanedCredentialError
from invoicer.core.interfaces import BaseIdentityBackend, BaseTenantStore, BaseUserDirectory
from invoicer.core.logging import get_logger
from invoicer.core.types import (
    ADMIN_DEFAULT_PERMISSIONS,
    Role,
    SubscriptionTier,
    Tenant,
    UserAccount,
    normalize_email,
    utc_now,
)

log = get_logger(__name__)


class TenantRegistry(BaseTenantStore):
    """In-memory tenant store. The SQL repository replaces it in the API."""

    def __init__(self) -> None:
        self._tenants: dict[str, Tenant] = {}

    async def get(self, tenant_id: str) -> Tenant | None:
        return self._tenants.get(tenant_id)

    async def add(self, tenant: Tenant) -> None:
        if tenant.tenant_id in self._tenants:
            msg = f"tenant {tenant.tenant_id} already exists"
            raise InvalidInput(msg, {"tenant_id": tenant.tenant_id})
        self._tenants[tenant.tenant_id] = tenant
        log.info(
            "tenant_created",
            tenant_id=tenant.tenant_id,
            name=tenant.name,
            subscription=tenant.subscription.value,
        )

    async def update_subscription(
        self, tenant_id: str, subscription: SubscriptionTier, expiry_date: datetime
    ) -> bool:
        tenant = self._tenants.get(tenant_id)
        if tenant is None:
            return False
        old = tenant.subscription
        tenant.subscription = subscription
        tenant.expiry_date = expiry_date
        log.info(
            "subscription_updated",
            tenant_id=tenant_id,
            old=old.value,
            new=subscription.value,
            expiry_date=expiry_date.isoformat(),
        )
        return True

    def list_tenants(self) -> list[Tenant]:
        return list(self._tenants.values())


async def register_tenant(
    tenants: BaseTenantStore,
    directory: BaseUserDirectory,
    identity: BaseIdentityBackend,
    *,
    company_name: str,
    owner_email: str,
    password: str,
    min_password_length: int = MIN_PASSWORD_LENGTH,
    now: datetime | None = None,
) -> tuple[Tenant, UserAccount]:
    """Create the owner login, the tenant record and its admin account.

    New tenants start on the free tier with an already-reached expiry. When
    a record write fails after the login exists, :class:`OrphanedCredentialError`
    is raised and the login is left for an operator to remove.
    """
    if not company_name.strip() or not owner_email.strip():
        raise InvalidInput("company name and owner email are required")
    if len(password) < min_password_length:
        msg = f"password must be at least {min_password_length} characters"
        raise InvalidInput(msg)

    email = normalize_email(owner_email)
    principal_id = await identity.create_credential(email, password)
    now = now or utc_now()

    tenant = Tenant(
        tenant_id=principal_id,
        name=company_name.strip(),
        owner_email=email,
        subscription=SubscriptionTier.FREE,
        expiry_date=now,
        created_at=now,
    )
    owner = UserAccount(
        id=str(uuid7()),
        tenant_id=principal_id,
        name=email.split("@")[0],
        email=email,
        role=Role.ADMIN,
        permissions=ADMIN_DEFAULT_PERMISSIONS,
        is_active=True,
        created_at=now,
        updated_at=now,
    )
    try:
        await tenants.add(tenant)
        await directory.add(owner)
    except Exception as exc:
        log.error(
            "orphaned_credential",
            tenant_id=principal_id,
            email=email,
            principal_id=principal_id,
            error=str(exc),
        )
        msg = "login created but the company records could not be saved"
        raise OrphanedCredentialError(
            msg,
            email=email,
            principal_id=principal_id,
            context={"tenant_id": principal_id},
        ) from exc

    log.info("tenant_registered", tenant_id=principal_id, owner_email=email)
    return tenant, owner
