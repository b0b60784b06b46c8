"""Session/identity resolution — from an authenticated principal to an account.

Resolution order:
1. The configured system-operator credential (handled by :class:`AuthService`,
   it never reaches the tenant directory).
2. The tenant owner: a principal whose id is a tenant id acts as that tenant's
   admin with every permission.
3. Any other principal must have an active account in the directory.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import replace

from invoicer.core.constants import DEFAULT_LANDING_ROUTE
from invoicer.core.exceptions import AccountDisabled, AccountNotFound
from invoicer.core.interfaces import BaseTenantStore, BaseUserDirectory, Subscription
from invoicer.core.logging import get_logger
from invoicer.core.types import (
    ADMIN_DEFAULT_PERMISSIONS,
    LANDING_PRIORITY,
    Principal,
    ResolvedIdentity,
    Role,
    Tenant,
    UserAccount,
    normalize_email,
)

log = get_logger(__name__)


def landing_route(identity: ResolvedIdentity) -> str:
    """First granted capability in landing priority; dashboard otherwise."""
    if identity.role == Role.ADMIN:
        return DEFAULT_LANDING_ROUTE
    for capability in LANDING_PRIORITY:
        if identity.permissions.get(capability):
            return capability.route
    return DEFAULT_LANDING_ROUTE


def owner_identity(
    principal: Principal, tenant: Tenant, accounts: list[UserAccount]
) -> ResolvedIdentity:
    """Admin identity for the tenant owner. Stored flags are ignored."""
    email = normalize_email(principal.email)
    stored = next(
        (a for a in accounts if a.role == Role.ADMIN and normalize_email(a.email) == email),
        None,
    )
    if stored is None:
        stored = UserAccount(
            id=principal.principal_id,
            tenant_id=tenant.tenant_id,
            name=email.split("@")[0],
            email=email,
            created_at=tenant.created_at,
            updated_at=tenant.created_at,
        )
    account = replace(
        stored, role=Role.ADMIN, permissions=ADMIN_DEFAULT_PERMISSIONS, is_active=True
    )
    return ResolvedIdentity(principal_id=principal.principal_id, account=account, is_owner=True)


def member_identity(principal: Principal, account: UserAccount | None) -> ResolvedIdentity:
    if account is None:
        raise AccountNotFound("no account for this login", {"email": principal.email})
    if not account.is_active:
        raise AccountDisabled("account deactivated", {"account_id": account.id})
    return ResolvedIdentity(principal_id=principal.principal_id, account=account)


class SessionResolver:
    """Maps principals to tenant-scoped identities."""

    def __init__(self, directory: BaseUserDirectory, tenants: BaseTenantStore) -> None:
        self._directory = directory
        self._tenants = tenants

    async def resolve(self, principal: Principal) -> ResolvedIdentity:
        tenant = await self._tenants.get(principal.principal_id)
        if tenant is not None:
            accounts = await self._directory.list_by_tenant(tenant.tenant_id)
            return owner_identity(principal, tenant, accounts)

        account = await self._directory.find_by_login(principal.email)
        return member_identity(principal, account)

    async def open_session(
        self,
        principal: Principal,
        on_change: Callable[[LiveSession], None] | None = None,
    ) -> LiveSession:
        """Resolve, then follow the tenant feed until :meth:`LiveSession.close`."""
        identity = await self.resolve(principal)
        tenant = await self._tenants.get(identity.tenant_id) if identity.is_owner else None
        session = LiveSession(principal, identity, tenant, on_change)
        session.attach(await self._directory.subscribe(identity.tenant_id, session.on_snapshot))
        log.info(
            "session_opened",
            tenant_id=identity.tenant_id,
            account_id=identity.account_id,
            role=identity.role.value,
        )
        return session


class LiveSession:
    """A resolved identity kept current by the directory feed.

    Permission edits replace ``identity`` in place. Deactivation or deletion
    revokes the session for good: ``identity`` becomes None and the feed is
    released.
    """

    def __init__(
        self,
        principal: Principal,
        identity: ResolvedIdentity,
        tenant: Tenant | None,
        on_change: Callable[[LiveSession], None] | None = None,
    ) -> None:
        self.principal: Principal = principal
        self.identity: ResolvedIdentity | None = identity
        self.revoked_reason: str | None = None
        self._account_id: str = identity.account_id
        self._tenant = tenant
        self._on_change = on_change
        self._subscription: Subscription | None = None

    @property
    def is_open(self) -> bool:
        return self._subscription is not None and self.identity is not None

    @property
    def landing_route(self) -> str:
        return landing_route(self.identity) if self.identity else DEFAULT_LANDING_ROUTE

    def attach(self, subscription: Subscription) -> None:
        if self.identity is None:
            # Revoked by the initial snapshot.
            subscription.cancel()
            return
        self._subscription = subscription

    def on_snapshot(self, accounts: list[UserAccount]) -> None:
        if self.identity is None:
            return
        if self._tenant is not None:
            self._set(owner_identity(self.principal, self._tenant, accounts))
            return

        account = next((a for a in accounts if a.id == self._account_id), None)
        if account is None:
            self._revoke("account_deleted")
        elif not account.is_active:
            self._revoke("account_disabled")
        else:
            self._set(ResolvedIdentity(principal_id=self.principal.principal_id, account=account))

    def close(self) -> None:
        if self._subscription is not None:
            self._subscription.cancel()
            self._subscription = None
            log.debug("session_closed", account_id=self._account_id)

    def _set(self, identity: ResolvedIdentity) -> None:
        if identity == self.identity:
            return
        self.identity = identity
        self._notify()

    def _revoke(self, reason: str) -> None:
        self.identity = None
        self.revoked_reason = reason
        log.info("session_revoked", account_id=self._account_id, reason=reason)
        self.close()
        self._notify()

    def _notify(self) -> None:
        if self._on_change is not None:
            self._on_change(self)
