"""Account lifecycle — create, edit, (de)activate, delete and reset tenant users.

Every operation takes the acting identity explicitly. Creation is limited to
tenants on an unexpired PRO plan, with at most ``max_seats`` non-admin
accounts.

Creating a user is two writes: the login credential, then the directory
record. They are not atomic. When the second write fails the credential is
left behind and :class:`OrphanedCredentialError` is raised so an operator can
remove it.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import replace
from datetime import datetime

from uuid_extensions import uuid7

from invoicer.core.constants import MAX_USER_SEATS, MIN_PASSWORD_LENGTH
from invoicer.core.exceptions import (
    BackendUnavailable,
    InvalidInput,
    InvoicerError,
    NotAuthorized,
    OrphanedCredentialError,
    RecordNotFound,
    SeatLimitExceeded,
)
from invoicer.core.interfaces import BaseIdentityBackend, BaseTenantStore, BaseUserDirectory
from invoicer.core.logging import get_logger
from invoicer.core.types import (
    Capability,
    PermissionSet,
    ResolvedIdentity,
    Role,
    Tenant,
    UserAccount,
    normalize_email,
    utc_now,
)
from invoicer.rbac.guard import is_granted
from invoicer.rbac.seats import UserStats, count_user_seats, user_stats

log = get_logger(__name__)


def _require_text(value: str | None, field_name: str) -> str:
    if value is None or not value.strip():
        msg = f"{field_name} is required"
        raise InvalidInput(msg, {"field": field_name})
    return value.strip()


def _validate_email(email: str | None) -> str:
    value = normalize_email(_require_text(email, "email"))
    local, _, domain = value.partition("@")
    if not local or "." not in domain:
        msg = "invalid email format"
        raise InvalidInput(msg, {"field": "email"})
    return value


def _require_permissions(permissions: PermissionSet) -> PermissionSet:
    if not permissions.has_any():
        msg = "at least one permission must be granted"
        raise InvalidInput(msg, {"field": "permissions"})
    return permissions


class AccountLifecycleManager:
    """Tenant user management for admins (and users holding ``settings``)."""

    def __init__(
        self,
        directory: BaseUserDirectory,
        tenants: BaseTenantStore,
        identity: BaseIdentityBackend,
        clock: Callable[[], datetime] = utc_now,
        max_seats: int = MAX_USER_SEATS,
        min_password_length: int = MIN_PASSWORD_LENGTH,
    ) -> None:
        self._directory = directory
        self._tenants = tenants
        self._identity = identity
        self._clock = clock
        self.max_seats: int = max_seats
        self.min_password_length: int = min_password_length

    # ── Create ───────────────────────────────────────────────────

    async def create_user(
        self,
        actor: ResolvedIdentity,
        *,
        name: str,
        email: str,
        password: str,
        permissions: PermissionSet,
    ) -> UserAccount:
        tenant = await self._authorize(actor)
        now = self._clock()

        if not tenant.is_pro_active(now):
            msg = "multi-user accounts require an active PRO subscription"
            raise NotAuthorized(
                msg,
                {"tenant_id": tenant.tenant_id, "subscription": tenant.subscription.value},
            )

        accounts = await self._directory.list_by_tenant(tenant.tenant_id)
        seats_used = count_user_seats(accounts)
        if seats_used >= self.max_seats:
            msg = f"limit of {self.max_seats} users reached for the PRO plan"
            raise SeatLimitExceeded(
                msg, {"tenant_id": tenant.tenant_id, "seats_used": seats_used}
            )

        clean_name = _require_text(name, "name")
        clean_email = _validate_email(email)
        self._check_password(password)
        _require_permissions(permissions)
        if await self._directory.find_by_email(tenant.tenant_id, clean_email) is not None:
            msg = "a user with this email already exists"
            raise InvalidInput(msg, {"field": "email"})

        principal_id = await self._call_backend(
            self._identity.create_credential(clean_email, password), "create_credential"
        )

        account = UserAccount(
            id=str(uuid7()),
            tenant_id=tenant.tenant_id,
            name=clean_name,
            email=clean_email,
            role=Role.USER,
            permissions=permissions,
            is_active=True,
            created_by=actor.account_id,
            created_at=now,
            updated_at=now,
        )
        try:
            await self._directory.add(account)
        except Exception as exc:
            log.error(
                "orphaned_credential",
                tenant_id=tenant.tenant_id,
                email=clean_email,
                principal_id=principal_id,
                error=str(exc),
            )
            msg = "login created but the account record could not be saved"
            raise OrphanedCredentialError(
                msg,
                email=clean_email,
                principal_id=principal_id,
                context={"tenant_id": tenant.tenant_id},
            ) from exc

        log.info(
            "user_created",
            tenant_id=tenant.tenant_id,
            account_id=account.id,
            created_by=actor.account_id,
            permissions=[c.value for c in permissions.granted()],
        )
        return account

    # ── Update ───────────────────────────────────────────────────

    async def update_user(
        self,
        actor: ResolvedIdentity,
        account_id: str,
        *,
        name: str | None = None,
        email: str | None = None,
        permissions: PermissionSet | None = None,
    ) -> UserAccount:
        """Partial update. ``permissions`` replaces the stored set as a whole.

        A new email must be free across all tenants. The login credential is
        renamed before the record is written, so both keep the same email.
        """
        tenant = await self._authorize(actor)
        target = await self._get_target(tenant, account_id)
        if target.is_admin:
            msg = "the owner account cannot be edited"
            raise NotAuthorized(msg, {"account_id": account_id})

        changes: dict[str, object] = {}
        if name is not None:
            changes["name"] = _require_text(name, "name")
        if email is not None:
            new_email = _validate_email(email)
            if new_email != normalize_email(target.email):
                # Logins resolve by email across tenants.
                if await self._directory.find_by_login(new_email) is not None:
                    msg = "a user with this email already exists"
                    raise InvalidInput(msg, {"field": "email"})
                changes["email"] = new_email
        if permissions is not None:
            changes["permissions"] = _require_permissions(permissions)

        updated = replace(target, **changes, updated_at=self._clock())
        if "email" in changes:
            await self._call_backend(
                self._identity.rename_credential(target.email, updated.email),
                "rename_credential",
            )
        try:
            await self._call_backend(self._directory.replace(updated), "replace_account")
        except InvoicerError:
            if "email" in changes:
                await self._restore_login(target.email, updated.email, tenant.tenant_id)
            raise
        log.info(
            "user_updated",
            tenant_id=tenant.tenant_id,
            account_id=account_id,
            fields=sorted(changes),
        )
        return updated

    # ── Delete ───────────────────────────────────────────────────

    async def delete_user(self, actor: ResolvedIdentity, account_id: str) -> None:
        """Remove the record, then try to revoke the login.

        Revocation is best-effort: a failure is logged, never raised.
        """
        tenant = await self._authorize(actor)
        target = await self._get_target(tenant, account_id)
        if target.is_admin:
            msg = "the owner account cannot be deleted"
            raise NotAuthorized(msg, {"account_id": account_id})

        await self._call_backend(self._directory.remove(account_id), "remove_account")
        log.info("user_deleted", tenant_id=tenant.tenant_id, account_id=account_id)

        try:
            await self._identity.revoke_credential(target.email)
        except Exception as exc:
            log.warning(
                "credential_revocation_failed",
                tenant_id=tenant.tenant_id,
                account_id=account_id,
                email=target.email,
                error=str(exc),
            )

    # ── Status ───────────────────────────────────────────────────

    async def toggle_status(self, actor: ResolvedIdentity, account_id: str) -> UserAccount:
        tenant = await self._authorize(actor)
        target = await self._get_target(tenant, account_id)
        if target.is_admin:
            msg = "the owner account cannot be deactivated"
            raise NotAuthorized(msg, {"account_id": account_id})

        updated = replace(target, is_active=not target.is_active, updated_at=self._clock())
        await self._call_backend(self._directory.replace(updated), "replace_account")
        log.info(
            "user_status_toggled",
            tenant_id=tenant.tenant_id,
            account_id=account_id,
            is_active=updated.is_active,
        )
        return updated

    # ── Credentials ──────────────────────────────────────────────

    async def reset_credential(
        self, actor: ResolvedIdentity, account_id: str, new_password: str
    ) -> UserAccount:
        """Rotate the user's password through the backend's admin channel."""
        tenant = await self._authorize(actor)
        target = await self._get_target(tenant, account_id)
        if target.is_admin:
            msg = "the owner changes their own password"
            raise NotAuthorized(msg, {"account_id": account_id})
        self._check_password(new_password)

        await self._call_backend(
            self._identity.set_credential(target.email, new_password), "set_credential"
        )
        updated = replace(target, updated_at=self._clock())
        await self._call_backend(self._directory.replace(updated), "replace_account")
        log.info("user_password_reset", tenant_id=tenant.tenant_id, account_id=account_id)
        return updated

    # ── Reads ────────────────────────────────────────────────────

    async def list_users(self, actor: ResolvedIdentity) -> list[UserAccount]:
        tenant = await self._authorize(actor)
        return await self._directory.list_by_tenant(tenant.tenant_id)

    async def get_user(self, actor: ResolvedIdentity, account_id: str) -> UserAccount:
        tenant = await self._authorize(actor)
        return await self._get_target(tenant, account_id)

    async def stats(self, actor: ResolvedIdentity) -> UserStats:
        return user_stats(await self.list_users(actor), self.max_seats)

    # ── Helpers ──────────────────────────────────────────────────

    async def _authorize(self, actor: ResolvedIdentity) -> Tenant:
        if not is_granted(actor, Capability.SETTINGS):
            msg = "user management requires the settings permission"
            raise NotAuthorized(msg, {"account_id": actor.account_id})
        tenant = await self._tenants.get(actor.tenant_id)
        if tenant is None:
            msg = "tenant not found"
            raise NotAuthorized(msg, {"tenant_id": actor.tenant_id})
        return tenant

    async def _get_target(self, tenant: Tenant, account_id: str) -> UserAccount:
        account = await self._directory.get(account_id)
        # Accounts of other tenants are reported as missing.
        if account is None or account.tenant_id != tenant.tenant_id:
            msg = "user not found"
            raise RecordNotFound(msg, {"account_id": account_id})
        return account

    async def _restore_login(self, old_email: str, new_email: str, tenant_id: str) -> None:
        try:
            await self._identity.rename_credential(new_email, old_email)
        except Exception as exc:
            log.error(
                "credential_rename_stranded",
                tenant_id=tenant_id,
                old_email=old_email,
                new_email=new_email,
                error=str(exc),
            )

    def _check_password(self, password: str | None) -> None:
        if not password:
            raise InvalidInput("password is required", {"field": "password"})
        if len(password) < self.min_password_length:
            msg = f"password must be at least {self.min_password_length} characters"
            raise InvalidInput(msg, {"field": "password"})

    @staticmethod
    async def _call_backend(awaitable, operation: str):  # type: ignore[no-untyped-def]
        try:
            return await awaitable
        except InvoicerError:
            raise
        except Exception as exc:
            log.error("backend_call_failed", operation=operation, error=str(exc))
            msg = f"{operation} failed"
            raise BackendUnavailable(msg, {"operation": operation}) from exc
