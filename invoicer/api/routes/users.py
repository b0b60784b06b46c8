"""Tenant user management endpoints — guarded by the settings capability."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Response, status

from invoicer.api.db.tenants import TenantRepository
from invoicer.api.deps import get_lifecycle, get_tenant_store, require_capability
from invoicer.api.models.schemas import PasswordReset, SeatsOut, UserCreate, UserOut, UserUpdate
from invoicer.core.exceptions import NotAuthorized
from invoicer.core.types import Capability, ResolvedIdentity
from invoicer.rbac.lifecycle import AccountLifecycleManager
from invoicer.rbac.seats import can_create_user, user_stats

router = APIRouter(prefix="/users", tags=["users"])

require_settings = require_capability(Capability.SETTINGS)


@router.get("", response_model=list[UserOut])
async def list_users(
    actor: ResolvedIdentity = Depends(require_settings),
    lifecycle: AccountLifecycleManager = Depends(get_lifecycle),
) -> list[UserOut]:
    """All accounts of the caller's tenant, newest first."""
    return [UserOut.from_account(a) for a in await lifecycle.list_users(actor)]


@router.get("/seats", response_model=SeatsOut)
async def get_seats(
    actor: ResolvedIdentity = Depends(require_settings),
    lifecycle: AccountLifecycleManager = Depends(get_lifecycle),
    tenants: TenantRepository = Depends(get_tenant_store),
) -> SeatsOut:
    tenant = await tenants.get(actor.tenant_id)
    if tenant is None:
        raise NotAuthorized("tenant not found", {"tenant_id": actor.tenant_id})
    accounts = await lifecycle.list_users(actor)
    stats = user_stats(accounts, lifecycle.max_seats)
    return SeatsOut(
        can_create_user=can_create_user(tenant, accounts, max_seats=lifecycle.max_seats),
        subscription=tenant.subscription.value,
        total=stats.total,
        admins=stats.admins,
        users=stats.users,
        active_users=stats.active_users,
        remaining_seats=stats.remaining_seats,
    )


@router.post("", response_model=UserOut, status_code=status.HTTP_201_CREATED)
async def create_user(
    body: UserCreate,
    actor: ResolvedIdentity = Depends(require_settings),
    lifecycle: AccountLifecycleManager = Depends(get_lifecycle),
) -> UserOut:
    account = await lifecycle.create_user(
        actor,
        name=body.name,
        email=body.email,
        password=body.password,
        permissions=body.permission_set(),
    )
    return UserOut.from_account(account)


@router.get("/{account_id}", response_model=UserOut)
async def get_user(
    account_id: str,
    actor: ResolvedIdentity = Depends(require_settings),
    lifecycle: AccountLifecycleManager = Depends(get_lifecycle),
) -> UserOut:
    return UserOut.from_account(await lifecycle.get_user(actor, account_id))


@router.patch("/{account_id}", response_model=UserOut)
async def update_user(
    account_id: str,
    body: UserUpdate,
    actor: ResolvedIdentity = Depends(require_settings),
    lifecycle: AccountLifecycleManager = Depends(get_lifecycle),
) -> UserOut:
    """Update a user (partial update)."""
    account = await lifecycle.update_user(
        actor,
        account_id,
        name=body.name,
        email=body.email,
        permissions=body.permission_set(),
    )
    return UserOut.from_account(account)


@router.delete("/{account_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_user(
    account_id: str,
    actor: ResolvedIdentity = Depends(require_settings),
    lifecycle: AccountLifecycleManager = Depends(get_lifecycle),
) -> Response:
    await lifecycle.delete_user(actor, account_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/{account_id}/toggle-status", response_model=UserOut)
async def toggle_status(
    account_id: str,
    actor: ResolvedIdentity = Depends(require_settings),
    lifecycle: AccountLifecycleManager = Depends(get_lifecycle),
) -> UserOut:
    return UserOut.from_account(await lifecycle.toggle_status(actor, account_id))


@router.post("/{account_id}/reset-password", response_model=UserOut)
async def reset_password(
    account_id: str,
    body: PasswordReset,
    actor: ResolvedIdentity = Depends(require_settings),
    lifecycle: AccountLifecycleManager = Depends(get_lifecycle),
) -> UserOut:
    account = await lifecycle.reset_credential(actor, account_id, body.new_password)
    return UserOut.from_account(account)
