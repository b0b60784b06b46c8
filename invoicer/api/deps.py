"""FastAPI dependency injection — shared instances for routes."""

from __future__ import annotations

from collections.abc import Awaitable, Callable

from fastapi import Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncEngine

from config.settings import get_settings
from invoicer.api.db.credentials import CredentialRepository
from invoicer.api.db.tenants import TenantRepository
from invoicer.api.db.users import UserRepository
from invoicer.api.middleware import get_session_claims
from invoicer.api.tokens import SessionClaims
from invoicer.core.types import Capability, Principal, ResolvedIdentity
from invoicer.data.db import get_engine
from invoicer.rbac.auth import AuthService
from invoicer.rbac.guard import AccessGuard
from invoicer.rbac.identity import OperatorCredentialStore
from invoicer.rbac.lifecycle import AccountLifecycleManager
from invoicer.rbac.resolver import SessionResolver

_operator_store: OperatorCredentialStore | None = None
_guard = AccessGuard()


# ── Database engine ───────────────────────────────────────────────


async def get_db_engine() -> AsyncEngine:
    """Provide the async database engine."""
    return await get_engine()


# ── Repositories ──────────────────────────────────────────────────


async def get_directory(engine: AsyncEngine = Depends(get_db_engine)) -> UserRepository:
    return UserRepository(engine)


async def get_tenant_store(engine: AsyncEngine = Depends(get_db_engine)) -> TenantRepository:
    return TenantRepository(engine)


async def get_identity_backend(
    engine: AsyncEngine = Depends(get_db_engine),
) -> CredentialRepository:
    return CredentialRepository(engine)


# ── Services ──────────────────────────────────────────────────────


def get_operator_store() -> OperatorCredentialStore:
    """Hashed once per process."""
    global _operator_store  # noqa: PLW0603
    if _operator_store is None:
        _operator_store = OperatorCredentialStore.from_settings()
    return _operator_store


def get_guard() -> AccessGuard:
    return _guard


async def get_resolver(
    directory: UserRepository = Depends(get_directory),
    tenants: TenantRepository = Depends(get_tenant_store),
) -> SessionResolver:
    return SessionResolver(directory, tenants)


async def get_auth_service(
    identity: CredentialRepository = Depends(get_identity_backend),
    resolver: SessionResolver = Depends(get_resolver),
) -> AuthService:
    return AuthService(identity, resolver, get_operator_store())


async def get_lifecycle(
    directory: UserRepository = Depends(get_directory),
    tenants: TenantRepository = Depends(get_tenant_store),
    identity: CredentialRepository = Depends(get_identity_backend),
) -> AccountLifecycleManager:
    settings = get_settings()
    return AccountLifecycleManager(
        directory,
        tenants,
        identity,
        max_seats=settings.max_user_seats,
        min_password_length=settings.min_password_length,
    )


# ── Auth dependencies ─────────────────────────────────────────────


async def require_identity(
    claims: SessionClaims = Depends(get_session_claims),
    resolver: SessionResolver = Depends(get_resolver),
) -> ResolvedIdentity:
    """Resolve the caller on every request.

    Deactivated or deleted accounts lose access immediately, even with a
    valid token. Account errors surface through the app's handlers as a
    generic "inaccessible" response.
    """
    if claims.operator:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Operator sessions have no tenant account",
        )
    principal = Principal(principal_id=claims.principal_id, email=claims.email)
    return await resolver.resolve(principal)


def require_capability(
    capability: Capability,
) -> Callable[..., Awaitable[ResolvedIdentity]]:
    """Route guard: 403 with the refusal payload unless access is granted."""

    async def _dependency(
        identity: ResolvedIdentity = Depends(require_identity),
        guard: AccessGuard = Depends(get_guard),
    ) -> ResolvedIdentity:
        decision = guard.request_access(capability, identity)
        if not decision.granted:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=decision.to_dict(),
            )
        return identity

    return _dependency
