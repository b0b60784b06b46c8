"""Authentication routes — login, company registration, current user, logout."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Response, status

from config.settings import get_settings
from invoicer.api.db.credentials import CredentialRepository
from invoicer.api.db.tenants import TenantRepository
from invoicer.api.db.users import UserRepository
from invoicer.api.deps import (
    get_auth_service,
    get_directory,
    get_identity_backend,
    get_tenant_store,
    require_identity,
)
from invoicer.api.middleware import issue_session_token
from invoicer.api.models.schemas import (
    LoginRequest,
    LoginResponse,
    MeResponse,
    RegisterRequest,
    UserOut,
)
from invoicer.core.constants import SESSION_COOKIE_NAME
from invoicer.core.logging import get_logger
from invoicer.core.types import ResolvedIdentity
from invoicer.rbac.auth import AuthService
from invoicer.rbac.resolver import landing_route
from invoicer.rbac.tenants import register_tenant

log = get_logger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])


def _set_session_cookie(response: Response, token: str) -> None:
    settings = get_settings()
    response.set_cookie(
        key=SESSION_COOKIE_NAME,
        value=token,
        httponly=True,
        secure=settings.invoicer_env == "prod",
        samesite="lax",
        max_age=settings.invoicer_jwt_expiry_hours * 3600,
        path="/",
    )


@router.post("/login", response_model=LoginResponse)
async def login(
    body: LoginRequest,
    response: Response,
    auth: AuthService = Depends(get_auth_service),
) -> LoginResponse:
    """Check credentials, resolve the account and set the session cookie."""
    result = await auth.login(body.email, body.password)

    if result.identity is None:
        token = issue_session_token(result.email, result.email, operator=True)
        _set_session_cookie(response, token)
        return LoginResponse(landing_route=result.landing_route, is_operator=True)

    token = issue_session_token(result.identity.principal_id, result.email)
    _set_session_cookie(response, token)
    return LoginResponse(
        landing_route=result.landing_route,
        user=UserOut.from_account(result.identity.account),
    )


@router.post("/register", response_model=LoginResponse, status_code=status.HTTP_201_CREATED)
async def register(
    body: RegisterRequest,
    response: Response,
    tenants: TenantRepository = Depends(get_tenant_store),
    directory: UserRepository = Depends(get_directory),
    identity: CredentialRepository = Depends(get_identity_backend),
) -> LoginResponse:
    """Create a company on the free plan with its owner account."""
    settings = get_settings()
    tenant, owner = await register_tenant(
        tenants,
        directory,
        identity,
        company_name=body.company_name,
        owner_email=body.email,
        password=body.password,
        min_password_length=settings.min_password_length,
    )
    token = issue_session_token(tenant.tenant_id, owner.email)
    _set_session_cookie(response, token)
    return LoginResponse(landing_route="/dashboard", user=UserOut.from_account(owner))


@router.get("/me", response_model=MeResponse)
async def get_me(identity: ResolvedIdentity = Depends(require_identity)) -> MeResponse:
    """Return the caller's resolved account and effective permissions."""
    return MeResponse(
        user=UserOut.from_account(identity.account),
        is_owner=identity.is_owner,
        landing_route=landing_route(identity),
        granted=[c.value for c in identity.permissions.granted()],
    )


@router.post("/logout")
async def logout() -> Response:
    """Clear the JWT cookie."""
    response = Response(status_code=status.HTTP_200_OK)
    response.delete_cookie(key=SESSION_COOKIE_NAME, path="/")
    return response
