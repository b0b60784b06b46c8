"""Login flow — operator bypass, credential check, identity resolution."""

from __future__ import annotations

from dataclasses import dataclass

from invoicer.core.constants import OPERATOR_LANDING_ROUTE
from invoicer.core.interfaces import BaseIdentityBackend
from invoicer.core.logging import get_logger
from invoicer.core.types import Principal, ResolvedIdentity, normalize_email
from invoicer.rbac.identity import OperatorCredentialStore
from invoicer.rbac.resolver import SessionResolver, landing_route

log = get_logger(__name__)


@dataclass(frozen=True)
class OperatorSession:
    """System-operator login. Not a tenant account."""

    email: str
    landing_route: str = OPERATOR_LANDING_ROUTE


@dataclass(frozen=True)
class LoginResult:
    """Outcome of a login. ``identity`` is None exactly for operator sessions."""

    landing_route: str
    email: str
    identity: ResolvedIdentity | None = None
    operator: OperatorSession | None = None

    @property
    def is_operator(self) -> bool:
        return self.identity is None


class AuthService:
    def __init__(
        self,
        identity: BaseIdentityBackend,
        resolver: SessionResolver,
        operator: OperatorCredentialStore | None = None,
    ) -> None:
        self._identity = identity
        self._resolver = resolver
        self._operator = operator

    async def login(self, email: str, password: str) -> LoginResult:
        """Raises ``InvalidCredentials``, ``AccountNotFound`` or ``AccountDisabled``."""
        if self._operator is not None and self._operator.matches(email, password):
            log.info("operator_login")
            operator = OperatorSession(email=normalize_email(email))
            return LoginResult(
                landing_route=operator.landing_route, email=operator.email, operator=operator
            )

        principal_id = await self._identity.verify_credential(email, password)
        principal = Principal(principal_id=principal_id, email=normalize_email(email))
        identity = await self._resolver.resolve(principal)

        log.info(
            "login_success",
            tenant_id=identity.tenant_id,
            account_id=identity.account_id,
            role=identity.role.value,
        )
        return LoginResult(
            landing_route=landing_route(identity),
            email=principal.email,
            identity=identity,
        )
