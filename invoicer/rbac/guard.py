"""Access guard — per-action capability checks for protected operations.

Decisions are evaluated on every call and never cached: permissions can be
changed at any time through the live directory feed.
"""

from __future__ import annotations

import inspect
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any, TypeVar

from invoicer.core.logging import get_logger
from invoicer.core.types import Capability, ResolvedIdentity, Role

log = get_logger(__name__)

T = TypeVar("T")

ROLE_LABELS: dict[Role, str] = {
    Role.ADMIN: "Administrator",
    Role.USER: "User",
}


class AccessStatus(str, Enum):
    GRANTED = "granted"
    DENIED = "denied"


@dataclass(frozen=True)
class IdentitySummary:
    """What a refusal shows about the caller."""

    name: str
    role: Role
    is_active: bool

    @property
    def role_label(self) -> str:
        return ROLE_LABELS[self.role]

    @property
    def status_label(self) -> str:
        return "Active" if self.is_active else "Inactive"


@dataclass(frozen=True)
class AccessDecision:
    capability: Capability
    status: AccessStatus
    label: str
    identity: IdentitySummary | None = None
    message: str = ""

    @property
    def granted(self) -> bool:
        return self.status == AccessStatus.GRANTED

    def to_dict(self) -> dict[str, Any]:
        identity = None
        if self.identity is not None:
            identity = {
                "name": self.identity.name,
                "role": self.identity.role.value,
                "roleLabel": self.identity.role_label,
                "isActive": self.identity.is_active,
                "statusLabel": self.identity.status_label,
            }
        return {
            "status": self.status.value,
            "capability": self.capability.value,
            "label": self.label,
            "message": self.message,
            "identity": identity,
        }


def is_granted(identity: ResolvedIdentity | None, capability: Capability) -> bool:
    """Admin short-circuits; everyone else gets exactly their stored flags."""
    if identity is None or not identity.is_active:
        return False
    if identity.role == Role.ADMIN:
        return True
    return identity.permissions.get(capability)


def denial_message(capability: Capability, identity: ResolvedIdentity | None) -> str:
    if identity is None:
        return "You must be signed in to access this section."
    if not identity.is_active:
        return "Your account has been deactivated. Contact your administrator."
    return (
        f'You do not have the permissions required to access the "{capability.label}" '
        "section. Contact your administrator to request access."
    )


class AccessGuard:
    """Evaluates ``requestAccess(capability)`` for a resolved identity."""

    def request_access(
        self,
        capability: Capability | str,
        identity: ResolvedIdentity | None,
    ) -> AccessDecision:
        cap = capability if isinstance(capability, Capability) else Capability.parse(capability)

        if is_granted(identity, cap):
            return AccessDecision(capability=cap, status=AccessStatus.GRANTED, label=cap.label)

        summary = None
        if identity is not None:
            summary = IdentitySummary(
                name=identity.name,
                role=identity.role,
                is_active=identity.is_active,
            )
        log.debug(
            "access_denied",
            capability=cap.value,
            account_id=identity.account_id if identity else None,
        )
        return AccessDecision(
            capability=cap,
            status=AccessStatus.DENIED,
            label=cap.label,
            identity=summary,
            message=denial_message(cap, identity),
        )

    async def run(
        self,
        capability: Capability | str,
        identity: ResolvedIdentity | None,
        action: Callable[[], Awaitable[T] | T],
    ) -> tuple[AccessDecision, T | None]:
        """Execute ``action`` only if access is granted."""
        decision = self.request_access(capability, identity)
        if not decision.granted:
            return decision, None
        result = action()
        if inspect.isawaitable(result):
            result = await result
        return decision, result  # type: ignore[return-value]
