"""Route-guard surface — lets the presentation layer ask before rendering."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from invoicer.api.deps import get_guard, require_identity
from invoicer.api.models.schemas import AccessOut
from invoicer.core.types import ResolvedIdentity
from invoicer.rbac.guard import AccessGuard

router = APIRouter(prefix="/access", tags=["access"])


@router.get("/{capability}", response_model=AccessOut)
async def request_access(
    capability: str,
    identity: ResolvedIdentity = Depends(require_identity),
    guard: AccessGuard = Depends(get_guard),
) -> AccessOut:
    """Granted or Denied (with refusal details). Always 200 for known capabilities."""
    decision = guard.request_access(capability, identity)
    return AccessOut(**decision.to_dict())
