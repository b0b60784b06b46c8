"""Pydantic V2 request/response schemas for the invoicer API."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from invoicer.core.types import PermissionSet, UserAccount


# ── Health ────────────────────────────────────────────────────────

class HealthResponse(BaseModel):
    status: str
    version: str
    environment: str


# ── Auth ──────────────────────────────────────────────────────────

class LoginRequest(BaseModel):
    email: str = Field(..., min_length=1)
    password: str = Field(..., min_length=1)


class RegisterRequest(BaseModel):
    company_name: str = Field(..., min_length=1, max_length=200)
    email: str = Field(..., min_length=1)
    password: str


class UserOut(BaseModel):
    id: str
    tenant_id: str
    name: str
    email: str
    role: str
    permissions: dict[str, bool]
    is_active: bool
    created_by: str | None = None
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_account(cls, account: UserAccount) -> UserOut:
        return cls(
            id=account.id,
            tenant_id=account.tenant_id,
            name=account.name,
            email=account.email,
            role=account.role.value,
            permissions=account.permissions.to_dict(),
            is_active=account.is_active,
            created_by=account.created_by,
            created_at=account.created_at,
            updated_at=account.updated_at,
        )


class LoginResponse(BaseModel):
    landing_route: str
    is_operator: bool = False
    user: UserOut | None = None


class MeResponse(BaseModel):
    user: UserOut
    is_owner: bool
    landing_route: str
    granted: list[str]


# ── Users ────────────────────────────────────────────────────────

class UserCreate(BaseModel):
    name: str
    email: str
    password: str
    permissions: dict[str, bool]

    def permission_set(self) -> PermissionSet:
        return PermissionSet.from_dict(self.permissions)


class UserUpdate(BaseModel):
    """Partial update. ``permissions`` must list all capabilities when present."""

    name: str | None = None
    email: str | None = None
    permissions: dict[str, bool] | None = None

    def permission_set(self) -> PermissionSet | None:
        if self.permissions is None:
            return None
        return PermissionSet.from_dict(self.permissions)


class PasswordReset(BaseModel):
    new_password: str


class SeatsOut(BaseModel):
    can_create_user: bool
    subscription: str
    total: int
    admins: int
    users: int
    active_users: int
    remaining_seats: int


# ── Access ───────────────────────────────────────────────────────

class AccessOut(BaseModel):
    status: str
    capability: str
    label: str
    message: str = ""
    identity: dict[str, Any] | None = None
