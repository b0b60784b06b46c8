"""System-wide shared types — the single source of truth for all data structures."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field, fields, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from invoicer.core.constants import ROLE_ADMIN, ROLE_USER, TIER_FREE, TIER_PRO
from invoicer.core.exceptions import InvalidInput


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


# ── Enums ────────────────────────────────────────────────────────

class Capability(str, Enum):
    """The closed set of capabilities a tenant user can be granted."""

    DASHBOARD = "dashboard"
    INVOICES = "invoices"
    QUOTES = "quotes"
    CLIENTS = "clients"
    PRODUCTS = "products"
    STOCK_MANAGEMENT = "stockManagement"
    HR_MANAGEMENT = "hrManagement"
    REPORTS = "reports"
    SETTINGS = "settings"

    @property
    def attr(self) -> str:
        """Attribute name on :class:`PermissionSet`."""
        return self.name.lower()

    @property
    def label(self) -> str:
        return CAPABILITY_LABELS[self]

    @property
    def description(self) -> str:
        return CAPABILITY_DESCRIPTIONS[self]

    @property
    def route(self) -> str:
        return CAPABILITY_ROUTES[self]

    @classmethod
    def parse(cls, value: str) -> Capability:
        try:
            return cls(value)
        except ValueError as exc:
            msg = f"Unknown capability: {value!r}"
            raise InvalidInput(msg, {"capability": value}) from exc


class Role(str, Enum):
    ADMIN = ROLE_ADMIN
    USER = ROLE_USER


class SubscriptionTier(str, Enum):
    FREE = TIER_FREE
    PRO = TIER_PRO


CAPABILITY_LABELS: dict[Capability, str] = {
    Capability.DASHBOARD: "Dashboard",
    Capability.INVOICES: "Invoices",
    Capability.QUOTES: "Quotes",
    Capability.CLIENTS: "Clients",
    Capability.PRODUCTS: "Products",
    Capability.STOCK_MANAGEMENT: "Stock Management",
    Capability.HR_MANAGEMENT: "HR Management",
    Capability.REPORTS: "Financial Reports",
    Capability.SETTINGS: "Settings",
}

CAPABILITY_DESCRIPTIONS: dict[Capability, str] = {
    Capability.DASHBOARD: "Access to general statistics",
    Capability.INVOICES: "Create, edit and manage invoices",
    Capability.QUOTES: "Create, edit and manage quotes",
    Capability.CLIENTS: "Manage the client database",
    Capability.PRODUCTS: "Manage the product catalogue",
    Capability.STOCK_MANAGEMENT: "Access to advanced stock reports",
    Capability.HR_MANAGEMENT: "Manage employees and leave",
    Capability.REPORTS: "Access to financial analyses",
    Capability.SETTINGS: "Edit company settings and manage users",
}

CAPABILITY_ROUTES: dict[Capability, str] = {
    Capability.DASHBOARD: "/dashboard",
    Capability.INVOICES: "/invoices",
    Capability.QUOTES: "/quotes",
    Capability.CLIENTS: "/clients",
    Capability.PRODUCTS: "/products",
    Capability.STOCK_MANAGEMENT: "/stock-management",
    Capability.HR_MANAGEMENT: "/hr-management",
    Capability.REPORTS: "/reports",
    Capability.SETTINGS: "/settings",
}

# Settings is deliberately absent: it is never a landing page.
LANDING_PRIORITY: tuple[Capability, ...] = (
    Capability.DASHBOARD,
    Capability.INVOICES,
    Capability.QUOTES,
    Capability.CLIENTS,
    Capability.PRODUCTS,
    Capability.STOCK_MANAGEMENT,
    Capability.HR_MANAGEMENT,
    Capability.REPORTS,
)


# ── Permissions ──────────────────────────────────────────────────

@dataclass(frozen=True)
class PermissionSet:
    """One boolean flag per :class:`Capability`. No other keys, ever."""

    dashboard: bool = False
    invoices: bool = False
    quotes: bool = False
    clients: bool = False
    products: bool = False
    stock_management: bool = False
    hr_management: bool = False
    reports: bool = False
    settings: bool = False

    def __post_init__(self) -> None:
        for f in fields(self):
            if not isinstance(getattr(self, f.name), bool):
                msg = f"permission flag {f.name!r} must be a bool"
                raise InvalidInput(msg, {"flag": f.name})

    def get(self, capability: Capability) -> bool:
        return getattr(self, capability.attr)

    def granted(self) -> tuple[Capability, ...]:
        """Granted capabilities, in enumeration order."""
        return tuple(c for c in Capability if self.get(c))

    def has_any(self) -> bool:
        return any(self.get(c) for c in Capability)

    def is_admin_default(self) -> bool:
        return self == ADMIN_DEFAULT_PERMISSIONS

    def is_user_default(self) -> bool:
        return self == USER_DEFAULT_PERMISSIONS

    def with_grants(self, grants: Mapping[Capability, bool]) -> PermissionSet:
        """Return a copy with the given capabilities set."""
        return replace(self, **{c.attr: bool(v) for c, v in grants.items()})

    @classmethod
    def of(cls, *capabilities: Capability) -> PermissionSet:
        return cls(**{c.attr: True for c in capabilities})

    def to_dict(self) -> dict[str, bool]:
        """Wire form, keyed by capability value (``stockManagement``...)."""
        return {c.value: self.get(c) for c in Capability}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> PermissionSet:
        """Strict parse: exactly the nine capability keys, bool values."""
        expected = {c.value for c in Capability}
        keys = set(data)
        if keys != expected:
            msg = "permission set must contain exactly the known capabilities"
            raise InvalidInput(
                msg,
                {
                    "unknown": sorted(keys - expected),
                    "missing": sorted(expected - keys),
                },
            )
        return cls(**{c.attr: data[c.value] for c in Capability})


ADMIN_DEFAULT_PERMISSIONS = PermissionSet.of(*Capability)
USER_DEFAULT_PERMISSIONS = PermissionSet.of(Capability.DASHBOARD)


# ── Tenants & accounts ───────────────────────────────────────────

@dataclass
class Tenant:
    """A subscribing company. ``tenant_id`` is also its owner's principal id."""

    tenant_id: str
    name: str
    owner_email: str
    subscription: SubscriptionTier = SubscriptionTier.FREE
    expiry_date: datetime = field(default_factory=utc_now)
    created_at: datetime = field(default_factory=utc_now)

    def is_pro_active(self, now: datetime | None = None) -> bool:
        now = now or utc_now()
        return self.subscription == SubscriptionTier.PRO and self.expiry_date > now


@dataclass(frozen=True)
class UserAccount:
    """A login identity scoped to exactly one tenant."""

    id: str
    tenant_id: str
    name: str
    email: str
    role: Role = Role.USER
    permissions: PermissionSet = USER_DEFAULT_PERMISSIONS
    is_active: bool = True
    created_by: str | None = None
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN

    def to_record(self) -> dict[str, Any]:
        """Persisted document form (camelCase keys, ISO-8601 timestamps)."""
        record: dict[str, Any] = {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "role": self.role.value,
            "permissions": self.permissions.to_dict(),
            "isActive": self.is_active,
            "entrepriseId": self.tenant_id,
            "createdAt": self.created_at.isoformat(),
            "updatedAt": self.updated_at.isoformat(),
        }
        if self.created_by is not None:
            record["createdBy"] = self.created_by
        return record

    @classmethod
    def from_record(cls, record: Mapping[str, Any]) -> UserAccount:
        return cls(
            id=record["id"],
            tenant_id=record["entrepriseId"],
            name=record["name"],
            email=record["email"],
            role=Role(record["role"]),
            permissions=PermissionSet.from_dict(record["permissions"]),
            is_active=bool(record["isActive"]),
            created_by=record.get("createdBy"),
            created_at=datetime.fromisoformat(record["createdAt"]),
            updated_at=datetime.fromisoformat(record["updatedAt"]),
        )


# ── Sessions ─────────────────────────────────────────────────────

@dataclass(frozen=True)
class Principal:
    """What external authentication hands us: an id and a login email."""

    principal_id: str
    email: str


@dataclass(frozen=True)
class ResolvedIdentity:
    """The tenant-scoped account a session acts as."""

    principal_id: str
    account: UserAccount
    is_owner: bool = False

    @property
    def tenant_id(self) -> str:
        return self.account.tenant_id

    @property
    def account_id(self) -> str:
        return self.account.id

    @property
    def name(self) -> str:
        return self.account.name

    @property
    def role(self) -> Role:
        return self.account.role

    @property
    def permissions(self) -> PermissionSet:
        return self.account.permissions

    @property
    def is_active(self) -> bool:
        return self.account.is_active


def normalize_email(email: str) -> str:
    return email.strip().lower()
