"""Tenant access control — directory, account lifecycle, sessions and guard."""

from invoicer.rbac.auth import AuthService, LoginResult, OperatorSession
from invoicer.rbac.directory import InMemoryUserDirectory, SnapshotFeed
from invoicer.rbac.guard import AccessDecision, AccessGuard, AccessStatus, is_granted
from invoicer.rbac.identity import InMemoryIdentityBackend, OperatorCredentialStore
from invoicer.rbac.lifecycle import AccountLifecycleManager
from invoicer.rbac.resolver import LiveSession, SessionResolver, landing_route
from invoicer.rbac.seats import SeatTracker, UserStats, can_create_user, user_stats
from invoicer.rbac.tenants import TenantRegistry, register_tenant

__all__ = [
    "AccessDecision",
    "AccessGuard",
    "AccessStatus",
    "AccountLifecycleManager",
    "AuthService",
    "InMemoryIdentityBackend",
    "InMemoryUserDirectory",
    "LiveSession",
    "LoginResult",
    "OperatorCredentialStore",
    "OperatorSession",
    "SeatTracker",
    "SessionResolver",
    "SnapshotFeed",
    "TenantRegistry",
    "UserStats",
    "can_create_user",
    "is_granted",
    "landing_route",
    "register_tenant",
    "user_stats",
]
