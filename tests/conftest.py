"""Pytest configuration, compatibility helpers and shared fixtures.

This project includes async tests marked with ``@pytest.mark.asyncio``.
Some environments run unit tests without ``pytest-asyncio`` installed, which
would otherwise make those tests fail at collection/runtime.
"""

from __future__ import annotations

import asyncio
import inspect
from datetime import datetime, timedelta, timezone
from typing import Any

import pytest

from invoicer.core.types import (
    PermissionSet,
    Principal,
    ResolvedIdentity,
    SubscriptionTier,
    UserAccount,
)
from invoicer.rbac.directory import InMemoryUserDirectory
from invoicer.rbac.guard import AccessGuard
from invoicer.rbac.identity import InMemoryIdentityBackend
from invoicer.rbac.lifecycle import AccountLifecycleManager
from invoicer.rbac.resolver import SessionResolver
from invoicer.rbac.tenants import TenantRegistry, register_tenant

BASE_NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)
_DASHBOARD_ONLY = PermissionSet(dashboard=True)


def pytest_configure(config: pytest.Config) -> None:
    """Register local markers used in the suite."""
    config.addinivalue_line("markers", "asyncio: mark test as asyncio-compatible")


def pytest_pyfunc_call(pyfuncitem: pytest.Function) -> bool | None:
    """Run ``@pytest.mark.asyncio`` tests without external plugins.

    If pytest-asyncio (or another async plugin) is installed, this hook may be
    bypassed by that plugin depending on hook ordering. In plugin-less
    environments, this fallback executes coroutine tests via ``asyncio.run``.
    """
    if pyfuncitem.get_closest_marker("asyncio") is None:
        return None

    test_func = pyfuncitem.obj
    if not inspect.iscoroutinefunction(test_func):
        return None

    kwargs: dict[str, Any] = {
        arg: pyfuncitem.funcargs[arg]
        for arg in pyfuncitem._fixtureinfo.argnames
    }
    loop = asyncio.new_event_loop()
    try:
        asyncio.set_event_loop(loop)
        loop.run_until_complete(test_func(**kwargs))
    finally:
        loop.close()
        # Keep a default loop available for sync tests that call
        # ``asyncio.get_event_loop()`` directly.
        asyncio.set_event_loop(asyncio.new_event_loop())
    return True


class World:
    """In-memory collaborators wired together, with a ticking clock."""

    def __init__(self) -> None:
        self._now = BASE_NOW
        self.directory = InMemoryUserDirectory()
        self.tenants = TenantRegistry()
        self.identity = InMemoryIdentityBackend()
        self.lifecycle = AccountLifecycleManager(
            self.directory, self.tenants, self.identity, clock=self.clock
        )
        self.resolver = SessionResolver(self.directory, self.tenants)
        self.guard = AccessGuard()

    def clock(self) -> datetime:
        # One second per call keeps created_at strictly increasing.
        self._now += timedelta(seconds=1)
        return self._now

    async def register(
        self,
        company: str = "Acme",
        email: str = "owner@acme.com",
        password: str = "owner-pass",
        *,
        tier: SubscriptionTier = SubscriptionTier.PRO,
        expires_in: timedelta = timedelta(days=30),
    ) -> ResolvedIdentity:
        """Register a tenant and return its owner's resolved identity."""
        tenant, owner = await register_tenant(
            self.tenants,
            self.directory,
            self.identity,
            company_name=company,
            owner_email=email,
            password=password,
            now=self.clock(),
        )
        if tier == SubscriptionTier.PRO:
            await self.tenants.update_subscription(
                tenant.tenant_id, SubscriptionTier.PRO, BASE_NOW + expires_in
            )
        return await self.resolver.resolve(Principal(tenant.tenant_id, owner.email))

    async def add_users(
        self,
        owner: ResolvedIdentity,
        count: int,
        permissions: PermissionSet | None = None,
    ) -> list[UserAccount]:
        created = []
        for i in range(count):
            created.append(
                await self.lifecycle.create_user(
                    owner,
                    name=f"User {i}",
                    email=f"user{i}@{owner.account.email.split('@')[1]}",
                    password="password1",
                    permissions=permissions or _DASHBOARD_ONLY,
                )
            )
        return created

    async def login_as(self, email: str, password: str) -> ResolvedIdentity:
        principal_id = await self.identity.verify_credential(email, password)
        return await self.resolver.resolve(Principal(principal_id, email))


@pytest.fixture()
def world() -> World:
    return World()
