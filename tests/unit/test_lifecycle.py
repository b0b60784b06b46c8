"""Tests for AccountLifecycleManager — create/update/delete/toggle/reset users."""

from __future__ import annotations

from datetime import timedelta
from unittest.mock import AsyncMock

import pytest

from invoicer.core.exceptions import (
    AccountDisabled,
    BackendUnavailable,
    InvalidCredentials,
    InvalidInput,
    NotAuthorized,
    OrphanedCredentialError,
    RecordNotFound,
    SeatLimitExceeded,
)
from invoicer.core.types import (
    Capability,
    PermissionSet,
    Principal,
    Role,
    SubscriptionTier,
    UserAccount,
)
from invoicer.rbac.directory import InMemoryUserDirectory
from invoicer.rbac.identity import InMemoryIdentityBackend
from invoicer.rbac.lifecycle import AccountLifecycleManager
from invoicer.rbac.resolver import SessionResolver
from invoicer.rbac.tenants import TenantRegistry, register_tenant

INVOICES_CLIENTS = PermissionSet.of(Capability.INVOICES, Capability.CLIENTS)


class _FailingAddDirectory(InMemoryUserDirectory):
    """Accepts writes until ``fail_adds`` is set."""

    def __init__(self) -> None:
        super().__init__()
        self.fail_adds = False

    async def add(self, account: UserAccount) -> None:
        if self.fail_adds:
            raise ConnectionError("record store offline")
        await super().add(account)


class _StickyIdentityBackend(InMemoryIdentityBackend):
    """Refuses to revoke credentials."""

    async def revoke_credential(self, email: str) -> None:
        raise ConnectionError("identity provider offline")


class TestCreateUser:
    @pytest.mark.asyncio
    async def test_creates_user_record_and_login(self, world) -> None:
        owner = await world.register()
        account = await world.lifecycle.create_user(
            owner,
            name=" Alice ",
            email="Alice@Acme.com",
            password="secret1",
            permissions=INVOICES_CLIENTS,
        )
        assert account.name == "Alice"
        assert account.email == "alice@acme.com"
        assert account.role == Role.USER
        assert account.is_active
        assert account.created_by == owner.account_id
        assert account.tenant_id == owner.tenant_id
        assert world.identity.has_credential("alice@acme.com")
        assert (await world.directory.get(account.id)) == account

    @pytest.mark.asyncio
    async def test_seat_limit_reached(self, world) -> None:
        owner = await world.register()
        await world.add_users(owner, 3)
        with pytest.raises(SeatLimitExceeded) as exc_info:
            await world.lifecycle.create_user(
                owner, name="D", email="d@acme.com", password="secret1",
                permissions=INVOICES_CLIENTS,
            )
        assert exc_info.value.context["seats_used"] == 3
        assert not world.identity.has_credential("d@acme.com")

    @pytest.mark.asyncio
    async def test_last_seat_can_be_filled(self, world) -> None:
        owner = await world.register()
        await world.add_users(owner, 2)
        await world.lifecycle.create_user(
            owner, name="C", email="c@acme.com", password="secret1",
            permissions=INVOICES_CLIENTS,
        )
        stats = await world.lifecycle.stats(owner)
        assert stats.users == 3
        assert stats.remaining_seats == 0
        assert stats.admins == 1
        assert stats.total == 4

    @pytest.mark.asyncio
    async def test_inactive_users_still_take_a_seat(self, world) -> None:
        owner = await world.register()
        created = await world.add_users(owner, 3)
        await world.lifecycle.toggle_status(owner, created[0].id)
        with pytest.raises(SeatLimitExceeded):
            await world.add_users(owner, 1)

    @pytest.mark.asyncio
    async def test_free_tier_cannot_add_users(self, world) -> None:
        owner = await world.register(tier=SubscriptionTier.FREE)
        with pytest.raises(NotAuthorized):
            await world.add_users(owner, 1)

    @pytest.mark.asyncio
    async def test_expired_pro_cannot_add_users(self, world) -> None:
        owner = await world.register(expires_in=timedelta(0))
        with pytest.raises(NotAuthorized):
            await world.add_users(owner, 1)

    @pytest.mark.asyncio
    async def test_empty_permissions_rejected_without_credential(self, world) -> None:
        owner = await world.register()
        with pytest.raises(InvalidInput) as exc_info:
            await world.lifecycle.create_user(
                owner, name="E", email="e@acme.com", password="secret1",
                permissions=PermissionSet(),
            )
        assert exc_info.value.context["field"] == "permissions"
        assert not world.identity.has_credential("e@acme.com")
        assert (await world.directory.find_by_login("e@acme.com")) is None

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        ("name", "email", "password", "field"),
        [
            ("", "x@acme.com", "secret1", "name"),
            ("X", "", "secret1", "email"),
            ("X", "not-an-email", "secret1", "email"),
            ("X", "x@acme.com", "short", "password"),
        ],
    )
    async def test_invalid_fields(self, world, name, email, password, field) -> None:
        owner = await world.register()
        with pytest.raises(InvalidInput) as exc_info:
            await world.lifecycle.create_user(
                owner, name=name, email=email, password=password,
                permissions=INVOICES_CLIENTS,
            )
        assert exc_info.value.context["field"] == field

    @pytest.mark.asyncio
    async def test_duplicate_email_in_tenant(self, world) -> None:
        owner = await world.register()
        await world.add_users(owner, 1)
        with pytest.raises(InvalidInput):
            await world.lifecycle.create_user(
                owner, name="Dup", email="USER0@acme.com", password="secret1",
                permissions=INVOICES_CLIENTS,
            )

    @pytest.mark.asyncio
    async def test_user_without_settings_cannot_manage(self, world) -> None:
        owner = await world.register()
        await world.add_users(owner, 1)
        member = await world.login_as("user0@acme.com", "password1")
        with pytest.raises(NotAuthorized):
            await world.add_users(member, 1)
        with pytest.raises(NotAuthorized):
            await world.lifecycle.list_users(member)

    @pytest.mark.asyncio
    async def test_user_with_settings_can_manage(self, world) -> None:
        owner = await world.register()
        await world.add_users(owner, 1, permissions=PermissionSet.of(Capability.SETTINGS))
        manager = await world.login_as("user0@acme.com", "password1")
        created = await world.lifecycle.create_user(
            manager, name="F", email="f@acme.com", password="secret1",
            permissions=INVOICES_CLIENTS,
        )
        assert created.created_by == manager.account_id

    @pytest.mark.asyncio
    async def test_record_write_failure_reports_orphaned_credential(self) -> None:
        directory = _FailingAddDirectory()
        tenants = TenantRegistry()
        identity = InMemoryIdentityBackend()
        tenant, owner_account = await register_tenant(
            tenants, directory, identity,
            company_name="Acme", owner_email="owner@acme.com", password="owner-pass",
        )
        await tenants.update_subscription(
            tenant.tenant_id, SubscriptionTier.PRO, tenant.created_at + timedelta(days=30)
        )
        owner = await SessionResolver(directory, tenants).resolve(
            Principal(tenant.tenant_id, owner_account.email)
        )
        lifecycle = AccountLifecycleManager(directory, tenants, identity)

        directory.fail_adds = True
        with pytest.raises(OrphanedCredentialError) as exc_info:
            await lifecycle.create_user(
                owner, name="G", email="g@acme.com", password="secret1",
                permissions=INVOICES_CLIENTS,
            )
        err = exc_info.value
        assert isinstance(err, BackendUnavailable)
        assert err.email == "g@acme.com"
        assert err.principal_id
        assert identity.has_credential("g@acme.com")
        assert (await directory.find_by_login("g@acme.com")) is None


class TestUpdateUser:
    @pytest.mark.asyncio
    async def test_permissions_replaced_wholesale(self, world) -> None:
        owner = await world.register()
        [user] = await world.add_users(owner, 1, permissions=INVOICES_CLIENTS)
        updated = await world.lifecycle.update_user(
            owner, user.id, permissions=PermissionSet.of(Capability.REPORTS)
        )
        assert updated.permissions.granted() == (Capability.REPORTS,)
        assert updated.updated_at > user.updated_at
        assert updated.created_at == user.created_at
        assert (await world.directory.get(user.id)) == updated

    @pytest.mark.asyncio
    async def test_name_and_email(self, world) -> None:
        owner = await world.register()
        [user] = await world.add_users(owner, 1)
        updated = await world.lifecycle.update_user(
            owner, user.id, name="Renamed", email="Renamed@Acme.com"
        )
        assert updated.name == "Renamed"
        assert updated.email == "renamed@acme.com"
        assert updated.permissions == user.permissions

    @pytest.mark.asyncio
    async def test_email_taken_by_other_user(self, world) -> None:
        owner = await world.register()
        first, second = await world.add_users(owner, 2)
        with pytest.raises(InvalidInput):
            await world.lifecycle.update_user(owner, second.id, email=first.email)

    @pytest.mark.asyncio
    async def test_keeping_own_email_is_fine(self, world) -> None:
        owner = await world.register()
        [user] = await world.add_users(owner, 1)
        updated = await world.lifecycle.update_user(owner, user.id, email=user.email)
        assert updated.email == user.email

    @pytest.mark.asyncio
    async def test_empty_permissions_rejected(self, world) -> None:
        owner = await world.register()
        [user] = await world.add_users(owner, 1)
        with pytest.raises(InvalidInput):
            await world.lifecycle.update_user(owner, user.id, permissions=PermissionSet())

    @pytest.mark.asyncio
    async def test_owner_account_is_protected(self, world) -> None:
        owner = await world.register()
        with pytest.raises(NotAuthorized):
            await world.lifecycle.update_user(owner, owner.account_id, name="New")

    @pytest.mark.asyncio
    async def test_other_tenant_user_reported_missing(self, world) -> None:
        owner = await world.register()
        other_owner = await world.register(company="Globex", email="boss@globex.com")
        [foreign] = await world.add_users(other_owner, 1)
        with pytest.raises(RecordNotFound):
            await world.lifecycle.update_user(owner, foreign.id, name="Hijack")

    @pytest.mark.asyncio
    async def test_email_of_another_tenants_login_rejected(self, world) -> None:
        owner = await world.register()
        other_owner = await world.register(company="Globex", email="boss@globex.com")
        [alice] = await world.add_users(owner, 1)
        bob = await world.lifecycle.create_user(
            other_owner, name="Bob", email="bob@globex.com", password="bobpass1",
            permissions=INVOICES_CLIENTS,
        )

        for taken in ("bob@globex.com", "Boss@Globex.com"):
            with pytest.raises(InvalidInput):
                await world.lifecycle.update_user(owner, alice.id, email=taken)

        ident = await world.login_as("bob@globex.com", "bobpass1")
        assert ident.account_id == bob.id
        assert ident.tenant_id == other_owner.tenant_id
        assert (await world.login_as(alice.email, "password1")).account_id == alice.id

    @pytest.mark.asyncio
    async def test_email_edit_moves_the_login(self, world) -> None:
        owner = await world.register()
        [user] = await world.add_users(owner, 1)
        await world.lifecycle.update_user(owner, user.id, email="renamed@acme.com")

        assert (await world.login_as("renamed@acme.com", "password1")).account_id == user.id
        with pytest.raises(InvalidCredentials):
            await world.identity.verify_credential(user.email, "password1")

        await world.lifecycle.reset_credential(owner, user.id, "newpass1")
        assert (await world.login_as("renamed@acme.com", "newpass1")).account_id == user.id

        await world.lifecycle.delete_user(owner, user.id)
        assert not world.identity.has_credential("renamed@acme.com")
        assert not world.identity.has_credential(user.email)

    @pytest.mark.asyncio
    async def test_email_taken_by_login_without_record(self, world) -> None:
        owner = await world.register()
        [user] = await world.add_users(owner, 1)
        await world.identity.create_credential("stray@acme.com", "password1")
        with pytest.raises(InvalidInput):
            await world.lifecycle.update_user(owner, user.id, email="stray@acme.com")
        assert (await world.directory.get(user.id)).email == user.email
        assert world.identity.has_credential(user.email)

    @pytest.mark.asyncio
    async def test_record_write_failure_restores_login(self, world, monkeypatch) -> None:
        owner = await world.register()
        [user] = await world.add_users(owner, 1)
        monkeypatch.setattr(
            world.directory, "replace", AsyncMock(side_effect=ConnectionError("offline"))
        )
        with pytest.raises(BackendUnavailable):
            await world.lifecycle.update_user(owner, user.id, email="renamed@acme.com")
        assert world.identity.has_credential(user.email)
        assert not world.identity.has_credential("renamed@acme.com")


class TestToggleAndDelete:
    @pytest.mark.asyncio
    async def test_toggle_flips_status(self, world) -> None:
        owner = await world.register()
        [user] = await world.add_users(owner, 1)
        off = await world.lifecycle.toggle_status(owner, user.id)
        assert off.is_active is False
        on = await world.lifecycle.toggle_status(owner, user.id)
        assert on.is_active is True

    @pytest.mark.asyncio
    async def test_owner_cannot_be_deactivated(self, world) -> None:
        owner = await world.register()
        with pytest.raises(NotAuthorized):
            await world.lifecycle.toggle_status(owner, owner.account_id)

    @pytest.mark.asyncio
    async def test_delete_removes_record_and_login(self, world) -> None:
        owner = await world.register()
        [user] = await world.add_users(owner, 1)
        await world.lifecycle.delete_user(owner, user.id)
        assert (await world.directory.get(user.id)) is None
        assert not world.identity.has_credential(user.email)
        stats = await world.lifecycle.stats(owner)
        assert stats.remaining_seats == 3

    @pytest.mark.asyncio
    async def test_delete_survives_revocation_failure(self) -> None:
        directory = InMemoryUserDirectory()
        tenants = TenantRegistry()
        identity = _StickyIdentityBackend()
        tenant, owner_account = await register_tenant(
            tenants, directory, identity,
            company_name="Acme", owner_email="owner@acme.com", password="owner-pass",
        )
        await tenants.update_subscription(
            tenant.tenant_id, SubscriptionTier.PRO, tenant.created_at + timedelta(days=30)
        )
        owner = await SessionResolver(directory, tenants).resolve(
            Principal(tenant.tenant_id, owner_account.email)
        )
        lifecycle = AccountLifecycleManager(directory, tenants, identity)
        user = await lifecycle.create_user(
            owner, name="H", email="h@acme.com", password="secret1",
            permissions=INVOICES_CLIENTS,
        )

        await lifecycle.delete_user(owner, user.id)

        assert (await directory.get(user.id)) is None
        assert identity.has_credential("h@acme.com")

    @pytest.mark.asyncio
    async def test_owner_cannot_be_deleted(self, world) -> None:
        owner = await world.register()
        with pytest.raises(NotAuthorized):
            await world.lifecycle.delete_user(owner, owner.account_id)

    @pytest.mark.asyncio
    async def test_delete_unknown(self, world) -> None:
        owner = await world.register()
        with pytest.raises(RecordNotFound):
            await world.lifecycle.delete_user(owner, "missing")


class TestResetCredential:
    @pytest.mark.asyncio
    async def test_rotates_password(self, world) -> None:
        owner = await world.register()
        [user] = await world.add_users(owner, 1)
        await world.lifecycle.reset_credential(owner, user.id, "brand-new-pass")

        with pytest.raises(InvalidCredentials):
            await world.identity.verify_credential(user.email, "password1")
        assert await world.identity.verify_credential(user.email, "brand-new-pass")

    @pytest.mark.asyncio
    async def test_short_password_rejected(self, world) -> None:
        owner = await world.register()
        [user] = await world.add_users(owner, 1)
        with pytest.raises(InvalidInput):
            await world.lifecycle.reset_credential(owner, user.id, "abc")
        assert await world.identity.verify_credential(user.email, "password1")

    @pytest.mark.asyncio
    async def test_owner_password_not_reset_here(self, world) -> None:
        owner = await world.register()
        with pytest.raises(NotAuthorized):
            await world.lifecycle.reset_credential(owner, owner.account_id, "another-pass")


class TestAliceScenario:
    @pytest.mark.asyncio
    async def test_end_to_end(self, world) -> None:
        owner = await world.register()
        alice = await world.lifecycle.create_user(
            owner, name="Alice", email="alice@acme.com", password="alice-pass",
            permissions=INVOICES_CLIENTS,
        )

        identity = await world.login_as("alice@acme.com", "alice-pass")
        assert identity.account_id == alice.id
        assert not identity.is_owner
        assert world.guard.request_access(Capability.INVOICES, identity).granted
        assert world.guard.request_access(Capability.CLIENTS, identity).granted
        denied = world.guard.request_access(Capability.REPORTS, identity)
        assert not denied.granted
        assert denied.identity is not None
        assert denied.identity.name == "Alice"

        await world.lifecycle.update_user(
            owner, alice.id, permissions=PermissionSet.of(Capability.INVOICES)
        )
        identity = await world.login_as("alice@acme.com", "alice-pass")
        assert not world.guard.request_access(Capability.CLIENTS, identity).granted

        await world.lifecycle.toggle_status(owner, alice.id)
        with pytest.raises(AccountDisabled):
            await world.login_as("alice@acme.com", "alice-pass")
