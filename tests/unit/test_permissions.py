"""Tests for capabilities, permission sets and account records."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from invoicer.core.exceptions import InvalidInput
from invoicer.core.types import (
    ADMIN_DEFAULT_PERMISSIONS,
    LANDING_PRIORITY,
    USER_DEFAULT_PERMISSIONS,
    Capability,
    PermissionSet,
    Role,
    SubscriptionTier,
    Tenant,
    UserAccount,
)

NOW = datetime(2026, 3, 1, tzinfo=timezone.utc)


class TestCapability:
    def test_nine_capabilities(self) -> None:
        assert len(Capability) == 9

    def test_wire_values(self) -> None:
        assert Capability.STOCK_MANAGEMENT.value == "stockManagement"
        assert Capability.HR_MANAGEMENT.value == "hrManagement"

    def test_parse_known(self) -> None:
        assert Capability.parse("reports") is Capability.REPORTS

    def test_parse_unknown_raises(self) -> None:
        with pytest.raises(InvalidInput) as exc_info:
            Capability.parse("payroll")
        assert exc_info.value.context["capability"] == "payroll"

    def test_labels_and_routes(self) -> None:
        assert Capability.REPORTS.label == "Financial Reports"
        assert Capability.STOCK_MANAGEMENT.route == "/stock-management"
        assert Capability.SETTINGS.description

    def test_settings_never_a_landing_page(self) -> None:
        assert Capability.SETTINGS not in LANDING_PRIORITY
        assert LANDING_PRIORITY[0] is Capability.DASHBOARD


class TestPermissionSet:
    def test_defaults_all_false(self) -> None:
        perms = PermissionSet()
        assert not perms.has_any()
        assert perms.granted() == ()

    def test_of_and_get(self) -> None:
        perms = PermissionSet.of(Capability.INVOICES, Capability.CLIENTS)
        assert perms.get(Capability.INVOICES)
        assert perms.get(Capability.CLIENTS)
        assert not perms.get(Capability.DASHBOARD)
        assert perms.granted() == (Capability.INVOICES, Capability.CLIENTS)

    def test_presets(self) -> None:
        assert ADMIN_DEFAULT_PERMISSIONS.granted() == tuple(Capability)
        assert USER_DEFAULT_PERMISSIONS.granted() == (Capability.DASHBOARD,)
        assert ADMIN_DEFAULT_PERMISSIONS.is_admin_default()
        assert USER_DEFAULT_PERMISSIONS.is_user_default()

    def test_with_grants_returns_copy(self) -> None:
        base = USER_DEFAULT_PERMISSIONS
        updated = base.with_grants({Capability.DASHBOARD: False, Capability.REPORTS: True})
        assert updated.granted() == (Capability.REPORTS,)
        assert base.granted() == (Capability.DASHBOARD,)

    def test_non_bool_flag_rejected(self) -> None:
        with pytest.raises(InvalidInput):
            PermissionSet(dashboard=1)  # type: ignore[arg-type]

    def test_to_dict_uses_wire_keys(self) -> None:
        data = PermissionSet.of(Capability.STOCK_MANAGEMENT).to_dict()
        assert set(data) == {c.value for c in Capability}
        assert data["stockManagement"] is True
        assert data["dashboard"] is False

    def test_from_dict_round_trip(self) -> None:
        perms = PermissionSet.of(Capability.QUOTES, Capability.HR_MANAGEMENT)
        assert PermissionSet.from_dict(perms.to_dict()) == perms

    def test_from_dict_rejects_unknown_key(self) -> None:
        data = ADMIN_DEFAULT_PERMISSIONS.to_dict()
        data["payroll"] = True
        with pytest.raises(InvalidInput) as exc_info:
            PermissionSet.from_dict(data)
        assert exc_info.value.context["unknown"] == ["payroll"]

    def test_from_dict_rejects_missing_key(self) -> None:
        data = ADMIN_DEFAULT_PERMISSIONS.to_dict()
        del data["settings"]
        with pytest.raises(InvalidInput) as exc_info:
            PermissionSet.from_dict(data)
        assert exc_info.value.context["missing"] == ["settings"]


class TestTenant:
    def test_free_is_never_pro_active(self) -> None:
        tenant = Tenant("t1", "Acme", "o@acme.com", SubscriptionTier.FREE, NOW + timedelta(days=5))
        assert not tenant.is_pro_active(NOW)

    def test_pro_unexpired(self) -> None:
        tenant = Tenant("t1", "Acme", "o@acme.com", SubscriptionTier.PRO, NOW + timedelta(days=5))
        assert tenant.is_pro_active(NOW)

    def test_pro_expired_at_boundary(self) -> None:
        tenant = Tenant("t1", "Acme", "o@acme.com", SubscriptionTier.PRO, NOW)
        assert not tenant.is_pro_active(NOW)


class TestUserAccountRecord:
    def _account(self, **kwargs: object) -> UserAccount:
        defaults: dict[str, object] = {
            "id": "u1",
            "tenant_id": "t1",
            "name": "Alice",
            "email": "alice@acme.com",
            "permissions": PermissionSet.of(Capability.INVOICES),
            "created_by": "a1",
            "created_at": NOW,
            "updated_at": NOW,
        }
        defaults.update(kwargs)
        return UserAccount(**defaults)  # type: ignore[arg-type]

    def test_record_keys(self) -> None:
        record = self._account().to_record()
        assert record["entrepriseId"] == "t1"
        assert record["isActive"] is True
        assert record["createdBy"] == "a1"
        assert record["permissions"]["invoices"] is True
        assert record["createdAt"] == NOW.isoformat()

    def test_created_by_omitted_when_unset(self) -> None:
        record = self._account(created_by=None, role=Role.ADMIN).to_record()
        assert "createdBy" not in record
        assert record["role"] == "admin"

    def test_from_record(self) -> None:
        account = self._account(is_active=False)
        restored = UserAccount.from_record(account.to_record())
        assert restored == account
        assert not restored.is_admin
