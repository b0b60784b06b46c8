"""Abstract base classes — storage and identity collaborators implement these."""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Callable
from datetime import datetime

from invoicer.core.exceptions import BackendUnavailable
from invoicer.core.types import SubscriptionTier, Tenant, UserAccount

SnapshotCallback = Callable[[list[UserAccount]], None]


class Subscription(ABC):
    """Cancellation handle for a live directory feed."""

    @abstractmethod
    def cancel(self) -> None:
        """Stop delivering snapshots. Safe to call more than once."""
        ...

    @property
    @abstractmethod
    def active(self) -> bool:
        ...


class BaseUserDirectory(ABC):
    """Tenant-scoped collection of user accounts with live observation."""

    @abstractmethod
    async def list_by_tenant(self, tenant_id: str) -> list[UserAccount]:
        """Current accounts of the tenant, newest first."""
        ...

    @abstractmethod
    async def subscribe(self, tenant_id: str, callback: SnapshotCallback) -> Subscription:
        """Deliver the current snapshot, then one snapshot per committed change."""
        ...

    @abstractmethod
    async def get(self, account_id: str) -> UserAccount | None:
        ...

    @abstractmethod
    async def find_by_email(self, tenant_id: str, email: str) -> UserAccount | None:
        ...

    @abstractmethod
    async def find_by_login(self, email: str) -> UserAccount | None:
        """Locate the account for a login email across tenants.

        Login emails are unique in the identity backend, so at most one
        account matches.
        """
        ...

    @abstractmethod
    async def add(self, account: UserAccount) -> None:
        ...

    @abstractmethod
    async def replace(self, account: UserAccount) -> None:
        """Overwrite the stored record. Last write wins."""
        ...

    @abstractmethod
    async def remove(self, account_id: str) -> None:
        ...


class BaseTenantStore(ABC):
    """Tenant subscription records. Written only at registration and by billing."""

    @abstractmethod
    async def get(self, tenant_id: str) -> Tenant | None:
        ...

    @abstractmethod
    async def add(self, tenant: Tenant) -> None:
        ...

    @abstractmethod
    async def update_subscription(
        self, tenant_id: str, subscription: SubscriptionTier, expiry_date: datetime
    ) -> bool:
        ...


class BaseIdentityBackend(ABC):
    """External credential store (email + password logins)."""

    @abstractmethod
    async def create_credential(self, email: str, password: str) -> str:
        """Create a login and return its principal id."""
        ...

    @abstractmethod
    async def verify_credential(self, email: str, password: str) -> str:
        """Return the principal id, or raise ``InvalidCredentials``."""
        ...

    @abstractmethod
    async def revoke_credential(self, email: str) -> None:
        ...

    async def set_credential(self, email: str, password: str) -> None:
        """Replace another principal's password. Requires admin privilege.

        Backends without an administrative channel keep this default.
        """
        msg = "identity backend has no privileged credential channel"
        raise BackendUnavailable(msg, {"email": email})

    async def rename_credential(self, email: str, new_email: str) -> None:
        """Move a login to a new email, keeping its principal id and password.

        Raises ``InvalidInput`` when ``new_email`` already has a login.
        Requires admin privilege, like :meth:`set_credential`.
        """
        msg = "identity backend has no privileged credential channel"
        raise BackendUnavailable(msg, {"email": email})
