"""Tenant directory — user accounts per tenant, observed live.

Every committed mutation pushes a fresh snapshot of the affected tenant to
all of its subscribers, so open sessions see deactivation and permission
edits without a refresh.
"""

from __future__ import annotations

import asyncio
from collections import defaultdict

from invoicer.core.exceptions import InvalidInput, RecordNotFound
from invoicer.core.interfaces import BaseUserDirectory, SnapshotCallback, Subscription
from invoicer.core.logging import get_logger
from invoicer.core.types import UserAccount, normalize_email

log = get_logger(__name__)


def sort_newest_first(accounts: list[UserAccount]) -> list[UserAccount]:
    return sorted(accounts, key=lambda a: a.created_at, reverse=True)


class FeedSubscription(Subscription):
    """Handle returned by :meth:`SnapshotFeed.attach`."""

    def __init__(self, feed: SnapshotFeed, tenant_id: str, callback: SnapshotCallback) -> None:
        self._feed = feed
        self.tenant_id: str = tenant_id
        self.callback: SnapshotCallback = callback
        self._active: bool = True

    @property
    def active(self) -> bool:
        return self._active

    def cancel(self) -> None:
        if not self._active:
            return
        self._active = False
        self._feed.detach(self)


class SnapshotFeed:
    """Per-tenant fan-out of directory snapshots to registered callbacks."""

    def __init__(self) -> None:
        self._subscribers: dict[str, list[FeedSubscription]] = defaultdict(list)

    def attach(
        self,
        tenant_id: str,
        callback: SnapshotCallback,
        initial: list[UserAccount],
    ) -> FeedSubscription:
        sub = FeedSubscription(self, tenant_id, callback)
        self._subscribers[tenant_id].append(sub)
        log.debug("directory_subscribed", tenant_id=tenant_id)
        self._deliver(sub, initial)
        return sub

    def detach(self, sub: FeedSubscription) -> None:
        subs = self._subscribers.get(sub.tenant_id, [])
        if sub in subs:
            subs.remove(sub)
        if not subs:
            self._subscribers.pop(sub.tenant_id, None)
        log.debug("directory_unsubscribed", tenant_id=sub.tenant_id)

    def publish(self, tenant_id: str, snapshot: list[UserAccount]) -> None:
        # Copy: a callback may cancel its own subscription mid-delivery.
        for sub in list(self._subscribers.get(tenant_id, [])):
            if sub.active:
                self._deliver(sub, snapshot)

    def subscriber_count(self, tenant_id: str) -> int:
        return len(self._subscribers.get(tenant_id, []))

    @staticmethod
    def _deliver(sub: FeedSubscription, snapshot: list[UserAccount]) -> None:
        try:
            sub.callback(list(snapshot))
        except Exception:
            log.exception("directory_subscriber_failed", tenant_id=sub.tenant_id)


class InMemoryUserDirectory(BaseUserDirectory):
    """Process-local directory. Used in tests and single-process dev servers."""

    def __init__(self) -> None:
        self._accounts: dict[str, UserAccount] = {}
        self._feed = SnapshotFeed()
        self._lock = asyncio.Lock()

    async def list_by_tenant(self, tenant_id: str) -> list[UserAccount]:
        return self._snapshot(tenant_id)

    async def subscribe(self, tenant_id: str, callback: SnapshotCallback) -> Subscription:
        return self._feed.attach(tenant_id, callback, self._snapshot(tenant_id))

    async def get(self, account_id: str) -> UserAccount | None:
        return self._accounts.get(account_id)

    async def find_by_email(self, tenant_id: str, email: str) -> UserAccount | None:
        wanted = normalize_email(email)
        for account in self._accounts.values():
            if account.tenant_id == tenant_id and normalize_email(account.email) == wanted:
                return account
        return None

    async def find_by_login(self, email: str) -> UserAccount | None:
        wanted = normalize_email(email)
        for account in self._accounts.values():
            if normalize_email(account.email) == wanted:
                return account
        return None

    async def add(self, account: UserAccount) -> None:
        async with self._lock:
            if account.id in self._accounts:
                msg = f"account {account.id} already exists"
                raise InvalidInput(msg, {"account_id": account.id})
            self._accounts[account.id] = account
            self._feed.publish(account.tenant_id, self._snapshot(account.tenant_id))

    async def replace(self, account: UserAccount) -> None:
        async with self._lock:
            if account.id not in self._accounts:
                msg = f"account {account.id} not found"
                raise RecordNotFound(msg, {"account_id": account.id})
            self._accounts[account.id] = account
            self._feed.publish(account.tenant_id, self._snapshot(account.tenant_id))

    async def remove(self, account_id: str) -> None:
        async with self._lock:
            account = self._accounts.pop(account_id, None)
            if account is None:
                msg = f"account {account_id} not found"
                raise RecordNotFound(msg, {"account_id": account_id})
            self._feed.publish(account.tenant_id, self._snapshot(account.tenant_id))

    def subscriber_count(self, tenant_id: str) -> int:
        return self._feed.subscriber_count(tenant_id)

    def _snapshot(self, tenant_id: str) -> list[UserAccount]:
        return sort_newest_first(
            [a for a in self._accounts.values() if a.tenant_id == tenant_id]
        )
