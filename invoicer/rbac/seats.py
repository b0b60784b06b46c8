"""Seat limits for the multi-user PRO tier."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime

from invoicer.core.constants import MAX_USER_SEATS
from invoicer.core.interfaces import BaseUserDirectory, Subscription
from invoicer.core.logging import get_logger
from invoicer.core.types import Role, Tenant, UserAccount, utc_now

log = get_logger(__name__)


@dataclass
class UserStats:
    """Counts shown on the user-management screen."""

    total: int = 0
    admins: int = 0
    users: int = 0
    active_users: int = 0
    remaining_seats: int = 0


def count_user_seats(accounts: list[UserAccount]) -> int:
    """Non-admin accounts, active or not."""
    return sum(1 for a in accounts if a.role == Role.USER)


def can_create_user(
    tenant: Tenant,
    accounts: list[UserAccount],
    now: datetime | None = None,
    max_seats: int = MAX_USER_SEATS,
) -> bool:
    return tenant.is_pro_active(now) and count_user_seats(accounts) < max_seats


def user_stats(accounts: list[UserAccount], max_seats: int = MAX_USER_SEATS) -> UserStats:
    users = [a for a in accounts if a.role == Role.USER]
    return UserStats(
        total=len(accounts),
        admins=sum(1 for a in accounts if a.role == Role.ADMIN),
        users=len(users),
        active_users=sum(1 for a in users if a.is_active),
        remaining_seats=max(max_seats - len(users), 0),
    )


class SeatTracker:
    """Keeps ``can_create_user`` current from the tenant's live feed.

    Call :meth:`start` to subscribe and :meth:`close` when the observing
    context ends.
    """

    def __init__(
        self,
        directory: BaseUserDirectory,
        tenant: Tenant,
        clock: Callable[[], datetime] = utc_now,
        max_seats: int = MAX_USER_SEATS,
    ) -> None:
        self._directory = directory
        self._tenant = tenant
        self._clock = clock
        self._max_seats = max_seats
        self._accounts: list[UserAccount] = []
        self._subscription: Subscription | None = None
        self.is_loading: bool = False

    async def start(self) -> None:
        if self._subscription is not None:
            return
        self.is_loading = True
        self._subscription = await self._directory.subscribe(
            self._tenant.tenant_id, self._on_snapshot
        )

    def close(self) -> None:
        if self._subscription is not None:
            self._subscription.cancel()
            self._subscription = None

    def _on_snapshot(self, accounts: list[UserAccount]) -> None:
        self._accounts = accounts
        self.is_loading = False
        log.debug(
            "seat_snapshot",
            tenant_id=self._tenant.tenant_id,
            seats_used=count_user_seats(accounts),
        )

    @property
    def accounts(self) -> list[UserAccount]:
        return list(self._accounts)

    @property
    def can_create_user(self) -> bool:
        return can_create_user(self._tenant, self._accounts, self._clock(), self._max_seats)

    @property
    def remaining_seats(self) -> int:
        return user_stats(self._accounts, self._max_seats).remaining_seats

    @property
    def stats(self) -> UserStats:
        return user_stats(self._accounts, self._max_seats)
