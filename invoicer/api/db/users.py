"""DB-backed tenant directory.

Writes go to PostgreSQL; after each commit the affected tenant's snapshot is
re-read and pushed to in-process subscribers through a shared feed.
"""

from __future__ import annotations

import asyncio
import json
from typing import Any

from sqlalchemy import text
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine

from invoicer.core.exceptions import BackendUnavailable, InvalidInput, RecordNotFound
from invoicer.core.interfaces import BaseUserDirectory, SnapshotCallback, Subscription
from invoicer.core.logging import get_logger
from invoicer.core.types import PermissionSet, Role, UserAccount, normalize_email
from invoicer.rbac.directory import SnapshotFeed

log = get_logger(__name__)

_feed = SnapshotFeed()
_write_lock = asyncio.Lock()


def get_feed() -> SnapshotFeed:
    """Process-wide feed shared by every repository instance."""
    return _feed


class UserRepository(BaseUserDirectory):
    """Async PostgreSQL-backed user accounts with live snapshots."""

    def __init__(self, engine: AsyncEngine, feed: SnapshotFeed | None = None) -> None:
        self._engine = engine
        self._feed = feed or _feed

    async def list_by_tenant(self, tenant_id: str) -> list[UserAccount]:
        rows = await self._fetch(
            "SELECT * FROM users WHERE tenant_id = :tid ORDER BY created_at DESC",
            {"tid": tenant_id},
        )
        return [self._row_to_account(r) for r in rows]

    async def subscribe(self, tenant_id: str, callback: SnapshotCallback) -> Subscription:
        snapshot = await self.list_by_tenant(tenant_id)
        return self._feed.attach(tenant_id, callback, snapshot)

    async def get(self, account_id: str) -> UserAccount | None:
        rows = await self._fetch("SELECT * FROM users WHERE id = :id", {"id": account_id})
        return self._row_to_account(rows[0]) if rows else None

    async def find_by_email(self, tenant_id: str, email: str) -> UserAccount | None:
        rows = await self._fetch(
            "SELECT * FROM users WHERE tenant_id = :tid AND lower(email) = :email",
            {"tid": tenant_id, "email": normalize_email(email)},
        )
        return self._row_to_account(rows[0]) if rows else None

    async def find_by_login(self, email: str) -> UserAccount | None:
        rows = await self._fetch(
            "SELECT * FROM users WHERE lower(email) = :email ORDER BY created_at LIMIT 1",
            {"email": normalize_email(email)},
        )
        return self._row_to_account(rows[0]) if rows else None

    async def add(self, account: UserAccount) -> None:
        await self._write(
            account.tenant_id,
            """
            INSERT INTO users
                (id, tenant_id, name, email, role, permissions,
                 is_active, created_by, created_at, updated_at)
            VALUES
                (:id, :tid, :name, :email, :role, :perms,
                 :active, :created_by, :created_at, :updated_at)
            """,
            self._account_params(account),
            expect_row=False,
        )
        log.info("account_inserted", account_id=account.id, tenant_id=account.tenant_id)

    async def replace(self, account: UserAccount) -> None:
        await self._write(
            account.tenant_id,
            """
            UPDATE users SET
                name = :name, email = :email, role = :role,
                permissions = :perms, is_active = :active,
                created_by = :created_by, updated_at = :updated_at
            WHERE id = :id
            """,
            self._account_params(account),
            expect_row=True,
        )

    async def remove(self, account_id: str) -> None:
        existing = await self.get(account_id)
        if existing is None:
            raise RecordNotFound("account not found", {"account_id": account_id})
        await self._write(
            existing.tenant_id,
            "DELETE FROM users WHERE id = :id",
            {"id": account_id},
            expect_row=True,
        )

    # ── Internals ────────────────────────────────────────────────

    async def _fetch(self, query: str, params: dict[str, Any]) -> list[Any]:
        try:
            async with self._engine.begin() as conn:
                result = await conn.execute(text(query), params)
                return list(result.mappings().all())
        except SQLAlchemyError as exc:
            log.error("directory_read_failed", error=str(exc))
            raise BackendUnavailable("user directory unavailable") from exc

    async def _write(
        self,
        tenant_id: str,
        query: str,
        params: dict[str, Any],
        *,
        expect_row: bool,
    ) -> None:
        # Serialized so snapshots reach subscribers in commit order.
        async with _write_lock:
            try:
                async with self._engine.begin() as conn:
                    result = await conn.execute(text(query), params)
            except IntegrityError as exc:
                raise InvalidInput(
                    "a user with this email already exists", {"field": "email"}
                ) from exc
            except SQLAlchemyError as exc:
                log.error("directory_write_failed", tenant_id=tenant_id, error=str(exc))
                raise BackendUnavailable("user directory unavailable") from exc

            if expect_row and not result.rowcount:
                raise RecordNotFound("account not found", {"account_id": params.get("id")})

            if self._feed.subscriber_count(tenant_id):
                self._feed.publish(tenant_id, await self.list_by_tenant(tenant_id))

    @staticmethod
    def _account_params(account: UserAccount) -> dict[str, Any]:
        return {
            "id": account.id,
            "tid": account.tenant_id,
            "name": account.name,
            "email": account.email,
            "role": account.role.value,
            "perms": json.dumps(account.permissions.to_dict()),
            "active": account.is_active,
            "created_by": account.created_by,
            "created_at": account.created_at,
            "updated_at": account.updated_at,
        }

    @staticmethod
    def _row_to_account(r: Any) -> UserAccount:
        """Convert a DB row mapping to a UserAccount."""
        perms = r["permissions"]
        if isinstance(perms, str):
            perms = json.loads(perms)
        return UserAccount(
            id=r["id"],
            tenant_id=r["tenant_id"],
            name=r["name"],
            email=r["email"],
            role=Role(r["role"]),
            permissions=PermissionSet.from_dict(perms),
            is_active=bool(r["is_active"]),
            created_by=r.get("created_by"),
            created_at=r["created_at"],
            updated_at=r["updated_at"],
        )
