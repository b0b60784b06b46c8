"""DB-backed tenant repository — replaces the in-memory TenantRegistry."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import text
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine

from invoicer.core.exceptions import BackendUnavailable, InvalidInput
from invoicer.core.interfaces import BaseTenantStore
from invoicer.core.logging import get_logger
from invoicer.core.types import SubscriptionTier, Tenant

log = get_logger(__name__)


class TenantRepository(BaseTenantStore):
    """Async PostgreSQL-backed tenant storage."""

    def __init__(self, engine: AsyncEngine) -> None:
        self._engine = engine

    async def get(self, tenant_id: str) -> Tenant | None:
        """Look up a tenant by ID."""
        try:
            async with self._engine.begin() as conn:
                row = await conn.execute(
                    text("SELECT * FROM tenants WHERE tenant_id = :tid"),
                    {"tid": tenant_id},
                )
                r = row.mappings().first()
        except SQLAlchemyError as exc:
            log.error("tenant_lookup_failed", tenant_id=tenant_id, error=str(exc))
            raise BackendUnavailable("tenant store unavailable") from exc
        if r is None:
            return None
        return self._row_to_tenant(r)

    async def add(self, tenant: Tenant) -> None:
        try:
            async with self._engine.begin() as conn:
                await conn.execute(
                    text(
                        """
                        INSERT INTO tenants
                            (tenant_id, name, owner_email, subscription,
                             expiry_date, created_at)
                        VALUES
                            (:tid, :name, :email, :sub, :expiry, :created)
                        """
                    ),
                    {
                        "tid": tenant.tenant_id,
                        "name": tenant.name,
                        "email": tenant.owner_email,
                        "sub": tenant.subscription.value,
                        "expiry": tenant.expiry_date,
                        "created": tenant.created_at,
                    },
                )
        except IntegrityError as exc:
            raise InvalidInput("tenant already exists", {"tenant_id": tenant.tenant_id}) from exc
        except SQLAlchemyError as exc:
            log.error("tenant_insert_failed", tenant_id=tenant.tenant_id, error=str(exc))
            raise BackendUnavailable("tenant store unavailable") from exc

        log.info(
            "tenant_created",
            tenant_id=tenant.tenant_id,
            name=tenant.name,
            subscription=tenant.subscription.value,
        )

    async def update_subscription(
        self, tenant_id: str, subscription: SubscriptionTier, expiry_date: datetime
    ) -> bool:
        try:
            async with self._engine.begin() as conn:
                result = await conn.execute(
                    text(
                        "UPDATE tenants SET subscription = :sub, expiry_date = :expiry "
                        "WHERE tenant_id = :tid"
                    ),
                    {"sub": subscription.value, "expiry": expiry_date, "tid": tenant_id},
                )
        except SQLAlchemyError as exc:
            log.error("subscription_update_failed", tenant_id=tenant_id, error=str(exc))
            raise BackendUnavailable("tenant store unavailable") from exc

        updated = bool(result.rowcount)
        if updated:
            log.info("subscription_updated", tenant_id=tenant_id, new=subscription.value)
        return updated

    @staticmethod
    def _row_to_tenant(r: object) -> Tenant:
        """Convert a DB row mapping to a Tenant dataclass."""
        sub_str: str = r["subscription"]  # type: ignore[index]
        try:
            subscription = SubscriptionTier(sub_str)
        except ValueError:
            subscription = SubscriptionTier.FREE

        return Tenant(
            tenant_id=r["tenant_id"],  # type: ignore[index]
            name=r["name"],  # type: ignore[index]
            owner_email=r["owner_email"],  # type: ignore[index]
            subscription=subscription,
            expiry_date=r["expiry_date"],  # type: ignore[index]
            created_at=r["created_at"],  # type: ignore[index]
        )
