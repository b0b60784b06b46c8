"""DB-backed identity backend — bcrypt password hashes keyed by login email."""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import text
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine
from uuid_extensions import uuid7

from invoicer.core.exceptions import BackendUnavailable, InvalidCredentials, InvalidInput
from invoicer.core.interfaces import BaseIdentityBackend
from invoicer.core.logging import get_logger
from invoicer.core.types import normalize_email
from invoicer.rbac.identity import hash_password, verify_password

log = get_logger(__name__)


class CredentialRepository(BaseIdentityBackend):
    """Async PostgreSQL credential store with an administrative channel."""

    def __init__(self, engine: AsyncEngine) -> None:
        self._engine = engine

    async def create_credential(self, email: str, password: str) -> str:
        key = normalize_email(email)
        principal_id = str(uuid7())
        now = datetime.now(timezone.utc)
        try:
            async with self._engine.begin() as conn:
                await conn.execute(
                    text(
                        """
                        INSERT INTO credentials
                            (email, principal_id, password_hash, created_at, updated_at)
                        VALUES (:email, :pid, :hash, :now, :now)
                        """
                    ),
                    {"email": key, "pid": principal_id, "hash": hash_password(password), "now": now},
                )
        except IntegrityError as exc:
            raise InvalidInput("email already in use", {"email": key}) from exc
        except SQLAlchemyError as exc:
            log.error("credential_create_failed", email=key, error=str(exc))
            raise BackendUnavailable("identity backend unavailable") from exc

        log.info("credential_created", email=key, principal_id=principal_id)
        return principal_id

    async def verify_credential(self, email: str, password: str) -> str:
        key = normalize_email(email)
        try:
            async with self._engine.begin() as conn:
                row = await conn.execute(
                    text("SELECT principal_id, password_hash FROM credentials WHERE email = :email"),
                    {"email": key},
                )
                r = row.mappings().first()
        except SQLAlchemyError as exc:
            log.error("credential_lookup_failed", email=key, error=str(exc))
            raise BackendUnavailable("identity backend unavailable") from exc

        if r is None or not verify_password(password, r["password_hash"]):
            log.warning("credential_rejected", email=key)
            raise InvalidCredentials("invalid email or password")
        return r["principal_id"]

    async def revoke_credential(self, email: str) -> None:
        key = normalize_email(email)
        result = await self._execute(
            "DELETE FROM credentials WHERE email = :email", {"email": key}
        )
        if not result.rowcount:
            raise BackendUnavailable("no credential for email", {"email": key})
        log.info("credential_revoked", email=key)

    async def set_credential(self, email: str, password: str) -> None:
        key = normalize_email(email)
        result = await self._execute(
            "UPDATE credentials SET password_hash = :hash, updated_at = :now "
            "WHERE email = :email",
            {"hash": hash_password(password), "now": datetime.now(timezone.utc), "email": key},
        )
        if not result.rowcount:
            raise BackendUnavailable("no credential for email", {"email": key})
        log.info("credential_rotated", email=key)

    async def rename_credential(self, email: str, new_email: str) -> None:
        key, new_key = normalize_email(email), normalize_email(new_email)
        try:
            async with self._engine.begin() as conn:
                result = await conn.execute(
                    text(
                        "UPDATE credentials SET email = :new_email, updated_at = :now "
                        "WHERE email = :email"
                    ),
                    {"new_email": new_key, "now": datetime.now(timezone.utc), "email": key},
                )
        except IntegrityError as exc:
            raise InvalidInput("email already in use", {"email": new_key}) from exc
        except SQLAlchemyError as exc:
            log.error("credential_write_failed", error=str(exc))
            raise BackendUnavailable("identity backend unavailable") from exc
        if not result.rowcount:
            raise BackendUnavailable("no credential for email", {"email": key})
        log.info("credential_renamed", email=key, new_email=new_key)

    async def _execute(self, query: str, params: dict[str, object]):  # type: ignore[no-untyped-def]
        try:
            async with self._engine.begin() as conn:
                return await conn.execute(text(query), params)
        except SQLAlchemyError as exc:
            log.error("credential_write_failed", error=str(exc))
            raise BackendUnavailable("identity backend unavailable") from exc
