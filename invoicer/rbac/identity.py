"""Credential handling — tenant logins and the system-operator credential."""

from __future__ import annotations

import hmac

import bcrypt
from uuid_extensions import uuid7

from config.settings import get_settings
from invoicer.core.exceptions import BackendUnavailable, InvalidCredentials, InvalidInput
from invoicer.core.interfaces import BaseIdentityBackend
from invoicer.core.logging import get_logger
from invoicer.core.types import normalize_email

log = get_logger(__name__)


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        # Malformed stored hash.
        return False


class InMemoryIdentityBackend(BaseIdentityBackend):
    """bcrypt-hashed logins kept in process memory, with an admin channel."""

    def __init__(self) -> None:
        self._hashes: dict[str, str] = {}      # email -> bcrypt hash
        self._principals: dict[str, str] = {}  # email -> principal id

    async def create_credential(self, email: str, password: str) -> str:
        key = normalize_email(email)
        if key in self._hashes:
            msg = "email already in use"
            raise InvalidInput(msg, {"email": key})
        principal_id = str(uuid7())
        self._hashes[key] = hash_password(password)
        self._principals[key] = principal_id
        log.info("credential_created", email=key, principal_id=principal_id)
        return principal_id

    async def verify_credential(self, email: str, password: str) -> str:
        key = normalize_email(email)
        stored = self._hashes.get(key)
        if stored is None or not verify_password(password, stored):
            log.warning("credential_rejected", email=key)
            raise InvalidCredentials("invalid email or password")
        return self._principals[key]

    async def revoke_credential(self, email: str) -> None:
        key = normalize_email(email)
        if self._hashes.pop(key, None) is None:
            msg = "no credential for email"
            raise BackendUnavailable(msg, {"email": key})
        self._principals.pop(key, None)
        log.info("credential_revoked", email=key)

    async def set_credential(self, email: str, password: str) -> None:
        key = normalize_email(email)
        if key not in self._hashes:
            msg = "no credential for email"
            raise BackendUnavailable(msg, {"email": key})
        self._hashes[key] = hash_password(password)
        log.info("credential_rotated", email=key)

    async def rename_credential(self, email: str, new_email: str) -> None:
        key, new_key = normalize_email(email), normalize_email(new_email)
        if key not in self._hashes:
            msg = "no credential for email"
            raise BackendUnavailable(msg, {"email": key})
        if new_key in self._hashes:
            msg = "email already in use"
            raise InvalidInput(msg, {"email": new_key})
        self._hashes[new_key] = self._hashes.pop(key)
        self._principals[new_key] = self._principals.pop(key)
        log.info("credential_renamed", email=key, new_email=new_key)

    def has_credential(self, email: str) -> bool:
        return normalize_email(email) in self._hashes


class OperatorCredentialStore:
    """The single system-operator login, provisioned from configuration.

    An empty email or password disables operator login entirely.
    """

    def __init__(self, email: str, password: str) -> None:
        self._email: str = normalize_email(email) if email else ""
        self._hash: str = hash_password(password) if email and password else ""

    @classmethod
    def from_settings(cls) -> OperatorCredentialStore:
        settings = get_settings()
        return cls(
            settings.invoicer_operator_email,
            settings.invoicer_operator_password.get_secret_value(),
        )

    @property
    def enabled(self) -> bool:
        return bool(self._hash)

    def is_operator_email(self, email: str) -> bool:
        if not self.enabled:
            return False
        return hmac.compare_digest(normalize_email(email).encode(), self._email.encode())

    def matches(self, email: str, password: str) -> bool:
        if not self.is_operator_email(email):
            return False
        return verify_password(password, self._hash)
