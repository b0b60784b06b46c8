"""Session tokens — HS256 JWTs naming the logged-in principal.

Claims: ``sub`` (principal id, or the operator email), ``email``, ``op``
(present and true for operator sessions), ``iat`` and ``exp``.
"""

from __future__ import annotations

import base64
import hashlib
import hmac
import json
import time
from dataclasses import dataclass

from invoicer.core.logging import get_logger

log = get_logger(__name__)

_HEADER = {"alg": "HS256", "typ": "JWT"}


@dataclass(frozen=True)
class SessionClaims:
    """Verified contents of a session token."""

    principal_id: str
    email: str
    operator: bool = False
    issued_at: int = 0
    expires_at: int = 0


class SessionTokenCodec:
    """Signs and verifies session tokens with a shared secret."""

    def __init__(self, secret: str, expiry_hours: int = 24) -> None:
        self._key: bytes = secret.encode()
        self._ttl: int = expiry_hours * 3600

    def issue(self, principal_id: str, email: str, *, operator: bool = False) -> str:
        now = int(time.time())
        claims: dict[str, object] = {
            "sub": principal_id,
            "email": email,
            "iat": now,
            "exp": now + self._ttl,
        }
        if operator:
            claims["op"] = True
        signing_input = f"{_encode_json(_HEADER)}.{_encode_json(claims)}"
        return f"{signing_input}.{self._signature(signing_input)}"

    def decode(self, token: str) -> SessionClaims | None:
        """Return the claims, or None for a malformed, forged or expired token."""
        try:
            header_b64, body_b64, sig = token.split(".")
        except ValueError:
            return None

        if not hmac.compare_digest(sig, self._signature(f"{header_b64}.{body_b64}")):
            log.warning("session_token_bad_signature")
            return None

        try:
            claims = json.loads(_b64decode(body_b64))
            session = SessionClaims(
                principal_id=str(claims["sub"]),
                email=str(claims.get("email", "")),
                operator=claims.get("op") is True,
                issued_at=int(claims.get("iat", 0)),
                expires_at=int(claims["exp"]),
            )
        except (ValueError, KeyError, TypeError):
            log.warning("session_token_undecodable")
            return None

        if int(time.time()) >= session.expires_at:
            log.debug("session_token_expired", sub=session.principal_id)
            return None
        return session

    def _signature(self, signing_input: str) -> str:
        digest = hmac.new(self._key, signing_input.encode(), hashlib.sha256).digest()
        return _b64encode(digest)


def _encode_json(data: dict[str, object]) -> str:
    return _b64encode(json.dumps(data, separators=(",", ":")).encode())


def _b64encode(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode()


def _b64decode(s: str) -> bytes:
    return base64.urlsafe_b64decode(s + "=" * (-len(s) % 4))
