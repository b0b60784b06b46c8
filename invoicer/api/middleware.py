"""Session authentication for FastAPI — token issue and per-request extraction."""

from __future__ import annotations

from fastapi import Cookie, HTTPException, Request, status

from config.settings import get_settings
from invoicer.api.tokens import SessionClaims, SessionTokenCodec
from invoicer.core.constants import SESSION_COOKIE_NAME

_codec: SessionTokenCodec | None = None


def _get_codec() -> SessionTokenCodec:
    global _codec  # noqa: PLW0603
    if _codec is None:
        settings = get_settings()
        _codec = SessionTokenCodec(
            secret=settings.invoicer_jwt_secret.get_secret_value(),
            expiry_hours=settings.invoicer_jwt_expiry_hours,
        )
    return _codec


def issue_session_token(principal_id: str, email: str, *, operator: bool = False) -> str:
    return _get_codec().issue(principal_id, email, operator=operator)


def decode_session_token(token: str) -> SessionClaims | None:
    return _get_codec().decode(token)


def _bearer_token(request: Request) -> str | None:
    scheme, _, credentials = request.headers.get("authorization", "").partition(" ")
    if scheme.lower() == "bearer" and credentials:
        return credentials.strip()
    return None


async def get_session_claims(
    request: Request,
    session_cookie: str | None = Cookie(default=None, alias=SESSION_COOKIE_NAME),
) -> SessionClaims:
    """Session from the cookie, or from an ``Authorization: Bearer`` header.

    401 when neither carries a valid, unexpired token.
    """
    token = session_cookie or _bearer_token(request)
    if not token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
        )

    claims = decode_session_token(token)
    if claims is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired session",
        )
    return claims
