"""Custom exception hierarchy for the invoicing access-control core."""

from __future__ import annotations

from typing import Any


class InvoicerError(Exception):
    """Base exception for all invoicer errors."""

    def __init__(self, message: str, context: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.context: dict[str, Any] = context or {}


# ── Client-correctable ───────────────────────────────────────────

class InvalidInput(InvoicerError):
    """Missing field, short password, duplicate email or empty permission set."""


# ── Authorization ────────────────────────────────────────────────

class NotAuthorized(InvoicerError):
    """Subscription tier or role does not allow the operation."""


class SeatLimitExceeded(InvoicerError):
    """Tenant already uses every non-admin seat of its plan."""


# ── Session resolution ───────────────────────────────────────────

class AccountNotFound(InvoicerError):
    """No account matches the authenticated principal."""


class AccountDisabled(InvoicerError):
    """The account exists but has been deactivated by its tenant admin."""


class InvalidCredentials(InvoicerError):
    """Email/password pair rejected by the identity backend."""


# ── Directory ────────────────────────────────────────────────────

class RecordNotFound(InvoicerError):
    """A directory record addressed by id does not exist in the caller's tenant."""


# ── Backend ──────────────────────────────────────────────────────

class BackendUnavailable(InvoicerError):
    """Credential or record store call was rejected. Not retried."""


class OrphanedCredentialError(BackendUnavailable):
    """Login credential was created but the account record write failed.

    The credential is left in place; see the orphaned-credential runbook.
    """

    def __init__(
        self,
        message: str,
        *,
        email: str,
        principal_id: str,
        context: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, context)
        self.email: str = email
        self.principal_id: str = principal_id
