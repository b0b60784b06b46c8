"""System-wide constants. All magic numbers and strings live here."""

from __future__ import annotations

# ── Roles ────────────────────────────────────────────────────────
ROLE_ADMIN = "admin"
ROLE_USER = "user"

# ── Subscription tiers ───────────────────────────────────────────
TIER_FREE = "free"
TIER_PRO = "pro"

# ── Seats & credentials ──────────────────────────────────────────
MAX_USER_SEATS = 3                  # non-admin accounts on an active PRO plan
MIN_PASSWORD_LENGTH = 6

# ── Routes ───────────────────────────────────────────────────────
DEFAULT_LANDING_ROUTE = "/dashboard"
OPERATOR_LANDING_ROUTE = "/admin/dashboard"

# ── HTTP ─────────────────────────────────────────────────────────
SESSION_COOKIE_NAME = "invoicer_token"
ACCOUNT_INACCESSIBLE_MESSAGE = "Account inaccessible. Contact your administrator."
BACKEND_RETRY_MESSAGE = "Service temporarily unavailable. Please try again."
