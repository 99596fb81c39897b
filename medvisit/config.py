"""
Centralised configuration constants and environment helpers.
"""

import os
import sys

from dotenv import load_dotenv

load_dotenv()

# ── Database ─────────────────────────────────────────────────────────
DB_URI = os.getenv("DB_URI", "sqlite:///medvisit.sqlite")

# ── Identity provider credentials ────────────────────────────────────
SECRET_KEY = os.getenv("JWT_SECRET_KEY", "dev-secret-key-change-in-production")
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
TOKEN_EXPIRY_HOURS = 24

# Single identity allowed to promote itself to admin. Unset disables bootstrap.
ROOT_ADMIN_EMAIL = os.getenv("ROOT_ADMIN_EMAIL", "").strip() or None

# Signing secret ("whsec_...") for svix-signed identity-provider webhooks.
WEBHOOK_SECRET = os.getenv("WEBHOOK_SECRET", "").strip() or None

# ── Roles / catalogs ─────────────────────────────────────────────────
ROLE_ADMIN = "admin"
ROLE_VISITOR = "visitor"
VALID_ROLES = {ROLE_ADMIN, ROLE_VISITOR}

MEDICATION_UNITS = {"units", "boxes", "samples"}
VISIT_STATUSES = {"completed", "pending", "cancelled"}

MAX_DOCTOR_CENTERS = 2

# ── List limits ──────────────────────────────────────────────────────
LIST_HARD_CAP = 5000
PROFILE_LIST_LIMIT = 100
ACTIVITY_LIST_LIMIT = 100
RECENT_VISITS_LIMIT = 5

# ── API server ───────────────────────────────────────────────────────
SERVICE_NAME = "MedVisit Access API"
SERVICE_VERSION = "1.0.0"


def get_env(name: str) -> str:
    """Return an environment variable or exit with an error message."""
    value = os.getenv(name)
    if not value:
        print(f"ERROR: env var {name} is not set", file=sys.stderr)
        sys.exit(1)
    return value
