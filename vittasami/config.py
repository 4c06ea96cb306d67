"""
Centralised configuration constants and environment helpers.
"""

import os
import sys

from dotenv import load_dotenv

load_dotenv()

# ── Roles ────────────────────────────────────────────────────────────
ROLES = ("super_admin", "admin_tenant", "staff", "receptionist", "doctor", "patient")
TENANT_STAFF_ROLES = ("admin_tenant", "staff", "receptionist")
PROFESSIONAL_ROLES = ("doctor", "admin_tenant", "staff")
SELF_REGISTER_ROLES = ("admin_tenant", "doctor", "patient")

# ── Auth / sessions ──────────────────────────────────────────────────
SECRET_KEY = os.getenv("JWT_SECRET_KEY", "dev-secret-key-change-in-production")
JWT_ALGORITHM = "HS256"
TOKEN_EXPIRY_DAYS = 7
COOKIE_NAME = "vittasami-auth-token"
BCRYPT_ROUNDS = 12
MIN_REGISTER_PASSWORD = 6
MIN_CHANGE_PASSWORD = 8

# ── Scheduling ───────────────────────────────────────────────────────
CANCELLATION_WINDOW_HOURS = 24
DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100
DEFAULT_SLOT_MINUTES = 30
DEFAULT_SLOTS_PER_DAY = 10
SAME_DAY_BUFFER_MINUTES = 30

# ── Billing ──────────────────────────────────────────────────────────
DEFAULT_TAX_RATE = 18.0
DEFAULT_CURRENCY = "PEN"
STRIPE_CURRENCY = os.getenv("STRIPE_CURRENCY", "usd")
STRIPE_SECRET_KEY = os.getenv("STRIPE_SECRET_KEY")
STRIPE_WEBHOOK_SECRET = os.getenv("STRIPE_WEBHOOK_SECRET")

# ── Notifications ────────────────────────────────────────────────────
NOTIFICATION_BATCH_SIZE = 10
NOTIFICATION_LIST_LIMIT = 50
SMTP_HOST = os.getenv("SMTP_HOST")
SMTP_PORT = int(os.getenv("SMTP_PORT", "587"))
SMTP_USERNAME = os.getenv("SMTP_USERNAME")
SMTP_PASSWORD = os.getenv("SMTP_PASSWORD")
EMAIL_FROM_ADDRESS = os.getenv("EMAIL_FROM_ADDRESS", "VittaSami <no-reply@vittasami.com>")
TWILIO_ACCOUNT_SID = os.getenv("TWILIO_ACCOUNT_SID")
TWILIO_AUTH_TOKEN = os.getenv("TWILIO_AUTH_TOKEN")
TWILIO_WHATSAPP_FROM = os.getenv("TWILIO_WHATSAPP_FROM")
DEFAULT_EMAIL_REMINDER_HOURS = 24
DEFAULT_WHATSAPP_REMINDER_HOURS = 4
MAX_REMINDER_HOURS = 168

# ── LLM ──────────────────────────────────────────────────────────────
MODEL_NAME = "gpt-4.1-mini"
MAX_DIAGNOSIS_SUGGESTIONS = 10


def get_env(name: str) -> str:
    """Return an environment variable or exit with an error message."""
    value = os.getenv(name)
    if not value:
        print(f"ERROR: env var {name} is not set", file=sys.stderr)
        sys.exit(1)
    return value


def is_development() -> bool:
    return os.getenv("FLASK_ENV") == "development"
