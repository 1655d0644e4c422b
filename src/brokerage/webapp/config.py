"""Configuration constants for the brokerage web frontend."""
from __future__ import annotations

import os
from datetime import timedelta
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

load_dotenv()


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


SESSION_SECRET = os.environ.get("SESSION_SECRET", "change-this-session-secret")
SQLITE_FILE_NAME = os.environ.get("BROKERAGE_SQLITE", "brokerage.db")
SITE_NAME = os.environ.get("SITE_NAME", "HYI Broker")
APP_URL = os.environ.get("APP_URL", "http://localhost:8000")

SMTP_HOST = os.environ.get("SMTP_HOST", "")
SMTP_PORT = int(os.environ.get("SMTP_PORT", "587"))
SMTP_USERNAME: Optional[str] = os.environ.get("SMTP_USERNAME") or None
SMTP_PASSWORD: Optional[str] = os.environ.get("SMTP_PASSWORD") or None
SMTP_USE_TLS = _env_bool("SMTP_USE_TLS", True)
EMAIL_FROM = os.environ.get("EMAIL_FROM", "noreply@hyibroker.com")
ADMIN_NOTIFY_EMAIL = os.environ.get("ADMIN_NOTIFY_EMAIL", "")

CLOUDINARY_CLOUD_NAME = os.environ.get("CLOUDINARY_CLOUD_NAME", "")
CLOUDINARY_API_KEY = os.environ.get("CLOUDINARY_API_KEY", "")
CLOUDINARY_API_SECRET = os.environ.get("CLOUDINARY_API_SECRET", "")

LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")
EVENT_LOG_PATH: Optional[Path] = Path(os.environ["EVENT_LOG_PATH"]) if os.environ.get("EVENT_LOG_PATH") else None

USER_SESSION_LIFETIME = timedelta(days=7)
ADMIN_SESSION_LIFETIME = timedelta(hours=24)
PASSWORD_RESET_LIFETIME = timedelta(hours=1)
DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100
LOGIN_MAX_ATTEMPTS = 5
LOGIN_LOCKOUT_MINUTES = 15

DEFAULT_SIGNUP_BONUS = "10.00"
DEFAULT_WITHDRAWAL_FEE_INSTRUCTION = (
    "Please pay the required withdrawal fee to process your transaction. "
    "Contact support for payment details."
)
DEFAULT_SIGNAL_FEE_INSTRUCTION = (
    "Signal fee payment is required to process your withdrawal. "
    "Contact support for payment details."
)
DEFAULT_TIER_UPGRADE_INSTRUCTION = (
    "You cannot make withdrawals because you are still in Tier {tier}. "
    "You need to upgrade to Tier 3 to enable withdrawals. Please contact support for assistance."
)

PUBLIC_SETTINGS_DEFAULTS = {
    "site_name": "Standard Broker",
    "support_email": "support@standardbroker.com",
    "support_phone": "+1 (888) 555-0123",
    "address": "123 Financial District, New York, NY 10004",
}

__all__ = [
    "SESSION_SECRET",
    "SQLITE_FILE_NAME",
    "SITE_NAME",
    "APP_URL",
    "SMTP_HOST",
    "SMTP_PORT",
    "SMTP_USERNAME",
    "SMTP_PASSWORD",
    "SMTP_USE_TLS",
    "EMAIL_FROM",
    "ADMIN_NOTIFY_EMAIL",
    "CLOUDINARY_CLOUD_NAME",
    "CLOUDINARY_API_KEY",
    "CLOUDINARY_API_SECRET",
    "LOG_LEVEL",
    "EVENT_LOG_PATH",
    "USER_SESSION_LIFETIME",
    "ADMIN_SESSION_LIFETIME",
    "PASSWORD_RESET_LIFETIME",
    "DEFAULT_PAGE_SIZE",
    "MAX_PAGE_SIZE",
    "LOGIN_MAX_ATTEMPTS",
    "LOGIN_LOCKOUT_MINUTES",
    "DEFAULT_SIGNUP_BONUS",
    "DEFAULT_WITHDRAWAL_FEE_INSTRUCTION",
    "DEFAULT_SIGNAL_FEE_INSTRUCTION",
    "DEFAULT_TIER_UPGRADE_INSTRUCTION",
    "PUBLIC_SETTINGS_DEFAULTS",
]
