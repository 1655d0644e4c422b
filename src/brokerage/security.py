"""Security helpers: password hashing, login throttling and token generation."""

from __future__ import annotations

import os
import secrets
from collections import deque
from datetime import datetime, timedelta
from typing import Deque, Dict, Optional

import bcrypt

REFERRAL_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"
REFERRAL_CODE_LENGTH = 8
BCRYPT_ROUNDS = int(os.environ.get("BCRYPT_ROUNDS", "12"))


def hash_password(password: str, *, rounds: int = BCRYPT_ROUNDS) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt(rounds=rounds)).decode("utf-8")


def verify_password(password: str, hashed: Optional[str]) -> bool:
    if not password or not hashed:
        return False
    try:
        return bcrypt.checkpw(password.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        return False


def generate_referral_code() -> str:
    return "".join(secrets.choice(REFERRAL_ALPHABET) for _ in range(REFERRAL_CODE_LENGTH))


def generate_pin() -> str:
    return f"{secrets.randbelow(9000) + 1000}"


def generate_reset_token() -> str:
    return secrets.token_hex(32)


def mask_email(email: str) -> str:
    """Hide most of the local part, e.g. ``ja***@example.com``."""

    local, sep, domain = (email or "").partition("@")
    if not sep:
        return email
    visible = local[:2] if len(local) > 2 else local[:1]
    return f"{visible}***@{domain}"


class AuthManager:
    """Throttle repeated failed logins per identity."""

    def __init__(self, *, max_attempts: int = 5, lockout_minutes: int = 15) -> None:
        self._max_attempts = max_attempts
        self._lockout_window = timedelta(minutes=lockout_minutes)
        self._login_attempts: Dict[str, Deque[datetime]] = {}

    def record_login_attempt(self, identity: str, *, success: bool, at: Optional[datetime] = None) -> bool:
        """Record a login attempt and return whether further attempts are allowed."""

        now = at or datetime.utcnow()
        self._sweep(now)
        if success:
            self._login_attempts.pop(identity, None)
            return True
        bucket = self._login_attempts.setdefault(identity, deque())
        bucket.append(now)
        return len(bucket) < self._max_attempts

    def is_locked(self, identity: str, *, at: Optional[datetime] = None) -> bool:
        """Return ``True`` when ``identity`` is currently locked out."""

        now = at or datetime.utcnow()
        bucket = self._login_attempts.get(identity)
        if not bucket:
            return False
        self._prune(bucket, now)
        if not bucket:
            del self._login_attempts[identity]
            return False
        return len(bucket) >= self._max_attempts

    def reset(self, identity: Optional[str] = None) -> None:
        if identity is None:
            self._login_attempts.clear()
        else:
            self._login_attempts.pop(identity, None)

    def _prune(self, bucket: Deque[datetime], now: datetime) -> None:
        while bucket and now - bucket[0] > self._lockout_window:
            bucket.popleft()

    def _sweep(self, now: datetime) -> None:
        for identity in list(self._login_attempts):
            bucket = self._login_attempts[identity]
            self._prune(bucket, now)
            if not bucket:
                del self._login_attempts[identity]


__all__ = [
    "AuthManager",
    "REFERRAL_ALPHABET",
    "hash_password",
    "verify_password",
    "generate_referral_code",
    "generate_pin",
    "generate_reset_token",
    "mask_email",
]
