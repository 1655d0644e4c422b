"""Form validation helpers shared by the web handlers and services."""

from __future__ import annotations

import re
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, Mapping, Optional
from urllib.parse import urlparse

from .exceptions import ValidationError
from .models import WithdrawalMethod
from .money import SATOSHI, parse_amount

EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
PIN_PATTERN = re.compile(r"^\d{4}$")


def clean(value: Any) -> str:
    return str(value or "").strip()


def optional_text(value: Any) -> Optional[str]:
    text = clean(value)
    return text or None


def is_email(value: str) -> bool:
    return bool(EMAIL_PATTERN.match(value or ""))


def is_url(value: str) -> bool:
    parsed = urlparse(value or "")
    return parsed.scheme in {"http", "https"} and bool(parsed.netloc)


def require_email(value: Any, message: str = "Invalid email address") -> str:
    email = clean(value).lower()
    if not is_email(email):
        raise ValidationError(message)
    return email


def require_url(value: Any, message: str) -> str:
    url = clean(value)
    if not is_url(url):
        raise ValidationError(message)
    return url


def require_min_length(value: Any, length: int, message: str) -> str:
    text = clean(value)
    if len(text) < length:
        raise ValidationError(message)
    return text


def require_amount(raw: Any, *, btc: bool = False, allow_zero: bool = False, message: str = "Amount must be positive") -> Decimal:
    value = parse_amount(raw, places=SATOSHI) if btc else parse_amount(raw)
    if value is None:
        raise ValidationError(message)
    if value < 0 or (value == 0 and not allow_zero):
        raise ValidationError(message)
    return value


def validate_strong_password(password: str) -> str:
    if len(password or "") < 8:
        raise ValidationError("Password must be at least 8 characters")
    if not re.search(r"[A-Z]", password):
        raise ValidationError("Password must contain at least one uppercase letter")
    if not re.search(r"[a-z]", password):
        raise ValidationError("Password must contain at least one lowercase letter")
    if not re.search(r"\d", password):
        raise ValidationError("Password must contain at least one number")
    return password


def validate_pin(pin: Any, message: str = "PIN must be exactly 4 digits") -> str:
    value = clean(pin)
    if not PIN_PATTERN.match(value):
        raise ValidationError(message)
    return value


def parse_date(raw: Any) -> Optional[date]:
    text = clean(raw)
    if not text:
        return None
    try:
        return date.fromisoformat(text[:10])
    except ValueError as exc:
        raise ValidationError("Invalid date") from exc


def parse_datetime(raw: Any) -> Optional[datetime]:
    text = clean(raw)
    if not text:
        return None
    try:
        moment = datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError as exc:
        raise ValidationError("Invalid date") from exc
    if moment.tzinfo is not None:
        moment = moment.replace(tzinfo=None)
    return moment


def parse_bool(raw: Any) -> bool:
    if isinstance(raw, bool):
        return raw
    return clean(raw).lower() in {"1", "true", "on", "yes"}


def validate_withdrawal_details(method: WithdrawalMethod, details: Mapping[str, Any]) -> Dict[str, str]:
    """Check the destination fields required by ``method``.

    Returns the cleaned subset of ``details`` relevant to the method.
    """

    def field(name: str) -> str:
        return clean(details.get(name))

    if method is WithdrawalMethod.BANK_TRANSFER:
        cleaned = {
            "bankName": require_min_length(field("bankName"), 2, "Bank name is required"),
            "accountName": require_min_length(field("accountName"), 2, "Account name is required"),
            "accountNumber": require_min_length(field("accountNumber"), 5, "Valid account number is required"),
            "country": require_min_length(field("country"), 2, "Country is required"),
        }
        for optional in ("routingNumber", "swiftCode", "iban", "bankAddress"):
            if field(optional):
                cleaned[optional] = field(optional)
        return cleaned
    if method in (WithdrawalMethod.BITCOIN, WithdrawalMethod.ETHEREUM):
        address = require_min_length(field("walletAddress"), 10, "Valid wallet address is required")
        return {"walletAddress": address}
    if method is WithdrawalMethod.CASHAPP:
        cashtag = field("cashtag")
        if not cashtag.startswith("$") or len(cashtag) < 2:
            raise ValidationError("Valid $cashtag is required")
        return {"cashtag": cashtag}
    if method is WithdrawalMethod.PAYPAL:
        return {"paypalEmail": require_email(field("paypalEmail"), "Valid PayPal email is required")}
    if method is WithdrawalMethod.ZELLE:
        email = field("zelleEmail")
        phone = field("zellePhone")
        if not email and not phone:
            raise ValidationError("Zelle email or phone is required")
        cleaned = {}
        if email:
            cleaned["zelleEmail"] = require_email(email, "Valid Zelle email is required")
        if phone:
            cleaned["zellePhone"] = phone
        return cleaned
    raise ValidationError("Invalid withdrawal method")  # pragma: no cover - enum exhaustive


def validate_contact_form(name: Any, email: Any, subject: Any, message: Any) -> Dict[str, str]:
    return {
        "name": require_min_length(name, 2, "Name must be at least 2 characters"),
        "email": require_email(email, "Please enter a valid email address"),
        "subject": require_min_length(subject, 5, "Subject must be at least 5 characters"),
        "message": require_min_length(message, 20, "Message must be at least 20 characters"),
    }


__all__ = [
    "EMAIL_PATTERN",
    "clean",
    "optional_text",
    "is_email",
    "is_url",
    "require_email",
    "require_url",
    "require_min_length",
    "require_amount",
    "validate_strong_password",
    "validate_pin",
    "parse_date",
    "parse_datetime",
    "parse_bool",
    "validate_withdrawal_details",
    "validate_contact_form",
]
