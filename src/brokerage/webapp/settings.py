"""Site-wide settings: company details, deposit methods and withdrawal defaults."""
from __future__ import annotations

import logging
import uuid
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional

from sqlmodel import Session, select

from ..exceptions import NotFoundError, ValidationError
from ..models import AdminActor, AuditAction, PaymentMethodType, coerce_enum
from ..money import to_cents
from ..validation import clean, is_email, optional_text, parse_bool, require_amount, validate_contact_form
from .admins import require_super_admin
from .audit import record_audit
from .config import ADMIN_NOTIFY_EMAIL, PUBLIC_SETTINGS_DEFAULTS
from .mailer import send_email, templates, use_site_name
from .persistence import AppSettings, encode_json

logger = logging.getLogger(__name__)

PAYMENT_METHOD_FIELDS = (
    "network",
    "walletAddress",
    "email",
    "username",
    "phone",
    "bankName",
    "accountName",
    "accountNumber",
    "routingNumber",
    "swiftCode",
    "iban",
    "bankAddress",
    "instructions",
)


def get_app_settings(session: Session) -> AppSettings:
    """Return the single settings row, creating it with defaults on first use."""

    settings = session.exec(select(AppSettings).order_by(AppSettings.id)).first()
    if settings is None:
        settings = AppSettings()
        session.add(settings)
        session.commit()
        session.refresh(settings)
    return settings


def update_app_settings(session: Session, actor: AdminActor, data: Mapping[str, Any]) -> AppSettings:
    require_super_admin(actor)
    settings = get_app_settings(session)
    changes: Dict[str, Any] = {}
    if "site_name" in data:
        site_name = clean(data.get("site_name"))
        if not site_name:
            raise ValidationError("Site name is required")
        settings.site_name = changes["site_name"] = site_name
    if "company_email" in data:
        email = clean(data.get("company_email")).lower()
        if email and not is_email(email):
            raise ValidationError("Invalid company email")
        settings.company_email = changes["company_email"] = email or None
    for key in ("company_phone", "company_address"):
        if key in data:
            value = optional_text(data.get(key))
            setattr(settings, key, value)
            changes[key] = value
    if "default_withdrawal_instruction" in data:
        settings.default_withdrawal_instruction = clean(data.get("default_withdrawal_instruction"))
        changes["default_withdrawal_instruction"] = settings.default_withdrawal_instruction
    if "default_withdrawal_fee" in data:
        fee = require_amount(
            data.get("default_withdrawal_fee") or "0",
            allow_zero=True,
            message="Default withdrawal fee cannot be negative",
        )
        settings.default_withdrawal_fee_cents = to_cents(fee)
        changes["default_withdrawal_fee"] = str(fee)
    settings.updated_at = datetime.utcnow()
    session.add(settings)
    session.commit()
    if "site_name" in changes:
        use_site_name(settings.site_name)
    record_audit(actor, AuditAction.SETTINGS_UPDATED, "AppSettings", settings.id, changes)
    return settings


def load_site_name(session: Session) -> None:
    """Apply a saved site name at startup without creating the settings row."""

    settings = session.exec(select(AppSettings).order_by(AppSettings.id)).first()
    use_site_name(settings.site_name if settings else None)


# ---------------------------------------------------------------------------
# Payment methods
# ---------------------------------------------------------------------------
def _method_fields(data: Mapping[str, Any]) -> Dict[str, Optional[str]]:
    return {key: optional_text(data.get(key)) for key in PAYMENT_METHOD_FIELDS if key in data}


def _save_methods(session: Session, settings: AppSettings, methods: List[Dict[str, Any]]) -> None:
    settings.payment_methods = encode_json(methods)
    settings.updated_at = datetime.utcnow()
    session.add(settings)
    session.commit()


def add_payment_method(session: Session, actor: AdminActor, data: Mapping[str, Any]) -> Dict[str, Any]:
    method_type = coerce_enum(PaymentMethodType, data.get("type"))
    if method_type is None:
        raise ValidationError("Invalid payment method type")
    name = clean(data.get("name"))
    if not name:
        raise ValidationError("Payment method name is required")
    if method_type is PaymentMethodType.CRYPTO and not clean(data.get("walletAddress")):
        raise ValidationError("Wallet address is required for crypto methods")
    now = datetime.utcnow().isoformat()
    method: Dict[str, Any] = {
        "id": str(uuid.uuid4()),
        "type": method_type.value,
        "name": name,
        "isActive": parse_bool(data.get("isActive", True)),
        **_method_fields(data),
        "createdAt": now,
        "updatedAt": now,
    }
    settings = get_app_settings(session)
    methods = settings.methods()
    methods.append(method)
    _save_methods(session, settings, methods)
    record_audit(
        actor,
        AuditAction.DEPOSIT_METHOD_ADDED,
        "PaymentMethod",
        method["id"],
        {"type": method["type"], "name": name},
    )
    return method


def _find_method(methods: List[Dict[str, Any]], method_id: str) -> int:
    for index, method in enumerate(methods):
        if method.get("id") == method_id:
            return index
    raise NotFoundError("Payment method not found")


def update_payment_method(
    session: Session, actor: AdminActor, method_id: str, data: Mapping[str, Any]
) -> Dict[str, Any]:
    settings = get_app_settings(session)
    methods = settings.methods()
    index = _find_method(methods, method_id)
    method = dict(methods[index])
    if "name" in data:
        name = clean(data.get("name"))
        if not name:
            raise ValidationError("Payment method name is required")
        method["name"] = name
    if "type" in data:
        method_type = coerce_enum(PaymentMethodType, data.get("type"))
        if method_type is None:
            raise ValidationError("Invalid payment method type")
        method["type"] = method_type.value
    if "isActive" in data:
        method["isActive"] = parse_bool(data.get("isActive"))
    method.update(_method_fields(data))
    method["updatedAt"] = datetime.utcnow().isoformat()
    methods[index] = method
    _save_methods(session, settings, methods)
    record_audit(actor, AuditAction.SETTINGS_UPDATED, "PaymentMethod", method_id, {"action": "update_payment_method"})
    return method


def delete_payment_method(session: Session, actor: AdminActor, method_id: str) -> None:
    settings = get_app_settings(session)
    methods = settings.methods()
    removed = methods.pop(_find_method(methods, method_id))
    _save_methods(session, settings, methods)
    record_audit(
        actor,
        AuditAction.DEPOSIT_METHOD_REMOVED,
        "PaymentMethod",
        method_id,
        {"type": removed.get("type"), "name": removed.get("name")},
    )


def toggle_payment_method(session: Session, actor: AdminActor, method_id: str) -> bool:
    settings = get_app_settings(session)
    methods = settings.methods()
    index = _find_method(methods, method_id)
    methods[index]["isActive"] = not methods[index].get("isActive", True)
    methods[index]["updatedAt"] = datetime.utcnow().isoformat()
    _save_methods(session, settings, methods)
    active = bool(methods[index]["isActive"])
    record_audit(
        actor,
        AuditAction.SETTINGS_UPDATED,
        "PaymentMethod",
        method_id,
        {"action": "toggle_payment_method", "isActive": active},
    )
    return active


# ---------------------------------------------------------------------------
# Legacy deposit wallets
# ---------------------------------------------------------------------------
def add_deposit_wallet(
    session: Session, actor: AdminActor, *, name: str, address: str, network: str
) -> Dict[str, Any]:
    wallet = {
        "id": str(uuid.uuid4()),
        "name": clean(name),
        "address": clean(address),
        "network": clean(network).upper(),
        "isActive": True,
    }
    if not wallet["name"] or not wallet["address"] or not wallet["network"]:
        raise ValidationError("Wallet name, address and network are required")
    settings = get_app_settings(session)
    wallets = settings.wallets()
    wallets.append(wallet)
    settings.deposit_wallets = encode_json(wallets)
    settings.updated_at = datetime.utcnow()
    session.add(settings)
    session.commit()
    record_audit(actor, AuditAction.WALLET_ADDED, "DepositWallet", wallet["id"], {"network": wallet["network"]})
    return wallet


def remove_deposit_wallet(session: Session, actor: AdminActor, wallet_id: str) -> None:
    settings = get_app_settings(session)
    wallets = settings.wallets()
    remaining = [wallet for wallet in wallets if wallet.get("id") != wallet_id]
    if len(remaining) == len(wallets):
        raise NotFoundError("Wallet not found")
    settings.deposit_wallets = encode_json(remaining)
    settings.updated_at = datetime.utcnow()
    session.add(settings)
    session.commit()
    record_audit(actor, AuditAction.WALLET_REMOVED, "DepositWallet", wallet_id)


# ---------------------------------------------------------------------------
# Public views
# ---------------------------------------------------------------------------
def public_settings(session: Session) -> Dict[str, str]:
    settings = session.exec(select(AppSettings).order_by(AppSettings.id)).first()
    if settings is None:
        return dict(PUBLIC_SETTINGS_DEFAULTS)
    return {
        "site_name": settings.site_name or PUBLIC_SETTINGS_DEFAULTS["site_name"],
        "support_email": settings.company_email or PUBLIC_SETTINGS_DEFAULTS["support_email"],
        "support_phone": settings.company_phone or PUBLIC_SETTINGS_DEFAULTS["support_phone"],
        "address": settings.company_address or PUBLIC_SETTINGS_DEFAULTS["address"],
    }


def active_payment_methods(session: Session) -> List[Dict[str, Any]]:
    """Active methods; legacy wallets appear as CRYPTO only when no CRYPTO method exists."""

    settings = session.exec(select(AppSettings).order_by(AppSettings.id)).first()
    if settings is None:
        return []
    methods = [method for method in settings.methods() if method.get("isActive", True)]
    has_crypto = any(method.get("type") == PaymentMethodType.CRYPTO.value for method in methods)
    if has_crypto:
        return methods
    legacy = [
        {
            "id": wallet.get("id") or f"legacy-wallet-{index}",
            "type": PaymentMethodType.CRYPTO.value,
            "name": wallet.get("name") or wallet.get("network"),
            "network": wallet.get("network"),
            "walletAddress": wallet.get("address"),
            "isActive": True,
        }
        for index, wallet in enumerate(settings.wallets())
        if wallet.get("isActive", True)
    ]
    return legacy + methods


def payment_methods_by_type(session: Session) -> Dict[str, List[Dict[str, Any]]]:
    grouped: Dict[str, List[Dict[str, Any]]] = {}
    for method in active_payment_methods(session):
        grouped.setdefault(method.get("type", PaymentMethodType.OTHER.value), []).append(method)
    return grouped


def find_payment_method(session: Session, method_id: Optional[str]) -> Optional[Dict[str, Any]]:
    if not method_id:
        return None
    return next((method for method in active_payment_methods(session) if method.get("id") == method_id), None)




def submit_contact_form(session: Session, data: Mapping[str, Any]) -> bool:
    """Forward a contact-form message to the company inbox with reply-to set."""

    form = validate_contact_form(data.get("name"), data.get("email"), data.get("subject"), data.get("message"))
    recipient = ADMIN_NOTIFY_EMAIL or public_settings(session)["support_email"]
    logger.info("Contact message from %s: %s", form["email"], form["subject"])
    return send_email(
        recipient,
        templates.contact(form["name"], form["email"], form["subject"], form["message"]),
        reply_to=form["email"],
    )


__all__ = [
    "get_app_settings",
    "update_app_settings",
    "load_site_name",
    "add_payment_method",
    "update_payment_method",
    "delete_payment_method",
    "toggle_payment_method",
    "add_deposit_wallet",
    "remove_deposit_wallet",
    "public_settings",
    "active_payment_methods",
    "payment_methods_by_type",
    "find_payment_method",
    "submit_contact_form",
]
