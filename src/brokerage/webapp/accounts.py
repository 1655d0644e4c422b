"""Investor accounts: registration, login, password reset, profile and admin management."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional

from sqlalchemy import delete as sa_delete
from sqlmodel import Session, col, desc, func, or_, select

from ..exceptions import (
    AuthenticationError,
    ConflictError,
    NotFoundError,
    PermissionDenied,
    RateLimitedError,
    ValidationError,
)
from ..models import AdminActor, AuditAction, Gender, KYCStatus, Page, coerce_enum
from ..money import to_cents, to_sats
from ..reference import CURRENCY_CODES
from ..security import (
    AuthManager,
    generate_pin,
    generate_referral_code,
    generate_reset_token,
    hash_password,
    mask_email,
    verify_password,
)
from ..validation import (
    clean,
    optional_text,
    parse_bool,
    parse_date,
    parse_datetime,
    require_amount,
    require_email,
    require_min_length,
    validate_pin,
    validate_strong_password,
)
from .audit import record_audit, security_log
from .config import DEFAULT_SIGNUP_BONUS, LOGIN_LOCKOUT_MINUTES, LOGIN_MAX_ATTEMPTS, PASSWORD_RESET_LIFETIME
from .investments import InvestmentView, user_investments
from .kyc import get_user_kyc
from .ledger import delete_user_transactions, recent_user_transactions
from .mailer import send_email, templates
from .persistence import KYC, InvestmentPlan, Trade, Transaction, User, UserInvestment, get_or_404, page_bounds

logger = logging.getLogger(__name__)

user_auth = AuthManager(max_attempts=LOGIN_MAX_ATTEMPTS, lockout_minutes=LOGIN_LOCKOUT_MINUTES)

RESET_REQUESTED_MESSAGE = "If an account exists, a reset link has been sent."
USER_STATUS_FILTERS = ("active", "suspended", "blocked")
USER_ACTIONS = ("suspend", "unsuspend", "block", "unblock", "reset_pin")


def _currency(raw: Any) -> str:
    code = clean(raw).upper() or "USD"
    if code not in CURRENCY_CODES:
        raise ValidationError("Unsupported currency")
    return code


def _gender(raw: Any) -> Optional[str]:
    if not clean(raw):
        return None
    gender = coerce_enum(Gender, raw)
    if gender is None:
        raise ValidationError("Invalid gender")
    return gender.value


def _unique_referral_code(session: Session) -> str:
    code = generate_referral_code()
    while session.exec(select(User.id).where(User.referral_code == code)).first() is not None:
        code = generate_referral_code()
    return code


def _find_by_email(session: Session, email: str) -> Optional[User]:
    return session.exec(select(User).where(User.email == email)).first()


# ---------------------------------------------------------------------------
# Self-service
# ---------------------------------------------------------------------------
def register_user(session: Session, data: Mapping[str, Any]) -> User:
    full_name = require_min_length(data.get("full_name"), 2, "Name must be at least 2 characters")
    email = require_email(data.get("email"))
    password = validate_strong_password(str(data.get("password") or ""))
    country = require_min_length(data.get("country"), 2, "Country is required")
    dob = parse_date(data.get("dob"))
    gender = _gender(data.get("gender"))
    currency = _currency(data.get("currency"))
    if _find_by_email(session, email) is not None:
        raise ConflictError("An account with this email already exists")
    referred_by_id: Optional[int] = None
    referral = clean(data.get("referral_code")).upper()
    if referral:
        referrer = session.exec(select(User).where(User.referral_code == referral)).first()
        if referrer is None:
            raise ValidationError("Invalid referral code")
        referred_by_id = referrer.id
    user = User(
        full_name=full_name,
        email=email,
        password_hash=hash_password(password),
        country=country,
        dob=dob,
        gender=gender,
        phone=optional_text(data.get("phone")),
        currency=currency,
        transaction_pin=generate_pin(),
        referral_code=_unique_referral_code(session),
        referred_by_id=referred_by_id,
    )
    session.add(user)
    session.commit()
    session.refresh(user)
    security_log.log("user_registered", user_id=user.id, referred_by=referred_by_id)
    send_email(user.email, templates.welcome(user.full_name))
    return user


def authenticate_user(
    session: Session, email: Any, password: Any, *, ip_address: Optional[str] = None
) -> User:
    address = clean(email).lower()
    identity = f"user:{address}"
    if user_auth.is_locked(identity):
        security_log.log("user_login_locked", email=address, ip=ip_address)
        raise RateLimitedError("Too many login attempts. Please try again later.")
    user = _find_by_email(session, address) if address else None
    if user is None or not verify_password(str(password or ""), user.password_hash):
        allowed = user_auth.record_login_attempt(identity, success=False)
        security_log.log("user_login_failed", email=address, ip=ip_address)
        if not allowed:
            raise RateLimitedError("Too many login attempts. Please try again later.")
        raise AuthenticationError("Invalid email or password")
    if user.is_blocked:
        raise PermissionDenied("Your account has been blocked. Please contact support.")
    if user.is_suspended:
        raise PermissionDenied("Your account has been suspended. Please contact support.")
    user_auth.record_login_attempt(identity, success=True)
    user.last_login = datetime.utcnow()
    session.add(user)
    session.commit()
    security_log.log("user_login", user_id=user.id, ip=ip_address)
    return user


def request_password_reset(session: Session, email: Any) -> str:
    """Issue a reset token when the address is known; the answer never says which."""

    address = require_email(email)
    user = _find_by_email(session, address)
    if user is not None:
        token = generate_reset_token()
        user.password_reset_token = token
        user.password_reset_expires = datetime.utcnow() + PASSWORD_RESET_LIFETIME
        session.add(user)
        session.commit()
        send_email(user.email, templates.password_reset(user.full_name, token))
        security_log.log("password_reset_requested", user_id=user.id)
    return RESET_REQUESTED_MESSAGE


def reset_password(session: Session, token: Any, password: Any) -> User:
    value = clean(token)
    if not value:
        raise ValidationError("Reset token is required")
    new_password = validate_strong_password(str(password or ""))
    user = session.exec(select(User).where(User.password_reset_token == value)).first()
    if user is None or user.password_reset_expires is None or user.password_reset_expires <= datetime.utcnow():
        raise ValidationError("Invalid or expired reset token")
    user.password_hash = hash_password(new_password)
    user.password_reset_token = None
    user.password_reset_expires = None
    user.updated_at = datetime.utcnow()
    session.add(user)
    session.commit()
    user_auth.reset(f"user:{user.email}")
    security_log.log("password_reset_completed", user_id=user.id)
    return user


def update_profile(session: Session, user_id: int, data: Mapping[str, Any]) -> User:
    full_name = require_min_length(data.get("full_name"), 2, "Full name is required")
    user = get_or_404(session, User, user_id, "User not found")
    user.full_name = full_name
    user.phone = optional_text(data.get("phone"))
    user.country = clean(data.get("country")) or user.country
    user.city = optional_text(data.get("city"))
    user.address = optional_text(data.get("address"))
    user.updated_at = datetime.utcnow()
    session.add(user)
    session.commit()
    return user


def change_password(session: Session, user_id: int, current_password: Any, new_password: Any, confirm_password: Any) -> None:
    current = str(current_password or "")
    new = str(new_password or "")
    confirm = str(confirm_password or "")
    if not current or not new or not confirm:
        raise ValidationError("All fields are required")
    if new != confirm:
        raise ValidationError("New passwords do not match")
    if len(new) < 8:
        raise ValidationError("Password must be at least 8 characters")
    user = get_or_404(session, User, user_id, "User not found")
    if not verify_password(current, user.password_hash):
        raise AuthenticationError("Current password is incorrect")
    user.password_hash = hash_password(new)
    user.updated_at = datetime.utcnow()
    session.add(user)
    session.commit()
    security_log.log("user_password_changed", user_id=user.id)


def change_transaction_pin(session: Session, user_id: int, current_pin: Any, new_pin: Any, confirm_pin: Any) -> None:
    new = clean(new_pin)
    confirm = clean(confirm_pin)
    if not new or not confirm:
        raise ValidationError("New PIN is required")
    if new != confirm:
        raise ValidationError("PINs do not match")
    validate_pin(new)
    user = get_or_404(session, User, user_id, "User not found")
    if user.transaction_pin:
        current = clean(current_pin)
        if not current:
            raise ValidationError("Current PIN is required")
        if current != user.transaction_pin:
            raise ValidationError("Current PIN is incorrect")
    user.transaction_pin = new
    user.updated_at = datetime.utcnow()
    session.add(user)
    session.commit()


def referral_summary(session: Session, user_id: int) -> Dict[str, Any]:
    user = get_or_404(session, User, user_id, "User not found")
    referred = session.exec(
        select(User).where(User.referred_by_id == user.id).order_by(desc(User.created_at))
    ).all()
    return {
        "code": user.referral_code,
        "count": len(referred),
        "referrals": [
            {"name": row.full_name, "email": mask_email(row.email), "joined": row.created_at}
            for row in referred
        ],
    }


# ---------------------------------------------------------------------------
# Admin management
# ---------------------------------------------------------------------------
@dataclass
class UserRow:
    user: User
    plan_name: Optional[str]
    kyc_status: Optional[str]
    transaction_count: int
    investment_count: int


@dataclass
class UserDetail:
    user: User
    plan: Optional[InvestmentPlan]
    kyc: Optional[KYC]
    transactions: List[Transaction] = field(default_factory=list)
    investments: List[InvestmentView] = field(default_factory=list)
    referral_count: int = 0
    referrer: Optional[User] = None


def _count(session: Session, model: Any, user_id: int) -> int:
    return int(session.exec(select(func.count()).select_from(model).where(model.user_id == user_id)).one())


def list_users(
    session: Session, *, search: Any = None, status: Any = None, page: Any = 1, limit: Any = 20
) -> Page[UserRow]:
    page_i, limit_i = page_bounds(page, limit)
    query = select(User)
    count_query = select(func.count()).select_from(User)
    term = clean(search)
    conditions = []
    if term:
        pattern = f"%{term}%"
        conditions.append(or_(col(User.full_name).ilike(pattern), col(User.email).ilike(pattern)))
    state = clean(status).lower()
    if state == "suspended":
        conditions.append(User.is_suspended == True)  # noqa: E712
    elif state == "blocked":
        conditions.append(User.is_blocked == True)  # noqa: E712
    elif state == "active":
        conditions.extend([User.is_suspended == False, User.is_blocked == False])  # noqa: E712
    for condition in conditions:
        query = query.where(condition)
        count_query = count_query.where(condition)
    total = session.exec(count_query).one()
    users = session.exec(
        query.order_by(desc(User.created_at), desc(User.id)).offset((page_i - 1) * limit_i).limit(limit_i)
    ).all()
    rows = []
    for user in users:
        plan = session.get(InvestmentPlan, user.current_plan_id) if user.current_plan_id else None
        kyc = get_user_kyc(session, user.id)
        rows.append(
            UserRow(
                user=user,
                plan_name=plan.name if plan else None,
                kyc_status=kyc.status if kyc else None,
                transaction_count=_count(session, Transaction, user.id),
                investment_count=_count(session, UserInvestment, user.id),
            )
        )
    return Page(items=rows, page=page_i, limit=limit_i, total=int(total))


def user_detail(session: Session, user_id: int) -> UserDetail:
    user = get_or_404(session, User, user_id, "User not found")
    referral_count = session.exec(
        select(func.count()).select_from(User).where(User.referred_by_id == user.id)
    ).one()
    return UserDetail(
        user=user,
        plan=session.get(InvestmentPlan, user.current_plan_id) if user.current_plan_id else None,
        kyc=get_user_kyc(session, user.id),
        transactions=recent_user_transactions(session, user.id, limit=10),
        investments=user_investments(session, user.id),
        referral_count=int(referral_count),
        referrer=session.get(User, user.referred_by_id) if user.referred_by_id else None,
    )


def _money(data: Mapping[str, Any], key: str, default: Any = "0") -> int:
    raw = data.get(key)
    return to_cents(
        require_amount(raw if clean(raw) else default, allow_zero=True, message=f"{key.replace('_', ' ').capitalize()} cannot be negative")
    )


def _btc(data: Mapping[str, Any], key: str) -> int:
    raw = data.get(key)
    return to_sats(require_amount(raw if clean(raw) else "0", btc=True, allow_zero=True, message="Bitcoin balance cannot be negative"))


def _tier(raw: Any) -> int:
    text = clean(raw) or "1"
    if text not in ("1", "2", "3"):
        raise ValidationError("Tier must be 1, 2 or 3")
    return int(text)


def _plan_id(session: Session, raw: Any) -> Optional[int]:
    text = clean(raw)
    if not text:
        return None
    plan = session.get(InvestmentPlan, int(text)) if text.isdigit() else None
    if plan is None:
        raise NotFoundError("Investment plan not found")
    return plan.id


def create_user(session: Session, actor: AdminActor, data: Mapping[str, Any]) -> User:
    full_name = require_min_length(data.get("full_name"), 2, "Full name must be at least 2 characters")
    email = require_email(data.get("email"))
    password = str(data.get("password") or "")
    if len(password) < 6:
        raise ValidationError("Password must be at least 6 characters")
    if _find_by_email(session, email) is not None:
        raise ConflictError("User with this email already exists")
    pin = clean(data.get("transaction_pin"))
    if pin and not (pin.isdigit() and 4 <= len(pin) <= 6):
        raise ValidationError("PIN must be 4 to 6 digits")
    now = datetime.utcnow()
    user = User(
        full_name=full_name,
        email=email,
        password_hash=hash_password(password),
        dob=parse_date(data.get("dob")),
        country=clean(data.get("country")),
        city=optional_text(data.get("city")),
        address=optional_text(data.get("address")),
        phone=optional_text(data.get("phone")),
        currency=_currency(data.get("currency")),
        fiat_balance_cents=_money(data, "fiat_balance"),
        btc_balance_sats=_btc(data, "btc_balance"),
        profit_balance_cents=_money(data, "profit_balance"),
        total_bonus_cents=_money(data, "total_bonus", DEFAULT_SIGNUP_BONUS),
        withdrawal_fee_cents=_money(data, "withdrawal_fee"),
        withdrawal_fee_instruction=optional_text(data.get("withdrawal_fee_instruction")),
        signal_fee_enabled=parse_bool(data.get("signal_fee_enabled")),
        signal_fee_instruction=optional_text(data.get("signal_fee_instruction")),
        tier=_tier(data.get("tier")),
        tier_upgrade_enabled=parse_bool(data.get("tier_upgrade_enabled")),
        tier_upgrade_instruction=optional_text(data.get("tier_upgrade_instruction")),
        transaction_pin=pin or None,
        current_plan_id=_plan_id(session, data.get("current_plan_id")),
        referral_code=_unique_referral_code(session),
        created_at=parse_datetime(data.get("account_age")) or now,
        updated_at=now,
    )
    session.add(user)
    session.commit()
    session.refresh(user)
    record_audit(actor, AuditAction.USER_CREATED, "User", user.id, {"email": email, "fullName": full_name})
    if parse_bool(data.get("send_welcome_email")):
        send_email(user.email, templates.welcome(user.full_name))
    return user


def update_user_balance(session: Session, actor: AdminActor, user_id: int, data: Mapping[str, Any]) -> User:
    user = get_or_404(session, User, user_id, "User not found")
    changes: Dict[str, Any] = {}
    for key, attr in (
        ("fiat_balance", "fiat_balance_cents"),
        ("profit_balance", "profit_balance_cents"),
        ("total_bonus", "total_bonus_cents"),
    ):
        if clean(data.get(key)):
            setattr(user, attr, _money(data, key))
            changes[key] = clean(data.get(key))
    if clean(data.get("btc_balance")):
        user.btc_balance_sats = _btc(data, "btc_balance")
        changes["btc_balance"] = clean(data.get("btc_balance"))
    user.updated_at = datetime.utcnow()
    session.add(user)
    session.commit()
    record_audit(actor, AuditAction.USER_BALANCE_UPDATED, "User", user.id, changes)
    return user


def perform_user_action(session: Session, actor: AdminActor, user_id: int, action: Any) -> Optional[str]:
    """Apply an account action; returns the new PIN for ``reset_pin``."""

    name = clean(action).lower().replace("resetpin", "reset_pin")
    if name not in USER_ACTIONS:
        raise ValidationError("Invalid action")
    user = get_or_404(session, User, user_id, "User not found")
    new_pin: Optional[str] = None
    if name == "suspend":
        user.is_suspended = True
        audit_action = AuditAction.USER_SUSPENDED
    elif name == "unsuspend":
        user.is_suspended = False
        audit_action = AuditAction.USER_UNSUSPENDED
    elif name == "block":
        user.is_blocked = True
        audit_action = AuditAction.USER_BLOCKED
    elif name == "unblock":
        user.is_blocked = False
        audit_action = AuditAction.USER_UNBLOCKED
    else:
        new_pin = generate_pin()
        user.transaction_pin = new_pin
        audit_action = AuditAction.USER_PIN_RESET
    user.updated_at = datetime.utcnow()
    session.add(user)
    session.commit()
    if name in ("suspend", "unsuspend"):
        send_email(user.email, templates.account_status(user.full_name, suspended=name == "suspend"))
    record_audit(actor, audit_action, "User", user.id, {"action": name})
    return new_pin


def delete_user(session: Session, actor: AdminActor, user_id: int) -> None:
    user = get_or_404(session, User, user_id, "User not found")
    email, full_name = user.email, user.full_name
    delete_user_transactions(session, user.id)
    for model in (Trade, UserInvestment, KYC):
        session.execute(sa_delete(model).where(model.user_id == user.id))
    session.delete(user)
    session.commit()
    record_audit(actor, AuditAction.USER_DELETED, "User", user_id, {"email": email, "fullName": full_name})


def assign_plan(session: Session, actor: AdminActor, user_id: int, plan_id: Any) -> User:
    user = get_or_404(session, User, user_id, "User not found")
    user.current_plan_id = _plan_id(session, plan_id)
    user.updated_at = datetime.utcnow()
    session.add(user)
    session.commit()
    record_audit(actor, AuditAction.USER_UPDATED, "User", user.id, {"planId": user.current_plan_id})
    return user


def admin_edit_user(session: Session, actor: AdminActor, user_id: int, data: Mapping[str, Any]) -> User:
    """Overwrite every editable field of an account from the admin edit form."""

    user = get_or_404(session, User, user_id, "User not found")
    full_name = require_min_length(data.get("full_name"), 2, "Full name must be at least 2 characters")
    email = require_email(data.get("email"))
    if email != user.email:
        clash = session.exec(select(User).where(User.email == email, User.id != user.id)).first()
        if clash is not None:
            raise ConflictError("Email already in use by another user")
    kyc_status = coerce_enum(KYCStatus, data.get("kyc_status")) if clean(data.get("kyc_status")) else None
    if clean(data.get("kyc_status")) and kyc_status is None:
        raise ValidationError("Invalid KYC status")

    user.full_name = full_name
    user.email = email
    user.phone = optional_text(data.get("phone"))
    user.dob = parse_date(data.get("dob"))
    user.gender = _gender(data.get("gender"))
    user.country = clean(data.get("country"))
    user.city = optional_text(data.get("city"))
    user.address = optional_text(data.get("address"))
    user.currency = _currency(data.get("currency"))
    user.fiat_balance_cents = _money(data, "fiat_balance")
    user.btc_balance_sats = _btc(data, "btc_balance")
    user.profit_balance_cents = _money(data, "profit_balance")
    user.total_deposited_cents = _money(data, "total_deposited")
    user.total_withdrawn_cents = _money(data, "total_withdrawn")
    user.active_investment_cents = _money(data, "active_investment")
    user.total_bonus_cents = _money(data, "total_bonus")
    user.withdrawal_fee_cents = _money(data, "withdrawal_fee")
    user.withdrawal_fee_instruction = optional_text(data.get("withdrawal_fee_instruction"))
    user.signal_fee_enabled = parse_bool(data.get("signal_fee_enabled"))
    user.signal_fee_instruction = optional_text(data.get("signal_fee_instruction"))
    user.tier = _tier(data.get("tier"))
    user.tier_upgrade_enabled = parse_bool(data.get("tier_upgrade_enabled"))
    user.tier_upgrade_instruction = optional_text(data.get("tier_upgrade_instruction"))
    user.transaction_pin = optional_text(data.get("transaction_pin"))
    user.is_suspended = parse_bool(data.get("is_suspended"))
    user.is_blocked = parse_bool(data.get("is_blocked"))
    created_at = parse_datetime(data.get("created_at"))
    if created_at is not None:
        user.created_at = created_at
    new_password = str(data.get("new_password") or "")
    if new_password:
        if len(new_password) < 6:
            raise ValidationError("Password must be at least 6 characters")
        user.password_hash = hash_password(new_password)
    user.updated_at = datetime.utcnow()
    session.add(user)
    if kyc_status is not None:
        kyc = get_user_kyc(session, user.id)
        if kyc is not None:
            kyc.status = kyc_status.value
            kyc.updated_at = datetime.utcnow()
            session.add(kyc)
    session.commit()
    record_audit(
        actor,
        AuditAction.USER_UPDATED,
        "User",
        user.id,
        {
            "fullName": full_name,
            "email": email,
            "passwordChanged": bool(new_password),
            "kycStatus": kyc_status.value if kyc_status else None,
        },
    )
    return user


__all__ = [
    "user_auth",
    "RESET_REQUESTED_MESSAGE",
    "register_user",
    "authenticate_user",
    "request_password_reset",
    "reset_password",
    "update_profile",
    "change_password",
    "change_transaction_pin",
    "referral_summary",
    "UserRow",
    "UserDetail",
    "list_users",
    "user_detail",
    "create_user",
    "update_user_balance",
    "perform_user_action",
    "delete_user",
    "assign_plan",
    "admin_edit_user",
]
