"""User withdrawal requests, the transaction PIN and withdrawal holds.

A request passes input validation, then account state, KYC, balance and PIN
checks, then the configured holds (withdrawal fee, signal fee, tier upgrade)
in that order.  The first failing check wins.
"""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, List, Mapping, Optional

from sqlmodel import Session, desc, select

from ..exceptions import (
    InsufficientFundsError,
    NotFoundError,
    PermissionDenied,
    ValidationError,
    WithdrawalHoldError,
)
from ..models import (
    AssetType,
    KYCStatus,
    TransactionStatus,
    TransactionType,
    WithdrawalEligibility,
    WithdrawalMethod,
    coerce_enum,
)
from ..money import cents_to_decimal, to_minor
from ..validation import clean, require_amount, validate_pin, validate_withdrawal_details
from .config import (
    DEFAULT_SIGNAL_FEE_INSTRUCTION,
    DEFAULT_TIER_UPGRADE_INSTRUCTION,
    DEFAULT_WITHDRAWAL_FEE_INSTRUCTION,
)
from .ledger import describe_amount, new_reference, refund_hold
from .mailer import send_email, templates
from .persistence import KYC, AppSettings, Transaction, User, encode_json, get_or_404

logger = logging.getLogger(__name__)

BLOCKED_MESSAGE = "Your account has been blocked. Please contact support."
SUSPENDED_MESSAGE = "Your account is suspended. Please contact support."
KYC_REQUIRED_MESSAGE = "Please complete KYC verification before making withdrawals."
NO_PIN_MESSAGE = "Please set up your transaction PIN first"
WRONG_PIN_MESSAGE = "Invalid PIN. If you've forgotten your PIN, please contact support to retrieve it."


def _kyc_status(session: Session, user_id: int) -> Optional[str]:
    kyc = session.exec(select(KYC).where(KYC.user_id == user_id)).first()
    return kyc.status if kyc else None


def fee_instruction(session: Session, user: User) -> str:
    if user.withdrawal_fee_instruction:
        return user.withdrawal_fee_instruction
    settings = session.exec(select(AppSettings).order_by(AppSettings.id)).first()
    if settings and settings.default_withdrawal_instruction:
        return settings.default_withdrawal_instruction
    return DEFAULT_WITHDRAWAL_FEE_INSTRUCTION


def signal_instruction(user: User) -> str:
    return user.signal_fee_instruction or DEFAULT_SIGNAL_FEE_INSTRUCTION


def tier_instruction(user: User) -> str:
    return user.tier_upgrade_instruction or DEFAULT_TIER_UPGRADE_INSTRUCTION.format(tier=user.tier or 1)


def check_holds(session: Session, user: User) -> None:
    """Raise :class:`WithdrawalHoldError` for the first hold that applies."""

    if (user.withdrawal_fee_cents or 0) > 0:
        raise WithdrawalHoldError(
            WithdrawalHoldError.WITHDRAWAL_FEE,
            fee_instruction(session, user),
            fee=f"{cents_to_decimal(user.withdrawal_fee_cents)}",
        )
    if user.signal_fee_enabled:
        raise WithdrawalHoldError(WithdrawalHoldError.SIGNAL_FEE, signal_instruction(user))
    if user.tier_upgrade_enabled:
        raise WithdrawalHoldError(WithdrawalHoldError.TIER_UPGRADE, tier_instruction(user), tier=user.tier or 1)


def request_withdrawal(
    session: Session,
    user_id: int,
    *,
    balance_type: Any,
    amount: Any,
    method: Any,
    details: Mapping[str, Any],
    pin: Any,
) -> Transaction:
    asset = coerce_enum(AssetType, balance_type)
    if asset is None:
        raise ValidationError("Invalid balance type")
    value = require_amount(amount, btc=asset is AssetType.BTC, message="Amount must be positive")
    withdrawal_method = coerce_enum(WithdrawalMethod, method)
    if withdrawal_method is None:
        raise ValidationError("Invalid withdrawal method")
    pin_value = clean(pin)
    if len(pin_value) != 4:
        raise ValidationError("PIN must be 4 digits")
    cleaned_details = validate_withdrawal_details(withdrawal_method, details)

    user = get_or_404(session, User, user_id, "User not found")
    if user.is_blocked:
        raise PermissionDenied(BLOCKED_MESSAGE)
    if user.is_suspended:
        raise PermissionDenied(SUSPENDED_MESSAGE)
    if _kyc_status(session, user.id) != KYCStatus.APPROVED.value:
        raise PermissionDenied(KYC_REQUIRED_MESSAGE)
    minor = to_minor(value, asset.value)
    available = user.btc_balance_sats if asset is AssetType.BTC else user.fiat_balance_cents
    if minor > available:
        label = "Bitcoin" if asset is AssetType.BTC else "fiat"
        raise InsufficientFundsError(f"Insufficient {label} balance")
    if not user.transaction_pin:
        raise ValidationError(NO_PIN_MESSAGE)
    if pin_value != user.transaction_pin:
        raise ValidationError(WRONG_PIN_MESSAGE)
    check_holds(session, user)

    tx = Transaction(
        user_id=user.id,
        type=TransactionType.WITHDRAWAL.value,
        asset=asset.value,
        amount_minor=minor,
        status=TransactionStatus.PENDING.value,
        withdrawal_method=withdrawal_method.value,
        withdrawal_details=encode_json(cleaned_details),
        wallet_address=cleaned_details.get("walletAddress"),
        reference=new_reference("WD"),
        description=f"{withdrawal_method.label} withdrawal",
    )
    if asset is AssetType.BTC:
        user.btc_balance_sats -= minor
    else:
        user.fiat_balance_cents -= minor
    user.updated_at = datetime.utcnow()
    session.add(tx)
    session.add(user)
    session.commit()
    session.refresh(tx)
    logger.info("Withdrawal %s requested by user %s", tx.reference, user.id)
    send_email(
        user.email,
        templates.withdrawal_pending(user.full_name, describe_amount(tx, user), withdrawal_method.label, tx.reference),
    )
    return tx


def check_withdrawal_eligibility(session: Session, user_id: int) -> WithdrawalEligibility:
    user = get_or_404(session, User, user_id, "User not found")
    kyc_status = _kyc_status(session, user.id)
    reason: Optional[str] = None
    if user.is_blocked:
        reason = BLOCKED_MESSAGE
    elif user.is_suspended:
        reason = SUSPENDED_MESSAGE
    elif kyc_status != KYCStatus.APPROVED.value:
        reason = KYC_REQUIRED_MESSAGE
    return WithdrawalEligibility(
        eligible=reason is None,
        reason=reason,
        has_pin=bool(user.transaction_pin),
        withdrawal_fee_cents=user.withdrawal_fee_cents or 0,
        withdrawal_fee_instruction=fee_instruction(session, user) if user.withdrawal_fee_cents else None,
        signal_fee_enabled=bool(user.signal_fee_enabled),
        signal_fee_instruction=signal_instruction(user) if user.signal_fee_enabled else None,
        tier=user.tier or 1,
        tier_upgrade_enabled=bool(user.tier_upgrade_enabled),
        tier_upgrade_instruction=tier_instruction(user) if user.tier_upgrade_enabled else None,
        kyc_status=kyc_status or "NOT_SUBMITTED",
        fiat_balance_cents=user.fiat_balance_cents,
        btc_balance_sats=user.btc_balance_sats,
        currency=user.currency or "USD",
    )


def verify_transaction_pin(session: Session, user_id: int, pin: Any) -> bool:
    user = get_or_404(session, User, user_id, "User not found")
    return bool(user.transaction_pin) and clean(pin) == user.transaction_pin


def set_transaction_pin(session: Session, user_id: int, pin: Any) -> None:
    value = validate_pin(pin)
    user = get_or_404(session, User, user_id, "User not found")
    user.transaction_pin = value
    user.updated_at = datetime.utcnow()
    session.add(user)
    session.commit()


def user_withdrawals(session: Session, user_id: int, limit: int = 20) -> List[Transaction]:
    return list(
        session.exec(
            select(Transaction)
            .where(Transaction.user_id == user_id, Transaction.type == TransactionType.WITHDRAWAL.value)
            .order_by(desc(Transaction.created_at), desc(Transaction.id))
            .limit(limit)
        ).all()
    )


def refund_withdrawal(session: Session, tx_id: int) -> Transaction:
    """Decline a pending withdrawal and return its amount to the owner."""

    tx = get_or_404(session, Transaction, tx_id, "Transaction not found")
    if tx.type != TransactionType.WITHDRAWAL.value or tx.status != TransactionStatus.PENDING.value:
        raise NotFoundError("Pending withdrawal not found")
    user = get_or_404(session, User, tx.user_id, "User not found")
    refund_hold(user, tx)
    tx.status = TransactionStatus.DECLINED.value
    tx.updated_at = datetime.utcnow()
    session.add(user)
    session.add(tx)
    session.commit()
    return tx


__all__ = [
    "request_withdrawal",
    "check_withdrawal_eligibility",
    "check_holds",
    "verify_transaction_pin",
    "set_transaction_pin",
    "user_withdrawals",
    "refund_withdrawal",
]
