"""Transactions: balance reconciliation, admin review, deposits and reporting.

Approving a transaction applies its effect to the owner's balances exactly
once; only PENDING transactions may change status.  Withdrawals hold their
amount when requested, so approval only bumps the withdrawn total while a
decline refunds the hold.
"""
from __future__ import annotations

import csv
import io
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, time
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import delete as sa_delete
from sqlmodel import Session, desc, func, select

from ..exceptions import AlreadyProcessedError, InsufficientFundsError, ValidationError
from ..models import AdminActor, AssetType, AuditAction, Page, TransactionStatus, TransactionType, coerce_enum
from ..money import format_amount, to_minor
from ..validation import optional_text, parse_datetime, require_amount, require_url
from .audit import record_audit
from .mailer import send_email, templates
from .persistence import Transaction, User, get_or_404, page_bounds
from .settings import find_payment_method

logger = logging.getLogger(__name__)


def new_reference(prefix: str) -> str:
    return f"{prefix}-{uuid.uuid4().hex[:8].upper()}"


def describe_amount(tx: Transaction, user: Optional[User]) -> str:
    currency = user.currency if user else "USD"
    return format_amount(tx.amount_minor, tx.asset, currency)


# ---------------------------------------------------------------------------
# Reconciliation
# ---------------------------------------------------------------------------
def _adjust_asset(user: User, asset: str, delta: int) -> None:
    if asset == AssetType.BTC.value:
        user.btc_balance_sats += delta
    else:
        user.fiat_balance_cents += delta


def apply_transaction_effect(user: User, tx: Transaction) -> None:
    """Apply an approved transaction to ``user``'s balances."""

    amount = tx.amount_minor
    is_fiat = tx.asset != AssetType.BTC.value
    if tx.type == TransactionType.DEPOSIT.value:
        _adjust_asset(user, tx.asset, amount)
        if is_fiat:
            user.total_deposited_cents += amount
    elif tx.type == TransactionType.WITHDRAWAL.value:
        if is_fiat:
            user.total_withdrawn_cents += amount
    elif tx.type == TransactionType.PROFIT.value:
        user.profit_balance_cents += amount
        user.fiat_balance_cents += amount
    elif tx.type == TransactionType.BONUS.value:
        user.total_bonus_cents += amount
    user.updated_at = datetime.utcnow()


def reverse_transaction_effect(user: User, tx: Transaction) -> None:
    """Undo :func:`apply_transaction_effect` for a deleted approved transaction."""

    amount = tx.amount_minor
    is_fiat = tx.asset != AssetType.BTC.value
    if tx.type == TransactionType.DEPOSIT.value:
        _adjust_asset(user, tx.asset, -amount)
        if is_fiat:
            user.total_deposited_cents -= amount
    elif tx.type == TransactionType.WITHDRAWAL.value:
        _adjust_asset(user, tx.asset, amount)
        if is_fiat:
            user.total_withdrawn_cents -= amount
    elif tx.type == TransactionType.PROFIT.value:
        user.profit_balance_cents -= amount
        user.fiat_balance_cents -= amount
    elif tx.type == TransactionType.BONUS.value:
        user.total_bonus_cents -= amount
    user.updated_at = datetime.utcnow()


def refund_hold(user: User, tx: Transaction) -> None:
    """Return a pending withdrawal's held amount to the owner."""

    _adjust_asset(user, tx.asset, tx.amount_minor)
    user.updated_at = datetime.utcnow()


def _status_email(user: User, tx: Transaction, status: TransactionStatus) -> None:
    amount = describe_amount(tx, user)
    approved = status is TransactionStatus.APPROVED
    if tx.type == TransactionType.DEPOSIT.value:
        content = (
            templates.deposit_approved(user.full_name, amount, tx.reference)
            if approved
            else templates.deposit_declined(user.full_name, amount, tx.reference)
        )
    elif tx.type == TransactionType.WITHDRAWAL.value:
        content = (
            templates.withdrawal_approved(user.full_name, amount, tx.reference)
            if approved
            else templates.withdrawal_declined(user.full_name, amount, tx.reference)
        )
    else:
        content = templates.transaction(user.full_name, tx.type, status.value, amount, tx.reference)
    send_email(user.email, content)


def update_transaction_status(
    session: Session, tx_id: int, status: Any, actor: AdminActor
) -> Transaction:
    new_status = coerce_enum(TransactionStatus, status)
    if new_status not in (TransactionStatus.APPROVED, TransactionStatus.DECLINED):
        raise ValidationError("Status must be APPROVED or DECLINED")
    tx = get_or_404(session, Transaction, tx_id, "Transaction not found")
    if tx.status != TransactionStatus.PENDING.value:
        raise AlreadyProcessedError("Transaction has already been processed")
    user = get_or_404(session, User, tx.user_id, "User not found")
    now = datetime.utcnow()
    previous = tx.status
    tx.status = new_status.value
    tx.updated_at = now
    if new_status is TransactionStatus.APPROVED:
        tx.approved_at = now
        apply_transaction_effect(user, tx)
    elif tx.type == TransactionType.WITHDRAWAL.value:
        refund_hold(user, tx)
    session.add(tx)
    session.add(user)
    session.commit()
    logger.info("Transaction %s %s by admin %s", tx.reference, new_status.value, actor.id)
    _status_email(user, tx, new_status)
    record_audit(
        actor,
        AuditAction.TRANSACTION_APPROVED if new_status is TransactionStatus.APPROVED else AuditAction.TRANSACTION_DECLINED,
        "Transaction",
        tx.id,
        {"previousStatus": previous, "newStatus": new_status.value},
    )
    return tx


def create_transaction(
    session: Session,
    actor: AdminActor,
    *,
    user_id: int,
    tx_type: Any,
    asset: Any = AssetType.FIAT,
    amount: Any,
    description: Optional[str] = None,
    backdated_at: Any = None,
) -> Transaction:
    """Record an admin-entered transaction; it is approved and reconciled immediately."""

    kind = coerce_enum(TransactionType, tx_type)
    if kind is None:
        raise ValidationError("Invalid transaction type")
    asset_type = coerce_enum(AssetType, asset)
    if asset_type is None:
        raise ValidationError("Invalid asset")
    if kind in (TransactionType.PROFIT, TransactionType.BONUS) and asset_type is not AssetType.FIAT:
        raise ValidationError("Profit and bonus transactions must use the FIAT asset")
    value = require_amount(amount, btc=asset_type is AssetType.BTC)
    backdated = backdated_at if isinstance(backdated_at, datetime) else parse_datetime(backdated_at)
    user = get_or_404(session, User, user_id, "User not found")
    minor = to_minor(value, asset_type.value)
    if kind is TransactionType.WITHDRAWAL:
        available = user.btc_balance_sats if asset_type is AssetType.BTC else user.fiat_balance_cents
        if minor > available:
            raise InsufficientFundsError("Insufficient balance for this withdrawal")
    moment = backdated or datetime.utcnow()
    tx = Transaction(
        user_id=user.id,
        type=kind.value,
        asset=asset_type.value,
        amount_minor=minor,
        status=TransactionStatus.APPROVED.value,
        reference=str(uuid.uuid4()),
        description=optional_text(description),
        created_by_admin_id=actor.id,
        approved_at=moment,
        backdated_at=backdated,
        created_at=moment,
        updated_at=datetime.utcnow(),
    )
    if kind is TransactionType.WITHDRAWAL:
        _adjust_asset(user, asset_type.value, -minor)
    apply_transaction_effect(user, tx)
    session.add(tx)
    session.add(user)
    session.commit()
    session.refresh(tx)
    record_audit(
        actor,
        AuditAction.TRANSACTION_BACKDATED if backdated else AuditAction.TRANSACTION_CREATED,
        "Transaction",
        tx.id,
        {
            "userId": user.id,
            "type": kind.value,
            "asset": asset_type.value,
            "amount": str(value),
            "backdatedAt": backdated.isoformat() if backdated else None,
        },
    )
    amount_text = describe_amount(tx, user)
    desc_text = tx.description or ""
    if kind is TransactionType.DEPOSIT:
        content = templates.admin_deposit(user.full_name, amount_text, desc_text)
    elif kind is TransactionType.WITHDRAWAL:
        content = templates.admin_withdrawal(user.full_name, amount_text, desc_text)
    elif kind is TransactionType.PROFIT:
        content = templates.profit_credited(user.full_name, amount_text, desc_text or "Investment returns")
    else:
        content = templates.bonus_credited(user.full_name, amount_text, desc_text)
    send_email(user.email, content)
    return tx


def delete_transaction(session: Session, tx_id: int, actor: AdminActor) -> None:
    tx = get_or_404(session, Transaction, tx_id, "Transaction not found")
    user = session.get(User, tx.user_id)
    if user is not None:
        if tx.status == TransactionStatus.APPROVED.value:
            reverse_transaction_effect(user, tx)
        elif tx.status == TransactionStatus.PENDING.value and tx.type == TransactionType.WITHDRAWAL.value:
            refund_hold(user, tx)
        session.add(user)
    details = {
        "userId": tx.user_id,
        "type": tx.type,
        "asset": tx.asset,
        "amountMinor": tx.amount_minor,
        "status": tx.status,
        "reference": tx.reference,
    }
    session.delete(tx)
    session.commit()
    record_audit(actor, AuditAction.TRANSACTION_DELETED, "Transaction", tx_id, details)


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------
@dataclass
class TransactionFilters:
    user_id: Optional[int] = None
    type: Optional[str] = None
    status: Optional[str] = None
    asset: Optional[str] = None
    start: Optional[datetime] = None
    end: Optional[datetime] = None

    @classmethod
    def from_params(cls, params: Dict[str, Any]) -> "TransactionFilters":
        def _enum_value(enum_cls, key):
            member = coerce_enum(enum_cls, params.get(key)) if params.get(key) else None
            return member.value if member else None

        start = parse_datetime(params.get("start_date"))
        end = parse_datetime(params.get("end_date"))
        if end is not None and end.time() == time(0, 0):
            end = datetime.combine(end.date(), time.max)
        user_raw = str(params.get("user_id") or "").strip()
        return cls(
            user_id=int(user_raw) if user_raw.isdigit() else None,
            type=_enum_value(TransactionType, "type"),
            status=_enum_value(TransactionStatus, "status"),
            asset=_enum_value(AssetType, "asset"),
            start=start,
            end=end,
        )

    def apply(self, query):
        if self.user_id is not None:
            query = query.where(Transaction.user_id == self.user_id)
        if self.type:
            query = query.where(Transaction.type == self.type)
        if self.status:
            query = query.where(Transaction.status == self.status)
        if self.asset:
            query = query.where(Transaction.asset == self.asset)
        if self.start:
            query = query.where(Transaction.created_at >= self.start)
        if self.end:
            query = query.where(Transaction.created_at <= self.end)
        return query


def list_transactions(
    session: Session, filters: Optional[TransactionFilters] = None, *, page: Any = 1, limit: Any = 20
) -> Page[Tuple[Transaction, Optional[User]]]:
    """Admin listing, newest first, each row paired with its owner."""

    filters = filters or TransactionFilters()
    page_i, limit_i = page_bounds(page, limit)
    total = session.exec(filters.apply(select(func.count()).select_from(Transaction))).one()
    rows = session.exec(
        filters.apply(select(Transaction, User).join(User, User.id == Transaction.user_id, isouter=True))
        .order_by(desc(Transaction.created_at), desc(Transaction.id))
        .offset((page_i - 1) * limit_i)
        .limit(limit_i)
    ).all()
    return Page(items=[(tx, user) for tx, user in rows], page=page_i, limit=limit_i, total=int(total))


def _sum_and_count(session: Session, tx_type: TransactionType, user_id: Optional[int] = None) -> Tuple[int, int]:
    query = select(func.coalesce(func.sum(Transaction.amount_minor), 0), func.count(Transaction.id)).where(
        Transaction.type == tx_type.value,
        Transaction.status == TransactionStatus.APPROVED.value,
        Transaction.asset == AssetType.FIAT.value,
    )
    if user_id is not None:
        query = query.where(Transaction.user_id == user_id)
    total, count = session.exec(query).one()
    return int(total or 0), int(count or 0)


def pending_transactions_count(session: Session, user_id: Optional[int] = None) -> int:
    query = select(func.count()).select_from(Transaction).where(Transaction.status == TransactionStatus.PENDING.value)
    if user_id is not None:
        query = query.where(Transaction.user_id == user_id)
    return int(session.exec(query).one())


def transaction_stats(session: Session) -> Dict[str, int]:
    deposits, deposit_count = _sum_and_count(session, TransactionType.DEPOSIT)
    withdrawals, withdrawal_count = _sum_and_count(session, TransactionType.WITHDRAWAL)
    return {
        "total_deposits_cents": deposits,
        "deposit_count": deposit_count,
        "total_withdrawals_cents": withdrawals,
        "withdrawal_count": withdrawal_count,
        "pending_count": pending_transactions_count(session),
    }


def recent_user_transactions(session: Session, user_id: int, limit: int = 5) -> List[Transaction]:
    return list(
        session.exec(
            select(Transaction)
            .where(Transaction.user_id == user_id)
            .order_by(desc(Transaction.created_at), desc(Transaction.id))
            .limit(limit)
        ).all()
    )


def user_transactions(
    session: Session, user_id: int, *, tx_type: Any = None, page: Any = 1, limit: Any = 20
) -> Page[Transaction]:
    kind = coerce_enum(TransactionType, tx_type) if tx_type else None
    page_i, limit_i = page_bounds(page, limit)
    query = select(Transaction).where(Transaction.user_id == user_id)
    count_query = select(func.count()).select_from(Transaction).where(Transaction.user_id == user_id)
    if kind is not None:
        query = query.where(Transaction.type == kind.value)
        count_query = count_query.where(Transaction.type == kind.value)
    total = session.exec(count_query).one()
    rows = session.exec(
        query.order_by(desc(Transaction.created_at), desc(Transaction.id)).offset((page_i - 1) * limit_i).limit(limit_i)
    ).all()
    return Page(items=list(rows), page=page_i, limit=limit_i, total=int(total))


def user_transaction_stats(session: Session, user_id: int) -> Dict[str, int]:
    return {
        "total_deposits_cents": _sum_and_count(session, TransactionType.DEPOSIT, user_id)[0],
        "total_withdrawals_cents": _sum_and_count(session, TransactionType.WITHDRAWAL, user_id)[0],
        "total_profits_cents": _sum_and_count(session, TransactionType.PROFIT, user_id)[0],
        "total_bonuses_cents": _sum_and_count(session, TransactionType.BONUS, user_id)[0],
        "pending_count": pending_transactions_count(session, user_id),
    }


CSV_HEADER = [
    "id",
    "reference",
    "created_at",
    "user_email",
    "user_name",
    "type",
    "asset",
    "amount",
    "status",
    "description",
    "approved_at",
]


def transactions_csv(session: Session, filters: Optional[TransactionFilters] = None) -> str:
    filters = filters or TransactionFilters()
    rows = session.exec(
        filters.apply(select(Transaction, User).join(User, User.id == Transaction.user_id, isouter=True)).order_by(
            desc(Transaction.created_at), desc(Transaction.id)
        )
    ).all()
    output = io.StringIO()
    writer = csv.writer(output)
    writer.writerow(CSV_HEADER)
    for tx, user in rows:
        writer.writerow(
            [
                tx.id,
                tx.reference,
                tx.created_at.isoformat(sep=" ", timespec="seconds"),
                user.email if user else "",
                user.full_name if user else "",
                tx.type,
                tx.asset,
                describe_amount(tx, user),
                tx.status,
                tx.description or "",
                tx.approved_at.isoformat(sep=" ", timespec="seconds") if tx.approved_at else "",
            ]
        )
    return output.getvalue()


# ---------------------------------------------------------------------------
# Deposits
# ---------------------------------------------------------------------------
def submit_deposit(
    session: Session,
    user_id: int,
    *,
    amount: Any,
    proof_url: Any,
    payment_method_id: Optional[str] = None,
    wallet_network: Optional[str] = None,
    wallet_address: Optional[str] = None,
    crypto_amount: Optional[str] = None,
    crypto_currency: Optional[str] = None,
) -> Transaction:
    value = require_amount(amount, message="Amount must be positive")
    proof = require_url(proof_url, "Please upload a valid payment proof")
    user = get_or_404(session, User, user_id, "User not found")
    method = find_payment_method(session, payment_method_id)
    network = optional_text(wallet_network) or (method or {}).get("network")
    if method and method.get("name"):
        description = f"Deposit via {method['name']}"
    elif network:
        description = f"Deposit via {network}"
    else:
        description = "Deposit"
    tx = Transaction(
        user_id=user.id,
        type=TransactionType.DEPOSIT.value,
        asset=AssetType.FIAT.value,
        amount_minor=to_minor(value, AssetType.FIAT.value),
        status=TransactionStatus.PENDING.value,
        crypto_amount=optional_text(crypto_amount),
        crypto_currency=optional_text(crypto_currency),
        wallet_address=optional_text(wallet_address) or (method or {}).get("walletAddress"),
        wallet_network=network,
        deposit_proof_url=proof,
        payment_method_id=(method or {}).get("id"),
        payment_method_type=(method or {}).get("type"),
        payment_method_name=(method or {}).get("name"),
        reference=new_reference("DEP"),
        description=description,
    )
    session.add(tx)
    session.commit()
    session.refresh(tx)
    logger.info("Deposit %s submitted by user %s", tx.reference, user.id)
    send_email(
        user.email,
        templates.deposit_submitted(user.full_name, describe_amount(tx, user), tx.reference, description),
    )
    return tx


def user_deposits(session: Session, user_id: int, limit: int = 20) -> List[Transaction]:
    return list(
        session.exec(
            select(Transaction)
            .where(Transaction.user_id == user_id, Transaction.type == TransactionType.DEPOSIT.value)
            .order_by(desc(Transaction.created_at), desc(Transaction.id))
            .limit(limit)
        ).all()
    )


def delete_user_transactions(session: Session, user_id: int) -> None:
    session.execute(sa_delete(Transaction).where(Transaction.user_id == user_id))


__all__ = [
    "new_reference",
    "describe_amount",
    "apply_transaction_effect",
    "reverse_transaction_effect",
    "refund_hold",
    "update_transaction_status",
    "create_transaction",
    "delete_transaction",
    "TransactionFilters",
    "list_transactions",
    "transaction_stats",
    "pending_transactions_count",
    "recent_user_transactions",
    "user_transactions",
    "user_transaction_stats",
    "transactions_csv",
    "submit_deposit",
    "user_deposits",
]
