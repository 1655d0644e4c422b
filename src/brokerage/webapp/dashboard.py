"""Admin dashboard figures and the 30-day charts."""
from __future__ import annotations

from datetime import date, datetime, timedelta
from typing import Any, Dict, List, Optional, Tuple

from sqlmodel import Session, desc, func, or_, select

from ..models import AssetType, ChartPoint, TransactionStatus, TransactionType
from .kyc import pending_kyc_count
from .ledger import transaction_stats
from .persistence import Transaction, User

CHART_DAYS = 30


def dashboard_stats(session: Session) -> Dict[str, Any]:
    total_users = session.exec(select(func.count()).select_from(User)).one()
    active_users = session.exec(
        select(func.count()).select_from(User).where(User.is_suspended == False, User.is_blocked == False)  # noqa: E712
    ).one()
    restricted_users = session.exec(
        select(func.count()).select_from(User).where(or_(User.is_suspended == True, User.is_blocked == True))  # noqa: E712
    ).one()
    tx_stats = transaction_stats(session)
    recent_transactions: List[Tuple[Transaction, Optional[User]]] = [
        (tx, user)
        for tx, user in session.exec(
            select(Transaction, User)
            .join(User, User.id == Transaction.user_id, isouter=True)
            .order_by(desc(Transaction.created_at), desc(Transaction.id))
            .limit(5)
        ).all()
    ]
    recent_users = list(session.exec(select(User).order_by(desc(User.created_at), desc(User.id)).limit(5)).all())
    return {
        "users": {"total": int(total_users), "active": int(active_users), "suspended": int(restricted_users)},
        "transactions": {
            "pending": tx_stats["pending_count"],
            "total_deposits_cents": tx_stats["total_deposits_cents"],
            "total_withdrawals_cents": tx_stats["total_withdrawals_cents"],
        },
        "kyc": {"pending": pending_kyc_count(session)},
        "recent_transactions": recent_transactions,
        "recent_users": recent_users,
    }


def _window(today: Optional[date]) -> List[date]:
    end = today or datetime.utcnow().date()
    return [end - timedelta(days=offset) for offset in range(CHART_DAYS - 1, -1, -1)]


def transaction_chart(session: Session, *, today: Optional[date] = None) -> List[ChartPoint]:
    """Approved fiat deposits and withdrawals per day, oldest first, zero-filled."""

    days = _window(today)
    buckets = {day.isoformat(): {"deposits": 0, "withdrawals": 0} for day in days}
    since = datetime.combine(days[0], datetime.min.time())
    rows = session.exec(
        select(Transaction).where(
            Transaction.created_at >= since,
            Transaction.status == TransactionStatus.APPROVED.value,
            Transaction.asset == AssetType.FIAT.value,
            Transaction.type.in_((TransactionType.DEPOSIT.value, TransactionType.WITHDRAWAL.value)),  # type: ignore[attr-defined]
        )
    ).all()
    for tx in rows:
        bucket = buckets.get(tx.created_at.date().isoformat())
        if bucket is None:
            continue
        key = "deposits" if tx.type == TransactionType.DEPOSIT.value else "withdrawals"
        bucket[key] += tx.amount_minor
    return [ChartPoint(date=day, values=values) for day, values in buckets.items()]


def user_growth_chart(session: Session, *, today: Optional[date] = None) -> List[ChartPoint]:
    days = _window(today)
    buckets = {day.isoformat(): 0 for day in days}
    since = datetime.combine(days[0], datetime.min.time())
    for created_at in session.exec(select(User.created_at).where(User.created_at >= since)).all():
        key = created_at.date().isoformat()
        if key in buckets:
            buckets[key] += 1
    return [ChartPoint(date=day, values={"users": count}) for day, count in buckets.items()]


__all__ = ["CHART_DAYS", "dashboard_stats", "transaction_chart", "user_growth_chart"]
