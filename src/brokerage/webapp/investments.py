"""Investment plans, user subscriptions, profit credits and capital reclaim."""
from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Mapping, Optional

from sqlmodel import Session, func, select

from ..exceptions import ConflictError, InsufficientFundsError, NotFoundError, PriceUnavailableError, ValidationError
from ..models import AdminActor, AssetType, AuditAction, InvestmentStatus, coerce_enum
from ..money import fiat_to_sats, format_currency, to_cents
from ..validation import clean, parse_bool, require_amount
from .audit import record_audit
from .mailer import send_email, templates
from .persistence import InvestmentPlan, User, UserInvestment, get_or_404
from .swap import PRICE_UNAVAILABLE_MESSAGE, price_feed

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Plan administration
# ---------------------------------------------------------------------------
def _plan_values(data: Mapping[str, Any]) -> Dict[str, Any]:
    name = clean(data.get("name"))
    if not name:
        raise ValidationError("Plan name is required")
    min_amount = require_amount(data.get("min_amount"), message="Minimum amount must be positive")
    max_amount = require_amount(data.get("max_amount"), message="Maximum amount must be positive")
    if min_amount > max_amount:
        raise ValidationError("Minimum amount cannot exceed maximum amount")
    try:
        roi = Decimal(clean(data.get("roi_percentage")))
    except InvalidOperation as exc:
        raise ValidationError("ROI must be positive") from exc
    if not roi.is_finite() or roi <= 0:
        raise ValidationError("ROI must be positive")
    raw_duration = clean(data.get("duration_days"))
    if not raw_duration.isdigit() or int(raw_duration) <= 0:
        raise ValidationError("Duration must be a positive whole number of days")
    return {
        "name": name,
        "min_amount_cents": to_cents(min_amount),
        "max_amount_cents": to_cents(max_amount),
        "roi_percentage": float(roi),
        "duration_days": int(raw_duration),
        "is_active": parse_bool(data.get("is_active", True)),
    }


def _plan_audit(values: Mapping[str, Any]) -> Dict[str, Any]:
    return {key: values[key] for key in ("name", "min_amount_cents", "max_amount_cents", "roi_percentage", "duration_days", "is_active")}


def plan_usage(session: Session, plan_id: int) -> Dict[str, int]:
    users = session.exec(select(func.count()).select_from(User).where(User.current_plan_id == plan_id)).one()
    investments = session.exec(
        select(func.count()).select_from(UserInvestment).where(UserInvestment.plan_id == plan_id)
    ).one()
    return {"users": int(users), "investments": int(investments)}


def list_plans(session: Session) -> List[InvestmentPlan]:
    return list(session.exec(select(InvestmentPlan).order_by(InvestmentPlan.min_amount_cents)).all())


def create_plan(session: Session, actor: AdminActor, data: Mapping[str, Any]) -> InvestmentPlan:
    values = _plan_values(data)
    plan = InvestmentPlan(**values)
    session.add(plan)
    session.commit()
    session.refresh(plan)
    record_audit(actor, AuditAction.PLAN_CREATED, "InvestmentPlan", plan.id, _plan_audit(values))
    return plan


def update_plan(session: Session, actor: AdminActor, plan_id: int, data: Mapping[str, Any]) -> InvestmentPlan:
    plan = get_or_404(session, InvestmentPlan, plan_id, "Investment plan not found")
    values = _plan_values(data)
    for key, value in values.items():
        setattr(plan, key, value)
    plan.updated_at = datetime.utcnow()
    session.add(plan)
    session.commit()
    record_audit(actor, AuditAction.PLAN_UPDATED, "InvestmentPlan", plan.id, _plan_audit(values))
    return plan


def delete_plan(session: Session, actor: AdminActor, plan_id: int) -> None:
    plan = get_or_404(session, InvestmentPlan, plan_id, "Investment plan not found")
    usage = plan_usage(session, plan_id)
    if usage["users"] or usage["investments"]:
        raise ConflictError("Cannot delete plan with active users or investments")
    name = plan.name
    session.delete(plan)
    session.commit()
    record_audit(actor, AuditAction.PLAN_DELETED, "InvestmentPlan", plan_id, {"name": name})


# ---------------------------------------------------------------------------
# User side
# ---------------------------------------------------------------------------
def available_plans(session: Session) -> List[InvestmentPlan]:
    return list(
        session.exec(
            select(InvestmentPlan).where(InvestmentPlan.is_active == True).order_by(InvestmentPlan.min_amount_cents)  # noqa: E712
        ).all()
    )


def plans_with_subscription_status(session: Session, user_id: Optional[int]) -> List[Dict[str, Any]]:
    subscribed: set = set()
    if user_id is not None:
        subscribed = set(
            session.exec(
                select(UserInvestment.plan_id).where(
                    UserInvestment.user_id == user_id,
                    UserInvestment.status == InvestmentStatus.ACTIVE.value,
                )
            ).all()
        )
    return [{"plan": plan, "is_subscribed": plan.id in subscribed} for plan in available_plans(session)]


def subscribe_to_plan(
    session: Session, user_id: int, *, plan_id: Any, amount: Any, balance_type: Any = AssetType.FIAT
) -> UserInvestment:
    plan = session.get(InvestmentPlan, int(plan_id)) if str(plan_id or "").isdigit() else None
    if plan is None or not plan.is_active:
        raise NotFoundError("Investment plan not found or inactive")
    asset = coerce_enum(AssetType, balance_type) or AssetType.FIAT
    value = require_amount(amount, message="Amount must be positive")
    cents = to_cents(value)
    user = get_or_404(session, User, user_id, "User not found")
    if cents < plan.min_amount_cents:
        raise ValidationError(f"Minimum investment is {format_currency(plan.min_amount_cents, user.currency)}")
    if cents > plan.max_amount_cents:
        raise ValidationError(f"Maximum investment is {format_currency(plan.max_amount_cents, user.currency)}")
    existing = session.exec(
        select(UserInvestment).where(
            UserInvestment.user_id == user_id,
            UserInvestment.plan_id == plan.id,
            UserInvestment.status == InvestmentStatus.ACTIVE.value,
        )
    ).first()
    if existing is not None:
        raise ConflictError("You already have an active subscription to this plan")
    if asset is AssetType.BTC:
        price = price_feed.btc_price(user.currency or "USD")
        if price <= 0:
            raise PriceUnavailableError(PRICE_UNAVAILABLE_MESSAGE)
        required_sats = fiat_to_sats(cents, price)
        if user.btc_balance_sats < required_sats:
            raise InsufficientFundsError("Insufficient balance")
        user.btc_balance_sats -= required_sats
    else:
        if user.fiat_balance_cents < cents:
            raise InsufficientFundsError("Insufficient balance")
        user.fiat_balance_cents -= cents
    now = datetime.utcnow()
    expected = int((Decimal(cents) * (1 + Decimal(str(plan.roi_percentage)) / 100)).to_integral_value())
    investment = UserInvestment(
        user_id=user.id,
        plan_id=plan.id,
        invested_cents=cents,
        expected_return_cents=expected,
        start_date=now,
        end_date=now + timedelta(days=plan.duration_days),
        status=InvestmentStatus.ACTIVE.value,
    )
    user.active_investment_cents += cents
    user.updated_at = now
    session.add(investment)
    session.add(user)
    session.commit()
    session.refresh(investment)
    logger.info("User %s subscribed %s cents to plan %s", user.id, cents, plan.id)
    return investment


@dataclass
class InvestmentView:
    investment: UserInvestment
    plan: Optional[InvestmentPlan]
    days_remaining: int
    days_elapsed: int
    progress: float
    can_reclaim: bool
    daily_profit_cents: int

    @property
    def plan_name(self) -> str:
        return self.plan.name if self.plan else "Unknown plan"


def investment_view(investment: UserInvestment, plan: Optional[InvestmentPlan], *, now: Optional[datetime] = None) -> InvestmentView:
    moment = now or datetime.utcnow()
    remaining = max(0, math.ceil((investment.end_date - moment).total_seconds() / 86400))
    elapsed = max(0, (moment - investment.start_date).days)
    gain = investment.expected_return_cents - investment.invested_cents
    progress = (investment.profit_credited_cents / gain * 100) if gain > 0 else 0.0
    duration = plan.duration_days if plan else max(1, (investment.end_date - investment.start_date).days)
    can_reclaim = (
        investment.status == InvestmentStatus.ACTIVE.value
        and not investment.capital_reclaimed
        and moment >= investment.end_date
    )
    return InvestmentView(
        investment=investment,
        plan=plan,
        days_remaining=remaining,
        days_elapsed=elapsed,
        progress=min(100.0, max(0.0, progress)),
        can_reclaim=can_reclaim,
        daily_profit_cents=gain // duration if duration else 0,
    )


def _views(session: Session, investments: List[UserInvestment]) -> List[InvestmentView]:
    plan_ids = {inv.plan_id for inv in investments}
    plans = {
        plan.id: plan
        for plan in session.exec(select(InvestmentPlan).where(InvestmentPlan.id.in_(plan_ids))).all()  # type: ignore[attr-defined]
    } if plan_ids else {}
    return [investment_view(inv, plans.get(inv.plan_id)) for inv in investments]


def user_investments(session: Session, user_id: int) -> List[InvestmentView]:
    rows = session.exec(
        select(UserInvestment).where(UserInvestment.user_id == user_id).order_by(UserInvestment.created_at.desc())  # type: ignore[attr-defined]
    ).all()
    return _views(session, list(rows))


def investment_stats(session: Session, user_id: int) -> Dict[str, int]:
    rows = session.exec(select(UserInvestment).where(UserInvestment.user_id == user_id)).all()
    active = [row for row in rows if row.status == InvestmentStatus.ACTIVE.value]
    completed = [row for row in rows if row.status == InvestmentStatus.COMPLETED.value]
    return {
        "active_count": len(active),
        "total_invested_cents": sum(row.invested_cents for row in active),
        "completed_count": len(completed),
        "total_returns_cents": sum(row.expected_return_cents for row in completed),
    }


def reclaim_capital(session: Session, user_id: int, investment_id: Any) -> UserInvestment:
    investment = session.get(UserInvestment, int(investment_id)) if str(investment_id or "").isdigit() else None
    if investment is None or investment.user_id != user_id:
        raise NotFoundError("Investment not found")
    if investment.status != InvestmentStatus.ACTIVE.value:
        raise ValidationError("Investment is not active")
    if investment.capital_reclaimed:
        raise ConflictError("Capital has already been reclaimed")
    now = datetime.utcnow()
    if now < investment.end_date:
        raise ValidationError("Plan duration has not ended yet")
    user = get_or_404(session, User, user_id, "User not found")
    user.fiat_balance_cents += investment.invested_cents
    user.active_investment_cents = max(0, user.active_investment_cents - investment.invested_cents)
    user.updated_at = now
    investment.capital_reclaimed = True
    investment.reclaimed_at = now
    investment.status = InvestmentStatus.COMPLETED.value
    investment.updated_at = now
    session.add(user)
    session.add(investment)
    session.commit()
    logger.info("User %s reclaimed %s cents from investment %s", user_id, investment.invested_cents, investment.id)
    return investment


# ---------------------------------------------------------------------------
# Admin side
# ---------------------------------------------------------------------------
def credit_investment_profit(
    session: Session, actor: AdminActor, investment_id: int, amount: Any
) -> UserInvestment:
    value = require_amount(amount, message="Amount must be positive")
    investment = get_or_404(session, UserInvestment, investment_id, "Investment not found")
    if investment.status != InvestmentStatus.ACTIVE.value:
        raise ValidationError("Can only credit profit to active investments")
    user = get_or_404(session, User, investment.user_id, "User not found")
    plan = session.get(InvestmentPlan, investment.plan_id)
    cents = to_cents(value)
    now = datetime.utcnow()
    investment.profit_credited_cents += cents
    investment.updated_at = now
    user.profit_balance_cents += cents
    user.fiat_balance_cents += cents
    user.updated_at = now
    plan_name = plan.name if plan else "Investment profit"
    session.add(investment)
    session.add(user)
    session.commit()
    record_audit(
        actor,
        AuditAction.USER_UPDATED,
        "Investment",
        investment.id,
        {"action": "credit_profit", "userId": user.id, "amount": str(value), "investmentId": investment.id},
    )
    send_email(user.email, templates.profit_credited(user.full_name, format_currency(cents, user.currency), plan_name))
    return investment


__all__ = [
    "list_plans",
    "plan_usage",
    "create_plan",
    "update_plan",
    "delete_plan",
    "available_plans",
    "plans_with_subscription_status",
    "subscribe_to_plan",
    "InvestmentView",
    "investment_view",
    "user_investments",
    "investment_stats",
    "reclaim_capital",
    "credit_investment_profit",
]
