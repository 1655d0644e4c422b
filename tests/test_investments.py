from datetime import datetime, timedelta

import pytest
from sqlmodel import Session, select

from brokerage.exceptions import ConflictError, InsufficientFundsError, NotFoundError, ValidationError
from brokerage.webapp.investments import (
    create_plan,
    credit_investment_profit,
    delete_plan,
    investment_stats,
    investment_view,
    list_plans,
    plans_with_subscription_status,
    reclaim_capital,
    subscribe_to_plan,
    update_plan,
    user_investments,
)
from brokerage.webapp.persistence import AuditLog, Transaction, User, UserInvestment, engine

PLAN_DATA = {
    "name": "Starter",
    "min_amount": "100",
    "max_amount": "1000",
    "roi_percentage": "12.5",
    "duration_days": "30",
}


def _user(user_id: int) -> User:
    with Session(engine) as session:
        return session.get(User, user_id)


def _expire(investment_id: int) -> None:
    with Session(engine) as session:
        investment = session.get(UserInvestment, investment_id)
        investment.end_date = datetime.utcnow() - timedelta(minutes=1)
        session.add(investment)
        session.commit()


def test_create_plan_stores_minor_units(session, actor):
    plan = create_plan(session, actor, PLAN_DATA)
    assert plan.min_amount_cents == 10_000
    assert plan.max_amount_cents == 100_000
    assert plan.roi_percentage == 12.5
    assert plan.is_active is True
    assert [p.name for p in list_plans(session)] == ["Starter"]


@pytest.mark.parametrize(
    "override, message",
    [
        ({"name": ""}, "Plan name is required"),
        ({"min_amount": "2000"}, "Minimum amount cannot exceed maximum amount"),
        ({"roi_percentage": "0"}, "ROI must be positive"),
        ({"duration_days": "1.5"}, "Duration"),
    ],
)
def test_plan_validation(session, actor, override, message):
    with pytest.raises(ValidationError, match=message):
        create_plan(session, actor, {**PLAN_DATA, **override})


def test_any_admin_can_manage_plans(session, plain_actor):
    plan = create_plan(session, plain_actor, PLAN_DATA)
    assert plan.id is not None


def test_update_and_delete_plan(session, actor):
    plan = create_plan(session, actor, PLAN_DATA)
    updated = update_plan(session, actor, plan.id, {**PLAN_DATA, "name": "Growth", "is_active": "false"})
    assert updated.name == "Growth"
    assert updated.is_active is False
    delete_plan(session, actor, plan.id)
    assert list_plans(session) == []
    with Session(engine) as check:
        actions = [row.action for row in check.exec(select(AuditLog).order_by(AuditLog.id)).all()]
    assert actions == ["PLAN_CREATED", "PLAN_UPDATED", "PLAN_DELETED"]


def test_plan_in_use_cannot_be_deleted(session, actor, make_user):
    plan = create_plan(session, actor, PLAN_DATA)
    user = make_user(fiat_balance_cents=50_000)
    subscribe_to_plan(session, user.id, plan_id=plan.id, amount="200")
    with pytest.raises(ConflictError):
        delete_plan(session, actor, plan.id)


def test_subscribe_with_fiat(session, actor, make_user):
    plan = create_plan(session, actor, PLAN_DATA)
    user = make_user(fiat_balance_cents=50_000)
    investment = subscribe_to_plan(session, user.id, plan_id=str(plan.id), amount="200")
    assert investment.status == "ACTIVE"
    assert investment.invested_cents == 20_000
    assert investment.expected_return_cents == 22_500
    assert investment.end_date - investment.start_date == timedelta(days=30)
    refreshed = _user(user.id)
    assert refreshed.fiat_balance_cents == 30_000
    assert refreshed.active_investment_cents == 20_000


def test_subscribe_with_btc_uses_spot_price(session, actor, make_user):
    plan = create_plan(session, actor, PLAN_DATA)
    user = make_user(btc_balance_sats=1_000_000)
    subscribe_to_plan(session, user.id, plan_id=plan.id, amount="250", balance_type="BTC")
    # 250 USD at 50,000 USD/BTC = 0.005 BTC
    assert _user(user.id).btc_balance_sats == 500_000


def test_subscription_limits(session, actor, make_user):
    plan = create_plan(session, actor, PLAN_DATA)
    user = make_user(fiat_balance_cents=500_000)
    with pytest.raises(ValidationError, match=r"Minimum investment is \$100.00"):
        subscribe_to_plan(session, user.id, plan_id=plan.id, amount="50")
    with pytest.raises(ValidationError, match=r"Maximum investment is \$1,000.00"):
        subscribe_to_plan(session, user.id, plan_id=plan.id, amount="1500")


def test_subscription_limits_use_the_user_currency(session, actor, make_user):
    plan = create_plan(session, actor, PLAN_DATA)
    user = make_user(fiat_balance_cents=500_000, currency="GBP")
    with pytest.raises(ValidationError, match="Minimum investment is £100.00"):
        subscribe_to_plan(session, user.id, plan_id=plan.id, amount="50")
    with pytest.raises(ValidationError, match="Maximum investment is £1,000.00"):
        subscribe_to_plan(session, user.id, plan_id=plan.id, amount="1500")


def test_one_active_subscription_per_plan(session, actor, make_user):
    plan = create_plan(session, actor, PLAN_DATA)
    user = make_user(fiat_balance_cents=500_000)
    subscribe_to_plan(session, user.id, plan_id=plan.id, amount="100")
    with pytest.raises(ConflictError):
        subscribe_to_plan(session, user.id, plan_id=plan.id, amount="100")
    status = plans_with_subscription_status(session, user.id)
    assert status[0]["is_subscribed"] is True


def test_subscription_checks_balance_and_plan(session, actor, make_user):
    plan = create_plan(session, actor, {**PLAN_DATA, "is_active": "false"})
    user = make_user(fiat_balance_cents=5_000)
    with pytest.raises(NotFoundError):
        subscribe_to_plan(session, user.id, plan_id=plan.id, amount="100")
    active = create_plan(session, actor, {**PLAN_DATA, "name": "Open"})
    with pytest.raises(InsufficientFundsError):
        subscribe_to_plan(session, user.id, plan_id=active.id, amount="100")


def test_capital_is_locked_until_the_end_date(session, actor, make_user):
    plan = create_plan(session, actor, PLAN_DATA)
    user = make_user(fiat_balance_cents=50_000)
    investment = subscribe_to_plan(session, user.id, plan_id=plan.id, amount="300")
    with pytest.raises(ValidationError, match="Plan duration has not ended yet"):
        reclaim_capital(session, user.id, investment.id)


def test_reclaim_returns_capital_once(actor, make_user):
    with Session(engine) as setup:
        plan = create_plan(setup, actor, PLAN_DATA)
        user = make_user(fiat_balance_cents=50_000)
        investment = subscribe_to_plan(setup, user.id, plan_id=plan.id, amount="300")
    _expire(investment.id)
    with Session(engine) as session:
        reclaimed = reclaim_capital(session, user.id, investment.id)
    assert reclaimed.status == "COMPLETED"
    assert reclaimed.capital_reclaimed is True
    refreshed = _user(user.id)
    assert refreshed.fiat_balance_cents == 50_000
    assert refreshed.active_investment_cents == 0
    with Session(engine) as session:
        with pytest.raises(ValidationError):
            reclaim_capital(session, user.id, investment.id)
        stats = investment_stats(session, user.id)
    assert stats["completed_count"] == 1
    assert stats["active_count"] == 0


def test_reclaim_requires_ownership(session, actor, make_user):
    plan = create_plan(session, actor, PLAN_DATA)
    owner = make_user("owner@example.com", fiat_balance_cents=50_000)
    other = make_user("other@example.com")
    investment = subscribe_to_plan(session, owner.id, plan_id=plan.id, amount="100")
    with pytest.raises(NotFoundError):
        reclaim_capital(session, other.id, investment.id)


def test_credit_profit_to_active_investment(session, actor, make_user):
    plan = create_plan(session, actor, PLAN_DATA)
    user = make_user(fiat_balance_cents=50_000)
    investment = subscribe_to_plan(session, user.id, plan_id=plan.id, amount="200")
    credited = credit_investment_profit(session, actor, investment.id, "12.50")
    assert credited.profit_credited_cents == 1_250
    refreshed = _user(user.id)
    assert refreshed.profit_balance_cents == 1_250
    assert refreshed.fiat_balance_cents == 31_250
    with Session(engine) as check:
        # profit credits are not ledger entries
        assert check.exec(select(Transaction)).all() == []
    view = user_investments(session, user.id)[0]
    assert view.plan_name == "Starter"
    assert view.progress == pytest.approx(50.0)


def test_investment_view_progress_and_reclaim_flag(session, actor, make_user):
    plan = create_plan(session, actor, PLAN_DATA)
    user = make_user(fiat_balance_cents=50_000)
    investment = subscribe_to_plan(session, user.id, plan_id=plan.id, amount="200")
    later = investment.end_date + timedelta(days=1)
    view = investment_view(investment, plan, now=later)
    assert view.can_reclaim is True
    assert view.days_remaining == 0
    assert view.daily_profit_cents == 2_500 // 30
