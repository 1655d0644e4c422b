from datetime import datetime, timedelta

import pytest
from sqlmodel import Session, select

from brokerage.exceptions import AlreadyProcessedError, InsufficientFundsError, ValidationError
from brokerage.webapp import mailer
from brokerage.webapp.ledger import (
    CSV_HEADER,
    TransactionFilters,
    create_transaction,
    delete_transaction,
    list_transactions,
    submit_deposit,
    transaction_stats,
    transactions_csv,
    update_transaction_status,
)
from brokerage.webapp.persistence import AuditLog, Transaction, User, engine


def _reload(model, ident):
    with Session(engine) as session:
        return session.get(model, ident)


def _pending(user_id: int, tx_type: str, amount_minor: int, asset: str = "FIAT") -> Transaction:
    with Session(engine) as session:
        tx = Transaction(
            user_id=user_id,
            type=tx_type,
            asset=asset,
            amount_minor=amount_minor,
            status="PENDING",
            reference=f"REF-{tx_type}-{amount_minor}",
        )
        session.add(tx)
        session.commit()
        session.refresh(tx)
        return tx


def test_submit_deposit_creates_pending_fiat_request(session, make_user):
    user = make_user()
    tx = submit_deposit(session, user.id, amount="250.00", proof_url="https://img.example.com/proof.png")
    assert tx.status == "PENDING"
    assert tx.type == "DEPOSIT"
    assert tx.asset == "FIAT"
    assert tx.amount_minor == 25_000
    assert tx.reference.startswith("DEP-")
    assert tx.description == "Deposit"
    # balances only move on approval
    assert _reload(User, user.id).fiat_balance_cents == 0
    assert len(mailer.email_client.deliveries()) == 1


def test_submit_deposit_requires_proof_url(session, make_user):
    user = make_user()
    with pytest.raises(ValidationError, match="valid payment proof"):
        submit_deposit(session, user.id, amount="100", proof_url="not-a-url")


def test_approving_deposit_credits_balance_and_totals(session, make_user, actor):
    user = make_user()
    tx = _pending(user.id, "DEPOSIT", 50_000)
    updated = update_transaction_status(session, tx.id, "approved", actor)
    assert updated.status == "APPROVED"
    assert updated.approved_at is not None
    refreshed = _reload(User, user.id)
    assert refreshed.fiat_balance_cents == 50_000
    assert refreshed.total_deposited_cents == 50_000


def test_approving_btc_deposit_does_not_touch_fiat_totals(session, make_user, actor):
    user = make_user()
    tx = _pending(user.id, "DEPOSIT", 1_500_000, asset="BTC")
    update_transaction_status(session, tx.id, "APPROVED", actor)
    refreshed = _reload(User, user.id)
    assert refreshed.btc_balance_sats == 1_500_000
    assert refreshed.total_deposited_cents == 0


def test_declining_pending_withdrawal_refunds_hold(session, make_user, actor):
    user = make_user(fiat_balance_cents=20_000)
    tx = _pending(user.id, "WITHDRAWAL", 30_000)
    update_transaction_status(session, tx.id, "DECLINED", actor)
    refreshed = _reload(User, user.id)
    assert refreshed.fiat_balance_cents == 50_000
    assert refreshed.total_withdrawn_cents == 0


def test_approving_withdrawal_only_records_total(session, make_user, actor):
    user = make_user(fiat_balance_cents=20_000)
    tx = _pending(user.id, "WITHDRAWAL", 30_000)
    update_transaction_status(session, tx.id, "APPROVED", actor)
    refreshed = _reload(User, user.id)
    assert refreshed.fiat_balance_cents == 20_000
    assert refreshed.total_withdrawn_cents == 30_000


def test_status_can_only_change_once(session, make_user, actor):
    user = make_user()
    tx = _pending(user.id, "DEPOSIT", 1_000)
    update_transaction_status(session, tx.id, "DECLINED", actor)
    with pytest.raises(AlreadyProcessedError, match="already been processed"):
        update_transaction_status(session, tx.id, "APPROVED", actor)


def test_status_must_be_a_decision(session, make_user, actor):
    user = make_user()
    tx = _pending(user.id, "DEPOSIT", 1_000)
    with pytest.raises(ValidationError):
        update_transaction_status(session, tx.id, "PENDING", actor)


def test_status_change_is_audited(session, make_user, actor):
    user = make_user()
    tx = _pending(user.id, "DEPOSIT", 1_000)
    update_transaction_status(session, tx.id, "APPROVED", actor)
    with Session(engine) as check:
        entry = check.exec(select(AuditLog).where(AuditLog.entity_id == str(tx.id))).one()
    assert entry.action == "TRANSACTION_APPROVED"
    assert entry.admin_id == actor.id
    assert entry.ip_address == "127.0.0.1"


def test_admin_transaction_is_approved_immediately(session, make_user, actor):
    user = make_user()
    tx = create_transaction(session, actor, user_id=user.id, tx_type="DEPOSIT", amount="75.50", description="Wire")
    assert tx.status == "APPROVED"
    assert tx.created_by_admin_id == actor.id
    assert len(tx.reference) == 36
    refreshed = _reload(User, user.id)
    assert refreshed.fiat_balance_cents == 7_550
    assert refreshed.total_deposited_cents == 7_550


def test_admin_withdrawal_deducts_balance(session, make_user, actor):
    user = make_user(fiat_balance_cents=10_000)
    create_transaction(session, actor, user_id=user.id, tx_type="WITHDRAWAL", amount="40")
    refreshed = _reload(User, user.id)
    assert refreshed.fiat_balance_cents == 6_000
    assert refreshed.total_withdrawn_cents == 4_000


def test_admin_withdrawal_checks_balance(session, make_user, actor):
    user = make_user(fiat_balance_cents=1_000)
    with pytest.raises(InsufficientFundsError):
        create_transaction(session, actor, user_id=user.id, tx_type="WITHDRAWAL", amount="40")


def test_profit_and_bonus_must_be_fiat(session, make_user, actor):
    user = make_user()
    with pytest.raises(ValidationError, match="FIAT"):
        create_transaction(session, actor, user_id=user.id, tx_type="PROFIT", asset="BTC", amount="0.1")


def test_profit_credits_profit_and_fiat(session, make_user, actor):
    user = make_user()
    create_transaction(session, actor, user_id=user.id, tx_type="PROFIT", amount="12.34")
    refreshed = _reload(User, user.id)
    assert refreshed.profit_balance_cents == 1_234
    assert refreshed.fiat_balance_cents == 1_234


def test_bonus_only_raises_bonus_total(session, make_user, actor):
    user = make_user()
    create_transaction(session, actor, user_id=user.id, tx_type="BONUS", amount="5")
    refreshed = _reload(User, user.id)
    assert refreshed.total_bonus_cents == 500
    assert refreshed.fiat_balance_cents == 0


def test_backdated_transaction_keeps_the_given_date(session, make_user, actor):
    user = make_user()
    tx = create_transaction(
        session, actor, user_id=user.id, tx_type="DEPOSIT", amount="10", backdated_at="2023-05-01T09:30"
    )
    assert tx.created_at == datetime(2023, 5, 1, 9, 30)
    assert tx.backdated_at == datetime(2023, 5, 1, 9, 30)
    with Session(engine) as check:
        entry = check.exec(select(AuditLog).where(AuditLog.entity_id == str(tx.id))).one()
    assert entry.action == "TRANSACTION_BACKDATED"


def test_deleting_approved_transaction_reverses_it(session, make_user, actor):
    user = make_user()
    tx = create_transaction(session, actor, user_id=user.id, tx_type="DEPOSIT", amount="20")
    delete_transaction(session, tx.id, actor)
    refreshed = _reload(User, user.id)
    assert refreshed.fiat_balance_cents == 0
    assert refreshed.total_deposited_cents == 0
    assert _reload(Transaction, tx.id) is None


def test_deleting_approved_withdrawal_restores_balance(session, make_user, actor):
    user = make_user(fiat_balance_cents=10_000)
    tx = create_transaction(session, actor, user_id=user.id, tx_type="WITHDRAWAL", amount="40")
    delete_transaction(session, tx.id, actor)
    refreshed = _reload(User, user.id)
    assert refreshed.fiat_balance_cents == 10_000
    assert refreshed.total_withdrawn_cents == 0


def test_deleting_approved_btc_withdrawal_leaves_fiat_totals(session, make_user, actor):
    user = make_user(btc_balance_sats=50_000_000)
    tx = create_transaction(session, actor, user_id=user.id, tx_type="WITHDRAWAL", asset="BTC", amount="0.2")
    assert _reload(User, user.id).btc_balance_sats == 30_000_000
    delete_transaction(session, tx.id, actor)
    refreshed = _reload(User, user.id)
    assert refreshed.btc_balance_sats == 50_000_000
    assert refreshed.total_withdrawn_cents == 0


def test_deleting_profit_and_bonus_reverses_them(session, make_user, actor):
    user = make_user(fiat_balance_cents=1_000)
    profit = create_transaction(session, actor, user_id=user.id, tx_type="PROFIT", amount="12.34")
    bonus = create_transaction(session, actor, user_id=user.id, tx_type="BONUS", amount="5")
    delete_transaction(session, profit.id, actor)
    refreshed = _reload(User, user.id)
    assert refreshed.profit_balance_cents == 0
    assert refreshed.fiat_balance_cents == 1_000
    assert refreshed.total_bonus_cents == 500

    delete_transaction(session, bonus.id, actor)
    refreshed = _reload(User, user.id)
    assert refreshed.total_bonus_cents == 0
    assert refreshed.fiat_balance_cents == 1_000


def test_deleting_pending_withdrawal_refunds_hold(session, make_user, actor):
    user = make_user()
    tx = _pending(user.id, "WITHDRAWAL", 2_500)
    delete_transaction(session, tx.id, actor)
    assert _reload(User, user.id).fiat_balance_cents == 2_500


def test_filters_and_stats(session, make_user, actor):
    alice = make_user("alice@example.com")
    bob = make_user("bob@example.com")
    create_transaction(session, actor, user_id=alice.id, tx_type="DEPOSIT", amount="100")
    create_transaction(session, actor, user_id=bob.id, tx_type="DEPOSIT", amount="0.5", asset="BTC")
    _pending(bob.id, "WITHDRAWAL", 1_000)

    filters = TransactionFilters.from_params({"user_id": str(bob.id), "status": "pending"})
    page = list_transactions(session, filters)
    assert [tx.type for tx, _owner in page.items] == ["WITHDRAWAL"]
    assert page.items[0][1].email == "bob@example.com"

    stats = transaction_stats(session)
    assert stats["pending_count"] == 1
    # only fiat counts toward money totals
    assert stats["total_deposits_cents"] == 10_000


def test_date_filter_end_covers_whole_day():
    filters = TransactionFilters.from_params({"end_date": "2024-01-31"})
    assert filters.end == datetime(2024, 1, 31, 23, 59, 59, 999999)
    assert TransactionFilters.from_params({"user_id": "abc"}).user_id is None


def test_csv_export(session, make_user, actor):
    user = make_user()
    create_transaction(session, actor, user_id=user.id, tx_type="DEPOSIT", amount="42", description="Seed")
    output = transactions_csv(session)
    lines = output.strip().splitlines()
    assert lines[0] == ",".join(CSV_HEADER)
    assert "jane@example.com" in lines[1]
    assert "42.00" in lines[1]


def test_csv_export_respects_filters(session, make_user, actor):
    user = make_user()
    old = create_transaction(
        session, actor, user_id=user.id, tx_type="DEPOSIT", amount="1", backdated_at=datetime.utcnow() - timedelta(days=40)
    )
    create_transaction(session, actor, user_id=user.id, tx_type="DEPOSIT", amount="2")
    since = (datetime.utcnow() - timedelta(days=1)).date().isoformat()
    output = transactions_csv(session, TransactionFilters.from_params({"start_date": since}))
    assert old.reference not in output
    assert len(output.strip().splitlines()) == 2
