from datetime import datetime, timedelta

import pytest
from sqlmodel import Session, select

from brokerage.exceptions import (
    AuthenticationError,
    ConflictError,
    PermissionDenied,
    RateLimitedError,
    ValidationError,
)
from brokerage.security import AuthManager, verify_password
from brokerage.webapp import mailer
from brokerage.webapp.accounts import (
    RESET_REQUESTED_MESSAGE,
    admin_edit_user,
    assign_plan,
    authenticate_user,
    change_password,
    change_transaction_pin,
    create_user,
    delete_user,
    list_users,
    perform_user_action,
    referral_summary,
    register_user,
    request_password_reset,
    reset_password,
    update_user_balance,
    user_detail,
)
from brokerage.webapp.audit import security_log
from brokerage.webapp.investments import create_plan
from brokerage.webapp.persistence import AuditLog, Transaction, User, engine

REGISTRATION = {
    "full_name": "Ada Lovelace",
    "email": "Ada@Example.com",
    "password": "Analytical1",
    "country": "United Kingdom",
    "currency": "gbp",
}


def _user(user_id: int) -> User:
    with Session(engine) as session:
        return session.get(User, user_id)


def test_register_normalises_and_sets_pin(session):
    user = register_user(session, REGISTRATION)
    assert user.email == "ada@example.com"
    assert user.currency == "GBP"
    assert len(user.transaction_pin) == 4 and user.transaction_pin.isdigit()
    assert len(user.referral_code) == 8
    assert verify_password("Analytical1", user.password_hash)
    welcome = mailer.email_client.deliveries()[-1]
    assert welcome["To"] == "ada@example.com"
    assert "Analytical1" not in welcome.get_body(("plain",)).get_content()


@pytest.mark.parametrize(
    "password, message",
    [
        ("Short1", "at least 8 characters"),
        ("alllowercase1", "uppercase"),
        ("ALLUPPERCASE1", "lowercase"),
        ("NoNumbersHere", "number"),
    ],
)
def test_register_requires_strong_password(session, password, message):
    with pytest.raises(ValidationError, match=message):
        register_user(session, {**REGISTRATION, "password": password})


def test_register_rejects_duplicates_and_bad_referrals(session):
    register_user(session, REGISTRATION)
    with pytest.raises(ConflictError, match="already exists"):
        register_user(session, {**REGISTRATION, "email": "ada@example.com"})
    with pytest.raises(ValidationError, match="Invalid referral code"):
        register_user(session, {**REGISTRATION, "email": "new@example.com", "referral_code": "NOPE1234"})


def test_referrals_are_linked_and_masked(session):
    referrer = register_user(session, REGISTRATION)
    register_user(
        session,
        {**REGISTRATION, "email": "charles@example.com", "referral_code": referrer.referral_code.lower()},
    )
    summary = referral_summary(session, referrer.id)
    assert summary["code"] == referrer.referral_code
    assert summary["count"] == 1
    assert summary["referrals"][0]["email"] == "ch***@example.com"


def test_authenticate_success_and_failure(session, make_user):
    make_user()
    user = authenticate_user(session, " JANE@example.com ", "Secret123", ip_address="10.0.0.1")
    assert user.last_login is not None
    with pytest.raises(AuthenticationError, match="Invalid email or password"):
        authenticate_user(session, "jane@example.com", "wrong")
    events = [entry["event"] for entry in security_log.tail()]
    assert events == ["user_login", "user_login_failed"]


def test_blocked_and_suspended_users_cannot_sign_in(session, make_user):
    make_user("blocked@example.com", is_blocked=True)
    make_user("paused@example.com", is_suspended=True)
    with pytest.raises(PermissionDenied, match="blocked"):
        authenticate_user(session, "blocked@example.com", "Secret123")
    with pytest.raises(PermissionDenied, match="suspended"):
        authenticate_user(session, "paused@example.com", "Secret123")


def test_repeated_failures_lock_the_account(session, make_user):
    make_user()
    for _ in range(4):
        with pytest.raises(AuthenticationError):
            authenticate_user(session, "jane@example.com", "wrong")
    with pytest.raises(RateLimitedError):
        authenticate_user(session, "jane@example.com", "wrong")
    # even the right password is refused while locked
    with pytest.raises(RateLimitedError):
        authenticate_user(session, "jane@example.com", "Secret123")


def test_login_throttle_forgets_stale_identities():
    auth = AuthManager(max_attempts=3, lockout_minutes=15)
    yesterday = datetime.utcnow() - timedelta(days=1)
    for n in range(1000):
        auth.record_login_attempt(f"user{n}@example.com", success=False, at=yesterday)
    auth.record_login_attempt("fresh@example.com", success=False)
    assert list(auth._login_attempts) == ["fresh@example.com"]
    assert auth.record_login_attempt("fresh@example.com", success=True)
    assert auth._login_attempts == {}


def test_lockout_expires_after_the_window():
    auth = AuthManager(max_attempts=2, lockout_minutes=15)
    start = datetime.utcnow() - timedelta(minutes=20)
    auth.record_login_attempt("jane@example.com", success=False, at=start)
    assert not auth.record_login_attempt("jane@example.com", success=False, at=start)
    assert auth.is_locked("jane@example.com", at=start)
    assert not auth.is_locked("jane@example.com")
    assert "jane@example.com" not in auth._login_attempts


def test_password_reset_flow(session, make_user):
    user = make_user()
    assert request_password_reset(session, "jane@example.com") == RESET_REQUESTED_MESSAGE
    token = _user(user.id).password_reset_token
    assert token and len(token) == 64
    assert token in mailer.email_client.deliveries()[-1].get_body(("plain",)).get_content()

    reset_password(session, token, "BrandNew123")
    refreshed = _user(user.id)
    assert refreshed.password_reset_token is None
    assert verify_password("BrandNew123", refreshed.password_hash)
    with pytest.raises(ValidationError, match="Invalid or expired reset token"):
        reset_password(session, token, "BrandNew123")


def test_password_reset_for_unknown_email_looks_the_same(session):
    assert request_password_reset(session, "ghost@example.com") == RESET_REQUESTED_MESSAGE
    assert mailer.email_client.deliveries() == ()


def test_expired_reset_token(session, make_user):
    user = make_user(
        password_reset_token="a" * 64, password_reset_expires=datetime.utcnow() - timedelta(minutes=1)
    )
    with pytest.raises(ValidationError, match="Invalid or expired"):
        reset_password(session, "a" * 64, "BrandNew123")
    assert _user(user.id).password_reset_token == "a" * 64


def test_change_password(session, make_user):
    user = make_user()
    with pytest.raises(ValidationError, match="do not match"):
        change_password(session, user.id, "Secret123", "Another123", "Another124")
    with pytest.raises(AuthenticationError, match="Current password is incorrect"):
        change_password(session, user.id, "nope", "Another123", "Another123")
    change_password(session, user.id, "Secret123", "Another123", "Another123")
    assert verify_password("Another123", _user(user.id).password_hash)


def test_change_pin_checks_current_pin(session, make_user):
    user = make_user(transaction_pin="1234")
    with pytest.raises(ValidationError, match="Current PIN is incorrect"):
        change_transaction_pin(session, user.id, "0000", "5678", "5678")
    with pytest.raises(ValidationError, match="exactly 4 digits"):
        change_transaction_pin(session, user.id, "1234", "56a8", "56a8")
    change_transaction_pin(session, user.id, "1234", "5678", "5678")
    assert _user(user.id).transaction_pin == "5678"


def test_admin_create_user_applies_defaults(session, actor):
    user = create_user(
        session,
        actor,
        {"full_name": "Grace Hopper", "email": "grace@example.com", "password": "cobol1", "fiat_balance": "150"},
    )
    assert user.fiat_balance_cents == 15_000
    assert user.total_bonus_cents == 1_000
    assert user.transaction_pin is None
    assert mailer.email_client.deliveries() == ()
    with Session(engine) as check:
        entry = check.exec(select(AuditLog)).one()
    assert entry.action == "USER_CREATED"


def test_admin_create_user_validation(session, actor):
    with pytest.raises(ValidationError, match="at least 6"):
        create_user(session, actor, {"full_name": "Grace", "email": "g@example.com", "password": "123"})
    with pytest.raises(ValidationError, match="PIN"):
        create_user(
            session,
            actor,
            {"full_name": "Grace", "email": "g@example.com", "password": "123456", "transaction_pin": "12"},
        )


def test_list_users_filters(session, make_user):
    make_user("active@example.com", full_name="Active One")
    make_user("paused@example.com", full_name="Paused One", is_suspended=True)
    make_user("blocked@example.com", full_name="Blocked One", is_blocked=True)
    assert list_users(session).total == 3
    assert [row.user.email for row in list_users(session, status="suspended").items] == ["paused@example.com"]
    assert [row.user.email for row in list_users(session, status="active").items] == ["active@example.com"]
    assert [row.user.email for row in list_users(session, search="blocked").items] == ["blocked@example.com"]


def test_balance_update_only_touches_given_fields(session, make_user, actor):
    user = make_user(fiat_balance_cents=1_000, profit_balance_cents=500)
    update_user_balance(session, actor, user.id, {"fiat_balance": "25.00", "profit_balance": "", "btc_balance": "0.1"})
    refreshed = _user(user.id)
    assert refreshed.fiat_balance_cents == 2_500
    assert refreshed.profit_balance_cents == 500
    assert refreshed.btc_balance_sats == 10_000_000


def test_user_actions(session, make_user, actor):
    user = make_user(transaction_pin="1234")
    assert perform_user_action(session, actor, user.id, "suspend") is None
    assert _user(user.id).is_suspended is True
    assert mailer.email_client.deliveries()[-1]["To"] == "jane@example.com"
    perform_user_action(session, actor, user.id, "block")
    assert _user(user.id).is_blocked is True
    new_pin = perform_user_action(session, actor, user.id, "resetPin")
    assert new_pin is not None and len(new_pin) == 4
    assert _user(user.id).transaction_pin == new_pin
    with pytest.raises(ValidationError, match="Invalid action"):
        perform_user_action(session, actor, user.id, "explode")


def test_delete_user_removes_their_records(session, make_user, actor):
    user = make_user(kyc_approved=True)
    with Session(engine) as setup:
        setup.add(Transaction(user_id=user.id, type="DEPOSIT", amount_minor=100, reference="DEP-X"))
        setup.commit()
    delete_user(session, actor, user.id)
    with Session(engine) as check:
        assert check.get(User, user.id) is None
        assert check.exec(select(Transaction)).all() == []


def test_assign_plan_and_detail(session, make_user, actor):
    plan = create_plan(
        session,
        actor,
        {"name": "Gold", "min_amount": "10", "max_amount": "100", "roi_percentage": "5", "duration_days": "7"},
    )
    user = make_user()
    assign_plan(session, actor, user.id, str(plan.id))
    detail = user_detail(session, user.id)
    assert detail.plan.name == "Gold"
    assign_plan(session, actor, user.id, "")
    assert _user(user.id).current_plan_id is None


def test_admin_edit_user_overwrites_fields(session, make_user, actor):
    user = make_user(kyc_approved=True)
    make_user("taken@example.com")
    form = {
        "full_name": "Jane Q. Doe",
        "email": "jane.q@example.com",
        "country": "Canada",
        "currency": "CAD",
        "fiat_balance": "10",
        "tier": "3",
        "kyc_status": "DECLINED",
        "is_suspended": "true",
    }
    admin_edit_user(session, actor, user.id, form)
    refreshed = _user(user.id)
    assert refreshed.email == "jane.q@example.com"
    assert refreshed.fiat_balance_cents == 1_000
    assert refreshed.tier == 3
    assert refreshed.is_suspended is True
    assert user_detail(session, user.id).kyc.status == "DECLINED"
    with pytest.raises(ConflictError):
        admin_edit_user(session, actor, user.id, {**form, "email": "taken@example.com"})
