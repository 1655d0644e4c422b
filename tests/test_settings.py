import pytest
from sqlmodel import Session, select

from brokerage.exceptions import NotFoundError, PermissionDenied, ValidationError
from brokerage.webapp import mailer
from brokerage.webapp.admins import actor_for, authenticate_admin, change_admin_password, create_admin
from brokerage.webapp.audit import list_audit_logs
from brokerage.webapp.config import PUBLIC_SETTINGS_DEFAULTS, SITE_NAME
from brokerage.webapp.persistence import Admin, engine
from brokerage.webapp.settings import (
    active_payment_methods,
    add_deposit_wallet,
    add_payment_method,
    delete_payment_method,
    find_payment_method,
    get_app_settings,
    load_site_name,
    payment_methods_by_type,
    public_settings,
    remove_deposit_wallet,
    submit_contact_form,
    toggle_payment_method,
    update_app_settings,
    update_payment_method,
)


def test_settings_row_is_created_on_first_use(session):
    assert public_settings(session) == PUBLIC_SETTINGS_DEFAULTS
    settings = get_app_settings(session)
    assert get_app_settings(session).id == settings.id
    assert settings.methods() == []
    assert settings.default_withdrawal_fee_cents == 0


def test_update_settings(session, actor):
    update_app_settings(
        session,
        actor,
        {
            "site_name": "Acme Markets",
            "company_email": "Desk@Acme.test",
            "default_withdrawal_fee": "15",
            "default_withdrawal_instruction": "Pay the desk",
        },
    )
    info = public_settings(session)
    assert info["site_name"] == "Acme Markets"
    assert info["support_email"] == "desk@acme.test"
    assert info["support_phone"] == PUBLIC_SETTINGS_DEFAULTS["support_phone"]
    assert get_app_settings(session).default_withdrawal_fee_cents == 1_500
    assert list_audit_logs(session).items[0].action == "SETTINGS_UPDATED"



def test_site_name_brands_outgoing_mail(session, actor):
    update_app_settings(session, actor, {"site_name": "Acme Markets"})
    assert mailer.templates.site_name == "Acme Markets"
    submit_contact_form(
        session,
        {
            "name": "Visitor",
            "email": "visitor@example.com",
            "subject": "Account question",
            "message": "How long do withdrawals usually take?",
        },
    )
    message = mailer.email_client.deliveries()[-1]
    assert message["From"].startswith("Acme Markets")

    mailer.use_site_name(None)
    assert mailer.templates.site_name == SITE_NAME
    load_site_name(session)
    assert mailer.templates.site_name == "Acme Markets"


def test_site_name_defaults_without_a_settings_row(session):
    mailer.use_site_name("Elsewhere")
    load_site_name(session)
    assert mailer.templates.site_name == SITE_NAME

def test_settings_validation_and_permissions(session, actor, plain_actor):
    with pytest.raises(ValidationError, match="Site name is required"):
        update_app_settings(session, actor, {"site_name": "  "})
    with pytest.raises(ValidationError, match="company email"):
        update_app_settings(session, actor, {"company_email": "not-an-email"})
    with pytest.raises(PermissionDenied):
        update_app_settings(session, plain_actor, {"site_name": "Nope"})


def test_payment_method_lifecycle(session, actor):
    method = add_payment_method(
        session, actor, {"type": "crypto", "name": "USDT (TRC20)", "network": "USDT-TRC20", "walletAddress": "TXYZ123456"}
    )
    assert method["type"] == "CRYPTO"
    assert method["isActive"] is True
    assert find_payment_method(session, method["id"])["walletAddress"] == "TXYZ123456"

    update_payment_method(session, actor, method["id"], {"name": "Tether"})
    assert active_payment_methods(session)[0]["name"] == "Tether"

    assert toggle_payment_method(session, actor, method["id"]) is False
    assert active_payment_methods(session) == []
    assert toggle_payment_method(session, actor, method["id"]) is True

    delete_payment_method(session, actor, method["id"])
    assert get_app_settings(session).methods() == []
    with pytest.raises(NotFoundError):
        delete_payment_method(session, actor, method["id"])
    actions = [entry.action for entry in list_audit_logs(session).items]
    assert "DEPOSIT_METHOD_ADDED" in actions and "DEPOSIT_METHOD_REMOVED" in actions


def test_payment_method_validation(session, actor):
    with pytest.raises(ValidationError, match="Invalid payment method type"):
        add_payment_method(session, actor, {"type": "GOLD", "name": "Bars"})
    with pytest.raises(ValidationError, match="Wallet address is required"):
        add_payment_method(session, actor, {"type": "CRYPTO", "name": "BTC"})


def test_legacy_wallets_show_only_without_crypto_methods(session, actor):
    wallet = add_deposit_wallet(session, actor, name="Main BTC", address="bc1qlegacywallet", network="btc")
    add_payment_method(session, actor, {"type": "PAYPAL", "name": "PayPal", "email": "pay@acme.test"})
    grouped = payment_methods_by_type(session)
    assert grouped["CRYPTO"][0]["walletAddress"] == "bc1qlegacywallet"
    assert grouped["CRYPTO"][0]["network"] == "BTC"
    assert grouped["PAYPAL"][0]["email"] == "pay@acme.test"

    add_payment_method(session, actor, {"type": "CRYPTO", "name": "ETH", "network": "ETH", "walletAddress": "0xabc123456"})
    names = [method["name"] for method in active_payment_methods(session)]
    assert "Main BTC" not in names

    remove_deposit_wallet(session, actor, wallet["id"])
    with pytest.raises(NotFoundError):
        remove_deposit_wallet(session, actor, wallet["id"])


def test_contact_form_goes_to_support_inbox(session):
    submit_contact_form(
        session,
        {
            "name": "Visitor",
            "email": "visitor@example.com",
            "subject": "Account question",
            "message": "How long do withdrawals usually take?",
        },
    )
    message = mailer.email_client.deliveries()[-1]
    assert message["To"] == PUBLIC_SETTINGS_DEFAULTS["support_email"]
    assert message["Reply-To"] == "visitor@example.com"


def test_contact_form_validation(session):
    with pytest.raises(ValidationError, match="at least 20 characters"):
        submit_contact_form(session, {"name": "Vi", "email": "v@example.com", "subject": "Hello there", "message": "Too short"})


def test_create_admin_and_sign_in(session):
    admin = create_admin(session, email="Root@Example.com", password="RootPass1")
    assert admin.role == "SUPER_ADMIN"
    signed_in = authenticate_admin(session, "root@example.com", "RootPass1", ip_address="10.1.1.1")
    assert signed_in.last_login is not None
    entry = list_audit_logs(session, action="ADMIN_LOGIN").items[0]
    assert entry.ip_address == "10.1.1.1"


def test_create_admin_rules(session, actor, plain_actor):
    with pytest.raises(ValidationError, match="at least 8"):
        create_admin(session, email="x@example.com", password="short")
    with pytest.raises(ValidationError, match="Invalid role"):
        create_admin(session, email="x@example.com", password="LongEnough1", role="OWNER")
    with pytest.raises(PermissionDenied):
        create_admin(session, email="x@example.com", password="LongEnough1", actor=plain_actor)
    created = create_admin(session, email="x@example.com", password="LongEnough1", role="ADMIN", actor=actor)
    assert created.role == "ADMIN"
    assert list_audit_logs(session, action="ADMIN_CREATED").total == 1


def test_change_admin_password(session, make_admin):
    admin = make_admin()
    actor = actor_for(admin)
    change_admin_password(session, actor, "AdminPass1", "Rotated123", "Rotated123")
    assert authenticate_admin(session, "ops@example.com", "Rotated123").id == admin.id
    with Session(engine) as check:
        assert check.exec(select(Admin)).one().email == "ops@example.com"
