from sqlmodel import Session, select

from brokerage.webapp.investments import create_plan
from brokerage.webapp.persistence import KYC, Trade, Transaction, User, UserInvestment, engine


def _user(user_id: int) -> User:
    with Session(engine) as session:
        return session.get(User, user_id)


def test_dashboard_pages_require_login(client):
    for path in (
        "/dashboard",
        "/dashboard/wallets",
        "/dashboard/deposit",
        "/dashboard/withdraw",
        "/dashboard/swap",
        "/dashboard/trades",
        "/dashboard/transactions",
        "/dashboard/plans",
        "/dashboard/investments",
        "/dashboard/kyc",
        "/dashboard/referrals",
        "/dashboard/settings",
        "/dashboard/buy-crypto",
    ):
        response = client.get(path, follow_redirects=False)
        assert response.status_code == 302, path
        assert response.headers["location"] == "/login"


def test_dashboard_pages_render(user_client):
    for path in (
        "/dashboard",
        "/dashboard/wallets",
        "/dashboard/deposit",
        "/dashboard/withdraw",
        "/dashboard/swap",
        "/dashboard/trades",
        "/dashboard/transactions",
        "/dashboard/plans",
        "/dashboard/investments",
        "/dashboard/kyc",
        "/dashboard/referrals",
        "/dashboard/settings",
        "/dashboard/buy-crypto?country=NG",
    ):
        response = user_client.get(path)
        assert response.status_code == 200, path
    assert "$1,000.00" in user_client.get("/dashboard").text


def test_deposit_with_proof_url(user_client):
    response = user_client.post(
        "/dashboard/deposit",
        data={"amount": "150", "proof_url": "https://img.example.com/receipt.png"},
        follow_redirects=False,
    )
    assert response.headers["location"] == "/dashboard/deposit"
    with Session(engine) as session:
        tx = session.exec(select(Transaction)).one()
    assert tx.status == "PENDING"
    assert tx.amount_minor == 15_000
    assert tx.reference in user_client.get("/dashboard/deposit").text


def test_deposit_without_proof_is_rejected(user_client):
    user_client.post("/dashboard/deposit", data={"amount": "150"})
    with Session(engine) as session:
        assert session.exec(select(Transaction)).all() == []


def test_withdrawal_request(user_client):
    response = user_client.post(
        "/dashboard/withdraw",
        data={
            "balance_type": "FIAT",
            "amount": "200",
            "method": "PAYPAL",
            "paypalEmail": "jane.pay@example.com",
            "pin": "1234",
        },
        follow_redirects=False,
    )
    assert response.headers["location"] == "/dashboard/withdraw"
    assert _user(user_client.user.id).fiat_balance_cents == 80_000
    page = user_client.get("/dashboard/withdraw")
    assert "submitted for review" in page.text


def test_withdrawal_hold_panel(user_client):
    with Session(engine) as session:
        user = session.get(User, user_client.user.id)
        user.signal_fee_enabled = True
        user.signal_fee_instruction = "Pay the signal desk"
        session.add(user)
        session.commit()
    page = user_client.post(
        "/dashboard/withdraw",
        data={
            "balance_type": "FIAT",
            "amount": "200",
            "method": "BITCOIN",
            "walletAddress": "bc1qexampleaddress0001",
            "pin": "1234",
        },
    )
    assert "Signal fee required" in page.text
    assert "Pay the signal desk" in page.text
    assert _user(user_client.user.id).fiat_balance_cents == 100_000
    # the panel shows once
    assert "Signal fee required" not in user_client.get("/dashboard/withdraw").text


def test_swap_buy(user_client):
    response = user_client.post("/dashboard/swap", data={"from_asset": "FIAT", "amount": "500"}, follow_redirects=False)
    assert response.headers["location"] == "/dashboard/trades"
    refreshed = _user(user_client.user.id)
    assert refreshed.fiat_balance_cents == 50_000
    assert refreshed.btc_balance_sats == 1_000_000
    assert "0.01 BTC" in user_client.get("/dashboard/trades").text


def test_swap_preview(user_client):
    page = user_client.get("/dashboard/swap?from_asset=FIAT&amount_value=100")
    assert page.status_code == 200
    assert "0.002 BTC" in page.text
    with Session(engine) as session:
        assert session.exec(select(Trade)).all() == []


def test_subscribe_and_reclaim_is_locked(user_client, actor):
    with Session(engine) as session:
        plan = create_plan(
            session,
            actor,
            {"name": "Quarterly", "min_amount": "100", "max_amount": "5000", "roi_percentage": "20", "duration_days": "90"},
        )
    response = user_client.post(
        "/dashboard/plans/subscribe", data={"plan_id": str(plan.id), "amount": "300"}, follow_redirects=False
    )
    assert response.headers["location"] == "/dashboard/investments"
    with Session(engine) as session:
        investment = session.exec(select(UserInvestment)).one()
    assert "Quarterly" in user_client.get("/dashboard/investments").text

    page = user_client.post(f"/dashboard/investments/{investment.id}/reclaim")
    assert _user(user_client.user.id).fiat_balance_cents == 70_000
    assert "Plan duration has not ended yet" in page.text


def test_kyc_submission_by_url(client, make_user):
    make_user("fresh@example.com")
    client.post("/login", data={"email": "fresh@example.com", "password": "Secret123"})
    response = client.post(
        "/dashboard/kyc",
        data={
            "document_type": "PASSPORT",
            "front_url": "https://img.example.com/front.jpg",
            "selfie_url": "https://img.example.com/selfie.jpg",
        },
        follow_redirects=False,
    )
    assert response.headers["location"] == "/dashboard/kyc"
    with Session(engine) as session:
        kyc = session.exec(select(KYC)).one()
    assert kyc.status == "PENDING"
    assert kyc.document_back_url is None


def test_settings_forms(user_client):
    user_client.post(
        "/dashboard/settings/profile",
        data={"full_name": "Jane Roe", "phone": "+1 555 0100", "country": "Canada"},
    )
    refreshed = _user(user_client.user.id)
    assert refreshed.full_name == "Jane Roe"
    assert refreshed.country == "Canada"

    user_client.post(
        "/dashboard/settings/pin", data={"current_pin": "1234", "new_pin": "4321", "confirm_pin": "4321"}
    )
    assert _user(user_client.user.id).transaction_pin == "4321"

    page = user_client.post(
        "/dashboard/settings/password",
        data={"current_password": "wrong", "new_password": "Another123", "confirm_password": "Another123"},
    )
    assert "Current password is incorrect" in page.text


def test_transactions_page_filters_by_type(user_client, actor):
    from brokerage.webapp.ledger import create_transaction

    with Session(engine) as session:
        create_transaction(session, actor, user_id=user_client.user.id, tx_type="BONUS", amount="7", description="Promo")
        create_transaction(session, actor, user_id=user_client.user.id, tx_type="DEPOSIT", amount="9", description="Wire in")
    page = user_client.get("/dashboard/transactions?type=BONUS")
    assert "Promo" in page.text
    assert "Wire in" not in page.text
