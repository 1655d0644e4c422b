from sqlmodel import Session

from brokerage.webapp import mailer
from brokerage.webapp.ledger import create_transaction
from brokerage.webapp.persistence import User, engine

REGISTRATION = {
    "full_name": "Ada Lovelace",
    "email": "ada@example.com",
    "password": "Analytical1",
    "country": "United Kingdom",
    "currency": "GBP",
}


def test_register_returns_the_new_account(client):
    response = client.post("/api/auth/register", json=REGISTRATION)
    assert response.status_code == 201
    payload = response.json()
    assert payload["success"] is True
    assert payload["user"]["email"] == "ada@example.com"
    assert payload["user"]["currency"] == "GBP"
    assert payload["user"]["fiat_balance"] == "0.00"
    assert len(payload["user"]["referral_code"]) == 8
    # registration signs the caller in
    assert client.get("/api/user/transactions").status_code == 200


def test_register_conflict_and_validation(client):
    client.post("/api/auth/register", json=REGISTRATION)
    duplicate = client.post("/api/auth/register", json=REGISTRATION)
    assert duplicate.status_code == 409
    assert "already exists" in duplicate.json()["error"]

    weak = client.post("/api/auth/register", json={**REGISTRATION, "email": "new@example.com", "password": "weak"})
    assert weak.status_code == 400

    missing = client.post("/api/auth/register", json={"email": "x@example.com"})
    assert missing.status_code == 400
    assert missing.json()["error"].startswith("full_name")


def test_login_and_logout(client, make_user):
    make_user()
    bad = client.post("/api/auth/login", json={"email": "jane@example.com", "password": "wrong"})
    assert bad.status_code == 401
    assert bad.json() == {"error": "Invalid email or password"}

    good = client.post("/api/auth/login", json={"email": "jane@example.com", "password": "Secret123"})
    assert good.status_code == 200
    assert good.json()["user"]["full_name"] == "Jane Doe"

    assert client.post("/api/auth/logout").json() == {"success": True}
    assert client.get("/api/user/transactions").status_code == 401


def test_blocked_login_is_forbidden(client, make_user):
    make_user(is_blocked=True)
    response = client.post("/api/auth/login", json={"email": "jane@example.com", "password": "Secret123"})
    assert response.status_code == 403


def test_user_transactions_requires_a_session(client):
    response = client.get("/api/user/transactions")
    assert response.status_code == 401
    assert response.json() == {"error": "Unauthorized"}


def test_user_transactions_paginates(user_client, actor):
    with Session(engine) as session:
        for index in range(3):
            create_transaction(
                session, actor, user_id=user_client.user.id, tx_type="BONUS", amount=str(index + 1)
            )
        create_transaction(session, actor, user_id=user_client.user.id, tx_type="DEPOSIT", amount="0.5", asset="BTC")
    payload = user_client.get("/api/user/transactions?limit=2").json()
    assert payload["pagination"] == {"page": 1, "limit": 2, "total": 4, "total_pages": 2}
    assert len(payload["transactions"]) == 2

    bonuses = user_client.get("/api/user/transactions?type=BONUS").json()
    assert bonuses["pagination"]["total"] == 3
    deposits = user_client.get("/api/user/transactions?type=DEPOSIT").json()
    assert deposits["transactions"][0]["amount"] == "0.50000000"


def test_btc_price(client):
    payload = client.get("/api/btc-price").json()
    assert payload["currency"] == "USD"
    assert payload["price"] == 50000.0
    assert payload["change_percent_24h"] == 2.5
    assert payload["change_24h"] == 1250.0
    assert payload["available"] is True


def test_btc_price_unavailable_currency(client):
    payload = client.get("/api/btc-price?currency=eur").json()
    assert payload["currency"] == "EUR"
    assert payload["price"] == 0.0
    assert payload["available"] is False


def test_exchange_rates(client):
    payload = client.get("/api/exchange-rates").json()
    assert payload["currency"] == "USD"
    assert payload["rates"]["BTC"] == 50000.0
    assert payload["rates"]["ETH"] == 2500.0
    assert payload["rates"]["USDT-TRC20"] == 1.0


def test_forgot_and_reset_password(client, make_user):
    user = make_user()
    response = client.post("/api/auth/forgot-password", json={"email": "jane@example.com"})
    assert response.status_code == 200
    with Session(engine) as session:
        token = session.get(User, user.id).password_reset_token

    invalid = client.post("/api/auth/reset-password", json={"token": "nope", "password": "BrandNew123"})
    assert invalid.status_code == 400

    done = client.post("/api/auth/reset-password", json={"token": token, "password": "BrandNew123"})
    assert done.json()["message"] == "Password updated successfully"
    login = client.post("/api/auth/login", json={"email": "jane@example.com", "password": "BrandNew123"})
    assert login.status_code == 200


def test_contact(client):
    response = client.post(
        "/api/contact",
        json={
            "name": "Visitor",
            "email": "visitor@example.com",
            "subject": "Question",
            "message": "Do you support wire transfers from Europe?",
        },
    )
    assert response.status_code == 200
    assert response.json()["success"] is True
    assert mailer.email_client.deliveries()[-1]["Reply-To"] == "visitor@example.com"

    short = client.post(
        "/api/contact",
        json={"name": "V", "email": "visitor@example.com", "subject": "Hi", "message": "Short"},
    )
    assert short.status_code == 400
