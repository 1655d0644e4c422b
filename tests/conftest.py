import os
import tempfile
from pathlib import Path

_DB_DIR = tempfile.mkdtemp(prefix="brokerage-tests-")
os.environ["BROKERAGE_SQLITE"] = str(Path(_DB_DIR) / "brokerage-test.db")
os.environ["BCRYPT_ROUNDS"] = "4"
os.environ["SMTP_HOST"] = ""
os.environ["CLOUDINARY_CLOUD_NAME"] = ""
os.environ.pop("EVENT_LOG_PATH", None)
os.environ.pop("ADMIN_NOTIFY_EMAIL", None)

import pytest
from sqlalchemy import delete as sa_delete
from sqlmodel import Session

from brokerage.models import AdminRole
from brokerage.pricing import NETWORK_TO_COINGECKO_ID
from brokerage.security import generate_referral_code, hash_password
from brokerage.webapp import accounts, admins, audit, mailer, swap
from brokerage.webapp.admins import actor_for
from brokerage.webapp.persistence import ALL_MODELS, KYC, Admin, User, engine

BTC_USD = 50000
FAKE_USD_PRICES = {
    "bitcoin": BTC_USD,
    "ethereum": 2500,
    "tether": 1,
    "usd-coin": 1,
}


def fake_coingecko(url: str) -> dict:
    data = {coin_id: {"usd": FAKE_USD_PRICES.get(coin_id, 2)} for coin_id in set(NETWORK_TO_COINGECKO_ID.values())}
    data["bitcoin"]["usd_24h_change"] = 2.5
    return data


@pytest.fixture(autouse=True)
def clean_state(monkeypatch):
    with Session(engine) as session:
        for model in ALL_MODELS:
            session.execute(sa_delete(model))
        session.commit()
    monkeypatch.setattr(swap.price_feed, "_fetch", fake_coingecko)
    swap.price_feed.clear()
    mailer.email_client.clear()
    accounts.user_auth.reset()
    admins.admin_auth.reset()
    audit.security_log.clear()
    mailer.use_site_name(None)
    yield
    swap.price_feed.clear()


@pytest.fixture()
def session():
    with Session(engine) as db:
        yield db


@pytest.fixture()
def make_user():
    def _make_user(
        email: str = "jane@example.com",
        password: str = "Secret123",
        *,
        full_name: str = "Jane Doe",
        kyc_approved: bool = False,
        **fields,
    ) -> User:
        with Session(engine) as db:
            user = User(
                full_name=full_name,
                email=email,
                password_hash=hash_password(password),
                country="United States",
                referral_code=generate_referral_code(),
                **fields,
            )
            db.add(user)
            db.commit()
            db.refresh(user)
            if kyc_approved:
                db.add(
                    KYC(
                        user_id=user.id,
                        document_type="PASSPORT",
                        document_front_url="https://img.example.com/front.jpg",
                        selfie_url="https://img.example.com/selfie.jpg",
                        status="APPROVED",
                    )
                )
                db.commit()
            return user

    return _make_user


@pytest.fixture()
def make_admin():
    def _make_admin(email: str = "ops@example.com", password: str = "AdminPass1", role: str = "SUPER_ADMIN") -> Admin:
        with Session(engine) as db:
            admin = Admin(email=email, password_hash=hash_password(password), name="Ops", role=role)
            db.add(admin)
            db.commit()
            db.refresh(admin)
            return admin

    return _make_admin


@pytest.fixture()
def actor(make_admin):
    return actor_for(make_admin(), ip_address="127.0.0.1", user_agent="pytest")


@pytest.fixture()
def plain_actor(make_admin):
    admin = make_admin(email="staff@example.com", role=AdminRole.ADMIN.value)
    return actor_for(admin)


@pytest.fixture()
def client():
    from fastapi.testclient import TestClient

    from brokerage.webapp.application import app

    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture()
def user_client(client, make_user):
    user = make_user(kyc_approved=True, fiat_balance_cents=100_000, transaction_pin="1234")
    response = client.post(
        "/login", data={"email": "jane@example.com", "password": "Secret123"}, follow_redirects=False
    )
    assert response.status_code == 302
    assert response.headers["location"] == "/dashboard"
    client.user = user
    return client


@pytest.fixture()
def admin_client(client, make_admin):
    admin = make_admin()
    response = client.post(
        "/admin/login", data={"email": "ops@example.com", "password": "AdminPass1"}, follow_redirects=False
    )
    assert response.status_code == 302
    assert response.headers["location"] == "/admin"
    client.admin = admin
    return client
