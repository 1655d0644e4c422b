"""JSON endpoints used by the browser widgets and external integrations.

Service errors propagate to the handlers in :mod:`.errors`, which render
``{"error": message}`` with the matching status code.
"""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Dict, Optional

from fastapi import APIRouter, Request
from pydantic import BaseModel
from sqlmodel import Session

from ..exceptions import AuthenticationError
from ..money import cents_to_decimal, sats_to_btc
from .accounts import authenticate_user, register_user, request_password_reset, reset_password
from .ledger import user_transactions
from .pages import client_ip, current_user, login_user, logout_user
from .persistence import Transaction, User, engine
from .settings import submit_contact_form
from .swap import get_btc_price, price_feed

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api")


class RegisterBody(BaseModel):
    full_name: str
    email: str
    password: str
    country: str
    phone: Optional[str] = None
    dob: Optional[str] = None
    gender: Optional[str] = None
    currency: Optional[str] = "USD"
    referral_code: Optional[str] = None


class LoginBody(BaseModel):
    email: str
    password: str


class ForgotPasswordBody(BaseModel):
    email: str


class ResetPasswordBody(BaseModel):
    token: str
    password: str


class ContactBody(BaseModel):
    name: str
    email: str
    subject: str
    message: str


def _user_payload(user: User) -> Dict[str, Any]:
    return {
        "id": user.id,
        "full_name": user.full_name,
        "email": user.email,
        "currency": user.currency,
        "referral_code": user.referral_code,
        "fiat_balance": str(cents_to_decimal(user.fiat_balance_cents)),
        "btc_balance": str(sats_to_btc(user.btc_balance_sats)),
    }


def _transaction_payload(tx: Transaction) -> Dict[str, Any]:
    return {
        "id": tx.id,
        "reference": tx.reference,
        "type": tx.type,
        "asset": tx.asset,
        "amount": str(sats_to_btc(tx.amount_minor) if tx.asset == "BTC" else cents_to_decimal(tx.amount_minor)),
        "status": tx.status,
        "description": tx.description,
        "created_at": (tx.backdated_at or tx.created_at).isoformat(),
    }


# ---------------------------------------------------------------------------
# Authentication
# ---------------------------------------------------------------------------
@router.post("/auth/register", status_code=201)
def api_register(request: Request, body: RegisterBody) -> Dict[str, Any]:
    with Session(engine) as session:
        user = register_user(session, body.model_dump())
        login_user(request, user)
        return {"success": True, "user": _user_payload(user)}


@router.post("/auth/login")
def api_login(request: Request, body: LoginBody) -> Dict[str, Any]:
    with Session(engine) as session:
        user = authenticate_user(session, body.email, body.password, ip_address=client_ip(request))
        login_user(request, user)
        return {"success": True, "user": _user_payload(user)}


@router.post("/auth/logout")
def api_logout(request: Request) -> Dict[str, Any]:
    logout_user(request)
    return {"success": True}


@router.post("/auth/forgot-password")
def api_forgot_password(body: ForgotPasswordBody) -> Dict[str, Any]:
    with Session(engine) as session:
        message = request_password_reset(session, body.email)
    return {"success": True, "message": message}


@router.post("/auth/reset-password")
def api_reset_password(body: ResetPasswordBody) -> Dict[str, Any]:
    with Session(engine) as session:
        reset_password(session, body.token, body.password)
    return {"success": True, "message": "Password updated successfully"}


# ---------------------------------------------------------------------------
# Public data
# ---------------------------------------------------------------------------
@router.post("/contact")
def api_contact(body: ContactBody) -> Dict[str, Any]:
    with Session(engine) as session:
        submit_contact_form(session, body.model_dump())
    return {"success": True, "message": "Thank you for your message. We'll get back to you soon!"}


@router.get("/btc-price")
def api_btc_price(currency: str = "USD") -> Dict[str, Any]:
    quote = get_btc_price(currency)
    return {
        "currency": quote.currency,
        "price": float(quote.price),
        "change_24h": float(quote.change_24h),
        "change_percent_24h": float(quote.change_percent_24h),
        "available": quote.available,
        "last_updated": quote.fetched_at.isoformat(),
    }


@router.get("/exchange-rates")
def api_exchange_rates(currency: str = "USD") -> Dict[str, Any]:
    rates = price_feed.exchange_rates(currency)
    return {
        "currency": currency.upper(),
        "rates": {network: float(price) for network, price in sorted(rates.items())},
        "timestamp": datetime.utcnow().isoformat(),
    }


# ---------------------------------------------------------------------------
# Signed-in user
# ---------------------------------------------------------------------------
@router.get("/user/transactions")
def api_user_transactions(request: Request, type: str = "", page: int = 1, limit: int = 20) -> Dict[str, Any]:
    with Session(engine) as session:
        user = current_user(request, session)
        if user is None:
            raise AuthenticationError("Unauthorized")
        txs = user_transactions(session, user.id, tx_type=type or None, page=page, limit=limit)
        return {
            "transactions": [_transaction_payload(tx) for tx in txs.items],
            "pagination": {
                "page": txs.page,
                "limit": txs.limit,
                "total": txs.total,
                "total_pages": txs.total_pages,
            },
        }


__all__ = ["router"]
