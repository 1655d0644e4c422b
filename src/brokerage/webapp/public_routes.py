"""Public marketing pages plus sign-in, registration and password reset."""
from __future__ import annotations

import logging
from urllib.parse import urlencode

from fastapi import APIRouter, Form, Request
from fastapi.responses import HTMLResponse, RedirectResponse
from sqlmodel import Session

from ..exceptions import BrokerError
from ..reference import CURRENCIES
from .accounts import authenticate_user, register_user, request_password_reset, reset_password
from .investments import plans_with_subscription_status
from .pages import (
    client_ip,
    html_escape,
    login_user,
    logout_user,
    money,
    public_layout,
    redirect,
    select_options,
    set_notice,
    user_authed,
)
from .persistence import engine
from .settings import public_settings, submit_contact_form

logger = logging.getLogger(__name__)

router = APIRouter()


def _plan_cards(session: Session, user_id) -> str:
    cards = []
    for row in plans_with_subscription_status(session, user_id):
        plan = row["plan"]
        action = (
            "<span class='pill'>Subscribed</span>"
            if row["is_subscribed"]
            else "<a class='button-link' href='/dashboard/plans'>Invest now</a>"
        )
        cards.append(
            "<div class='card'>"
            f"<h3>{html_escape(plan.name)}</h3>"
            f"<div class='stat-card__value'>{plan.roi_percentage:g}% ROI</div>"
            f"<p class='muted'>{plan.duration_days} days · "
            f"{money(plan.min_amount_cents)} to {money(plan.max_amount_cents)}</p>"
            f"{action}</div>"
        )
    return "".join(cards) or "<p class='muted'>No plans are open right now.</p>"


@router.get("/", response_class=HTMLResponse)
def home(request: Request):
    with Session(engine) as session:
        info = public_settings(session)
        plans = _plan_cards(session, user_authed(request))
    inner = f"""
      <div class='card'>
        <h1>Invest with {html_escape(info['site_name'])}</h1>
        <p class='muted'>Buy and hold Bitcoin, fund your account in your local currency and
        grow it with fixed-term investment plans.</p>
        <div class='actions'><a href='/register'>Open an account</a><a href='/login'>Sign in</a></div>
      </div>
      <h2>Investment plans</h2>
      <div class='grid'>{plans}</div>
    """
    return public_layout(request, "Home", inner, site_name=info["site_name"])


@router.get("/plans", response_class=HTMLResponse)
def plans_page(request: Request):
    with Session(engine) as session:
        info = public_settings(session)
        plans = _plan_cards(session, user_authed(request))
    inner = f"<h1>Investment plans</h1><div class='grid'>{plans}</div>"
    return public_layout(request, "Plans", inner, site_name=info["site_name"])


@router.get("/about", response_class=HTMLResponse)
def about_page(request: Request):
    with Session(engine) as session:
        info = public_settings(session)
    inner = f"""
      <div class='card'>
        <h1>About {html_escape(info['site_name'])}</h1>
        <p>We give individual investors straightforward access to Bitcoin and managed
        investment plans, with every deposit and withdrawal reviewed by our operations team.</p>
        <p class='muted'>{html_escape(info['address'])}</p>
      </div>
    """
    return public_layout(request, "About", inner, site_name=info["site_name"])


def _contact_inner(info: dict) -> str:
    return f"""
      <div class='grid'>
        <div class='card'>
          <h1>Contact us</h1>
          <p>Email: <a href='mailto:{html_escape(info['support_email'])}'>{html_escape(info['support_email'])}</a></p>
          <p>Phone: {html_escape(info['support_phone'])}</p>
          <p class='muted'>{html_escape(info['address'])}</p>
        </div>
        <div class='card'>
          <form method='post' action='/contact' class='stacked-form'>
            <label>Name</label><input name='name' required>
            <label>Email</label><input name='email' type='email' required>
            <label>Subject</label><input name='subject' required>
            <label>Message</label><textarea name='message' rows='6' required></textarea>
            <button type='submit'>Send message</button>
          </form>
        </div>
      </div>
    """


@router.get("/contact", response_class=HTMLResponse)
def contact_page(request: Request):
    with Session(engine) as session:
        info = public_settings(session)
    return public_layout(request, "Contact", _contact_inner(info), site_name=info["site_name"])


@router.post("/contact")
def contact_submit(
    request: Request,
    name: str = Form(""),
    email: str = Form(""),
    subject: str = Form(""),
    message: str = Form(""),
):
    with Session(engine) as session:
        try:
            submit_contact_form(session, {"name": name, "email": email, "subject": subject, "message": message})
        except BrokerError as exc:
            set_notice(request, exc.message, "error")
            return redirect("/contact")
    set_notice(request, "Thank you for your message. We'll get back to you soon!", "success")
    return redirect("/contact")


@router.get("/legal", response_class=HTMLResponse)
def legal_page(request: Request):
    with Session(engine) as session:
        info = public_settings(session)
    name = html_escape(info["site_name"])
    inner = f"""
      <div class='card'>
        <h1>Terms and privacy</h1>
        <h3>Risk disclosure</h3>
        <p>Investing in digital assets carries risk. The value of Bitcoin can go down as well as up,
        and returns on investment plans are not guaranteed by {name}.</p>
        <h3>Accounts</h3>
        <p>Withdrawals require identity verification and a transaction PIN. {name} may suspend
        accounts that breach these terms.</p>
        <h3>Privacy</h3>
        <p>Identity documents are used only for verification and are never shared with third parties
        except where required by law.</p>
      </div>
    """
    return public_layout(request, "Legal", inner, site_name=info["site_name"])


# ---------------------------------------------------------------------------
# Sign in and registration
# ---------------------------------------------------------------------------
@router.get("/login", response_class=HTMLResponse)
def login_page(request: Request):
    if user_authed(request):
        return redirect("/dashboard")
    inner = """
      <div class='card' style='max-width:420px;margin:auto;'>
        <h1>Sign in</h1>
        <form method='post' action='/login' class='stacked-form'>
          <label>Email</label><input name='email' type='email' autocomplete='email' required>
          <label>Password</label><input name='password' type='password' autocomplete='current-password' required>
          <button type='submit'>Sign in</button>
        </form>
        <p class='muted'><a href='/forgot-password'>Forgot your password?</a> · <a href='/register'>Open an account</a></p>
      </div>
    """
    return public_layout(request, "Sign in", inner)


@router.post("/login")
def login_submit(request: Request, email: str = Form(""), password: str = Form("")):
    with Session(engine) as session:
        try:
            user = authenticate_user(session, email, password, ip_address=client_ip(request))
        except BrokerError as exc:
            set_notice(request, exc.message, "error")
            return redirect("/login")
        login_user(request, user)
    return redirect("/dashboard")


@router.post("/logout")
def logout(request: Request):
    logout_user(request)
    return redirect("/login")


@router.get("/register", response_class=HTMLResponse)
def register_page(request: Request, ref: str = ""):
    if user_authed(request):
        return redirect("/dashboard")
    currencies = select_options(((c.code, f"{c.code} · {c.name}") for c in CURRENCIES), "USD")
    genders = select_options(
        (("", "Prefer not to say"), ("MALE", "Male"), ("FEMALE", "Female"), ("OTHER", "Other"))
    )
    inner = f"""
      <div class='card' style='max-width:560px;margin:auto;'>
        <h1>Open an account</h1>
        <form method='post' action='/register' class='stacked-form'>
          <label>Full name</label><input name='full_name' required>
          <label>Email</label><input name='email' type='email' required>
          <label>Password</label><input name='password' type='password' required>
          <p class='muted'>At least 8 characters with an uppercase letter, a lowercase letter and a number.</p>
          <label>Country</label><input name='country' required>
          <label>Phone</label><input name='phone'>
          <label>Date of birth</label><input name='dob' type='date'>
          <label>Gender</label><select name='gender'>{genders}</select>
          <label>Currency</label><select name='currency'>{currencies}</select>
          <label>Referral code</label><input name='referral_code' value='{html_escape(ref)}'>
          <button type='submit'>Create account</button>
        </form>
      </div>
    """
    return public_layout(request, "Register", inner)


@router.post("/register")
async def register_submit(request: Request):
    form = await request.form()
    data = {key: form.get(key) for key in (
        "full_name", "email", "password", "country", "phone", "dob", "gender", "currency", "referral_code"
    )}
    with Session(engine) as session:
        try:
            user = register_user(session, data)
        except BrokerError as exc:
            set_notice(request, exc.message, "error")
            return redirect("/register")
        login_user(request, user)
    set_notice(request, "Welcome aboard! Your account is ready.", "success")
    return redirect("/dashboard")


@router.get("/forgot-password", response_class=HTMLResponse)
def forgot_password_page(request: Request):
    inner = """
      <div class='card' style='max-width:420px;margin:auto;'>
        <h1>Reset your password</h1>
        <form method='post' action='/forgot-password' class='stacked-form'>
          <label>Email</label><input name='email' type='email' required>
          <button type='submit'>Send reset link</button>
        </form>
      </div>
    """
    return public_layout(request, "Forgot password", inner)


@router.post("/forgot-password")
def forgot_password_submit(request: Request, email: str = Form("")):
    with Session(engine) as session:
        try:
            message = request_password_reset(session, email)
        except BrokerError as exc:
            set_notice(request, exc.message, "error")
            return redirect("/forgot-password")
    set_notice(request, message, "success")
    return redirect("/login")


@router.get("/reset-password", response_class=HTMLResponse)
def reset_password_page(request: Request, token: str = ""):
    if not token:
        set_notice(request, "Invalid or expired reset token", "error")
        return redirect("/forgot-password")
    inner = f"""
      <div class='card' style='max-width:420px;margin:auto;'>
        <h1>Choose a new password</h1>
        <form method='post' action='/reset-password' class='stacked-form'>
          <input type='hidden' name='token' value='{html_escape(token)}'>
          <label>New password</label><input name='password' type='password' required>
          <button type='submit'>Update password</button>
        </form>
      </div>
    """
    return public_layout(request, "Reset password", inner)


@router.post("/reset-password")
def reset_password_submit(request: Request, token: str = Form(""), password: str = Form("")):
    with Session(engine) as session:
        try:
            reset_password(session, token, password)
        except BrokerError as exc:
            set_notice(request, exc.message, "error")
            return RedirectResponse(f"/reset-password?{urlencode({'token': token})}", status_code=302)
    set_notice(request, "Password updated. You can sign in now.", "success")
    return redirect("/login")


__all__ = ["router"]
