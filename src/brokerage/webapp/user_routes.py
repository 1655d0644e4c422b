"""Account holder dashboard: balances, deposits, withdrawals, swaps and plans."""
from __future__ import annotations

import logging
from typing import Any, Optional

from fastapi import APIRouter, Form, Request
from fastapi.responses import HTMLResponse
from sqlmodel import Session
from starlette.datastructures import UploadFile

from ..exceptions import BrokerError, ValidationError, WithdrawalHoldError, parse_withdrawal_hold
from ..media import CloudinaryUploader, optimized_url
from ..models import AssetType, KYCDocumentType, TransactionType, WithdrawalMethod
from ..money import cents_to_decimal, parse_amount, sats_to_cents
from ..reference import REGION_NAMES, country_code_for_name, exchanges_for_country
from .accounts import change_password, change_transaction_pin, referral_summary, update_profile
from .config import APP_URL, CLOUDINARY_API_KEY, CLOUDINARY_API_SECRET, CLOUDINARY_CLOUD_NAME
from .investments import (
    investment_stats,
    plans_with_subscription_status,
    reclaim_capital,
    subscribe_to_plan,
    user_investments,
)
from .kyc import display_status, get_user_kyc, submit_kyc
from .ledger import (
    recent_user_transactions,
    submit_deposit,
    user_deposits,
    user_transaction_stats,
    user_transactions,
)
from .pages import (
    amount,
    btc,
    current_user,
    html_escape,
    money,
    pagination_links,
    redirect,
    select_options,
    set_notice,
    stat_card,
    status_pill,
    table,
    user_layout,
    when,
)
from .persistence import User, engine
from .settings import active_payment_methods
from .swap import PRICE_UNAVAILABLE_MESSAGE, execute_swap, get_btc_price, get_swap_quote, price_feed, user_trades
from .withdrawals import check_withdrawal_eligibility, request_withdrawal, user_withdrawals

logger = logging.getLogger(__name__)

router = APIRouter()

uploader = CloudinaryUploader(CLOUDINARY_CLOUD_NAME, CLOUDINARY_API_KEY, CLOUDINARY_API_SECRET)

WITHDRAWAL_DETAIL_FIELDS = (
    "bankName",
    "accountName",
    "accountNumber",
    "routingNumber",
    "swiftCode",
    "iban",
    "bankAddress",
    "country",
    "walletAddress",
    "cashtag",
    "paypalEmail",
    "zelleEmail",
    "zellePhone",
)


async def upload_or_url(form: Any, file_key: str, url_key: str, folder: str) -> Optional[str]:
    """Upload ``form[file_key]`` when a file was sent, else fall back to ``form[url_key]``."""

    upload = form.get(file_key)
    if isinstance(upload, UploadFile) and upload.filename:
        result = uploader.upload(await upload.read(), upload.content_type or "", folder=folder)
        if not result.success:
            raise ValidationError(result.error or "Failed to upload image")
        return result.url
    value = form.get(url_key)
    return value if isinstance(value, str) else None


def _tx_rows(transactions, user: User) -> list:
    return [
        "<tr>"
        f"<td>{when(tx.backdated_at or tx.created_at)}</td>"
        f"<td>{html_escape(tx.type.title())}</td>"
        f"<td>{html_escape(tx.description or '')}<div class='muted'>{html_escape(tx.reference)}</div></td>"
        f"<td class='right'>{amount(tx.amount_minor, tx.asset, user.currency)}</td>"
        f"<td>{status_pill(tx.status)}</td>"
        "</tr>"
        for tx in transactions
    ]


# ---------------------------------------------------------------------------
# Overview and wallets
# ---------------------------------------------------------------------------
@router.get("/dashboard", response_class=HTMLResponse)
def dashboard_overview(request: Request):
    with Session(engine) as session:
        user = current_user(request, session)
        if user is None:
            return redirect("/login")
        stats = user_transaction_stats(session, user.id)
        invest = investment_stats(session, user.id)
        recent = recent_user_transactions(session, user.id)
        kyc_state = display_status(get_user_kyc(session, user.id))
    quote = get_btc_price(user.currency)
    btc_value = money(sats_to_cents(user.btc_balance_sats, quote.price), user.currency) if quote.available else "n/a"
    kyc_banner = ""
    if kyc_state != "verified":
        kyc_banner = (
            "<div class='notice notice--info'>Verify your identity to enable withdrawals. "
            "<a href='/dashboard/kyc'>Start verification</a></div>"
        )
    inner = f"""
      {kyc_banner}
      <div class='stats'>
        {stat_card("Available balance", money(user.fiat_balance_cents, user.currency))}
        {stat_card("Bitcoin", btc(user.btc_balance_sats), f"≈ {btc_value}")}
        {stat_card("Profit", money(user.profit_balance_cents, user.currency))}
        {stat_card("Bonus", money(user.total_bonus_cents, user.currency))}
        {stat_card("Active investments", money(user.active_investment_cents, user.currency), f"{invest['active_count']} running")}
        {stat_card("Pending requests", str(stats['pending_count']))}
      </div>
      <div class='card'>
        <div class='actions'>
          <a class='button-link' href='/dashboard/deposit'>Deposit</a>
          <a class='button-link' href='/dashboard/withdraw'>Withdraw</a>
          <a class='button-link' href='/dashboard/swap'>Swap</a>
          <a class='button-link' href='/dashboard/plans'>Invest</a>
        </div>
      </div>
      <div class='card'>
        <h3>Recent activity</h3>
        {table(("Date", "Type", "Details", "Amount", "Status"), _tx_rows(recent, user), "No transactions yet.")}
        <p><a href='/dashboard/transactions'>All transactions</a></p>
      </div>
    """
    return user_layout(request, user, "overview", f"Welcome back, {user.full_name.split(' ')[0]}", inner)


@router.get("/dashboard/wallets", response_class=HTMLResponse)
def wallets_page(request: Request):
    with Session(engine) as session:
        user = current_user(request, session)
        if user is None:
            return redirect("/login")
        methods = [m for m in active_payment_methods(session) if m.get("type") == "CRYPTO"]
    quote = get_btc_price(user.currency)
    btc_value = money(sats_to_cents(user.btc_balance_sats, quote.price), user.currency) if quote.available else "n/a"
    addresses = [
        "<tr>"
        f"<td>{html_escape(str(m.get('name') or ''))}</td>"
        f"<td>{html_escape(str(m.get('network') or ''))}</td>"
        f"<td><code>{html_escape(str(m.get('walletAddress') or ''))}</code></td>"
        "</tr>"
        for m in methods
    ]
    inner = f"""
      <div class='stats'>
        {stat_card(f"{user.currency} wallet", money(user.fiat_balance_cents, user.currency))}
        {stat_card("BTC wallet", btc(user.btc_balance_sats), f"≈ {btc_value}")}
        {stat_card("Profit wallet", money(user.profit_balance_cents, user.currency))}
        {stat_card("Invested", money(user.active_investment_cents, user.currency))}
      </div>
      <div class='card'>
        <h3>Deposit addresses</h3>
        {table(("Name", "Network", "Address"), addresses, "No deposit addresses are configured yet.")}
      </div>
    """
    return user_layout(request, user, "wallets", "Wallets", inner)


# ---------------------------------------------------------------------------
# Deposits
# ---------------------------------------------------------------------------
@router.get("/dashboard/deposit", response_class=HTMLResponse)
def deposit_page(request: Request):
    with Session(engine) as session:
        user = current_user(request, session)
        if user is None:
            return redirect("/login")
        methods = active_payment_methods(session)
        history = user_deposits(session, user.id)
    method_cards = []
    for method in methods:
        lines = [
            f"<div><span class='muted'>{html_escape(key)}:</span> {html_escape(str(method[key]))}</div>"
            for key in ("network", "walletAddress", "email", "username", "phone", "bankName", "accountName",
                        "accountNumber", "routingNumber", "swiftCode", "iban", "instructions")
            if method.get(key)
        ]
        method_cards.append(
            f"<div class='card'><h4>{html_escape(str(method.get('name') or ''))} "
            f"<span class='pill'>{html_escape(str(method.get('type') or ''))}</span></h4>{''.join(lines)}</div>"
        )
    options = select_options((str(m.get("id")), str(m.get("name") or m.get("type"))) for m in methods)
    inner = f"""
      <div class='grid'>
        <div>
          <h3>Payment methods</h3>
          {''.join(method_cards) or "<p class='muted'>No payment methods are available right now. Please contact support.</p>"}
        </div>
        <div class='card'>
          <h3>Submit a deposit</h3>
          <form method='post' action='/dashboard/deposit' enctype='multipart/form-data' class='stacked-form'>
            <label>Payment method</label><select name='payment_method_id'>{options}</select>
            <label>Amount ({html_escape(user.currency)})</label><input name='amount' type='number' step='0.01' min='0.01' required>
            <label>Payment proof</label><input name='proof' type='file' accept='image/*'>
            <label>or proof URL</label><input name='proof_url' type='url'>
            <button type='submit'>Submit deposit</button>
          </form>
        </div>
      </div>
      <div class='card'>
        <h3>Deposit history</h3>
        {table(("Date", "Type", "Details", "Amount", "Status"), _tx_rows(history, user), "No deposits yet.")}
      </div>
    """
    return user_layout(request, user, "deposit", "Deposit", inner)


@router.post("/dashboard/deposit")
async def deposit_submit(request: Request):
    form = await request.form()
    with Session(engine) as session:
        user = current_user(request, session)
        if user is None:
            return redirect("/login")
        try:
            proof_url = await upload_or_url(form, "proof", "proof_url", "deposits")
            method_id = form.get("payment_method_id") or None
            crypto_amount = crypto_currency = None
            method = next((m for m in active_payment_methods(session) if m.get("id") == method_id), None)
            value = parse_amount(form.get("amount"))
            if method and method.get("type") == "CRYPTO" and method.get("network") and value:
                converted = price_feed.fiat_to_crypto(value, str(method["network"]), user.currency)
                if converted is not None:
                    crypto_amount = f"{converted[0]:.8f}"
                    crypto_currency = str(method["network"]).upper()
            tx = submit_deposit(
                session,
                user.id,
                amount=form.get("amount"),
                proof_url=proof_url,
                payment_method_id=method_id,
                crypto_amount=crypto_amount,
                crypto_currency=crypto_currency,
            )
        except BrokerError as exc:
            set_notice(request, exc.message, "error")
            return redirect("/dashboard/deposit")
    set_notice(request, f"Deposit {tx.reference} submitted. We'll credit your account once it is approved.", "success")
    return redirect("/dashboard/deposit")


# ---------------------------------------------------------------------------
# Withdrawals
# ---------------------------------------------------------------------------
def _hold_panel(hold: dict, currency: str) -> str:
    if hold["kind"] == WithdrawalHoldError.WITHDRAWAL_FEE:
        title = f"Withdrawal fee required: {html_escape(currency)} {html_escape(hold.get('fee') or '')}"
    elif hold["kind"] == WithdrawalHoldError.TIER_UPGRADE:
        title = f"Tier upgrade required (current tier {html_escape(hold.get('tier') or '1')})"
    else:
        title = "Signal fee required"
    return (
        f"<div class='hold'><h3>{title}</h3><p>{html_escape(hold.get('instruction') or '')}</p>"
        "<p><a href='/contact'>Contact support</a></p></div>"
    )


@router.get("/dashboard/withdraw", response_class=HTMLResponse)
def withdraw_page(request: Request):
    with Session(engine) as session:
        user = current_user(request, session)
        if user is None:
            return redirect("/login")
        eligibility = check_withdrawal_eligibility(session, user.id)
        history = user_withdrawals(session, user.id)
    hold = parse_withdrawal_hold(request.session.pop("withdrawal_hold", "") or "")
    status_html = ""
    if not eligibility.eligible:
        link = " <a href='/dashboard/kyc'>Verify now</a>" if "KYC" in (eligibility.reason or "") else ""
        status_html = f"<div class='notice notice--error'>{html_escape(eligibility.reason or '')}{link}</div>"
    elif not eligibility.has_pin:
        status_html = (
            "<div class='notice notice--error'>Set up your transaction PIN before withdrawing. "
            "<a href='/dashboard/settings'>Settings</a></div>"
        )
    methods = select_options((m.value, m.label) for m in WithdrawalMethod)
    assets = select_options(((AssetType.FIAT.value, user.currency), (AssetType.BTC.value, "Bitcoin")))
    detail_inputs = "".join(
        f"<label>{html_escape(name)}</label><input name='{name}'>" for name in WITHDRAWAL_DETAIL_FIELDS
    )
    inner = f"""
      {_hold_panel(hold, user.currency) if hold else ''}
      {status_html}
      <div class='stats'>
        {stat_card("Available", money(eligibility.fiat_balance_cents, eligibility.currency))}
        {stat_card("Bitcoin", btc(eligibility.btc_balance_sats))}
        {stat_card("Tier", str(eligibility.tier))}
      </div>
      <div class='card'>
        <h3>Request a withdrawal</h3>
        <form method='post' action='/dashboard/withdraw' class='stacked-form'>
          <label>From balance</label><select name='balance_type'>{assets}</select>
          <label>Amount</label><input name='amount' type='number' step='any' min='0' required>
          <label>Method</label><select name='method'>{methods}</select>
          <p class='muted'>Fill in the destination fields for the chosen method.</p>
          {detail_inputs}
          <label>Transaction PIN</label><input name='pin' type='password' inputmode='numeric' maxlength='4' required>
          <button type='submit'>Request withdrawal</button>
        </form>
      </div>
      <div class='card'>
        <h3>Withdrawal history</h3>
        {table(("Date", "Type", "Details", "Amount", "Status"), _tx_rows(history, user), "No withdrawals yet.")}
      </div>
    """
    return user_layout(request, user, "withdraw", "Withdraw", inner)


@router.post("/dashboard/withdraw")
async def withdraw_submit(request: Request):
    form = await request.form()
    details = {name: form.get(name) for name in WITHDRAWAL_DETAIL_FIELDS if form.get(name)}
    with Session(engine) as session:
        user = current_user(request, session)
        if user is None:
            return redirect("/login")
        try:
            tx = request_withdrawal(
                session,
                user.id,
                balance_type=form.get("balance_type"),
                amount=form.get("amount"),
                method=form.get("method"),
                details=details,
                pin=form.get("pin"),
            )
        except WithdrawalHoldError as exc:
            request.session["withdrawal_hold"] = exc.message
            return redirect("/dashboard/withdraw")
        except BrokerError as exc:
            set_notice(request, exc.message, "error")
            return redirect("/dashboard/withdraw")
    set_notice(request, f"Withdrawal {tx.reference} submitted for review.", "success")
    return redirect("/dashboard/withdraw")


# ---------------------------------------------------------------------------
# Swap and trades
# ---------------------------------------------------------------------------
@router.get("/dashboard/swap", response_class=HTMLResponse)
def swap_page(request: Request, from_asset: str = "", amount_value: str = ""):
    with Session(engine) as session:
        user = current_user(request, session)
        if user is None:
            return redirect("/login")
        preview = ""
        if amount_value:
            try:
                quote = get_swap_quote(session, user.id, from_asset, amount_value)
                receive = btc(quote.to_amount) if quote.to_asset is AssetType.BTC else money(quote.to_amount, quote.currency)
                preview = (
                    f"<div class='card'><h3>Quote</h3><p>You receive <strong>{receive}</strong> "
                    f"at {html_escape(quote.currency)} {quote.rate:,.2f} per BTC.</p>"
                    "<form method='post' action='/dashboard/swap' class='actions'>"
                    f"<input type='hidden' name='from_asset' value='{html_escape(quote.from_asset.value)}'>"
                    f"<input type='hidden' name='amount' value='{html_escape(amount_value)}'>"
                    "<button type='submit'>Confirm swap</button></form></div>"
                )
            except BrokerError as exc:
                preview = f"<div class='notice notice--error'>{html_escape(exc.message)}</div>"
    price = get_btc_price(user.currency)
    price_html = (
        f"{html_escape(user.currency)} {price.price:,.2f} "
        f"<span class='muted'>({price.change_percent_24h:+.2f}% 24h)</span>"
        if price.available
        else html_escape(PRICE_UNAVAILABLE_MESSAGE)
    )
    assets = select_options(
        ((AssetType.FIAT.value, f"{user.currency} → BTC"), (AssetType.BTC.value, f"BTC → {user.currency}")),
        from_asset.upper() or AssetType.FIAT.value,
    )
    inner = f"""
      <div class='stats'>
        {stat_card("BTC price", price_html)}
        {stat_card(f"{user.currency} balance", money(user.fiat_balance_cents, user.currency))}
        {stat_card("BTC balance", btc(user.btc_balance_sats))}
      </div>
      <div class='card'>
        <form method='get' action='/dashboard/swap' class='stacked-form'>
          <label>Direction</label><select name='from_asset'>{assets}</select>
          <label>Amount</label><input name='amount_value' type='number' step='any' min='0' value='{html_escape(amount_value)}' required>
          <button type='submit'>Get quote</button>
        </form>
      </div>
      {preview}
    """
    return user_layout(request, user, "swap", "Swap", inner)


@router.post("/dashboard/swap")
def swap_submit(request: Request, from_asset: str = Form(""), amount: str = Form("")):
    with Session(engine) as session:
        user = current_user(request, session)
        if user is None:
            return redirect("/login")
        try:
            trade = execute_swap(session, user.id, from_asset, amount)
        except BrokerError as exc:
            set_notice(request, exc.message, "error")
            return redirect("/dashboard/swap")
    if trade.to_asset == AssetType.BTC.value:
        received = btc(trade.to_amount_minor)
    else:
        received = money(trade.to_amount_minor, trade.user_currency)
    set_notice(request, f"Swap complete. You received {received}.", "success")
    return redirect("/dashboard/trades")


@router.get("/dashboard/trades", response_class=HTMLResponse)
def trades_page(request: Request, page: int = 1):
    with Session(engine) as session:
        user = current_user(request, session)
        if user is None:
            return redirect("/login")
        trades = user_trades(session, user.id, page=page)
    rows = [
        "<tr>"
        f"<td>{when(trade.created_at)}</td>"
        f"<td>{status_pill(trade.type)}</td>"
        f"<td class='right'>{amount(trade.from_amount_minor, trade.from_asset, trade.user_currency)}</td>"
        f"<td class='right'>{amount(trade.to_amount_minor, trade.to_asset, trade.user_currency)}</td>"
        f"<td class='right'>{money(trade.rate_cents, trade.user_currency)}</td>"
        "</tr>"
        for trade in trades.items
    ]
    inner = (
        f"<div class='card'>{table(('Date', 'Type', 'Paid', 'Received', 'Rate'), rows, 'No trades yet.')}"
        f"{pagination_links(trades, '/dashboard/trades')}</div>"
    )
    return user_layout(request, user, "trades", "Trades", inner)


@router.get("/dashboard/transactions", response_class=HTMLResponse)
def transactions_page(request: Request, type: str = "", page: int = 1):
    with Session(engine) as session:
        user = current_user(request, session)
        if user is None:
            return redirect("/login")
        txs = user_transactions(session, user.id, tx_type=type or None, page=page)
        stats = user_transaction_stats(session, user.id)
    filters = select_options([("", "All types")] + [(t.value, t.value.title()) for t in TransactionType], type.upper())
    inner = f"""
      <div class='stats'>
        {stat_card("Deposited", money(stats['total_deposits_cents'], user.currency))}
        {stat_card("Withdrawn", money(stats['total_withdrawals_cents'], user.currency))}
        {stat_card("Profit", money(stats['total_profits_cents'], user.currency))}
        {stat_card("Bonuses", money(stats['total_bonuses_cents'], user.currency))}
      </div>
      <div class='card'>
        <form method='get' action='/dashboard/transactions' class='actions'>
          <select name='type' style='max-width:240px'>{filters}</select><button type='submit'>Filter</button>
        </form>
        {table(("Date", "Type", "Details", "Amount", "Status"), _tx_rows(txs.items, user), "No transactions found.")}
        {pagination_links(txs, '/dashboard/transactions', {'type': type})}
      </div>
    """
    return user_layout(request, user, "transactions", "Transactions", inner)


# ---------------------------------------------------------------------------
# Plans and investments
# ---------------------------------------------------------------------------
@router.get("/dashboard/plans", response_class=HTMLResponse)
def user_plans_page(request: Request):
    with Session(engine) as session:
        user = current_user(request, session)
        if user is None:
            return redirect("/login")
        plans = plans_with_subscription_status(session, user.id)
    assets = select_options(((AssetType.FIAT.value, f"{user.currency} balance"), (AssetType.BTC.value, "BTC balance")))
    cards = []
    for row in plans:
        plan = row["plan"]
        if row["is_subscribed"]:
            action = "<span class='pill pill--ACTIVE'>Active subscription</span>"
        else:
            action = (
                "<form method='post' action='/dashboard/plans/subscribe' class='stacked-form'>"
                f"<input type='hidden' name='plan_id' value='{plan.id}'>"
                f"<label>Amount ({html_escape(user.currency)})</label>"
                f"<input name='amount' type='number' step='0.01' min='{cents_to_decimal(plan.min_amount_cents)}' "
                f"max='{cents_to_decimal(plan.max_amount_cents)}' required>"
                f"<label>Pay from</label><select name='balance_type'>{assets}</select>"
                "<button type='submit'>Subscribe</button></form>"
            )
        cards.append(
            f"<div class='card'><h3>{html_escape(plan.name)}</h3>"
            f"<div class='stat-card__value'>{plan.roi_percentage:g}% ROI</div>"
            f"<p class='muted'>{plan.duration_days} days · {money(plan.min_amount_cents, user.currency)} to "
            f"{money(plan.max_amount_cents, user.currency)}</p>{action}</div>"
        )
    inner = f"<div class='grid'>{''.join(cards) or '<p class=muted>No plans are open right now.</p>'}</div>"
    return user_layout(request, user, "plans", "Investment plans", inner)


@router.post("/dashboard/plans/subscribe")
def subscribe_submit(
    request: Request,
    plan_id: str = Form(""),
    amount: str = Form(""),
    balance_type: str = Form("FIAT"),
):
    with Session(engine) as session:
        user = current_user(request, session)
        if user is None:
            return redirect("/login")
        try:
            subscribe_to_plan(session, user.id, plan_id=plan_id, amount=amount, balance_type=balance_type)
        except BrokerError as exc:
            set_notice(request, exc.message, "error")
            return redirect("/dashboard/plans")
    set_notice(request, "Subscription started.", "success")
    return redirect("/dashboard/investments")


@router.get("/dashboard/investments", response_class=HTMLResponse)
def investments_page(request: Request):
    with Session(engine) as session:
        user = current_user(request, session)
        if user is None:
            return redirect("/login")
        views = user_investments(session, user.id)
        stats = investment_stats(session, user.id)
    rows = []
    for view in views:
        inv = view.investment
        reclaim = ""
        if view.can_reclaim:
            reclaim = (
                f"<form method='post' action='/dashboard/investments/{inv.id}/reclaim' class='inline-form'>"
                "<button type='submit' class='good'>Reclaim capital</button></form>"
            )
        rows.append(
            "<tr>"
            f"<td>{html_escape(view.plan_name)}</td>"
            f"<td class='right'>{money(inv.invested_cents, user.currency)}</td>"
            f"<td class='right'>{money(inv.expected_return_cents, user.currency)}</td>"
            f"<td>{when(inv.end_date, '%b %d, %Y')}<div class='progress-bar'>"
            f"<div class='progress-bar__fill' style='width:{view.progress:.0f}%'></div></div>"
            f"<div class='muted'>{view.days_remaining} days left</div></td>"
            f"<td>{status_pill(inv.status)}</td>"
            f"<td>{reclaim}</td>"
            "</tr>"
        )
    inner = f"""
      <div class='stats'>
        {stat_card("Active", str(stats['active_count']))}
        {stat_card("Invested", money(stats['total_invested_cents'], user.currency))}
        {stat_card("Completed", str(stats['completed_count']))}
        {stat_card("Returns", money(stats['total_returns_cents'], user.currency))}
      </div>
      <div class='card'>
        {table(("Plan", "Invested", "Expected", "Ends", "Status", ""), rows, "You have no investments yet.")}
      </div>
    """
    return user_layout(request, user, "investments", "My investments", inner)


@router.post("/dashboard/investments/{investment_id}/reclaim")
def reclaim_submit(request: Request, investment_id: int):
    with Session(engine) as session:
        user = current_user(request, session)
        if user is None:
            return redirect("/login")
        try:
            inv = reclaim_capital(session, user.id, investment_id)
        except BrokerError as exc:
            set_notice(request, exc.message, "error")
            return redirect("/dashboard/investments")
        message = f"{money(inv.invested_cents, user.currency)} returned to your balance."
    set_notice(request, message, "success")
    return redirect("/dashboard/investments")


# ---------------------------------------------------------------------------
# KYC, referrals and settings
# ---------------------------------------------------------------------------
@router.get("/dashboard/kyc", response_class=HTMLResponse)
def kyc_page(request: Request):
    with Session(engine) as session:
        user = current_user(request, session)
        if user is None:
            return redirect("/login")
        kyc = get_user_kyc(session, user.id)
    state = display_status(kyc)
    if state == "verified":
        inner = "<div class='card'><h3>Your identity is verified</h3><p>Withdrawals are enabled on your account.</p></div>"
        return user_layout(request, user, "kyc", "Verification", inner)
    if state == "pending":
        inner = (
            "<div class='card'><h3>Verification in review</h3>"
            f"<p>Submitted {when(kyc.created_at)}. We'll email you once it has been reviewed.</p>"
            f"<img src='{html_escape(optimized_url(kyc.document_front_url, 320))}' alt='Document' style='max-width:320px'></div>"
        )
        return user_layout(request, user, "kyc", "Verification", inner)
    rejected = ""
    if state == "rejected":
        rejected = (
            "<div class='notice notice--error'>Your previous submission was declined: "
            f"{html_escape(kyc.rejection_reason or '')}. Please submit again.</div>"
        )
    doc_types = select_options((doc.value, doc.label) for doc in KYCDocumentType)
    inner = f"""
      {rejected}
      <div class='card'>
        <form method='post' action='/dashboard/kyc' enctype='multipart/form-data' class='stacked-form'>
          <label>Document type</label><select name='document_type'>{doc_types}</select>
          <label>Front of document</label><input name='document_front' type='file' accept='image/*'>
          <label>or front image URL</label><input name='front_url' type='url'>
          <label>Back of document (not needed for passports)</label><input name='document_back' type='file' accept='image/*'>
          <label>or back image URL</label><input name='back_url' type='url'>
          <label>Selfie holding the document</label><input name='selfie' type='file' accept='image/*'>
          <label>or selfie URL</label><input name='selfie_url' type='url'>
          <button type='submit'>Submit for review</button>
        </form>
      </div>
    """
    return user_layout(request, user, "kyc", "Verification", inner)


@router.post("/dashboard/kyc")
async def kyc_submit(request: Request):
    form = await request.form()
    with Session(engine) as session:
        user = current_user(request, session)
        if user is None:
            return redirect("/login")
        try:
            front = await upload_or_url(form, "document_front", "front_url", "kyc")
            back = await upload_or_url(form, "document_back", "back_url", "kyc")
            selfie = await upload_or_url(form, "selfie", "selfie_url", "kyc")
            submit_kyc(
                session,
                user.id,
                document_type=form.get("document_type"),
                front_url=front,
                back_url=back,
                selfie_url=selfie,
            )
        except BrokerError as exc:
            set_notice(request, exc.message, "error")
            return redirect("/dashboard/kyc")
    set_notice(request, "Verification submitted. We'll review it shortly.", "success")
    return redirect("/dashboard/kyc")


@router.get("/dashboard/referrals", response_class=HTMLResponse)
def referrals_page(request: Request):
    with Session(engine) as session:
        user = current_user(request, session)
        if user is None:
            return redirect("/login")
        summary = referral_summary(session, user.id)
    link = f"{APP_URL}/register?ref={summary['code']}"
    rows = [
        f"<tr><td>{html_escape(ref['name'])}</td><td>{html_escape(ref['email'])}</td><td>{when(ref['joined'], '%b %d, %Y')}</td></tr>"
        for ref in summary["referrals"]
    ]
    inner = f"""
      <div class='stats'>
        {stat_card("Your code", html_escape(summary['code']))}
        {stat_card("Referrals", str(summary['count']))}
      </div>
      <div class='card'><label>Share your link</label><input readonly value='{html_escape(link)}'></div>
      <div class='card'>{table(("Name", "Email", "Joined"), rows, "No referrals yet.")}</div>
    """
    return user_layout(request, user, "referrals", "Referrals", inner)


@router.get("/dashboard/settings", response_class=HTMLResponse)
def settings_page(request: Request):
    with Session(engine) as session:
        user = current_user(request, session)
        if user is None:
            return redirect("/login")
    pin_current = (
        "<label>Current PIN</label><input name='current_pin' type='password' inputmode='numeric' maxlength='4'>"
        if user.transaction_pin
        else "<p class='muted'>You have not set a transaction PIN yet.</p>"
    )
    inner = f"""
      <div class='grid'>
        <div class='card'>
          <h3>Profile</h3>
          <form method='post' action='/dashboard/settings/profile' class='stacked-form'>
            <label>Full name</label><input name='full_name' value='{html_escape(user.full_name)}' required>
            <label>Email</label><input value='{html_escape(user.email)}' disabled>
            <label>Phone</label><input name='phone' value='{html_escape(user.phone or '')}'>
            <label>Country</label><input name='country' value='{html_escape(user.country or '')}'>
            <label>City</label><input name='city' value='{html_escape(user.city or '')}'>
            <label>Address</label><input name='address' value='{html_escape(user.address or '')}'>
            <button type='submit'>Save profile</button>
          </form>
        </div>
        <div class='card'>
          <h3>Password</h3>
          <form method='post' action='/dashboard/settings/password' class='stacked-form'>
            <label>Current password</label><input name='current_password' type='password' required>
            <label>New password</label><input name='new_password' type='password' required>
            <label>Confirm new password</label><input name='confirm_password' type='password' required>
            <button type='submit'>Change password</button>
          </form>
        </div>
        <div class='card'>
          <h3>Transaction PIN</h3>
          <form method='post' action='/dashboard/settings/pin' class='stacked-form'>
            {pin_current}
            <label>New PIN</label><input name='new_pin' type='password' inputmode='numeric' maxlength='4' required>
            <label>Confirm PIN</label><input name='confirm_pin' type='password' inputmode='numeric' maxlength='4' required>
            <button type='submit'>Save PIN</button>
          </form>
        </div>
      </div>
    """
    return user_layout(request, user, "settings", "Settings", inner)


@router.post("/dashboard/settings/profile")
async def profile_submit(request: Request):
    form = await request.form()
    with Session(engine) as session:
        user = current_user(request, session)
        if user is None:
            return redirect("/login")
        try:
            update_profile(session, user.id, dict(form))
        except BrokerError as exc:
            set_notice(request, exc.message, "error")
            return redirect("/dashboard/settings")
    set_notice(request, "Profile updated.", "success")
    return redirect("/dashboard/settings")


@router.post("/dashboard/settings/password")
def password_submit(
    request: Request,
    current_password: str = Form(""),
    new_password: str = Form(""),
    confirm_password: str = Form(""),
):
    with Session(engine) as session:
        user = current_user(request, session)
        if user is None:
            return redirect("/login")
        try:
            change_password(session, user.id, current_password, new_password, confirm_password)
        except BrokerError as exc:
            set_notice(request, exc.message, "error")
            return redirect("/dashboard/settings")
    set_notice(request, "Password changed.", "success")
    return redirect("/dashboard/settings")


@router.post("/dashboard/settings/pin")
def pin_submit(
    request: Request,
    current_pin: str = Form(""),
    new_pin: str = Form(""),
    confirm_pin: str = Form(""),
):
    with Session(engine) as session:
        user = current_user(request, session)
        if user is None:
            return redirect("/login")
        try:
            change_transaction_pin(session, user.id, current_pin, new_pin, confirm_pin)
        except BrokerError as exc:
            set_notice(request, exc.message, "error")
            return redirect("/dashboard/settings")
    set_notice(request, "Transaction PIN saved.", "success")
    return redirect("/dashboard/settings")


# ---------------------------------------------------------------------------
# Where to buy crypto
# ---------------------------------------------------------------------------
@router.get("/dashboard/buy-crypto", response_class=HTMLResponse)
def buy_crypto_page(request: Request, country: str = ""):
    with Session(engine) as session:
        user = current_user(request, session)
        if user is None:
            return redirect("/login")
    code = country.upper() or country_code_for_name(user.country or "") or ""
    listing = exchanges_for_country(code)
    region = listing["region"]
    heading = (
        f"Exchanges for {html_escape(str(listing['country_name']))} ({html_escape(REGION_NAMES.get(region, region))})"
        if region
        else "Global exchanges"
    )
    cards = "".join(
        f"<div class='card'><h3><a href='{html_escape(ex.url)}' target='_blank' rel='noopener'>{html_escape(ex.name)}</a></h3>"
        f"<p>{html_escape(ex.description)}</p>"
        f"<p class='muted'>Fees: {html_escape(ex.fees)} · Speed: {html_escape(ex.speed)}</p>"
        f"<div class='actions'>{''.join(f'<span class=pill>{html_escape(m)}</span>' for m in ex.payment_methods)}</div></div>"
        for ex in listing["exchanges"]
    )
    inner = f"""
      <div class='card'>
        <p>Buy Bitcoin on one of these exchanges, then send it to a deposit address from the
        <a href='/dashboard/deposit'>deposit page</a>.</p>
        <form method='get' action='/dashboard/buy-crypto' class='actions'>
          <input name='country' placeholder='Country code, e.g. GB' value='{html_escape(code)}' style='max-width:240px'>
          <button type='submit'>Show exchanges</button>
        </form>
      </div>
      <h3>{heading}</h3>
      <div class='grid'>{cards}</div>
    """
    return user_layout(request, user, "buy-crypto", "Buy crypto", inner)


__all__ = ["router", "uploader", "upload_or_url"]
