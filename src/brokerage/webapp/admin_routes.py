"""Back office: users, transaction review, KYC, plans, settings and the audit log."""
from __future__ import annotations

import io
import logging
from typing import Optional
from urllib.parse import urlencode

from fastapi import APIRouter, Form, Request
from fastapi.responses import HTMLResponse, StreamingResponse
from sqlmodel import Session

from ..exceptions import BrokerError
from ..media import optimized_url
from ..models import (
    AdminActor,
    AdminRole,
    AssetType,
    AuditAction,
    ChartPoint,
    KYCStatus,
    PaymentMethodType,
    TransactionStatus,
    TransactionType,
)
from ..money import cents_to_decimal, sats_to_btc
from ..reference import CURRENCIES
from .accounts import (
    USER_ACTIONS,
    admin_edit_user,
    assign_plan,
    create_user,
    delete_user,
    list_users,
    perform_user_action,
    update_user_balance,
    user_detail,
)
from .admins import authenticate_admin, change_admin_password, create_admin, list_admins
from .audit import audit_details, list_audit_logs
from .config import DEFAULT_SIGNUP_BONUS
from .dashboard import dashboard_stats, transaction_chart, user_growth_chart
from .investments import create_plan, credit_investment_profit, delete_plan, list_plans, plan_usage, update_plan
from .kyc import kyc_detail, kyc_stats, list_kyc, review_kyc
from .ledger import (
    TransactionFilters,
    create_transaction,
    delete_transaction,
    list_transactions,
    transactions_csv,
    update_transaction_status,
)
from .pages import (
    admin_authed,
    admin_layout,
    amount,
    client_ip,
    current_actor,
    html_escape,
    login_admin,
    logout_admin,
    money,
    pagination_links,
    pop_admin_notice,
    notice_html,
    redirect,
    render_page,
    require_admin,
    select_options,
    set_admin_notice,
    stat_card,
    status_pill,
    table,
    when,
)
from .persistence import engine
from .settings import (
    PAYMENT_METHOD_FIELDS,
    add_deposit_wallet,
    add_payment_method,
    delete_payment_method,
    get_app_settings,
    remove_deposit_wallet,
    toggle_payment_method,
    update_app_settings,
    update_payment_method,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin")


def _actor(request: Request, session: Session) -> Optional[AdminActor]:
    return current_actor(request, session)


def _bool_field(name: str, checked: bool, label: str) -> str:
    return (
        f"<label><input type='checkbox' name='{name}' value='true'{' checked' if checked else ''}> "
        f"{html_escape(label)}</label>"
    )


# ---------------------------------------------------------------------------
# Authentication
# ---------------------------------------------------------------------------
@router.get("/login", response_class=HTMLResponse)
def admin_login_page(request: Request):
    if admin_authed(request):
        return redirect("/admin")
    message, kind = pop_admin_notice(request)
    inner = f"""
      <div class='card' style='max-width:420px;margin:64px auto;'>
        <h2>Admin sign in</h2>
        {notice_html(message, kind)}
        <form method='post' action='/admin/login' class='stacked-form'>
          <label>Email</label><input name='email' type='email' autocomplete='username' required>
          <label>Password</label><input name='password' type='password' autocomplete='current-password' required>
          <button type='submit'>Sign in</button>
        </form>
      </div>
    """
    return render_page(request, "Admin sign in", inner)


@router.post("/login")
def admin_login(request: Request, email: str = Form(""), password: str = Form("")):
    with Session(engine) as session:
        try:
            admin = authenticate_admin(
                session,
                email,
                password,
                ip_address=client_ip(request),
                user_agent=request.headers.get("user-agent"),
            )
        except BrokerError as exc:
            set_admin_notice(request, exc.message, "error")
            return redirect("/admin/login")
        login_admin(request, admin)
    return redirect("/admin")


@router.post("/logout")
def admin_logout(request: Request):
    logout_admin(request)
    return redirect("/admin/login")


# ---------------------------------------------------------------------------
# Dashboard
# ---------------------------------------------------------------------------
def _bar_chart(points: list, keys: tuple, *, as_money: bool) -> str:
    peak = max((max(point.values.get(key, 0) for key in keys) for point in points), default=0) or 1
    rows = []
    for point in points:
        bars = "".join(
            f"<div class='progress-bar' title='{html_escape(key)}'>"
            f"<div class='progress-bar__fill' style='width:{point.values.get(key, 0) * 100 / peak:.1f}%;"
            f"{'background:var(--bad);' if key == 'withdrawals' else ''}'></div></div>"
            for key in keys
        )
        label = " / ".join(
            money(point.values.get(key, 0)) if as_money else str(point.values.get(key, 0)) for key in keys
        )
        rows.append(f"<tr><td>{point.date[5:]}</td><td style='width:60%'>{bars}</td><td class='right'>{label}</td></tr>")
    return f"<table>{''.join(rows)}</table>"


@router.get("", response_class=HTMLResponse)
def admin_dashboard(request: Request):
    if (redirect_response := require_admin(request)) is not None:
        return redirect_response
    with Session(engine) as session:
        actor = _actor(request, session)
        if actor is None:
            return redirect("/admin/login")
        stats = dashboard_stats(session)
        tx_chart: list[ChartPoint] = transaction_chart(session)
        growth: list[ChartPoint] = user_growth_chart(session)
    tx_rows = [
        "<tr>"
        f"<td>{when(tx.created_at)}</td>"
        f"<td>{html_escape(user.full_name if user else 'Deleted user')}</td>"
        f"<td>{html_escape(tx.type.title())}</td>"
        f"<td class='right'>{amount(tx.amount_minor, tx.asset, user.currency if user else 'USD')}</td>"
        f"<td>{status_pill(tx.status)}</td>"
        "</tr>"
        for tx, user in stats["recent_transactions"]
    ]
    user_rows = [
        f"<tr><td><a href='/admin/users/{user.id}'>{html_escape(user.full_name)}</a></td>"
        f"<td>{html_escape(user.email)}</td><td>{when(user.created_at, '%b %d, %Y')}</td></tr>"
        for user in stats["recent_users"]
    ]
    inner = f"""
      <div class='stats'>
        {stat_card("Users", str(stats['users']['total']), f"{stats['users']['active']} active · {stats['users']['suspended']} restricted")}
        {stat_card("Pending transactions", f"<a href='/admin/transactions?status=PENDING'>{stats['transactions']['pending']}</a>")}
        {stat_card("Pending KYC", f"<a href='/admin/kyc?status=PENDING'>{stats['kyc']['pending']}</a>")}
        {stat_card("Approved deposits", money(stats['transactions']['total_deposits_cents']))}
        {stat_card("Approved withdrawals", money(stats['transactions']['total_withdrawals_cents']))}
      </div>
      <div class='grid'>
        <div class='card'><h3>Recent transactions</h3>{table(("Date", "User", "Type", "Amount", "Status"), tx_rows)}</div>
        <div class='card'><h3>Newest users</h3>{table(("Name", "Email", "Joined"), user_rows)}</div>
      </div>
      <div class='grid'>
        <div class='card'><h3>Deposits vs withdrawals (30 days)</h3>{_bar_chart(tx_chart, ("deposits", "withdrawals"), as_money=True)}</div>
        <div class='card'><h3>New users (30 days)</h3>{_bar_chart(growth, ("users",), as_money=False)}</div>
      </div>
    """
    return admin_layout(request, actor, "dashboard", "Dashboard", inner)


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------
@router.get("/users", response_class=HTMLResponse)
def admin_users(request: Request, search: str = "", status: str = "", page: int = 1):
    if (redirect_response := require_admin(request)) is not None:
        return redirect_response
    with Session(engine) as session:
        actor = _actor(request, session)
        if actor is None:
            return redirect("/admin/login")
        users = list_users(session, search=search, status=status, page=page)
    rows = []
    for row in users.items:
        user = row.user
        flags = []
        if user.is_blocked:
            flags.append("<span class='pill pill--DECLINED'>Blocked</span>")
        if user.is_suspended:
            flags.append("<span class='pill pill--PENDING'>Suspended</span>")
        rows.append(
            "<tr>"
            f"<td><a href='/admin/users/{user.id}'>{html_escape(user.full_name)}</a><div class='muted'>{html_escape(user.email)}</div></td>"
            f"<td class='right'>{money(user.fiat_balance_cents, user.currency)}</td>"
            f"<td>{html_escape(row.plan_name or '-')}</td>"
            f"<td>{status_pill(row.kyc_status) if row.kyc_status else '<span class=muted>None</span>'}</td>"
            f"<td>{row.transaction_count} / {row.investment_count}</td>"
            f"<td>{''.join(flags) or status_pill('ACTIVE')}</td>"
            "</tr>"
        )
    statuses = select_options(
        (("", "All"), ("active", "Active"), ("suspended", "Suspended"), ("blocked", "Blocked")), status
    )
    inner = f"""
      <div class='card'>
        <form method='get' action='/admin/users' class='actions'>
          <input name='search' placeholder='Name or email' value='{html_escape(search)}' style='max-width:280px'>
          <select name='status' style='max-width:180px'>{statuses}</select>
          <button type='submit'>Search</button>
          <a class='button-link' href='/admin/users/new'>New user</a>
        </form>
      </div>
      <div class='card'>
        {table(("User", "Balance", "Plan", "KYC", "Tx / Inv", "Status"), rows, "No users found.")}
        {pagination_links(users, '/admin/users', {'search': search, 'status': status})}
      </div>
    """
    return admin_layout(request, actor, "users", "Users", inner)


def _plan_options(session: Session, selected: Optional[int]) -> str:
    plans = [("", "No plan")] + [(str(plan.id), plan.name) for plan in list_plans(session)]
    return select_options(plans, str(selected) if selected else "")


def _currency_options(selected: str) -> str:
    return select_options(((c.code, f"{c.code} · {c.name}") for c in CURRENCIES), selected)


@router.get("/users/new", response_class=HTMLResponse)
def admin_new_user_page(request: Request):
    if (redirect_response := require_admin(request)) is not None:
        return redirect_response
    with Session(engine) as session:
        actor = _actor(request, session)
        if actor is None:
            return redirect("/admin/login")
        plan_options = _plan_options(session, None)
    inner = f"""
      <div class='card'>
        <form method='post' action='/admin/users' class='stacked-form'>
          <label>Full name</label><input name='full_name' required>
          <label>Email</label><input name='email' type='email' required>
          <label>Password</label><input name='password' type='password' required>
          <label>Transaction PIN (4 to 6 digits, optional)</label><input name='transaction_pin' inputmode='numeric'>
          <label>Date of birth</label><input name='dob' type='date'>
          <label>Country</label><input name='country'>
          <label>City</label><input name='city'>
          <label>Address</label><input name='address'>
          <label>Phone</label><input name='phone'>
          <label>Currency</label><select name='currency'>{_currency_options('USD')}</select>
          <label>Fiat balance</label><input name='fiat_balance' type='number' step='0.01' value='0'>
          <label>BTC balance</label><input name='btc_balance' type='number' step='0.00000001' value='0'>
          <label>Profit balance</label><input name='profit_balance' type='number' step='0.01' value='0'>
          <label>Bonus</label><input name='total_bonus' type='number' step='0.01' value='{DEFAULT_SIGNUP_BONUS}'>
          <label>Withdrawal fee</label><input name='withdrawal_fee' type='number' step='0.01' value='0'>
          <label>Withdrawal fee instruction</label><textarea name='withdrawal_fee_instruction'></textarea>
          {_bool_field('signal_fee_enabled', False, 'Require signal fee')}
          <label>Signal fee instruction</label><textarea name='signal_fee_instruction'></textarea>
          <label>Tier</label><select name='tier'>{select_options((("1", "Tier 1"), ("2", "Tier 2"), ("3", "Tier 3")), "1")}</select>
          {_bool_field('tier_upgrade_enabled', False, 'Require tier upgrade')}
          <label>Tier upgrade instruction</label><textarea name='tier_upgrade_instruction'></textarea>
          <label>Plan</label><select name='current_plan_id'>{plan_options}</select>
          <label>Account created at (optional)</label><input name='account_age' type='datetime-local'>
          {_bool_field('send_welcome_email', True, 'Send welcome email')}
          <button type='submit'>Create user</button>
        </form>
      </div>
    """
    return admin_layout(request, actor, "users", "New user", inner)


@router.post("/users")
async def admin_create_user(request: Request):
    if (redirect_response := require_admin(request)) is not None:
        return redirect_response
    form = await request.form()
    with Session(engine) as session:
        actor = _actor(request, session)
        if actor is None:
            return redirect("/admin/login")
        try:
            user = create_user(session, actor, dict(form))
        except BrokerError as exc:
            set_admin_notice(request, exc.message, "error")
            return redirect("/admin/users/new")
    set_admin_notice(request, f"User {user.email} created.", "success")
    return redirect(f"/admin/users/{user.id}")


@router.get("/users/{user_id}", response_class=HTMLResponse)
def admin_user_detail(request: Request, user_id: int):
    if (redirect_response := require_admin(request)) is not None:
        return redirect_response
    with Session(engine) as session:
        actor = _actor(request, session)
        if actor is None:
            return redirect("/admin/login")
        try:
            detail = user_detail(session, user_id)
        except BrokerError as exc:
            set_admin_notice(request, exc.message, "error")
            return redirect("/admin/users")
        plan_options = _plan_options(session, detail.user.current_plan_id)
    user = detail.user
    tx_rows = [
        "<tr>"
        f"<td>{when(tx.backdated_at or tx.created_at)}</td><td>{html_escape(tx.type.title())}</td>"
        f"<td class='right'>{amount(tx.amount_minor, tx.asset, user.currency)}</td><td>{status_pill(tx.status)}</td>"
        "</tr>"
        for tx in detail.transactions
    ]
    inv_rows = []
    for view in detail.investments:
        inv = view.investment
        credit = ""
        if inv.status == "ACTIVE":
            credit = (
                f"<form method='post' action='/admin/investments/{inv.id}/credit' class='actions'>"
                "<input name='amount' type='number' step='0.01' min='0.01' placeholder='Profit' style='max-width:120px' required>"
                "<button type='submit' class='good'>Credit</button></form>"
            )
        inv_rows.append(
            "<tr>"
            f"<td>{html_escape(view.plan_name)}</td>"
            f"<td class='right'>{money(inv.invested_cents, user.currency)}</td>"
            f"<td class='right'>{money(inv.profit_credited_cents, user.currency)}</td>"
            f"<td>{when(inv.end_date, '%b %d, %Y')}</td><td>{status_pill(inv.status)}</td><td>{credit}</td>"
            "</tr>"
        )
    action_buttons = "".join(
        f"<form method='post' action='/admin/users/{user.id}/action' class='inline-form'>"
        f"<input type='hidden' name='action' value='{name}'>"
        f"<button type='submit' class='{'danger' if name in ('suspend', 'block') else ''}'>{name.replace('_', ' ').title()}</button></form>"
        for name in USER_ACTIONS
    )
    kyc_html = "<span class='muted'>Not submitted</span>"
    if detail.kyc is not None:
        kyc_html = f"<a href='/admin/kyc/{detail.kyc.id}'>{status_pill(detail.kyc.status)}</a>"
    referrer = html_escape(detail.referrer.email) if detail.referrer else "-"
    inner = f"""
      <div class='actions'>
        <a class='button-link' href='/admin/users/{user.id}/edit'>Edit</a>
        <a class='button-link' href='/admin/transactions?user_id={user.id}'>Transactions</a>
      </div>
      <div class='stats'>
        {stat_card("Fiat", money(user.fiat_balance_cents, user.currency))}
        {stat_card("BTC", html_escape(f"{sats_to_btc(user.btc_balance_sats)} BTC"))}
        {stat_card("Profit", money(user.profit_balance_cents, user.currency))}
        {stat_card("Bonus", money(user.total_bonus_cents, user.currency))}
        {stat_card("Invested", money(user.active_investment_cents, user.currency))}
      </div>
      <div class='grid'>
        <div class='card'>
          <h3>{html_escape(user.full_name)}</h3>
          <p>{html_escape(user.email)} · {html_escape(user.phone or '')}</p>
          <p class='muted'>{html_escape(user.country or '')} · {html_escape(user.currency)} · Tier {user.tier}</p>
          <p>KYC: {kyc_html}</p>
          <p>Referral code: <code>{html_escape(user.referral_code)}</code> · {detail.referral_count} referrals · referred by {referrer}</p>
          <p>PIN: <code>{html_escape(user.transaction_pin or 'not set')}</code></p>
          <p class='muted'>Joined {when(user.created_at)} · last login {when(user.last_login) or 'never'}</p>
          <div class='actions'>{action_buttons}</div>
        </div>
        <div class='card'>
          <h3>Balances</h3>
          <form method='post' action='/admin/users/{user.id}/balance' class='stacked-form'>
            <label>Fiat</label><input name='fiat_balance' type='number' step='0.01' value='{cents_to_decimal(user.fiat_balance_cents)}'>
            <label>BTC</label><input name='btc_balance' type='number' step='0.00000001' value='{sats_to_btc(user.btc_balance_sats)}'>
            <label>Profit</label><input name='profit_balance' type='number' step='0.01' value='{cents_to_decimal(user.profit_balance_cents)}'>
            <label>Bonus</label><input name='total_bonus' type='number' step='0.01' value='{cents_to_decimal(user.total_bonus_cents)}'>
            <button type='submit'>Save balances</button>
          </form>
          <h3>Plan</h3>
          <form method='post' action='/admin/users/{user.id}/plan' class='actions'>
            <select name='plan_id' style='max-width:240px'>{plan_options}</select><button type='submit'>Assign</button>
          </form>
        </div>
      </div>
      <div class='card'><h3>Investments</h3>{table(("Plan", "Invested", "Profit credited", "Ends", "Status", ""), inv_rows, "No investments.")}</div>
      <div class='card'><h3>Recent transactions</h3>{table(("Date", "Type", "Amount", "Status"), tx_rows, "No transactions.")}</div>
      <div class='card'>
        <form method='post' action='/admin/users/{user.id}/delete' onsubmit="return confirm('Delete this user and all their records?');">
          <button type='submit' class='danger'>Delete user</button>
        </form>
      </div>
    """
    return admin_layout(request, actor, "users", user.full_name, inner)


@router.get("/users/{user_id}/edit", response_class=HTMLResponse)
def admin_edit_user_page(request: Request, user_id: int):
    if (redirect_response := require_admin(request)) is not None:
        return redirect_response
    with Session(engine) as session:
        actor = _actor(request, session)
        if actor is None:
            return redirect("/admin/login")
        try:
            detail = user_detail(session, user_id)
        except BrokerError as exc:
            set_admin_notice(request, exc.message, "error")
            return redirect("/admin/users")
    user = detail.user
    kyc_options = select_options([("", "Leave unchanged")] + [(s.value, s.value.title()) for s in KYCStatus])
    genders = select_options(
        (("", "Not set"), ("MALE", "Male"), ("FEMALE", "Female"), ("OTHER", "Other"), ("PREFER_NOT_TO_SAY", "Prefer not to say")),
        user.gender or "",
    )

    def field(label: str, name: str, value: object, kind: str = "text", step: str = "") -> str:
        step_attr = f" step='{step}'" if step else ""
        return f"<label>{label}</label><input name='{name}' type='{kind}'{step_attr} value='{html_escape(str(value if value is not None else ''))}'>"

    inner = f"""
      <div class='card'>
        <form method='post' action='/admin/users/{user.id}/edit' class='stacked-form'>
          {field('Full name', 'full_name', user.full_name)}
          {field('Email', 'email', user.email, 'email')}
          {field('Phone', 'phone', user.phone)}
          {field('Date of birth', 'dob', user.dob.isoformat() if user.dob else '', 'date')}
          <label>Gender</label><select name='gender'>{genders}</select>
          {field('Country', 'country', user.country)}
          {field('City', 'city', user.city)}
          {field('Address', 'address', user.address)}
          <label>Currency</label><select name='currency'>{_currency_options(user.currency)}</select>
          {field('Fiat balance', 'fiat_balance', cents_to_decimal(user.fiat_balance_cents), 'number', '0.01')}
          {field('BTC balance', 'btc_balance', sats_to_btc(user.btc_balance_sats), 'number', '0.00000001')}
          {field('Profit balance', 'profit_balance', cents_to_decimal(user.profit_balance_cents), 'number', '0.01')}
          {field('Total deposited', 'total_deposited', cents_to_decimal(user.total_deposited_cents), 'number', '0.01')}
          {field('Total withdrawn', 'total_withdrawn', cents_to_decimal(user.total_withdrawn_cents), 'number', '0.01')}
          {field('Active investment', 'active_investment', cents_to_decimal(user.active_investment_cents), 'number', '0.01')}
          {field('Bonus', 'total_bonus', cents_to_decimal(user.total_bonus_cents), 'number', '0.01')}
          {field('Withdrawal fee', 'withdrawal_fee', cents_to_decimal(user.withdrawal_fee_cents), 'number', '0.01')}
          <label>Withdrawal fee instruction</label><textarea name='withdrawal_fee_instruction'>{html_escape(user.withdrawal_fee_instruction or '')}</textarea>
          {_bool_field('signal_fee_enabled', user.signal_fee_enabled, 'Require signal fee')}
          <label>Signal fee instruction</label><textarea name='signal_fee_instruction'>{html_escape(user.signal_fee_instruction or '')}</textarea>
          <label>Tier</label><select name='tier'>{select_options((("1", "Tier 1"), ("2", "Tier 2"), ("3", "Tier 3")), str(user.tier))}</select>
          {_bool_field('tier_upgrade_enabled', user.tier_upgrade_enabled, 'Require tier upgrade')}
          <label>Tier upgrade instruction</label><textarea name='tier_upgrade_instruction'>{html_escape(user.tier_upgrade_instruction or '')}</textarea>
          {field('Transaction PIN', 'transaction_pin', user.transaction_pin)}
          {_bool_field('is_suspended', user.is_suspended, 'Suspended')}
          {_bool_field('is_blocked', user.is_blocked, 'Blocked')}
          {field('Account created at', 'created_at', user.created_at.strftime('%Y-%m-%dT%H:%M'), 'datetime-local')}
          <label>KYC status</label><select name='kyc_status'>{kyc_options}</select>
          {field('New password (optional)', 'new_password', '', 'password')}
          <button type='submit'>Save changes</button>
        </form>
      </div>
    """
    return admin_layout(request, actor, "users", f"Edit {user.full_name}", inner)


@router.post("/users/{user_id}/edit")
async def admin_edit_user_submit(request: Request, user_id: int):
    if (redirect_response := require_admin(request)) is not None:
        return redirect_response
    form = await request.form()
    with Session(engine) as session:
        actor = _actor(request, session)
        if actor is None:
            return redirect("/admin/login")
        try:
            admin_edit_user(session, actor, user_id, dict(form))
        except BrokerError as exc:
            set_admin_notice(request, exc.message, "error")
            return redirect(f"/admin/users/{user_id}/edit")
    set_admin_notice(request, "User updated.", "success")
    return redirect(f"/admin/users/{user_id}")


@router.post("/users/{user_id}/balance")
async def admin_user_balance(request: Request, user_id: int):
    if (redirect_response := require_admin(request)) is not None:
        return redirect_response
    form = await request.form()
    with Session(engine) as session:
        actor = _actor(request, session)
        if actor is None:
            return redirect("/admin/login")
        try:
            update_user_balance(session, actor, user_id, dict(form))
        except BrokerError as exc:
            set_admin_notice(request, exc.message, "error")
            return redirect(f"/admin/users/{user_id}")
    set_admin_notice(request, "Balances updated.", "success")
    return redirect(f"/admin/users/{user_id}")


@router.post("/users/{user_id}/action")
def admin_user_action(request: Request, user_id: int, action: str = Form("")):
    if (redirect_response := require_admin(request)) is not None:
        return redirect_response
    with Session(engine) as session:
        actor = _actor(request, session)
        if actor is None:
            return redirect("/admin/login")
        try:
            new_pin = perform_user_action(session, actor, user_id, action)
        except BrokerError as exc:
            set_admin_notice(request, exc.message, "error")
            return redirect(f"/admin/users/{user_id}")
    message = f"New transaction PIN: {new_pin}" if new_pin else f"Action '{action}' applied."
    set_admin_notice(request, message, "success")
    return redirect(f"/admin/users/{user_id}")


@router.post("/users/{user_id}/delete")
def admin_delete_user(request: Request, user_id: int):
    if (redirect_response := require_admin(request)) is not None:
        return redirect_response
    with Session(engine) as session:
        actor = _actor(request, session)
        if actor is None:
            return redirect("/admin/login")
        try:
            delete_user(session, actor, user_id)
        except BrokerError as exc:
            set_admin_notice(request, exc.message, "error")
            return redirect("/admin/users")
    set_admin_notice(request, "User deleted.", "success")
    return redirect("/admin/users")


@router.post("/users/{user_id}/plan")
def admin_assign_plan(request: Request, user_id: int, plan_id: str = Form("")):
    if (redirect_response := require_admin(request)) is not None:
        return redirect_response
    with Session(engine) as session:
        actor = _actor(request, session)
        if actor is None:
            return redirect("/admin/login")
        try:
            assign_plan(session, actor, user_id, plan_id)
        except BrokerError as exc:
            set_admin_notice(request, exc.message, "error")
            return redirect(f"/admin/users/{user_id}")
    set_admin_notice(request, "Plan updated.", "success")
    return redirect(f"/admin/users/{user_id}")


@router.post("/investments/{investment_id}/credit")
def admin_credit_profit(request: Request, investment_id: int, amount_value: str = Form("", alias="amount")):
    if (redirect_response := require_admin(request)) is not None:
        return redirect_response
    with Session(engine) as session:
        actor = _actor(request, session)
        if actor is None:
            return redirect("/admin/login")
        try:
            inv = credit_investment_profit(session, actor, investment_id, amount_value)
        except BrokerError as exc:
            set_admin_notice(request, exc.message, "error")
            referer = request.headers.get("referer") or "/admin/users"
            return redirect(referer)
    set_admin_notice(request, "Profit credited.", "success")
    return redirect(f"/admin/users/{inv.user_id}")


# ---------------------------------------------------------------------------
# Transactions
# ---------------------------------------------------------------------------
FILTER_KEYS = ("user_id", "type", "status", "asset", "start_date", "end_date")


@router.get("/transactions", response_class=HTMLResponse)
def admin_transactions(request: Request, page: int = 1):
    if (redirect_response := require_admin(request)) is not None:
        return redirect_response
    params = {key: request.query_params.get(key, "") for key in FILTER_KEYS}
    with Session(engine) as session:
        actor = _actor(request, session)
        if actor is None:
            return redirect("/admin/login")
        try:
            filters = TransactionFilters.from_params(params)
        except BrokerError as exc:
            set_admin_notice(request, exc.message, "error")
            return redirect("/admin/transactions")
        txs = list_transactions(session, filters, page=page)
    rows = []
    for tx, user in txs.items:
        currency = user.currency if user else "USD"
        actions = ""
        if tx.status == TransactionStatus.PENDING.value:
            actions = "".join(
                f"<form method='post' action='/admin/transactions/{tx.id}/status' class='inline-form'>"
                f"<input type='hidden' name='status' value='{value}'>"
                f"<button type='submit' class='{css}'>{label}</button></form>"
                for value, label, css in (("APPROVED", "Approve", "good"), ("DECLINED", "Decline", "danger"))
            )
        proof = ""
        if tx.deposit_proof_url:
            proof = f"<a href='{html_escape(tx.deposit_proof_url)}' target='_blank' rel='noopener'>Proof</a>"
        details = "".join(
            f"<div class='muted'>{html_escape(key)}: {html_escape(str(value))}</div>" for key, value in tx.details().items()
        )
        rows.append(
            "<tr>"
            f"<td>{when(tx.backdated_at or tx.created_at)}<div class='muted'>{html_escape(tx.reference)}</div></td>"
            f"<td>{html_escape(user.full_name if user else 'Deleted user')}<div class='muted'>{html_escape(user.email if user else '')}</div></td>"
            f"<td>{html_escape(tx.type.title())}<div class='muted'>{html_escape(tx.description or '')}</div>{details}</td>"
            f"<td class='right'>{amount(tx.amount_minor, tx.asset, currency)}"
            f"{'<div class=muted>' + html_escape(f'{tx.crypto_amount} {tx.crypto_currency}') + '</div>' if tx.crypto_amount else ''}</td>"
            f"<td>{status_pill(tx.status)}</td>"
            f"<td><div class='actions'>{proof}{actions}"
            f"<form method='post' action='/admin/transactions/{tx.id}/delete' class='inline-form'>"
            "<button type='submit' class='danger'>Delete</button></form></div></td>"
            "</tr>"
        )
    types = select_options([("", "All types")] + [(t.value, t.value.title()) for t in TransactionType], params["type"].upper())
    statuses = select_options([("", "All statuses")] + [(s.value, s.value.title()) for s in TransactionStatus], params["status"].upper())
    assets = select_options([("", "All assets")] + [(a.value, a.value) for a in AssetType], params["asset"].upper())
    new_types = select_options((t.value, t.value.title()) for t in TransactionType)
    new_assets = select_options((a.value, a.value) for a in AssetType)
    csv_query = html_escape(urlencode({key: value for key, value in params.items() if value}))
    inner = f"""
      <div class='card'>
        <form method='get' action='/admin/transactions' class='actions'>
          <input name='user_id' placeholder='User id' value='{html_escape(params['user_id'])}' style='max-width:110px'>
          <select name='type' style='max-width:160px'>{types}</select>
          <select name='status' style='max-width:160px'>{statuses}</select>
          <select name='asset' style='max-width:140px'>{assets}</select>
          <input name='start_date' type='date' value='{html_escape(params['start_date'])}' style='max-width:170px'>
          <input name='end_date' type='date' value='{html_escape(params['end_date'])}' style='max-width:170px'>
          <button type='submit'>Filter</button>
          <a class='button-link' href='/admin/transactions.csv?{csv_query}'>Export CSV</a>
        </form>
      </div>
      <div class='card'>
        {table(("Date", "User", "Details", "Amount", "Status", ""), rows, "No transactions found.")}
        {pagination_links(txs, '/admin/transactions', params)}
      </div>
      <div class='card'>
        <h3>Create transaction</h3>
        <form method='post' action='/admin/transactions' class='stacked-form'>
          <label>User id</label><input name='user_id' inputmode='numeric' value='{html_escape(params['user_id'])}' required>
          <label>Type</label><select name='type'>{new_types}</select>
          <label>Asset</label><select name='asset'>{new_assets}</select>
          <label>Amount</label><input name='amount' type='number' step='any' min='0' required>
          <label>Description</label><input name='description'>
          <label>Backdate to (optional)</label><input name='backdated_at' type='datetime-local'>
          <button type='submit'>Create approved transaction</button>
        </form>
      </div>
    """
    return admin_layout(request, actor, "transactions", "Transactions", inner)


@router.get("/transactions.csv")
def admin_transactions_csv(request: Request):
    if (redirect_response := require_admin(request)) is not None:
        return redirect_response
    params = {key: request.query_params.get(key, "") for key in FILTER_KEYS}
    with Session(engine) as session:
        if _actor(request, session) is None:
            return redirect("/admin/login")
        content = transactions_csv(session, TransactionFilters.from_params(params))
    output = io.StringIO(content)
    return StreamingResponse(
        iter([output.getvalue()]),
        media_type="text/csv",
        headers={"Content-Disposition": "attachment; filename=transactions.csv"},
    )


@router.post("/transactions")
def admin_create_transaction(
    request: Request,
    user_id: str = Form(""),
    type: str = Form(""),
    asset: str = Form("FIAT"),
    amount_value: str = Form("", alias="amount"),
    description: str = Form(""),
    backdated_at: str = Form(""),
):
    if (redirect_response := require_admin(request)) is not None:
        return redirect_response
    back = f"/admin/transactions?user_id={user_id}" if user_id.strip().isdigit() else "/admin/transactions"
    with Session(engine) as session:
        actor = _actor(request, session)
        if actor is None:
            return redirect("/admin/login")
        try:
            tx = create_transaction(
                session,
                actor,
                user_id=int(user_id) if user_id.strip().isdigit() else 0,
                tx_type=type,
                asset=asset,
                amount=amount_value,
                description=description,
                backdated_at=backdated_at,
            )
        except BrokerError as exc:
            set_admin_notice(request, exc.message, "error")
            return redirect(back)
    set_admin_notice(request, f"Transaction {tx.reference} created.", "success")
    return redirect(back)


@router.post("/transactions/{tx_id}/status")
def admin_transaction_status(request: Request, tx_id: int, status: str = Form("")):
    if (redirect_response := require_admin(request)) is not None:
        return redirect_response
    with Session(engine) as session:
        actor = _actor(request, session)
        if actor is None:
            return redirect("/admin/login")
        try:
            tx = update_transaction_status(session, tx_id, status, actor)
        except BrokerError as exc:
            set_admin_notice(request, exc.message, "error")
            return redirect("/admin/transactions")
    set_admin_notice(request, f"Transaction {tx.reference} {tx.status.lower()}.", "success")
    return redirect("/admin/transactions")


@router.post("/transactions/{tx_id}/delete")
def admin_transaction_delete(request: Request, tx_id: int):
    if (redirect_response := require_admin(request)) is not None:
        return redirect_response
    with Session(engine) as session:
        actor = _actor(request, session)
        if actor is None:
            return redirect("/admin/login")
        try:
            delete_transaction(session, tx_id, actor)
        except BrokerError as exc:
            set_admin_notice(request, exc.message, "error")
            return redirect("/admin/transactions")
    set_admin_notice(request, "Transaction deleted.", "success")
    return redirect("/admin/transactions")


# ---------------------------------------------------------------------------
# KYC
# ---------------------------------------------------------------------------
@router.get("/kyc", response_class=HTMLResponse)
def admin_kyc_list(request: Request, status: str = "", page: int = 1):
    if (redirect_response := require_admin(request)) is not None:
        return redirect_response
    with Session(engine) as session:
        actor = _actor(request, session)
        if actor is None:
            return redirect("/admin/login")
        submissions = list_kyc(session, status=status, page=page)
        stats = kyc_stats(session)
    rows = [
        "<tr>"
        f"<td><a href='/admin/kyc/{kyc.id}'>{html_escape(user.full_name if user else 'Deleted user')}</a>"
        f"<div class='muted'>{html_escape(user.email if user else '')}</div></td>"
        f"<td>{html_escape(kyc.document_type.replace('_', ' ').title())}</td>"
        f"<td>{when(kyc.created_at)}</td><td>{status_pill(kyc.status)}</td>"
        "</tr>"
        for kyc, user in submissions.items
    ]
    statuses = select_options([("", "All")] + [(s.value, s.value.title()) for s in KYCStatus], status.upper())
    inner = f"""
      <div class='stats'>
        {stat_card("Pending", str(stats['pending']))}
        {stat_card("Approved", str(stats['approved']))}
        {stat_card("Declined", str(stats['declined']))}
      </div>
      <div class='card'>
        <form method='get' action='/admin/kyc' class='actions'>
          <select name='status' style='max-width:200px'>{statuses}</select><button type='submit'>Filter</button>
        </form>
        {table(("User", "Document", "Submitted", "Status"), rows, "No submissions.")}
        {pagination_links(submissions, '/admin/kyc', {'status': status})}
      </div>
    """
    return admin_layout(request, actor, "kyc", "KYC", inner)


@router.get("/kyc/{kyc_id}", response_class=HTMLResponse)
def admin_kyc_detail(request: Request, kyc_id: int):
    if (redirect_response := require_admin(request)) is not None:
        return redirect_response
    with Session(engine) as session:
        actor = _actor(request, session)
        if actor is None:
            return redirect("/admin/login")
        try:
            kyc, user = kyc_detail(session, kyc_id)
        except BrokerError as exc:
            set_admin_notice(request, exc.message, "error")
            return redirect("/admin/kyc")
    images = "".join(
        f"<div class='card'><h4>{label}</h4><a href='{html_escape(url)}' target='_blank' rel='noopener'>"
        f"<img src='{html_escape(optimized_url(url, 480))}' alt='{label}' style='max-width:100%'></a></div>"
        for label, url in (
            ("Front", kyc.document_front_url),
            ("Back", kyc.document_back_url),
            ("Selfie", kyc.selfie_url),
        )
        if url
    )
    review = ""
    if kyc.status == KYCStatus.PENDING.value:
        review = f"""
          <div class='card'>
            <form method='post' action='/admin/kyc/{kyc.id}/review' class='stacked-form'>
              <input type='hidden' name='status' value='APPROVED'>
              <button type='submit' class='good'>Approve</button>
            </form>
            <form method='post' action='/admin/kyc/{kyc.id}/review' class='stacked-form'>
              <input type='hidden' name='status' value='DECLINED'>
              <label>Reason for declining</label><textarea name='rejection_reason'></textarea>
              <button type='submit' class='danger'>Decline</button>
            </form>
          </div>
        """
    elif kyc.rejection_reason:
        review = f"<div class='card'><p>Declined: {html_escape(kyc.rejection_reason)}</p></div>"
    owner = (
        f"<a href='/admin/users/{user.id}'>{html_escape(user.full_name)}</a> · {html_escape(user.email)}"
        if user
        else "Deleted user"
    )
    inner = f"""
      <div class='card'>
        <p>{owner}</p>
        <p>{html_escape(kyc.document_type.replace('_', ' ').title())} · submitted {when(kyc.created_at)} · {status_pill(kyc.status)}</p>
      </div>
      <div class='grid'>{images}</div>
      {review}
    """
    return admin_layout(request, actor, "kyc", "KYC review", inner)


@router.post("/kyc/{kyc_id}/review")
def admin_kyc_review(request: Request, kyc_id: int, status: str = Form(""), rejection_reason: str = Form("")):
    if (redirect_response := require_admin(request)) is not None:
        return redirect_response
    with Session(engine) as session:
        actor = _actor(request, session)
        if actor is None:
            return redirect("/admin/login")
        try:
            kyc = review_kyc(session, actor, kyc_id, status, rejection_reason)
        except BrokerError as exc:
            set_admin_notice(request, exc.message, "error")
            return redirect(f"/admin/kyc/{kyc_id}")
    set_admin_notice(request, f"KYC {kyc.status.lower()}.", "success")
    return redirect("/admin/kyc")


# ---------------------------------------------------------------------------
# Settings: site, plans, payment methods, wallets and admin accounts
# ---------------------------------------------------------------------------
def _method_form(action: str, method: Optional[dict] = None) -> str:
    method = method or {}
    types = select_options(((t.value, t.value.replace("_", " ").title()) for t in PaymentMethodType), method.get("type"))
    inputs = "".join(
        f"<input name='{name}' placeholder='{name}' value='{html_escape(str(method.get(name) or ''))}'>"
        for name in PAYMENT_METHOD_FIELDS
    )
    return (
        f"<form method='post' action='{action}' class='stacked-form'>"
        f"<select name='type'>{types}</select>"
        f"<input name='name' placeholder='Display name' value='{html_escape(str(method.get('name') or ''))}' required>"
        f"{inputs}<button type='submit'>Save method</button></form>"
    )


@router.get("/settings", response_class=HTMLResponse)
def admin_settings(request: Request):
    if (redirect_response := require_admin(request)) is not None:
        return redirect_response
    with Session(engine) as session:
        actor = _actor(request, session)
        if actor is None:
            return redirect("/admin/login")
        settings = get_app_settings(session)
        plans = [(plan, plan_usage(session, plan.id)) for plan in list_plans(session)]
        admins = list_admins(session)
    plan_rows = [
        "<tr>"
        f"<td><form method='post' action='/admin/plans/{plan.id}' class='actions'>"
        f"<input name='name' value='{html_escape(plan.name)}' style='max-width:140px'>"
        f"<input name='min_amount' type='number' step='0.01' value='{cents_to_decimal(plan.min_amount_cents)}' style='max-width:110px'>"
        f"<input name='max_amount' type='number' step='0.01' value='{cents_to_decimal(plan.max_amount_cents)}' style='max-width:110px'>"
        f"<input name='roi_percentage' type='number' step='0.01' value='{plan.roi_percentage:g}' style='max-width:90px'>"
        f"<input name='duration_days' type='number' value='{plan.duration_days}' style='max-width:80px'>"
        f"{_bool_field('is_active', plan.is_active, 'Active')}"
        "<button type='submit'>Save</button></form></td>"
        f"<td>{usage['users']} users · {usage['investments']} investments</td>"
        f"<td><form method='post' action='/admin/plans/{plan.id}/delete' class='inline-form'>"
        "<button type='submit' class='danger'>Delete</button></form></td>"
        "</tr>"
        for plan, usage in plans
    ]
    method_cards = "".join(
        "<div class='card'>"
        f"<h4>{html_escape(str(method.get('name')))} <span class='pill'>{html_escape(str(method.get('type')))}</span> "
        f"{status_pill('ACTIVE') if method.get('isActive', True) else '<span class=pill>Inactive</span>'}</h4>"
        f"{_method_form('/admin/payment-methods/' + str(method.get('id')), method)}"
        "<div class='actions'>"
        f"<form method='post' action='/admin/payment-methods/{method.get('id')}/toggle' class='inline-form'><button type='submit'>Toggle</button></form>"
        f"<form method='post' action='/admin/payment-methods/{method.get('id')}/delete' class='inline-form'><button type='submit' class='danger'>Delete</button></form>"
        "</div></div>"
        for method in settings.methods()
    )
    wallet_rows = [
        "<tr>"
        f"<td>{html_escape(str(wallet.get('name')))}</td><td>{html_escape(str(wallet.get('network')))}</td>"
        f"<td><code>{html_escape(str(wallet.get('address')))}</code></td>"
        f"<td><form method='post' action='/admin/wallets/{wallet.get('id')}/delete' class='inline-form'>"
        "<button type='submit' class='danger'>Remove</button></form></td>"
        "</tr>"
        for wallet in settings.wallets()
    ]
    admin_rows = [
        f"<tr><td>{html_escape(admin.name)}</td><td>{html_escape(admin.email)}</td><td>{html_escape(admin.role)}</td>"
        f"<td>{when(admin.last_login) or 'never'}</td></tr>"
        for admin in admins
    ]
    new_admin = ""
    if actor.is_super_admin:
        roles = select_options((r.value, r.value.replace("_", " ").title()) for r in AdminRole)
        new_admin = f"""
          <form method='post' action='/admin/admins' class='stacked-form'>
            <input name='name' placeholder='Name' required>
            <input name='email' type='email' placeholder='Email' required>
            <input name='password' type='password' placeholder='Password' required>
            <select name='role'>{roles}</select>
            <button type='submit'>Add admin</button>
          </form>
        """
    inner = f"""
      <div class='grid'>
        <div class='card'>
          <h3>Site</h3>
          <form method='post' action='/admin/settings/site' class='stacked-form'>
            <label>Site name</label><input name='site_name' value='{html_escape(settings.site_name)}'>
            <label>Company email</label><input name='company_email' value='{html_escape(settings.company_email or '')}'>
            <label>Company phone</label><input name='company_phone' value='{html_escape(settings.company_phone or '')}'>
            <label>Company address</label><input name='company_address' value='{html_escape(settings.company_address or '')}'>
            <label>Default withdrawal instruction</label><textarea name='default_withdrawal_instruction'>{html_escape(settings.default_withdrawal_instruction)}</textarea>
            <label>Default withdrawal fee</label><input name='default_withdrawal_fee' type='number' step='0.01' value='{cents_to_decimal(settings.default_withdrawal_fee_cents)}'>
            <button type='submit'>Save site settings</button>
          </form>
        </div>
        <div class='card'>
          <h3>Change your password</h3>
          <form method='post' action='/admin/settings/password' class='stacked-form'>
            <input name='current_password' type='password' placeholder='Current password' required>
            <input name='new_password' type='password' placeholder='New password' required>
            <input name='confirm_password' type='password' placeholder='Confirm new password' required>
            <button type='submit'>Change password</button>
          </form>
          <h3>Admins</h3>
          {table(("Name", "Email", "Role", "Last login"), admin_rows)}
          {new_admin}
        </div>
      </div>
      <div class='card'>
        <h3>Investment plans</h3>
        {table(("Plan", "Usage", ""), plan_rows, "No plans yet.")}
        <form method='post' action='/admin/plans' class='actions'>
          <input name='name' placeholder='Name' style='max-width:140px' required>
          <input name='min_amount' type='number' step='0.01' placeholder='Min' style='max-width:110px' required>
          <input name='max_amount' type='number' step='0.01' placeholder='Max' style='max-width:110px' required>
          <input name='roi_percentage' type='number' step='0.01' placeholder='ROI %' style='max-width:90px' required>
          <input name='duration_days' type='number' placeholder='Days' style='max-width:80px' required>
          <input type='hidden' name='is_active' value='true'>
          <button type='submit'>Add plan</button>
        </form>
      </div>
      <h3>Payment methods</h3>
      <div class='grid'>
        {method_cards}
        <div class='card'><h4>Add payment method</h4>{_method_form('/admin/payment-methods')}</div>
      </div>
      <div class='card'>
        <h3>Deposit wallets</h3>
        {table(("Name", "Network", "Address", ""), wallet_rows, "No wallets configured.")}
        <form method='post' action='/admin/wallets' class='actions'>
          <input name='name' placeholder='Name' style='max-width:160px' required>
          <input name='network' placeholder='Network, e.g. BTC' style='max-width:160px' required>
          <input name='address' placeholder='Address' required>
          <button type='submit'>Add wallet</button>
        </form>
      </div>
    """
    return admin_layout(request, actor, "settings", "Settings", inner)


@router.post("/settings/site")
async def admin_settings_site(request: Request):
    if (redirect_response := require_admin(request)) is not None:
        return redirect_response
    form = await request.form()
    with Session(engine) as session:
        actor = _actor(request, session)
        if actor is None:
            return redirect("/admin/login")
        try:
            update_app_settings(session, actor, dict(form))
        except BrokerError as exc:
            set_admin_notice(request, exc.message, "error")
            return redirect("/admin/settings")
    set_admin_notice(request, "Settings saved.", "success")
    return redirect("/admin/settings")


@router.post("/settings/password")
def admin_settings_password(
    request: Request,
    current_password: str = Form(""),
    new_password: str = Form(""),
    confirm_password: str = Form(""),
):
    if (redirect_response := require_admin(request)) is not None:
        return redirect_response
    with Session(engine) as session:
        actor = _actor(request, session)
        if actor is None:
            return redirect("/admin/login")
        try:
            change_admin_password(session, actor, current_password, new_password, confirm_password)
        except BrokerError as exc:
            set_admin_notice(request, exc.message, "error")
            return redirect("/admin/settings")
    set_admin_notice(request, "Password changed.", "success")
    return redirect("/admin/settings")


@router.post("/admins")
def admin_create_admin(
    request: Request,
    name: str = Form(""),
    email: str = Form(""),
    password: str = Form(""),
    role: str = Form(AdminRole.ADMIN.value),
):
    if (redirect_response := require_admin(request)) is not None:
        return redirect_response
    with Session(engine) as session:
        actor = _actor(request, session)
        if actor is None:
            return redirect("/admin/login")
        try:
            create_admin(session, email=email, password=password, name=name, role=role, actor=actor)
        except BrokerError as exc:
            set_admin_notice(request, exc.message, "error")
            return redirect("/admin/settings")
    set_admin_notice(request, f"Admin {email} created.", "success")
    return redirect("/admin/settings")


@router.post("/plans")
async def admin_create_plan(request: Request):
    if (redirect_response := require_admin(request)) is not None:
        return redirect_response
    form = await request.form()
    with Session(engine) as session:
        actor = _actor(request, session)
        if actor is None:
            return redirect("/admin/login")
        try:
            plan = create_plan(session, actor, dict(form))
        except BrokerError as exc:
            set_admin_notice(request, exc.message, "error")
            return redirect("/admin/settings")
    set_admin_notice(request, f"Plan {plan.name} created.", "success")
    return redirect("/admin/settings")


@router.post("/plans/{plan_id}")
async def admin_update_plan(request: Request, plan_id: int):
    if (redirect_response := require_admin(request)) is not None:
        return redirect_response
    form = await request.form()
    data = dict(form)
    data.setdefault("is_active", "false")
    with Session(engine) as session:
        actor = _actor(request, session)
        if actor is None:
            return redirect("/admin/login")
        try:
            update_plan(session, actor, plan_id, data)
        except BrokerError as exc:
            set_admin_notice(request, exc.message, "error")
            return redirect("/admin/settings")
    set_admin_notice(request, "Plan updated.", "success")
    return redirect("/admin/settings")


@router.post("/plans/{plan_id}/delete")
def admin_delete_plan(request: Request, plan_id: int):
    if (redirect_response := require_admin(request)) is not None:
        return redirect_response
    with Session(engine) as session:
        actor = _actor(request, session)
        if actor is None:
            return redirect("/admin/login")
        try:
            delete_plan(session, actor, plan_id)
        except BrokerError as exc:
            set_admin_notice(request, exc.message, "error")
            return redirect("/admin/settings")
    set_admin_notice(request, "Plan deleted.", "success")
    return redirect("/admin/settings")


@router.post("/payment-methods")
async def admin_add_payment_method(request: Request):
    if (redirect_response := require_admin(request)) is not None:
        return redirect_response
    form = await request.form()
    with Session(engine) as session:
        actor = _actor(request, session)
        if actor is None:
            return redirect("/admin/login")
        try:
            add_payment_method(session, actor, dict(form))
        except BrokerError as exc:
            set_admin_notice(request, exc.message, "error")
            return redirect("/admin/settings")
    set_admin_notice(request, "Payment method added.", "success")
    return redirect("/admin/settings")


@router.post("/payment-methods/{method_id}")
async def admin_update_payment_method(request: Request, method_id: str):
    if (redirect_response := require_admin(request)) is not None:
        return redirect_response
    form = await request.form()
    with Session(engine) as session:
        actor = _actor(request, session)
        if actor is None:
            return redirect("/admin/login")
        try:
            update_payment_method(session, actor, method_id, dict(form))
        except BrokerError as exc:
            set_admin_notice(request, exc.message, "error")
            return redirect("/admin/settings")
    set_admin_notice(request, "Payment method updated.", "success")
    return redirect("/admin/settings")


@router.post("/payment-methods/{method_id}/toggle")
def admin_toggle_payment_method(request: Request, method_id: str):
    if (redirect_response := require_admin(request)) is not None:
        return redirect_response
    with Session(engine) as session:
        actor = _actor(request, session)
        if actor is None:
            return redirect("/admin/login")
        try:
            active = toggle_payment_method(session, actor, method_id)
        except BrokerError as exc:
            set_admin_notice(request, exc.message, "error")
            return redirect("/admin/settings")
    set_admin_notice(request, "Payment method enabled." if active else "Payment method disabled.", "success")
    return redirect("/admin/settings")


@router.post("/payment-methods/{method_id}/delete")
def admin_delete_payment_method(request: Request, method_id: str):
    if (redirect_response := require_admin(request)) is not None:
        return redirect_response
    with Session(engine) as session:
        actor = _actor(request, session)
        if actor is None:
            return redirect("/admin/login")
        try:
            delete_payment_method(session, actor, method_id)
        except BrokerError as exc:
            set_admin_notice(request, exc.message, "error")
            return redirect("/admin/settings")
    set_admin_notice(request, "Payment method deleted.", "success")
    return redirect("/admin/settings")


@router.post("/wallets")
def admin_add_wallet(request: Request, name: str = Form(""), network: str = Form(""), address: str = Form("")):
    if (redirect_response := require_admin(request)) is not None:
        return redirect_response
    with Session(engine) as session:
        actor = _actor(request, session)
        if actor is None:
            return redirect("/admin/login")
        try:
            add_deposit_wallet(session, actor, name=name, address=address, network=network)
        except BrokerError as exc:
            set_admin_notice(request, exc.message, "error")
            return redirect("/admin/settings")
    set_admin_notice(request, "Wallet added.", "success")
    return redirect("/admin/settings")


@router.post("/wallets/{wallet_id}/delete")
def admin_remove_wallet(request: Request, wallet_id: str):
    if (redirect_response := require_admin(request)) is not None:
        return redirect_response
    with Session(engine) as session:
        actor = _actor(request, session)
        if actor is None:
            return redirect("/admin/login")
        try:
            remove_deposit_wallet(session, actor, wallet_id)
        except BrokerError as exc:
            set_admin_notice(request, exc.message, "error")
            return redirect("/admin/settings")
    set_admin_notice(request, "Wallet removed.", "success")
    return redirect("/admin/settings")


# ---------------------------------------------------------------------------
# Audit log
# ---------------------------------------------------------------------------
@router.get("/audit", response_class=HTMLResponse)
def admin_audit(request: Request, action: str = "", page: int = 1):
    if (redirect_response := require_admin(request)) is not None:
        return redirect_response
    with Session(engine) as session:
        actor = _actor(request, session)
        if actor is None:
            return redirect("/admin/login")
        entries = list_audit_logs(session, action=action or None, page=page)
    rows = [
        "<tr>"
        f"<td>{when(entry.created_at)}</td>"
        f"<td>{entry.admin_id}</td>"
        f"<td><span class='pill'>{html_escape(entry.action)}</span></td>"
        f"<td>{html_escape(entry.entity_type)} {html_escape(entry.entity_id or '')}</td>"
        f"<td><code>{html_escape(', '.join(f'{k}={v}' for k, v in audit_details(entry).items()))}</code></td>"
        f"<td class='muted'>{html_escape(entry.ip_address or '')}</td>"
        "</tr>"
        for entry in entries.items
    ]
    actions = select_options([("", "All actions")] + [(a.value, a.value.replace("_", " ").title()) for a in AuditAction], action)
    inner = f"""
      <div class='card'>
        <form method='get' action='/admin/audit' class='actions'>
          <select name='action' style='max-width:260px'>{actions}</select><button type='submit'>Filter</button>
        </form>
        {table(("When", "Admin", "Action", "Entity", "Details", "IP"), rows, "No audit entries.")}
        {pagination_links(entries, '/admin/audit', {'action': action})}
      </div>
    """
    return admin_layout(request, actor, "audit", "Audit log", inner)


__all__ = ["router"]
