"""Shared HTML rendering and session helpers for the web routes."""
from __future__ import annotations

from datetime import datetime
from html import escape as html_escape
from typing import Iterable, List, Mapping, Optional, Sequence, Tuple
from urllib.parse import urlencode

from fastapi import Request
from fastapi.responses import HTMLResponse, RedirectResponse
from sqlmodel import Session

from ..models import AdminActor, Page
from ..money import format_amount, format_btc, format_currency
from .admins import actor_for
from .config import ADMIN_SESSION_LIFETIME, USER_SESSION_LIFETIME
from .mailer import templates
from .persistence import Admin, User


# ---------------------------------------------------------------------------
# Session helpers
# ---------------------------------------------------------------------------
def _expired(request: Request, key: str) -> bool:
    expires = request.session.get(key)
    return not expires or float(expires) < datetime.utcnow().timestamp()


def login_user(request: Request, user: User) -> None:
    request.session["user_id"] = user.id
    request.session["user_expires"] = (datetime.utcnow() + USER_SESSION_LIFETIME).timestamp()


def logout_user(request: Request) -> None:
    request.session.pop("user_id", None)
    request.session.pop("user_expires", None)


def user_authed(request: Request) -> Optional[int]:
    user_id = request.session.get("user_id")
    if not user_id:
        return None
    if _expired(request, "user_expires"):
        logout_user(request)
        return None
    return int(user_id)


def current_user(request: Request, session: Session) -> Optional[User]:
    user_id = user_authed(request)
    if user_id is None:
        return None
    user = session.get(User, user_id)
    if user is None or user.is_blocked:
        logout_user(request)
        return None
    return user


def login_admin(request: Request, admin: Admin) -> None:
    request.session["admin_id"] = admin.id
    request.session["admin_expires"] = (datetime.utcnow() + ADMIN_SESSION_LIFETIME).timestamp()


def logout_admin(request: Request) -> None:
    request.session.pop("admin_id", None)
    request.session.pop("admin_expires", None)


def admin_authed(request: Request) -> Optional[int]:
    admin_id = request.session.get("admin_id")
    if not admin_id:
        return None
    if _expired(request, "admin_expires"):
        logout_admin(request)
        return None
    return int(admin_id)


def require_admin(request: Request) -> Optional[RedirectResponse]:
    if not admin_authed(request):
        return RedirectResponse("/admin/login", status_code=302)
    return None


def client_ip(request: Request) -> Optional[str]:
    forwarded = request.headers.get("x-forwarded-for", "")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else None


def current_actor(request: Request, session: Session) -> Optional[AdminActor]:
    admin_id = admin_authed(request)
    admin = session.get(Admin, admin_id) if admin_id else None
    if admin is None:
        logout_admin(request)
        return None
    return actor_for(admin, ip_address=client_ip(request), user_agent=request.headers.get("user-agent"))


def set_notice(request: Request, message: str, kind: str = "info") -> None:
    request.session["notice"] = message
    request.session["notice_kind"] = kind


def pop_notice(request: Request) -> Tuple[Optional[str], str]:
    message = request.session.pop("notice", None)
    kind = request.session.pop("notice_kind", "info")
    return message, kind


def set_admin_notice(request: Request, message: str, kind: str = "info") -> None:
    request.session["admin_notice"] = message
    request.session["admin_notice_kind"] = kind


def pop_admin_notice(request: Request) -> Tuple[Optional[str], str]:
    message = request.session.pop("admin_notice", None)
    kind = request.session.pop("admin_notice_kind", "info")
    return message, kind


def redirect(target: str) -> RedirectResponse:
    return RedirectResponse(target, status_code=302)


# ---------------------------------------------------------------------------
# Rendering
# ---------------------------------------------------------------------------
def base_styles() -> str:
    return """
    <style>
      :root{
        --bg:#0b1220; --card:#111827; --muted:#9aa4b2; --accent:#2563eb;
        --good:#16a34a; --bad:#dc2626; --warn:#d97706; --text:#e5e7eb;
      }
      @media (prefers-color-scheme: light){
        :root{ --bg:#f7fafc; --card:#ffffff; --muted:#475569; --accent:#2563eb; --text:#0f172a; }
      }
      html, body { overflow-x: hidden; }
      th, td, button, a, input { overflow-wrap:anywhere; word-break:break-word; }
      body{
        font-family: system-ui,-apple-system,Segoe UI,Roboto,Arial;
        background:var(--bg); color:var(--text);
        max-width:1320px; margin:0 auto; padding:24px 16px;
      }
      a{color:var(--accent);}
      .layout{display:grid; grid-template-columns:220px 1fr; gap:16px; align-items:flex-start;}
      .layout .content{min-width:0;}
      .sidebar{display:flex; flex-direction:column; gap:6px; position:sticky; top:24px;}
      .sidebar a{display:block; padding:10px 12px; border-radius:10px; text-decoration:none; color:var(--text); background:rgba(255,255,255,0.04);}
      .sidebar a:hover{filter:brightness(1.05);}
      .sidebar a.active{background:var(--accent); color:#fff;}
      .topbar{display:flex; justify-content:space-between; align-items:center; gap:12px; margin-bottom:8px;}
      .topbar nav a{margin-left:12px; text-decoration:none;}
      .grid{display:grid; grid-template-columns:repeat(auto-fit, minmax(320px, 1fr)); gap:16px;}
      .stats{display:grid; grid-template-columns:repeat(auto-fit, minmax(200px, 1fr)); gap:16px; margin:12px 0;}
      .card{background:var(--card); border-radius:12px; padding:16px; box-shadow:0 8px 20px rgba(0,0,0,.08); margin:12px 0;}
      .stat-card__label{font-size:13px; color:var(--muted); text-transform:uppercase; letter-spacing:0.04em;}
      .stat-card__value{font-size:26px; font-weight:700;}
      input,textarea,select{
        width:100%; padding:12px; border:1px solid #2b3545; border-radius:10px;
        background:#ffffff; color:#000000 !important; box-sizing:border-box; font-size:16px;
      }
      input[type=checkbox], input[type=radio]{width:auto; padding:0; margin:0 6px 0 0;}
      button{padding:12px 14px; border-radius:10px; border:0; background:var(--accent); color:#fff; cursor:pointer; min-height:44px;}
      button:hover{filter:brightness(1.05)}
      .danger{background:var(--bad);}
      .good{background:var(--good);}
      .stacked-form{display:flex; flex-direction:column; gap:8px;}
      .stacked-form label{font-weight:600;}
      .inline-form{display:inline;}
      .button-link{display:inline-block; padding:10px 14px; border-radius:10px; background:var(--accent); color:#fff; text-decoration:none;}
      .actions{display:flex; gap:8px; flex-wrap:wrap; align-items:center;}
      table{width:100%; border-collapse:collapse}
      th,td{padding:10px; border-bottom:1px solid #243041; text-align:left; vertical-align:top}
      .right{text-align:right}
      .muted{color:var(--muted)}
      .pill{display:inline-block; padding:4px 8px; border-radius:999px; background:#1f2937; color:#cbd5e1; font-size:12px}
      .pill--PENDING{background:#92400e; color:#fef3c7;}
      .pill--APPROVED, .pill--ACTIVE, .pill--verified{background:#166534; color:#dcfce7;}
      .pill--DECLINED, .pill--rejected, .pill--CANCELLED{background:#991b1b; color:#fee2e2;}
      .progress-bar{width:100%; height:8px; border-radius:999px; background:rgba(148,163,184,0.2); overflow:hidden; margin-top:6px;}
      .progress-bar__fill{height:100%; background:var(--accent);}
      .notice{border-radius:10px; padding:12px 16px; margin:12px 0;}
      .notice--error{background:#fee2e2; border-left:4px solid #fca5a5; color:#b91c1c;}
      .notice--success, .notice--info{background:#dcfce7; border-left:4px solid #86efac; color:#166534;}
      .hold{background:#fef3c7; border-left:4px solid #f59e0b; color:#78350f; border-radius:10px; padding:16px;}
      .pagination{display:flex; gap:8px; justify-content:flex-end; margin-top:12px;}
      @media (max-width: 800px){
        .layout{grid-template-columns:1fr;}
        .sidebar{flex-direction:row; position:static; overflow-x:auto;}
        .sidebar a{white-space:nowrap;}
      }
    </style>
    """


def frame(title: str, inner: str, head_extra: str = "", body_attrs: str = "") -> str:
    body_attr = f" {body_attrs.strip()}" if body_attrs else ""
    return (
        "<html><head><meta charset='utf-8'><meta name='viewport' "
        f"content='width=device-width,initial-scale=1'>{head_extra}<title>{html_escape(title)} | {html_escape(templates.site_name)}</title>"
        f"{base_styles()}</head><body{body_attr}>{inner}</body></html>"
    )


def render_page(
    request: Optional[Request],
    title: str,
    inner: str,
    *,
    head_extra: str = "",
    status_code: int = 200,
) -> HTMLResponse:
    return HTMLResponse(frame(title, inner, head_extra=head_extra), status_code=status_code)


def notice_html(message: Optional[str], kind: str = "info") -> str:
    if not message:
        return ""
    return f"<div class='notice notice--{html_escape(kind)}'>{html_escape(message)}</div>"


def status_pill(status: str) -> str:
    return f"<span class='pill pill--{html_escape(status)}'>{html_escape(status.replace('_', ' ').title())}</span>"


def money(cents: int, currency: str = "USD") -> str:
    return html_escape(format_currency(cents, currency))


def btc(sats: int) -> str:
    return html_escape(format_btc(sats))


def amount(minor: int, asset: str, currency: str = "USD") -> str:
    return html_escape(format_amount(minor, asset, currency))


def when(moment: Optional[datetime], fmt: str = "%b %d, %Y %H:%M") -> str:
    return moment.strftime(fmt) if moment else ""


def stat_card(label: str, value: str, meta: str = "") -> str:
    meta_html = f"<div class='muted'>{meta}</div>" if meta else ""
    return (
        f"<div class='card'><div class='stat-card__label'>{html_escape(label)}</div>"
        f"<div class='stat-card__value'>{value}</div>{meta_html}</div>"
    )


def select_options(options: Iterable[Tuple[str, str]], selected: Optional[str] = None) -> str:
    return "".join(
        f"<option value='{html_escape(value)}'{' selected' if value == selected else ''}>{html_escape(label)}</option>"
        for value, label in options
    )


def pagination_links(page: Page, base_url: str, params: Optional[Mapping[str, object]] = None) -> str:
    if page.total_pages <= 1:
        return ""
    query = {key: value for key, value in (params or {}).items() if value not in (None, "")}
    links: List[str] = []
    if page.has_prev:
        links.append(f"<a href='{base_url}?{urlencode({**query, 'page': page.page - 1})}'>&larr; Previous</a>")
    links.append(f"<span class='muted'>Page {page.page} of {page.total_pages}</span>")
    if page.has_next:
        links.append(f"<a href='{base_url}?{urlencode({**query, 'page': page.page + 1})}'>Next &rarr;</a>")
    return f"<div class='pagination'>{''.join(links)}</div>"


def table(headers: Sequence[str], rows: Sequence[str], empty: str = "Nothing here yet.") -> str:
    head = "".join(f"<th>{html_escape(label)}</th>" for label in headers)
    body = "".join(rows) or f"<tr><td colspan='{len(headers)}' class='muted'>{html_escape(empty)}</td></tr>"
    return f"<table><tr>{head}</tr>{body}</table>"


# ---------------------------------------------------------------------------
# Layouts
# ---------------------------------------------------------------------------
PUBLIC_LINKS = (
    ("/", "Home"),
    ("/plans", "Plans"),
    ("/about", "About"),
    ("/contact", "Contact"),
    ("/login", "Login"),
    ("/register", "Open account"),
)

USER_LINKS = (
    ("overview", "/dashboard", "Overview"),
    ("deposit", "/dashboard/deposit", "Deposit"),
    ("withdraw", "/dashboard/withdraw", "Withdraw"),
    ("swap", "/dashboard/swap", "Swap"),
    ("trades", "/dashboard/trades", "Trades"),
    ("transactions", "/dashboard/transactions", "Transactions"),
    ("plans", "/dashboard/plans", "Plans"),
    ("investments", "/dashboard/investments", "Investments"),
    ("wallets", "/dashboard/wallets", "Wallets"),
    ("buy-crypto", "/dashboard/buy-crypto", "Buy crypto"),
    ("kyc", "/dashboard/kyc", "Verification"),
    ("referrals", "/dashboard/referrals", "Referrals"),
    ("settings", "/dashboard/settings", "Settings"),
)

ADMIN_LINKS = (
    ("dashboard", "/admin", "Dashboard"),
    ("users", "/admin/users", "Users"),
    ("transactions", "/admin/transactions", "Transactions"),
    ("kyc", "/admin/kyc", "KYC"),
    ("settings", "/admin/settings", "Settings"),
    ("audit", "/admin/audit", "Audit log"),
)


def public_layout(
    request: Request, title: str, inner: str, *, site_name: Optional[str] = None, status_code: int = 200
) -> HTMLResponse:
    site_name = site_name or templates.site_name
    nav = "".join(f"<a href='{href}'>{label}</a>" for href, label in PUBLIC_LINKS)
    message, kind = pop_notice(request)
    body = (
        f"<div class='topbar'><h2>{html_escape(site_name)}</h2><nav>{nav}</nav></div>"
        f"{notice_html(message, kind)}{inner}"
        f"<footer class='muted' style='margin-top:32px;'>&copy; {datetime.utcnow().year} {html_escape(site_name)} · "
        "<a href='/legal'>Legal</a></footer>"
    )
    return render_page(request, title, body, status_code=status_code)


def user_layout(request: Request, user: User, active: str, title: str, inner: str) -> HTMLResponse:
    links = "".join(
        f"<a href='{href}' class='{'active' if key == active else ''}'>{label}</a>" for key, href, label in USER_LINKS
    )
    message, kind = pop_notice(request)
    body = (
        f"<div class='topbar'><h3>{html_escape(templates.site_name)}</h3><div class='actions'>"
        f"<span class='pill'>{html_escape(user.full_name)}</span>"
        "<form method='post' action='/logout' class='inline-form'><button type='submit' class='pill'>Logout</button></form>"
        "</div></div>"
        f"<div class='layout'><nav class='sidebar'>{links}</nav><div class='content'>"
        f"<h2>{html_escape(title)}</h2>{notice_html(message, kind)}{inner}</div></div>"
    )
    return render_page(request, title, body)


def admin_layout(request: Request, actor: AdminActor, active: str, title: str, inner: str) -> HTMLResponse:
    links = "".join(
        f"<a href='{href}' class='{'active' if key == active else ''}'>{label}</a>" for key, href, label in ADMIN_LINKS
    )
    message, kind = pop_admin_notice(request)
    body = (
        f"<div class='topbar'><h3>{html_escape(templates.site_name)} Admin</h3><div class='actions'>"
        f"<span class='pill'>Signed in as {html_escape(actor.email)}</span>"
        "<form method='post' action='/admin/logout' class='inline-form'><button type='submit' class='pill'>Logout</button></form>"
        "</div></div>"
        f"<div class='layout'><nav class='sidebar'>{links}</nav><div class='content'>"
        f"<h2>{html_escape(title)}</h2>{notice_html(message, kind)}{inner}</div></div>"
    )
    return render_page(request, title, body)


__all__ = [
    "html_escape",
    "login_user",
    "logout_user",
    "user_authed",
    "current_user",
    "login_admin",
    "logout_admin",
    "admin_authed",
    "require_admin",
    "client_ip",
    "current_actor",
    "set_notice",
    "pop_notice",
    "set_admin_notice",
    "pop_admin_notice",
    "redirect",
    "base_styles",
    "frame",
    "render_page",
    "notice_html",
    "status_pill",
    "money",
    "btc",
    "amount",
    "when",
    "stat_card",
    "select_options",
    "pagination_links",
    "table",
    "public_layout",
    "user_layout",
    "admin_layout",
]
