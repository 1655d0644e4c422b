"""Persistence and SQLModel definitions for the brokerage web frontend."""
from __future__ import annotations

import json
import sqlite3
from datetime import date, datetime
from typing import Any, Dict, List, Optional, Sequence, Tuple, Type, TypeVar

from sqlmodel import Field, Session, SQLModel, create_engine

from ..exceptions import NotFoundError
from .config import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE, SQLITE_FILE_NAME

ModelT = TypeVar("ModelT", bound=SQLModel)

# ---------------------------------------------------------------------------
# Database models
# ---------------------------------------------------------------------------
engine = create_engine(
    f"sqlite:///{SQLITE_FILE_NAME}",
    echo=False,
    connect_args={"check_same_thread": False},
)

# Ensure fresh metadata when re-importing in test contexts.
SQLModel.metadata.clear()


if getattr(Session.__init__, "__name__", "") != "_session_init_no_expire":
    _SESSION_INIT = Session.__init__

    def _session_init_no_expire(self, *args: Any, **kwargs: Any) -> None:  # pragma: no cover - simple wrapper
        if "expire_on_commit" not in kwargs:
            kwargs["expire_on_commit"] = False
        _SESSION_INIT(self, *args, **kwargs)

    Session.__init__ = _session_init_no_expire  # type: ignore[assignment]


class Admin(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    email: str = Field(index=True, unique=True)
    password_hash: str
    name: str = "Admin"
    role: str = "ADMIN"  # SUPER_ADMIN|ADMIN
    last_login: Optional[datetime] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)


class User(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    full_name: str
    email: str = Field(index=True, unique=True)
    password_hash: str
    dob: Optional[date] = None
    gender: Optional[str] = None
    country: str = ""
    city: Optional[str] = None
    address: Optional[str] = None
    phone: Optional[str] = None
    currency: str = "USD"
    fiat_balance_cents: int = 0
    btc_balance_sats: int = 0
    profit_balance_cents: int = 0
    total_deposited_cents: int = 0
    total_withdrawn_cents: int = 0
    active_investment_cents: int = 0
    total_bonus_cents: int = 0
    transaction_pin: Optional[str] = None
    withdrawal_fee_cents: int = 0
    withdrawal_fee_instruction: Optional[str] = None
    signal_fee_enabled: bool = False
    signal_fee_instruction: Optional[str] = None
    tier: int = 1
    tier_upgrade_enabled: bool = False
    tier_upgrade_instruction: Optional[str] = None
    is_suspended: bool = False
    is_blocked: bool = False
    current_plan_id: Optional[int] = None
    referral_code: str = Field(index=True, unique=True)
    referred_by_id: Optional[int] = None
    password_reset_token: Optional[str] = None
    password_reset_expires: Optional[datetime] = None
    last_login: Optional[datetime] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)


class Transaction(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(index=True)
    type: str  # DEPOSIT|WITHDRAWAL|PROFIT|BONUS
    asset: str = "FIAT"  # FIAT|BTC
    amount_minor: int  # cents for FIAT, satoshis for BTC
    status: str = "PENDING"  # PENDING|APPROVED|DECLINED
    crypto_amount: Optional[str] = None
    crypto_currency: Optional[str] = None
    wallet_address: Optional[str] = None
    wallet_network: Optional[str] = None
    deposit_proof_url: Optional[str] = None
    payment_method_id: Optional[str] = None
    payment_method_type: Optional[str] = None
    payment_method_name: Optional[str] = None
    withdrawal_method: Optional[str] = None
    withdrawal_details: Optional[str] = None  # JSON
    reference: str = Field(index=True)
    description: Optional[str] = None
    created_by_admin_id: Optional[int] = None
    approved_at: Optional[datetime] = None
    backdated_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    def details(self) -> Dict[str, Any]:
        return decode_json(self.withdrawal_details, {})


class Trade(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(index=True)
    type: str  # BUY|SELL
    from_asset: str
    to_asset: str
    from_amount_minor: int
    to_amount_minor: int
    rate_cents: int
    user_currency: str = "USD"
    created_at: datetime = Field(default_factory=datetime.utcnow)


class InvestmentPlan(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    name: str
    min_amount_cents: int
    max_amount_cents: int
    roi_percentage: float
    duration_days: int
    is_active: bool = True
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)


class UserInvestment(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(index=True)
    plan_id: int
    invested_cents: int
    expected_return_cents: int
    profit_credited_cents: int = 0
    start_date: datetime = Field(default_factory=datetime.utcnow)
    end_date: datetime
    status: str = "ACTIVE"  # ACTIVE|COMPLETED|CANCELLED
    capital_reclaimed: bool = False
    reclaimed_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)


class KYC(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(index=True, unique=True)
    document_type: str
    document_front_url: str
    document_back_url: Optional[str] = None
    selfie_url: str
    status: str = "PENDING"  # PENDING|APPROVED|DECLINED
    rejection_reason: Optional[str] = None
    reviewed_at: Optional[datetime] = None
    reviewed_by_id: Optional[int] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)


class AppSettings(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    site_name: str = "HYI Broker"
    company_email: Optional[str] = None
    company_phone: Optional[str] = None
    company_address: Optional[str] = None
    deposit_wallets: str = "[]"  # JSON list
    payment_methods: str = "[]"  # JSON list
    default_withdrawal_instruction: str = ""
    default_withdrawal_fee_cents: int = 0
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    def wallets(self) -> List[Dict[str, Any]]:
        return decode_json(self.deposit_wallets, [])

    def methods(self) -> List[Dict[str, Any]]:
        return decode_json(self.payment_methods, [])


class AuditLog(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    admin_id: int = Field(index=True)
    action: str
    entity_type: str
    entity_id: Optional[str] = None
    details: Optional[str] = None  # JSON
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)


class MetaKV(SQLModel, table=True):
    k: str = Field(primary_key=True)
    v: str


class MetaDAO:
    @staticmethod
    def get(session: Session, key: str) -> Optional[str]:
        row = session.get(MetaKV, key)
        return row.v if row else None

    @staticmethod
    def set(session: Session, key: str, value: str) -> None:
        row = session.get(MetaKV, key)
        if row:
            row.v = value
            session.add(row)
        else:
            session.add(MetaKV(k=key, v=value))


ALL_MODELS: Tuple[type, ...] = (
    AuditLog,
    Trade,
    Transaction,
    UserInvestment,
    KYC,
    User,
    InvestmentPlan,
    AppSettings,
    Admin,
    MetaKV,
)


def decode_json(raw: Optional[str], default: Any) -> Any:
    if not raw:
        return default
    try:
        return json.loads(raw)
    except (TypeError, ValueError):
        return default


def encode_json(value: Any) -> str:
    return json.dumps(value, default=str)


# ---------------------------------------------------------------------------
# Query helpers
# ---------------------------------------------------------------------------
def page_bounds(page: Any, limit: Any) -> Tuple[int, int]:
    """Clamp pagination input to ``page >= 1`` and ``1 <= limit <= MAX_PAGE_SIZE``."""

    try:
        page_i = int(page or 1)
    except (TypeError, ValueError):
        page_i = 1
    try:
        limit_i = int(limit or DEFAULT_PAGE_SIZE)
    except (TypeError, ValueError):
        limit_i = DEFAULT_PAGE_SIZE
    return max(page_i, 1), min(max(limit_i, 1), MAX_PAGE_SIZE)


def get_or_404(session: Session, model: Type[ModelT], ident: Any, message: str) -> ModelT:
    row = session.get(model, ident) if ident is not None else None
    if row is None:
        raise NotFoundError(message)
    return row


def create_db_and_tables() -> None:
    SQLModel.metadata.create_all(engine)


def _column_exists(conn: sqlite3.Connection, table: str, column: str) -> bool:
    cur = conn.execute(f"PRAGMA table_info(\"{table}\");")
    return any(row[1] == column for row in cur.fetchall())


# Columns added after the first schema; each is applied once to older files.
_COLUMN_MIGRATIONS: Sequence[Tuple[str, str, str]] = (
    ("user", "tier", "INTEGER DEFAULT 1"),
    ("user", "tier_upgrade_enabled", "BOOLEAN DEFAULT 0"),
    ("user", "tier_upgrade_instruction", "TEXT"),
    ("user", "signal_fee_enabled", "BOOLEAN DEFAULT 0"),
    ("user", "signal_fee_instruction", "TEXT"),
    ("user", "total_bonus_cents", "INTEGER DEFAULT 0"),
    ("transaction", "payment_method_id", "TEXT"),
    ("transaction", "payment_method_type", "TEXT"),
    ("transaction", "payment_method_name", "TEXT"),
    ("transaction", "backdated_at", "TEXT"),
    ("userinvestment", "capital_reclaimed", "BOOLEAN DEFAULT 0"),
    ("userinvestment", "reclaimed_at", "TEXT"),
    ("appsettings", "payment_methods", "TEXT DEFAULT '[]'"),
)


def run_migrations() -> List[str]:
    """Add missing columns to an older SQLite file; returns what was applied."""

    applied: List[str] = []
    raw = sqlite3.connect(SQLITE_FILE_NAME)
    try:
        for table, column, ddl in _COLUMN_MIGRATIONS:
            exists = raw.execute(
                "SELECT name FROM sqlite_master WHERE type='table' AND name=?;", (table,)
            ).fetchone()
            if not exists or _column_exists(raw, table, column):
                continue
            raw.execute(f'ALTER TABLE "{table}" ADD COLUMN {column} {ddl};')
            applied.append(f"{table}.{column}")
        raw.commit()
    finally:
        raw.close()
    return applied


create_db_and_tables()
APPLIED_MIGRATIONS: List[str] = run_migrations()

__all__ = [
    "engine",
    "Admin",
    "User",
    "Transaction",
    "Trade",
    "InvestmentPlan",
    "UserInvestment",
    "KYC",
    "AppSettings",
    "AuditLog",
    "MetaKV",
    "MetaDAO",
    "ALL_MODELS",
    "decode_json",
    "encode_json",
    "page_bounds",
    "get_or_404",
    "create_db_and_tables",
    "run_migrations",
    "APPLIED_MIGRATIONS",
]
