"""Domain enums and value objects used by the brokerage package."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from math import ceil
from typing import Any, Dict, Generic, List, Optional, TypeVar

T = TypeVar("T")


class AdminRole(str, Enum):
    SUPER_ADMIN = "SUPER_ADMIN"
    ADMIN = "ADMIN"


class TransactionType(str, Enum):
    """Enumerates the supported ledger entry types."""

    DEPOSIT = "DEPOSIT"
    WITHDRAWAL = "WITHDRAWAL"
    PROFIT = "PROFIT"
    BONUS = "BONUS"


class AssetType(str, Enum):
    FIAT = "FIAT"
    BTC = "BTC"


class TransactionStatus(str, Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    DECLINED = "DECLINED"


class InvestmentStatus(str, Enum):
    ACTIVE = "ACTIVE"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


class KYCStatus(str, Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    DECLINED = "DECLINED"

    @property
    def display(self) -> str:
        return {"APPROVED": "verified", "PENDING": "pending", "DECLINED": "rejected"}[self.value]


class KYCDocumentType(str, Enum):
    PASSPORT = "PASSPORT"
    DRIVERS_LICENSE = "DRIVERS_LICENSE"
    NATIONAL_ID = "NATIONAL_ID"
    RESIDENCE_PERMIT = "RESIDENCE_PERMIT"

    @property
    def label(self) -> str:
        return {
            "PASSPORT": "Passport",
            "DRIVERS_LICENSE": "Driver's License",
            "NATIONAL_ID": "National ID Card",
            "RESIDENCE_PERMIT": "Residence Permit",
        }[self.value]

    @property
    def requires_back(self) -> bool:
        return self is not KYCDocumentType.PASSPORT


class Gender(str, Enum):
    MALE = "MALE"
    FEMALE = "FEMALE"
    OTHER = "OTHER"
    PREFER_NOT_TO_SAY = "PREFER_NOT_TO_SAY"


class TradeType(str, Enum):
    """BUY converts fiat into BTC, SELL converts BTC into fiat."""

    BUY = "BUY"
    SELL = "SELL"


class WithdrawalMethod(str, Enum):
    BANK_TRANSFER = "BANK_TRANSFER"
    BITCOIN = "BITCOIN"
    ETHEREUM = "ETHEREUM"
    CASHAPP = "CASHAPP"
    PAYPAL = "PAYPAL"
    ZELLE = "ZELLE"

    @property
    def label(self) -> str:
        return {
            "BANK_TRANSFER": "Bank Transfer",
            "BITCOIN": "Bitcoin",
            "ETHEREUM": "Ethereum",
            "CASHAPP": "Cash App",
            "PAYPAL": "PayPal",
            "ZELLE": "Zelle",
        }[self.value]


class PaymentMethodType(str, Enum):
    CRYPTO = "CRYPTO"
    PAYPAL = "PAYPAL"
    ZELLE = "ZELLE"
    CASHAPP = "CASHAPP"
    BANK_TRANSFER = "BANK_TRANSFER"
    VENMO = "VENMO"
    WISE = "WISE"
    SKRILL = "SKRILL"
    OTHER = "OTHER"


class AuditAction(str, Enum):
    """Actions recorded in the admin audit trail."""

    USER_CREATED = "USER_CREATED"
    USER_UPDATED = "USER_UPDATED"
    USER_DELETED = "USER_DELETED"
    USER_SUSPENDED = "USER_SUSPENDED"
    USER_UNSUSPENDED = "USER_UNSUSPENDED"
    USER_BLOCKED = "USER_BLOCKED"
    USER_UNBLOCKED = "USER_UNBLOCKED"
    USER_PIN_RESET = "USER_PIN_RESET"
    USER_BALANCE_UPDATED = "USER_BALANCE_UPDATED"
    TRANSACTION_CREATED = "TRANSACTION_CREATED"
    TRANSACTION_APPROVED = "TRANSACTION_APPROVED"
    TRANSACTION_DECLINED = "TRANSACTION_DECLINED"
    TRANSACTION_BACKDATED = "TRANSACTION_BACKDATED"
    TRANSACTION_DELETED = "TRANSACTION_DELETED"
    KYC_APPROVED = "KYC_APPROVED"
    KYC_DECLINED = "KYC_DECLINED"
    SETTINGS_UPDATED = "SETTINGS_UPDATED"
    WALLET_ADDED = "WALLET_ADDED"
    WALLET_REMOVED = "WALLET_REMOVED"
    DEPOSIT_METHOD_ADDED = "DEPOSIT_METHOD_ADDED"
    DEPOSIT_METHOD_REMOVED = "DEPOSIT_METHOD_REMOVED"
    PLAN_CREATED = "PLAN_CREATED"
    PLAN_UPDATED = "PLAN_UPDATED"
    PLAN_DELETED = "PLAN_DELETED"
    ADMIN_LOGIN = "ADMIN_LOGIN"
    ADMIN_CREATED = "ADMIN_CREATED"
    ADMIN_PASSWORD_CHANGED = "ADMIN_PASSWORD_CHANGED"


@dataclass(slots=True)
class AdminActor:
    """The admin performing a back-office action plus request metadata."""

    id: int
    email: str = ""
    role: AdminRole = AdminRole.ADMIN
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None

    @property
    def is_super_admin(self) -> bool:
        return self.role == AdminRole.SUPER_ADMIN


@dataclass(slots=True)
class PriceQuote:
    """Spot BTC price in a fiat currency."""

    currency: str
    price: Decimal
    change_24h: Decimal = Decimal("0")
    change_percent_24h: Decimal = Decimal("0")
    fetched_at: datetime = field(default_factory=datetime.utcnow)

    @property
    def available(self) -> bool:
        return self.price > 0


@dataclass(slots=True)
class SwapQuote:
    """Preview of a fiat/BTC conversion."""

    trade_type: TradeType
    from_asset: AssetType
    to_asset: AssetType
    from_amount: int
    to_amount: int
    rate: Decimal
    currency: str


@dataclass(slots=True)
class WithdrawalEligibility:
    eligible: bool
    reason: Optional[str]
    has_pin: bool
    withdrawal_fee_cents: int
    withdrawal_fee_instruction: Optional[str]
    signal_fee_enabled: bool
    signal_fee_instruction: Optional[str]
    tier: int
    tier_upgrade_enabled: bool
    tier_upgrade_instruction: Optional[str]
    kyc_status: str
    fiat_balance_cents: int
    btc_balance_sats: int
    currency: str


@dataclass(slots=True)
class Page(Generic[T]):
    """One page of results plus pagination metadata."""

    items: List[T]
    page: int
    limit: int
    total: int

    @property
    def total_pages(self) -> int:
        return ceil(self.total / self.limit) if self.limit else 0

    @property
    def has_next(self) -> bool:
        return self.page < self.total_pages

    @property
    def has_prev(self) -> bool:
        return self.page > 1


@dataclass(slots=True)
class ChartPoint:
    date: str
    values: Dict[str, int] = field(default_factory=dict)


def coerce_enum(enum_cls: type[Enum], raw: Any) -> Optional[Any]:
    """Return the ``enum_cls`` member for ``raw`` or ``None`` when unknown."""

    if isinstance(raw, enum_cls):
        return raw
    try:
        return enum_cls(str(raw or "").strip().upper())
    except ValueError:
        return None


__all__ = [
    "AdminRole",
    "TransactionType",
    "AssetType",
    "TransactionStatus",
    "InvestmentStatus",
    "KYCStatus",
    "KYCDocumentType",
    "Gender",
    "TradeType",
    "WithdrawalMethod",
    "PaymentMethodType",
    "AuditAction",
    "AdminActor",
    "PriceQuote",
    "SwapQuote",
    "WithdrawalEligibility",
    "Page",
    "ChartPoint",
    "coerce_enum",
]
