"""Brokerage package: fiat and Bitcoin accounts, investment plans and back office."""

from .emailing import EmailClient, EmailContent, EmailTemplates
from .exceptions import (
    AlreadyProcessedError,
    AuthenticationError,
    BrokerError,
    ConflictError,
    InsufficientFundsError,
    NotFoundError,
    PermissionDenied,
    PriceUnavailableError,
    RateLimitedError,
    ValidationError,
    WithdrawalHoldError,
)
from .media import CloudinaryUploader, UploadResult
from .models import (
    AdminActor,
    AdminRole,
    AssetType,
    AuditAction,
    InvestmentStatus,
    KYCDocumentType,
    KYCStatus,
    Page,
    PaymentMethodType,
    PriceQuote,
    SwapQuote,
    TradeType,
    TransactionStatus,
    TransactionType,
    WithdrawalEligibility,
    WithdrawalMethod,
)
from .ops import HealthMonitor, StructuredLogger, configure_logging
from .pricing import PriceFeed
from .security import AuthManager

__all__ = [
    "AdminActor",
    "AdminRole",
    "AlreadyProcessedError",
    "AssetType",
    "AuditAction",
    "AuthManager",
    "AuthenticationError",
    "BrokerError",
    "CloudinaryUploader",
    "ConflictError",
    "EmailClient",
    "EmailContent",
    "EmailTemplates",
    "HealthMonitor",
    "InsufficientFundsError",
    "InvestmentStatus",
    "KYCDocumentType",
    "KYCStatus",
    "NotFoundError",
    "Page",
    "PaymentMethodType",
    "PermissionDenied",
    "PriceFeed",
    "PriceQuote",
    "PriceUnavailableError",
    "RateLimitedError",
    "StructuredLogger",
    "SwapQuote",
    "TradeType",
    "TransactionStatus",
    "TransactionType",
    "UploadResult",
    "ValidationError",
    "WithdrawalEligibility",
    "WithdrawalHoldError",
    "WithdrawalMethod",
    "configure_logging",
]
