"""Custom exception hierarchy for the brokerage package."""

from __future__ import annotations

from typing import Optional


class BrokerError(Exception):
    """Base class for all brokerage specific errors."""

    status_code = 400

    def __init__(self, message: str = "", *, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class ValidationError(BrokerError):
    """Raised when submitted input fails validation."""


class AuthenticationError(BrokerError):
    """Raised when credentials or a session cannot be verified."""

    status_code = 401


class PermissionDenied(BrokerError):
    """Raised when an authenticated actor may not perform an action."""

    status_code = 403


class NotFoundError(BrokerError):
    """Raised when a record lookup fails."""

    status_code = 404


class ConflictError(BrokerError):
    """Raised when an operation clashes with existing state."""

    status_code = 409


class InsufficientFundsError(BrokerError):
    """Raised when a balance cannot cover the requested amount."""


class AlreadyProcessedError(ConflictError):
    """Raised when a reviewed record is reviewed again."""


class RateLimitedError(BrokerError):
    """Raised while an identity is locked out after repeated failures."""

    status_code = 429


class PriceUnavailableError(BrokerError):
    """Raised when no usable spot price is available."""

    status_code = 503


class WithdrawalHoldError(BrokerError):
    """Raised when a withdrawal is held back by a fee or tier requirement.

    ``str()`` yields the coded form ``KIND:...:instruction`` so the dashboard
    can render a dedicated panel; see :func:`parse_withdrawal_hold`.
    """

    status_code = 402

    WITHDRAWAL_FEE = "WITHDRAWAL_FEE_REQUIRED"
    SIGNAL_FEE = "SIGNAL_FEE_REQUIRED"
    TIER_UPGRADE = "TIER_UPGRADE_REQUIRED"

    def __init__(
        self,
        kind: str,
        instruction: str,
        *,
        fee: Optional[str] = None,
        tier: Optional[int] = None,
    ) -> None:
        self.kind = kind
        self.instruction = instruction
        self.fee = fee
        self.tier = tier
        if kind == self.WITHDRAWAL_FEE:
            code = f"{kind}:{fee}:{instruction}"
        elif kind == self.TIER_UPGRADE:
            code = f"{kind}:{tier}:{instruction}"
        else:
            code = f"{kind}:{instruction}"
        super().__init__(code)


def parse_withdrawal_hold(message: str) -> Optional[dict]:
    """Decode a coded hold message back into its parts."""

    kind, sep, rest = (message or "").partition(":")
    if not sep:
        return None
    if kind == WithdrawalHoldError.SIGNAL_FEE:
        return {"kind": kind, "instruction": rest}
    if kind in (WithdrawalHoldError.WITHDRAWAL_FEE, WithdrawalHoldError.TIER_UPGRADE):
        value, _, instruction = rest.partition(":")
        key = "fee" if kind == WithdrawalHoldError.WITHDRAWAL_FEE else "tier"
        return {"kind": kind, key: value, "instruction": instruction}
    return None


__all__ = [
    "BrokerError",
    "ValidationError",
    "AuthenticationError",
    "PermissionDenied",
    "NotFoundError",
    "ConflictError",
    "InsufficientFundsError",
    "AlreadyProcessedError",
    "RateLimitedError",
    "PriceUnavailableError",
    "WithdrawalHoldError",
    "parse_withdrawal_hold",
]
