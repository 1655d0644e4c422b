"""Fiat/BTC swaps at the live spot price."""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

from sqlmodel import Session, desc, func, select

from ..exceptions import InsufficientFundsError, PriceUnavailableError, ValidationError
from ..models import AssetType, Page, PriceQuote, SwapQuote, TradeType, coerce_enum
from ..money import fiat_to_sats, price_to_cents, sats_to_cents, to_minor
from ..pricing import PriceFeed
from ..validation import require_amount
from .persistence import Trade, User, get_or_404, page_bounds

logger = logging.getLogger(__name__)

price_feed = PriceFeed()

PRICE_UNAVAILABLE_MESSAGE = "Unable to fetch current BTC price. Please try again."


def get_btc_price(currency: str = "USD") -> PriceQuote:
    return price_feed.btc_quote(currency)


def get_swap_quote(session: Session, user_id: int, from_asset: Any, amount: Any) -> SwapQuote:
    """Preview a swap for ``user_id`` without moving any balance."""

    source = coerce_enum(AssetType, from_asset)
    if source is None:
        raise ValidationError("Invalid asset")
    value = require_amount(amount, btc=source is AssetType.BTC, message="Amount must be greater than 0")
    user = get_or_404(session, User, user_id, "User not found")
    currency = user.currency or "USD"
    price = price_feed.btc_price(currency)
    if price <= 0:
        raise PriceUnavailableError(PRICE_UNAVAILABLE_MESSAGE)
    from_minor = to_minor(value, source.value)
    if source is AssetType.FIAT:
        quote = SwapQuote(
            trade_type=TradeType.BUY,
            from_asset=AssetType.FIAT,
            to_asset=AssetType.BTC,
            from_amount=from_minor,
            to_amount=fiat_to_sats(from_minor, price),
            rate=price,
            currency=currency,
        )
    else:
        quote = SwapQuote(
            trade_type=TradeType.SELL,
            from_asset=AssetType.BTC,
            to_asset=AssetType.FIAT,
            from_amount=from_minor,
            to_amount=sats_to_cents(from_minor, price),
            rate=price,
            currency=currency,
        )
    # nothing may be debited for an output that rounds to zero
    if quote.to_amount <= 0:
        raise ValidationError("Amount is too small to swap")
    return quote


def execute_swap(session: Session, user_id: int, from_asset: Any, amount: Any) -> Trade:
    quote = get_swap_quote(session, user_id, from_asset, amount)
    user = get_or_404(session, User, user_id, "User not found")
    if quote.from_asset is AssetType.FIAT:
        if user.fiat_balance_cents < quote.from_amount:
            raise InsufficientFundsError(f"Insufficient {quote.currency} balance")
        user.fiat_balance_cents -= quote.from_amount
        user.btc_balance_sats += quote.to_amount
    else:
        if user.btc_balance_sats < quote.from_amount:
            raise InsufficientFundsError("Insufficient BTC balance")
        user.btc_balance_sats -= quote.from_amount
        user.fiat_balance_cents += quote.to_amount
    user.updated_at = datetime.utcnow()
    trade = Trade(
        user_id=user.id,
        type=quote.trade_type.value,
        from_asset=quote.from_asset.value,
        to_asset=quote.to_asset.value,
        from_amount_minor=quote.from_amount,
        to_amount_minor=quote.to_amount,
        rate_cents=price_to_cents(quote.rate),
        user_currency=quote.currency,
    )
    session.add(trade)
    session.add(user)
    session.commit()
    session.refresh(trade)
    logger.info("User %s %s swap of %s", user.id, quote.trade_type.value, quote.from_amount)
    return trade


def user_trades(session: Session, user_id: int, *, page: Any = 1, limit: Any = 20) -> Page[Trade]:
    page_i, limit_i = page_bounds(page, limit)
    total = session.exec(select(func.count()).select_from(Trade).where(Trade.user_id == user_id)).one()
    rows = session.exec(
        select(Trade)
        .where(Trade.user_id == user_id)
        .order_by(desc(Trade.created_at), desc(Trade.id))
        .offset((page_i - 1) * limit_i)
        .limit(limit_i)
    ).all()
    return Page(items=list(rows), page=page_i, limit=limit_i, total=int(total))


__all__ = [
    "price_feed",
    "get_btc_price",
    "get_swap_quote",
    "execute_swap",
    "user_trades",
]
