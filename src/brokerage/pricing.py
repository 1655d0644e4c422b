"""Spot price lookups against the CoinGecko public API.

Prices are cached in memory per currency; network failures fall back to the
last cached value or to a fixed table of approximate USD rates.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timedelta
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Dict, Optional, Tuple
from urllib.error import HTTPError, URLError
from urllib.parse import urlencode
from urllib.request import Request as URLRequest, urlopen

from .models import PriceQuote

logger = logging.getLogger(__name__)

COINGECKO_API = "https://api.coingecko.com/api/v3"
BTC_PRICE_TTL = timedelta(seconds=60)
EXCHANGE_RATE_TTL = timedelta(minutes=5)

NETWORK_TO_COINGECKO_ID: Dict[str, str] = {
    "BTC": "bitcoin",
    "ETH": "ethereum",
    "USDT-TRC20": "tether",
    "USDT-ERC20": "tether",
    "USDT": "tether",
    "USDC": "usd-coin",
    "BNB": "binancecoin",
    "LTC": "litecoin",
    "XRP": "ripple",
    "SOL": "solana",
    "DOGE": "dogecoin",
    "MATIC": "matic-network",
    "ADA": "cardano",
    "DOT": "polkadot",
    "AVAX": "avalanche-2",
    "TRX": "tron",
}

SUPPORTED_FIAT_CURRENCIES = (
    "usd", "eur", "gbp", "jpy", "aud", "cad", "chf", "cny", "inr", "krw",
    "ngn", "zar", "brl", "mxn", "sgd", "hkd", "nzd", "sek", "nok", "dkk",
    "pln", "thb", "idr", "myr", "php", "vnd", "aed", "sar", "try", "rub",
)

FALLBACK_USD_RATES: Dict[str, Decimal] = {
    "BTC": Decimal("43000"),
    "ETH": Decimal("2600"),
    "USDT-TRC20": Decimal("1"),
    "USDT-ERC20": Decimal("1"),
    "USDT": Decimal("1"),
    "USDC": Decimal("1"),
    "BNB": Decimal("310"),
    "LTC": Decimal("70"),
    "XRP": Decimal("0.60"),
    "SOL": Decimal("95"),
    "DOGE": Decimal("0.08"),
    "MATIC": Decimal("0.85"),
    "ADA": Decimal("0.55"),
    "DOT": Decimal("7.5"),
    "AVAX": Decimal("35"),
    "TRX": Decimal("0.11"),
}

JsonFetcher = Callable[[str], Any]


def http_get_json(url: str) -> Any:
    req = URLRequest(url, headers={"User-Agent": "Mozilla/5.0", "Accept": "application/json"})
    with urlopen(req, timeout=6) as resp:
        payload = resp.read().decode("utf-8")
    return json.loads(payload)


def vs_currency(currency: str) -> str:
    code = (currency or "usd").strip().lower()
    return code if code in SUPPORTED_FIAT_CURRENCIES else "usd"


def _should_refresh(last: Optional[datetime], ttl: timedelta) -> bool:
    if not last:
        return True
    return (datetime.utcnow() - last) >= ttl


def _decimal(value: Any) -> Decimal:
    try:
        return Decimal(str(value))
    except (InvalidOperation, TypeError, ValueError):
        return Decimal("0")


class PriceFeed:
    """Cached BTC spot prices and multi-coin exchange rates."""

    def __init__(self, *, fetcher: Optional[JsonFetcher] = None) -> None:
        self._fetch = fetcher or http_get_json
        self._btc_cache: Dict[str, PriceQuote] = {}
        self._rates_cache: Dict[str, Tuple[datetime, Dict[str, Decimal]]] = {}

    def clear(self) -> None:
        self._btc_cache.clear()
        self._rates_cache.clear()

    def btc_quote(self, currency: str = "usd") -> PriceQuote:
        """Return the BTC price in ``currency``; a zero price means unavailable."""

        code = (currency or "usd").strip().lower()
        cached = self._btc_cache.get(code)
        if cached and not _should_refresh(cached.fetched_at, BTC_PRICE_TTL):
            return cached
        query = urlencode({"ids": "bitcoin", "vs_currencies": code, "include_24hr_change": "true"})
        try:
            data = self._fetch(f"{COINGECKO_API}/simple/price?{query}")
            bitcoin = data.get("bitcoin") or {}
            price = _decimal(bitcoin.get(code) or 0)
            change_pct = _decimal(bitcoin.get(f"{code}_24h_change") or 0)
        except (URLError, HTTPError, TimeoutError, ValueError, KeyError, AttributeError) as exc:
            logger.warning("BTC price fetch failed for %s: %s", code, exc)
            return PriceQuote(currency=code.upper(), price=Decimal("0"))
        quote = PriceQuote(
            currency=code.upper(),
            price=price,
            change_24h=price * change_pct / 100,
            change_percent_24h=change_pct,
        )
        if quote.available:
            self._btc_cache[code] = quote
        return quote

    def btc_price(self, currency: str = "usd") -> Decimal:
        return self.btc_quote(currency).price

    def last_btc_fetch(self) -> Optional[datetime]:
        if not self._btc_cache:
            return None
        return max(quote.fetched_at for quote in self._btc_cache.values())

    def exchange_rates(self, currency: str = "USD") -> Dict[str, Decimal]:
        """Return ``network -> price`` in ``currency`` (unsupported currencies use USD)."""

        code = (currency or "usd").strip().lower()
        cached = self._rates_cache.get(code)
        if cached and not _should_refresh(cached[0], EXCHANGE_RATE_TTL):
            return dict(cached[1])
        target = vs_currency(code)
        coin_ids = sorted(set(NETWORK_TO_COINGECKO_ID.values()))
        query = urlencode({"ids": ",".join(coin_ids), "vs_currencies": target})
        try:
            data = self._fetch(f"{COINGECKO_API}/simple/price?{query}")
            rates: Dict[str, Decimal] = {}
            for network, coin_id in NETWORK_TO_COINGECKO_ID.items():
                price = _decimal((data.get(coin_id) or {}).get(target) or 0)
                if price > 0:
                    rates[network] = price
        except (URLError, HTTPError, TimeoutError, ValueError, KeyError, AttributeError) as exc:
            logger.warning("Exchange rate fetch failed for %s: %s", code, exc)
            return dict(FALLBACK_USD_RATES)
        self._rates_cache[code] = (datetime.utcnow(), rates)
        return dict(rates)

    def fiat_to_crypto(self, amount: Decimal, network: str, currency: str = "USD") -> Optional[Tuple[Decimal, Decimal]]:
        """Return ``(crypto_amount, rate)`` or ``None`` when no rate is known."""

        rate = self.exchange_rates(currency).get(network.upper())
        if not rate:
            return None
        return amount / rate, rate

    def crypto_to_fiat(self, amount: Decimal, network: str, currency: str = "USD") -> Optional[Tuple[Decimal, Decimal]]:
        rate = self.exchange_rates(currency).get(network.upper())
        if not rate:
            return None
        return amount * rate, rate


__all__ = [
    "COINGECKO_API",
    "FALLBACK_USD_RATES",
    "NETWORK_TO_COINGECKO_ID",
    "SUPPORTED_FIAT_CURRENCIES",
    "PriceFeed",
    "http_get_json",
    "vs_currency",
]
