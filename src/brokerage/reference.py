"""Static reference data: world currencies and where to buy crypto."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple


@dataclass(frozen=True)
class Currency:
    code: str
    name: str
    symbol: str
    country: str


@dataclass(frozen=True)
class Exchange:
    id: str
    name: str
    url: str
    payment_methods: Tuple[str, ...]
    fees: str
    speed: str  # instant|fast|moderate
    description: str = ""


CURRENCIES: Tuple[Currency, ...] = tuple(
    Currency(*row)
    for row in (
        ("USD", "US Dollar", "$", "United States"),
        ("EUR", "Euro", "€", "European Union"),
        ("GBP", "British Pound", "£", "United Kingdom"),
        ("JPY", "Japanese Yen", "¥", "Japan"),
        ("CHF", "Swiss Franc", "Fr", "Switzerland"),
        ("CAD", "Canadian Dollar", "C$", "Canada"),
        ("AUD", "Australian Dollar", "A$", "Australia"),
        ("NZD", "New Zealand Dollar", "NZ$", "New Zealand"),
        ("CNY", "Chinese Yuan", "¥", "China"),
        ("HKD", "Hong Kong Dollar", "HK$", "Hong Kong"),
        ("SGD", "Singapore Dollar", "S$", "Singapore"),
        ("SEK", "Swedish Krona", "kr", "Sweden"),
        ("NOK", "Norwegian Krone", "kr", "Norway"),
        ("DKK", "Danish Krone", "kr", "Denmark"),
        ("PLN", "Polish Zloty", "zł", "Poland"),
        ("CZK", "Czech Koruna", "Kč", "Czech Republic"),
        ("HUF", "Hungarian Forint", "Ft", "Hungary"),
        ("RON", "Romanian Leu", "lei", "Romania"),
        ("BGN", "Bulgarian Lev", "лв", "Bulgaria"),
        ("RSD", "Serbian Dinar", "дин", "Serbia"),
        ("UAH", "Ukrainian Hryvnia", "₴", "Ukraine"),
        ("RUB", "Russian Ruble", "₽", "Russia"),
        ("TRY", "Turkish Lira", "₺", "Turkey"),
        ("ISK", "Icelandic Krona", "kr", "Iceland"),
        ("INR", "Indian Rupee", "₹", "India"),
        ("PKR", "Pakistani Rupee", "₨", "Pakistan"),
        ("BDT", "Bangladeshi Taka", "৳", "Bangladesh"),
        ("LKR", "Sri Lankan Rupee", "Rs", "Sri Lanka"),
        ("NPR", "Nepalese Rupee", "Rs", "Nepal"),
        ("KRW", "South Korean Won", "₩", "South Korea"),
        ("TWD", "Taiwan Dollar", "NT$", "Taiwan"),
        ("THB", "Thai Baht", "฿", "Thailand"),
        ("MYR", "Malaysian Ringgit", "RM", "Malaysia"),
        ("IDR", "Indonesian Rupiah", "Rp", "Indonesia"),
        ("PHP", "Philippine Peso", "₱", "Philippines"),
        ("VND", "Vietnamese Dong", "₫", "Vietnam"),
        ("KZT", "Kazakhstani Tenge", "₸", "Kazakhstan"),
        ("AED", "UAE Dirham", "د.إ", "United Arab Emirates"),
        ("SAR", "Saudi Riyal", "﷼", "Saudi Arabia"),
        ("QAR", "Qatari Riyal", "﷼", "Qatar"),
        ("KWD", "Kuwaiti Dinar", "د.ك", "Kuwait"),
        ("BHD", "Bahraini Dinar", "BD", "Bahrain"),
        ("OMR", "Omani Rial", "﷼", "Oman"),
        ("JOD", "Jordanian Dinar", "JD", "Jordan"),
        ("ILS", "Israeli Shekel", "₪", "Israel"),
        ("EGP", "Egyptian Pound", "E£", "Egypt"),
        ("ZAR", "South African Rand", "R", "South Africa"),
        ("NGN", "Nigerian Naira", "₦", "Nigeria"),
        ("KES", "Kenyan Shilling", "KSh", "Kenya"),
        ("GHS", "Ghanaian Cedi", "₵", "Ghana"),
        ("UGX", "Ugandan Shilling", "USh", "Uganda"),
        ("TZS", "Tanzanian Shilling", "TSh", "Tanzania"),
        ("ETB", "Ethiopian Birr", "Br", "Ethiopia"),
        ("MAD", "Moroccan Dirham", "د.م.", "Morocco"),
        ("XOF", "West African CFA Franc", "CFA", "West Africa"),
        ("XAF", "Central African CFA Franc", "FCFA", "Central Africa"),
        ("RWF", "Rwandan Franc", "FRw", "Rwanda"),
        ("BWP", "Botswana Pula", "P", "Botswana"),
        ("ZMW", "Zambian Kwacha", "ZK", "Zambia"),
        ("MXN", "Mexican Peso", "$", "Mexico"),
        ("BRL", "Brazilian Real", "R$", "Brazil"),
        ("ARS", "Argentine Peso", "$", "Argentina"),
        ("CLP", "Chilean Peso", "$", "Chile"),
        ("COP", "Colombian Peso", "$", "Colombia"),
        ("PEN", "Peruvian Sol", "S/", "Peru"),
        ("UYU", "Uruguayan Peso", "$U", "Uruguay"),
        ("DOP", "Dominican Peso", "RD$", "Dominican Republic"),
        ("JMD", "Jamaican Dollar", "J$", "Jamaica"),
        ("TTD", "Trinidad Dollar", "TT$", "Trinidad and Tobago"),
        ("FJD", "Fijian Dollar", "FJ$", "Fiji"),
        ("PGK", "Papua New Guinean Kina", "K", "Papua New Guinea"),
    )
)

CURRENCY_CODES: Tuple[str, ...] = tuple(currency.code for currency in CURRENCIES)

REGION_NAMES: Dict[str, str] = {
    "north_america": "North America",
    "europe": "Europe",
    "africa": "Africa",
    "asia_pacific": "Asia Pacific",
    "middle_east": "Middle East",
    "latin_america": "Latin America",
    "oceania": "Oceania",
}

_REGION_COUNTRIES: Dict[str, Sequence[Tuple[str, str]]] = {
    "north_america": (("US", "United States"), ("CA", "Canada"), ("MX", "Mexico")),
    "europe": (
        ("GB", "United Kingdom"), ("DE", "Germany"), ("FR", "France"), ("ES", "Spain"),
        ("IT", "Italy"), ("NL", "Netherlands"), ("BE", "Belgium"), ("AT", "Austria"),
        ("CH", "Switzerland"), ("PL", "Poland"), ("SE", "Sweden"), ("NO", "Norway"),
        ("DK", "Denmark"), ("FI", "Finland"), ("IE", "Ireland"), ("PT", "Portugal"),
        ("GR", "Greece"), ("CZ", "Czech Republic"), ("RO", "Romania"), ("HU", "Hungary"),
        ("UA", "Ukraine"), ("BG", "Bulgaria"), ("HR", "Croatia"),
    ),
    "africa": (
        ("NG", "Nigeria"), ("GH", "Ghana"), ("KE", "Kenya"), ("ZA", "South Africa"),
        ("EG", "Egypt"), ("TZ", "Tanzania"), ("UG", "Uganda"), ("RW", "Rwanda"),
        ("CM", "Cameroon"), ("SN", "Senegal"), ("MA", "Morocco"), ("ET", "Ethiopia"),
        ("ZM", "Zambia"), ("ZW", "Zimbabwe"), ("BW", "Botswana"),
    ),
    "asia_pacific": (
        ("IN", "India"), ("PH", "Philippines"), ("ID", "Indonesia"), ("VN", "Vietnam"),
        ("TH", "Thailand"), ("MY", "Malaysia"), ("SG", "Singapore"), ("JP", "Japan"),
        ("KR", "South Korea"), ("PK", "Pakistan"), ("BD", "Bangladesh"), ("HK", "Hong Kong"),
        ("TW", "Taiwan"), ("CN", "China"),
    ),
    "middle_east": (
        ("AE", "United Arab Emirates"), ("SA", "Saudi Arabia"), ("TR", "Turkey"),
        ("IL", "Israel"), ("QA", "Qatar"), ("KW", "Kuwait"), ("BH", "Bahrain"),
        ("OM", "Oman"), ("JO", "Jordan"),
    ),
    "latin_america": (
        ("BR", "Brazil"), ("AR", "Argentina"), ("CL", "Chile"), ("CO", "Colombia"),
        ("PE", "Peru"), ("VE", "Venezuela"), ("EC", "Ecuador"), ("UY", "Uruguay"),
        ("CR", "Costa Rica"), ("PA", "Panama"), ("DO", "Dominican Republic"), ("JM", "Jamaica"),
    ),
    "oceania": (("AU", "Australia"), ("NZ", "New Zealand"), ("FJ", "Fiji"), ("PG", "Papua New Guinea")),
}

COUNTRIES: Dict[str, Tuple[str, str]] = {
    code: (name, region) for region, rows in _REGION_COUNTRIES.items() for code, name in rows
}


def _exchange(id_: str, name: str, url: str, methods: Sequence[str], fees: str, speed: str, description: str = "") -> Exchange:
    return Exchange(id_, name, url, tuple(methods), fees, speed, description)


REGION_EXCHANGES: Dict[str, Tuple[Exchange, ...]] = {
    "north_america": (
        _exchange("coinbase_na", "Coinbase", "https://www.coinbase.com/signup", ["Bank Transfer", "Card"], "0.5% - 2%", "fast"),
        _exchange("kraken_na", "Kraken", "https://www.kraken.com/sign-up", ["Bank Transfer", "Wire"], "0.16% - 0.26%", "moderate"),
        _exchange("gemini_na", "Gemini", "https://www.gemini.com/share", ["Bank Transfer", "Wire"], "0.5% - 1.49%", "fast"),
    ),
    "europe": (
        _exchange("kraken_eu", "Kraken", "https://www.kraken.com/sign-up", ["SEPA", "Bank Transfer"], "0.16% - 0.26%", "moderate"),
        _exchange("bitvavo_eu", "Bitvavo", "https://bitvavo.com/invite", ["SEPA", "iDEAL", "Bank Transfer"], "0.03% - 0.25%", "fast"),
        _exchange("coinbase_eu", "Coinbase", "https://www.coinbase.com/signup", ["SEPA", "Card"], "0.5% - 2%", "fast"),
        _exchange("binance_eu", "Binance", "https://www.binance.com/en/register", ["SEPA", "Card"], "0.1%", "fast"),
        _exchange("bybit_eu", "Bybit", "https://www.bybit.com/register", ["SEPA", "Card"], "0.1%", "fast"),
        _exchange("crypto_com_eu", "Crypto.com", "https://crypto.com/app", ["SEPA", "Card"], "0% - 2.99%", "instant"),
    ),
    "africa": (
        _exchange("binance_p2p_africa", "Binance P2P", "https://p2p.binance.com", ["Bank Transfer", "Mobile Money"], "0%", "moderate"),
        _exchange("luno_africa", "Luno", "https://www.luno.com/signup", ["Bank Transfer", "Card"], "0% - 1%", "fast"),
        _exchange("yellowcard_africa", "Yellow Card", "https://yellowcard.io", ["Bank Transfer", "Mobile Money"], "1% - 2%", "fast"),
        _exchange("paxful_africa", "Paxful", "https://paxful.com", ["Bank Transfer", "Mobile Money", "Gift Cards"], "0% - 1%", "moderate"),
    ),
    "asia_pacific": (
        _exchange("binance_asia", "Binance", "https://www.binance.com/en/register", ["Bank Transfer", "Card", "P2P"], "0.1%", "fast"),
        _exchange("binance_p2p_asia", "Binance P2P", "https://p2p.binance.com", ["Bank Transfer", "Mobile Wallets"], "0%", "moderate"),
        _exchange("kucoin_asia", "KuCoin", "https://www.kucoin.com/r", ["Card", "P2P"], "0.1%", "fast"),
        _exchange("okx_asia", "OKX", "https://www.okx.com", ["Card", "P2P", "Bank Transfer"], "0.08% - 0.1%", "fast"),
        _exchange("bybit_asia", "Bybit", "https://www.bybit.com/register", ["Card", "P2P", "Bank Transfer"], "0.1%", "fast"),
    ),
    "middle_east": (
        _exchange("binance_me", "Binance", "https://www.binance.com/en/register", ["Bank Transfer", "Card"], "0.1%", "fast"),
        _exchange("rain_me", "Rain", "https://www.rain.com", ["Bank Transfer", "Card"], "0% - 2%", "fast"),
        _exchange("bitoasis_me", "BitOasis", "https://bitoasis.net", ["Bank Transfer", "Card"], "0.3% - 1%", "fast"),
        _exchange("okx_me", "OKX", "https://www.okx.com", ["Card", "P2P"], "0.08% - 0.1%", "fast"),
    ),
    "latin_america": (
        _exchange("binance_latam", "Binance", "https://www.binance.com/en/register", ["Bank Transfer", "Card", "P2P"], "0.1%", "fast"),
        _exchange("binance_p2p_latam", "Binance P2P", "https://p2p.binance.com", ["Bank Transfer", "Mobile Wallets"], "0%", "moderate"),
        _exchange("bitso", "Bitso", "https://bitso.com", ["Bank Transfer", "SPEI", "OXXO"], "0.1% - 1%", "fast"),
        _exchange("ripio", "Ripio", "https://www.ripio.com", ["Bank Transfer", "Card"], "0.5% - 2%", "fast"),
    ),
    "oceania": (
        _exchange("swyftx_oceania", "Swyftx", "https://swyftx.com", ["PayID", "Bank Transfer", "POLi"], "0.6%", "instant"),
        _exchange("coinspot_oceania", "CoinSpot", "https://www.coinspot.com.au", ["PayID", "POLi", "BPAY"], "0.1% - 1%", "instant"),
        _exchange("independentreserve_oceania", "Independent Reserve", "https://www.independentreserve.com", ["Bank Transfer"], "0.1% - 0.5%", "fast"),
        _exchange("kraken_oceania", "Kraken", "https://www.kraken.com/sign-up", ["Bank Transfer"], "0.16% - 0.26%", "moderate"),
    ),
}

GLOBAL_EXCHANGES: Tuple[Exchange, ...] = (
    _exchange("binance_global", "Binance", "https://www.binance.com/en/register", ["Card", "P2P", "Bank Transfer"], "0.1%", "fast", "World's largest exchange, 350+ cryptocurrencies"),
    _exchange("bybit_global", "Bybit", "https://www.bybit.com/register", ["Card", "P2P", "Bank Transfer"], "0.1%", "fast", "Top 3 exchange, easy onboarding"),
    _exchange("kucoin_global", "KuCoin", "https://www.kucoin.com/r", ["Card", "P2P"], "0.1%", "fast", "700+ cryptocurrencies, P2P available"),
    _exchange("okx_global", "OKX", "https://www.okx.com", ["Card", "P2P", "Bank Transfer"], "0.08% - 0.1%", "fast", "Low fees, global coverage"),
    _exchange("mexc_global", "MEXC", "https://www.mexc.com/register", ["Card", "P2P"], "0%", "fast", "Zero trading fees, 2000+ coins"),
    _exchange("gate_global", "Gate.io", "https://www.gate.io/signup", ["Card", "P2P", "Bank Transfer"], "0.2%", "fast", "1400+ cryptocurrencies"),
    _exchange("crypto_com_global", "Crypto.com", "https://crypto.com/app", ["Card", "Bank Transfer"], "0% - 2.99%", "instant", "Popular mobile app, metal Visa cards"),
    _exchange("bitcoin_com_global", "Bitcoin.com", "https://www.bitcoin.com", ["Card", "Apple Pay", "Google Pay"], "Varies", "fast", "Easiest way to buy Bitcoin and BCH"),
)

# Global exchanges that do not onboard US residents.
US_RESTRICTED_EXCHANGES = frozenset(
    {"binance_global", "bybit_global", "kucoin_global", "okx_global", "mexc_global", "gate_global", "bitcoin_com_global"}
)


def get_currency(code: str) -> Optional[Currency]:
    wanted = (code or "").upper()
    return next((currency for currency in CURRENCIES if currency.code == wanted), None)


def search_currencies(query: str) -> List[Currency]:
    term = (query or "").strip().lower()
    if not term:
        return list(CURRENCIES)
    return [
        currency
        for currency in CURRENCIES
        if term in currency.code.lower() or term in currency.name.lower() or term in currency.country.lower()
    ]


def region_for_country(code: str) -> Optional[str]:
    row = COUNTRIES.get((code or "").upper())
    return row[1] if row else None


def country_name(code: str) -> str:
    row = COUNTRIES.get((code or "").upper())
    return row[0] if row else (code or "Unknown")


def exchanges_for_country(code: Optional[str]) -> Dict[str, object]:
    """Regional exchanges when the country is known, else the global list."""

    upper = (code or "").upper()
    region = region_for_country(upper)
    if region and region in REGION_EXCHANGES:
        return {
            "exchanges": REGION_EXCHANGES[region],
            "source": "region",
            "country_name": country_name(upper),
            "region": region,
        }
    exchanges = GLOBAL_EXCHANGES
    if upper == "US":
        exchanges = tuple(ex for ex in GLOBAL_EXCHANGES if ex.id not in US_RESTRICTED_EXCHANGES)
    return {
        "exchanges": exchanges,
        "source": "global",
        "country_name": country_name(upper) if upper else "Unknown",
        "region": None,
    }


def country_code_for_name(name: str) -> Optional[str]:
    wanted = (name or "").strip().lower()
    if len(wanted) == 2 and wanted.upper() in COUNTRIES:
        return wanted.upper()
    for code, (country, _) in COUNTRIES.items():
        if country.lower() == wanted:
            return code
    return None


__all__ = [
    "Currency",
    "Exchange",
    "CURRENCIES",
    "CURRENCY_CODES",
    "COUNTRIES",
    "REGION_NAMES",
    "REGION_EXCHANGES",
    "GLOBAL_EXCHANGES",
    "get_currency",
    "search_currencies",
    "region_for_country",
    "country_name",
    "exchanges_for_country",
    "country_code_for_name",
]
