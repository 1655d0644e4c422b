from datetime import datetime
from decimal import Decimal

import pytest

from brokerage.exceptions import ValidationError
from brokerage.models import WithdrawalMethod
from brokerage.money import (
    fiat_to_sats,
    format_amount,
    format_btc,
    format_currency,
    parse_amount,
    sats_to_cents,
    to_cents,
    to_minor,
    to_sats,
)
from brokerage.validation import (
    parse_bool,
    parse_datetime,
    require_amount,
    validate_contact_form,
    validate_pin,
    validate_strong_password,
    validate_withdrawal_details,
)


def test_amount_conversions():
    assert to_cents("12.345") == 1_235
    assert to_cents("1,000") == 100_000
    assert to_sats("0.00000001") == 1
    assert to_sats(Decimal("1.5")) == 150_000_000
    assert to_minor("2", "BTC") == 200_000_000
    assert to_minor("2", "FIAT") == 200


def test_formatting():
    assert format_currency(123_450) == "$1,234.50"
    assert format_currency(-500, "gbp") == "-£5.00"
    assert format_currency(999, "SEK") == "9.99 SEK"
    assert format_btc(50_000_000) == "0.5 BTC"
    assert format_btc(200_000_000) == "2.0 BTC"
    assert format_amount(1, "BTC") == "0.00000001 BTC"
    assert format_amount(1_000, "FIAT", "EUR") == "€10.00"


def test_price_conversions_round_down():
    price = Decimal("30000")
    assert fiat_to_sats(10_000, price) == 333_333
    assert sats_to_cents(333_333, price) == 9_999
    assert fiat_to_sats(10_000, Decimal("0")) == 0
    assert sats_to_cents(1_000, Decimal("-1")) == 0


@pytest.mark.parametrize("raw", [None, "", "   ", "abc", "NaN", object()])
def test_parse_amount_rejects_garbage(raw):
    assert parse_amount(raw) is None


def test_parse_amount_accepts_numbers():
    assert parse_amount(" 10.5 ") == Decimal("10.50")
    assert parse_amount(3) == Decimal("3.00")


def test_require_amount():
    assert require_amount("0.12345678", btc=True) == Decimal("0.12345678")
    assert require_amount("0", allow_zero=True) == Decimal("0.00")
    with pytest.raises(ValidationError, match="Amount must be positive"):
        require_amount("0")
    with pytest.raises(ValidationError, match="Bad amount"):
        require_amount("-3", message="Bad amount")


def test_password_and_pin_rules():
    assert validate_strong_password("Passw0rdX") == "Passw0rdX"
    with pytest.raises(ValidationError, match="uppercase"):
        validate_strong_password("passw0rdx")
    assert validate_pin(" 0042 ") == "0042"
    with pytest.raises(ValidationError, match="exactly 4 digits"):
        validate_pin("12345")


def test_parse_helpers():
    assert parse_bool("on") is True
    assert parse_bool("false") is False
    assert parse_bool(True) is True
    assert parse_datetime("") is None
    assert parse_datetime("2024-03-01T10:30:00Z") == datetime(2024, 3, 1, 10, 30)
    with pytest.raises(ValidationError, match="Invalid date"):
        parse_datetime("yesterday")


def test_withdrawal_details_per_method():
    bank = validate_withdrawal_details(
        WithdrawalMethod.BANK_TRANSFER,
        {"bankName": "First Bank", "accountName": "Jane Doe", "accountNumber": "0012345", "country": "US", "iban": ""},
    )
    assert bank == {"bankName": "First Bank", "accountName": "Jane Doe", "accountNumber": "0012345", "country": "US"}

    assert validate_withdrawal_details(WithdrawalMethod.CASHAPP, {"cashtag": "$jane"}) == {"cashtag": "$jane"}
    with pytest.raises(ValidationError, match="cashtag"):
        validate_withdrawal_details(WithdrawalMethod.CASHAPP, {"cashtag": "jane"})

    assert validate_withdrawal_details(WithdrawalMethod.PAYPAL, {"paypalEmail": "Jane@Pay.com"}) == {
        "paypalEmail": "jane@pay.com"
    }
    assert validate_withdrawal_details(WithdrawalMethod.ZELLE, {"zellePhone": "+15550100"}) == {"zellePhone": "+15550100"}
    with pytest.raises(ValidationError, match="Zelle email or phone"):
        validate_withdrawal_details(WithdrawalMethod.ZELLE, {})
    with pytest.raises(ValidationError, match="wallet address"):
        validate_withdrawal_details(WithdrawalMethod.ETHEREUM, {"walletAddress": "0x1"})


def test_contact_form_rules():
    cleaned = validate_contact_form(" Jo ", "JO@EXAMPLE.COM", "Hello there", "A" * 20)
    assert cleaned["name"] == "Jo"
    assert cleaned["email"] == "jo@example.com"
    with pytest.raises(ValidationError, match="Subject"):
        validate_contact_form("Jo", "jo@example.com", "Hi", "A" * 20)
