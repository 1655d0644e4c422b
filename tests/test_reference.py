from brokerage.reference import (
    GLOBAL_EXCHANGES,
    US_RESTRICTED_EXCHANGES,
    country_code_for_name,
    country_name,
    exchanges_for_country,
    get_currency,
    region_for_country,
    search_currencies,
)


def test_currency_lookup():
    assert get_currency("gbp").symbol == "£"
    assert get_currency("XXX") is None
    codes = [currency.code for currency in search_currencies("dollar")]
    assert "USD" in codes and "CAD" in codes
    assert "EUR" not in codes
    assert len(search_currencies("")) > 10


def test_regions_and_names():
    assert region_for_country("us") == "north_america"
    assert region_for_country("NG") == "africa"
    assert region_for_country("DE") == "europe"
    assert region_for_country("ZZ") is None
    assert country_name("KE") == "Kenya"
    assert country_code_for_name("United Kingdom") == "GB"
    assert country_code_for_name("fr") == "FR"
    assert country_code_for_name("Atlantis") is None


def test_regional_exchanges():
    result = exchanges_for_country("NG")
    assert result["source"] == "region"
    assert result["region"] == "africa"
    assert result["country_name"] == "Nigeria"
    assert "luno_africa" in {exchange.id for exchange in result["exchanges"]}


def test_unknown_country_gets_the_global_list():
    result = exchanges_for_country("ZZ")
    assert result["source"] == "global"
    assert result["exchanges"] == GLOBAL_EXCHANGES
    assert exchanges_for_country(None)["country_name"] == "Unknown"


def test_us_residents_never_see_restricted_exchanges():
    ids = {exchange.id for exchange in exchanges_for_country("US")["exchanges"]}
    assert ids
    assert not ids & US_RESTRICTED_EXCHANGES
