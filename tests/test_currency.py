"""Tests for currency parsing and formatting."""

import math

import pytest

from streamnotify.currency import (
    CurrencyFormatError,
    CurrencyParseError,
    format_amount,
    is_platform_unit,
    parse_purchase_amount,
    spoken_amount,
)


class TestParsePurchaseAmount:
    """Tests for paid message amount parsing."""

    @pytest.mark.parametrize(
        "value,amount,currency",
        [
            ("$10.00", 10.0, "USD"),
            ("€5,50", 5.5, "EUR"),
            ("£1,234.56", 1234.56, "GBP"),
            ("¥500", 500.0, "JPY"),
            ("R$25.00", 25.0, "BRL"),
            ("TRY 219.99", 219.99, "TRY"),
            ("NT$150", 150.0, "TWD"),
            ("20.00 AUD", 20.0, "AUD"),
            ("₩1,000", 1000.0, "KRW"),
        ],
    )
    def test_parses_display_strings(self, value, amount, currency):
        """Symbols and codes resolve to an ISO currency."""
        parsed = parse_purchase_amount(value)
        assert parsed.amount == pytest.approx(amount)
        assert parsed.currency == currency

    def test_dollar_uses_given_currency(self):
        """A bare $ takes the explicit currency when one is given."""
        parsed = parse_purchase_amount("$5.00", "cad")
        assert parsed.currency == "CAD"

    def test_numeric_with_currency(self):
        """Numbers need an explicit currency."""
        parsed = parse_purchase_amount(7.5, "usd")
        assert parsed.amount == 7.5
        assert parsed.currency == "USD"

    @pytest.mark.parametrize("value", [None, "", "-$5.00", "ten dollars", "$", True, 5])
    def test_rejects_invalid(self, value):
        """Missing, negative and unreadable amounts raise."""
        with pytest.raises(CurrencyParseError):
            parse_purchase_amount(value)

    def test_rejects_non_finite(self):
        """NaN and infinity are never amounts."""
        with pytest.raises(CurrencyParseError):
            parse_purchase_amount(math.inf, "USD")


class TestFormatting:
    """Tests for display and spoken formatting."""

    def test_format_whole_amount(self):
        """Whole amounts drop the decimals."""
        assert format_amount(10, "USD") == "10 USD"

    def test_format_fractional_amount(self):
        """Fractional amounts keep two decimals."""
        assert format_amount(5.5, "EUR") == "5.50 EUR"

    def test_format_platform_units(self):
        """Coins are whole numbers with separators."""
        assert format_amount(1500, "coins") == "1,500 coins"

    def test_zero_decimal_currency_rejects_fraction(self):
        """JPY and KRW cannot carry decimals."""
        with pytest.raises(CurrencyFormatError):
            format_amount(100.5, "JPY")

    def test_negative_rejected(self):
        """Negative amounts are invalid."""
        with pytest.raises(CurrencyFormatError):
            format_amount(-1, "USD")

    def test_spoken_plural_and_singular(self):
        """Spoken forms use currency names."""
        assert spoken_amount(10, "USD") == "10 dollars"
        assert spoken_amount(1, "USD") == "1 dollar"
        assert spoken_amount(300, "bits") == "300 bits"

    def test_spoken_unknown_currency(self):
        """Unknown currencies fall back to the code."""
        assert spoken_amount(3, "CHF") == "3 CHF"

    def test_is_platform_unit(self):
        """Coins and bits are platform units; fiat is not."""
        assert is_platform_unit("coins") is True
        assert is_platform_unit("Bits") is True
        assert is_platform_unit("USD") is False
        assert is_platform_unit(None) is False
