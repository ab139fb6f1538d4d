import math
import pytest

from utils.errors import UnparsableAmountError
from utils.parsers import parse_amount, parse_amount_strict, parse_rates_payload


class TestAmountSeparators:
    """Decimal / thousands separator disambiguation"""

    def test_us_format(self):
        assert parse_amount("1,234.56", "USD") == 1234.56

    def test_european_format(self):
        assert parse_amount("1.234,56", "USD") == 1234.56

    def test_comma_thousands_for_zero_decimal_currency(self):
        assert parse_amount("1,234", "JPY") == 1234

    def test_comma_decimal_with_short_fraction(self):
        assert parse_amount("12,5", "EUR") == 12.5

    def test_comma_with_three_digits_is_thousands(self):
        """1,000 USD is one thousand, not one"""
        assert parse_amount("1,000", "USD") == 1000

    def test_comma_two_digits_is_decimal(self):
        assert parse_amount("12,50", "EUR") == 12.5

    def test_zero_decimal_comma_never_decimal(self):
        assert parse_amount("12,50", "JPY") == 1250

    def test_dot_three_digits_zero_decimal_is_thousands(self):
        assert parse_amount("1.500", "JPY") == 1500

    def test_dot_three_digits_stays_decimal_otherwise(self):
        assert parse_amount("1.500", "USD") == 1.5

    def test_whitespace_stripped(self):
        assert parse_amount("1 234", "SEK") == 1234

    def test_plain_digits(self):
        assert parse_amount("980", "JPY") == 980


class TestAmountFailures:
    """Unusable amounts come back as NaN"""

    @pytest.mark.parametrize(
        "raw",
        ["", "   ", "abc", "0", "0,00", "1.234.567", "inf", "nan", "1_000", "1e3", "١٢٣"],
    )
    def test_unusable_amounts_are_nan(self, raw):
        assert math.isnan(parse_amount(raw, "USD"))

    def test_strict_parser_raises(self):
        with pytest.raises(UnparsableAmountError):
            parse_amount_strict("abc", "USD")

    def test_strict_parser_rejects_zero(self):
        with pytest.raises(UnparsableAmountError):
            parse_amount_strict("0", "EUR")


class TestRatesPayload:
    """Provider payload parsing"""

    def test_base_currency_added(self):
        rates = parse_rates_payload(
            {"base": "EUR", "date": "2024-05-01", "rates": {"USD": 1.1}}, "EUR"
        )

        assert rates.base == "EUR"
        assert rates.date == "2024-05-01"
        assert rates.rates == {"USD": 1.1, "EUR": 1.0}

    def test_malformed_rates_skipped(self):
        rates = parse_rates_payload(
            {"rates": {"USD": "1.1", "JPY": "n/a", "GBP": None, "CHF": -1}}, "EUR"
        )

        assert rates.rates == {"USD": 1.1, "EUR": 1.0}

    def test_missing_rates_rejected(self):
        with pytest.raises(ValueError):
            parse_rates_payload({"base": "EUR"}, "EUR")
