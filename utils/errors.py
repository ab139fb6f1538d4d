class CurrencyEngineError(Exception):
    """Base class for detection / conversion engine errors."""


class UnparsableAmountError(CurrencyEngineError):
    """Raw amount text could not be turned into a positive number."""


class UnknownCurrencyIndicatorError(CurrencyEngineError):
    """Symbol or suffix has no entry in the currency lexicon."""


class UnresolvableRateError(CurrencyEngineError):
    """No cross rate exists for the currency pair (missing or identical)."""

    def __init__(self, from_code: str, to_code: str):
        super().__init__(f"No conversion rate from {from_code} to {to_code}")
        self.from_code = from_code
        self.to_code = to_code


class FormattingError(CurrencyEngineError):
    """Locale-aware currency formatting failed."""


class RateUnavailableError(CurrencyEngineError):
    """Rate provider failed and no cached table is available."""
