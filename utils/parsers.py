import math
import re
import time
from typing import Any, Dict

from models.schemas import CachedRates
from utils.currency_detect import is_no_decimal_currency
from utils.errors import UnparsableAmountError
from utils.logger import logger

_WHITESPACE = re.compile(r"\s")
# ASCII digits with an optional fraction
_PLAIN_NUMBER = re.compile(r"^[0-9]+(?:\.[0-9]+)?$")


def _normalize_separators(raw: str, currency_code: str) -> str:
    """
    Rewrite a raw amount into a plain float literal.

    Rules, in priority order:
    1. Both ',' and '.': the rightmost one is the decimal separator.
    2. Only ',': zero-decimal currencies treat it as thousands; otherwise
       exactly 3 trailing digits means thousands, anything else decimal.
    3. Only '.': 3 trailing digits in a zero-decimal currency means
       thousands; otherwise it stays the decimal point.
    """
    cleaned = _WHITESPACE.sub("", raw)
    zero_decimal = is_no_decimal_currency(currency_code)

    last_comma = cleaned.rfind(",")
    last_dot = cleaned.rfind(".")

    if last_comma != -1 and last_dot != -1:
        if last_comma > last_dot:
            # European: 1.000,50
            cleaned = cleaned.replace(".", "").replace(",", ".", 1)
        else:
            # US/UK: 1,000.50
            cleaned = cleaned.replace(",", "")
    elif last_comma != -1:
        if zero_decimal:
            # JPY, KRW etc: comma is always a thousands separator
            cleaned = cleaned.replace(",", "")
        elif len(cleaned) - last_comma - 1 == 3:
            cleaned = cleaned.replace(",", "")
        else:
            cleaned = cleaned.replace(",", ".", 1)
    elif last_dot != -1:
        if len(cleaned) - last_dot - 1 == 3 and zero_decimal:
            cleaned = cleaned.replace(".", "")

    return cleaned


def parse_amount_strict(raw: str, currency_code: str) -> float:
    """Parse a raw amount, raising UnparsableAmountError on failure."""
    if raw is None or not raw.strip():
        raise UnparsableAmountError("Empty amount")

    cleaned = _normalize_separators(raw, currency_code)
    if not _PLAIN_NUMBER.match(cleaned):
        raise UnparsableAmountError(f"Invalid amount: {raw!r}")
    value = float(cleaned)

    if value <= 0:
        raise UnparsableAmountError(f"Non-positive amount: {raw!r}")

    return value


def parse_amount(raw: str, currency_code: str) -> float:
    """Parse a raw amount; NaN when it cannot be used (callers discard)."""
    try:
        return parse_amount_strict(raw, currency_code)
    except UnparsableAmountError:
        return math.nan


def parse_rates_payload(payload: Dict[str, Any], base_currency: str) -> CachedRates:
    """
    Parse a rate provider response ({"base", "date", "rates"}) into CachedRates.
    The base currency is always present with rate 1.
    """
    raw_rates = payload.get("rates")
    if not isinstance(raw_rates, dict) or not raw_rates:
        raise ValueError("Rate payload has no rates")

    rates: Dict[str, float] = {}
    for code, value in raw_rates.items():
        try:
            rate = float(value)
        except (TypeError, ValueError):
            logger.warning("Skipping malformed rate", currency=code, value=value)
            continue
        if rate > 0:
            rates[code.upper()] = rate

    rates[base_currency] = 1.0

    return CachedRates(
        base=base_currency,
        date=payload.get("date"),
        fetched_at=time.time(),
        rates=rates,
    )
