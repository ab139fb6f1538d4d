import math
import re
from typing import Dict, List, NamedTuple, Optional, Pattern, Tuple

from models.schemas import DetectedAmount
from utils.errors import UnknownCurrencyIndicatorError

# Currency symbols and suffixes mapped to ISO codes.
# Ambiguous symbols resolve to the most common currency ($ -> USD, kr -> SEK).
SYMBOL_TO_CURRENCY: Dict[str, str] = {
    "$": "USD",
    "€": "EUR",
    "£": "GBP",
    "¥": "JPY",
    "￥": "JPY",
    "₹": "INR",
    "₩": "KRW",
    "R$": "BRL",
    "円": "JPY",
    "元": "CNY",
    "kr": "SEK",
    "Fr": "CHF",
    "zł": "PLN",
    "Kč": "CZK",
    "Ft": "HUF",
}

CURRENCY_NAMES: Dict[str, str] = {
    "USD": "US Dollar",
    "EUR": "Euro",
    "GBP": "British Pound",
    "JPY": "Japanese Yen",
    "CNY": "Chinese Yuan",
    "AUD": "Australian Dollar",
    "CAD": "Canadian Dollar",
    "CHF": "Swiss Franc",
    "HKD": "Hong Kong Dollar",
    "SGD": "Singapore Dollar",
    "SEK": "Swedish Krona",
    "NOK": "Norwegian Krone",
    "DKK": "Danish Krone",
    "NZD": "New Zealand Dollar",
    "MXN": "Mexican Peso",
    "BRL": "Brazilian Real",
    "INR": "Indian Rupee",
    "KRW": "South Korean Won",
    "THB": "Thai Baht",
    "IDR": "Indonesian Rupiah",
    "MYR": "Malaysian Ringgit",
    "PHP": "Philippine Peso",
    "PLN": "Polish Zloty",
    "CZK": "Czech Koruna",
    "HUF": "Hungarian Forint",
    "RON": "Romanian Leu",
    "TRY": "Turkish Lira",
    "ZAR": "South African Rand",
    "ILS": "Israeli Shekel",
    "ISK": "Icelandic Krona",
    "BGN": "Bulgarian Lev",
}

SUPPORTED_CURRENCIES: List[str] = list(CURRENCY_NAMES)

# Currencies displayed and parsed without fractional digits
ZERO_DECIMAL_CURRENCIES = {"JPY", "KRW", "ISK", "HUF"}

SINGLE_CHAR_SYMBOLS = "$€£¥￥₹₩"
SUFFIX_SYMBOLS = ("円", "元", "kr", "Kč", "Ft", "zł", "Fr")

# Cheap pre-filter: could this text contain a price at all?
QUICK_CURRENCY_TEST = re.compile(
    r"[$€£¥￥₹₩円元]"
    r"|(?:USD|EUR|GBP|JPY|CNY|AUD|CAD|CHF)\s?[0-9]"
    r"|R\$"
    r"|[0-9]\s?(?:kr|Kč|Ft|zł|Fr|円|元)"
)

# Text that is ONLY a currency symbol/suffix (used with fullmatch)
CURRENCY_SYMBOL_ONLY = re.compile(r"[$€£¥￥₹₩円元]|R\$|kr|Kč|Ft|zł|Fr")

# Text holding both a digit and a currency indicator
HAS_NUMBER_AND_CURRENCY = re.compile(
    r"[0-9].*[$€£¥￥₹₩円元]"
    r"|[$€£¥￥₹₩円元].*[0-9]"
    r"|R\$.*[0-9]"
    r"|[0-9].*(?:kr|Kč|Ft|zł|Fr)"
)

# Digits with optional thousands groups and an optional 1-2 digit fraction
NUM = r"[0-9]+(?:[,.\s][0-9]{3})*(?:[.,][0-9]{1,2})?"

# ASCII word boundaries; \b in Python would treat CJK letters as word chars
_START = r"(?<![A-Za-z0-9_])"
_END = r"(?![A-Za-z0-9_])"

_CODES = "|".join(SUPPORTED_CURRENCIES)


class PatternDefinition(NamedTuple):
    regex: Pattern
    currency_group: int
    amount_group: int
    kind: str  # "symbol" or "code"


# Priority order: earlier patterns claim a text range first
PATTERNS: Tuple[PatternDefinition, ...] = (
    # ISO code prefix: "USD 1,000.00", "USD1,000"
    PatternDefinition(
        re.compile(rf"{_START}({_CODES})\s?({NUM}){_END}"), 1, 2, "code"
    ),
    # ISO code suffix: "1,000.00 USD"
    PatternDefinition(
        re.compile(rf"{_START}({NUM})\s?({_CODES}){_END}"), 2, 1, "code"
    ),
    # Multi-char symbol prefix: "R$100"
    PatternDefinition(re.compile(rf"(R\$)\s?({NUM})"), 1, 2, "symbol"),
    # Single-char symbol prefix: "$100", "€50", "¥10,000"
    PatternDefinition(
        re.compile(rf"([{re.escape(SINGLE_CHAR_SYMBOLS)}])\s?({NUM})"), 1, 2, "symbol"
    ),
    # Suffix symbols: "1000円", "500 kr", "99 zł"
    PatternDefinition(
        re.compile(rf"({NUM})\s?({'|'.join(SUFFIX_SYMBOLS)}){_END}"), 2, 1, "symbol"
    ),
)

# False-positive heuristics (best effort, not a classifier)
CONTEXT_WINDOW = 20
ADJACENT_WINDOW = 5
VERSION_PATTERN = re.compile(r"v?\d+\.\d+\.\d+", re.ASCII)
CSS_UNIT_PATTERN = re.compile(r"\d+(?:px|em|rem|vh|vw|pt|cm|mm|%)\b", re.ASCII)
DATE_BEFORE_PATTERN = re.compile(r"\d[/\-]$", re.ASCII)
DATE_AFTER_PATTERN = re.compile(r"^[/\-]\d", re.ASCII)


def is_no_decimal_currency(currency: str) -> bool:
    return currency in ZERO_DECIMAL_CURRENCIES


def get_currency_display_name(currency_code: str) -> str:
    return CURRENCY_NAMES.get(currency_code, currency_code)


def resolve_currency_code(indicator: str, kind: str) -> str:
    """Map a matched currency indicator to its ISO code."""
    if kind == "code":
        if indicator in CURRENCY_NAMES:
            return indicator
    elif indicator in SYMBOL_TO_CURRENCY:
        return SYMBOL_TO_CURRENCY[indicator]
    raise UnknownCurrencyIndicatorError(f"Unknown currency indicator: {indicator!r}")


def guess_currency_from_text(text: str) -> Optional[str]:
    """First lexicon symbol contained in the text, in table order."""
    for symbol, code in SYMBOL_TO_CURRENCY.items():
        if symbol in text:
            return code
    return None


def might_contain_currency(text: str) -> bool:
    return bool(text) and QUICK_CURRENCY_TEST.search(text) is not None


def is_likely_false_positive(text: str, start: int, end: int) -> bool:
    """
    Heuristic rejection of matches that are probably not prices.

    Looks at CONTEXT_WINDOW characters either side for a dotted version
    number or a CSS length, and at ADJACENT_WINDOW characters either side
    for a date separator touching the match. Can both over- and
    under-reject.
    """
    context = text[max(0, start - CONTEXT_WINDOW) : end + CONTEXT_WINDOW]

    # Version numbers: v1.0.0, 2.3.1
    if VERSION_PATTERN.search(context):
        return True

    # CSS units: 100px, 2em
    if CSS_UNIT_PATTERN.search(context):
        return True

    # Date-like patterns adjacent to the match: 03/$04, 2024-
    before = text[max(0, start - ADJACENT_WINDOW) : start]
    after = text[end : end + ADJACENT_WINDOW]
    if DATE_BEFORE_PATTERN.search(before) or DATE_AFTER_PATTERN.search(after):
        return True

    return False


def find_pattern_matches(
    pattern: PatternDefinition, text: str
) -> List[Tuple[int, int, str, str]]:
    """All non-overlapping matches of one pattern tier: (start, end, indicator, amount)."""
    return [
        (
            m.start(),
            m.end(),
            m.group(pattern.currency_group),
            m.group(pattern.amount_group),
        )
        for m in pattern.regex.finditer(text)
    ]


def detect_currencies(text: str) -> List[DetectedAmount]:
    """
    Find (currency, amount) pairs in a text unit.

    Patterns run in priority order; a match is kept only if it does not
    overlap a range accepted earlier. Results are sorted by start offset.
    """
    # Imported here: utils.parsers depends on this module's tables
    from utils.parsers import parse_amount

    if not text:
        return []

    results: List[DetectedAmount] = []
    used_ranges: List[Tuple[int, int]] = []

    for pattern in PATTERNS:
        for start, end, indicator, raw_amount in find_pattern_matches(pattern, text):
            # Skip if this range overlaps an earlier detection
            if any(start < e and end > s for s, e in used_ranges):
                continue

            if is_likely_false_positive(text, start, end):
                continue

            try:
                currency_code = resolve_currency_code(indicator, pattern.kind)
            except UnknownCurrencyIndicatorError:
                continue

            parsed_amount = parse_amount(raw_amount, currency_code)
            if math.isnan(parsed_amount) or parsed_amount <= 0:
                continue

            results.append(
                DetectedAmount(
                    full_match=text[start:end],
                    currency_code=currency_code,
                    raw_amount=raw_amount,
                    parsed_amount=parsed_amount,
                    start_offset=start,
                    end_offset=end,
                )
            )
            used_ranges.append((start, end))

    results.sort(key=lambda d: d.start_offset)
    return results
