from typing import Optional
from fastapi import HTTPException

from utils.currency_detect import SUPPORTED_CURRENCIES

MAX_HTML_LENGTH = 5_000_000
MAX_TEXT_LENGTH = 100_000


def validate_currency(currency: str) -> str:
    """Validate and normalize currency code."""
    currency_upper = currency.upper().strip()
    if currency_upper not in SUPPORTED_CURRENCIES:
        raise HTTPException(
            status_code=400,
            detail=f"Unsupported currency code: {currency}. Must be one of {', '.join(SUPPORTED_CURRENCIES)}.",
        )

    return currency_upper


def validate_optional_currency(currency: Optional[str]) -> Optional[str]:
    if currency is None:
        return None
    return validate_currency(currency)


def validate_content_length(content: str, field_name: str, max_length: int) -> str:
    """Validate content is present and not oversized."""
    if content is None:
        raise HTTPException(
            status_code=400, detail=f"Missing required field: {field_name}"
        )

    if len(content) > max_length:
        raise HTTPException(
            status_code=413,
            detail=f"Invalid {field_name}: exceeds maximum length ({max_length:,})",
        )

    return content
