from typing import List
from fastapi import APIRouter

from models.schemas import CurrencyInfo
from utils.currency_detect import (
    SUPPORTED_CURRENCIES,
    get_currency_display_name,
    is_no_decimal_currency,
)

router = APIRouter()


@router.get("/currencies", response_model=List[CurrencyInfo])
async def list_currencies():
    return [
        CurrencyInfo(
            code=code,
            name=get_currency_display_name(code),
            zero_decimal=is_no_decimal_currency(code),
        )
        for code in SUPPORTED_CURRENCIES
    ]
