from typing import Optional
from fastapi import APIRouter, HTTPException

from config import RATE_BASE_CURRENCY
from endpoints.rateStore import get_rates, is_fresh
from models.schemas import CachedRates
from utils.currency_validator import compute_rate
from utils.errors import RateUnavailableError
from utils.logger import logger
from utils.validators import validate_currency

router = APIRouter()


@router.get("/rates", response_model=CachedRates)
async def fetch_rates(force_refresh: bool = False):
    """Current exchange rate table (cached, refreshed when stale)."""
    try:
        rates = await get_rates(RATE_BASE_CURRENCY, force_refresh=force_refresh)
        logger.info(
            "Rates served",
            base=rates.base,
            date=rates.date,
            fresh=is_fresh(rates),
        )
        return rates

    except RateUnavailableError as e:
        raise HTTPException(status_code=503, detail=str(e))
    except Exception as e:
        logger.error("Rate lookup failed", error=str(e))
        raise HTTPException(status_code=500, detail=f"Rate lookup failed: {str(e)}")


@router.get("/rates/{from_currency}/{to_currency}")
async def fetch_cross_rate(from_currency: str, to_currency: str):
    """Cross rate between two currencies (null when the pair is unresolvable)."""
    from_code = validate_currency(from_currency)
    to_code = validate_currency(to_currency)

    try:
        rates = await get_rates(RATE_BASE_CURRENCY)
    except RateUnavailableError as e:
        raise HTTPException(status_code=503, detail=str(e))

    rate: Optional[float] = compute_rate(rates.rates, from_code, to_code)
    return {
        "from_currency": from_code,
        "to_currency": to_code,
        "rate": rate,
        "date": rates.date,
    }
