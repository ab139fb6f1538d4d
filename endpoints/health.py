import time

from fastapi import APIRouter

from config import RATE_BASE_CURRENCY
from endpoints.rateStore import is_fresh, peek_rates
from utils.retry_handler import rate_breaker

router = APIRouter()


@router.get("/health")
async def health():
    """Service health plus the state of the held rate table."""
    rates = peek_rates(RATE_BASE_CURRENCY)
    if rates is None:
        rate_status = {"available": False}
    else:
        rate_status = {
            "available": True,
            "fresh": is_fresh(rates),
            "date": rates.date,
            "age_minutes": round((time.time() - rates.fetched_at) / 60, 1),
            "currencies": len(rates.rates),
        }

    return {
        "status": "healthy",
        "rates": rate_status,
        "rate_circuit": rate_breaker.state,
    }
