import asyncio
import time
from typing import Dict, Optional

from config import (
    RATE_BASE_CURRENCY,
    RATE_CACHE_TTL_SECONDS,
    RATE_STALE_MAX_SECONDS,
    RATE_RETRY_DELAY_SECONDS,
)
from models.schemas import CachedRates
from utils.errors import RateUnavailableError
from utils.logger import logger
from utils.rate_client import get_rate_client
from utils.retry_handler import retry_on_network_error

rate_cache: Dict[str, CachedRates] = {}
_last_known_good: Dict[str, CachedRates] = {}


def is_fresh(rates: CachedRates, now: Optional[float] = None) -> bool:
    now = time.time() if now is None else now
    return now - rates.fetched_at < RATE_CACHE_TTL_SECONDS


@retry_on_network_error(max_attempts=2, delay_seconds=RATE_RETRY_DELAY_SECONDS)
async def _fetch_rates(base_currency: str) -> CachedRates:
    client = get_rate_client()
    return await asyncio.to_thread(client.fetch_latest, base_currency)


async def get_rates(
    base_currency: str = RATE_BASE_CURRENCY, force_refresh: bool = False
) -> CachedRates:
    """Get a rate table with fallback strategy (fresh -> fetch -> stale -> last known good)."""
    now = time.time()
    cached = rate_cache.get(base_currency)

    if cached and not force_refresh and is_fresh(cached, now):
        logger.debug(
            "Rate cache hit (fresh)",
            base=base_currency,
            cache_age_minutes=round((now - cached.fetched_at) / 60, 1),
        )
        return cached

    try:
        rates = await _fetch_rates(base_currency)
        rate_cache[base_currency] = rates
        _last_known_good[base_currency] = rates
        return rates

    except Exception as fetch_error:
        logger.warning(
            "Rate fetch failed, attempting fallback",
            base=base_currency,
            error=str(fetch_error),
        )

        if cached and now - cached.fetched_at < RATE_STALE_MAX_SECONDS:
            logger.warning(
                "Using STALE rate cache - Degraded mode",
                base=base_currency,
                cache_age_hours=round((now - cached.fetched_at) / 3600, 2),
            )
            return cached

        if base_currency in _last_known_good:
            logger.error(
                "Using LAST-KNOWN-GOOD rates - Critical degradation",
                base=base_currency,
            )
            return _last_known_good[base_currency]

        raise RateUnavailableError(
            f"No exchange rates available for base {base_currency}"
        ) from fetch_error


def peek_rates(base_currency: str = RATE_BASE_CURRENCY) -> Optional[CachedRates]:
    """Cached table regardless of age, without any network access."""
    return rate_cache.get(base_currency) or _last_known_good.get(base_currency)


def seed_cache(rates: CachedRates):
    rate_cache[rates.base] = rates
    _last_known_good[rates.base] = rates


def invalidate_cache(base_currency: Optional[str] = None, forget_last_known_good: bool = False):
    """Manually invalidate rate cache."""
    if base_currency:
        rate_cache.pop(base_currency, None)
        if forget_last_known_good:
            _last_known_good.pop(base_currency, None)
        logger.info("Rate cache invalidated", base=base_currency)
    else:
        rate_cache.clear()
        if forget_last_known_good:
            _last_known_good.clear()
        logger.info("All rate cache cleared")


class CachedRateSource:
    """Rate source backed by this module's cache."""

    async def get_rates(self, base_currency: str, force_refresh: bool = False) -> CachedRates:
        return await get_rates(base_currency, force_refresh=force_refresh)

    def peek(self, base_currency: str) -> Optional[CachedRates]:
        return peek_rates(base_currency)

    def is_fresh(self, rates: CachedRates) -> bool:
        return is_fresh(rates)
