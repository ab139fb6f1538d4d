"""
Pytest configuration: in-process collaborators, no live rate API
"""

import time
import pytest

from endpoints.rateStore import invalidate_cache
from models.schemas import CachedRates, UserPreferences
from utils.errors import RateUnavailableError
from utils.preferences import PreferenceStore
from utils.retry_handler import rate_breaker

# EUR-based table used across the suite
TEST_RATES = {
    "EUR": 1.0,
    "USD": 1.1,
    "JPY": 160.0,
    "GBP": 0.85,
    "CHF": 0.95,
    "SEK": 11.5,
    "HUF": 390.0,
    "BRL": 5.5,
    "CNY": 7.8,
}


def make_rates(rates=None, fetched_at=None, date="2024-05-01") -> CachedRates:
    return CachedRates(
        base="EUR",
        date=date,
        fetched_at=time.time() if fetched_at is None else fetched_at,
        rates=dict(TEST_RATES if rates is None else rates),
    )


class FakeRateSource:
    """Rate source with a fixed table; fails when the table is None."""

    def __init__(self, rates=None, cached=None, fresh=True):
        self.rates = rates
        self.cached = cached
        self.fresh = fresh
        self.calls = 0

    async def get_rates(self, base_currency, force_refresh=False):
        self.calls += 1
        if self.rates is None:
            raise RateUnavailableError("provider down")
        return self.rates

    def peek(self, base_currency):
        return self.cached

    def is_fresh(self, rates):
        return self.fresh


@pytest.fixture(autouse=True)
def clear_rate_cache():
    """Every test starts without cached rates and with a closed circuit"""
    invalidate_cache(forget_last_known_good=True)
    rate_breaker.reset()
    yield
    invalidate_cache(forget_last_known_good=True)
    rate_breaker.reset()


@pytest.fixture
def rates():
    return make_rates()


@pytest.fixture
def rate_source(rates):
    return FakeRateSource(rates=rates)


@pytest.fixture
def usd_preferences():
    """Fixed USD target, no random selection"""
    return PreferenceStore(
        UserPreferences(target_currency="USD", random_currency=False)
    )
