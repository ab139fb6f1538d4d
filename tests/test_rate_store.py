import time
import pytest
import requests

import endpoints.rateStore as rate_store
from conftest import make_rates
from endpoints.rateStore import (
    CachedRateSource,
    get_rates,
    invalidate_cache,
    is_fresh,
    peek_rates,
    seed_cache,
)
from utils.errors import RateUnavailableError
from utils.rate_client import RateClient
from utils.retry_handler import (
    CircuitBreaker,
    CircuitOpenError,
    retry_on_network_error,
)

HOUR = 60 * 60


class FakeClient:
    def __init__(self, result=None, error=None):
        self.result = result
        self.error = error
        self.calls = 0

    def fetch_latest(self, base_currency):
        self.calls += 1
        if self.error is not None:
            raise self.error
        return self.result


class FakeResponse:
    def __init__(self, payload, status_code=200):
        self.payload = payload
        self.status_code = status_code

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} error")

    def json(self):
        return self.payload


class FakeSession:
    def __init__(self, response):
        self.response = response
        self.requests = []

    def get(self, url, **kwargs):
        self.requests.append((url, kwargs))
        return self.response


@pytest.fixture
def use_client(monkeypatch):
    def install(client):
        monkeypatch.setattr(rate_store, "get_rate_client", lambda: client)
        return client

    return install


class TestRateCache:
    """Fresh -> fetch -> stale -> last known good"""

    async def test_fresh_cache_hit(self, use_client):
        client = use_client(FakeClient(error=ValueError("should not be called")))
        seed_cache(make_rates())

        rates = await get_rates("EUR")

        assert rates.rates["USD"] == 1.1
        assert client.calls == 0

    async def test_fetch_populates_cache(self, use_client):
        fetched = make_rates()
        client = use_client(FakeClient(result=fetched))

        assert await get_rates("EUR") is fetched
        assert peek_rates("EUR") is fetched
        assert client.calls == 1

    async def test_force_refresh_bypasses_cache(self, use_client):
        fetched = make_rates({"EUR": 1.0, "USD": 1.2})
        client = use_client(FakeClient(result=fetched))
        seed_cache(make_rates())

        rates = await get_rates("EUR", force_refresh=True)

        assert rates.rates["USD"] == 1.2
        assert client.calls == 1

    async def test_stale_cache_on_failure(self, use_client):
        use_client(FakeClient(error=ValueError("bad payload")))
        stale = make_rates(fetched_at=time.time() - 5 * HOUR)
        seed_cache(stale)

        assert not is_fresh(stale)
        assert await get_rates("EUR") is stale

    async def test_last_known_good_on_failure(self, use_client):
        use_client(FakeClient(error=ValueError("bad payload")))
        old = make_rates(fetched_at=time.time() - 30 * 24 * HOUR)
        seed_cache(old)
        invalidate_cache("EUR")

        assert await get_rates("EUR") is old

    async def test_unavailable_without_cache(self, use_client):
        use_client(FakeClient(error=ValueError("bad payload")))

        with pytest.raises(RateUnavailableError):
            await get_rates("EUR")

    async def test_forget_last_known_good(self):
        seed_cache(make_rates())

        invalidate_cache("EUR", forget_last_known_good=True)

        assert peek_rates("EUR") is None

    async def test_cached_rate_source(self, use_client):
        use_client(FakeClient(result=make_rates()))
        source = CachedRateSource()

        assert source.peek("EUR") is None
        rates = await source.get_rates("EUR")
        assert source.peek("EUR") is rates
        assert source.is_fresh(rates)


class TestRateClient:
    """HTTP client for the rate provider"""

    def test_fetch_latest(self):
        session = FakeSession(
            FakeResponse({"base": "EUR", "date": "2024-05-01", "rates": {"USD": 1.08}})
        )
        client = RateClient(base_url="https://rates.test/", session=session)

        rates = client.fetch_latest("EUR")

        url, kwargs = session.requests[0]
        assert url == "https://rates.test/latest"
        assert kwargs["params"] == {"from": "EUR"}
        assert rates.rates == {"USD": 1.08, "EUR": 1.0}
        assert rates.date == "2024-05-01"

    def test_http_error_raised(self):
        client = RateClient(session=FakeSession(FakeResponse({}, status_code=503)))

        with pytest.raises(requests.HTTPError):
            client.fetch_latest("EUR")


class TestResilience:
    """Circuit breaker and retry policy"""

    def test_breaker_opens_after_threshold(self):
        breaker = CircuitBreaker(failure_threshold=2, timeout_duration=60)

        def failing():
            raise ConnectionError("down")

        for _ in range(2):
            with pytest.raises(ConnectionError):
                breaker.call(failing)

        assert breaker.state == "OPEN"
        with pytest.raises(CircuitOpenError):
            breaker.call(lambda: "ok")

        breaker.reset()
        assert breaker.call(lambda: "ok") == "ok"

    async def test_network_errors_retried(self):
        attempts = []

        @retry_on_network_error(max_attempts=3, delay_seconds=0)
        async def flaky():
            attempts.append(1)
            if len(attempts) < 3:
                raise ConnectionError("reset")
            return "ok"

        assert await flaky() == "ok"
        assert len(attempts) == 3

    async def test_deterministic_errors_not_retried(self):
        attempts = []

        @retry_on_network_error(max_attempts=3, delay_seconds=0)
        async def broken():
            attempts.append(1)
            raise ValueError("bad payload")

        with pytest.raises(ValueError):
            await broken()
        assert len(attempts) == 1

    async def test_retries_exhausted(self):
        @retry_on_network_error(max_attempts=2, delay_seconds=0)
        async def down():
            raise TimeoutError("timeout")

        with pytest.raises(TimeoutError):
            await down()
