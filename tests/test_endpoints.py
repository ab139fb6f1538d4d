import pytest
from fastapi import HTTPException

import endpoints.rateStore as rate_store
from conftest import make_rates
from endpoints.convertPage import convert_page
from endpoints.detectCurrencies import detect_currencies_endpoint
from endpoints.fetchRates import fetch_cross_rate, fetch_rates
from endpoints.health import health
from endpoints.listCurrencies import list_currencies
from endpoints.rateStore import seed_cache
from endpoints.userPreferences import get_preferences, update_preferences
from main import root
from models.schemas import (
    ConvertPageRequest,
    DetectRequest,
    PreferencesUpdateRequest,
)
from utils.errors import RateUnavailableError
from utils.preferences import default_preferences, preference_store
from utils.validators import MAX_TEXT_LENGTH

PAGE = (
    "<html><head><title>Shop</title></head><body>"
    "<p>Price: €100</p>"
    '<div class="price"><span>£</span><span>20</span></div>'
    "</body></html>"
)


@pytest.fixture
def provider_down(monkeypatch):
    async def failing_fetch(base_currency):
        raise RateUnavailableError("provider down")

    monkeypatch.setattr(rate_store, "_fetch_rates", failing_fetch)


@pytest.fixture(autouse=True)
def reset_preferences():
    yield
    preference_store.update(**default_preferences().model_dump())


class TestConvertPage:
    """POST /convert-page"""

    async def test_page_converted(self):
        seed_cache(make_rates())

        result = await convert_page(
            ConvertPageRequest(html=PAGE, target_currency="usd", view_id="abc")
        )

        assert result.state == "active"
        assert result.target_currency == "USD"
        assert result.converted == 2
        assert result.fallback_used == False
        assert result.last_pass.converted == 2
        assert "fx-amount" in result.html
        assert "<style>" in result.html
        assert {a["from_currency"] for a in result.annotations} == {"EUR", "GBP"}

    async def test_without_styles(self):
        seed_cache(make_rates())

        result = await convert_page(
            ConvertPageRequest(html=PAGE, target_currency="USD", include_styles=False)
        )

        assert "<style>" not in result.html
        assert result.converted == 2

    async def test_fallback_reported(self):
        seed_cache(make_rates())
        html = "<html><body><p>Only $20</p></body></html>"

        result = await convert_page(
            ConvertPageRequest(html=html, target_currency="USD")
        )

        assert result.fallback_used == True
        assert result.target_currency == "EUR"
        assert result.converted == 1

    async def test_rates_unavailable_returns_page_untouched(self, provider_down):
        result = await convert_page(
            ConvertPageRequest(html=PAGE, target_currency="USD")
        )

        assert result.state == "rates_pending"
        assert result.converted == 0
        assert result.html == PAGE

    async def test_random_target_without_explicit_currency(self):
        seed_cache(make_rates())

        result = await convert_page(ConvertPageRequest(html=PAGE))

        assert result.target_currency != "JPY"
        assert result.state == "active"

    async def test_invalid_target_rejected(self):
        with pytest.raises(HTTPException) as exc_info:
            await convert_page(ConvertPageRequest(html=PAGE, target_currency="XXX"))

        assert exc_info.value.status_code == 400

    async def test_disabled_preference_respected(self):
        seed_cache(make_rates())
        preference_store.update(enabled=False)

        result = await convert_page(
            ConvertPageRequest(html=PAGE, target_currency="USD")
        )

        assert result.converted == 0
        assert result.html == PAGE


class TestDetectEndpoint:
    """POST /detect-currencies"""

    async def test_detections_returned(self):
        result = await detect_currencies_endpoint(
            DetectRequest(text="Was $20, now 15 EUR")
        )

        assert result.count == 2
        assert [d.currency_code for d in result.detections] == ["USD", "EUR"]

    async def test_oversized_text_rejected(self):
        with pytest.raises(HTTPException) as exc_info:
            await detect_currencies_endpoint(
                DetectRequest(text="$1 " * (MAX_TEXT_LENGTH // 3 + 1))
            )

        assert exc_info.value.status_code == 413


class TestRatesEndpoints:
    """GET /rates and GET /rates/{from}/{to}"""

    async def test_cached_table(self):
        seed_cache(make_rates())

        result = await fetch_rates()

        assert result.base == "EUR"
        assert result.rates["JPY"] == 160.0

    async def test_unavailable(self, provider_down):
        with pytest.raises(HTTPException) as exc_info:
            await fetch_rates()

        assert exc_info.value.status_code == 503

    async def test_cross_rate(self):
        seed_cache(make_rates())

        result = await fetch_cross_rate("jpy", "usd")

        assert result["from_currency"] == "JPY"
        assert result["rate"] == pytest.approx(1.1 / 160)

    async def test_cross_rate_same_currency_is_null(self):
        seed_cache(make_rates())

        result = await fetch_cross_rate("USD", "USD")

        assert result["rate"] is None

    async def test_cross_rate_unknown_currency(self):
        with pytest.raises(HTTPException) as exc_info:
            await fetch_cross_rate("ABC", "USD")

        assert exc_info.value.status_code == 400


class TestPreferencesEndpoints:
    """GET/POST /preferences"""

    async def test_defaults(self):
        result = await get_preferences()

        assert result.enabled == True
        assert result.hide_original == True
        assert result.target_currency == "USD"
        assert result.random_currency == True

    async def test_update(self):
        result = await update_preferences(
            PreferencesUpdateRequest(target_currency="gbp", random_currency=False)
        )

        assert result.target_currency == "GBP"
        assert result.random_currency == False
        assert (await get_preferences()).target_currency == "GBP"

    async def test_update_applies_to_later_conversions(self):
        seed_cache(make_rates())
        await update_preferences(
            PreferencesUpdateRequest(target_currency="GBP", random_currency=False)
        )

        result = await convert_page(ConvertPageRequest(html=PAGE))

        assert result.target_currency == "GBP"
        assert {a["from_currency"] for a in result.annotations} == {"EUR"}

    async def test_update_invalid_currency(self):
        with pytest.raises(HTTPException) as exc_info:
            await update_preferences(PreferencesUpdateRequest(target_currency="XXX"))

        assert exc_info.value.status_code == 400


class TestServiceEndpoints:
    """GET /currencies, GET /health, GET /"""

    async def test_currency_list(self):
        result = await list_currencies()

        assert len(result) == 31
        yen = next(c for c in result if c.code == "JPY")
        assert yen.zero_decimal == True
        assert yen.name == "Japanese Yen"

    async def test_health_without_rates(self):
        result = await health()

        assert result["status"] == "healthy"
        assert result["rates"] == {"available": False}
        assert result["rate_circuit"] == "CLOSED"

    async def test_health_with_rates(self):
        seed_cache(make_rates())

        result = await health()

        assert result["rates"]["available"] == True
        assert result["rates"]["fresh"] == True

    async def test_root(self):
        result = await root()

        assert result["status"] == "running"
        assert "/convert-page" in result["endpoints"].values()
