from typing import Optional

import requests

from config import RATE_API_BASE, RATE_REQUEST_TIMEOUT
from models.schemas import CachedRates
from utils.logger import logger
from utils.parsers import parse_rates_payload
from utils.retry_handler import rate_breaker


class RateClient:
    """HTTP client for the exchange rate provider (Frankfurter API)."""

    def __init__(
        self,
        base_url: str = RATE_API_BASE,
        timeout: float = RATE_REQUEST_TIMEOUT,
        session: Optional[requests.Session] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()
        self.headers = {"Accept": "application/json"}

    def _get_latest(self, base_currency: str) -> CachedRates:
        url = f"{self.base_url}/latest"
        response = self.session.get(
            url,
            headers=self.headers,
            params={"from": base_currency},
            timeout=self.timeout,
        )
        response.raise_for_status()
        return parse_rates_payload(response.json(), base_currency)

    def fetch_latest(self, base_currency: str) -> CachedRates:
        """Fetch the latest table relative to base_currency."""
        logger.info("Fetching exchange rates", base=base_currency, url=self.base_url)
        rates = rate_breaker.call(self._get_latest, base_currency)
        logger.info(
            "Exchange rates fetched",
            base=base_currency,
            date=rates.date,
            currencies=len(rates.rates),
        )
        return rates


_client: Optional[RateClient] = None


def get_rate_client() -> RateClient:
    global _client
    if _client is None:
        _client = RateClient()
    return _client
