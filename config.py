import os
from dotenv import load_dotenv

load_dotenv()

# Exchange Rate Provider
RATE_API_BASE = os.getenv("RATE_API_BASE", "https://api.frankfurter.app")
# Fixed base currency for rate fetching (cross rates are computed from it)
RATE_BASE_CURRENCY = os.getenv("RATE_BASE_CURRENCY", "EUR")
RATE_CACHE_TTL_SECONDS = int(os.getenv("RATE_CACHE_TTL_SECONDS", 4 * 60 * 60))
RATE_STALE_MAX_SECONDS = int(os.getenv("RATE_STALE_MAX_SECONDS", 7 * 24 * 60 * 60))
RATE_REQUEST_TIMEOUT = float(os.getenv("RATE_REQUEST_TIMEOUT", 10))
RATE_RETRY_DELAY_SECONDS = float(os.getenv("RATE_RETRY_DELAY_SECONDS", 2))

# Logging
LOG_LEVEL = os.getenv("LOG_LEVEL", "DEBUG")

# Display
DISPLAY_LOCALE = os.getenv("DISPLAY_LOCALE", "en_US")
DEFAULT_TARGET_CURRENCY = os.getenv("DEFAULT_TARGET_CURRENCY", "USD")

# Timed re-passes for late-rendered content (seconds)
REPASS_DELAYS = tuple(
    float(d) for d in os.getenv("REPASS_DELAYS", "1,3").split(",") if d.strip()
)
