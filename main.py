from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from endpoints.convertPage import router as convert_router
from endpoints.detectCurrencies import router as detect_router
from endpoints.fetchRates import router as rates_router
from endpoints.userPreferences import router as preferences_router
from endpoints.listCurrencies import router as currencies_router
from endpoints.health import router as health_router

app = FastAPI(
    title="Currency Converter API",
    description="Detects prices in web pages and annotates them with converted amounts",
    version="1.0.0",
)

# CORS Configuration
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Register endpoint routers
app.include_router(convert_router, tags=["Conversion"])
app.include_router(detect_router, tags=["Detection"])
app.include_router(rates_router, tags=["Rates"])
app.include_router(preferences_router, tags=["Preferences"])
app.include_router(currencies_router, tags=["Currencies"])
app.include_router(health_router, tags=["Health"])


@app.get("/")
async def root():
    return {
        "status": "running",
        "service": "Currency Converter API",
        "version": "1.0.0",
        "endpoints": {
            "convert_page": "/convert-page",
            "detect_currencies": "/detect-currencies",
            "rates": "/rates",
            "cross_rate": "/rates/{from_currency}/{to_currency}",
            "preferences": "/preferences",
            "currencies": "/currencies",
            "health": "/health",
        },
    }
