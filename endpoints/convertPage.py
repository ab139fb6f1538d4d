from fastapi import APIRouter, HTTPException
from models.schemas import ConvertPageRequest, ConvertPageResponse, UserPreferences
from endpoints.rateStore import CachedRateSource
from utils.annotator import ANNOTATION_CSS
from utils.host_document import HostDocument
from utils.page_controller import PageController
from utils.preferences import PreferenceStore, preference_store
from utils.logger import logger, log_endpoint_call
from utils.validators import (
    validate_content_length,
    validate_optional_currency,
    MAX_HTML_LENGTH,
)
import time

router = APIRouter()


def _request_preferences(request: ConvertPageRequest) -> UserPreferences:
    """Global preferences with per-request overrides applied."""
    preferences = preference_store.get_snapshot()

    target = validate_optional_currency(request.target_currency)
    if target:
        preferences.target_currency = target
        # An explicit target disables random selection unless asked for
        preferences.random_currency = bool(request.random_currency)
    elif request.random_currency is not None:
        preferences.random_currency = request.random_currency

    return preferences


@router.post("/convert-page", response_model=ConvertPageResponse)
async def convert_page(request: ConvertPageRequest):
    """
    Annotate every detected price of an HTML page with its converted amount.

    Rates unavailable -> the page is returned untouched (state: rates_pending).
    """
    start_time = time.time()

    try:
        html = validate_content_length(request.html, "html", MAX_HTML_LENGTH)
        preferences = PreferenceStore(_request_preferences(request))

        document = HostDocument.from_html(html)
        controller = PageController(
            document,
            CachedRateSource(),
            preferences,
            view_id=request.view_id,
        )

        try:
            phase = await controller.start()
            # Let the engine settle on its own mutation records
            document.flush()
        finally:
            controller.stop()

        converted = len(controller.registry)
        stylesheet = ANNOTATION_CSS if request.include_styles and converted else None

        result = ConvertPageResponse(
            html=document.to_html(stylesheet),
            state=phase.value,
            target_currency=controller.state.target_currency,
            converted=converted,
            fallback_used=controller.state.auto_fallback_attempted,
            last_pass=controller.last_pass,
            annotations=controller.annotation_summary(),
        )

        duration = (time.time() - start_time) * 1000
        log_endpoint_call(
            endpoint="/convert-page",
            inputs={
                "html_length": len(html),
                "target_currency": request.target_currency,
                "view_id": controller.view_id,
            },
            outputs={
                "state": result.state,
                "target_currency": result.target_currency,
                "converted": result.converted,
                "fallback_used": result.fallback_used,
            },
            duration_ms=duration,
        )

        return result

    except HTTPException:
        raise
    except Exception as e:
        logger.error("Page conversion failed", error=str(e))
        raise HTTPException(
            status_code=500, detail=f"Page conversion failed: {str(e)}"
        )
