from fastapi import APIRouter, HTTPException
from models.schemas import DetectRequest, DetectResponse
from utils.currency_detect import detect_currencies
from utils.logger import logger, log_endpoint_call
from utils.validators import validate_content_length, MAX_TEXT_LENGTH
import time

router = APIRouter()


@router.post("/detect-currencies", response_model=DetectResponse)
async def detect_currencies_endpoint(request: DetectRequest):
    """
    Detect monetary amounts in plain text.

    Pure pattern matching - no rates, no document.
    """
    start_time = time.time()

    try:
        text = validate_content_length(request.text, "text", MAX_TEXT_LENGTH)
        detections = detect_currencies(text)

        result = DetectResponse(detections=detections, count=len(detections))

        duration = (time.time() - start_time) * 1000
        log_endpoint_call(
            endpoint="/detect-currencies",
            inputs={"text_length": len(text)},
            outputs={
                "count": result.count,
                "currencies": sorted({d.currency_code for d in detections}),
            },
            duration_ms=duration,
        )

        return result

    except HTTPException:
        raise
    except Exception as e:
        logger.error("Currency detection failed", error=str(e))
        raise HTTPException(
            status_code=500, detail=f"Currency detection failed: {str(e)}"
        )
