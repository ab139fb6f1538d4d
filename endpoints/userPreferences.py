from fastapi import APIRouter, HTTPException
from models.schemas import UserPreferences, PreferencesUpdateRequest
from utils.preferences import preference_store
from utils.validators import validate_optional_currency
from utils.logger import logger

router = APIRouter()


@router.get("/preferences", response_model=UserPreferences)
async def get_preferences():
    return preference_store.get_snapshot()


@router.post("/preferences", response_model=UserPreferences)
async def update_preferences(request: PreferencesUpdateRequest):
    """Update the process-wide preferences; later page conversions start from them."""
    try:
        changes = request.model_dump(exclude_none=True)
        if "target_currency" in changes:
            changes["target_currency"] = validate_optional_currency(
                changes["target_currency"]
            )

        changed = preference_store.update(**changes)
        logger.info("Preference update handled", changed=sorted(changed))
        return preference_store.get_snapshot()

    except HTTPException:
        raise
    except Exception as e:
        logger.error("Preference update failed", error=str(e))
        raise HTTPException(
            status_code=500, detail=f"Preference update failed: {str(e)}"
        )
