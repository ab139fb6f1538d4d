from pydantic import BaseModel, Field
from typing import List, Optional, Dict


# --- Detection Models ---
class DetectedAmount(BaseModel):
    full_match: str
    currency_code: str
    raw_amount: str
    parsed_amount: float = Field(gt=0)
    start_offset: int = Field(ge=0)
    end_offset: int

    class Config:
        frozen = True


class DetectRequest(BaseModel):
    text: str


class DetectResponse(BaseModel):
    detections: List[DetectedAmount]
    count: int


# --- Rate Models ---
class CachedRates(BaseModel):
    base: str
    date: Optional[str] = None
    fetched_at: float
    rates: Dict[str, float]


# --- Preference Models ---
class UserPreferences(BaseModel):
    enabled: bool = True
    hidden: bool = False
    hide_original: bool = True
    target_currency: str = "USD"
    random_currency: bool = True


class PreferencesUpdateRequest(BaseModel):
    enabled: Optional[bool] = None
    hidden: Optional[bool] = None
    hide_original: Optional[bool] = None
    target_currency: Optional[str] = None
    random_currency: Optional[bool] = None


# --- Page Conversion Models ---
class ConvertPageRequest(BaseModel):
    html: str
    view_id: Optional[str] = None
    target_currency: Optional[str] = None
    random_currency: Optional[bool] = None
    include_styles: bool = True


class PassStatistics(BaseModel):
    text_nodes: int = 0
    price_elements: int = 0
    split_elements: int = 0
    converted: int = 0
    points_hidden: int = 0


class ConvertPageResponse(BaseModel):
    html: str
    state: str
    target_currency: str
    converted: int
    fallback_used: bool
    last_pass: PassStatistics
    annotations: List[Dict[str, str]] = []


class CurrencyInfo(BaseModel):
    code: str
    name: str
    zero_decimal: bool
