from typing import Dict, Optional

from utils.errors import UnresolvableRateError


def compute_rate(rates: Dict[str, float], from_code: str, to_code: str) -> Optional[float]:
    """
    Cross rate between two currencies of a common-base table.
    None when the pair is identical or either side is missing.
    """
    if from_code == to_code:
        return None

    from_rate = rates.get(from_code)
    to_rate = rates.get(to_code)
    if not from_rate or not to_rate:
        return None

    return to_rate / from_rate


def require_rate(rates: Dict[str, float], from_code: str, to_code: str) -> float:
    rate = compute_rate(rates, from_code, to_code)
    if rate is None:
        raise UnresolvableRateError(from_code, to_code)
    return rate
