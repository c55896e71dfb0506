"""Client utilities for the Google Places API."""

import logging
from typing import Any, Dict, Optional

import requests

logger = logging.getLogger(__name__)
_SESSION = requests.Session()
_BASE_URL = "https://maps.googleapis.com/maps/api/place"

SEARCH_TYPES = ("restaurant", "shopping_mall", "store", "cafe", "supermarket", "department_store")


class GooglePlacesError(RuntimeError):
    """Raised when the Places API returns a non-successful response."""


def nearby_search(
    lat: float,
    lng: float,
    radius_meters: int,
    api_key: str,
    place_type: Optional[str] = None,
    keyword: Optional[str] = None,
    timeout: float = 10,
) -> Dict[str, Any]:
    params = {"location": f"{lat},{lng}", "radius": radius_meters, "key": api_key}
    if place_type:
        if place_type not in SEARCH_TYPES:
            raise ValueError(f"unsupported place type: {place_type}")
        params["type"] = place_type
    if keyword:
        params["keyword"] = keyword
    response = _SESSION.get(f"{_BASE_URL}/nearbysearch/json", params=params, timeout=timeout)
    response.raise_for_status()
    payload = response.json()
    status = payload.get("status")
    if status not in {"OK", "ZERO_RESULTS"}:
        logger.error("nearby_search failed: status=%s, error_message=%s", status, payload.get("error_message"))
        raise GooglePlacesError(payload.get("error_message") or status)
    return payload
