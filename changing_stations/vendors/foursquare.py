"""Client utilities for the Foursquare Places API."""

import logging
from typing import Any, Dict, Iterable, Optional

import requests

logger = logging.getLogger(__name__)
_SESSION = requests.Session()
_BASE_URL = "https://places-api.foursquare.com/places"
_API_VERSION = "2025-06-17"

# Category ids likely to have changing facilities.
DEFAULT_CATEGORIES = (
    "13065",  # Restaurant
    "17069",  # Shopping Mall
    "17000",  # Retail
    "13003",  # Fast Food
    "17127",  # Gas Station
    "10027",  # Zoo
    "10001",  # Arts & Entertainment
    "18021",  # Gym / Fitness
    "13035",  # Coffee Shop
    "17031",  # Department Store
    "17043",  # Supermarket
)


class FoursquareError(RuntimeError):
    """Raised when the Places API returns a non-successful response."""


def place_search(
    lat: float,
    lng: float,
    radius_meters: int,
    api_key: str,
    categories: Optional[Iterable[str]] = None,
    chains: Optional[Iterable[str]] = None,
    query: Optional[str] = None,
    limit: int = 50,
    timeout: float = 10,
) -> Dict[str, Any]:
    if not api_key:
        raise FoursquareError("FOURSQUARE_API_KEY is required")

    params: Dict[str, Any] = {
        "ll": f"{lat},{lng}",
        "radius": radius_meters,
        "categories": ",".join(categories if categories is not None else DEFAULT_CATEGORIES),
        "limit": limit,
    }
    if chains:
        params["fsq_chain_ids"] = ",".join(chains)
    if query:
        params["query"] = query

    headers = {
        "Accept": "application/json",
        "Authorization": f"Bearer {api_key}",
        "X-Places-Api-Version": _API_VERSION,
    }
    try:
        response = _SESSION.get(f"{_BASE_URL}/search", params=params, headers=headers, timeout=timeout)
    except requests.RequestException as exc:
        raise FoursquareError(f"request failed: {exc}") from exc

    if not 200 <= response.status_code < 300:
        logger.error("place_search failed: status=%s, body=%s", response.status_code, response.text[:500])
        raise FoursquareError(f"HTTP {response.status_code}")
    return response.json()
