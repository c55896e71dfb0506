"""Places-search providers.

Providers sit at the collaborator boundary: any failure (missing credentials,
HTTP errors, timeouts, malformed payloads) is logged and turned into an empty
candidate list so a flaky upstream never fails the caller's request.
"""

import logging
from typing import Iterable, List, Optional, Protocol

from changing_stations.core.config import Settings
from changing_stations.core.models import PlaceCandidate
from changing_stations.etl.transform import foursquare_to_candidate, google_to_candidate
from changing_stations.vendors import foursquare, google_places

logger = logging.getLogger(__name__)


class PlacesProvider(Protocol):
    def search(
        self,
        lat: float,
        lng: float,
        radius_meters: int,
        categories: Optional[Iterable[str]] = None,
        chains: Optional[Iterable[str]] = None,
        query: Optional[str] = None,
    ) -> List[PlaceCandidate]: ...


class FoursquarePlacesProvider:
    def __init__(self, api_key: str, timeout: float = 10, limit: int = 50) -> None:
        self.api_key = api_key
        self.timeout = timeout
        self.limit = limit

    def search(
        self,
        lat: float,
        lng: float,
        radius_meters: int,
        categories: Optional[Iterable[str]] = None,
        chains: Optional[Iterable[str]] = None,
        query: Optional[str] = None,
    ) -> List[PlaceCandidate]:
        if not self.api_key:
            logger.warning("Foursquare API key not found - returning empty results")
            return []
        try:
            payload = foursquare.place_search(
                lat,
                lng,
                radius_meters,
                self.api_key,
                categories=categories,
                chains=chains,
                query=query,
                limit=self.limit,
                timeout=self.timeout,
            )
            results = payload.get("results") or []
            candidates = [foursquare_to_candidate(raw) for raw in results if isinstance(raw, dict)]
        except Exception as exc:  # noqa: BLE001
            logger.error("Error searching Foursquare near %s,%s: %s", lat, lng, exc)
            return []

        candidates = [candidate for candidate in candidates if candidate is not None]
        logger.info("Foursquare returned %d places near %s,%s", len(candidates), lat, lng)
        return candidates


class GooglePlacesProvider:
    """Google nearby search. Google has no chain catalog, so chain filters are ignored."""

    def __init__(self, api_key: str, timeout: float = 10) -> None:
        self.api_key = api_key
        self.timeout = timeout

    def search(
        self,
        lat: float,
        lng: float,
        radius_meters: int,
        categories: Optional[Iterable[str]] = None,
        chains: Optional[Iterable[str]] = None,
        query: Optional[str] = None,
    ) -> List[PlaceCandidate]:
        if not self.api_key:
            logger.warning("Google Places API key not found - returning empty results")
            return []

        place_type = next(iter(categories), None) if categories else None
        try:
            payload = google_places.nearby_search(
                lat,
                lng,
                radius_meters,
                self.api_key,
                place_type=place_type,
                keyword=query,
                timeout=self.timeout,
            )
            results = payload.get("results") or []
            candidates = [google_to_candidate(raw, lat, lng) for raw in results if isinstance(raw, dict)]
        except Exception as exc:  # noqa: BLE001
            logger.error("Error searching Google Places near %s,%s: %s", lat, lng, exc)
            return []

        candidates = [candidate for candidate in candidates if candidate is not None]
        logger.info("Google Places returned %d places near %s,%s", len(candidates), lat, lng)
        return candidates


def build_places_provider(settings: Settings) -> PlacesProvider:
    if settings.places_provider == "google":
        return GooglePlacesProvider(settings.google_api_key, timeout=settings.places_timeout_seconds)
    if settings.places_provider != "foursquare":
        raise ValueError(f"unknown PLACES_PROVIDER: {settings.places_provider}")
    return FoursquarePlacesProvider(settings.foursquare_api_key, timeout=settings.places_timeout_seconds)
