"""Utilities for transforming places-provider responses into place candidates."""

import logging
from typing import Any, Dict, Iterable, List, Optional

from changing_stations.core.geo import distance_km
from changing_stations.core.models import PlaceCandidate

logger = logging.getLogger(__name__)

_IGNORE_TYPES = {"point_of_interest", "establishment", "political", "premise"}


def _safe_float(value: Any) -> Optional[float]:
    try:
        if value is None:
            return None
        return float(value)
    except (TypeError, ValueError):
        return None


def _strip_or_none(value: Any) -> Optional[str]:
    if value is None:
        return None
    value_str = str(value).strip()
    return value_str or None


def _names(items: Iterable[Any]) -> List[str]:
    names = []
    for item in items or []:
        if isinstance(item, dict):
            name = _strip_or_none(item.get("name"))
            if name:
                names.append(name)
    return names


def _foursquare_coordinates(raw: Dict[str, Any]):
    lat = _safe_float(raw.get("latitude"))
    lng = _safe_float(raw.get("longitude"))
    if lat is None or lng is None:
        main = (raw.get("geocodes") or {}).get("main") or {}
        lat = _safe_float(main.get("latitude"))
        lng = _safe_float(main.get("longitude"))
    return lat, lng


def foursquare_to_candidate(raw: Dict[str, Any]) -> Optional[PlaceCandidate]:
    """Convert a Foursquare place; returns None when it lacks an id, name or coordinates."""
    place_id = raw.get("fsq_place_id") or raw.get("fsq_id")
    name = _strip_or_none(raw.get("name"))
    lat, lng = _foursquare_coordinates(raw)
    if not place_id or not name or lat is None or lng is None:
        logger.debug("Skipping Foursquare result without id/name/coordinates: %s", raw)
        return None

    location = raw.get("location") or {}
    address = _strip_or_none(location.get("formatted_address")) or _strip_or_none(location.get("address"))

    chain_ids = []
    for chain in raw.get("chains") or []:
        if isinstance(chain, dict):
            chain_id = chain.get("fsq_chain_id") or chain.get("id")
            if chain_id:
                chain_ids.append(str(chain_id))

    hours = raw.get("hours") or {}
    open_now = hours.get("open_now")

    return PlaceCandidate(
        external_id=f"fsq_{place_id}",
        name=name,
        latitude=lat,
        longitude=lng,
        address=address,
        categories=_names(raw.get("categories")),
        chain_ids=chain_ids,
        distance=_safe_float(raw.get("distance")),
        business_hours=_strip_or_none(hours.get("display")),
        is_open=open_now if isinstance(open_now, bool) else None,
        source="foursquare",
    )


def google_to_candidate(raw: Dict[str, Any], origin_lat: float, origin_lng: float) -> Optional[PlaceCandidate]:
    """Convert a Google nearby-search result; distance is measured from the query point."""
    place_id = raw.get("place_id")
    name = _strip_or_none(raw.get("name"))
    location = (raw.get("geometry") or {}).get("location") or {}
    lat = _safe_float(location.get("lat"))
    lng = _safe_float(location.get("lng"))
    if not place_id or not name or lat is None or lng is None:
        logger.debug("Skipping Google result without id/name/coordinates: %s", raw)
        return None

    categories = [
        type_name.replace("_", " ")
        for type_name in raw.get("types") or []
        if type_name not in _IGNORE_TYPES
    ]
    open_now = (raw.get("opening_hours") or {}).get("open_now")
    business_hours = None
    if isinstance(open_now, bool):
        business_hours = "Open" if open_now else "Closed"

    return PlaceCandidate(
        external_id=f"google_{place_id}",
        name=name,
        latitude=lat,
        longitude=lng,
        address=_strip_or_none(raw.get("vicinity")) or _strip_or_none(raw.get("formatted_address")),
        categories=categories,
        distance=distance_km(origin_lat, origin_lng, lat, lng) * 1000,
        business_hours=business_hours,
        is_open=open_now if isinstance(open_now, bool) else None,
        source="google_places",
    )


def candidate_from_payload(payload: Dict[str, Any]) -> PlaceCandidate:
    """Build a candidate from a client-submitted place (camelCase JSON).

    Raises ``ValueError`` for missing name or non-numeric coordinates.
    """
    name = _strip_or_none(payload.get("businessName") or payload.get("name"))
    lat = _safe_float(payload.get("latitude"))
    lng = _safe_float(payload.get("longitude"))
    if not name:
        raise ValueError("place name is required")
    if lat is None or lng is None:
        raise ValueError("place latitude and longitude must be numeric")

    is_open = payload.get("isOpen")
    return PlaceCandidate(
        external_id=str(payload.get("id") or payload.get("externalId") or ""),
        name=name,
        latitude=lat,
        longitude=lng,
        address=_strip_or_none(payload.get("address")),
        categories=[str(c) for c in payload.get("categories") or [] if c],
        chain_ids=[str(c) for c in payload.get("chainIds") or [] if c],
        distance=_safe_float(payload.get("distance")),
        business_hours=_strip_or_none(payload.get("businessHours")),
        is_open=is_open if isinstance(is_open, bool) else None,
        source=str(payload.get("source") or "client"),
    )
