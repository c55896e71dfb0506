"""Road routes between two points, decoded for map display."""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import Any, Dict, List

import polyline

from changing_stations.vendors.openrouteservice import DirectionsError, driving_directions

logger = logging.getLogger(__name__)

MILES_PER_KM = 0.621371


@dataclass(slots=True)
class Route:
    distance: str
    duration: str
    coordinates: List[Dict[str, float]] = field(default_factory=list)
    is_estimate: bool = False
    summary: str = "Actual route via roadways"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "coordinates": list(self.coordinates),
            "distance": self.distance,
            "duration": self.duration,
            "isEstimate": self.is_estimate,
            "summary": self.summary,
        }


def route_from_payload(payload: Dict[str, Any]) -> Route:
    routes = payload.get("routes") if isinstance(payload, dict) else None
    if not routes:
        raise DirectionsError("No route found")
    route = routes[0]
    summary = route.get("summary") or {}
    meters = float(summary.get("distance") or 0)
    seconds = float(summary.get("duration") or 0)

    # Encoded geometry decodes to (lat, lng) pairs.
    points = polyline.decode(route.get("geometry") or "")
    return Route(
        coordinates=[{"latitude": lat, "longitude": lng} for lat, lng in points],
        distance=f"{meters / 1000 * MILES_PER_KM:.1f} mi",
        duration=f"{math.floor(seconds / 60 + 0.5)} min",
    )


class DirectionsProvider:
    def __init__(self, api_key: str, timeout: float = 10) -> None:
        self.api_key = api_key
        self.timeout = timeout

    def route(self, origin_lat: float, origin_lng: float, dest_lat: float, dest_lng: float) -> Route:
        payload = driving_directions(origin_lat, origin_lng, dest_lat, dest_lng, self.api_key, timeout=self.timeout)
        route = route_from_payload(payload)
        logger.info("Route found with %d points (%s, %s)", len(route.coordinates), route.distance, route.duration)
        return route
