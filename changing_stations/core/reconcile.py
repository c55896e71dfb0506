"""Match place candidates to stored stations, creating a station on first sighting."""

import logging
import math
from typing import Callable, List, Optional, Tuple

from changing_stations.core.chains import is_guaranteed_chain
from changing_stations.core.geo import valid_coordinates
from changing_stations.core.models import ChangingStation, PlaceCandidate, TriState, ValidationError
from changing_stations.core.store import StationStore

logger = logging.getLogger(__name__)

# Roughly 11 m at mid-latitudes.
COORDINATE_TOLERANCE = 0.0001
# Lock granularity for concurrent first sightings; coarser than the tolerance.
BUCKET_SIZE = 0.001
MISSING_ADDRESS = "Address not available"


def location_bucket(latitude: float, longitude: float) -> Tuple[int, int]:
    return math.floor(latitude / BUCKET_SIZE), math.floor(longitude / BUCKET_SIZE)


def buckets_around(latitude: float, longitude: float) -> List[Tuple[int, int]]:
    """Buckets touched by the tolerance box, sorted so locks are taken in a fixed order.

    Two points within tolerance of each other always share at least one bucket.
    """
    return sorted(
        {
            location_bucket(latitude + d_lat, longitude + d_lng)
            for d_lat in (-COORDINATE_TOLERANCE, COORDINATE_TOLERANCE)
            for d_lng in (-COORDINATE_TOLERANCE, COORDINATE_TOLERANCE)
        }
    )


def find_matching_station(store: StationStore, latitude: float, longitude: float) -> Optional[ChangingStation]:
    nearby = store.stations_in_box(
        latitude - COORDINATE_TOLERANCE,
        longitude - COORDINATE_TOLERANCE,
        latitude + COORDINATE_TOLERANCE,
        longitude + COORDINATE_TOLERANCE,
    )
    for station in nearby:
        if (
            abs(station.latitude - latitude) < COORDINATE_TOLERANCE
            and abs(station.longitude - longitude) < COORDINATE_TOLERANCE
        ):
            return station
    return None


def station_from_candidate(candidate: PlaceCandidate) -> ChangingStation:
    return ChangingStation(
        business_name=candidate.name,
        address=(candidate.address or "").strip() or MISSING_ADDRESS,
        latitude=candidate.latitude,
        longitude=candidate.longitude,
        is_accessible=TriState.UNKNOWN,
        is_private=False,
        has_supplies=TriState.UNKNOWN,
        business_hours=candidate.business_hours,
        is_open=TriState.from_optional(candidate.is_open),
        average_rating=0.0,
        review_count=0,
        has_changing_station=TriState.TRUE,
        negative_reports=0,
        is_verified=False,
        is_guaranteed_chain=is_guaranteed_chain(candidate.name),
    )


def find_or_create_station(
    store: StationStore,
    candidate: PlaceCandidate,
    build: Callable[[PlaceCandidate], ChangingStation] = station_from_candidate,
) -> ChangingStation:
    """Return the stored station at the candidate's location, creating it if absent.

    An existing station is returned untouched; the first writer owns the
    location's identity. ``build`` produces the new station when none matches.
    """
    if not candidate.name or not candidate.name.strip():
        raise ValidationError("place name is required")
    if candidate.latitude is None or candidate.longitude is None:
        raise ValidationError("place latitude and longitude are required")
    if not valid_coordinates(candidate.latitude, candidate.longitude):
        raise ValidationError("place coordinates are out of range")

    with store.location_lock(buckets_around(candidate.latitude, candidate.longitude)):
        existing = find_matching_station(store, candidate.latitude, candidate.longitude)
        if existing is not None:
            logger.debug("Candidate %s matched station %s", candidate.external_id, existing.id)
            return existing

        created = store.create_station(build(candidate))
        logger.info(
            "Created station %s for %s (%s) guaranteed=%s",
            created.id,
            created.business_name,
            candidate.external_id,
            created.is_guaranteed_chain,
        )
        return created
