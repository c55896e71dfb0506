"""Crowd consensus over a station's reviews.

Every review insert is followed by :func:`recompute_station`, which folds the
full review set into the station's aggregate fields:

* average rating (rounded half-up to one decimal), review count and the number
  of "no changing station here" reports;
* the has-changing-station flag, flipped to FALSE only by a strict negative
  majority and back to TRUE by any positive confirmation that is not
  outnumbered;
* the verified flag, set by the first counted confirmation. Guaranteed chains
  are authoritative already and are never marked crowd-verified. Nothing here
  clears the verified flag, so a wave of negative reports cannot erase an
  earlier confirmation.
"""

import logging
import math
from typing import Optional, Sequence

from changing_stations.core.chains import is_guaranteed_chain
from changing_stations.core.models import ChangingStation, Review, StationAggregates, TriState
from changing_stations.core.store import StationStore

logger = logging.getLogger(__name__)


def round_rating(total: int, count: int) -> float:
    return math.floor(total * 10 / count + 0.5) / 10


def compute_consensus(station: ChangingStation, reviews: Sequence[Review]) -> StationAggregates:
    if not reviews:
        return StationAggregates(
            average_rating=0.0,
            review_count=0,
            negative_reports=0,
            has_changing_station=station.has_changing_station,
            is_verified=station.is_verified,
        )

    total = sum(review.rating for review in reviews)
    negative = sum(1 for review in reviews if review.report_no_changing_station)
    positive = sum(1 for review in reviews if review.confirm_has_changing_station)

    has_changing_station = station.has_changing_station
    is_verified = station.is_verified
    if negative > positive:
        has_changing_station = TriState.FALSE
    elif positive > 0:
        has_changing_station = TriState.TRUE
        if not is_guaranteed_chain(station.business_name):
            is_verified = True

    return StationAggregates(
        average_rating=round_rating(total, len(reviews)),
        review_count=len(reviews),
        negative_reports=negative,
        has_changing_station=has_changing_station,
        is_verified=is_verified,
    )


def recompute_station(store: StationStore, station_id: int) -> Optional[ChangingStation]:
    """Recompute and persist a station's aggregates. Returns None for an unknown id.

    Callers that insert reviews concurrently must hold ``store.station_lock``.
    """
    station = store.get_station(station_id)
    if station is None:
        logger.warning("Skipping consensus for unknown station %s", station_id)
        return None

    reviews = store.list_reviews(station_id)
    aggregates = compute_consensus(station, reviews)
    updated = store.update_station_aggregates(station_id, aggregates)
    logger.debug(
        "Station %s consensus: rating=%s reviews=%s negatives=%s has_station=%s verified=%s",
        station_id,
        aggregates.average_rating,
        aggregates.review_count,
        aggregates.negative_reports,
        aggregates.has_changing_station.value,
        aggregates.is_verified,
    )
    return updated
