"""CLI job to rank nearby places by their likelihood of having a changing station."""

import argparse
import json
import logging
from typing import List, Optional

from changing_stations.core.chains import PRIORITY_CHAIN_IDS, SECONDARY_CHAIN_IDS
from changing_stations.core.config import get_settings
from changing_stations.core.models import PlaceCandidate
from changing_stations.core.places import build_places_provider
from changing_stations.core.service import StationService
from changing_stations.core.store import InMemoryStationStore

logger = logging.getLogger(__name__)


def rank_nearby_job(
    *,
    lat: float,
    lng: float,
    radius_km: float,
    query: Optional[str],
) -> List[PlaceCandidate]:
    settings = get_settings()
    service = StationService(
        store=InMemoryStationStore(),
        places=build_places_provider(settings),
        priority_chain_ids=PRIORITY_CHAIN_IDS | settings.extra_priority_chain_ids,
        secondary_chain_ids=SECONDARY_CHAIN_IDS | settings.extra_secondary_chain_ids,
    )

    logger.info("Ranking places near %s,%s within %skm (query=%s)", lat, lng, radius_km, query)
    ranked = service.rank_nearby_candidates(lat, lng, radius_km, query)
    for candidate in ranked:
        print(json.dumps(candidate.to_dict()))
    logger.info("Completed run: candidates=%d", len(ranked))
    return ranked


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Rank nearby places for changing stations")
    parser.add_argument("--lat", dest="lat", type=float, required=True, help="Search latitude")
    parser.add_argument("--lng", dest="lng", type=float, required=True, help="Search longitude")
    parser.add_argument(
        "--radius-km",
        dest="radius_km",
        type=float,
        default=get_settings().default_search_radius_km,
        help="Search radius in kilometres",
    )
    parser.add_argument("--query", dest="query", help="Optional free-text filter")
    return parser


def main() -> None:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s - %(message)s")
    parser = build_parser()
    args = parser.parse_args()

    rank_nearby_job(lat=args.lat, lng=args.lng, radius_km=args.radius_km, query=args.query)


if __name__ == "__main__":
    main()
