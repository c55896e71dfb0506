"""Likelihood scoring and ranking of place candidates."""

import math
from typing import AbstractSet, Iterable, List, Optional, Sequence, Tuple

from changing_stations.core.chains import (
    PRIORITY_CHAIN_IDS,
    SECONDARY_CHAIN_IDS,
    is_guaranteed_chain,
)
from changing_stations.core.models import PlaceCandidate

GUARANTEED_SCORE = 4.0
PRIORITY_CHAIN_SCORE = 3.8
SECONDARY_CHAIN_SCORE = 3.2
DEFAULT_SCORE = 1.0

# Ordered; the first tier with a matching keyword wins.
CATEGORY_TIERS: Sequence[Tuple[Tuple[str, ...], float]] = (
    (("fuel", "gas", "convenience", "pharmacy"), 3.0),
    (("restaurant", "supermarket", "grocery"), 2.0),
    (("mall", "department store"), 1.5),
)


def _category_score(categories: Optional[Iterable[Optional[str]]]) -> float:
    names = [name.lower() for name in categories or [] if name]
    for keywords, score in CATEGORY_TIERS:
        if any(keyword in name for name in names for keyword in keywords):
            return score
    return DEFAULT_SCORE


def score_candidate(
    candidate: PlaceCandidate,
    priority_ids: AbstractSet[str] = PRIORITY_CHAIN_IDS,
    secondary_ids: AbstractSet[str] = SECONDARY_CHAIN_IDS,
) -> float:
    """Estimate how likely a place is to have a changing station (1.0 - 4.0)."""
    if is_guaranteed_chain(candidate.name):
        return GUARANTEED_SCORE

    chain_ids = set(candidate.chain_ids or [])
    if chain_ids & priority_ids:
        return PRIORITY_CHAIN_SCORE
    if chain_ids & secondary_ids:
        return SECONDARY_CHAIN_SCORE

    return _category_score(candidate.categories)


def annotate(
    candidate: PlaceCandidate,
    priority_ids: AbstractSet[str] = PRIORITY_CHAIN_IDS,
    secondary_ids: AbstractSet[str] = SECONDARY_CHAIN_IDS,
) -> PlaceCandidate:
    candidate.is_guaranteed_chain = is_guaranteed_chain(candidate.name)
    candidate.score = score_candidate(candidate, priority_ids, secondary_ids)
    return candidate


def _rank_key(candidate: PlaceCandidate) -> Tuple[bool, float, float]:
    distance = candidate.distance if candidate.distance is not None else math.inf
    return (not candidate.is_guaranteed_chain, -candidate.score, distance)


def rank_candidates(candidates: Iterable[PlaceCandidate]) -> List[PlaceCandidate]:
    """Guaranteed chains first, then higher score, then closer. Ties keep input order."""
    return sorted(candidates, key=_rank_key)
