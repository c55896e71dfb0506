import pytest

from changing_stations.core import scoring
from changing_stations.core.models import PlaceCandidate

PRIORITY = frozenset({"prio-1"})
SECONDARY = frozenset({"sec-1"})


def _candidate(name, categories=None, chain_ids=None, distance=None, external_id=None):
    return PlaceCandidate(
        external_id=external_id or f"fsq_{name}",
        name=name,
        latitude=36.15,
        longitude=-86.80,
        categories=categories or [],
        chain_ids=chain_ids or [],
        distance=distance,
    )


def _score(candidate):
    return scoring.score_candidate(candidate, PRIORITY, SECONDARY)


def test_guaranteed_chain_scores_highest_without_categories():
    assert _score(_candidate("Target")) == 4.0


def test_guaranteed_wins_over_chain_ids_and_categories():
    candidate = _candidate("Walmart Supercenter", categories=["Mall"], chain_ids=["sec-1"])
    assert _score(candidate) == 4.0


def test_priority_chain_beats_secondary():
    assert _score(_candidate("QuikTrip", chain_ids=["sec-1", "prio-1"])) == 3.8


def test_secondary_chain():
    assert _score(_candidate("Burger Place", chain_ids=["sec-1"], categories=["Mall"])) == 3.2


@pytest.mark.parametrize(
    "categories,expected",
    [
        (["Gas Station"], 3.0),
        (["Fuel Station"], 3.0),
        (["Convenience Store"], 3.0),
        (["Pharmacy"], 3.0),
        (["Italian Restaurant"], 2.0),
        (["Supermarket"], 2.0),
        (["Grocery Store"], 2.0),
        (["Shopping Mall"], 1.5),
        (["Department Store"], 1.5),
        (["Bookstore"], 1.0),
        ([], 1.0),
    ],
)
def test_category_tiers(categories, expected):
    assert _score(_candidate("Local Place", categories=categories)) == expected


def test_first_matching_tier_wins():
    candidate = _candidate("Local Place", categories=["Shopping Mall", "Pharmacy"])
    assert _score(candidate) == 3.0


def test_annotate_sets_flag_and_score():
    candidate = scoring.annotate(_candidate("Target", categories=["Department Store"]), PRIORITY, SECONDARY)
    assert candidate.is_guaranteed_chain is True
    assert candidate.score == 4.0


def _annotated(*candidates):
    return [scoring.annotate(candidate, PRIORITY, SECONDARY) for candidate in candidates]


def test_rank_guaranteed_first_even_when_farther():
    diner = _candidate("Joe's Diner", categories=["Restaurant"], distance=100)
    target = _candidate("Target", distance=5000)
    ranked = scoring.rank_candidates(_annotated(diner, target))
    assert [c.name for c in ranked] == ["Target", "Joe's Diner"]


def test_rank_by_score_then_distance():
    far_gas = _candidate("Far Gas", categories=["Gas Station"], distance=900)
    near_gas = _candidate("Near Gas", categories=["Gas Station"], distance=100)
    diner = _candidate("Diner", categories=["Restaurant"], distance=10)
    ranked = scoring.rank_candidates(_annotated(far_gas, diner, near_gas))
    assert [c.name for c in ranked] == ["Near Gas", "Far Gas", "Diner"]


def test_rank_missing_distance_sorts_last_within_score():
    unknown = _candidate("Unknown", categories=["Pharmacy"], distance=None)
    known = _candidate("Known", categories=["Pharmacy"], distance=2500)
    ranked = scoring.rank_candidates(_annotated(unknown, known))
    assert [c.name for c in ranked] == ["Known", "Unknown"]


def test_rank_zero_distance_is_a_real_distance():
    zero = _candidate("Zero", categories=["Pharmacy"], distance=0)
    other = _candidate("Other", categories=["Pharmacy"], distance=1)
    ranked = scoring.rank_candidates(_annotated(other, zero))
    assert [c.name for c in ranked] == ["Zero", "Other"]


def test_rank_is_stable_for_full_ties():
    first = _candidate("A", categories=["Restaurant"], distance=50, external_id="fsq_1")
    second = _candidate("B", categories=["Restaurant"], distance=50, external_id="fsq_2")
    third = _candidate("C", categories=["Restaurant"], distance=50, external_id="fsq_3")
    ranked = scoring.rank_candidates(_annotated(first, second, third))
    assert [c.external_id for c in ranked] == ["fsq_1", "fsq_2", "fsq_3"]


def test_rank_empty():
    assert scoring.rank_candidates([]) == []
