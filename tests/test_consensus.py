import pytest

from changing_stations.core import consensus
from changing_stations.core.models import ChangingStation, Review, TriState
from changing_stations.core.store import InMemoryStationStore


def _station(name="Joe's Diner", id=1, **kwargs):
    return ChangingStation(business_name=name, address="1 Main St", latitude=36.15, longitude=-86.80, id=id, **kwargs)


def _review(rating=5, negative=False, confirm=False):
    return Review(
        station_id=1,
        author_name="Sam",
        rating=rating,
        report_no_changing_station=negative,
        confirm_has_changing_station=confirm,
    )


@pytest.mark.parametrize(
    "total,count,expected",
    [
        (12, 3, 4.0),
        (9, 2, 4.5),
        (14, 3, 4.7),
        (13, 3, 4.3),
        # 4.25 rounds half-up.
        (17, 4, 4.3),
        (5, 1, 5.0),
    ],
)
def test_round_rating(total, count, expected):
    assert consensus.round_rating(total, count) == expected


def test_no_reviews_resets_counts_and_keeps_flags():
    station = _station(has_changing_station=TriState.FALSE, is_verified=True, average_rating=3.0, review_count=2)
    aggregates = consensus.compute_consensus(station, [])
    assert aggregates.average_rating == 0.0
    assert aggregates.review_count == 0
    assert aggregates.negative_reports == 0
    assert aggregates.has_changing_station is TriState.FALSE
    assert aggregates.is_verified is True


def test_average_and_count():
    aggregates = consensus.compute_consensus(_station(), [_review(3), _review(4), _review(5)])
    assert aggregates.average_rating == 4.0
    assert aggregates.review_count == 3
    assert aggregates.has_changing_station is TriState.TRUE
    assert aggregates.is_verified is False


def test_confirmation_verifies_non_chain():
    aggregates = consensus.compute_consensus(_station(), [_review(confirm=True)])
    assert aggregates.has_changing_station is TriState.TRUE
    assert aggregates.is_verified is True


def test_confirmation_never_verifies_guaranteed_chain():
    station = _station(name="Target", is_guaranteed_chain=True)
    aggregates = consensus.compute_consensus(station, [_review(confirm=True)])
    assert aggregates.has_changing_station is TriState.TRUE
    assert aggregates.is_verified is False


def test_negative_majority_flips_but_keeps_verification():
    station = _station(is_verified=True)
    reviews = [_review(confirm=True), _review(negative=True), _review(negative=True)]
    aggregates = consensus.compute_consensus(station, reviews)
    assert aggregates.has_changing_station is TriState.FALSE
    assert aggregates.negative_reports == 2
    assert aggregates.is_verified is True


def test_tie_with_positives_stays_true():
    station = _station(has_changing_station=TriState.FALSE)
    reviews = [_review(confirm=True), _review(negative=True)]
    aggregates = consensus.compute_consensus(station, reviews)
    assert aggregates.has_changing_station is TriState.TRUE
    assert aggregates.is_verified is True


def test_no_votes_leaves_flag_untouched():
    station = _station(has_changing_station=TriState.UNKNOWN)
    aggregates = consensus.compute_consensus(station, [_review(2)])
    assert aggregates.has_changing_station is TriState.UNKNOWN
    assert aggregates.is_verified is False


def test_recompute_station_persists_aggregates():
    store = InMemoryStationStore()
    station = store.create_station(_station(id=None))
    store.create_review(Review(station_id=station.id, author_name="A", rating=3))
    store.create_review(
        Review(station_id=station.id, author_name="B", rating=4, confirm_has_changing_station=True)
    )

    updated = consensus.recompute_station(store, station.id)

    assert updated.average_rating == 3.5
    assert updated.review_count == 2
    assert updated.is_verified is True
    assert store.get_station(station.id).average_rating == 3.5


def test_recompute_unknown_station_warns(caplog):
    with caplog.at_level("WARNING"):
        assert consensus.recompute_station(InMemoryStationStore(), 42) is None
    assert "unknown station 42" in " ".join(caplog.messages)
