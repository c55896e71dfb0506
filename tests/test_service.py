from datetime import datetime, timedelta, timezone

import pytest

from changing_stations.core import service as service_module
from changing_stations.core.models import PlaceCandidate, StationNotFoundError, TriState, ValidationError
from changing_stations.core.places import FoursquarePlacesProvider, GooglePlacesProvider
from changing_stations.core.service import StationService
from changing_stations.vendors.openrouteservice import DirectionsError
from changing_stations.core.store import InMemoryStationStore


class FakePlaces:
    def __init__(self, candidates=None):
        self.candidates = candidates or []
        self.calls = []

    def search(self, lat, lng, radius_meters, categories=None, chains=None, query=None):
        self.calls.append({"lat": lat, "lng": lng, "radius_meters": radius_meters, "query": query})
        return list(self.candidates)


class DummySettings:
    def __init__(self, storage_backend="memory", places_provider="foursquare"):
        self.storage_backend = storage_backend
        self.places_provider = places_provider
        self.foursquare_api_key = "fsq"
        self.google_api_key = "goog"
        self.openrouteservice_api_key = "ors"
        self.places_timeout_seconds = 5.0
        self.extra_priority_chain_ids = frozenset({"extra-prio"})
        self.extra_secondary_chain_ids = frozenset()
        self.reminder_delay_minutes = 15


def _place(name, external_id, distance=500.0, lat=36.1520, lng=-86.8030, **kwargs):
    return PlaceCandidate(
        external_id=external_id,
        name=name,
        latitude=lat,
        longitude=lng,
        distance=distance,
        **kwargs,
    )


@pytest.fixture
def places():
    return FakePlaces()


@pytest.fixture
def svc(places):
    return StationService(InMemoryStationStore(), places, frozenset({"prio"}), frozenset({"sec"}))


def _review_fields(**overrides):
    fields = {"authorName": "Alex", "rating": 4}
    fields.update(overrides)
    return fields


# ---------- ranking ----------


def test_rank_nearby_candidates_guaranteed_first(svc, places):
    places.candidates = [
        _place("Joe's Diner", "fsq_1", categories=["Restaurant"]),
        _place("Target Store", "fsq_2", lat=36.1530),
    ]

    ranked = svc.rank_nearby_candidates(36.1513, -86.8025, 10)

    assert [c.name for c in ranked] == ["Target Store", "Joe's Diner"]
    assert ranked[0].is_guaranteed_chain is True
    assert ranked[0].score == 4.0
    assert ranked[1].score == 2.0
    assert places.calls[0]["radius_meters"] == 10_000


def test_rank_nearby_candidates_caps_radius_and_strips_query(svc, places):
    svc.rank_nearby_candidates("36.1513", "-86.8025", 500, text_query="  coffee ")
    assert places.calls[0]["radius_meters"] == service_module.MAX_SEARCH_RADIUS_METERS
    assert places.calls[0]["query"] == "coffee"


def test_rank_nearby_candidates_empty_provider(svc):
    assert svc.rank_nearby_candidates(36.1513, -86.8025) == []


@pytest.mark.parametrize(
    "lat,lng,radius",
    [(None, -86.8, 10), ("abc", -86.8, 10), (91, 0, 10), (36.1, -86.8, 0), (36.1, -86.8, "far")],
)
def test_rank_nearby_candidates_rejects_bad_input(svc, lat, lng, radius):
    with pytest.raises(ValidationError):
        svc.rank_nearby_candidates(lat, lng, radius)


# ---------- stations ----------


def test_get_stations_nearby_filters_and_sorts(svc):
    far = svc.station_from_place({"businessName": "Far", "latitude": 36.2300, "longitude": -86.8025})
    near = svc.station_from_place({"businessName": "Near", "latitude": 36.1520, "longitude": -86.8025})
    svc.station_from_place({"businessName": "Memphis", "latitude": 35.1495, "longitude": -90.0490})

    stations = svc.get_stations_nearby(36.1513, -86.8025, 10)

    assert [s.id for s in stations] == [near.id, far.id]


def test_search_stations_by_text(svc):
    svc.station_from_place({"businessName": "Target", "address": "500 Broadway", "latitude": 36.0, "longitude": -86.0})
    svc.station_from_place({"businessName": "Joe's Diner", "latitude": 36.1, "longitude": -86.1})

    assert [s.business_name for s in svc.search_stations_by_text("broadway")] == ["Target"]
    assert [s.business_name for s in svc.search_stations_by_text("DINER")] == ["Joe's Diner"]
    with pytest.raises(ValidationError):
        svc.search_stations_by_text("  ")


def test_add_station_applies_manual_fields(svc):
    station = svc.add_station(
        {
            "businessName": "Library",
            "address": "1 Book Rd",
            "latitude": 36.0,
            "longitude": -86.0,
            "isAccessible": True,
            "hasSupplies": False,
            "isPrivate": True,
        }
    )
    assert station.is_accessible is TriState.TRUE
    assert station.has_supplies is TriState.FALSE
    assert station.is_private is True
    assert station.has_changing_station is TriState.TRUE


def test_add_station_returns_existing_at_same_location(svc):
    first = svc.add_station({"businessName": "Library", "latitude": 36.0, "longitude": -86.0})
    second = svc.add_station({"businessName": "Other", "latitude": 36.00005, "longitude": -86.0, "isPrivate": True})
    assert second.id == first.id
    assert second.is_private is False


def test_add_station_rejects_non_boolean_flags(svc):
    with pytest.raises(ValidationError):
        svc.add_station({"businessName": "Library", "latitude": 36.0, "longitude": -86.0, "isAccessible": "yes"})


@pytest.mark.parametrize(
    "place",
    [{"latitude": 36.0, "longitude": -86.0}, {"businessName": "X", "latitude": "north", "longitude": -86.0}, "nope"],
)
def test_station_from_place_validates(svc, place):
    with pytest.raises(ValidationError):
        svc.station_from_place(place)


# ---------- reviews ----------


def test_submit_review_for_candidate_reconciles_and_aggregates(svc):
    candidate = _place("Joe's Diner", "fsq_1")

    first = svc.submit_review(_review_fields(rating=3), candidate=candidate)
    second = svc.submit_review(_review_fields(rating=4), candidate=_place("Joe's Diner", "fsq_1"))
    svc.submit_review(_review_fields(rating=5, confirmHasChangingStation=True), station_id=first.station_id)

    assert first.station_id == second.station_id
    station = svc.get_station(first.station_id)
    assert station.review_count == 3
    assert station.average_rating == 4.0
    assert station.is_verified is True
    assert len(svc.list_stations()) == 1


def test_submit_review_negative_majority(svc):
    station = svc.station_from_place({"businessName": "Cafe", "latitude": 36.0, "longitude": -86.0})
    svc.submit_review(_review_fields(confirmHasChangingStation=True), station_id=station.id)
    svc.submit_review(_review_fields(reportNoChangingStation=True), station_id=station.id)
    svc.submit_review(_review_fields(reportNoChangingStation=True), station_id=station.id)

    updated = svc.get_station(station.id)
    assert updated.has_changing_station is TriState.FALSE
    assert updated.negative_reports == 2
    assert updated.is_verified is True


def test_submit_review_guaranteed_chain_not_verified(svc):
    review = svc.submit_review(_review_fields(confirmHasChangingStation=True), candidate=_place("Target", "fsq_t"))
    station = svc.get_station(review.station_id)
    assert station.is_guaranteed_chain is True
    assert station.is_verified is False


def test_submit_review_unknown_station(svc):
    with pytest.raises(StationNotFoundError):
        svc.submit_review(_review_fields(), station_id=99)


def test_submit_review_requires_exactly_one_target(svc):
    with pytest.raises(ValidationError):
        svc.submit_review(_review_fields())
    with pytest.raises(ValidationError):
        svc.submit_review(_review_fields(), station_id=1, candidate=_place("X", "fsq_x"))


@pytest.mark.parametrize(
    "fields",
    [
        {"rating": 4},
        {"authorName": " ", "rating": 4},
        {"authorName": "Alex"},
        {"authorName": "Alex", "rating": 0},
        {"authorName": "Alex", "rating": 6},
        {"authorName": "Alex", "rating": 4.5},
        {"authorName": "Alex", "rating": True},
        {"authorName": "Alex", "rating": "4"},
        {"authorName": "Alex", "rating": 4, "content": 12},
        {"authorName": "Alex", "rating": 4, "isPrivate": "true"},
    ],
)
def test_invalid_review_creates_nothing(svc, fields):
    with pytest.raises(ValidationError):
        svc.submit_review(fields, candidate=_place("Joe's Diner", "fsq_1"))
    assert svc.list_stations() == []


def test_review_from_fields_normalises():
    review = service_module.review_from_fields(
        7, {"authorName": " Alex ", "rating": 5.0, "content": "  ", "isCleanliness": True}
    )
    assert review.station_id == 7
    assert review.author_name == "Alex"
    assert review.rating == 5
    assert review.content is None
    assert review.is_cleanliness is True
    assert review.is_well_stocked is False


# ---------- users & navigations ----------


def test_record_navigation_schedules_reminder(svc):
    now = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)
    navigation = svc.record_navigation("user-1", "fsq_abc", "Joe's Diner", now=now)

    assert navigation.notify_after == now + timedelta(minutes=30)
    assert navigation.station_id == "fsq_abc"
    user = svc.store.get_user_by_external_id("user-1")
    assert navigation.user_id == user.id


def test_record_navigation_validates(svc):
    with pytest.raises(ValidationError):
        svc.record_navigation("user-1", None, "Joe's")
    with pytest.raises(ValidationError):
        svc.record_navigation("user-1", 3, " ")
    with pytest.raises(ValidationError):
        svc.record_navigation("", 3, "Joe's")


def test_register_user_keeps_existing_token(svc):
    first = svc.register_user("user-1", "ExponentPushToken[abc]")
    again = svc.register_user("user-1")
    assert again.id == first.id
    assert again.push_token == "ExponentPushToken[abc]"
    with pytest.raises(ValidationError):
        svc.register_user("user-1", 123)


def test_register_user_profile_fields(svc):
    user = svc.register_user("user-1", email=" pat@example.com ", first_name="  ")
    assert user.email == "pat@example.com"
    assert user.first_name is None
    with pytest.raises(ValidationError):
        svc.register_user("user-1", email="not-an-address")
    with pytest.raises(ValidationError):
        svc.register_user("user-1", first_name=7)


# ---------- directions ----------


class FakeDirections:
    def __init__(self):
        self.calls = []

    def route(self, *coords):
        self.calls.append(coords)
        return "route"


def test_get_directions_passes_parsed_coordinates(svc):
    svc.directions = FakeDirections()
    result = svc.get_directions({"latitude": "36.15", "longitude": -86.8}, {"latitude": 36.2, "longitude": -86.7})
    assert result == "route"
    assert svc.directions.calls == [(36.15, -86.8, 36.2, -86.7)]


@pytest.mark.parametrize(
    "origin, destination",
    [
        (None, {"latitude": 1, "longitude": 1}),
        ({"latitude": 91, "longitude": 0}, {"latitude": 1, "longitude": 1}),
        ({"latitude": 1, "longitude": 1}, {"latitude": 1}),
    ],
)
def test_get_directions_validates(svc, origin, destination):
    svc.directions = FakeDirections()
    with pytest.raises(ValidationError):
        svc.get_directions(origin, destination)
    assert svc.directions.calls == []


def test_get_directions_without_provider(svc):
    with pytest.raises(DirectionsError):
        svc.get_directions({"latitude": 1, "longitude": 1}, {"latitude": 2, "longitude": 2})


# ---------- analytics ----------


def test_record_analytics_event_and_session(svc):
    event = svc.record_analytics_event({"deviceId": "dev", "eventType": "search", "eventData": {"q": "target"}})
    assert event.id
    session = svc.save_usage_session({"deviceId": "dev", "sessionId": "s1", "featuresUsed": ["map"]})
    assert session.features_used == ["map"]
    with pytest.raises(ValidationError):
        svc.record_analytics_event([])


# ---------- wiring ----------


def test_build_service_memory_foursquare():
    built = service_module.build_service(DummySettings())
    assert isinstance(built.store, InMemoryStationStore)
    assert isinstance(built.places, FoursquarePlacesProvider)
    assert "extra-prio" in built.priority_chain_ids
    assert built.reminder_delay == timedelta(minutes=15)
    assert built.priority_chain_ids == frozenset({"extra-prio"})
    assert built.directions.api_key == "ors"


def test_build_service_google_provider():
    built = service_module.build_service(DummySettings(places_provider="google"))
    assert isinstance(built.places, GooglePlacesProvider)


def test_build_store_rejects_unknown_backend():
    with pytest.raises(ValueError):
        service_module.build_store(DummySettings(storage_backend="sqlite"))
