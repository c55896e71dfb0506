"""Facade composing places search, ranking, reconciliation and consensus."""

from __future__ import annotations

import logging
import math
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from typing import AbstractSet, Any, List, Mapping, Optional

from changing_stations.core.analytics import event_from_fields, usage_session_from_fields
from changing_stations.core.chains import PRIORITY_CHAIN_IDS, SECONDARY_CHAIN_IDS
from changing_stations.core.config import Settings
from changing_stations.core.consensus import recompute_station
from changing_stations.core.directions import DirectionsProvider, Route
from changing_stations.core.geo import bounding_box, distance_km, valid_coordinates
from changing_stations.core.models import (
    AnalyticsEvent,
    ChangingStation,
    Navigation,
    PlaceCandidate,
    Review,
    StationNotFoundError,
    TriState,
    UsageSession,
    User,
    ValidationError,
)
from changing_stations.core.places import PlacesProvider, build_places_provider
from changing_stations.core.reconcile import find_or_create_station, station_from_candidate
from changing_stations.core.scoring import annotate, rank_candidates
from changing_stations.core.store import InMemoryStationStore, StationStore
from changing_stations.etl.transform import candidate_from_payload
from changing_stations.vendors.openrouteservice import DirectionsError

logger = logging.getLogger(__name__)

# Foursquare rejects larger search radii.
MAX_SEARCH_RADIUS_METERS = 100_000

_REVIEW_FLAGS = {
    "isCleanliness": "is_cleanliness",
    "isWellStocked": "is_well_stocked",
    "isAccessible": "is_accessible",
    "isPrivate": "is_private",
    "reportNoChangingStation": "report_no_changing_station",
    "confirmHasChangingStation": "confirm_has_changing_station",
}


def parse_coordinates(lat: Any, lng: Any) -> tuple:
    try:
        lat_f = float(lat)
        lng_f = float(lng)
    except (TypeError, ValueError):
        raise ValidationError("Valid latitude and longitude are required") from None
    if not valid_coordinates(lat_f, lng_f):
        raise ValidationError("Valid latitude and longitude are required")
    return lat_f, lng_f


def parse_radius(radius_km: Any) -> float:
    try:
        value = float(radius_km)
    except (TypeError, ValueError):
        raise ValidationError("radius must be numeric") from None
    if not math.isfinite(value) or value <= 0:
        raise ValidationError("radius must be a positive number of kilometres")
    return value


def _optional_bool(fields: Mapping[str, Any], key: str) -> Optional[bool]:
    value = fields.get(key)
    if value is None or isinstance(value, bool):
        return value
    raise ValidationError(f"{key} must be a boolean")


def review_from_fields(station_id: int, fields: Mapping[str, Any]) -> Review:
    """Validate client review fields (camelCase keys) into an unsaved :class:`Review`."""
    author_name = fields.get("authorName")
    if not isinstance(author_name, str) or not author_name.strip():
        raise ValidationError("authorName is required")

    rating = fields.get("rating")
    if isinstance(rating, bool) or not isinstance(rating, (int, float)):
        raise ValidationError("rating is required and must be an integer")
    if isinstance(rating, float) and not rating.is_integer():
        raise ValidationError("rating must be an integer")
    rating = int(rating)
    if not 1 <= rating <= 5:
        raise ValidationError("rating must be between 1 and 5")

    content = fields.get("content")
    if content is not None and not isinstance(content, str):
        raise ValidationError("content must be a string")

    flags = {attr: bool(_optional_bool(fields, key)) for key, attr in _REVIEW_FLAGS.items()}
    return Review(
        station_id=station_id,
        author_name=author_name.strip(),
        rating=rating,
        content=content.strip() if content and content.strip() else None,
        **flags,
    )


class StationService:
    def __init__(
        self,
        store: StationStore,
        places: PlacesProvider,
        priority_chain_ids: AbstractSet[str] = PRIORITY_CHAIN_IDS,
        secondary_chain_ids: AbstractSet[str] = SECONDARY_CHAIN_IDS,
        reminder_delay: timedelta = timedelta(minutes=30),
        directions: Optional[DirectionsProvider] = None,
    ) -> None:
        self.store = store
        self.places = places
        self.priority_chain_ids = priority_chain_ids
        self.secondary_chain_ids = secondary_chain_ids
        self.reminder_delay = reminder_delay
        self.directions = directions

    # ---------- candidates ----------

    def rank_nearby_candidates(
        self,
        lat: Any,
        lng: Any,
        radius_km: Any = 16,
        text_query: Optional[str] = None,
    ) -> List[PlaceCandidate]:
        lat_f, lng_f = parse_coordinates(lat, lng)
        radius = parse_radius(radius_km)
        radius_meters = min(int(round(radius * 1000)), MAX_SEARCH_RADIUS_METERS)
        query = text_query.strip() if text_query and text_query.strip() else None

        candidates = self.places.search(lat_f, lng_f, radius_meters, query=query)
        for candidate in candidates:
            annotate(candidate, self.priority_chain_ids, self.secondary_chain_ids)
        ranked = rank_candidates(candidates)
        logger.info("Ranked %d candidates near %s,%s (radius=%sm)", len(ranked), lat_f, lng_f, radius_meters)
        return ranked

    # ---------- stations ----------

    def list_stations(self) -> List[ChangingStation]:
        return self.store.list_stations()

    def get_station(self, station_id: int) -> Optional[ChangingStation]:
        return self.store.get_station(station_id)

    def search_stations_by_text(self, query: Optional[str]) -> List[ChangingStation]:
        if not query or not query.strip():
            raise ValidationError("Search query is required")
        return self.store.search_stations(query.strip())

    def get_stations_nearby(self, lat: Any, lng: Any, radius_km: Any = 10) -> List[ChangingStation]:
        lat_f, lng_f = parse_coordinates(lat, lng)
        radius = parse_radius(radius_km)

        within = []
        for station in self.store.stations_in_box(*bounding_box(lat_f, lng_f, radius)):
            distance = distance_km(lat_f, lng_f, station.latitude, station.longitude)
            if distance <= radius:
                within.append((distance, station))
        within.sort(key=lambda item: item[0])
        return [station for _, station in within]

    def station_from_place(self, place: Mapping[str, Any]) -> ChangingStation:
        return find_or_create_station(self.store, self.parse_place(place))

    def add_station(self, fields: Mapping[str, Any]) -> ChangingStation:
        """Manually add a station. A station already at the location wins."""
        candidate = self.parse_place(fields)
        is_accessible = TriState.from_optional(_optional_bool(fields, "isAccessible"))
        has_supplies = TriState.from_optional(_optional_bool(fields, "hasSupplies"))
        is_private = bool(_optional_bool(fields, "isPrivate"))

        def build(place: PlaceCandidate) -> ChangingStation:
            return replace(
                station_from_candidate(place),
                is_accessible=is_accessible,
                has_supplies=has_supplies,
                is_private=is_private,
            )

        return find_or_create_station(self.store, candidate, build=build)

    # ---------- reviews ----------

    def list_reviews(self, station_id: int) -> List[Review]:
        return self.store.list_reviews(station_id)

    def submit_review(
        self,
        review_fields: Mapping[str, Any],
        station_id: Optional[int] = None,
        candidate: Optional[PlaceCandidate] = None,
    ) -> Review:
        if (station_id is None) == (candidate is None):
            raise ValidationError("exactly one of stationId or place is required")

        # Validate before any station is created for a candidate.
        review_from_fields(0, review_fields)

        if candidate is not None:
            station = find_or_create_station(self.store, candidate)
        else:
            station = self.store.get_station(station_id)
            if station is None:
                raise StationNotFoundError(f"changing station {station_id} not found")

        review = review_from_fields(station.id, review_fields)
        with self.store.station_lock(station.id):
            created = self.store.create_review(review)
            recompute_station(self.store, station.id)
        logger.info("Review %s added to station %s (rating=%s)", created.id, station.id, created.rating)
        return created

    # ---------- users & navigations ----------

    def register_user(
        self,
        external_user_id: str,
        push_token: Optional[str] = None,
        email: Optional[str] = None,
        first_name: Optional[str] = None,
    ) -> User:
        if not external_user_id or not external_user_id.strip():
            raise ValidationError("user id is required")
        for key, value in (("pushToken", push_token), ("email", email), ("firstName", first_name)):
            if value is not None and not isinstance(value, str):
                raise ValidationError(f"{key} must be a string")
        if email is not None and "@" not in email:
            raise ValidationError("email must be a valid address")
        return self.store.upsert_user(
            external_user_id.strip(),
            push_token,
            email=email.strip() if email else None,
            first_name=first_name.strip() if first_name and first_name.strip() else None,
        )

    def record_navigation(
        self,
        external_user_id: str,
        station_id: Any,
        station_name: Optional[str],
        now: Optional[datetime] = None,
    ) -> Navigation:
        if station_id is None or not str(station_id).strip():
            raise ValidationError("stationId is required")
        if not station_name or not str(station_name).strip():
            raise ValidationError("stationName is required")

        user = self.register_user(external_user_id)
        now = now or datetime.now(timezone.utc)
        navigation = Navigation(
            user_id=user.id,
            station_id=str(station_id).strip(),
            station_name=str(station_name).strip(),
            notify_after=now + self.reminder_delay,
            created_at=now,
        )
        return self.store.create_navigation(navigation)

    # ---------- directions ----------

    def get_directions(self, origin: Any, destination: Any) -> Route:
        if not isinstance(origin, Mapping) or not isinstance(destination, Mapping):
            raise ValidationError("Origin and destination coordinates required")
        origin_lat, origin_lng = parse_coordinates(origin.get("latitude"), origin.get("longitude"))
        dest_lat, dest_lng = parse_coordinates(destination.get("latitude"), destination.get("longitude"))
        if self.directions is None:
            raise DirectionsError("directions are not configured")
        return self.directions.route(origin_lat, origin_lng, dest_lat, dest_lng)

    # ---------- analytics ----------

    def record_analytics_event(self, fields: Mapping[str, Any]) -> AnalyticsEvent:
        if not isinstance(fields, Mapping):
            raise ValidationError("Event data is required")
        event = self.store.record_event(event_from_fields(fields))
        logger.debug("Recorded %s event for device %s", event.event_type, event.device_id)
        return event

    def save_usage_session(self, fields: Mapping[str, Any]) -> UsageSession:
        if not isinstance(fields, Mapping):
            raise ValidationError("Session data is required")
        return self.store.save_usage_session(usage_session_from_fields(fields))

    @staticmethod
    def parse_place(payload: Mapping[str, Any]) -> PlaceCandidate:
        if not isinstance(payload, Mapping):
            raise ValidationError("Valid place data is required")
        try:
            return candidate_from_payload(payload)
        except ValueError as exc:
            raise ValidationError(str(exc)) from exc


def build_store(settings: Settings) -> StationStore:
    if settings.storage_backend == "postgres":
        from changing_stations.core.db import PostgresStationStore

        store = PostgresStationStore()
        store.ensure_schema()
        return store
    if settings.storage_backend != "memory":
        raise ValueError(f"unknown STORAGE_BACKEND: {settings.storage_backend}")
    return InMemoryStationStore()


def build_service(settings: Settings) -> StationService:
    return StationService(
        store=build_store(settings),
        places=build_places_provider(settings),
        priority_chain_ids=PRIORITY_CHAIN_IDS | settings.extra_priority_chain_ids,
        secondary_chain_ids=SECONDARY_CHAIN_IDS | settings.extra_secondary_chain_ids,
        reminder_delay=timedelta(minutes=settings.reminder_delay_minutes),
        directions=DirectionsProvider(settings.openrouteservice_api_key, timeout=settings.places_timeout_seconds),
    )
