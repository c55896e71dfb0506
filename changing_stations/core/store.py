"""Persistence interface plus the in-memory implementation used in tests and local runs."""

from __future__ import annotations

import itertools
import logging
import threading
import uuid
from contextlib import ExitStack, contextmanager
from dataclasses import replace
from datetime import datetime, timezone
from typing import Any, ContextManager, Dict, Hashable, Iterator, List, Optional, Protocol, Sequence, Tuple

from changing_stations.core.models import (
    AnalyticsEvent,
    ChangingStation,
    Navigation,
    Review,
    StationAggregates,
    UsageSession,
    User,
)

logger = logging.getLogger(__name__)


class StationStore(Protocol):
    """CRUD primitives every persistence backend provides.

    Ranking, reconciliation and consensus logic live in the core modules and
    only talk to a backend through this interface. Store calls made while a
    lock is held belong to the same unit of work as the lock.
    """

    def list_stations(self) -> List[ChangingStation]: ...

    def get_station(self, station_id: int) -> Optional[ChangingStation]: ...

    def stations_in_box(self, south: float, west: float, north: float, east: float) -> List[ChangingStation]: ...

    def search_stations(self, query: str) -> List[ChangingStation]: ...

    def create_station(self, station: ChangingStation) -> ChangingStation: ...

    def update_station_aggregates(self, station_id: int, aggregates: StationAggregates) -> Optional[ChangingStation]: ...

    def list_reviews(self, station_id: int) -> List[Review]: ...

    def create_review(self, review: Review) -> Review: ...

    def station_lock(self, station_id: int) -> ContextManager[None]: ...

    def location_lock(self, buckets: Sequence[Tuple[int, int]]) -> ContextManager[None]:
        """Hold every bucket lock at once; callers pass buckets in sorted order."""
        ...

    def upsert_user(
        self,
        external_user_id: str,
        push_token: Optional[str] = None,
        email: Optional[str] = None,
        first_name: Optional[str] = None,
    ) -> User: ...

    def get_user(self, user_id: int) -> Optional[User]: ...

    def get_user_by_external_id(self, external_user_id: str) -> Optional[User]: ...

    def create_navigation(self, navigation: Navigation) -> Navigation: ...

    def pending_navigations(self, now: datetime) -> List[Tuple[Navigation, User]]: ...

    def mark_navigation_sent(self, navigation_id: int) -> None: ...

    def record_event(self, event: AnalyticsEvent) -> AnalyticsEvent: ...

    def save_usage_session(self, session: UsageSession) -> UsageSession:
        """Insert or update the session row keyed by ``session.session_id``."""
        ...


class KeyedLocks:
    """Mutex per key, dropped once no thread holds or waits on it."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: Dict[Hashable, List[Any]] = {}

    @contextmanager
    def hold(self, key: Hashable) -> Iterator[None]:
        with self._guard:
            entry = self._locks.setdefault(key, [threading.Lock(), 0])
            entry[1] += 1
        try:
            with entry[0]:
                yield
        finally:
            with self._guard:
                entry[1] -= 1
                if entry[1] == 0:
                    del self._locks[key]

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)


class InMemoryStationStore:
    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._stations: Dict[int, ChangingStation] = {}
        self._reviews: Dict[int, Review] = {}
        self._users: Dict[int, User] = {}
        self._navigations: Dict[int, Navigation] = {}
        self._events: List[AnalyticsEvent] = []
        self._usage_sessions: Dict[str, UsageSession] = {}
        self._station_ids = itertools.count(1)
        self._review_ids = itertools.count(1)
        self._user_ids = itertools.count(1)
        self._navigation_ids = itertools.count(1)
        self._station_locks = KeyedLocks()
        self._location_locks = KeyedLocks()

    # ---------- stations ----------

    def list_stations(self) -> List[ChangingStation]:
        with self._lock:
            return [replace(station) for station in self._stations.values()]

    def get_station(self, station_id: int) -> Optional[ChangingStation]:
        with self._lock:
            station = self._stations.get(station_id)
            return replace(station) if station else None

    def stations_in_box(self, south: float, west: float, north: float, east: float) -> List[ChangingStation]:
        with self._lock:
            return [
                replace(station)
                for station in self._stations.values()
                if south <= station.latitude <= north and west <= station.longitude <= east
            ]

    def search_stations(self, query: str) -> List[ChangingStation]:
        needle = query.lower().strip()
        with self._lock:
            return [
                replace(station)
                for station in self._stations.values()
                if needle in station.business_name.lower() or needle in station.address.lower()
            ]

    def create_station(self, station: ChangingStation) -> ChangingStation:
        with self._lock:
            created = replace(station, id=next(self._station_ids))
            self._stations[created.id] = created
            logger.debug("Created station %s (%s)", created.id, created.business_name)
            return replace(created)

    def update_station_aggregates(self, station_id: int, aggregates: StationAggregates) -> Optional[ChangingStation]:
        with self._lock:
            station = self._stations.get(station_id)
            if station is None:
                return None
            station.average_rating = aggregates.average_rating
            station.review_count = aggregates.review_count
            station.negative_reports = aggregates.negative_reports
            station.has_changing_station = aggregates.has_changing_station
            station.is_verified = aggregates.is_verified
            return replace(station)

    # ---------- reviews ----------

    def list_reviews(self, station_id: int) -> List[Review]:
        with self._lock:
            return [replace(review) for review in self._reviews.values() if review.station_id == station_id]

    def create_review(self, review: Review) -> Review:
        with self._lock:
            if review.station_id not in self._stations:
                raise KeyError(f"station {review.station_id} does not exist")
            created = replace(review, id=next(self._review_ids), created_at=datetime.now(timezone.utc))
            self._reviews[created.id] = created
            return replace(created)

    # ---------- locks ----------

    def station_lock(self, station_id: int) -> ContextManager[None]:
        return self._station_locks.hold(station_id)

    @contextmanager
    def location_lock(self, buckets: Sequence[Tuple[int, int]]) -> Iterator[None]:
        with ExitStack() as stack:
            for bucket in buckets:
                stack.enter_context(self._location_locks.hold(bucket))
            yield

    # ---------- users & navigations ----------

    def upsert_user(
        self,
        external_user_id: str,
        push_token: Optional[str] = None,
        email: Optional[str] = None,
        first_name: Optional[str] = None,
    ) -> User:
        with self._lock:
            for user in self._users.values():
                if user.external_user_id == external_user_id:
                    user.push_token = push_token if push_token is not None else user.push_token
                    user.email = email if email is not None else user.email
                    user.first_name = first_name if first_name is not None else user.first_name
                    return replace(user)
            user = User(
                external_user_id=external_user_id,
                id=next(self._user_ids),
                push_token=push_token,
                email=email,
                first_name=first_name,
                created_at=datetime.now(timezone.utc),
            )
            self._users[user.id] = user
            return replace(user)

    def get_user(self, user_id: int) -> Optional[User]:
        with self._lock:
            user = self._users.get(user_id)
            return replace(user) if user else None

    def get_user_by_external_id(self, external_user_id: str) -> Optional[User]:
        with self._lock:
            for user in self._users.values():
                if user.external_user_id == external_user_id:
                    return replace(user)
            return None

    def create_navigation(self, navigation: Navigation) -> Navigation:
        with self._lock:
            created = replace(
                navigation,
                id=next(self._navigation_ids),
                created_at=navigation.created_at or datetime.now(timezone.utc),
            )
            self._navigations[created.id] = created
            return replace(created)

    def pending_navigations(self, now: datetime) -> List[Tuple[Navigation, User]]:
        with self._lock:
            pending = []
            for navigation in self._navigations.values():
                if navigation.notification_sent or navigation.notify_after > now:
                    continue
                user = self._users.get(navigation.user_id)
                if user is not None:
                    pending.append((replace(navigation), replace(user)))
            return pending

    def mark_navigation_sent(self, navigation_id: int) -> None:
        with self._lock:
            navigation = self._navigations.get(navigation_id)
            if navigation is not None:
                navigation.notification_sent = True

    # ---------- analytics ----------

    def record_event(self, event: AnalyticsEvent) -> AnalyticsEvent:
        with self._lock:
            created = replace(
                event,
                id=str(uuid.uuid4()),
                timestamp=event.timestamp or datetime.now(timezone.utc),
            )
            self._events.append(created)
            return replace(created)

    def save_usage_session(self, session: UsageSession) -> UsageSession:
        with self._lock:
            existing = self._usage_sessions.get(session.session_id)
            if existing is None:
                saved = replace(
                    session,
                    id=str(uuid.uuid4()),
                    session_start=session.session_start or datetime.now(timezone.utc),
                )
            else:
                saved = replace(
                    session,
                    id=existing.id,
                    device_id=existing.device_id,
                    session_start=existing.session_start,
                    session_end=session.session_end or existing.session_end,
                    app_version=session.app_version or existing.app_version,
                    battery_level=session.battery_level if session.battery_level is not None else existing.battery_level,
                    network_quality=session.network_quality or existing.network_quality,
                )
            self._usage_sessions[saved.session_id] = saved
            return replace(saved)
