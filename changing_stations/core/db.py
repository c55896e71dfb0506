"""Database helpers and the PostgreSQL station store."""

import logging
import threading
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Dict, Iterator, List, Optional, Sequence, Tuple

from psycopg2 import extras, pool

from changing_stations.core.config import get_settings
from changing_stations.core.models import (
    AnalyticsEvent,
    ChangingStation,
    Navigation,
    Review,
    StationAggregates,
    TriState,
    UsageSession,
    User,
)

logger = logging.getLogger(__name__)

_connection_pool: Optional[pool.ThreadedConnectionPool] = None

# Advisory lock key namespaces (high bits of the bigint key).
_STATION_LOCK_NAMESPACE = 1
_LOCATION_LOCK_NAMESPACE = 2


def init_pool(minconn: int = 1, maxconn: int = 10) -> pool.ThreadedConnectionPool:
    """Initialise and return the shared connection pool."""
    global _connection_pool
    if _connection_pool is None:
        settings = get_settings()
        if not settings.database_url:
            raise RuntimeError("DATABASE_URL is required for database connections")
        _connection_pool = pool.ThreadedConnectionPool(
            minconn,
            maxconn,
            dsn=settings.database_url,
            connect_timeout=10,
        )
        logger.info("Database connection pool initialised")
    return _connection_pool


@contextmanager
def get_connection():
    """Context manager yielding a pooled connection."""
    pg_pool = init_pool()
    conn = pg_pool.getconn()
    try:
        yield conn
    finally:
        pg_pool.putconn(conn)


_SCHEMA = """
CREATE TABLE IF NOT EXISTS changing_stations (
    id SERIAL PRIMARY KEY,
    business_name TEXT NOT NULL,
    address TEXT NOT NULL,
    latitude DOUBLE PRECISION NOT NULL,
    longitude DOUBLE PRECISION NOT NULL,
    is_accessible BOOLEAN,
    is_private BOOLEAN NOT NULL DEFAULT FALSE,
    has_supplies BOOLEAN,
    business_hours TEXT,
    is_open BOOLEAN,
    average_rating DOUBLE PRECISION NOT NULL DEFAULT 0,
    review_count INTEGER NOT NULL DEFAULT 0,
    has_changing_station BOOLEAN DEFAULT TRUE,
    negative_reports INTEGER NOT NULL DEFAULT 0,
    is_verified BOOLEAN NOT NULL DEFAULT FALSE,
    is_guaranteed_chain BOOLEAN NOT NULL DEFAULT FALSE
);
CREATE INDEX IF NOT EXISTS changing_stations_lat_lng_idx ON changing_stations (latitude, longitude);

CREATE TABLE IF NOT EXISTS reviews (
    id SERIAL PRIMARY KEY,
    station_id INTEGER NOT NULL REFERENCES changing_stations (id),
    author_name TEXT NOT NULL,
    rating INTEGER NOT NULL,
    content TEXT,
    is_cleanliness BOOLEAN NOT NULL DEFAULT FALSE,
    is_well_stocked BOOLEAN NOT NULL DEFAULT FALSE,
    is_accessible BOOLEAN NOT NULL DEFAULT FALSE,
    is_private BOOLEAN NOT NULL DEFAULT FALSE,
    report_no_changing_station BOOLEAN NOT NULL DEFAULT FALSE,
    confirm_has_changing_station BOOLEAN NOT NULL DEFAULT FALSE,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);
CREATE INDEX IF NOT EXISTS reviews_station_id_idx ON reviews (station_id);

CREATE TABLE IF NOT EXISTS users (
    id SERIAL PRIMARY KEY,
    external_user_id TEXT NOT NULL UNIQUE,
    push_token TEXT,
    email TEXT,
    first_name TEXT,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);
ALTER TABLE users ADD COLUMN IF NOT EXISTS email TEXT;
ALTER TABLE users ADD COLUMN IF NOT EXISTS first_name TEXT;

CREATE TABLE IF NOT EXISTS user_navigations (
    id SERIAL PRIMARY KEY,
    user_id INTEGER NOT NULL REFERENCES users (id),
    station_id TEXT NOT NULL,
    station_name TEXT NOT NULL,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    notify_after TIMESTAMPTZ NOT NULL,
    notification_sent BOOLEAN NOT NULL DEFAULT FALSE
);
CREATE INDEX IF NOT EXISTS user_navigations_pending_idx
    ON user_navigations (notify_after) WHERE notification_sent = FALSE;

CREATE TABLE IF NOT EXISTS user_analytics (
    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    device_id TEXT NOT NULL,
    event_type TEXT NOT NULL,
    event_data JSONB,
    device_info JSONB,
    location_data JSONB,
    network_type TEXT,
    timestamp TIMESTAMPTZ NOT NULL DEFAULT NOW()
);
CREATE INDEX IF NOT EXISTS user_analytics_device_idx ON user_analytics (device_id, timestamp);

CREATE TABLE IF NOT EXISTS app_usage_metrics (
    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    device_id TEXT NOT NULL,
    session_id TEXT NOT NULL UNIQUE,
    session_start TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    session_end TIMESTAMPTZ,
    stations_viewed JSONB NOT NULL DEFAULT '[]'::jsonb,
    search_queries JSONB NOT NULL DEFAULT '[]'::jsonb,
    features_used JSONB NOT NULL DEFAULT '[]'::jsonb,
    app_version TEXT,
    battery_level INTEGER,
    network_quality TEXT
);
"""

_STATION_COLUMNS = """
    id, business_name, address, latitude, longitude, is_accessible, is_private,
    has_supplies, business_hours, is_open, average_rating, review_count,
    has_changing_station, negative_reports, is_verified, is_guaranteed_chain
"""

_INSERT_STATION = f"""
INSERT INTO changing_stations (
    business_name, address, latitude, longitude, is_accessible, is_private,
    has_supplies, business_hours, is_open, average_rating, review_count,
    has_changing_station, negative_reports, is_verified, is_guaranteed_chain
) VALUES (
    %(business_name)s, %(address)s, %(latitude)s, %(longitude)s, %(is_accessible)s, %(is_private)s,
    %(has_supplies)s, %(business_hours)s, %(is_open)s, %(average_rating)s, %(review_count)s,
    %(has_changing_station)s, %(negative_reports)s, %(is_verified)s, %(is_guaranteed_chain)s
)
RETURNING {_STATION_COLUMNS};
"""

_UPDATE_AGGREGATES = f"""
UPDATE changing_stations SET
    average_rating = %(average_rating)s,
    review_count = %(review_count)s,
    negative_reports = %(negative_reports)s,
    has_changing_station = %(has_changing_station)s,
    is_verified = %(is_verified)s
WHERE id = %(id)s
RETURNING {_STATION_COLUMNS};
"""

_REVIEW_COLUMNS = """
    id, station_id, author_name, rating, content, is_cleanliness, is_well_stocked,
    is_accessible, is_private, report_no_changing_station, confirm_has_changing_station, created_at
"""

_INSERT_REVIEW = f"""
INSERT INTO reviews (
    station_id, author_name, rating, content, is_cleanliness, is_well_stocked,
    is_accessible, is_private, report_no_changing_station, confirm_has_changing_station
) VALUES (
    %(station_id)s, %(author_name)s, %(rating)s, %(content)s, %(is_cleanliness)s, %(is_well_stocked)s,
    %(is_accessible)s, %(is_private)s, %(report_no_changing_station)s, %(confirm_has_changing_station)s
)
RETURNING {_REVIEW_COLUMNS};
"""

_USER_COLUMNS = "id, external_user_id, push_token, email, first_name, created_at"

_UPSERT_USER = f"""
INSERT INTO users (external_user_id, push_token, email, first_name)
VALUES (%(external_user_id)s, %(push_token)s, %(email)s, %(first_name)s)
ON CONFLICT (external_user_id) DO UPDATE SET
    push_token = COALESCE(EXCLUDED.push_token, users.push_token),
    email = COALESCE(EXCLUDED.email, users.email),
    first_name = COALESCE(EXCLUDED.first_name, users.first_name)
RETURNING {_USER_COLUMNS};
"""

_INSERT_NAVIGATION = """
INSERT INTO user_navigations (user_id, station_id, station_name, notify_after)
VALUES (%(user_id)s, %(station_id)s, %(station_name)s, %(notify_after)s)
RETURNING id, user_id, station_id, station_name, created_at, notify_after, notification_sent;
"""

_PENDING_NAVIGATIONS = """
SELECT
    n.id, n.user_id, n.station_id, n.station_name, n.created_at, n.notify_after, n.notification_sent,
    u.external_user_id, u.push_token, u.email, u.first_name, u.created_at AS user_created_at
FROM user_navigations n
JOIN users u ON u.id = n.user_id
WHERE n.notification_sent = FALSE AND n.notify_after <= %(now)s
ORDER BY n.notify_after;
"""

_INSERT_EVENT = """
INSERT INTO user_analytics (device_id, event_type, event_data, device_info, location_data, network_type, timestamp)
VALUES (
    %(device_id)s, %(event_type)s, %(event_data)s, %(device_info)s, %(location_data)s, %(network_type)s,
    COALESCE(%(timestamp)s, NOW())
)
RETURNING id::text AS id, device_id, event_type, event_data, device_info, location_data, network_type, timestamp;
"""

_UPSERT_USAGE_SESSION = """
INSERT INTO app_usage_metrics (
    device_id, session_id, session_start, session_end, stations_viewed, search_queries,
    features_used, app_version, battery_level, network_quality
) VALUES (
    %(device_id)s, %(session_id)s, COALESCE(%(session_start)s, NOW()), %(session_end)s, %(stations_viewed)s,
    %(search_queries)s, %(features_used)s, %(app_version)s, %(battery_level)s, %(network_quality)s
)
ON CONFLICT (session_id) DO UPDATE SET
    session_end = COALESCE(EXCLUDED.session_end, app_usage_metrics.session_end),
    stations_viewed = EXCLUDED.stations_viewed,
    search_queries = EXCLUDED.search_queries,
    features_used = EXCLUDED.features_used,
    app_version = COALESCE(EXCLUDED.app_version, app_usage_metrics.app_version),
    battery_level = COALESCE(EXCLUDED.battery_level, app_usage_metrics.battery_level),
    network_quality = COALESCE(EXCLUDED.network_quality, app_usage_metrics.network_quality)
RETURNING
    id::text AS id, device_id, session_id, session_start, session_end, stations_viewed, search_queries,
    features_used, app_version, battery_level, network_quality;
"""


def _station_params(station: ChangingStation) -> Dict[str, Any]:
    return {
        "business_name": station.business_name,
        "address": station.address,
        "latitude": station.latitude,
        "longitude": station.longitude,
        "is_accessible": station.is_accessible.to_optional(),
        "is_private": station.is_private,
        "has_supplies": station.has_supplies.to_optional(),
        "business_hours": station.business_hours,
        "is_open": station.is_open.to_optional(),
        "average_rating": station.average_rating,
        "review_count": station.review_count,
        "has_changing_station": station.has_changing_station.to_optional(),
        "negative_reports": station.negative_reports,
        "is_verified": station.is_verified,
        "is_guaranteed_chain": station.is_guaranteed_chain,
    }


def _station_from_row(row: Dict[str, Any]) -> ChangingStation:
    return ChangingStation(
        id=row["id"],
        business_name=row["business_name"],
        address=row["address"],
        latitude=row["latitude"],
        longitude=row["longitude"],
        is_accessible=TriState.from_optional(row["is_accessible"]),
        is_private=bool(row["is_private"]),
        has_supplies=TriState.from_optional(row["has_supplies"]),
        business_hours=row["business_hours"],
        is_open=TriState.from_optional(row["is_open"]),
        average_rating=row["average_rating"] or 0.0,
        review_count=row["review_count"] or 0,
        has_changing_station=TriState.from_optional(row["has_changing_station"]),
        negative_reports=row["negative_reports"] or 0,
        is_verified=bool(row["is_verified"]),
        is_guaranteed_chain=bool(row["is_guaranteed_chain"]),
    )


def _review_params(review: Review) -> Dict[str, Any]:
    return {
        "station_id": review.station_id,
        "author_name": review.author_name,
        "rating": review.rating,
        "content": review.content,
        "is_cleanliness": review.is_cleanliness,
        "is_well_stocked": review.is_well_stocked,
        "is_accessible": review.is_accessible,
        "is_private": review.is_private,
        "report_no_changing_station": review.report_no_changing_station,
        "confirm_has_changing_station": review.confirm_has_changing_station,
    }


def _review_from_row(row: Dict[str, Any]) -> Review:
    return Review(
        id=row["id"],
        station_id=row["station_id"],
        author_name=row["author_name"],
        rating=row["rating"],
        content=row["content"],
        is_cleanliness=bool(row["is_cleanliness"]),
        is_well_stocked=bool(row["is_well_stocked"]),
        is_accessible=bool(row["is_accessible"]),
        is_private=bool(row["is_private"]),
        report_no_changing_station=bool(row["report_no_changing_station"]),
        confirm_has_changing_station=bool(row["confirm_has_changing_station"]),
        created_at=row["created_at"],
    )


def _navigation_from_row(row: Dict[str, Any]) -> Navigation:
    return Navigation(
        id=row["id"],
        user_id=row["user_id"],
        station_id=row["station_id"],
        station_name=row["station_name"],
        created_at=row["created_at"],
        notify_after=row["notify_after"],
        notification_sent=bool(row["notification_sent"]),
    )


def station_lock_key(station_id: int) -> int:
    return (_STATION_LOCK_NAMESPACE << 40) | station_id


def location_lock_key(bucket: Tuple[int, int]) -> int:
    lat_bucket, lng_bucket = bucket
    # Buckets are 0.001 degrees: shifted latitude fits in 18 bits, longitude in 19.
    return (_LOCATION_LOCK_NAMESPACE << 40) | ((lat_bucket + 90_001) << 20) | (lng_bucket + 180_001)


def _usage_session_from_row(row: Dict[str, Any]) -> UsageSession:
    return UsageSession(
        id=row["id"],
        device_id=row["device_id"],
        session_id=row["session_id"],
        session_start=row["session_start"],
        session_end=row["session_end"],
        stations_viewed=list(row["stations_viewed"] or []),
        search_queries=list(row["search_queries"] or []),
        features_used=list(row["features_used"] or []),
        app_version=row["app_version"],
        battery_level=row["battery_level"],
        network_quality=row["network_quality"],
    )


def _json(value: Any) -> Optional[extras.Json]:
    return extras.Json(value) if value is not None else None


class PostgresStationStore:
    """Durable store.

    A guarded block runs as one transaction on one pooled connection. The
    block's advisory locks are transaction-scoped, so commit or rollback
    releases them, and every store call made inside the block reuses that
    connection instead of checking out another one.
    """

    def __init__(self) -> None:
        self._local = threading.local()

    def ensure_schema(self) -> None:
        with self._cursor() as cur:
            cur.execute(_SCHEMA)
        logger.info("Database schema ensured")

    @contextmanager
    def _cursor(self, cursor_factory=None) -> Iterator[Any]:
        bound = getattr(self._local, "conn", None)
        if bound is not None:
            # Inside a guarded block; its owner commits.
            with bound.cursor(cursor_factory=cursor_factory) as cur:
                yield cur
            return
        with get_connection() as conn:
            try:
                with conn.cursor(cursor_factory=cursor_factory) as cur:
                    yield cur
                conn.commit()
            except Exception:
                conn.rollback()
                raise

    def _fetchall(self, sql: str, params: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        with self._cursor(cursor_factory=extras.RealDictCursor) as cur:
            cur.execute(sql, params or {})
            return cur.fetchall()

    def _fetchone(self, sql: str, params: Optional[Dict[str, Any]] = None) -> Optional[Dict[str, Any]]:
        with self._cursor(cursor_factory=extras.RealDictCursor) as cur:
            cur.execute(sql, params or {})
            return cur.fetchone()

    def _execute(self, sql: str, params: Optional[Dict[str, Any]] = None) -> None:
        with self._cursor() as cur:
            cur.execute(sql, params or {})

    # ---------- stations ----------

    def list_stations(self) -> List[ChangingStation]:
        rows = self._fetchall(f"SELECT {_STATION_COLUMNS} FROM changing_stations ORDER BY id;")
        return [_station_from_row(row) for row in rows]

    def get_station(self, station_id: int) -> Optional[ChangingStation]:
        row = self._fetchone(
            f"SELECT {_STATION_COLUMNS} FROM changing_stations WHERE id = %(id)s;",
            {"id": station_id},
        )
        return _station_from_row(row) if row else None

    def stations_in_box(self, south: float, west: float, north: float, east: float) -> List[ChangingStation]:
        rows = self._fetchall(
            f"""
            SELECT {_STATION_COLUMNS} FROM changing_stations
            WHERE latitude BETWEEN %(south)s AND %(north)s
              AND longitude BETWEEN %(west)s AND %(east)s
            ORDER BY id;
            """,
            {"south": south, "west": west, "north": north, "east": east},
        )
        return [_station_from_row(row) for row in rows]

    def search_stations(self, query: str) -> List[ChangingStation]:
        pattern = f"%{query.strip()}%"
        rows = self._fetchall(
            f"""
            SELECT {_STATION_COLUMNS} FROM changing_stations
            WHERE business_name ILIKE %(pattern)s OR address ILIKE %(pattern)s
            ORDER BY id;
            """,
            {"pattern": pattern},
        )
        return [_station_from_row(row) for row in rows]

    def create_station(self, station: ChangingStation) -> ChangingStation:
        row = self._fetchone(_INSERT_STATION, _station_params(station))
        logger.debug("Inserted station %s", row["id"])
        return _station_from_row(row)

    def update_station_aggregates(self, station_id: int, aggregates: StationAggregates) -> Optional[ChangingStation]:
        row = self._fetchone(
            _UPDATE_AGGREGATES,
            {
                "id": station_id,
                "average_rating": aggregates.average_rating,
                "review_count": aggregates.review_count,
                "negative_reports": aggregates.negative_reports,
                "has_changing_station": aggregates.has_changing_station.to_optional(),
                "is_verified": aggregates.is_verified,
            },
        )
        return _station_from_row(row) if row else None

    # ---------- reviews ----------

    def list_reviews(self, station_id: int) -> List[Review]:
        rows = self._fetchall(
            f"SELECT {_REVIEW_COLUMNS} FROM reviews WHERE station_id = %(station_id)s ORDER BY id;",
            {"station_id": station_id},
        )
        return [_review_from_row(row) for row in rows]

    def create_review(self, review: Review) -> Review:
        row = self._fetchone(_INSERT_REVIEW, _review_params(review))
        logger.debug("Inserted review %s for station %s", row["id"], review.station_id)
        return _review_from_row(row)

    # ---------- locks ----------

    @contextmanager
    def _transaction_locks(self, keys: Sequence[int]) -> Iterator[None]:
        if getattr(self._local, "conn", None) is not None:
            # Nested block: the outer transaction holds these locks until it ends.
            with self._cursor() as cur:
                for key in keys:
                    cur.execute("SELECT pg_advisory_xact_lock(%s);", (key,))
            yield
            return
        with get_connection() as conn:
            self._local.conn = conn
            try:
                with conn.cursor() as cur:
                    for key in keys:
                        cur.execute("SELECT pg_advisory_xact_lock(%s);", (key,))
                yield
                conn.commit()
            except BaseException:
                conn.rollback()
                raise
            finally:
                self._local.conn = None

    def station_lock(self, station_id: int):
        return self._transaction_locks([station_lock_key(station_id)])

    def location_lock(self, buckets: Sequence[Tuple[int, int]]):
        return self._transaction_locks([location_lock_key(bucket) for bucket in buckets])

    # ---------- users & navigations ----------

    def upsert_user(
        self,
        external_user_id: str,
        push_token: Optional[str] = None,
        email: Optional[str] = None,
        first_name: Optional[str] = None,
    ) -> User:
        row = self._fetchone(
            _UPSERT_USER,
            {
                "external_user_id": external_user_id,
                "push_token": push_token,
                "email": email,
                "first_name": first_name,
            },
        )
        return User(**row)

    def get_user(self, user_id: int) -> Optional[User]:
        row = self._fetchone(f"SELECT {_USER_COLUMNS} FROM users WHERE id = %(id)s;", {"id": user_id})
        return User(**row) if row else None

    def get_user_by_external_id(self, external_user_id: str) -> Optional[User]:
        row = self._fetchone(
            f"SELECT {_USER_COLUMNS} FROM users WHERE external_user_id = %(ext)s;",
            {"ext": external_user_id},
        )
        return User(**row) if row else None

    def create_navigation(self, navigation: Navigation) -> Navigation:
        row = self._fetchone(
            _INSERT_NAVIGATION,
            {
                "user_id": navigation.user_id,
                "station_id": navigation.station_id,
                "station_name": navigation.station_name,
                "notify_after": navigation.notify_after,
            },
        )
        return _navigation_from_row(row)

    def pending_navigations(self, now: datetime) -> List[Tuple[Navigation, User]]:
        rows = self._fetchall(_PENDING_NAVIGATIONS, {"now": now})
        return [
            (
                _navigation_from_row(row),
                User(
                    id=row["user_id"],
                    external_user_id=row["external_user_id"],
                    push_token=row["push_token"],
                    email=row["email"],
                    first_name=row["first_name"],
                    created_at=row["user_created_at"],
                ),
            )
            for row in rows
        ]

    def mark_navigation_sent(self, navigation_id: int) -> None:
        self._execute(
            "UPDATE user_navigations SET notification_sent = TRUE WHERE id = %(id)s;",
            {"id": navigation_id},
        )

    # ---------- analytics ----------

    def record_event(self, event: AnalyticsEvent) -> AnalyticsEvent:
        row = self._fetchone(
            _INSERT_EVENT,
            {
                "device_id": event.device_id,
                "event_type": event.event_type,
                "event_data": _json(event.event_data),
                "device_info": _json(event.device_info),
                "location_data": _json(event.location_data),
                "network_type": event.network_type,
                "timestamp": event.timestamp,
            },
        )
        return AnalyticsEvent(**row)

    def save_usage_session(self, session: UsageSession) -> UsageSession:
        row = self._fetchone(
            _UPSERT_USAGE_SESSION,
            {
                "device_id": session.device_id,
                "session_id": session.session_id,
                "session_start": session.session_start,
                "session_end": session.session_end,
                "stations_viewed": extras.Json(list(session.stations_viewed)),
                "search_queries": extras.Json(list(session.search_queries)),
                "features_used": extras.Json(list(session.features_used)),
                "app_version": session.app_version,
                "battery_level": session.battery_level,
                "network_quality": session.network_quality,
            },
        )
        return _usage_session_from_row(row)
