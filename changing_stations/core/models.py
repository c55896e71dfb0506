"""Core data models shared by the ranking, reconciliation and consensus engines."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional


class ValidationError(ValueError):
    """Raised when caller-supplied input is malformed or incomplete."""


class StationNotFoundError(LookupError):
    """Raised when a station id that must resolve does not exist."""


class TriState(Enum):
    TRUE = "true"
    FALSE = "false"
    UNKNOWN = "unknown"

    @classmethod
    def from_optional(cls, value: Optional[bool]) -> "TriState":
        if value is None:
            return cls.UNKNOWN
        return cls.TRUE if value else cls.FALSE

    def to_optional(self) -> Optional[bool]:
        if self is TriState.UNKNOWN:
            return None
        return self is TriState.TRUE


@dataclass(slots=True)
class ChangingStation:
    """A persisted business location known (or believed) to have a changing station."""

    business_name: str
    address: str
    latitude: float
    longitude: float
    id: Optional[int] = None
    is_accessible: TriState = TriState.UNKNOWN
    is_private: bool = False
    has_supplies: TriState = TriState.UNKNOWN
    business_hours: Optional[str] = None
    is_open: TriState = TriState.UNKNOWN
    average_rating: float = 0.0
    review_count: int = 0
    has_changing_station: TriState = TriState.TRUE
    negative_reports: int = 0
    is_verified: bool = False
    is_guaranteed_chain: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "businessName": self.business_name,
            "address": self.address,
            "latitude": self.latitude,
            "longitude": self.longitude,
            "isAccessible": self.is_accessible.to_optional(),
            "isPrivate": self.is_private,
            "hasSupplies": self.has_supplies.to_optional(),
            "businessHours": self.business_hours,
            "isOpen": self.is_open.to_optional(),
            "averageRating": self.average_rating,
            "reviewCount": self.review_count,
            "hasChangingStation": self.has_changing_station.to_optional(),
            "negativeReports": self.negative_reports,
            "isVerified": self.is_verified,
            "isGuaranteedChain": self.is_guaranteed_chain,
        }


@dataclass(slots=True)
class StationAggregates:
    """Review-derived fields written back to a station after every review."""

    average_rating: float
    review_count: int
    negative_reports: int
    has_changing_station: TriState
    is_verified: bool


@dataclass(slots=True)
class Review:
    station_id: int
    author_name: str
    rating: int
    id: Optional[int] = None
    content: Optional[str] = None
    is_cleanliness: bool = False
    is_well_stocked: bool = False
    is_accessible: bool = False
    is_private: bool = False
    report_no_changing_station: bool = False
    confirm_has_changing_station: bool = False
    created_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "stationId": self.station_id,
            "authorName": self.author_name,
            "rating": self.rating,
            "content": self.content,
            "isCleanliness": self.is_cleanliness,
            "isWellStocked": self.is_well_stocked,
            "isAccessible": self.is_accessible,
            "isPrivate": self.is_private,
            "reportNoChangingStation": self.report_no_changing_station,
            "confirmHasChangingStation": self.confirm_has_changing_station,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
        }


@dataclass(slots=True)
class PlaceCandidate:
    """Normalized snapshot of a place returned by an external places search."""

    external_id: str
    name: str
    latitude: float
    longitude: float
    address: Optional[str] = None
    categories: List[str] = field(default_factory=list)
    chain_ids: List[str] = field(default_factory=list)
    distance: Optional[float] = None
    business_hours: Optional[str] = None
    is_open: Optional[bool] = None
    source: str = "foursquare"
    is_guaranteed_chain: bool = False
    score: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.external_id,
            "businessName": self.name,
            "address": self.address or "Address not available",
            "latitude": self.latitude,
            "longitude": self.longitude,
            "categories": list(self.categories),
            "chainIds": list(self.chain_ids),
            "distance": self.distance,
            "businessHours": self.business_hours,
            "isOpen": self.is_open,
            "source": self.source,
            "isGuaranteedChain": self.is_guaranteed_chain,
            "changingStationScore": self.score,
            # Candidates are unverified until a review reconciles them.
            "isVerified": False,
            "hasChangingStation": None,
        }


@dataclass(slots=True)
class User:
    external_user_id: str
    id: Optional[int] = None
    push_token: Optional[str] = None
    email: Optional[str] = None
    first_name: Optional[str] = None
    created_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "email": self.email,
            "firstName": self.first_name,
            "hasPushToken": bool(self.push_token),
        }


@dataclass(slots=True)
class Navigation:
    """A user's trip to a station, used to send a review reminder afterwards."""

    user_id: int
    station_id: str
    station_name: str
    notify_after: datetime
    id: Optional[int] = None
    created_at: Optional[datetime] = None
    notification_sent: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "userId": self.user_id,
            "stationId": self.station_id,
            "stationName": self.station_name,
            "notifyAfter": self.notify_after.isoformat(),
            "createdAt": self.created_at.isoformat() if self.created_at else None,
            "notificationSent": self.notification_sent,
        }


@dataclass(slots=True)
class AnalyticsEvent:
    """One client telemetry event (screen view, search, station tap, ...)."""

    device_id: str
    event_type: str
    event_data: Optional[Dict[str, Any]] = None
    device_info: Optional[Dict[str, Any]] = None
    location_data: Optional[Dict[str, Any]] = None
    network_type: Optional[str] = None
    id: Optional[str] = None
    timestamp: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "deviceId": self.device_id,
            "eventType": self.event_type,
            "eventData": self.event_data,
            "deviceInfo": self.device_info,
            "locationData": self.location_data,
            "networkType": self.network_type,
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
        }


@dataclass(slots=True)
class UsageSession:
    """Per-session app usage summary, keyed by the client's session id."""

    device_id: str
    session_id: str
    session_start: Optional[datetime] = None
    session_end: Optional[datetime] = None
    stations_viewed: List[Any] = field(default_factory=list)
    search_queries: List[str] = field(default_factory=list)
    features_used: List[str] = field(default_factory=list)
    app_version: Optional[str] = None
    battery_level: Optional[int] = None
    network_quality: Optional[str] = None
    id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "deviceId": self.device_id,
            "sessionId": self.session_id,
            "sessionStart": self.session_start.isoformat() if self.session_start else None,
            "sessionEnd": self.session_end.isoformat() if self.session_end else None,
            "stationsViewed": list(self.stations_viewed),
            "searchQueries": list(self.search_queries),
            "featuresUsed": list(self.features_used),
            "appVersion": self.app_version,
            "batteryLevel": self.battery_level,
            "networkQuality": self.network_quality,
        }
