"""Validation of client telemetry payloads (camelCase keys)."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional

from changing_stations.core.models import AnalyticsEvent, UsageSession, ValidationError


def _required_str(fields: Mapping[str, Any], key: str) -> str:
    value = fields.get(key)
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{key} is required")
    return value.strip()


def _optional_str(fields: Mapping[str, Any], key: str) -> Optional[str]:
    value = fields.get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValidationError(f"{key} must be a string")
    return value.strip() or None


def _optional_object(fields: Mapping[str, Any], key: str) -> Optional[Dict[str, Any]]:
    value = fields.get(key)
    if value is None:
        return None
    if not isinstance(value, dict):
        raise ValidationError(f"{key} must be an object")
    return value


def _list(fields: Mapping[str, Any], key: str) -> List[Any]:
    value = fields.get(key)
    if value is None:
        return []
    if not isinstance(value, list):
        raise ValidationError(f"{key} must be a list")
    return list(value)


def _timestamp(fields: Mapping[str, Any], key: str) -> Optional[datetime]:
    value = fields.get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValidationError(f"{key} must be an ISO-8601 timestamp")
    try:
        return datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    except ValueError:
        raise ValidationError(f"{key} must be an ISO-8601 timestamp") from None


def event_from_fields(fields: Mapping[str, Any]) -> AnalyticsEvent:
    return AnalyticsEvent(
        device_id=_required_str(fields, "deviceId"),
        event_type=_required_str(fields, "eventType"),
        event_data=_optional_object(fields, "eventData"),
        device_info=_optional_object(fields, "deviceInfo"),
        location_data=_optional_object(fields, "locationData"),
        network_type=_optional_str(fields, "networkType"),
        timestamp=_timestamp(fields, "timestamp"),
    )


def usage_session_from_fields(fields: Mapping[str, Any]) -> UsageSession:
    """Validate a session summary. Re-posting a session id updates that session."""
    search_queries = _list(fields, "searchQueries")
    features_used = _list(fields, "featuresUsed")
    if not all(isinstance(item, str) for item in search_queries + features_used):
        raise ValidationError("searchQueries and featuresUsed must be lists of strings")

    battery_level = fields.get("batteryLevel")
    if battery_level is not None:
        if isinstance(battery_level, bool) or not isinstance(battery_level, int) or not 0 <= battery_level <= 100:
            raise ValidationError("batteryLevel must be an integer between 0 and 100")

    return UsageSession(
        device_id=_required_str(fields, "deviceId"),
        session_id=_required_str(fields, "sessionId"),
        session_start=_timestamp(fields, "sessionStart"),
        session_end=_timestamp(fields, "sessionEnd"),
        stations_viewed=_list(fields, "stationsViewed"),
        search_queries=search_queries,
        features_used=features_used,
        app_version=_optional_str(fields, "appVersion"),
        battery_level=battery_level,
        network_quality=_optional_str(fields, "networkQuality"),
    )
