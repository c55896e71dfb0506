"""Application configuration helpers."""

import logging
import os
from dataclasses import dataclass
from functools import lru_cache
from typing import FrozenSet, Optional

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

_TRUTHY = {"1", "true", "yes"}


@dataclass(frozen=True)
class Settings:
    foursquare_api_key: str
    google_api_key: str
    database_url: str
    openrouteservice_api_key: str = ""
    places_provider: str = "foursquare"
    storage_backend: str = "memory"
    port: int = 5000
    places_timeout_seconds: float = 10.0
    default_search_radius_km: float = 16.0
    default_nearby_radius_km: float = 10.0
    reminders_enabled: bool = True
    reminder_interval_seconds: int = 60
    reminder_delay_minutes: int = 30
    expo_push_url: str = "https://exp.host/--/api/v2/push/send"
    extra_priority_chain_ids: FrozenSet[str] = frozenset()
    extra_secondary_chain_ids: FrozenSet[str] = frozenset()


def _split_ids(raw: Optional[str]) -> FrozenSet[str]:
    if not raw:
        return frozenset()
    return frozenset(part.strip() for part in raw.split(",") if part.strip())


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Load settings from environment variables with sensible defaults."""
    load_dotenv()

    foursquare_api_key = os.getenv("FOURSQUARE_API_KEY", "")
    google_api_key = os.getenv("GOOGLE_API_KEY", "")
    database_url = os.getenv("DATABASE_URL", "")
    openrouteservice_api_key = os.getenv("OPENROUTESERVICE_API_KEY", "")
    places_provider = os.getenv("PLACES_PROVIDER", "foursquare").strip().lower()
    storage_backend = os.getenv("STORAGE_BACKEND", "memory").strip().lower()
    port = int(os.getenv("PORT", "5000"))
    places_timeout_seconds = float(os.getenv("PLACES_TIMEOUT_SECONDS", "10"))
    default_search_radius_km = float(os.getenv("DEFAULT_SEARCH_RADIUS_KM", "16"))
    default_nearby_radius_km = float(os.getenv("DEFAULT_NEARBY_RADIUS_KM", "10"))
    reminders_enabled = os.getenv("REMINDERS_ENABLED", "true").lower() in _TRUTHY
    reminder_interval_seconds = int(os.getenv("REMINDER_INTERVAL_SECONDS", "60"))
    reminder_delay_minutes = int(os.getenv("REMINDER_DELAY_MINUTES", "30"))
    expo_push_url = os.getenv("EXPO_PUSH_URL", "https://exp.host/--/api/v2/push/send")

    if places_provider == "foursquare" and not foursquare_api_key:
        logger.warning("FOURSQUARE_API_KEY is not configured; places search will return no results.")
    if places_provider == "google" and not google_api_key:
        logger.warning("GOOGLE_API_KEY is not configured; places search will return no results.")
    if storage_backend == "postgres" and not database_url:
        logger.warning("DATABASE_URL is not set; database operations will fail.")
    if not openrouteservice_api_key:
        logger.warning("OPENROUTESERVICE_API_KEY is not configured; directions will be unavailable.")

    return Settings(
        foursquare_api_key=foursquare_api_key,
        google_api_key=google_api_key,
        database_url=database_url,
        openrouteservice_api_key=openrouteservice_api_key,
        places_provider=places_provider,
        storage_backend=storage_backend,
        port=port,
        places_timeout_seconds=places_timeout_seconds,
        default_search_radius_km=default_search_radius_km,
        default_nearby_radius_km=default_nearby_radius_km,
        reminders_enabled=reminders_enabled,
        reminder_interval_seconds=reminder_interval_seconds,
        reminder_delay_minutes=reminder_delay_minutes,
        expo_push_url=expo_push_url,
        extra_priority_chain_ids=_split_ids(os.getenv("EXTRA_PRIORITY_CHAIN_IDS")),
        extra_secondary_chain_ids=_split_ids(os.getenv("EXTRA_SECONDARY_CHAIN_IDS")),
    )
