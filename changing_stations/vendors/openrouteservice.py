"""OpenRouteService driving directions client."""

from __future__ import annotations

import logging
from typing import Any, Dict

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

logger = logging.getLogger(__name__)

DIRECTIONS_URL = "https://api.openrouteservice.org/v2/directions/driving-car"


class DirectionsError(RuntimeError):
    """Raised when a route cannot be fetched."""


def _build_session() -> requests.Session:
    session = requests.Session()
    retries = Retry(
        total=2,
        backoff_factor=1,
        status_forcelist=(502, 503, 504),
        allowed_methods=("POST",),
    )
    session.mount("https://", HTTPAdapter(max_retries=retries))
    return session


_SESSION = _build_session()


def driving_directions(
    origin_lat: float,
    origin_lng: float,
    dest_lat: float,
    dest_lng: float,
    api_key: str,
    timeout: float = 10,
) -> Dict[str, Any]:
    """Return the raw route response. Coordinates go over the wire as ``[lng, lat]``."""
    if not api_key:
        raise DirectionsError("OPENROUTESERVICE_API_KEY is not configured")

    body = {
        "coordinates": [[origin_lng, origin_lat], [dest_lng, dest_lat]],
        "instructions": False,
    }
    headers = {
        "Accept": "application/json, application/geo+json; charset=utf-8",
        "Authorization": api_key,
        "Content-Type": "application/json; charset=utf-8",
    }
    try:
        response = _SESSION.post(DIRECTIONS_URL, json=body, headers=headers, timeout=timeout)
    except requests.RequestException as exc:
        raise DirectionsError(f"directions request failed: {exc}") from exc

    if not 200 <= response.status_code < 300:
        logger.error("OpenRouteService returned %s: %s", response.status_code, response.text[:200])
        raise DirectionsError(f"directions service returned {response.status_code}")
    return response.json()
