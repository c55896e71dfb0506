"""HTTP entrypoint for the changing-station API."""

from __future__ import annotations

import logging
import os
import time
from typing import Any, Dict, Optional, Tuple

from flask import Flask, g, jsonify, request

from changing_stations.core.config import get_settings
from changing_stations.core.models import StationNotFoundError, ValidationError
from changing_stations.core.service import StationService, build_service
from changing_stations.jobs.reminders import ReminderScheduler
from changing_stations.vendors.expo_push import PushSender

# ---------- Logging ----------
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s - %(message)s",
)
logger = logging.getLogger(__name__)

# ---------- App & service ----------
app = Flask(__name__)
_service: Optional[StationService] = None

EXTERNAL_ID_PREFIXES = ("fsq_", "google_")
USER_ID_HEADER = "X-User-Id"


def get_service() -> StationService:
    global _service
    if _service is None:
        _service = build_service(get_settings())
    return _service


def _error(message: str, status: int) -> Tuple[Any, int]:
    return jsonify({"error": message}), status


def _json_body() -> Dict[str, Any]:
    payload = request.get_json(silent=True)
    return payload if isinstance(payload, dict) else {}


def _parse_station_id(raw: str) -> Optional[int]:
    try:
        return int(raw)
    except (TypeError, ValueError):
        return None


def _is_external_id(raw: Any) -> bool:
    return isinstance(raw, str) and raw.startswith(EXTERNAL_ID_PREFIXES)


def _parse_review_station_id(raw: Any) -> Optional[int]:
    """Accept an integer or a string of digits; reject bools and fractional numbers."""
    if isinstance(raw, bool):
        return None
    if isinstance(raw, int):
        return raw
    if isinstance(raw, str) and raw.strip().isdigit():
        return int(raw.strip())
    return None


# ---------- Request logging ----------


@app.before_request
def _start_timer() -> None:
    g.started_at = time.monotonic()


@app.after_request
def _log_request(response):
    if request.path.startswith("/api"):
        duration_ms = (time.monotonic() - g.get("started_at", time.monotonic())) * 1000
        logger.info("%s %s %s in %.0fms", request.method, request.path, response.status_code, duration_ms)
    return response


# ---------- Routes ----------


@app.get("/")
def root() -> Any:
    """Simple root to avoid 404 on GET /"""
    return "ok", 200


@app.get("/healthz")
def healthcheck() -> Any:
    settings = get_settings()
    return (
        jsonify(
            {
                "status": "ok",
                "storage_backend": settings.storage_backend,
                "places_provider": settings.places_provider,
                "revision": os.getenv("K_REVISION", "unknown"),
            }
        ),
        200,
    )


@app.get("/api/changing-stations")
def list_stations() -> Any:
    try:
        stations = get_service().list_stations()
    except Exception as exc:  # noqa: BLE001
        logger.exception("Failed to fetch changing stations: %s", exc)
        return _error("Failed to fetch changing stations", 500)
    return jsonify({"data": [station.to_dict() for station in stations]}), 200


@app.get("/api/changing-stations/search")
def search_stations() -> Any:
    try:
        stations = get_service().search_stations_by_text(request.args.get("q"))
    except ValidationError as exc:
        return _error(str(exc), 400)
    except Exception as exc:  # noqa: BLE001
        logger.exception("Failed to search changing stations: %s", exc)
        return _error("Failed to search changing stations", 500)
    return jsonify({"data": [station.to_dict() for station in stations]}), 200


@app.get("/api/changing-stations/nearby")
def nearby_stations() -> Any:
    settings = get_settings()
    radius = request.args.get("radius", settings.default_nearby_radius_km)
    try:
        stations = get_service().get_stations_nearby(request.args.get("lat"), request.args.get("lng"), radius)
    except ValidationError as exc:
        return _error(str(exc), 400)
    except Exception as exc:  # noqa: BLE001
        logger.exception("Failed to fetch nearby changing stations: %s", exc)
        return _error("Failed to fetch nearby changing stations", 500)
    return jsonify({"data": [station.to_dict() for station in stations]}), 200


@app.get("/api/changing-stations/<station_id>")
def get_station(station_id: str) -> Any:
    numeric_id = _parse_station_id(station_id)
    if numeric_id is None:
        return _error("Invalid station ID", 400)
    try:
        station = get_service().get_station(numeric_id)
    except Exception as exc:  # noqa: BLE001
        logger.exception("Failed to fetch changing station %s: %s", station_id, exc)
        return _error("Failed to fetch changing station", 500)
    if station is None:
        return _error("Changing station not found", 404)
    return jsonify({"data": station.to_dict()}), 200


@app.get("/api/changing-stations/<station_id>/reviews")
def station_reviews(station_id: str) -> Any:
    # Unreconciled candidates have no reviews until someone submits one.
    if _is_external_id(station_id):
        return jsonify({"data": []}), 200
    numeric_id = _parse_station_id(station_id)
    if numeric_id is None:
        return _error("Invalid station ID", 400)
    try:
        reviews = get_service().list_reviews(numeric_id)
    except Exception as exc:  # noqa: BLE001
        logger.exception("Failed to fetch reviews for %s: %s", station_id, exc)
        return _error("Failed to fetch reviews", 500)
    return jsonify({"data": [review.to_dict() for review in reviews]}), 200


@app.post("/api/changing-stations")
def add_station() -> Any:
    try:
        station = get_service().add_station(_json_body())
    except ValidationError as exc:
        return _error(str(exc), 400)
    except Exception as exc:  # noqa: BLE001
        logger.exception("Failed to create changing station: %s", exc)
        return _error("Failed to create changing station", 500)
    return jsonify({"data": station.to_dict()}), 201


@app.post("/api/changing-stations/from-place")
def station_from_place() -> Any:
    place = _json_body().get("place")
    if not isinstance(place, dict):
        return _error("Valid place data is required", 400)
    try:
        station = get_service().station_from_place(place)
    except ValidationError as exc:
        return _error(str(exc), 400)
    except Exception as exc:  # noqa: BLE001
        logger.exception("Failed to create changing station from place: %s", exc)
        return _error("Failed to create changing station", 500)
    return jsonify({"data": station.to_dict()}), 201


@app.post("/api/reviews")
def create_review() -> Any:
    payload = _json_body()
    place = payload.get("place")
    raw_station_id = payload.get("stationId")
    service = get_service()

    try:
        if isinstance(place, dict) and raw_station_id is not None:
            return _error("Provide either stationId or place, not both", 400)
        if isinstance(place, dict):
            review = service.submit_review(payload, candidate=service.parse_place(place))
        elif raw_station_id is None or _is_external_id(raw_station_id):
            return _error("stationId or place data is required", 400)
        else:
            station_id = _parse_review_station_id(raw_station_id)
            if station_id is None:
                return _error("Invalid station ID", 400)
            review = service.submit_review(payload, station_id=station_id)
    except ValidationError as exc:
        return _error(str(exc), 400)
    except StationNotFoundError as exc:
        return _error(str(exc), 404)
    except Exception as exc:  # noqa: BLE001
        logger.exception("Failed to create review: %s", exc)
        return _error("Failed to create review", 500)
    return jsonify({"data": review.to_dict()}), 201


@app.get("/api/places/nearby")
def nearby_places() -> Any:
    settings = get_settings()
    radius = request.args.get("radius", settings.default_search_radius_km)
    lat = request.args.get("lat")
    lng = request.args.get("lng")
    try:
        candidates = get_service().rank_nearby_candidates(lat, lng, radius, request.args.get("q"))
    except ValidationError as exc:
        return _error(str(exc), 400)
    except Exception as exc:  # noqa: BLE001
        logger.exception("Places search failed: %s", exc)
        return _error("Failed to search places", 500)

    results = [candidate.to_dict() for candidate in candidates]
    return (
        jsonify(
            {
                "data": {
                    "results": results,
                    "location": {"lat": float(lat), "lng": float(lng)},
                    "radius": f"{float(radius):g}km",
                    "totalResults": len(results),
                }
            }
        ),
        200,
    )


@app.post("/api/users")
def register_user() -> Any:
    external_user_id = request.headers.get(USER_ID_HEADER, "")
    if not external_user_id:
        return _error(f"{USER_ID_HEADER} header is required", 401)
    try:
        payload = _json_body()
        user = get_service().register_user(
            external_user_id,
            payload.get("pushToken"),
            email=payload.get("email"),
            first_name=payload.get("firstName"),
        )
    except ValidationError as exc:
        return _error(str(exc), 400)
    except Exception as exc:  # noqa: BLE001
        logger.exception("Failed to register user: %s", exc)
        return _error("Failed to register user", 500)
    return jsonify({"data": user.to_dict()}), 200


@app.post("/api/navigations")
def record_navigation() -> Any:
    external_user_id = request.headers.get(USER_ID_HEADER, "")
    if not external_user_id:
        return _error(f"{USER_ID_HEADER} header is required", 401)
    payload = _json_body()
    try:
        navigation = get_service().record_navigation(
            external_user_id, payload.get("stationId"), payload.get("stationName")
        )
    except ValidationError as exc:
        return _error(str(exc), 400)
    except Exception as exc:  # noqa: BLE001
        logger.exception("Failed to record navigation: %s", exc)
        return _error("Failed to record navigation", 500)
    return jsonify({"data": navigation.to_dict()}), 201


@app.post("/api/directions")
def directions() -> Any:
    payload = _json_body()
    try:
        route = get_service().get_directions(payload.get("origin"), payload.get("destination"))
    except ValidationError as exc:
        return _error(str(exc), 400)
    except Exception as exc:  # noqa: BLE001
        logger.exception("Routing failed: %s", exc)
        return _error("Routing service unavailable", 500)
    return jsonify({"data": route.to_dict()}), 200


@app.post("/api/analytics/events")
def record_analytics_event() -> Any:
    try:
        event = get_service().record_analytics_event(_json_body())
    except ValidationError as exc:
        return _error(str(exc), 400)
    except Exception as exc:  # noqa: BLE001
        logger.exception("Failed to record analytics event: %s", exc)
        return _error("Failed to record analytics event", 500)
    return jsonify({"data": event.to_dict()}), 201


@app.post("/api/analytics/sessions")
def save_usage_session() -> Any:
    try:
        session = get_service().save_usage_session(_json_body())
    except ValidationError as exc:
        return _error(str(exc), 400)
    except Exception as exc:  # noqa: BLE001
        logger.exception("Failed to save usage session: %s", exc)
        return _error("Failed to save usage session", 500)
    return jsonify({"data": session.to_dict()}), 201

def main() -> None:
    settings = get_settings()
    service = get_service()

    if settings.reminders_enabled:
        scheduler = ReminderScheduler(
            service.store,
            PushSender(settings.expo_push_url),
            interval_seconds=settings.reminder_interval_seconds,
        )
        scheduler.start()

    port = int(os.getenv("PORT") or settings.port)
    logger.info("[BOOT] Binding on 0.0.0.0:%d", port)
    app.run(host="0.0.0.0", port=port, threaded=True)


if __name__ == "__main__":
    main()
