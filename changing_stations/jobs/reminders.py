"""Background scan that sends "how was it?" reminders after a navigation."""

from __future__ import annotations

import logging
import threading
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from changing_stations.core.store import StationStore
from changing_stations.vendors.expo_push import PushSender

logger = logging.getLogger(__name__)

REMINDER_TITLE = "How was the changing station?"


def _reminder_data(store: StationStore, station_id: str, station_name: str) -> Dict[str, Any]:
    data: Dict[str, Any] = {
        "stationId": station_id,
        "stationName": station_name,
        "address": "",
        "latitude": 0,
        "longitude": 0,
    }
    # External candidate ids (fsq_..., google_...) have no stored details yet.
    if station_id.isdigit():
        station = store.get_station(int(station_id))
        if station is not None:
            data.update(address=station.address, latitude=station.latitude, longitude=station.longitude)
    return data


def check_and_send_pending(store: StationStore, sender: PushSender, now: Optional[datetime] = None) -> int:
    """Send every due reminder once. Returns the number delivered; never raises."""
    now = now or datetime.now(timezone.utc)
    try:
        pending = store.pending_navigations(now)
    except Exception as exc:  # noqa: BLE001
        logger.exception("Failed to load pending navigations: %s", exc)
        return 0

    logger.info("Found %d pending notifications", len(pending))
    sent = 0
    for navigation, user in pending:
        try:
            if not user.push_token:
                logger.info("No push token for user %s, skipping navigation %s", user.id, navigation.id)
                store.mark_navigation_sent(navigation.id)
                continue

            data = _reminder_data(store, navigation.station_id, navigation.station_name)
            delivered = sender.send(
                user.push_token,
                REMINDER_TITLE,
                f"Help other parents at {navigation.station_name}",
                data,
            )
            if not delivered:
                # Left pending; the next scan retries.
                continue
            store.mark_navigation_sent(navigation.id)
            sent += 1
        except Exception as exc:  # noqa: BLE001
            logger.exception("Failed to process navigation %s: %s", navigation.id, exc)
    return sent


class ReminderScheduler:
    """Runs :func:`check_and_send_pending` on a daemon thread every ``interval_seconds``."""

    def __init__(self, store: StationStore, sender: PushSender, interval_seconds: float = 60) -> None:
        self.store = store
        self.sender = sender
        self.interval_seconds = interval_seconds
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name="reminder-scheduler", daemon=True)
        self._thread.start()
        logger.info("Notification scheduler started (interval=%ss)", self.interval_seconds)

    def stop(self, timeout: Optional[float] = None) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)

    def _run(self) -> None:
        while True:
            check_and_send_pending(self.store, self.sender)
            if self._stop.wait(self.interval_seconds):
                break
