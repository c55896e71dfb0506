"""Expo push notification delivery."""

from __future__ import annotations

import logging
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any, Dict, Optional

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

logger = logging.getLogger(__name__)

DEFAULT_PUSH_URL = "https://exp.host/--/api/v2/push/send"
REQUEST_TIMEOUT = 10


class PushDeliveryError(RuntimeError):
    """Raised when the push service rejects or fails a delivery."""


def _build_session() -> requests.Session:
    session = requests.Session()
    retries = Retry(
        total=3,
        backoff_factor=1,
        status_forcelist=(500, 502, 503, 504),
        allowed_methods=("POST",),
    )
    session.mount("http://", HTTPAdapter(max_retries=retries))
    session.mount("https://", HTTPAdapter(max_retries=retries))
    return session


_SESSION = _build_session()


def send_push(
    token: str,
    title: str,
    body: str,
    data: Optional[Dict[str, Any]] = None,
    push_url: str = DEFAULT_PUSH_URL,
) -> Dict[str, Any]:
    message = {
        "to": token,
        "sound": "default",
        "title": title,
        "body": body,
        "data": data or {},
    }
    try:
        response = _SESSION.post(
            push_url,
            json=message,
            headers={"Accept": "application/json"},
            timeout=REQUEST_TIMEOUT,
        )
    except requests.RequestException as exc:
        raise PushDeliveryError(f"push request failed: {exc}") from exc

    if not 200 <= response.status_code < 300:
        raise PushDeliveryError(f"push service returned {response.status_code}: {response.text[:200]}")
    payload = response.json()
    ticket = payload.get("data") if isinstance(payload, dict) else None
    if isinstance(ticket, dict) and ticket.get("status") == "error":
        raise PushDeliveryError(ticket.get("message") or "push ticket error")
    return payload


class PushSender:
    """Delivers notifications without ever raising into the caller."""

    def __init__(self, push_url: str = DEFAULT_PUSH_URL, max_workers: int = 2) -> None:
        self.push_url = push_url
        self._executor = ThreadPoolExecutor(max_workers=max_workers)

    def send(self, token: str, title: str, body: str, data: Optional[Dict[str, Any]] = None) -> bool:
        try:
            payload = send_push(token, title, body, data, push_url=self.push_url)
        except Exception as exc:  # noqa: BLE001
            logger.error("Push delivery to %s failed: %s", token, exc)
            return False
        logger.info("Push notification sent: %s", payload)
        return True

    def send_async(self, token: str, title: str, body: str, data: Optional[Dict[str, Any]] = None) -> Future:
        return self._executor.submit(self.send, token, title, body, data)

    def shutdown(self) -> None:
        self._executor.shutdown(wait=False)
