import pytest
import requests

from changing_stations.core import directions
from changing_stations.vendors import openrouteservice

# Three points encoded with the standard polyline algorithm.
ENCODED = "_p~iF~ps|U_ulLnnqC_mqNvxq`@"


def _route_payload(distance=16093.4, duration=870.0, geometry=ENCODED):
    return {"routes": [{"summary": {"distance": distance, "duration": duration}, "geometry": geometry}]}


class DummyResponse:
    def __init__(self, status_code=200, payload=None, text=""):
        self.status_code = status_code
        self._payload = payload if payload is not None else _route_payload()
        self.text = text

    def json(self):
        return self._payload


class DummySession:
    def __init__(self):
        self.calls = []
        self.response = DummyResponse()
        self.error = None

    def post(self, url, json=None, headers=None, timeout=None):
        self.calls.append({"url": url, "json": json, "headers": headers, "timeout": timeout})
        if self.error:
            raise self.error
        return self.response


@pytest.fixture(autouse=True)
def patch_session(monkeypatch):
    session = DummySession()
    monkeypatch.setattr(openrouteservice, "_SESSION", session)
    return session


def test_driving_directions_sends_lng_lat_pairs(patch_session):
    openrouteservice.driving_directions(36.1513, -86.8025, 36.16, -86.78, "ors-key", timeout=3)

    call = patch_session.calls[0]
    assert call["url"] == openrouteservice.DIRECTIONS_URL
    assert call["json"] == {"coordinates": [[-86.8025, 36.1513], [-86.78, 36.16]], "instructions": False}
    assert call["headers"]["Authorization"] == "ors-key"
    assert call["timeout"] == 3


def test_driving_directions_requires_key(patch_session):
    with pytest.raises(openrouteservice.DirectionsError):
        openrouteservice.driving_directions(1, 2, 3, 4, "")
    assert patch_session.calls == []


def test_driving_directions_errors(patch_session):
    patch_session.response = DummyResponse(status_code=403, text="quota")
    with pytest.raises(openrouteservice.DirectionsError):
        openrouteservice.driving_directions(1, 2, 3, 4, "key")

    patch_session.error = requests.ConnectionError("down")
    with pytest.raises(openrouteservice.DirectionsError):
        openrouteservice.driving_directions(1, 2, 3, 4, "key")


def test_provider_decodes_route(patch_session):
    route = directions.DirectionsProvider("key").route(38.5, -120.2, 43.252, -126.453)

    assert route.coordinates == [
        {"latitude": 38.5, "longitude": -120.2},
        {"latitude": 40.7, "longitude": -120.95},
        {"latitude": 43.252, "longitude": -126.453},
    ]
    # 16093.4 m is ten miles; 870 s rounds to 15 minutes.
    assert route.distance == "10.0 mi"
    assert route.duration == "15 min"
    assert route.to_dict()["isEstimate"] is False
    assert route.to_dict()["summary"] == "Actual route via roadways"


def test_duration_rounds_half_minutes_up():
    assert directions.route_from_payload(_route_payload(duration=90.0)).duration == "2 min"
    assert directions.route_from_payload(_route_payload(duration=89.0)).duration == "1 min"


@pytest.mark.parametrize("payload", [{}, {"routes": []}, []])
def test_missing_route_raises(payload):
    with pytest.raises(openrouteservice.DirectionsError, match="No route found"):
        directions.route_from_payload(payload)
