import pytest
import requests

from core.config import CoreSettings
from routing.models import Coordinate, DistanceSource
from routing.osrm_client import OSRMClient, OSRMError
from routing.route_service import (
    RouteDistanceEstimator,
    build_distance_estimator,
    straight_line_distance_km,
)

from conftest import BORROWDALE, HARARE_CBD, MockOSRM


def test_road_distance_when_osrm_answers():
    osrm = MockOSRM(distance_m=12_345.0, duration_s=1_530.0)
    result = RouteDistanceEstimator(osrm).estimate(HARARE_CBD, BORROWDALE)

    assert result.distance_km == 12.3
    assert result.duration_minutes == 25.5
    assert result.source == DistanceSource.ROAD
    # OSRM gets (lat, lon) pairs; the client flips them on the wire
    assert osrm.calls[0] == [HARARE_CBD.as_lat_lon(), BORROWDALE.as_lat_lon()]


def test_straight_line_fallback_when_routing_is_down():
    result = RouteDistanceEstimator(MockOSRM(fail=True)).estimate(HARARE_CBD, BORROWDALE)

    assert result.duration_minutes is None
    assert result.is_fallback
    assert result.distance_km == round(straight_line_distance_km(HARARE_CBD, BORROWDALE), 1)
    assert 8 < result.distance_km < 9


def test_straight_line_when_osrm_not_configured():
    estimator = build_distance_estimator(CoreSettings(osrm_base_url=None))
    result = estimator.estimate(HARARE_CBD, BORROWDALE)

    assert estimator.osrm is None
    assert result.source == DistanceSource.STRAIGHT_LINE


def test_same_point_is_zero_km():
    point = Coordinate(-17.8, 31.0)
    assert RouteDistanceEstimator().estimate(point, point).distance_km == 0.0


class FakeResponse:
    def __init__(self, payload, status_code=200):
        self.payload = payload
        self.status_code = status_code

    def json(self):
        if isinstance(self.payload, Exception):
            raise self.payload
        return self.payload


@pytest.fixture
def osrm_client():
    return OSRMClient("http://osrm.local/", timeout=3)


def test_compute_route_formats_lon_lat_and_passes_timeout(monkeypatch, osrm_client):
    seen = {}

    def fake_get(url, params=None, timeout=None):
        seen.update(url=url, params=params, timeout=timeout)
        return FakeResponse({"code": "Ok", "routes": [{"distance": 1000.0, "duration": 120.0}]})

    monkeypatch.setattr(requests, "get", fake_get)
    route = osrm_client.compute_route([(-17.8, 31.0), (-17.7, 31.1)])

    assert route == {"distance": 1000.0, "duration": 120.0}
    assert seen["url"] == "http://osrm.local/route/v1/driving/31.0,-17.8;31.1,-17.7"
    assert seen["timeout"] == 3


@pytest.mark.parametrize("payload", [
    {"code": "NoRoute", "message": "Impossible route between points"},
    {"code": "Ok", "routes": []},
    ValueError("Expecting value"),
])
def test_compute_route_raises_on_unusable_answers(monkeypatch, osrm_client, payload):
    monkeypatch.setattr(requests, "get", lambda *args, **kwargs: FakeResponse(payload, status_code=400))

    with pytest.raises(OSRMError):
        osrm_client.compute_route([(-17.8, 31.0), (-17.7, 31.1)])


def test_compute_route_wraps_timeouts(monkeypatch, osrm_client):
    def timeout(*args, **kwargs):
        raise requests.Timeout("read timed out")

    monkeypatch.setattr(requests, "get", timeout)

    with pytest.raises(OSRMError):
        osrm_client.compute_route([(-17.8, 31.0), (-17.7, 31.1)])


def test_client_needs_a_base_url():
    with pytest.raises(ValueError):
        OSRMClient(None)
