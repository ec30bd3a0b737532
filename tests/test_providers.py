"""
Tests for the routing / geocoding adapters and the route estimator.
HTTP collaborators are served by httpx.MockTransport, nothing leaves the process.
"""
from datetime import datetime

import httpx
import pytest

from exceptions import GeocodeFailure, RoutingFailure
from models import Coordinate
from providers import (
    FixedGeocoder,
    NominatimGeocoder,
    OSRMRoutingProvider,
    StaticIdentityProvider,
    StraightLineRoutingProvider,
)
from routing import RouteEstimator, haversine_m

from conftest import FakeRoutingProvider, SlowCollaborator

UW = Coordinate(latitude=47.66, longitude=-122.31)
PIKE = Coordinate(latitude=47.62, longitude=-122.35)


# ────────────────────────── OSRM ────────────────────────────────────────────

@pytest.mark.asyncio
async def test_osrm_route():
    seen = {}

    def handler(request: httpx.Request):
        seen["path"] = request.url.path
        seen["params"] = dict(request.url.params)
        return httpx.Response(200, json={
            "code": "Ok",
            "routes": [{
                "geometry": {"type": "LineString", "coordinates": [[-122.31, 47.66], [-122.33, 47.64], [-122.35, 47.62]]},
                "distance": 6120.4,
                "duration": 712.9,
            }],
        })

    provider = OSRMRoutingProvider(base_url="http://osrm.test", transport=httpx.MockTransport(handler))
    route = await provider.route(UW, PIKE)
    assert seen["path"] == "/route/v1/driving/-122.31,47.66;-122.35,47.62"
    assert seen["params"]["geometries"] == "geojson"
    assert route.distance == 6120.4
    assert route.duration == 712.9
    assert route.polyline[0] == UW
    assert route.polyline[-1] == PIKE
    assert route.travel_time_minutes == 11


@pytest.mark.asyncio
async def test_osrm_no_route():
    transport = httpx.MockTransport(lambda request: httpx.Response(200, json={"code": "NoRoute", "routes": []}))
    with pytest.raises(RoutingFailure):
        await OSRMRoutingProvider(base_url="http://osrm.test", transport=transport).route(UW, PIKE)


@pytest.mark.asyncio
async def test_osrm_server_error():
    transport = httpx.MockTransport(lambda request: httpx.Response(503, text="busy"))
    with pytest.raises(RoutingFailure):
        await OSRMRoutingProvider(base_url="http://osrm.test", transport=transport).route(UW, PIKE)


# ────────────────────────── Nominatim ───────────────────────────────────────

@pytest.mark.asyncio
async def test_nominatim_reverse_geocode():
    def handler(request: httpx.Request):
        assert request.url.path == "/reverse"
        assert request.url.params["format"] == "jsonv2"
        assert "User-Agent" in request.headers
        return httpx.Response(200, json={
            "name": "Husky Union Building",
            "address": {"road": "Stevens Way NE", "suburb": "University District", "county": "King County"},
        })

    geocoder = NominatimGeocoder(base_url="http://geo.test", transport=httpx.MockTransport(handler))
    placemark = await geocoder.reverse_geocode(UW)
    assert placemark.name == "Husky Union Building"
    assert placemark.address == "Stevens Way NE, University District, King County"


@pytest.mark.asyncio
async def test_nominatim_without_name_falls_back_to_city():
    payload = {"name": "", "address": {"road": "1st Ave", "neighbourhood": "Belltown", "city": "Seattle"}}
    transport = httpx.MockTransport(lambda request: httpx.Response(200, json=payload))
    placemark = await NominatimGeocoder(base_url="http://geo.test", transport=transport).reverse_geocode(PIKE)
    assert placemark.name is None
    assert placemark.address == "1st Ave, Belltown, Seattle"


@pytest.mark.asyncio
async def test_nominatim_error_payload():
    transport = httpx.MockTransport(lambda request: httpx.Response(200, json={"error": "Unable to geocode"}))
    with pytest.raises(GeocodeFailure):
        await NominatimGeocoder(base_url="http://geo.test", transport=transport).reverse_geocode(UW)


@pytest.mark.asyncio
async def test_nominatim_http_error():
    transport = httpx.MockTransport(lambda request: httpx.Response(500))
    with pytest.raises(GeocodeFailure):
        await NominatimGeocoder(base_url="http://geo.test", transport=transport).reverse_geocode(UW)


# ────────────────────────── offline stand-ins ───────────────────────────────

@pytest.mark.asyncio
async def test_straight_line_route():
    route = await StraightLineRoutingProvider(speed_mps=10.0).route(UW, PIKE)
    assert route.distance == haversine_m(UW, PIKE)
    assert route.duration == pytest.approx(route.distance / 10.0)


@pytest.mark.asyncio
async def test_fixed_geocoder_and_identity():
    assert (await FixedGeocoder().reverse_geocode(UW)).name == "Current Location"
    assert StaticIdentityProvider("u1").current_user_id() == "u1"
    assert StaticIdentityProvider().current_user_id() is None


# ────────────────────────── estimator ───────────────────────────────────────

@pytest.mark.asyncio
async def test_estimator_stamps_display_times():
    clock = lambda: datetime(2026, 10, 19, 8, 5)
    estimator = RouteEstimator(FakeRoutingProvider(duration=1800.0), clock=clock)
    route = await estimator.estimate(UW, PIKE)
    assert route.pickup_time == datetime(2026, 10, 19, 8, 5)
    assert route.dropoff_time == datetime(2026, 10, 19, 8, 35)
    assert estimator.pickup_time == "08:05 AM"
    assert estimator.dropoff_time == "08:35 AM"


@pytest.mark.asyncio
async def test_estimator_recomputes_times_each_call():
    times = iter([datetime(2026, 10, 19, 8, 5), datetime(2026, 10, 19, 21, 50)])
    estimator = RouteEstimator(FakeRoutingProvider(duration=600.0), clock=lambda: next(times))
    await estimator.estimate(UW, PIKE)
    await estimator.estimate(UW, PIKE)
    assert estimator.pickup_time == "09:50 PM"
    assert estimator.dropoff_time == "10:00 PM"


@pytest.mark.asyncio
async def test_estimator_timeout():
    with pytest.raises(RoutingFailure):
        await RouteEstimator(SlowCollaborator(), timeout=0.05).estimate(UW, PIKE)


@pytest.mark.asyncio
async def test_estimator_wraps_provider_errors():
    class Broken:
        async def route(self, origin, destination):
            raise ConnectionError("socket closed")

    with pytest.raises(RoutingFailure) as exc:
        await RouteEstimator(Broken()).estimate(UW, PIKE)
    assert isinstance(exc.value.__cause__, ConnectionError)


@pytest.mark.asyncio
async def test_estimator_passes_routing_failure_through():
    class NoRoute:
        async def route(self, origin, destination):
            raise RoutingFailure("no road")

    with pytest.raises(RoutingFailure, match="no road"):
        await RouteEstimator(NoRoute()).estimate(UW, PIKE)
