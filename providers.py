"""Collaborators the trip core talks to: routing, reverse geocoding, identity.

The core only relies on the method shapes below; the concrete classes are the
adapters used when running the service.
"""
import asyncio
import logging
import os
from typing import Optional

import httpx

from models import Coordinate, Placemark, RouteEstimate
from exceptions import GeocodeFailure, RoutingFailure
from routing import COLLABORATOR_TIMEOUT, RouteEstimator, haversine_m

logger = logging.getLogger(__name__)

ROUTING_PROVIDER = os.environ.get("ROUTING_PROVIDER", "osrm")
ROUTING_URL = os.environ.get("ROUTING_URL", "https://router.project-osrm.org")
GEOCODER_URL = os.environ.get("GEOCODER_URL", "https://nominatim.openstreetmap.org")
USER_AGENT = "redeye-trip-core/0.1"


class OSRMRoutingProvider:
    """route(origin, destination) against an OSRM /route/v1 endpoint."""

    def __init__(self, base_url: str = ROUTING_URL, profile: str = "driving", transport=None):
        self.base_url = base_url.rstrip("/")
        self.profile = profile
        self.transport = transport

    async def route(self, origin: Coordinate, destination: Coordinate) -> RouteEstimate:
        # OSRM wants lng,lat pairs
        path = f"/route/v1/{self.profile}/{origin.longitude},{origin.latitude};{destination.longitude},{destination.latitude}"
        params = {"overview": "full", "geometries": "geojson"}
        try:
            async with httpx.AsyncClient(base_url=self.base_url, transport=self.transport,
                                         headers={"User-Agent": USER_AGENT}) as client:
                resp = await client.get(path, params=params)
                resp.raise_for_status()
                payload = resp.json()
        except (httpx.HTTPError, ValueError) as e:
            raise RoutingFailure(f"routing request failed: {e}") from e
        routes = payload.get("routes") or []
        if payload.get("code") != "Ok" or not routes:
            raise RoutingFailure(f"no route: {payload.get('code')}")
        best = routes[0]
        polyline = [Coordinate(latitude=lat, longitude=lng) for lng, lat in best["geometry"]["coordinates"]]
        return RouteEstimate(polyline=polyline, distance=best["distance"], duration=best["duration"])


class StraightLineRoutingProvider:
    """Offline stand-in: a two-point route at a constant speed."""

    def __init__(self, speed_mps: float = 11.0):
        self.speed_mps = speed_mps

    async def route(self, origin: Coordinate, destination: Coordinate) -> RouteEstimate:
        distance = haversine_m(origin, destination)
        return RouteEstimate(polyline=[origin, destination], distance=distance, duration=distance / self.speed_mps)


class NominatimGeocoder:
    """reverse_geocode(coordinate) against Nominatim's /reverse endpoint."""

    def __init__(self, base_url: str = GEOCODER_URL, timeout: float = COLLABORATOR_TIMEOUT, transport=None):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.transport = transport

    async def reverse_geocode(self, coordinate: Coordinate) -> Placemark:
        params = {"lat": coordinate.latitude, "lon": coordinate.longitude, "format": "jsonv2"}
        try:
            async with httpx.AsyncClient(base_url=self.base_url, transport=self.transport,
                                         headers={"User-Agent": USER_AGENT}) as client:
                resp = await asyncio.wait_for(client.get("/reverse", params=params), timeout=self.timeout)
                resp.raise_for_status()
                payload = resp.json()
        except asyncio.TimeoutError:
            raise GeocodeFailure(f"reverse geocoding timed out after {self.timeout}s")
        except (httpx.HTTPError, ValueError) as e:
            raise GeocodeFailure(f"reverse geocoding failed: {e}") from e
        if "error" in payload:
            raise GeocodeFailure(payload["error"])
        address = payload.get("address") or {}
        return Placemark(
            name=payload.get("name") or None,
            street=address.get("road"),
            sub_locality=address.get("suburb") or address.get("neighbourhood"),
            area=address.get("county") or address.get("city"),
        )


class FixedGeocoder:
    """Offline stand-in: names every coordinate with the same placemark."""

    def __init__(self, placemark: Optional[Placemark] = None):
        self.placemark = placemark or Placemark(name="Current Location")

    async def reverse_geocode(self, coordinate: Coordinate) -> Placemark:
        return self.placemark


class StaticIdentityProvider:
    def __init__(self, user_id: Optional[str] = None):
        self.user_id = user_id

    def current_user_id(self) -> Optional[str]:
        return self.user_id


def default_route_estimator() -> RouteEstimator:
    if ROUTING_PROVIDER == "straight_line":
        return RouteEstimator(StraightLineRoutingProvider())
    if ROUTING_PROVIDER != "osrm":
        logger.warning("unknown ROUTING_PROVIDER %r, using osrm", ROUTING_PROVIDER)
    return RouteEstimator(OSRMRoutingProvider())


def default_geocoder() -> NominatimGeocoder:
    return NominatimGeocoder()
