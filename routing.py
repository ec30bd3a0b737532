"""Route and ETA estimation between two coordinates."""
import asyncio
import logging
import os
from datetime import datetime, timedelta
from math import radians, sin, cos, sqrt, atan2
from typing import Callable, Optional, Tuple, Union

from models import Coordinate, RouteEstimate
from exceptions import RoutingFailure

logger = logging.getLogger(__name__)

COLLABORATOR_TIMEOUT = float(os.environ.get("COLLABORATOR_TIMEOUT", "10"))
DISPLAY_TIME_FORMAT = "%I:%M %p"

EARTH_RADIUS_M = 6371000.0


def _latlng(p: Union[Coordinate, Tuple[float, float]]) -> Tuple[float, float]:
    if isinstance(p, Coordinate):
        return p.latitude, p.longitude
    return p


def haversine_m(a, b) -> float:
    """Great-circle distance in meters between two coordinates (or (lat, lng) tuples)."""
    lat1, lon1 = _latlng(a)
    lat2, lon2 = _latlng(b)
    dlat = radians(lat2 - lat1)
    dlon = radians(lon2 - lon1)
    rlat1 = radians(lat1)
    rlat2 = radians(lat2)
    a_ = sin(dlat / 2) ** 2 + cos(rlat1) * cos(rlat2) * sin(dlon / 2) ** 2
    c = 2 * atan2(sqrt(a_), sqrt(1 - a_))
    return EARTH_RADIUS_M * c


class RouteEstimator:
    """Asks a routing provider for a route and stamps the display times on it.

    No retry happens here. A provider error or a timeout is raised as
    RoutingFailure and the caller decides what to do with it.
    """

    def __init__(self, provider, timeout: Optional[float] = None, clock: Callable[[], datetime] = datetime.now):
        self.provider = provider
        self.timeout = COLLABORATOR_TIMEOUT if timeout is None else timeout
        self.clock = clock
        self.pickup_time: Optional[str] = None
        self.dropoff_time: Optional[str] = None

    async def estimate(self, origin: Coordinate, destination: Coordinate) -> RouteEstimate:
        try:
            route = await asyncio.wait_for(self.provider.route(origin, destination), timeout=self.timeout)
        except asyncio.TimeoutError:
            raise RoutingFailure(f"routing timed out after {self.timeout}s")
        except RoutingFailure:
            raise
        except Exception as e:
            raise RoutingFailure(f"routing failed: {e}") from e
        if route is None:
            raise RoutingFailure("no route returned")
        self._stamp(route)
        logger.debug("route %s -> %s: %.0fm %.0fs", _latlng(origin), _latlng(destination), route.distance, route.duration)
        return route

    def _stamp(self, route: RouteEstimate):
        now = self.clock()
        route.pickup_time = now
        route.dropoff_time = now + timedelta(seconds=route.duration)
        self.pickup_time = route.pickup_time.strftime(DISPLAY_TIME_FORMAT)
        self.dropoff_time = route.dropoff_time.strftime(DISPLAY_TIME_FORMAT)
