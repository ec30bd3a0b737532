import asyncio
import os
import sys

import pytest

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from db import get_session
from exceptions import GeocodeFailure, RoutingFailure
from models import Placemark, RouteEstimate, Role, User
from routing import RouteEstimator
from sqlmodel import SQLModel


# ────────────────────────── fixtures ────────────────────────────────────────

@pytest.fixture(autouse=True)
def fresh_db(tmp_path, monkeypatch):
    """Each test runs against a fresh SQLite database."""
    import db as db_mod
    test_db = f"sqlite:///{tmp_path}/test.db"
    new_engine = __import__("sqlmodel").create_engine(
        test_db, echo=False, connect_args={"check_same_thread": False}
    )
    monkeypatch.setattr(db_mod, "engine", new_engine)
    SQLModel.metadata.create_all(new_engine)
    yield
    SQLModel.metadata.drop_all(new_engine)
    new_engine.dispose()


# ────────────────────────── collaborator fakes ──────────────────────────────

class FakeRoutingProvider:
    """Every route is 1.8 km and 7 minutes."""

    def __init__(self, distance=1800.0, duration=420.0):
        self.distance = distance
        self.duration = duration
        self.calls = []

    async def route(self, origin, destination):
        self.calls.append((origin.as_tuple(), destination.as_tuple()))
        return RouteEstimate(polyline=[origin, destination], distance=self.distance, duration=self.duration)


class FailingRoutingProvider:
    async def route(self, origin, destination):
        raise RoutingFailure("no route between these points")


class FakeGeocoder:
    def __init__(self, placemark=None):
        self.placemark = placemark or Placemark(
            name="Husky Union Building",
            street="Stevens Way NE",
            sub_locality="University District",
            area="King County",
        )
        self.calls = 0

    async def reverse_geocode(self, coordinate):
        self.calls += 1
        return self.placemark


class FailingGeocoder:
    async def reverse_geocode(self, coordinate):
        raise GeocodeFailure("no placemark for coordinate")


class SlowCollaborator:
    async def route(self, origin, destination):
        await asyncio.sleep(5)

    async def reverse_geocode(self, coordinate):
        await asyncio.sleep(5)


@pytest.fixture
def routing():
    return FakeRoutingProvider()


@pytest.fixture
def estimator(routing):
    return RouteEstimator(routing)


@pytest.fixture
def geocoder():
    return FakeGeocoder()


# ────────────────────────── helpers ─────────────────────────────────────────

PASSENGER_AT = (47.66, -122.31)
DRIVER_AT = (47.65, -122.30)
DROPOFF_AT = (47.62, -122.35)


def make_user(name="Alice", role=Role.RIDER, at=PASSENGER_AT):
    session = get_session()
    lat, lng = at if at is not None else (None, None)
    u = User(name=name, role=role.value, latitude=lat, longitude=lng)
    session.add(u)
    session.commit()
    session.refresh(u)
    session.close()
    return u


async def next_trip(stream, timeout=2.0):
    return await asyncio.wait_for(stream.__anext__(), timeout)


async def collect(stream, quiet=0.3):
    """Everything the stream delivers until it stays quiet for ``quiet`` seconds."""
    out = []
    while True:
        try:
            out.append(await asyncio.wait_for(stream.__anext__(), quiet))
        except (asyncio.TimeoutError, StopAsyncIteration):
            return out
