import contextlib
import logging
import os

from pydantic import ValidationError
from starlette.applications import Starlette
from starlette.responses import JSONResponse, StreamingResponse
from starlette.requests import Request
from starlette.routing import Route

from db import init_db
from models import Coordinate, Location, Role, SavedLocationKind
from exceptions import (
    GeocodeFailure,
    InvalidTransition,
    NoDriverAvailable,
    RoutingFailure,
    TripNotFound,
    UnknownRideClass,
)
from pricing import RIDE_CLASSES, quote
from providers import StaticIdentityProvider, default_geocoder, default_route_estimator
from store import TripStore
from sync import TripSynchronizer

logging.basicConfig(
    level=os.environ.get("LOG_LEVEL", "INFO"),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

store = TripStore()
estimator = default_route_estimator()
geocoder = default_geocoder()


def make_synchronizer(user_id=None):
    identity = StaticIdentityProvider(user_id) if user_id else None
    return TripSynchronizer(store, estimator, geocoder, identity=identity)


def parse_role(name) -> Role:
    if name == "passenger":
        return Role.RIDER
    return Role(name)


class BadRequest(Exception):
    pass


async def _payload(request: Request, required):
    try:
        payload = await request.json()
    except ValueError:
        raise BadRequest("body must be JSON")
    if not isinstance(payload, dict):
        raise BadRequest("body must be a JSON object")
    for k in required:
        if k not in payload:
            raise BadRequest(f"missing {k}")
    return payload


def _object(payload, key) -> dict:
    value = payload[key]
    if not isinstance(value, dict):
        raise BadRequest(f"{key} must be an object")
    return value


def _coordinate(data) -> Coordinate:
    return Coordinate(latitude=data.get("latitude"), longitude=data.get("longitude"))


def _saved_location_kind(name) -> SavedLocationKind:
    try:
        return SavedLocationKind(name)
    except ValueError:
        raise BadRequest(f"unknown saved location {name}")


async def create_trip(request: Request):
    payload = await _payload(request, ["passenger_id"])
    if "dropoff" not in payload and "saved_location" not in payload:
        raise BadRequest("missing dropoff")
    location = None
    if "dropoff" in payload:
        dropoff = _object(payload, "dropoff")
        location = Location(title=dropoff.get("title", "Dropped Pin"), coordinate=_coordinate(dropoff))
    sync = make_synchronizer(payload["passenger_id"])
    passenger = await sync.get_user(payload["passenger_id"])
    if location is None:
        location = await sync.saved_dropoff(passenger.id, _saved_location_kind(payload["saved_location"]))
    driver = None
    if payload.get("driver_id"):
        driver = await sync.get_user(payload["driver_id"])
    else:
        await sync.fetch_drivers()
    trip_id = await sync.request_trip(passenger, location, payload.get("ride_class", "red_eye"), driver=driver)
    return JSONResponse({"trip_id": trip_id}, status_code=201)


async def get_trip(request: Request):
    trip = await make_synchronizer().get_trip(request.path_params["trip_id"])
    return JSONResponse(trip.model_dump(mode="json"))


async def trip_event(request: Request):
    payload = await _payload(request, ["event", "role"])
    try:
        role = parse_role(payload["role"])
    except ValueError:
        raise BadRequest(f"unknown role {payload['role']}")
    sync = make_synchronizer(payload.get("user_id"))
    trip = await sync.update_state(request.path_params["trip_id"], payload["event"], role)
    return JSONResponse({"trip_id": trip.id, "state": trip.state.value,
                         "travel_time_to_passenger": trip.travel_time_to_passenger})


async def delete_trip(request: Request):
    trip_id = request.path_params["trip_id"]
    await make_synchronizer(request.query_params.get("user_id")).delete_trip(trip_id)
    return JSONResponse({"status": "deleted", "trip_id": trip_id})


async def quotes(request: Request):
    """Price per ride class. The origin is either given or the passenger's
    current location; with no origin every price is the 0.0 sentinel."""
    payload = await _payload(request, ["destination"])
    destination = _coordinate(_object(payload, "destination"))
    origin = None
    if payload.get("origin") is not None:
        origin = _coordinate(_object(payload, "origin"))
    elif payload.get("passenger_id"):
        origin = (await make_synchronizer().get_user(payload["passenger_id"])).coordinates
    out = []
    for rc in RIDE_CLASSES.values():
        out.append({
            "ride_class": rc.name,
            "description": rc.description,
            "image_name": rc.image_name,
            "price": quote(rc, origin, destination),
        })
    return JSONResponse(out)


async def save_location(request: Request):
    payload = await _payload(request, ["title", "latitude", "longitude"])
    user_id = request.path_params["user_id"]
    kind = _saved_location_kind(request.path_params["kind"])
    saved = await make_synchronizer(user_id).save_location(
        user_id, kind, payload["title"], payload.get("address", ""), _coordinate(payload),
    )
    return JSONResponse(saved.model_dump(mode="json"))


async def saved_locations(request: Request):
    user = await make_synchronizer().get_user(request.path_params["user_id"])
    out = {}
    for kind in SavedLocationKind:
        saved = user.saved_location(kind)
        out[kind.value] = {
            "subtitle": user.saved_location_subtitle(kind),
            "location": saved.model_dump(mode="json") if saved is not None else None,
        }
    return JSONResponse(out)


async def list_drivers(request: Request):
    drivers = await make_synchronizer().fetch_drivers()
    return JSONResponse([
        {"id": d.id, "name": d.name, "coordinates": [d.latitude, d.longitude]}
        for d in drivers
    ])


async def stream_trips(request: Request):
    try:
        role = parse_role(request.path_params["role"])
    except ValueError:
        raise BadRequest(f"unknown role {request.path_params['role']}")
    user_id = request.path_params["user_id"]
    sync = make_synchronizer(user_id)
    stream = sync.observe_as_driver(user_id) if role == Role.DRIVER else sync.observe_as_passenger(user_id)

    async def body():
        try:
            async for trip in stream:
                yield trip.model_dump_json() + "\n"
        finally:
            await stream.aclose()

    return StreamingResponse(body(), media_type="application/x-ndjson")


def _error(status_code):
    async def handler(request: Request, exc: Exception):
        return JSONResponse({"error": str(exc)}, status_code=status_code)
    return handler


async def _validation_error(request: Request, exc: ValidationError):
    return JSONResponse({"error": "invalid payload", "detail": exc.errors(include_url=False, include_context=False)}, status_code=400)


exception_handlers = {
    BadRequest: _error(400),
    InvalidTransition: _error(400),
    UnknownRideClass: _error(400),
    ValidationError: _validation_error,
    LookupError: _error(404),
    TripNotFound: _error(404),
    NoDriverAvailable: _error(409),
    GeocodeFailure: _error(502),
    RoutingFailure: _error(502),
}


@contextlib.asynccontextmanager
async def lifespan(app):
    init_db()
    yield


routes = [
    Route("/trips", create_trip, methods=["POST"]),
    Route("/trips/stream/{role}/{user_id}", stream_trips, methods=["GET"]),
    Route("/trips/{trip_id}", get_trip, methods=["GET"]),
    Route("/trips/{trip_id}", delete_trip, methods=["DELETE"]),
    Route("/trips/{trip_id}/events", trip_event, methods=["POST"]),
    Route("/quotes", quotes, methods=["POST"]),
    Route("/drivers", list_drivers, methods=["GET"]),
    Route("/users/{user_id}/saved_locations", saved_locations, methods=["GET"]),
    Route("/users/{user_id}/saved_locations/{kind}", save_location, methods=["PUT"]),
]

app = Starlette(debug=False, routes=routes, exception_handlers=exception_handlers, lifespan=lifespan)
