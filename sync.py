"""Live, per-role views of the shared trip record.

A passenger and a driver each observe the trip through their own store
subscription and write to it only through the actor-gated transitions in
``state_machine``. The two views are eventually consistent: each one sees
the store's writes in commit order, but nothing orders one view against the
other.
"""
import asyncio
import logging
from typing import Dict, List, Optional, Set, Union

from pydantic import ValidationError

from models import (
    Coordinate,
    Location,
    Role,
    RouteEstimate,
    SavedLocation,
    SavedLocationKind,
    TripEvent,
    TripRecord,
    TripState,
    User,
)
from exceptions import (
    DecodeFailure,
    GeocodeFailure,
    InvalidTransition,
    NoDriverAvailable,
    RoutingFailure,
    SavedLocationNotSet,
    TripNotFound,
    UserNotFound,
)
from pricing import get_ride_class, quote, RideClass
from routing import COLLABORATOR_TIMEOUT, RouteEstimator
from state_machine import cancelling_role, is_terminal, transition
from store import ChangeType, Subscription, TripStore

logger = logging.getLogger(__name__)

TRIPS = "trips"
USERS = "users"


def decode_trip(data) -> TripRecord:
    try:
        return TripRecord.model_validate(data)
    except ValidationError as e:
        raise DecodeFailure(f"not a trip record: {e.error_count()} error(s)") from e


class TripSynchronizer:
    """One client's side of the trip negotiation.

    The matching policy is deliberately naive: a request goes to the first
    driver in ``drivers`` as last fetched, not to the nearest or least busy.
    """

    def __init__(self, store: TripStore, estimator: RouteEstimator, geocoder, identity=None,
                 process_full_batch: bool = False, timeout: float = COLLABORATOR_TIMEOUT):
        self.store = store
        self.estimator = estimator
        self.geocoder = geocoder
        self.identity = identity
        self.process_full_batch = process_full_batch
        self.timeout = timeout
        self.trip: Optional[TripRecord] = None
        self.last_change_type: Optional[ChangeType] = None
        self.drivers: List[User] = []
        self.route_to_pickup: Dict[str, RouteEstimate] = {}
        self._subscriptions: Set[Subscription] = set()

    # ===================== Observers =====================

    def observe_as_passenger(self, passenger_id: str):
        """Async stream of the passenger's trip, one record per store change.

        Nothing is subscribed until the stream is first iterated; calling this
        again opens a fresh subscription that starts from the current snapshot.
        """
        return self._observe("passenger_id", passenger_id)

    def observe_as_driver(self, driver_id: str):
        """Like observe_as_passenger, plus the driver's own route to pickup.

        The first time a trip shows up, the route from the driver to the
        pickup point is estimated and its minutes/meters are folded into the
        delivered record. The fold is local and never written back.
        """
        return self._observe("driver_id", driver_id, prepare=self._fold_route_to_pickup)

    async def _observe(self, field: str, user_id: str, prepare=None):
        subscription = await self.store.subscribe(TRIPS, field, user_id)
        self._subscriptions.add(subscription)
        try:
            async for batch in subscription:
                # by default only the head of each batch is looked at
                changes = batch if self.process_full_batch else batch[:1]
                for change in changes:
                    if change.change_type == ChangeType.REMOVED:
                        continue
                    try:
                        trip = decode_trip(change.data)
                    except DecodeFailure:
                        logger.exception("dropping undecodable change for trip %s", change.document_id)
                        continue
                    if prepare is not None:
                        trip = await prepare(trip)
                    self.trip = trip
                    self.last_change_type = change.change_type
                    logger.debug("%s=%s observed trip %s in state %s", field, user_id, trip.id, trip.state.value)
                    yield trip
        finally:
            subscription.cancel()
            self._subscriptions.discard(subscription)

    async def _fold_route_to_pickup(self, trip: TripRecord) -> TripRecord:
        if is_terminal(trip.state):
            return trip
        route = self.route_to_pickup.get(trip.id)
        if route is None:
            try:
                route = await self.estimator.estimate(trip.driver_coordinate, trip.pickup_coordinate)
            except RoutingFailure:
                logger.warning("no route to pickup for trip %s yet", trip.id, exc_info=True)
                return trip
            self.route_to_pickup[trip.id] = route
        return trip.model_copy(update={
            "travel_time_to_passenger": route.travel_time_minutes,
            "distance_to_passenger": route.distance,
        })

    def stop(self):
        """Cancel every live subscription; their streams end without a final event."""
        for subscription in list(self._subscriptions):
            subscription.cancel()
        self._subscriptions.clear()

    # ===================== One-shot reads =====================

    async def fetch_drivers(self) -> List[User]:
        """Cache the drivers that can be sent a request (those with a known location)."""
        rows = await self.store.query(USERS, "role", Role.DRIVER)
        drivers = [User(**row) for row in rows]
        self.drivers = [d for d in drivers if d.coordinates is not None]
        if len(self.drivers) < len(drivers):
            logger.debug("skipped %d driver(s) without a location", len(drivers) - len(self.drivers))
        return self.drivers

    async def get_user(self, user_id: str) -> User:
        row = await self.store.get(USERS, user_id)
        if row is None:
            raise UserNotFound(f"user {user_id} not found")
        return User(**row)

    async def fetch_trip_for_driver(self, driver_id: str) -> Optional[TripRecord]:
        rows = await self.store.query(TRIPS, "driver_id", driver_id)
        if not rows:
            return None
        self.trip = decode_trip(rows[0])
        return self.trip

    async def get_trip(self, trip_id: str) -> TripRecord:
        data = await self.store.get(TRIPS, trip_id)
        if data is None:
            raise TripNotFound(f"trip {trip_id} not found")
        return decode_trip(data)

    # ===================== Passenger operations =====================

    async def request_trip(self, passenger: User, dropoff: Location,
                           ride_class: Union[str, RideClass] = "red_eye",
                           driver: Optional[User] = None) -> str:
        """Create a trip in ``requested`` state and return its store id.

        No trip is written for a passenger whose current location is unknown,
        since there is no pickup point to send the driver to.

        Raises:
            InvalidTransition: the caller is not acting as this passenger
            NoDriverAvailable: no driver given and the cached pool is empty,
                or the given driver has no location
            GeocodeFailure: the passenger's coordinate is unknown or could not be named
        """
        if Role(passenger.role) != Role.RIDER or not self._is_caller(passenger.id):
            raise InvalidTransition(None, TripEvent.REQUEST, passenger.role)
        state = transition(None, TripEvent.REQUEST, Role.RIDER)
        if driver is None:
            if not self.drivers:
                raise NoDriverAvailable("no drivers available")
            driver = self.drivers[0]
        elif driver.coordinates is None:
            raise NoDriverAvailable(f"driver {driver.id} has no known location")
        rc = get_ride_class(ride_class)
        if passenger.coordinates is None:
            raise GeocodeFailure(f"current location of passenger {passenger.id} is unknown")
        placemark = await self._reverse_geocode(passenger)
        cost = self.ride_price(passenger, dropoff, rc)

        trip_id = await self.store.create(TRIPS, {
            "passenger_id": passenger.id,
            "driver_id": driver.id,
            "passenger_name": passenger.name,
            "driver_name": driver.name,
            "passenger_latitude": passenger.latitude,
            "passenger_longitude": passenger.longitude,
            "driver_latitude": driver.latitude,
            "driver_longitude": driver.longitude,
            "pickup_location_name": placemark.name or "Current Location",
            "pickup_location_address": placemark.address,
            "pickup_latitude": passenger.latitude,
            "pickup_longitude": passenger.longitude,
            "dropoff_location_name": dropoff.title,
            "dropoff_latitude": dropoff.coordinate.latitude,
            "dropoff_longitude": dropoff.coordinate.longitude,
            "ride_class": rc.name,
            "trip_cost": cost,
            "distance_to_passenger": 0.0,
            "travel_time_to_passenger": 0,
            "state": state,
        })
        logger.info("passenger %s requested trip %s with driver %s (%.2f)", passenger.id, trip_id, driver.id, cost)
        return trip_id

    async def _reverse_geocode(self, passenger: User):
        try:
            return await asyncio.wait_for(self.geocoder.reverse_geocode(passenger.coordinates), timeout=self.timeout)
        except asyncio.TimeoutError:
            raise GeocodeFailure(f"reverse geocoding timed out after {self.timeout}s")
        except GeocodeFailure:
            raise
        except Exception as e:
            raise GeocodeFailure(f"reverse geocoding failed: {e}") from e

    @staticmethod
    def ride_price(passenger: Optional[User], dropoff: Optional[Location],
                   ride_class: Union[str, RideClass] = "red_eye") -> float:
        """Price shown for a ride class; 0.0 while the location or drop-off is unknown."""
        origin = passenger.coordinates if passenger is not None else None
        destination = dropoff.coordinate if dropoff is not None else None
        return quote(ride_class, origin, destination)

    async def save_location(self, user_id: str, kind: Union[str, SavedLocationKind],
                            title: str, address: str, coordinate: Coordinate) -> SavedLocation:
        """Store a home or work location on the user's document."""
        kind = SavedLocationKind(kind)
        if not self._is_caller(user_id):
            raise UserNotFound(f"user {user_id} not found")
        saved = SavedLocation(title=title, address=address, coordinate=coordinate)
        try:
            await self.store.write(USERS, user_id, {kind.field: saved.model_dump(mode="json")})
        except TripNotFound:
            raise UserNotFound(f"user {user_id} not found")
        logger.info("user %s saved %s location %r", user_id, kind.value, title)
        return saved

    async def saved_dropoff(self, user_id: str, kind: Union[str, SavedLocationKind]) -> Location:
        kind = SavedLocationKind(kind)
        saved = (await self.get_user(user_id)).saved_location(kind)
        if saved is None:
            raise SavedLocationNotSet(f"user {user_id} has no {kind.value} location")
        return saved.as_dropoff()

    async def cancel_as_passenger(self, trip_id: str) -> TripRecord:
        return await self.update_state(trip_id, TripEvent.PASSENGER_CANCEL, Role.RIDER)

    # ===================== Driver operations =====================

    async def accept(self, trip_id: str) -> TripRecord:
        return await self.update_state(trip_id, TripEvent.ACCEPT, Role.DRIVER)

    async def reject(self, trip_id: str) -> TripRecord:
        return await self.update_state(trip_id, TripEvent.REJECT, Role.DRIVER)

    async def cancel_as_driver(self, trip_id: str) -> TripRecord:
        return await self.update_state(trip_id, TripEvent.DRIVER_CANCEL, Role.DRIVER)

    # ===================== Shared operations =====================

    async def update_state(self, trip_id: str, event: Union[str, TripEvent], role: Union[str, Role]) -> TripRecord:
        """Apply one transition to the stored trip and return it as written.

        Raises TripNotFound if the trip is gone (or is not the caller's) and
        InvalidTransition if the event is not allowed; in both cases nothing
        is written.
        """
        role = Role(role)
        if not isinstance(event, TripEvent):
            try:
                event = TripEvent.parse(event, role)
            except ValueError:
                raise InvalidTransition(None, event, role)
        trip = await self.get_trip(trip_id)
        self._check_party(trip, role)
        target = transition(trip.state, event, role)

        fields = {"state": target}
        if target == TripState.ACCEPTED:
            # same write as the state change
            fields.update(await self._pickup_fields(trip))
        written = decode_trip(await self.store.write(TRIPS, trip_id, fields))
        logger.info("trip %s: %s -> %s by %s", trip_id, trip.state.value, target.value, role.value)
        self.trip = written
        return written

    async def _pickup_fields(self, trip: TripRecord):
        route = self.route_to_pickup.get(trip.id)
        if route is None:
            try:
                route = await self.estimator.estimate(trip.driver_coordinate, trip.pickup_coordinate)
            except RoutingFailure:
                logger.exception("accepting trip %s without travel time to passenger", trip.id)
                return {}
            self.route_to_pickup[trip.id] = route
        return {
            "travel_time_to_passenger": route.travel_time_minutes,
            "distance_to_passenger": route.distance,
        }

    async def delete_trip(self, trip_id: str):
        """Delete the trip; deleting one that is already gone is not an error."""
        if self.identity is not None and self.identity.current_user_id() is not None:
            data = await self.store.get(TRIPS, trip_id)
            if data is not None:
                trip = decode_trip(data)
                if not (self._is_caller(trip.passenger_id) or self._is_caller(trip.driver_id)):
                    raise TripNotFound(f"trip {trip_id} not found")
        existed = await self.store.delete(TRIPS, trip_id)
        if not existed:
            logger.debug("trip %s was already deleted", trip_id)
        if self.trip is not None and self.trip.id == trip_id:
            self.trip = None
        self.route_to_pickup.pop(trip_id, None)

    async def acknowledge_cancellation(self, role: Union[str, Role]) -> bool:
        """Clean up after a terminal trip.

        The party that did not end the trip deletes the record; the party that
        ended it only forgets its local copy. Returns True if a delete was issued.
        """
        trip = self.trip
        if trip is None or not is_terminal(trip.state):
            return False
        if cancelling_role(trip.state) == Role(role):
            self.trip = None
            self.route_to_pickup.pop(trip.id, None)
            return False
        await self.delete_trip(trip.id)
        return True

    def cancelled_message(self, role: Union[str, Role]) -> str:
        trip = self.trip
        if trip is None:
            return ""
        role = Role(role)
        if role == Role.RIDER:
            if trip.state == TripState.DRIVER_CANCELLED:
                return "Your driver cancelled the trip"
            if trip.state == TripState.REJECTED:
                return "Your driver could not take this trip"
            if trip.state == TripState.PASSENGER_CANCELLED:
                return "Your trip has been cancelled"
        else:
            if trip.state in (TripState.DRIVER_CANCELLED, TripState.REJECTED):
                return "Your trip has been cancelled"
            if trip.state == TripState.PASSENGER_CANCELLED:
                return "Trip has been cancelled by the passenger"
        return ""

    # ===================== Helpers =====================

    def _is_caller(self, user_id: str) -> bool:
        uid = self.identity.current_user_id() if self.identity is not None else None
        return uid is None or uid == user_id

    def _check_party(self, trip: TripRecord, role: Role):
        party = trip.driver_id if role == Role.DRIVER else trip.passenger_id
        if not self._is_caller(party):
            raise TripNotFound(f"trip {trip.id} not found")
