"""What the map screen should show, derived from local actions and the trip state.

Everything here is a pure function of its arguments so it can be tested
without anything to render on.
"""
from enum import Enum
from typing import Optional, Union

from models import Role, TripState


class MapViewState(str, Enum):
    NO_INPUT = "noInput"
    SEARCHING_FOR_LOCATION = "searchingForLocation"
    LOCATION_SELECTED = "locationSelected"
    POLYLINE_ADDED = "polylineAdded"
    TRIP_REQUESTED = "tripRequested"
    TRIP_ACCEPTED = "tripAccepted"
    TRIP_CANCELLED_BY_PASSENGER = "tripCancelledByPassenger"
    TRIP_CANCELLED_BY_DRIVER = "tripCancelledByDriver"


class MapAction(str, Enum):
    SEARCH = "search"            # user taps the search bar
    SELECT = "select"            # user picks a search result
    ROUTE_DRAWN = "route_drawn"  # route to the selection is on the map
    DISMISS = "dismiss"          # back button / OK on a cancelled trip


class ViewVariant(str, Enum):
    EMPTY = "empty"
    RIDE_REQUEST = "ride_request"
    TRIP_LOADING = "trip_loading"
    ACCEPT_TRIP = "accept_trip"
    TRIP_ACCEPTED = "trip_accepted"
    PICKUP_PASSENGER = "pickup_passenger"
    TRIP_CANCELLED = "trip_cancelled"


# states driven by the trip; local actions other than dismiss don't move them
_TRIP_STATES = frozenset({
    MapViewState.TRIP_REQUESTED,
    MapViewState.TRIP_ACCEPTED,
    MapViewState.TRIP_CANCELLED_BY_PASSENGER,
    MapViewState.TRIP_CANCELLED_BY_DRIVER,
})

_CANCELLED_STATES = frozenset({
    MapViewState.TRIP_CANCELLED_BY_PASSENGER,
    MapViewState.TRIP_CANCELLED_BY_DRIVER,
})

_LOCAL_TRANSITIONS = {
    (MapViewState.NO_INPUT, MapAction.SEARCH): MapViewState.SEARCHING_FOR_LOCATION,
    (MapViewState.SEARCHING_FOR_LOCATION, MapAction.SELECT): MapViewState.LOCATION_SELECTED,
    (MapViewState.SEARCHING_FOR_LOCATION, MapAction.DISMISS): MapViewState.NO_INPUT,
    (MapViewState.LOCATION_SELECTED, MapAction.ROUTE_DRAWN): MapViewState.POLYLINE_ADDED,
    (MapViewState.LOCATION_SELECTED, MapAction.DISMISS): MapViewState.NO_INPUT,
    (MapViewState.LOCATION_SELECTED, MapAction.SEARCH): MapViewState.SEARCHING_FOR_LOCATION,
    (MapViewState.POLYLINE_ADDED, MapAction.DISMISS): MapViewState.NO_INPUT,
    (MapViewState.POLYLINE_ADDED, MapAction.SEARCH): MapViewState.SEARCHING_FOR_LOCATION,
}

_FOR_TRIP = {
    TripState.REQUESTED: MapViewState.TRIP_REQUESTED,
    TripState.ACCEPTED: MapViewState.TRIP_ACCEPTED,
    TripState.PASSENGER_CANCELLED: MapViewState.TRIP_CANCELLED_BY_PASSENGER,
    TripState.DRIVER_CANCELLED: MapViewState.TRIP_CANCELLED_BY_DRIVER,
    TripState.REJECTED: MapViewState.TRIP_CANCELLED_BY_DRIVER,
}


def next_state(current: MapViewState, action: Union[str, MapAction]) -> MapViewState:
    """Apply a local user action; actions that don't apply leave the state alone."""
    action = MapAction(action)
    if current in _TRIP_STATES:
        # a cancelled trip is dismissed locally; live trips are driven by the store
        if action == MapAction.DISMISS and current in _CANCELLED_STATES:
            return MapViewState.NO_INPUT
        return current
    return _LOCAL_TRANSITIONS.get((current, action), current)


def state_for_trip(current: MapViewState, trip_state: Optional[TripState]) -> MapViewState:
    """Fold a trip update into the display state.

    Terminal trip states map to a cancellation state from anywhere. A trip
    that went away (None) resets trip-driven states and leaves local ones.
    """
    if trip_state is None:
        return MapViewState.NO_INPUT if current in _TRIP_STATES else current
    return _FOR_TRIP[TripState(trip_state)]


def view_for_state(map_state: MapViewState, trip_state: Optional[TripState], role: Union[str, Role]) -> ViewVariant:
    role = Role(role)
    if map_state in (MapViewState.LOCATION_SELECTED, MapViewState.POLYLINE_ADDED):
        return ViewVariant.RIDE_REQUEST
    if map_state == MapViewState.TRIP_REQUESTED:
        if role == Role.RIDER:
            return ViewVariant.TRIP_LOADING
        return ViewVariant.ACCEPT_TRIP if trip_state is not None else ViewVariant.EMPTY
    if map_state == MapViewState.TRIP_ACCEPTED:
        if role == Role.RIDER:
            return ViewVariant.TRIP_ACCEPTED
        return ViewVariant.PICKUP_PASSENGER if trip_state is not None else ViewVariant.EMPTY
    if map_state in _CANCELLED_STATES:
        return ViewVariant.TRIP_CANCELLED
    return ViewVariant.EMPTY
