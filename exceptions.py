"""Errors raised by the trip core.

None of these are fatal; each is scoped to the operation that raised it.
"""


class TripCoreError(Exception):
    """Base class for trip core errors."""
    pass


class InvalidTransition(TripCoreError):
    """Raised when an event is not allowed from the trip's current state or by this role."""

    def __init__(self, state, event, role):
        self.state = state
        self.event = event
        self.role = role
        super().__init__(f"cannot apply {_value(event)} as {_value(role)} to a trip in state {_value(state)}")


class TripNotFound(TripCoreError):
    """Raised when the targeted trip no longer exists (or is not the caller's)."""
    pass


class NoDriverAvailable(TripCoreError):
    """Raised when a trip is requested and the cached driver pool is empty."""
    pass


class GeocodeFailure(TripCoreError):
    """Raised when the reverse geocoder cannot resolve a coordinate."""
    pass


class RoutingFailure(TripCoreError):
    """Raised when the routing provider cannot produce a route."""
    pass


class DecodeFailure(TripCoreError):
    """Raised when a store document does not have the shape of a trip."""
    pass


class ImmutableFieldError(TripCoreError):
    """Raised when a partial write tries to change a field fixed at creation."""
    pass


class UserNotFound(TripCoreError, LookupError):
    """Raised when the user document is missing (or is not the caller's)."""
    pass


class SavedLocationNotSet(TripCoreError, LookupError):
    """Raised when a saved home/work location is used before it was saved."""
    pass


class UnknownRideClass(TripCoreError, KeyError):
    """Raised when a ride class name is not in the catalog."""
    pass


def _value(v):
    return getattr(v, "value", v)
