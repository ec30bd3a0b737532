from dataclasses import dataclass
from typing import Optional, Union

from exceptions import UnknownRideClass
from models import Coordinate
from routing import haversine_m


BASE_FARE = 3.0
PER_KM = 1.5


@dataclass(frozen=True)
class RideClass:
    name: str
    description: str
    multiplier: float
    image_name: str


RIDE_CLASSES = {
    "red_eye": RideClass("red_eye", "RedEye", 1.0, "red-eye"),
    "red_eye_xl": RideClass("red_eye_xl", "RedEye XL", 1.5, "red-eye-xl"),
    "red_eye_black": RideClass("red_eye_black", "Black", 2.0, "red-eye-black"),
}


def get_ride_class(ride_class: Union[str, RideClass]) -> RideClass:
    if isinstance(ride_class, RideClass):
        return ride_class
    try:
        return RIDE_CLASSES[ride_class]
    except KeyError:
        raise UnknownRideClass(ride_class)


def price(ride_class: Union[str, RideClass], distance_meters: float) -> float:
    """Trip cost for a ride class over a distance:
    price = (base + per_km * km) * class multiplier, rounded to cents.
    A non-positive distance prices at 0.0, which means "nothing to price" and not a free ride.
    """
    rc = get_ride_class(ride_class)
    if not distance_meters or distance_meters <= 0:
        return 0.0
    raw = (BASE_FARE + PER_KM * distance_meters / 1000.0) * rc.multiplier
    return round(raw, 2)


def quote(ride_class: Union[str, RideClass], origin: Optional[Coordinate], destination: Optional[Coordinate]) -> float:
    # no selected destination or no known current location -> sentinel
    if origin is None or destination is None:
        return 0.0
    return price(ride_class, haversine_m(origin, destination))
