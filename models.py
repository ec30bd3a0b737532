from typing import Optional, List
from sqlalchemy import Column, DateTime, JSON
from sqlmodel import SQLModel, Field
from datetime import datetime, timezone
from enum import Enum
import uuid


class Role(str, Enum):
    RIDER = "rider"
    DRIVER = "driver"


class TripState(str, Enum):
    REQUESTED = "requested"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    DRIVER_CANCELLED = "driverCancelled"
    PASSENGER_CANCELLED = "passengerCancelled"


class TripEvent(str, Enum):
    REQUEST = "request"
    ACCEPT = "accept"
    REJECT = "reject"
    DRIVER_CANCEL = "driver_cancel"
    PASSENGER_CANCEL = "passenger_cancel"

    @classmethod
    def parse(cls, name: str, role: Role) -> "TripEvent":
        """Resolve an event name; a bare ``cancel`` becomes the role's own cancel event."""
        if not isinstance(name, str):
            raise ValueError(f"event name must be a string, got {type(name).__name__}")
        name = name.strip().lower()
        if name == "cancel":
            return cls.cancel_for(role)
        return cls(name)

    @classmethod
    def cancel_for(cls, role: Role) -> "TripEvent":
        return cls.DRIVER_CANCEL if role == Role.DRIVER else cls.PASSENGER_CANCEL


class Coordinate(SQLModel):
    latitude: float = Field(ge=-90, le=90)
    longitude: float = Field(ge=-180, le=180)

    def as_tuple(self):
        return (self.latitude, self.longitude)


class Location(SQLModel):
    """A drop-off picked from search results."""
    title: str
    coordinate: Coordinate


class Placemark(SQLModel):
    name: Optional[str] = None
    street: Optional[str] = None
    sub_locality: Optional[str] = None
    area: Optional[str] = None

    @property
    def address(self) -> str:
        return ", ".join(p for p in (self.street, self.sub_locality, self.area) if p)


class RouteEstimate(SQLModel):
    polyline: List[Coordinate] = []
    distance: float  # meters
    duration: float  # seconds
    pickup_time: Optional[datetime] = None
    dropoff_time: Optional[datetime] = None

    @property
    def travel_time_minutes(self) -> int:
        return int(self.duration / 60)


class SavedLocation(SQLModel):
    """A named drop-off kept on the user's document."""
    title: str
    address: str = ""
    coordinate: Coordinate

    def as_dropoff(self) -> Location:
        return Location(title=self.title, coordinate=self.coordinate)


class SavedLocationKind(str, Enum):
    HOME = "home"
    WORK = "work"

    @property
    def field(self) -> str:
        return f"{self.value}_location"

    @property
    def title(self) -> str:
        return self.value.capitalize()


class User(SQLModel, table=True):
    id: str = Field(default_factory=lambda: uuid.uuid4().hex, primary_key=True)
    name: str
    role: str = Field(default=Role.RIDER.value, index=True)  # rider, driver
    # None until the device has reported a location
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    home_location: Optional[dict] = Field(default=None, sa_column=Column(JSON))
    work_location: Optional[dict] = Field(default=None, sa_column=Column(JSON))

    @property
    def coordinates(self) -> Optional[Coordinate]:
        if self.latitude is None or self.longitude is None:
            return None
        return Coordinate(latitude=self.latitude, longitude=self.longitude)

    def saved_location(self, kind) -> Optional[SavedLocation]:
        data = getattr(self, SavedLocationKind(kind).field)
        return SavedLocation.model_validate(data) if data else None

    def saved_location_subtitle(self, kind) -> str:
        kind = SavedLocationKind(kind)
        saved = self.saved_location(kind)
        return saved.title if saved is not None else f"Add {kind.title}"


class TripBase(SQLModel):
    passenger_id: str = Field(index=True)
    driver_id: str = Field(index=True)
    passenger_name: str
    driver_name: str
    passenger_latitude: float
    passenger_longitude: float
    driver_latitude: float
    driver_longitude: float
    pickup_location_name: str = "Current Location"
    pickup_location_address: str = ""
    pickup_latitude: float
    pickup_longitude: float
    dropoff_location_name: str
    dropoff_latitude: float
    dropoff_longitude: float
    ride_class: str = "red_eye"
    trip_cost: float = 0.0
    distance_to_passenger: float = 0.0  # meters
    travel_time_to_passenger: int = 0  # minutes
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc), sa_type=DateTime(timezone=True))


class Trip(TripBase, table=True):
    id: str = Field(default_factory=lambda: uuid.uuid4().hex, primary_key=True)
    state: str = Field(default=TripState.REQUESTED.value, index=True)


# fields that may not change once the store has assigned them
IMMUTABLE_TRIP_FIELDS = frozenset({"id", "passenger_id", "driver_id", "trip_cost"})


class TripRecord(TripBase):
    """Validated view of a trip document as it arrives from the store."""
    id: str
    state: TripState

    @property
    def passenger_coordinate(self) -> Coordinate:
        return Coordinate(latitude=self.passenger_latitude, longitude=self.passenger_longitude)

    @property
    def driver_coordinate(self) -> Coordinate:
        return Coordinate(latitude=self.driver_latitude, longitude=self.driver_longitude)

    @property
    def pickup_coordinate(self) -> Coordinate:
        return Coordinate(latitude=self.pickup_latitude, longitude=self.pickup_longitude)

    @property
    def dropoff_coordinate(self) -> Coordinate:
        return Coordinate(latitude=self.dropoff_latitude, longitude=self.dropoff_longitude)
