"""Race a driver accept against a passenger cancel on the same trip.
Both sides observe the trip through their own subscription; whichever write
the store commits last is the state both views end up on.
This runs in-process against the configured database.
Run: python concurrency_demo.py
"""
import asyncio
from db import init_db
from models import Coordinate, Location, User
from providers import FixedGeocoder, StaticIdentityProvider, StraightLineRoutingProvider
from routing import RouteEstimator
from sample_data import seed
from store import TripStore
from sync import TripSynchronizer


async def run():
    init_db()
    seed(drivers=1, riders=1)
    store = TripStore()
    estimator = RouteEstimator(StraightLineRoutingProvider())
    rows = await store.query("users", "role", "rider")
    passenger_row = rows[-1]

    passenger = TripSynchronizer(store, estimator, FixedGeocoder(), StaticIdentityProvider(passenger_row["id"]))
    drivers = await passenger.fetch_drivers()
    trip_id = await passenger.request_trip(
        User(**passenger_row),
        Location(title="Pike Place Market", coordinate=Coordinate(latitude=47.6097, longitude=-122.3422)),
    )
    driver = TripSynchronizer(store, estimator, FixedGeocoder(), StaticIdentityProvider(drivers[0].id))

    results = await asyncio.gather(
        driver.accept(trip_id),
        passenger.cancel_as_passenger(trip_id),
        return_exceptions=True,
    )
    for r in results:
        print(type(r).__name__, getattr(r, "state", r))
    final = await passenger.get_trip(trip_id)
    print("store settled on", final.state.value)


if __name__ == "__main__":
    asyncio.run(run())
