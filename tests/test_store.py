"""
Tests for the change-stream store.
Covers:
- Snapshot on subscribe, then live added / modified / removed changes
- Filtering by field value
- Delivery order equals commit order
- Cancelled subscriptions stop without a final event
- Fields fixed at creation cannot be rewritten
- Delete is idempotent
"""
import asyncio
import threading
import time

import pytest

from exceptions import ImmutableFieldError, TripNotFound
from models import Role, TripState
from store import ChangeType, TripStore

from conftest import make_user


def trip_fields(passenger_id="p1", driver_id="d1", **overrides):
    fields = {
        "passenger_id": passenger_id, "driver_id": driver_id,
        "passenger_name": "Pat", "driver_name": "Dee",
        "passenger_latitude": 47.66, "passenger_longitude": -122.31,
        "driver_latitude": 47.65, "driver_longitude": -122.30,
        "pickup_latitude": 47.66, "pickup_longitude": -122.31,
        "dropoff_location_name": "Pike Place Market",
        "dropoff_latitude": 47.62, "dropoff_longitude": -122.35,
        "trip_cost": 9.75,
        "state": TripState.REQUESTED,
    }
    fields.update(overrides)
    return fields


async def next_batch(subscription, timeout=2.0):
    return await asyncio.wait_for(subscription.__anext__(), timeout)


@pytest.mark.asyncio
async def test_create_and_get():
    store = TripStore()
    trip_id = await store.create("trips", trip_fields())
    doc = await store.get("trips", trip_id)
    assert doc["id"] == trip_id
    assert doc["state"] == "requested"
    assert doc["travel_time_to_passenger"] == 0


@pytest.mark.asyncio
async def test_get_missing_returns_none():
    assert await TripStore().get("trips", "nope") is None


@pytest.mark.asyncio
async def test_subscribe_starts_with_snapshot():
    store = TripStore()
    first = await store.create("trips", trip_fields())
    second = await store.create("trips", trip_fields())
    await store.create("trips", trip_fields(passenger_id="someone-else"))
    sub = await store.subscribe("trips", "passenger_id", "p1")
    batch = await next_batch(sub)
    assert [c.document_id for c in batch] == [first, second]
    assert all(c.change_type == ChangeType.ADDED for c in batch)
    sub.cancel()


@pytest.mark.asyncio
async def test_live_changes_in_commit_order():
    store = TripStore()
    sub = await store.subscribe("trips", "driver_id", "d1")
    trip_id = await store.create("trips", trip_fields())
    await store.write("trips", trip_id, {"state": TripState.ACCEPTED, "travel_time_to_passenger": 4})
    await store.write("trips", trip_id, {"state": TripState.DRIVER_CANCELLED})
    assert await store.delete("trips", trip_id) is True

    seen = []
    for _ in range(4):
        (change,) = await next_batch(sub)
        seen.append((change.change_type, change.data["state"]))
    assert seen == [
        (ChangeType.ADDED, "requested"),
        (ChangeType.MODIFIED, "accepted"),
        (ChangeType.MODIFIED, "driverCancelled"),
        (ChangeType.REMOVED, "driverCancelled"),
    ]
    sub.cancel()


@pytest.mark.asyncio
async def test_subscription_ignores_other_parties():
    store = TripStore()
    sub = await store.subscribe("trips", "passenger_id", "p1")
    await store.create("trips", trip_fields(passenger_id="p2"))
    with pytest.raises(asyncio.TimeoutError):
        await next_batch(sub, timeout=0.2)


@pytest.mark.asyncio
async def test_concurrent_writes_are_delivered_in_commit_order():
    store = TripStore()
    trip_id = await store.create("trips", trip_fields())
    sub = await store.subscribe("trips", "passenger_id", "p1")
    await next_batch(sub)  # snapshot

    costs = list(range(1, 11))
    await asyncio.gather(*[
        store.write("trips", trip_id, {"distance_to_passenger": float(c)}) for c in costs
    ])
    delivered = []
    for _ in costs:
        (change,) = await next_batch(sub)
        delivered.append(change.data["distance_to_passenger"])
    final = await store.get("trips", trip_id)
    # whatever order the writers committed in, the last delivery is what the store kept
    assert sorted(delivered) == [float(c) for c in costs]
    assert delivered[-1] == final["distance_to_passenger"]
    sub.cancel()


@pytest.mark.asyncio
async def test_cancel_ends_iteration_without_final_event():
    store = TripStore()
    await store.create("trips", trip_fields())
    sub = await store.subscribe("trips", "passenger_id", "p1")
    sub.cancel()
    await store.create("trips", trip_fields())
    with pytest.raises(StopAsyncIteration):
        await next_batch(sub)


@pytest.mark.asyncio
async def test_cancel_wakes_a_waiting_reader():
    store = TripStore()
    sub = await store.subscribe("trips", "passenger_id", "p1")
    reader = asyncio.ensure_future(next_batch(sub))
    await asyncio.sleep(0.05)
    sub.cancel()
    with pytest.raises(StopAsyncIteration):
        await reader


@pytest.mark.asyncio
async def test_cancel_does_not_wait_for_a_commit_in_progress():
    store = TripStore()
    sub = await store.subscribe("trips", "passenger_id", "p1")
    held = threading.Event()
    release = threading.Event()

    def hold_commit_lock():
        with store._lock:
            held.set()
            release.wait(2)

    holder = threading.Thread(target=hold_commit_lock)
    holder.start()
    held.wait(2)
    start = time.monotonic()
    sub.cancel()
    elapsed = time.monotonic() - start
    release.set()
    holder.join()

    assert elapsed < 0.5
    assert sub not in store._listeners
    with pytest.raises(StopAsyncIteration):
        await next_batch(sub)


@pytest.mark.asyncio
async def test_fixed_fields_cannot_change():
    store = TripStore()
    trip_id = await store.create("trips", trip_fields())
    for fields in ({"trip_cost": 1.0}, {"driver_id": "d2"}, {"passenger_id": "p9"}, {"id": "other"}):
        with pytest.raises(ImmutableFieldError):
            await store.write("trips", trip_id, fields)
    doc = await store.get("trips", trip_id)
    assert doc["trip_cost"] == 9.75
    assert doc["driver_id"] == "d1"


@pytest.mark.asyncio
async def test_write_unknown_field_rejected():
    store = TripStore()
    trip_id = await store.create("trips", trip_fields())
    with pytest.raises(ValueError):
        await store.write("trips", trip_id, {"surge": 3})


@pytest.mark.asyncio
async def test_write_missing_document():
    with pytest.raises(TripNotFound):
        await TripStore().write("trips", "gone", {"state": TripState.ACCEPTED})


@pytest.mark.asyncio
async def test_delete_twice():
    store = TripStore()
    trip_id = await store.create("trips", trip_fields())
    assert await store.delete("trips", trip_id) is True
    assert await store.delete("trips", trip_id) is False


@pytest.mark.asyncio
async def test_query_users_by_role():
    make_user("Pat", Role.RIDER)
    make_user("Dee", Role.DRIVER)
    make_user("Max", Role.DRIVER)
    rows = await TripStore().query("users", "role", Role.DRIVER)
    assert sorted(r["name"] for r in rows) == ["Dee", "Max"]


@pytest.mark.asyncio
async def test_user_location_update():
    u = make_user("Dee", Role.DRIVER)
    store = TripStore()
    doc = await store.write("users", u.id, {"latitude": 47.7, "longitude": -122.2})
    assert (doc["latitude"], doc["longitude"]) == (47.7, -122.2)


@pytest.mark.asyncio
async def test_unknown_collection_or_field():
    store = TripStore()
    with pytest.raises(ValueError):
        await store.subscribe("payments", "id", "x")
    with pytest.raises(ValueError):
        await store.subscribe("trips", "nickname", "x")
