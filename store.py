"""Change-stream document store over the SQLModel tables.

Documents live in ``collections`` (``trips``, ``users``). Writers create,
partially update and delete documents; observers subscribe with an equality
filter and receive batches of DocumentChange, starting with a snapshot of the
documents that already match.

Blocking SQL runs in worker threads. Every commit and the publication of its
change batch happen under one store lock, so each subscriber sees changes in
commit order. When two writers race, whichever commits last wins.
"""
import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional

from sqlmodel import select

from db import get_session, get_lock
from models import Trip, User, IMMUTABLE_TRIP_FIELDS
from exceptions import ImmutableFieldError, TripNotFound

logger = logging.getLogger(__name__)

COLLECTIONS = {"trips": Trip, "users": User}


class ChangeType(str, Enum):
    ADDED = "added"
    MODIFIED = "modified"
    REMOVED = "removed"


@dataclass
class DocumentChange:
    document_id: str
    change_type: ChangeType
    data: Dict[str, Any]


_CLOSED = object()


def _model(collection: str):
    try:
        return COLLECTIONS[collection]
    except KeyError:
        raise ValueError(f"unknown collection {collection!r}")


def _column(model, field: str):
    if field not in model.model_fields:
        raise ValueError(f"{model.__name__} has no field {field!r}")
    return getattr(model, field)


def _plain(value):
    return value.value if isinstance(value, Enum) else value


class Subscription:
    """Async iterator over change batches for one filter.

    ``cancel()`` must be called from the event loop that created the
    subscription. Iteration then ends without yielding anything further.
    """

    def __init__(self, store: "TripStore", collection: str, field: str, value: Any, loop):
        self.store = store
        self.collection = collection
        self.field = field
        self.value = value
        self.cancelled = False
        self._loop = loop
        self._queue: asyncio.Queue = asyncio.Queue()

    def matches(self, data: Dict[str, Any]) -> bool:
        return data.get(self.field) == _plain(self.value)

    def publish(self, batch: List[DocumentChange]):
        # called from store worker threads
        try:
            self._loop.call_soon_threadsafe(self._deliver, batch)
        except RuntimeError:
            logger.debug("dropping batch for closed subscription on %s=%s", self.field, self.value)
            self.cancelled = True

    def _deliver(self, batch):
        if not self.cancelled:
            self._queue.put_nowait(batch)

    def cancel(self):
        if self.cancelled:
            return
        self.cancelled = True
        self.store._unregister(self)
        self._queue.put_nowait(_CLOSED)

    def __aiter__(self):
        return self

    async def __anext__(self) -> List[DocumentChange]:
        if self.cancelled:
            raise StopAsyncIteration
        batch = await self._queue.get()
        if batch is _CLOSED or self.cancelled:
            raise StopAsyncIteration
        return batch


class TripStore:
    def __init__(self):
        self._lock = get_lock("store")
        self._listeners: List[Subscription] = []

    # ---- observers ----

    async def subscribe(self, collection: str, field: str, value: Any) -> Subscription:
        model = _model(collection)
        _column(model, field)
        sub = Subscription(self, collection, field, value, asyncio.get_running_loop())
        await asyncio.to_thread(self._register, model, sub)
        return sub

    def _register(self, model, sub: Subscription):
        with self._lock:
            with get_session() as session:
                stmt = select(model).where(_column(model, sub.field) == _plain(sub.value))
                if "created_at" in model.model_fields:
                    stmt = stmt.order_by(model.created_at)
                rows = session.exec(stmt).all()
                snapshot = [DocumentChange(row.id, ChangeType.ADDED, row.model_dump()) for row in rows]
            self._listeners.append(sub)
            if snapshot:
                sub.publish(snapshot)
        logger.debug("subscribed to %s where %s=%s (%d in snapshot)", sub.collection, sub.field, sub.value, len(snapshot))

    def _unregister(self, sub: Subscription):
        # runs on the event loop, so it must not wait for a commit in progress.
        # list.remove is atomic and publishers iterate over a copy; a batch that
        # still reaches a cancelled subscription is dropped in _deliver.
        try:
            self._listeners.remove(sub)
        except ValueError:
            pass

    def _publish(self, collection: str, change: DocumentChange):
        for sub in list(self._listeners):
            if sub.collection == collection and sub.matches(change.data):
                sub.publish([change])

    # ---- writers ----

    async def create(self, collection: str, fields: Dict[str, Any]) -> str:
        return await asyncio.to_thread(self._create, collection, dict(fields))

    def _create(self, collection, fields):
        model = _model(collection)
        fields = {k: _plain(v) for k, v in fields.items()}
        with self._lock:
            with get_session() as session:
                obj = model(**fields)
                session.add(obj)
                session.commit()
                session.refresh(obj)
                data = obj.model_dump()
            self._publish(collection, DocumentChange(data["id"], ChangeType.ADDED, data))
        logger.info("created %s/%s", collection, data["id"])
        return data["id"]

    async def write(self, collection: str, document_id: str, fields: Dict[str, Any]) -> Dict[str, Any]:
        """Apply a partial update and return the resulting document."""
        return await asyncio.to_thread(self._write, collection, document_id, dict(fields))

    def _write(self, collection, document_id, fields):
        model = _model(collection)
        if model is Trip:
            fixed = IMMUTABLE_TRIP_FIELDS & fields.keys()
            if fixed:
                raise ImmutableFieldError(f"cannot change {', '.join(sorted(fixed))} on trip {document_id}")
        for k in fields:
            _column(model, k)
        with self._lock:
            with get_session() as session:
                obj = session.get(model, document_id)
                if obj is None:
                    raise TripNotFound(f"{collection}/{document_id} not found")
                for k, v in fields.items():
                    setattr(obj, k, _plain(v))
                session.add(obj)
                session.commit()
                session.refresh(obj)
                data = obj.model_dump()
            self._publish(collection, DocumentChange(document_id, ChangeType.MODIFIED, data))
        logger.info("wrote %s/%s: %s", collection, document_id, sorted(fields))
        return data

    async def delete(self, collection: str, document_id: str) -> bool:
        """Delete a document. Returns False if it was already gone."""
        return await asyncio.to_thread(self._delete, collection, document_id)

    def _delete(self, collection, document_id):
        model = _model(collection)
        with self._lock:
            with get_session() as session:
                obj = session.get(model, document_id)
                if obj is None:
                    return False
                data = obj.model_dump()
                session.delete(obj)
                session.commit()
            self._publish(collection, DocumentChange(document_id, ChangeType.REMOVED, data))
        logger.info("deleted %s/%s", collection, document_id)
        return True

    # ---- one-shot reads ----

    async def get(self, collection: str, document_id: str) -> Optional[Dict[str, Any]]:
        return await asyncio.to_thread(self._get, collection, document_id)

    def _get(self, collection, document_id):
        model = _model(collection)
        with self._lock:
            with get_session() as session:
                obj = session.get(model, document_id)
                return obj.model_dump() if obj is not None else None

    async def query(self, collection: str, field: str, value: Any) -> List[Dict[str, Any]]:
        return await asyncio.to_thread(self._query, collection, field, value)

    def _query(self, collection, field, value):
        model = _model(collection)
        with self._lock:
            with get_session() as session:
                stmt = select(model).where(_column(model, field) == _plain(value))
                if "created_at" in model.model_fields:
                    stmt = stmt.order_by(model.created_at)
                return [row.model_dump() for row in session.exec(stmt).all()]
