"""Engine, sessions and the store's commit locks, configured from DATABASE_URL."""
import os
import threading
from typing import Dict

from sqlmodel import Session, SQLModel, create_engine

DATABASE_URL = os.environ.get(
    "DATABASE_URL",
    f"sqlite:///{os.path.join(os.path.dirname(__file__), 'redeye.db')}",
)

# store writes run in worker threads, so SQLite must accept connections from any thread
_connect_args = {"check_same_thread": False} if DATABASE_URL.startswith("sqlite") else {}

engine = create_engine(DATABASE_URL, echo=False, connect_args=_connect_args)

_commit_locks: Dict[str, threading.Lock] = {}
_registry_lock = threading.Lock()


def get_lock(name: str) -> threading.Lock:
    """One shared lock per name; every TripStore commits under get_lock("store")."""
    with _registry_lock:
        return _commit_locks.setdefault(name, threading.Lock())


def init_db():
    import models  # noqa: F401  registers the tables on SQLModel.metadata
    SQLModel.metadata.create_all(engine)


def get_session() -> Session:
    return Session(engine)
