from contextlib import AbstractContextManager, contextmanager
from pathlib import Path
from typing import Any, Dict, Generator

from sqlalchemy import create_engine, make_url
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.pool import StaticPool


def is_memory_url(database_url: str) -> bool:
    return database_url in ("sqlite://", "sqlite:///:memory:") or "mode=memory" in database_url


def get_connect_args(database_url: str) -> Dict[str, Any]:
    """Get database-specific connection arguments"""
    if database_url.startswith("sqlite"):
        # The cleanup thread uses connections opened elsewhere
        return {"check_same_thread": False}
    return {}


def create_store_engine(database_url: str) -> Engine:
    """Create an engine for a session store.

    In-memory databases exist per connection, so they get a single shared
    connection via StaticPool.
    """
    kwargs: Dict[str, Any] = {"connect_args": get_connect_args(database_url)}
    if is_memory_url(database_url):
        kwargs["poolclass"] = StaticPool
    else:
        database = make_url(database_url).database
        if database_url.startswith("sqlite") and database:
            Path(database).parent.mkdir(parents=True, exist_ok=True)
    return create_engine(database_url, **kwargs)


@contextmanager
def get_db_sync(engine: Engine, lock: AbstractContextManager) -> Generator[Connection, None, None]:
    """Serialized connection with its own transaction, committed on success"""
    with lock:
        with engine.begin() as conn:
            yield conn
