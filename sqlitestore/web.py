"""FastAPI integration: run expired session cleanup for the app's lifetime."""

import logging
from contextlib import AbstractAsyncContextManager, asynccontextmanager
from datetime import timedelta
from typing import AsyncIterator, Callable, Optional, Union

from fastapi import FastAPI
from starlette.concurrency import run_in_threadpool

from sqlitestore.core.config import settings
from sqlitestore.store import SqliteStore

logger = logging.getLogger(__name__)


def cleanup_lifespan(
    store: SqliteStore,
    session_name: Optional[str] = None,
    interval: Optional[Union[float, timedelta]] = None,
) -> Callable[[FastAPI], AbstractAsyncContextManager[None]]:
    """Build a lifespan that sweeps ``store`` while the app is running.

    Usage::

        store = SqliteStore.from_settings(settings)
        app = FastAPI(lifespan=cleanup_lifespan(store))
    """
    name = session_name or settings.SESSION_NAME
    every = settings.CLEANUP_INTERVAL_SECONDS if interval is None else interval

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        app.state.session_store = store
        quit_event, done_event = store.start_cleanup(name, every)
        try:
            yield
        finally:
            # stop_cleanup blocks until an in-flight sweep finishes
            await run_in_threadpool(store.stop_cleanup, quit_event, done_event)
            logger.debug(f"Session cleanup for {name} stopped with application shutdown")

    return lifespan
