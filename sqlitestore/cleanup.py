"""Background cleanup of expired sessions.

A cleanup thread wakes every interval and sweeps the store: it selects the ids
of all rows whose expiry has passed, loads each one (ignoring the expiry check)
and hands it to the pre-delete callback if one is set, then deletes the rows.

The pre-delete callback is a plain attribute with no lock around it. Replacing
it while a sweep is running means that sweep may call either the old or the
new callback.
"""
from __future__ import annotations

import logging
from datetime import timedelta
from threading import Event, Thread
from typing import TYPE_CHECKING, Callable, List, Optional, Tuple, Union

from sqlalchemy.exc import SQLAlchemyError

from sqlitestore.exceptions import SessionStoreError

if TYPE_CHECKING:
    from sqlalchemy.engine import Row

    from sqlitestore.sessions import Session

logger = logging.getLogger(__name__)

DEFAULT_CLEANUP_INTERVAL = timedelta(minutes=5)

PreDeleteCallback = Callable[["Session"], None]


class CleanupMixin:
    """Expired-session sweeping for :class:`~sqlitestore.store.SqliteStore`."""

    _expired_session_pre_delete_callback: Optional[PreDeleteCallback] = None

    def start_cleanup(
        self, session_name: str, interval: Union[float, timedelta] = 0
    ) -> Tuple[Event, Event]:
        """Start a thread that deletes expired sessions every ``interval``.

        ``interval`` is a timedelta or a number of seconds; zero or negative
        means :data:`DEFAULT_CLEANUP_INTERVAL`. The first sweep runs one full
        interval after the start. ``session_name`` is the name given to every
        session loaded for the pre-delete callback.

        Returns the ``(quit, done)`` pair to hand to :meth:`stop_cleanup`.
        """
        seconds = interval.total_seconds() if isinstance(interval, timedelta) else float(interval)
        if seconds <= 0:
            seconds = DEFAULT_CLEANUP_INTERVAL.total_seconds()

        quit_event, done_event = Event(), Event()
        thread = Thread(
            target=self._cleanup,
            args=(session_name, seconds, quit_event, done_event),
            name=f"sqlitestore-cleanup-{session_name}",
            daemon=True,
        )
        thread.start()
        logger.info(f"Started expired session cleanup for {session_name} every {seconds:g}s")
        return quit_event, done_event

    def stop_cleanup(self, quit_event: Event, done_event: Event) -> None:
        """Stop the cleanup thread and wait for it to acknowledge.

        Blocks until an in-flight sweep has finished. No sweep runs after
        this returns.
        """
        quit_event.set()
        done_event.wait()
        logger.info("Stopped expired session cleanup")

    def set_expired_session_pre_delete_callback(self, callback: Optional[PreDeleteCallback]) -> None:
        """Set the function called with each expired session before its row is deleted.

        Pass ``None`` to remove it. Takes effect from the next session a sweep loads.
        """
        self._expired_session_pre_delete_callback = callback

    def _cleanup(self, session_name: str, interval: float, quit_event: Event, done_event: Event) -> None:
        try:
            # wait() returns True as soon as quit is set, so quit always beats a due sweep
            while not quit_event.wait(interval):
                try:
                    self.delete_expired_sessions(session_name)
                except Exception as e:
                    logger.error(f"Unable to delete expired sessions: {e}")
        finally:
            done_event.set()

    def delete_expired_sessions(self, session_name: str) -> None:
        """Run one sweep.

        Raises the first select or delete error. Rows after a failed delete
        stay in place and are picked up again by the next sweep.
        """
        expired_ids = self._get_expired_session_ids_and_call_callbacks(session_name)

        for session_id in expired_ids:
            self._delete_row(session_id)

        if expired_ids:
            logger.info(f"Deleted {len(expired_ids)} expired sessions from {self.table_name}")

    def _get_expired_session_ids_and_call_callbacks(self, session_name: str) -> List[str]:
        expired_ids = self._select_expired_session_ids()

        for session_id in expired_ids:
            session = self._new_session(session_name)
            session.id = session_id
            try:
                self.load(session, ignore_expiry=True)
            except (SessionStoreError, SQLAlchemyError) as e:
                # The id stays queued so the broken row is still removed
                logger.warning(f"Error loading (expired) session {session_id}: {e}")
                continue

            callback = self._expired_session_pre_delete_callback
            if callback is not None:
                try:
                    callback(session)
                except Exception:
                    logger.exception(f"Pre-delete callback failed for expired session {session_id}")

        return expired_ids

    def _select_expired_session_ids(self) -> List[str]:
        """Ids of all rows expired at query time.

        A failed query aborts the sweep; a row that cannot be read is skipped.
        """
        try:
            with self._connect() as conn:
                rows = conn.execute(self._stmt_select_expired).fetchall()
        except SQLAlchemyError as e:
            logger.error(f"Error executing select query: {e}")
            raise

        expired_ids: List[str] = []
        for row in rows:
            try:
                expired_ids.append(self._scan_session_id(row))
            except (TypeError, ValueError) as e:
                logger.error(f"Error scanning select query result: {e}")
                continue
        return expired_ids

    @staticmethod
    def _scan_session_id(row: "Row") -> str:
        value = row[0]
        if value is None:
            raise ValueError("expired row has a NULL id")
        return str(value)
