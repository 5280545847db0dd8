"""Server-side web sessions on SQLite.

Each session is one row in the store's table: the encrypted attribute bag plus
created/modified/expiry timestamps. The browser only holds an encrypted cookie
carrying the row id.
"""
from __future__ import annotations

import logging
import re
from contextlib import AbstractContextManager
from datetime import datetime, timedelta
from threading import RLock
from typing import TYPE_CHECKING, Any, Dict, Optional, Sequence

from sqlalchemy import bindparam, delete, insert, select, text, update
from sqlalchemy.engine import Connection, Engine

from sqlitestore.cleanup import CleanupMixin
from sqlitestore.core.config import Settings
from sqlitestore.core.utils.encryption import DEFAULT_KDF_ITERATIONS, SessionCodec
from sqlitestore.db.base import create_metadata
from sqlitestore.db.models.session import build_sessions_table
from sqlitestore.db.session import create_store_engine, get_db_sync
from sqlitestore.exceptions import (
    InvalidSessionIdError,
    SessionDecodeError,
    SessionExpiredError,
    SessionNotFoundError,
    SessionStoreError,
)
from sqlitestore.sessions import DEFAULT_MAX_AGE, Options, Session

if TYPE_CHECKING:
    from starlette.requests import Request
    from starlette.responses import Response

logger = logging.getLogger(__name__)

# Keys the store keeps in session.values but never writes into the body
TIMESTAMP_KEYS = ("created_on", "modified_on", "expires_on")

_TABLE_NAME_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")

# request.state attribute caching sessions for the current request
_REQUEST_REGISTRY_ATTR = "sqlitestore_sessions"


class SqliteStore(CleanupMixin):
    """Session store persisting sessions in a SQLite table.

    Statements are built once per store and reused for every call; all
    statements run through :meth:`_connect`, which serializes access to the
    database across request handlers and the cleanup thread.
    """

    def __init__(
        self,
        database_url: str,
        table: str = "sessions",
        path: str = "/",
        max_age: int = DEFAULT_MAX_AGE,
        secret_keys: Sequence[str] = (),
        *,
        engine: Optional[Engine] = None,
        options: Optional[Options] = None,
        kdf_iterations: int = DEFAULT_KDF_ITERATIONS,
    ) -> None:
        if not _TABLE_NAME_RE.match(table):
            raise ValueError(f"Invalid session table name: {table!r}")

        self._owns_engine = engine is None
        self._engine = engine if engine is not None else create_store_engine(database_url)
        if self._engine.dialect.name != "sqlite":
            raise ValueError(f"SqliteStore requires a SQLite database, got {self._engine.dialect.name!r}")
        self._lock = RLock()

        self.table_name = table
        self.options = options.model_copy() if options is not None else Options(path=path, max_age=max_age)
        self.codec = SessionCodec(secret_keys, max_age=self.options.max_age, kdf_iterations=kdf_iterations)

        self._metadata = create_metadata()
        self.table = build_sessions_table(table, self._metadata)
        with self._connect() as conn:
            self._metadata.create_all(bind=conn, tables=[self.table], checkfirst=True)

        t = self.table
        self._stmt_insert = insert(t)
        self._stmt_update = (
            update(t)
            .where(t.c.id == bindparam("session_id"))
            .values(
                session_data=bindparam("b_session_data"),
                created_on=bindparam("b_created_on"),
                modified_on=bindparam("b_modified_on"),
                expires_on=bindparam("b_expires_on"),
            )
        )
        self._stmt_select = select(
            t.c.id, t.c.session_data, t.c.created_on, t.c.modified_on, t.c.expires_on
        ).where(t.c.id == bindparam("session_id"))
        self._stmt_delete = delete(t).where(t.c.id == bindparam("session_id"))
        # Expiry is decided by the database clock, not the application's
        self._stmt_select_expired = text(
            f"SELECT id FROM {table} WHERE expires_on < datetime(CURRENT_TIMESTAMP, 'localtime')"
        )

        logger.debug(f"Session store ready on table {table}")

    @classmethod
    def from_settings(cls, config: Settings, engine: Optional[Engine] = None) -> "SqliteStore":
        """Build a store from :class:`Settings`."""
        options = Options(
            path=config.SESSION_PATH,
            domain=config.SESSION_DOMAIN,
            max_age=config.SESSION_MAX_AGE,
            secure=config.SESSION_SECURE,
            http_only=config.SESSION_HTTP_ONLY,
            same_site=config.SESSION_SAME_SITE,
        )
        return cls(
            config.DATABASE_URL,
            table=config.SESSION_TABLE,
            secret_keys=config.secret_keys,
            engine=engine,
            options=options,
            kdf_iterations=config.ENCRYPTION_KDF_ITERATIONS,
        )

    def _connect(self) -> AbstractContextManager[Connection]:
        return get_db_sync(self._engine, self._lock)

    @staticmethod
    def _row_key(session_id: str) -> int:
        try:
            return int(session_id)
        except (TypeError, ValueError):
            raise InvalidSessionIdError(f"Invalid session id: {session_id!r}") from None

    def _new_session(self, name: str) -> Session:
        """Fresh session carrying a copy of the store defaults"""
        session = Session(self, name)
        session.options = self.options.model_copy()
        return session

    def _lifetime(self, session: Session) -> timedelta:
        """Row lifetime; browser-session cookies (max_age 0) fall back to the store default"""
        seconds = session.options.max_age
        if seconds <= 0:
            seconds = self.options.max_age if self.options.max_age > 0 else DEFAULT_MAX_AGE
        return timedelta(seconds=seconds)

    @staticmethod
    def _body_values(session: Session) -> Dict[str, Any]:
        return {k: v for k, v in session.values.items() if k not in TIMESTAMP_KEYS}

    # ------------------------------------------------------------------
    # Request-facing API
    # ------------------------------------------------------------------

    def get(self, request: "Request", name: str) -> Session:
        """Return the named session for this request, creating it once per request."""
        registry = getattr(request.state, _REQUEST_REGISTRY_ATTR, None)
        if registry is None:
            registry = {}
            setattr(request.state, _REQUEST_REGISTRY_ATTR, registry)
        key = (id(self), name)
        if key not in registry:
            registry[key] = self.new(request, name)
        return registry[key]

    def new(self, request: "Request", name: str) -> Session:
        """Create a session, loading it from the database when the request carries its cookie."""
        session = self._new_session(name)
        cookie = request.cookies.get(name)
        if not cookie:
            return session

        try:
            session.id = self.codec.decode_id(name, cookie)
            self.load(session)
            session.is_new = False
        except (SessionExpiredError, SessionNotFoundError, InvalidSessionIdError) as e:
            logger.debug(f"Session cookie for {name} has no usable row: {e}")
            session.id = ""
            session.values = {}
        except SessionStoreError as e:
            logger.warning(f"Discarding session cookie for {name}: {e}")
            session.id = ""
            session.values = {}
        return session

    def save(self, request: "Request", response: "Response", session: Session) -> None:
        """Persist the session and set its cookie; a negative max_age destroys it."""
        if session.options.max_age < 0:
            self.delete(request, response, session)
            return

        if session.is_new or not session.id:
            self.insert(session)
        else:
            self.update(session)

        encoded = self.codec.encode_id(session.name, session.id)
        response.set_cookie(
            key=session.name,
            value=encoded,
            max_age=session.options.max_age or None,
            path=session.options.path,
            domain=session.options.domain,
            secure=session.options.secure,
            httponly=session.options.http_only,
            samesite=session.options.same_site,
        )

    def delete(self, request: "Request", response: "Response", session: Session) -> None:
        """Destroy the session: expire the cookie, clear the values and delete the row."""
        response.delete_cookie(
            key=session.name,
            path=session.options.path,
            domain=session.options.domain,
            secure=session.options.secure,
            httponly=session.options.http_only,
            samesite=session.options.same_site,
        )
        session.values.clear()
        if session.id:
            self._delete_row(session.id)

    # ------------------------------------------------------------------
    # Row operations
    # ------------------------------------------------------------------

    def insert(self, session: Session) -> None:
        """Insert a new row for the session and assign its id."""
        now = datetime.now()
        created_on = session.values.get("created_on")
        if not isinstance(created_on, datetime):
            created_on = now
        expires_on = now + self._lifetime(session)
        body = self.codec.encode_values(session.name, self._body_values(session))

        with self._connect() as conn:
            result = conn.execute(
                self._stmt_insert,
                {
                    "session_data": body,
                    "created_on": created_on,
                    "modified_on": now,
                    "expires_on": expires_on,
                },
            )
            row_id = result.inserted_primary_key[0]

        session.id = str(row_id)
        session.is_new = False
        session.values.update(created_on=created_on, modified_on=now, expires_on=expires_on)
        logger.debug(f"Inserted session {session.id} into {self.table_name}")

    def update(self, session: Session) -> None:
        """Rewrite an existing row, pushing its expiry forward.

        If the row is gone (destroyed or swept since it was loaded) a new row
        is inserted instead.
        """
        now = datetime.now()
        created_on = session.values.get("created_on")
        if not isinstance(created_on, datetime):
            created_on = now
        expires_on = now + self._lifetime(session)
        loaded_expiry = session.values.get("expires_on")
        if isinstance(loaded_expiry, datetime) and loaded_expiry > expires_on:
            expires_on = loaded_expiry
        body = self.codec.encode_values(session.name, self._body_values(session))

        with self._connect() as conn:
            result = conn.execute(
                self._stmt_update,
                {
                    "session_id": self._row_key(session.id),
                    "b_session_data": body,
                    "b_created_on": created_on,
                    "b_modified_on": now,
                    "b_expires_on": expires_on,
                },
            )
            updated = result.rowcount

        if updated == 0:
            logger.debug(f"Session {session.id} no longer exists, inserting a new row")
            self.insert(session)
            return

        session.values.update(created_on=created_on, modified_on=now, expires_on=expires_on)

    def load(self, session: Session, ignore_expiry: bool = False) -> None:
        """Load the attribute bag for ``session.id`` into ``session.values``.

        Request handlers always load with ``ignore_expiry=False`` so expired
        rows are rejected; the cleanup sweep passes ``True`` to read rows it is
        about to delete.

        Raises:
            SessionNotFoundError: no row has this id
            SessionExpiredError: the row has expired and ``ignore_expiry`` is false
            SessionDecodeError: the stored body or timestamps cannot be decoded
        """
        key = self._row_key(session.id)
        try:
            with self._connect() as conn:
                row = conn.execute(self._stmt_select, {"session_id": key}).first()
        except (TypeError, ValueError) as e:
            # Timestamps the DateTime result processor cannot parse
            raise SessionDecodeError(f"Session {session.id} has unreadable timestamps: {e}") from e

        if row is None:
            raise SessionNotFoundError(f"Session {session.id} not found")
        if not ignore_expiry and row.expires_on < datetime.now():
            raise SessionExpiredError(f"Session {session.id} expired")

        values = self.codec.decode_values(session.name, row.session_data) if row.session_data else {}
        values.update(
            created_on=row.created_on,
            modified_on=row.modified_on,
            expires_on=row.expires_on,
        )
        session.values = values

    def _delete_row(self, session_id: str) -> None:
        """Delete a row by id. Missing rows are not an error."""
        with self._connect() as conn:
            conn.execute(self._stmt_delete, {"session_id": self._row_key(session_id)})

    # ------------------------------------------------------------------
    # Store settings
    # ------------------------------------------------------------------

    def set_max_age(self, age: int) -> None:
        """Set the default max-age for new sessions and for cookie validity."""
        self.options.max_age = age
        self.codec.max_age = age

    def close(self) -> None:
        """Release the database connections owned by the store."""
        if self._owns_engine:
            self._engine.dispose()
