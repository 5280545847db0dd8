"""SQLite-backed server-side sessions with background expiry cleanup."""

from sqlitestore.cleanup import DEFAULT_CLEANUP_INTERVAL
from sqlitestore.exceptions import (
    InvalidSessionIdError,
    SessionDecodeError,
    SessionEncryptionError,
    SessionExpiredError,
    SessionNotFoundError,
    SessionStoreError,
)
from sqlitestore.sessions import Options, Session
from sqlitestore.store import SqliteStore

__version__ = "1.0.0"

__all__ = [
    "DEFAULT_CLEANUP_INTERVAL",
    "InvalidSessionIdError",
    "Options",
    "Session",
    "SessionDecodeError",
    "SessionEncryptionError",
    "SessionExpiredError",
    "SessionNotFoundError",
    "SessionStoreError",
    "SqliteStore",
]
