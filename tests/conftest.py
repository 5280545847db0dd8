"""
Global test configuration and fixtures for the session store

Provides a temporary SQLite database per test, a store bound to it, and
helpers to seed session rows with chosen expiry times.
"""

import os
import tempfile
from datetime import timedelta

import pytest

from sqlitestore import SqliteStore
from tests.utils.factories import SessionRowFactory

TEST_SECRET_KEY = "test-secret-key-for-testing-only"
TEST_KDF_ITERATIONS = 100_000
TEST_SESSION_NAME = "test-session"


# ============================================================================
# Database Fixtures
# ============================================================================

@pytest.fixture(scope="function")
def db_url():
    """Create a temporary database file for each test function"""
    db_fd, db_path = tempfile.mkstemp(suffix='.db')

    yield f"sqlite:///{db_path}"

    os.close(db_fd)
    os.unlink(db_path)


@pytest.fixture(scope="function")
def store(db_url):
    """Session store on the temporary database"""
    session_store = SqliteStore(
        db_url,
        table="sessions",
        secret_keys=[TEST_SECRET_KEY],
        kdf_iterations=TEST_KDF_ITERATIONS,
    )
    try:
        yield session_store
    finally:
        session_store.close()


@pytest.fixture(scope="function")
def session_rows(store):
    """Factory seeding rows into the store"""
    return SessionRowFactory(store, TEST_SESSION_NAME)


@pytest.fixture(scope="function")
def expired_and_live(session_rows):
    """One session expired an hour ago and one expiring in an hour"""
    expired = session_rows.create(expires_in=timedelta(hours=-1), values={"user": "alice"})
    live = session_rows.create(expires_in=timedelta(hours=1), values={"user": "bob"})
    return expired, live


# ============================================================================
# Test Markers and Configuration
# ============================================================================

def pytest_configure(config):
    """Configure pytest with custom markers"""
    config.addinivalue_line(
        "markers", "unit: fast tests against a single component"
    )
    config.addinivalue_line(
        "markers", "integration: tests running the cleanup thread or a web app"
    )
