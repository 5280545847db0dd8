"""
Unit tests for a single expired session sweep
"""

from datetime import timedelta
from unittest.mock import patch

import pytest
from sqlalchemy import text
from sqlalchemy.exc import OperationalError

from tests.conftest import TEST_SESSION_NAME
from tests.utils.helpers import row_exists, stored_ids

pytestmark = pytest.mark.unit


class TestSweepSelection:

    def test_deletes_expired_keeps_live(self, store, expired_and_live):
        expired, live = expired_and_live

        store.delete_expired_sessions(TEST_SESSION_NAME)

        assert not row_exists(store, expired.id)
        assert row_exists(store, live.id)

    def test_deletes_every_expired_row(self, store, session_rows):
        expired = [session_rows.create(expires_in=timedelta(minutes=-m)) for m in (1, 10, 60 * 24)]
        live = session_rows.create(expires_in=timedelta(minutes=5))

        store.delete_expired_sessions(TEST_SESSION_NAME)

        assert stored_ids(store) == [live.id]
        assert all(not row_exists(store, s.id) for s in expired)

    def test_empty_store(self, store):
        store.delete_expired_sessions(TEST_SESSION_NAME)
        assert stored_ids(store) == []

    def test_expiry_decided_by_database_clock(self, store, expired_and_live):
        """Rows are picked by the SQL predicate alone"""
        expired, live = expired_and_live

        assert store._select_expired_session_ids() == [expired.id]

    def test_select_failure_aborts_sweep(self, store, expired_and_live, caplog):
        expired, _ = expired_and_live
        with store._connect() as conn:
            conn.execute(text("ALTER TABLE sessions RENAME TO sessions_moved"))

        with pytest.raises(OperationalError):
            store.delete_expired_sessions(TEST_SESSION_NAME)

        assert "Error executing select query" in caplog.text

    def test_unreadable_row_is_skipped(self, store, session_rows, caplog):
        first = session_rows.create(expires_in=timedelta(hours=-1))
        second = session_rows.create(expires_in=timedelta(hours=-1))
        original_scan = store._scan_session_id

        def scan(row):
            if str(row[0]) == first.id:
                raise ValueError("bad row")
            return original_scan(row)

        with patch.object(store, "_scan_session_id", side_effect=scan):
            store.delete_expired_sessions(TEST_SESSION_NAME)

        assert row_exists(store, first.id)
        assert not row_exists(store, second.id)
        assert "Error scanning select query result" in caplog.text


class TestPreDeleteCallback:

    def test_called_once_per_expired_session(self, store, expired_and_live):
        expired, _ = expired_and_live
        seen = []
        store.set_expired_session_pre_delete_callback(seen.append)

        store.delete_expired_sessions(TEST_SESSION_NAME)

        assert [s.id for s in seen] == [expired.id]

    def test_receives_fully_loaded_session(self, store, expired_and_live):
        seen = []
        store.set_expired_session_pre_delete_callback(seen.append)

        store.delete_expired_sessions(TEST_SESSION_NAME)

        session = seen[0]
        assert session.name == TEST_SESSION_NAME
        assert session.values["user"] == "alice"
        assert session.options == store.options
        assert session.options is not store.options
        assert session.store is store

    def test_called_before_row_is_deleted(self, store, expired_and_live):
        expired, _ = expired_and_live
        present_at_callback = []
        store.set_expired_session_pre_delete_callback(
            lambda s: present_at_callback.append(row_exists(store, s.id))
        )

        store.delete_expired_sessions(TEST_SESSION_NAME)

        assert present_at_callback == [True]
        assert not row_exists(store, expired.id)

    def test_corrupt_row_skips_callback_but_is_deleted(self, store, session_rows, caplog):
        corrupt = session_rows.create(expires_in=timedelta(hours=-1))
        healthy = session_rows.create(expires_in=timedelta(hours=-1))
        session_rows.corrupt(corrupt.id)
        seen = []
        store.set_expired_session_pre_delete_callback(seen.append)

        store.delete_expired_sessions(TEST_SESSION_NAME)

        assert [s.id for s in seen] == [healthy.id]
        assert not row_exists(store, corrupt.id)
        assert not row_exists(store, healthy.id)
        assert "Error loading (expired) session" in caplog.text

    @pytest.mark.parametrize("column", ["created_on", "modified_on"])
    def test_unparseable_timestamp_skips_callback_but_is_deleted(self, store, session_rows, column, caplog):
        broken = session_rows.create(expires_in=timedelta(hours=-1))
        healthy = session_rows.create(expires_in=timedelta(hours=-1))
        session_rows.corrupt_timestamp(broken.id, column)
        seen = []
        store.set_expired_session_pre_delete_callback(seen.append)

        store.delete_expired_sessions(TEST_SESSION_NAME)

        assert [s.id for s in seen] == [healthy.id]
        assert stored_ids(store) == []
        assert "Error loading (expired) session" in caplog.text

    def test_callback_error_does_not_stop_sweep(self, store, session_rows):
        first = session_rows.create(expires_in=timedelta(hours=-1))
        second = session_rows.create(expires_in=timedelta(hours=-1))
        calls = []

        def callback(session):
            calls.append(session.id)
            raise RuntimeError("observer failed")

        store.set_expired_session_pre_delete_callback(callback)
        store.delete_expired_sessions(TEST_SESSION_NAME)

        assert calls == [first.id, second.id]
        assert stored_ids(store) == []

    def test_replaced_callback_wins(self, store, expired_and_live):
        old, new = [], []
        store.set_expired_session_pre_delete_callback(old.append)
        store.set_expired_session_pre_delete_callback(new.append)

        store.delete_expired_sessions(TEST_SESSION_NAME)

        assert old == []
        assert len(new) == 1

    def test_cleared_callback(self, store, expired_and_live):
        seen = []
        store.set_expired_session_pre_delete_callback(seen.append)
        store.set_expired_session_pre_delete_callback(None)

        store.delete_expired_sessions(TEST_SESSION_NAME)

        assert seen == []
        assert len(stored_ids(store)) == 1


class TestDeleteFailures:

    def test_failed_delete_leaves_later_rows(self, store, session_rows):
        rows = [session_rows.create(expires_in=timedelta(hours=-1)) for _ in range(3)]
        original_delete = store._delete_row

        def delete_row(session_id):
            if session_id == rows[1].id:
                raise OperationalError("DELETE", {}, Exception("database is locked"))
            original_delete(session_id)

        with patch.object(store, "_delete_row", side_effect=delete_row):
            with pytest.raises(OperationalError):
                store.delete_expired_sessions(TEST_SESSION_NAME)

        assert not row_exists(store, rows[0].id)
        assert row_exists(store, rows[1].id)
        assert row_exists(store, rows[2].id)

        # Still expired, so the next sweep picks them up
        store.delete_expired_sessions(TEST_SESSION_NAME)
        assert stored_ids(store) == []

    def test_row_deleted_elsewhere_mid_sweep(self, store, expired_and_live):
        """A row removed by the application before the delete step is not an error"""
        expired, _ = expired_and_live
        store.set_expired_session_pre_delete_callback(lambda s: store._delete_row(s.id))

        store.delete_expired_sessions(TEST_SESSION_NAME)

        assert not row_exists(store, expired.id)
