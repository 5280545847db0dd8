"""
Test helper functions for common testing operations
"""

import time
from typing import Callable, List

from sqlalchemy import func, select

from sqlitestore import SqliteStore


def wait_for_condition(condition: Callable[[], bool], timeout: float = 5.0, interval: float = 0.02) -> bool:
    """Wait for a condition to become true with timeout"""
    start_time = time.time()
    while time.time() - start_time < timeout:
        if condition():
            return True
        time.sleep(interval)
    return False


def row_exists(store: SqliteStore, session_id: str) -> bool:
    """Check whether the store still holds a row for the id"""
    table = store.table
    with store._connect() as conn:
        count = conn.execute(
            select(func.count()).select_from(table).where(table.c.id == int(session_id))
        ).scalar_one()
    return count > 0


def stored_ids(store: SqliteStore) -> List[str]:
    """All row ids currently in the store"""
    with store._connect() as conn:
        return [str(row_id) for row_id in conn.execute(select(store.table.c.id)).scalars()]
