from sqlalchemy import Column, DateTime, Integer, MetaData, Table, Text


def build_sessions_table(name: str, metadata: MetaData) -> Table:
    """Server-side session rows: encrypted attribute bag plus timestamps.

    ``expires_on`` holds naive local time so it compares directly against
    SQLite's ``datetime(CURRENT_TIMESTAMP, 'localtime')``.
    """
    return Table(
        name,
        metadata,
        Column("id", Integer, primary_key=True, autoincrement=True),
        Column("session_data", Text, nullable=True),
        Column("created_on", DateTime, nullable=False),
        Column("modified_on", DateTime, nullable=False),
        Column("expires_on", DateTime, nullable=False, index=True),
    )
