"""DuckDB warehouse holding the append-only events table.

The table layout follows the production columnar store closely enough for
every query the decision core issues to run unchanged against it.
"""

import json
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path

import duckdb

EVENT_COLUMNS = (
    "event_id",
    "site_id",
    "session_id",
    "event_type",
    "timestamp",
    "page_path",
    "referrer",
    "user_agent",
    "user_language",
    "device_type",
    "viewport_width",
    "scroll_depth",
    "load_time",
    "is_dead_click",
    "experiment_ids",
    "variant_ids",
    "data",
)

EVENTS_DDL = """
CREATE TABLE IF NOT EXISTS events (
    event_id        VARCHAR PRIMARY KEY,
    site_id         VARCHAR NOT NULL,
    session_id      VARCHAR NOT NULL,
    event_type      VARCHAR NOT NULL,
    timestamp       TIMESTAMP NOT NULL,
    page_path       VARCHAR DEFAULT '',
    referrer        VARCHAR DEFAULT '',
    user_agent      VARCHAR DEFAULT '',
    user_language   VARCHAR DEFAULT '',
    device_type     VARCHAR DEFAULT '',
    viewport_width  INTEGER DEFAULT 0,
    scroll_depth    DOUBLE DEFAULT 0,
    load_time       DOUBLE DEFAULT 0,
    is_dead_click   BOOLEAN DEFAULT false,
    experiment_ids  VARCHAR[],
    variant_ids     VARCHAR[],
    data            JSON
)
"""


def get_connection(path: str = ":memory:") -> duckdb.DuckDBPyConnection:
    if path != ":memory:":
        Path(path).parent.mkdir(parents=True, exist_ok=True)
    return duckdb.connect(path)


def init_db(conn: duckdb.DuckDBPyConnection) -> None:
    conn.execute(EVENTS_DDL)


def insert_events(conn: duckdb.DuckDBPyConnection, events: list[dict]) -> tuple[int, int]:
    """Insert event dicts, skipping ids already present.

    Returns (inserted, duplicates). Duplicates within the batch itself are
    counted the same way as duplicates already stored.
    """
    existing = {
        row[0] for row in conn.execute("SELECT event_id FROM events").fetchall()
    }
    rows = []
    dupes = 0
    for event in events:
        if event["event_id"] in existing:
            dupes += 1
            continue
        existing.add(event["event_id"])
        rows.append(_to_row(event))

    if rows:
        placeholders = ", ".join("?" for _ in EVENT_COLUMNS)
        conn.executemany(
            f"INSERT INTO events ({', '.join(EVENT_COLUMNS)}) VALUES ({placeholders})",
            rows,
        )
    return len(rows), dupes


def _to_row(event: dict) -> list:
    row = []
    for column in EVENT_COLUMNS:
        value = event.get(column)
        if isinstance(value, Enum):
            value = value.value
        if column == "timestamp":
            value = _naive_utc(value)
        elif column == "data":
            value = json.dumps(value or {})
        elif column in ("experiment_ids", "variant_ids"):
            value = list(value or [])
        row.append(value)
    return row


def _naive_utc(value: datetime | str) -> datetime:
    # The events table stores naive UTC timestamps
    if isinstance(value, str):
        value = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value
