"""Shared fixtures: an in-memory warehouse and a small event factory."""

import itertools
import time
from datetime import datetime, timedelta

import pytest

from src.warehouse.db import get_connection, init_db, insert_events
from src.warehouse.store import DuckDBEventStore

# Fixed "now" so the default trailing window is deterministic
NOW = datetime(2026, 3, 1, 12, 0, 0)
SITE = "site_test"
OTHER_SITE = "site_other"

_ids = itertools.count()


def make_event(session_id: str, event_type: str = "page_view", **overrides) -> dict:
    event = {
        "event_id": f"evt_{next(_ids):08d}",
        "site_id": SITE,
        "session_id": session_id,
        "event_type": event_type,
        "timestamp": NOW - timedelta(days=1),
        "page_path": "/",
        "referrer": "",
        "user_agent": "",
        "user_language": "en-US",
        "device_type": "desktop",
        "viewport_width": 1440,
        "scroll_depth": 0.0,
        "load_time": 0.0,
        "is_dead_click": False,
        "experiment_ids": [],
        "variant_ids": [],
        "data": {},
    }
    event.update(overrides)
    return event


def wait_until(condition, timeout: float = 5.0) -> None:
    """Poll until `condition()` holds; for effects that land on other threads."""
    deadline = time.monotonic() + timeout
    while not condition():
        if time.monotonic() > deadline:
            raise AssertionError("condition not reached in time")
        time.sleep(0.005)


@pytest.fixture
def conn():
    connection = get_connection()
    init_db(connection)
    yield connection
    connection.close()


@pytest.fixture
def store(conn):
    return DuckDBEventStore(conn, default_timeout=10.0)


@pytest.fixture
def load(conn):
    """Insert event dicts into the warehouse."""
    def _load(events: list[dict]) -> None:
        insert_events(conn, events)
    return _load
