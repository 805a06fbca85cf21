"""Query interface of the analytical event store.

The decision core only ever talks to the store through `EventStore`:
one parameterised SQL statement in, a list of row dicts out. Anything
that can execute DuckDB-compatible SQL with `?` placeholders satisfies it.

`DuckDBEventStore` is the in-process implementation backed by the
warehouse connection. Each query runs on its own cursor so request
threads never share cursor state, and is interrupted once it exceeds
its timeout, or once every caller waiting on it has gone away.
"""

import logging
import threading
from typing import Any, Protocol

import duckdb

from src.cache.cancellation import current_cancellation

logger = logging.getLogger(__name__)

DEFAULT_QUERY_TIMEOUT_S = 30.0


class StoreQueryError(Exception):
    """The store rejected or failed to execute a query."""


class StoreTimeoutError(StoreQueryError):
    """The query ran past its execution timeout and was interrupted."""


class StoreCancelledError(StoreQueryError):
    """Every caller waiting on the query went away and it was interrupted."""


class EventStore(Protocol):
    def execute(
        self,
        sql: str,
        params: list[Any],
        timeout: float | None = None,
    ) -> list[dict[str, Any]]:
        ...


class DuckDBEventStore:
    def __init__(
        self,
        conn: duckdb.DuckDBPyConnection,
        default_timeout: float = DEFAULT_QUERY_TIMEOUT_S,
    ):
        self.conn = conn
        self.default_timeout = default_timeout

    def execute(
        self,
        sql: str,
        params: list[Any],
        timeout: float | None = None,
    ) -> list[dict[str, Any]]:
        timeout = self.default_timeout if timeout is None else timeout
        cursor = self.conn.cursor()
        timed_out = threading.Event()
        cancelled = threading.Event()

        def _interrupt() -> None:
            timed_out.set()
            cursor.interrupt()

        def _cancel() -> None:
            cancelled.set()
            cursor.interrupt()

        # Set when the cache runs this query on behalf of waiting callers
        cancellation = current_cancellation()
        timer = threading.Timer(timeout, _interrupt)
        timer.daemon = True
        try:
            if cancellation is not None:
                cancellation.add_callback(_cancel)
            if cancelled.is_set():
                raise StoreCancelledError("Query cancelled before it started")
            timer.start()
            result = cursor.execute(sql, params)
            columns = [d[0] for d in result.description]
            rows = result.fetchall()
        except duckdb.Error as exc:
            if cancelled.is_set():
                logger.info("Query interrupted; no callers left waiting")
                raise StoreCancelledError("Query cancelled") from exc
            if timed_out.is_set():
                logger.warning(f"Query interrupted after {timeout:.1f}s")
                raise StoreTimeoutError(f"Query exceeded {timeout:.1f}s timeout") from exc
            raise StoreQueryError(str(exc)) from exc
        finally:
            timer.cancel()
            if cancellation is not None:
                cancellation.remove_callback(_cancel)
            cursor.close()

        return [dict(zip(columns, row)) for row in rows]
