"""Cancellation handed from the result cache down to running store queries.

The cache runs each computation inside `cancellation_scope(token)`. Code
deeper in the same thread, such as `DuckDBEventStore.execute`, looks the
token up with `current_cancellation()` and registers a callback that
interrupts its query. Cancelling the token runs every registered callback.
"""

import threading
from collections.abc import Callable, Iterator
from contextlib import contextmanager


class ComputationCancelled(Exception):
    """Every caller detached before the computation finished."""


class Cancellation:
    def __init__(self):
        self._lock = threading.Lock()
        self._event = threading.Event()
        self._callbacks: list[Callable[[], None]] = []

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        with self._lock:
            if self._event.is_set():
                return
            self._event.set()
            callbacks = list(self._callbacks)
        for callback in callbacks:
            callback()

    def add_callback(self, callback: Callable[[], None]) -> None:
        """Run `callback` on cancel, or right away if already cancelled."""
        with self._lock:
            if not self._event.is_set():
                self._callbacks.append(callback)
                return
        callback()

    def remove_callback(self, callback: Callable[[], None]) -> None:
        with self._lock:
            if callback in self._callbacks:
                self._callbacks.remove(callback)

    def wait(self, timeout: float | None = None) -> bool:
        return self._event.wait(timeout)


_local = threading.local()


def current_cancellation() -> Cancellation | None:
    return getattr(_local, "token", None)


@contextmanager
def cancellation_scope(token: Cancellation) -> Iterator[Cancellation]:
    previous = current_cancellation()
    _local.token = token
    try:
        yield token
    finally:
        _local.token = previous
