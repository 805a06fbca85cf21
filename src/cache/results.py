"""In-process cache for expensive aggregate results.

One `ResultCache` is created per process and handed to the orchestrator.
It combines three things:

- TTL expiry, checked lazily when a key is read.
- A bounded entry count. Once the table grows past `max_entries`, the
  oldest half (by computed time) is dropped in one pass.
- Single-flight computation. The first caller for a missing key starts the
  computation on the cache's worker pool; it and every later caller for the
  same key wait on the same `Future` instead of issuing their own query.
  A caller that stops waiting only detaches itself; the computation runs
  to completion for whoever is still interested, and is cancelled once
  nobody is. A failed computation is never stored; the error goes to
  everyone waiting and the next caller starts a fresh attempt.

A single lock guards both tables. Compute functions always run outside it.
"""

import json
import logging
import threading
import time
from collections.abc import Callable
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import dataclass
from typing import Any

from src.cache.cancellation import Cancellation, ComputationCancelled, cancellation_scope

logger = logging.getLogger(__name__)

DEFAULT_MAX_ENTRIES = 200
DEFAULT_TTL_S = 30.0
DEFAULT_MAX_WORKERS = 8


class CacheWaitTimeout(Exception):
    """The caller stopped waiting for a computation."""


@dataclass
class CacheEntry:
    key: str
    value: Any
    computed_at: float
    expires_at: float


@dataclass
class Flight:
    future: Future
    cancellation: Cancellation
    waiters: int = 0


def cache_key(site_id: str, kind: str, **params) -> str:
    """Canonical key for a cached result.

    The site id always leads the key and every parameter is JSON-encoded,
    so two requests only share a key when site, kind and every parameter
    are equal. Parameter order does not matter; None values are dropped.
    """
    if not site_id:
        raise ValueError("site_id is required for a cache key")
    parts = [json.dumps(site_id), json.dumps(kind)]
    for name in sorted(params):
        value = params[name]
        if value is None:
            continue
        parts.append(f"{name}={json.dumps(value, sort_keys=True, separators=(',', ':'))}")
    return ":".join(parts)


class ResultCache:
    def __init__(
        self,
        max_entries: int = DEFAULT_MAX_ENTRIES,
        default_ttl_s: float = DEFAULT_TTL_S,
        clock: Callable[[], float] = time.monotonic,
        max_workers: int = DEFAULT_MAX_WORKERS,
    ):
        if max_entries < 1:
            raise ValueError("max_entries must be at least 1")
        self.max_entries = max_entries
        self.default_ttl_s = default_ttl_s
        self.clock = clock
        self._entries: dict[str, CacheEntry] = {}
        self._in_flight: dict[str, Flight] = {}
        self._lock = threading.Lock()
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="result-cache")
        self.hits = 0
        self.misses = 0
        self.evictions = 0

    def get(self, key: str) -> Any | None:
        with self._lock:
            entry = self._live_entry(key)
            return entry.value if entry else None

    def get_or_compute(
        self,
        key: str,
        compute_fn: Callable[[], Any],
        ttl_s: float | None = None,
        timeout: float | None = None,
    ) -> Any:
        """Return the cached value for `key`, computing it at most once at a time.

        `timeout` bounds how long this caller waits, whether it started the
        computation or joined one already running. On expiry the caller gets
        CacheWaitTimeout. The computation carries on for the callers still
        waiting; when none are left it is cancelled, which interrupts any
        store query it is running.
        """
        with self._lock:
            entry = self._live_entry(key)
            if entry is not None:
                self.hits += 1
                return entry.value
            self.misses += 1
            flight = self._in_flight.get(key)
            owner = flight is None
            if owner:
                flight = Flight(Future(), Cancellation())
                self._in_flight[key] = flight
            flight.waiters += 1

        if owner:
            ttl = self.default_ttl_s if ttl_s is None else ttl_s
            try:
                self._executor.submit(self._run, key, flight, compute_fn, ttl)
            except RuntimeError as exc:
                # Executor already shut down
                with self._lock:
                    self._drop_flight(key, flight)
                flight.future.set_exception(exc)
                raise

        try:
            return flight.future.result(timeout=timeout)
        except FutureTimeoutError as exc:
            self._detach(key, flight)
            raise CacheWaitTimeout(f"Gave up waiting for {key}") from exc

    def _detach(self, key: str, flight: Flight) -> None:
        with self._lock:
            flight.waiters -= 1
            abandoned = flight.waiters == 0 and not flight.future.done()
            if abandoned:
                # Later callers start afresh instead of joining a cancelled run
                self._drop_flight(key, flight)
        if abandoned:
            logger.info(f"No callers left waiting for {key}; cancelling")
            flight.cancellation.cancel()

    def _run(self, key: str, flight: Flight, compute_fn: Callable[[], Any], ttl: float) -> None:
        try:
            if flight.cancellation.cancelled:
                raise ComputationCancelled(f"Computation for {key} cancelled before it started")
            with cancellation_scope(flight.cancellation):
                value = compute_fn()
        except Exception as exc:
            with self._lock:
                self._drop_flight(key, flight)
            logger.info(f"Computation for {key} failed; not cached: {exc!r}")
            flight.future.set_exception(exc)
            return

        now = self.clock()
        with self._lock:
            self._entries[key] = CacheEntry(key, value, now, now + ttl)
            self._drop_flight(key, flight)
            if len(self._entries) > self.max_entries:
                self._evict_oldest_half()
        flight.future.set_result(value)

    def _drop_flight(self, key: str, flight: Flight) -> None:
        # Caller holds the lock; a newer flight for the key is left alone
        if self._in_flight.get(key) is flight:
            del self._in_flight[key]

    def invalidate(self, key: str) -> bool:
        with self._lock:
            return self._entries.pop(key, None) is not None

    def invalidate_site(self, site_id: str) -> int:
        prefix = json.dumps(site_id) + ":"
        with self._lock:
            doomed = [k for k in self._entries if k.startswith(prefix)]
            for key in doomed:
                del self._entries[key]
        return len(doomed)

    def cleanup(self) -> int:
        """Drop every expired entry. Returns how many were removed."""
        now = self.clock()
        with self._lock:
            expired = [k for k, e in self._entries.items() if now >= e.expires_at]
            for key in expired:
                del self._entries[key]
        return len(expired)

    def close(self) -> None:
        self._executor.shutdown(wait=True)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def stats(self) -> dict:
        with self._lock:
            return {
                "size": len(self._entries),
                "max_entries": self.max_entries,
                "default_ttl_s": self.default_ttl_s,
                "in_flight": len(self._in_flight),
                "hits": self.hits,
                "misses": self.misses,
                "evictions": self.evictions,
            }

    def _live_entry(self, key: str) -> CacheEntry | None:
        # Caller holds the lock
        entry = self._entries.get(key)
        if entry is None:
            return None
        if self.clock() >= entry.expires_at:
            del self._entries[key]
            return None
        return entry

    def _evict_oldest_half(self) -> None:
        # Caller holds the lock
        ordered = sorted(self._entries.values(), key=lambda e: e.computed_at)
        doomed = ordered[: len(ordered) // 2]
        for entry in doomed:
            del self._entries[entry.key]
        self.evictions += len(doomed)
        logger.debug(f"Evicted {len(doomed)} cache entries, {len(self._entries)} remain")
