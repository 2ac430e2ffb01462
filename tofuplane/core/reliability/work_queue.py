"""
Work queue — deduplicating, delay-aware queue of reconcile keys.

Semantics:
    - A key is queued at most once, however often it is added.
    - A key handed out by ``get()`` is "processing" until ``done()``;
      adding it meanwhile marks it dirty, and ``done()`` re-queues it.
      So a key is never processed by two workers at once.
    - ``add_after`` parks a key until its delay has passed. A key is
      parked at most once; a second add_after only moves it earlier.
    - ``add_rate_limited`` parks it with exponential backoff + jitter,
      growing per failure until ``forget()``.
"""

from __future__ import annotations

import heapq
import itertools
import logging
import random
import threading
import time
from collections import deque
from typing import Callable, Generic, Hashable, TypeVar

logger = logging.getLogger(__name__)

K = TypeVar("K", bound=Hashable)


def backoff_delay(attempt: int, base_delay: float, max_delay: float) -> float:
    """Exponential backoff with up to 30% jitter for the ``attempt``-th retry."""
    delay = min(base_delay * (2 ** (attempt - 1)), max_delay)
    return delay + random.uniform(0, delay * 0.3)


class WorkQueue(Generic[K]):
    """Thread-safe reconcile queue."""

    def __init__(
        self,
        base_delay: float = 0.005,
        max_delay: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._base_delay = base_delay
        self._max_delay = max_delay
        self._clock = clock
        self._cond = threading.Condition()
        self._queue: deque[K] = deque()
        self._dirty: set[K] = set()
        self._processing: set[K] = set()
        self._waiting: list[tuple[float, int, K]] = []
        self._ready_at: dict[K, float] = {}
        self._seq = itertools.count()
        self._failures: dict[K, int] = {}
        self._shutting_down = False

    # ── Adding ───────────────────────────────────────────────────

    def add(self, key: K) -> None:
        with self._cond:
            self._add_locked(key)

    def add_after(self, key: K, delay: float) -> None:
        """Queue ``key`` once ``delay`` seconds have passed."""
        with self._cond:
            if self._shutting_down:
                return
            if delay <= 0:
                self._add_locked(key)
                return
            ready = self._clock() + delay
            parked = self._ready_at.get(key)
            if parked is not None and parked <= ready:
                return
            self._ready_at[key] = ready
            heapq.heappush(self._waiting, (ready, next(self._seq), key))
            self._cond.notify()

    def add_rate_limited(self, key: K) -> float:
        """Queue ``key`` after its backoff delay; returns the delay used."""
        with self._cond:
            attempt = self._failures.get(key, 0) + 1
            self._failures[key] = attempt
        delay = backoff_delay(attempt, self._base_delay, self._max_delay)
        logger.debug("Requeue %s: attempt %d, delay %.3fs", key, attempt, delay)
        self.add_after(key, delay)
        return delay

    def forget(self, key: K) -> None:
        """Reset the failure count of ``key``."""
        with self._cond:
            self._failures.pop(key, None)

    def num_requeues(self, key: K) -> int:
        with self._cond:
            return self._failures.get(key, 0)

    # ── Consuming ────────────────────────────────────────────────

    def get(self, timeout: float | None = None) -> K | None:
        """Next key to process, blocking up to ``timeout`` seconds.

        Returns None on timeout or once the queue is shut down.
        """
        deadline = None if timeout is None else time.monotonic() + timeout
        with self._cond:
            while True:
                self._promote_locked()
                if self._queue:
                    key = self._queue.popleft()
                    self._processing.add(key)
                    self._dirty.discard(key)
                    return key
                if self._shutting_down:
                    return None

                wait = None
                if self._waiting:
                    wait = max(0.0, self._waiting[0][0] - self._clock())
                if deadline is not None:
                    remaining = deadline - time.monotonic()
                    if remaining <= 0:
                        return None
                    wait = remaining if wait is None else min(wait, remaining)
                self._cond.wait(wait)

    def done(self, key: K) -> None:
        """Mark ``key`` finished; re-queue it if it was added meanwhile."""
        with self._cond:
            self._processing.discard(key)
            if key in self._dirty:
                self._queue.append(key)
                self._cond.notify()

    def shut_down(self) -> None:
        with self._cond:
            self._shutting_down = True
            self._cond.notify_all()

    @property
    def shutting_down(self) -> bool:
        with self._cond:
            return self._shutting_down

    @property
    def delayed(self) -> int:
        """Number of keys parked by add_after / add_rate_limited."""
        with self._cond:
            return len(self._ready_at)

    def __len__(self) -> int:
        with self._cond:
            return len(self._queue)

    # ── Internals ────────────────────────────────────────────────

    def _add_locked(self, key: K) -> None:
        if self._shutting_down or key in self._dirty:
            return
        self._dirty.add(key)
        if key in self._processing:
            return
        self._queue.append(key)
        self._cond.notify()

    def _promote_locked(self) -> None:
        now = self._clock()
        while self._waiting and self._waiting[0][0] <= now:
            ready, _, key = heapq.heappop(self._waiting)
            # superseded by an earlier add_after
            if self._ready_at.get(key) != ready:
                continue
            del self._ready_at[key]
            self._add_locked(key)
