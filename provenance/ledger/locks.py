"""provenance.ledger.locks

Keyed mutual exclusion: one lock per batch id.

Appends to the same batch queue up behind each other; appends to different
batches never wait on each other. Waiting is bounded. A caller that cannot
get the lock in time gets LockTimeoutError, never a deadlock.
"""

from __future__ import annotations

import threading
from collections.abc import Iterator
from contextlib import contextmanager

from provenance.core.exceptions import LockTimeoutError


class KeyedLock:
    def __init__(self, *, timeout_s: float = 5.0) -> None:
        self.timeout_s = float(timeout_s)
        self._guard = threading.Lock()
        self._locks: dict[str, threading.Lock] = {}
        self._refs: dict[str, int] = {}

    def _checkout(self, key: str) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.Lock()
                self._locks[key] = lock
            self._refs[key] = self._refs.get(key, 0) + 1
            return lock

    def _checkin(self, key: str) -> None:
        with self._guard:
            n = self._refs.get(key, 0) - 1
            if n <= 0:
                self._refs.pop(key, None)
                self._locks.pop(key, None)
            else:
                self._refs[key] = n

    @contextmanager
    def hold(self, key: str, *, timeout_s: float | None = None) -> Iterator[None]:
        """Hold the lock for ``key``.

        Raises:
            LockTimeoutError: not acquired within ``timeout_s``.
        """

        timeout = self.timeout_s if timeout_s is None else float(timeout_s)
        lock = self._checkout(key)
        try:
            if not lock.acquire(timeout=timeout):
                raise LockTimeoutError(
                    f"Timed out after {timeout:.2f}s waiting for batch {key}",
                    batch_id=key,
                    timeout_s=timeout,
                )
            try:
                yield
            finally:
                lock.release()
        finally:
            self._checkin(key)

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)
