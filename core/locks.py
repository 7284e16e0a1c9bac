"""
Purpose: Per-key exclusive sections (lock-per-key instead of one global lock).
What it does:
- Hands out one threading.Lock per key (order id, restaurant id).
- Acquisition always uses a timeout; failing to get in raises ContentionError
  instead of blocking forever.
- discard(key) forgets a key's lock once nobody holds or waits on it.

Rule: No domain logic. Callers decide what a key means.
"""

from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from typing import Dict, Iterator, Set

from .errors import ContentionError

logger = logging.getLogger(__name__)


class KeyedLocks:
    """
    Registry of per-key locks.

    Locks are created lazily. A discarded key keeps its lock until the last
    holder or waiter leaves, so two callers never end up on different locks
    for the same key.
    """

    def __init__(self, name: str, timeout_sec: float = 1.0):
        self.name = name
        self.timeout_sec = timeout_sec
        self._guard = threading.Lock()
        self._locks: Dict[str, threading.Lock] = {}
        self._users: Dict[str, int] = {}  # holders + waiters per key
        self._retired: Set[str] = set()

    def _checkout(self, key: str) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.Lock()
                self._locks[key] = lock
            self._users[key] = self._users.get(key, 0) + 1
            return lock

    def _checkin(self, key: str) -> None:
        with self._guard:
            remaining = self._users[key] - 1
            if remaining:
                self._users[key] = remaining
                return
            del self._users[key]
            if key in self._retired:
                self._retired.discard(key)
                del self._locks[key]

    @contextmanager
    def hold(self, key: str, timeout_sec: float | None = None) -> Iterator[None]:
        """
        Enter the exclusive section for `key`.

        Raises ContentionError if the lock is not acquired within the timeout.
        """
        timeout = self.timeout_sec if timeout_sec is None else timeout_sec
        lock = self._checkout(key)
        try:
            if not lock.acquire(timeout=timeout):
                logger.warning(f"{self.name}: lock for {key} not acquired within {timeout}s")
                raise ContentionError(f"{self.name} busy for key {key}", order_id=None)
            try:
                yield
            finally:
                lock.release()
        finally:
            self._checkin(key)

    def discard(self, key: str) -> None:
        """
        Forget `key`. Safe to call while holding it; the lock goes away when
        the last user leaves.
        """
        with self._guard:
            if key not in self._locks:
                return
            if self._users.get(key):
                self._retired.add(key)
            else:
                del self._locks[key]

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)
