"""Per-key mutual exclusion for scenario transitions and facet reviews"""

import logging
import threading
from contextlib import contextmanager
from typing import Dict, Iterator, Optional

logger = logging.getLogger(__name__)


class LockUnavailable(Exception):
    """Raised when a keyed lock cannot be acquired"""

    def __init__(self, key: str):
        super().__init__(f"Lock for '{key}' is held")
        self.key = key


class KeyedLockRegistry:
    """
    In-process table of locks keyed by entity id.

    Different keys never contend. Entries are reference counted and dropped
    once no holder or waiter remains, so the table does not grow with the
    number of ids ever seen.
    """

    def __init__(self, name: str = 'locks'):
        self.name = name
        self._guard = threading.Lock()
        self._locks: Dict[str, threading.Lock] = {}
        self._refcounts: Dict[str, int] = {}

    def _checkout(self, key: str) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.Lock()
                self._locks[key] = lock
                self._refcounts[key] = 0
            self._refcounts[key] += 1
            return lock

    def _checkin(self, key: str) -> None:
        with self._guard:
            self._refcounts[key] -= 1
            if self._refcounts[key] == 0:
                del self._refcounts[key]
                del self._locks[key]

    @contextmanager
    def hold(self, key: str, blocking: bool = True, timeout: Optional[float] = None) -> Iterator[None]:
        """
        Hold the lock for ``key`` for the duration of the block.

        Args:
            key: entity id
            blocking: wait for the lock when it is held elsewhere
            timeout: maximum wait in seconds when blocking (None waits forever)

        Raises:
            LockUnavailable: non-blocking and the lock is held, or the timeout expired
        """
        lock = self._checkout(key)
        if blocking:
            acquired = lock.acquire(timeout=-1 if timeout is None else timeout)
        else:
            acquired = lock.acquire(blocking=False)

        if not acquired:
            self._checkin(key)
            logger.warning(f"[{self.name}] lock contention on {key}")
            raise LockUnavailable(key)

        try:
            yield
        finally:
            lock.release()
            self._checkin(key)

    def is_held(self, key: str) -> bool:
        with self._guard:
            lock = self._locks.get(key)
            return lock is not None and lock.locked()
