from __future__ import annotations

"""Per-key locking utilities.

In-process ``threading.Lock`` objects keyed by an arbitrary string (tenant id
for the token cache). Locks are created lazily and kept for the life of the
owner.
"""

from contextlib import contextmanager
import threading
from typing import Dict, Iterator


class KeyedLocks:
    def __init__(self) -> None:
        self._locks: Dict[str, threading.Lock] = {}
        self._master_lock = threading.Lock()

    @contextmanager
    def hold(self, key: str) -> Iterator[None]:
        """Context manager acquiring the lock for ``key``."""
        with self._master_lock:
            lock = self._locks.setdefault(key, threading.Lock())
        lock.acquire()
        try:
            yield
        finally:
            lock.release()
