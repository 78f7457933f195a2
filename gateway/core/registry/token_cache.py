from __future__ import annotations

import time
from contextlib import AbstractContextManager
from dataclasses import dataclass
from typing import Callable

from gateway.core.locks import KeyedLocks


@dataclass(frozen=True)
class CachedToken:
    token: str
    expires_at: float


class TokenCache:
    """Process-wide bearer token cache keyed by tenant.

    ``expires_at`` already has the refresh skew subtracted, so an entry is
    served only while ``clock() < expires_at``.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self.clock = clock
        self._entries: dict[str, CachedToken] = {}
        self._locks = KeyedLocks()

    def lock(self, key: str) -> AbstractContextManager[None]:
        return self._locks.hold(key)

    def get(self, key: str) -> str | None:
        entry = self._entries.get(key)
        if entry is None or self.clock() >= entry.expires_at:
            return None
        return entry.token

    def set(self, key: str, token: str, lifetime_seconds: float, *, skew_seconds: float = 60) -> CachedToken:
        entry = CachedToken(token=token, expires_at=self.clock() + lifetime_seconds - skew_seconds)
        self._entries[key] = entry
        return entry

    def invalidate(self, key: str, token: str | None = None) -> bool:
        """Drop the entry for ``key``.

        With ``token`` given the entry is dropped only if it still holds that
        token, so a rejection seen by one request cannot discard a token another
        request has just refreshed.
        """

        with self.lock(key):
            entry = self._entries.get(key)
            if entry is None:
                return False
            if token is not None and entry.token != token:
                return False
            del self._entries[key]
            return True


__all__ = ["CachedToken", "TokenCache"]
