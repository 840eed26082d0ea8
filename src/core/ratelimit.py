"""Login rate limiting.

A reset-on-expiry counter per key: the first call opens a window, later calls
increment the count, and once more than ``window`` has passed since the
window opened the count restarts at 1. This is separate from account lockout,
which is per admin; the limiter is per (identity, origin) and runs before any
credential check.

``InMemoryRateLimitStore`` keeps counters in process memory and suits a
single long-lived process. The CLI runs one process per command, so it uses
the SQLite adapter, which keeps counters in the database.
"""

from __future__ import annotations

import logging
import threading
from datetime import datetime, timedelta
from typing import Callable, Optional

from core.config import RateLimitConfig
from core.models import RateLimitEntry, utc_now
from core.ports import RateLimitStore

LOGGER = logging.getLogger(__name__)

# Stale counters are dropped once every this many attempts.
PURGE_EVERY = 100


class InMemoryRateLimitStore:
    """Process-local counters guarded by a lock."""

    def __init__(self) -> None:
        self._entries: dict[str, RateLimitEntry] = {}
        self._lock = threading.Lock()

    def hit(self, key: str, now: datetime, window: timedelta) -> RateLimitEntry:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None or now - entry.window_start > window:
                entry = RateLimitEntry(count=1, window_start=now)
                self._entries[key] = entry
            else:
                entry.count += 1
            return RateLimitEntry(count=entry.count, window_start=entry.window_start)

    def purge_rate_limits(self, now: datetime, window: timedelta) -> int:
        """Drop entries whose window has elapsed; return how many were removed."""

        with self._lock:
            stale = [key for key, entry in self._entries.items() if now - entry.window_start > window]
            for key in stale:
                del self._entries[key]
            return len(stale)


class RateLimiter:
    def __init__(
        self,
        store: RateLimitStore,
        config: RateLimitConfig,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._store = store
        self._config = config
        self._clock = clock
        self._hits = 0

    def allow(self, key: str) -> bool:
        """Count one attempt for ``key`` and report whether it is within limits."""

        now = self._clock()
        entry = self._store.hit(key, now, self._config.window)
        self._hits += 1
        if self._hits % PURGE_EVERY == 0:
            self.purge()
        allowed = entry.count <= self._config.max_attempts
        if not allowed:
            LOGGER.warning("Rate limit exceeded (attempt %s in current window)", entry.count)
        return allowed

    def purge(self) -> int:
        """Drop counters whose window has elapsed."""

        removed = self._store.purge_rate_limits(self._clock(), self._config.window)
        LOGGER.debug("Purged %s stale rate-limit counters", removed)
        return removed


def login_key(email: str, origin: Optional[str]) -> str:
    """Composite key of normalized email and client address."""

    return f"{email.strip().lower()}_{origin or 'unknown'}"
