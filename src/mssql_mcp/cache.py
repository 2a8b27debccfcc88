"""Time-boxed cache of table listings per database key."""

import time
from typing import Any, Callable, Optional

from .constants import RESOURCE_CACHE_SIZE, RESOURCE_CACHE_TTL


class ResourceCache:
    """Entries expire ``ttl`` seconds after they were set; reads do not refresh them.

    There is no invalidation on schema change; a new table shows up once the
    entry for its database has expired. Only touched from the event loop, so
    no locking.
    """

    def __init__(
        self,
        ttl: float = RESOURCE_CACHE_TTL,
        maxsize: int = RESOURCE_CACHE_SIZE,
        timer: Callable[[], float] = time.monotonic,
    ):
        self._ttl = ttl
        self._maxsize = maxsize
        self._timer = timer
        self._store: dict[str, tuple[Any, float]] = {}

    def get(self, db_key: str) -> Optional[list]:
        entry = self._store.get(db_key)
        if entry is None:
            return None
        value, expires_at = entry
        if expires_at <= self._timer():
            del self._store[db_key]
            return None
        return value

    def set(self, db_key: str, listings: list) -> None:
        self._store.pop(db_key, None)
        if len(self._store) >= self._maxsize:
            # Evict oldest by insertion order
            del self._store[next(iter(self._store))]
        self._store[db_key] = (listings, self._timer() + self._ttl)

    def invalidate(self, db_key: Optional[str] = None) -> None:
        if db_key is None:
            self._store.clear()
        else:
            self._store.pop(db_key, None)

    def __contains__(self, db_key: str) -> bool:
        return self.get(db_key) is not None
