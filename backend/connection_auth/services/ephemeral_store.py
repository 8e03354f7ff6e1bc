import threading
from datetime import datetime, timedelta
from typing import Any, Dict, Optional, Protocol, Tuple

from connection_auth.core.clock import Clock, utcnow


class EphemeralStore(Protocol):
    """Keyed store whose entries disappear after a TTL"""

    def put(self, key: str, value: Any, ttl: timedelta) -> None: ...

    def pop(self, key: str) -> Optional[Any]:
        """Remove and return the value, or None when absent or evicted"""


class InMemoryTTLStore:
    """
    Process-local TTL store.

    Entries are evicted lazily on access. Values carry their own expiry, so
    callers pass a ``ttl`` with a grace period when they need to tell an
    expired entry from an unknown one.
    """

    def __init__(self, clock: Clock = utcnow):
        self.clock = clock
        self._entries: Dict[str, Tuple[Any, datetime]] = {}
        self._lock = threading.Lock()

    def put(self, key: str, value: Any, ttl: timedelta) -> None:
        with self._lock:
            self._evict()
            self._entries[key] = (value, self.clock() + ttl)

    def pop(self, key: str) -> Optional[Any]:
        with self._lock:
            self._evict()
            entry = self._entries.pop(key, None)
            return entry[0] if entry else None

    def __len__(self) -> int:
        with self._lock:
            self._evict()
            return len(self._entries)

    def _evict(self):
        now = self.clock()
        expired = [key for key, (_, evict_at) in self._entries.items() if evict_at <= now]
        for key in expired:
            del self._entries[key]
