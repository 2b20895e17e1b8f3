"""
Model Cache

Per-scope TTL cache of resolved weights. Entries are immutable and swapped
under a lock, so a reader sees either the previous entry or the new one.

Every invalidation bumps the scope's generation. A reader that loaded
weights from the store writes them back only if the generations it saw
before the load are unchanged, so a retrain that lands mid-read is never
masked by the older weights.
"""

import logging
import threading
import time
from typing import Callable, Dict, List, NamedTuple, Optional, Tuple

from .constants import MODEL_CACHE_TTL_SECONDS
from .contracts import ModelCacheEntry

logger = logging.getLogger(__name__)


class Generation(NamedTuple):
    scopes: Tuple[str, ...]
    values: Tuple[int, ...]


class ModelCache:
    def __init__(self, ttl_seconds: float = MODEL_CACHE_TTL_SECONDS, clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self._entries: Dict[str, ModelCacheEntry] = {}
        self._generations: Dict[str, int] = {}
        self._epoch = 0

    def expiry(self) -> float:
        return self._clock() + self.ttl_seconds

    def get(self, scope: str) -> Optional[ModelCacheEntry]:
        with self._lock:
            entry = self._entries.get(scope)
            if entry is None:
                return None
            if entry.expires_at <= self._clock():
                del self._entries[scope]
                return None
            return entry

    def _current(self, scopes: Tuple[str, ...]) -> Tuple[int, ...]:
        return (self._epoch,) + tuple(self._generations.get(s, 0) for s in scopes)

    def generation(self, *scopes: str) -> Generation:
        """Snapshot the generations of `scopes`, taken before reading the store."""
        scopes = tuple(dict.fromkeys(scopes))
        with self._lock:
            return Generation(scopes, self._current(scopes))

    def put(self, scope: str, entry: ModelCacheEntry, expected: Optional[Generation] = None) -> bool:
        """
        Store an entry for `scope`.

        Args:
            scope: Cache key
            entry: Resolved weights
            expected: Generation snapshot taken before the weights were read;
                the write is dropped if any of its scopes was invalidated since

        Returns:
            True if the entry was stored
        """
        with self._lock:
            if expected is not None and self._current(expected.scopes) != expected.values:
                logger.info(f"⏭️ Not caching weights for {scope}: invalidated during load")
                return False
            self._entries[scope] = entry
            return True

    def invalidate(self, scope: str) -> List[str]:
        """
        Drop the scope's entry and every entry whose weights came from it
        (e.g. scholarship scopes that fell back to the global model).

        Returns:
            The cache keys that were removed
        """
        with self._lock:
            self._generations[scope] = self._generations.get(scope, 0) + 1
            stale = [
                key for key, entry in self._entries.items()
                if key == scope or entry.source_scope == scope
            ]
            for key in stale:
                del self._entries[key]
        if stale:
            logger.info(f"🧹 Invalidated cached weights for {', '.join(stale)}")
        return stale

    def clear(self) -> None:
        with self._lock:
            self._epoch += 1
            self._entries.clear()

    def scopes(self) -> List[str]:
        with self._lock:
            return sorted(self._entries)
