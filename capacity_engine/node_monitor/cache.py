# capacity_engine/node_monitor/cache.py

"""Process-local TTL cache with single-flight refresh per key."""

import logging
import time
from dataclasses import dataclass
from threading import Lock
from typing import Any, Callable, Dict, Generic, Iterable, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class CacheEntry(Generic[T]):
    value: T
    stored_at: float


class SnapshotCache:
    """
    Key -> value store with one TTL for every key.

    Readers never block on a fresh entry. A refresh holds the key's lock,
    so concurrent misses on the same key run the loader once: callers that
    queued behind it reuse its outcome, value or exception, instead of
    calling the loader again.
    """

    def __init__(self, ttl_seconds: float, clock: Callable[[], float] = time.monotonic):
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")

        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: Dict[str, CacheEntry] = {}
        self._key_locks: Dict[str, Lock] = {}
        self._attempts: Dict[str, int] = {}
        self._errors: Dict[str, Exception] = {}
        self._lock = Lock()

    def is_fresh(self, entry: Optional[CacheEntry]) -> bool:
        return entry is not None and (self._clock() - entry.stored_at) < self.ttl_seconds

    def peek(self, key: str) -> Optional[CacheEntry]:
        """Return the entry for ``key`` regardless of age."""
        with self._lock:
            return self._entries.get(key)

    def get(self, key: str) -> Optional[Any]:
        """Return the value for ``key`` if still within the TTL."""
        entry = self.peek(key)
        return entry.value if self.is_fresh(entry) else None

    def set(self, key: str, value: Any) -> None:
        with self._lock:
            self._entries[key] = CacheEntry(value=value, stored_at=self._clock())

    def delete(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self._errors.clear()

    def retain(self, keys: Iterable[str]) -> None:
        """Drop every entry whose key is not in ``keys``."""
        keep = set(keys)
        with self._lock:
            for key in [k for k in self._entries if k not in keep]:
                del self._entries[key]

    def get_or_load(
        self,
        key: str,
        loader: Callable[[Optional[CacheEntry]], T],
        force_refresh: bool = False,
    ) -> T:
        """
        Return a fresh value for ``key``, running ``loader`` at most once
        per refresh.

        Args:
            key: Cache key
            loader: Called with the previous (possibly stale) entry; its
                result is stored. Exceptions propagate and leave the
                previous entry untouched.
            force_refresh: Ignore the TTL

        Returns:
            Cached or freshly loaded value
        """
        with self._lock:
            entry = self._entries.get(key)
            attempt_seen = self._attempts.get(key, 0)

        if not force_refresh and self.is_fresh(entry):
            return entry.value

        with self._key_lock(key):
            with self._lock:
                entry = self._entries.get(key)
                attempt_now = self._attempts.get(key, 0)
                error = self._errors.get(key)

            if attempt_now != attempt_seen:
                logger.debug(f"[cache] {key} refreshed by concurrent caller")
                if error is not None:
                    raise error
                if entry is not None:
                    return entry.value

            if not force_refresh and self.is_fresh(entry):
                return entry.value

            try:
                value = loader(entry)
            except Exception as e:
                self._finish_attempt(key, e)
                raise

            self.set(key, value)
            self._finish_attempt(key, None)
            return value

    def _finish_attempt(self, key: str, error: Optional[Exception]) -> None:
        with self._lock:
            self._attempts[key] = self._attempts.get(key, 0) + 1
            if error is None:
                self._errors.pop(key, None)
            else:
                self._errors[key] = error

    def _key_lock(self, key: str) -> Lock:
        with self._lock:
            lock = self._key_locks.get(key)
            if lock is None:
                lock = Lock()
                self._key_locks[key] = lock
            return lock
