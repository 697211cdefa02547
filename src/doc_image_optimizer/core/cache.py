"""Process-wide cache of optimized images shared by concurrent batch jobs."""

import hashlib
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, Optional

from .models import OptimizedImage


def make_key(data: bytes, signature: str) -> str:
    """Cache key for ``data`` optimized under a profile ``signature``."""
    return f"{hashlib.sha256(data).hexdigest()}:{signature}"


@dataclass
class CacheEntry:
    value: OptimizedImage
    expires_at: float


class _Pending:
    """A key some caller is currently computing."""

    def __init__(self):
        self.done = threading.Event()
        self.value: Optional[OptimizedImage] = None


class ReservationKind(str, Enum):
    HIT = "hit"
    OWNER = "owner"
    WAITER = "waiter"


class Reservation:
    """
    Outcome of an atomic cache lookup.

    ``HIT`` carries the cached value. ``OWNER`` means this caller must compute
    the value and then call ``complete`` or ``abandon``. ``WAITER`` means
    another caller is computing it; ``wait`` blocks until it finishes.
    """

    def __init__(
        self,
        cache: "CompressedImageCache",
        key: str,
        kind: ReservationKind,
        value: Optional[OptimizedImage] = None,
        pending: Optional[_Pending] = None,
    ):
        self.cache = cache
        self.key = key
        self.kind = kind
        self.value = value
        self._pending = pending
        self.finished = kind is not ReservationKind.OWNER

    def complete(self, value: OptimizedImage) -> None:
        if self.kind is not ReservationKind.OWNER or self.finished:
            raise RuntimeError("only an unfinished owner reservation can be completed")
        self.cache._finish(self.key, self._pending, value)
        self.value = value
        self.finished = True

    def abandon(self) -> None:
        """Release the key without storing a value; waiters receive None."""
        if self.kind is not ReservationKind.OWNER or self.finished:
            raise RuntimeError("only an unfinished owner reservation can be abandoned")
        self.cache._finish(self.key, self._pending, None)
        self.finished = True

    def wait(self, timeout: Optional[float] = None) -> Optional[OptimizedImage]:
        """Block until the owning caller finishes; None if it failed or timed out."""
        if self.kind is ReservationKind.HIT:
            return self.value
        if self._pending is None or not self._pending.done.wait(timeout):
            return None
        self.value = self._pending.value
        return self.value


class CompressedImageCache:
    """
    LRU cache with TTL for optimized images.

    All reads and writes happen under one lock and never wait on computation,
    so readers observe either the previous or the new value. Computation runs
    outside the lock; concurrent requests for a key being computed wait on
    that computation instead of repeating it.
    """

    def __init__(
        self,
        capacity: int = 512,
        ttl_seconds: float = 3600.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        if capacity <= 0:
            raise ValueError("capacity must be positive")
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        self.capacity = capacity
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: "OrderedDict[str, CacheEntry]" = OrderedDict()
        self._pending: Dict[str, _Pending] = {}
        self._lock = threading.Lock()
        self._hits = 0
        self._misses = 0
        self._evictions = 0
        self._expirations = 0

    def _lookup_locked(self, key: str) -> Optional[OptimizedImage]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if entry.expires_at <= self._clock():
            del self._entries[key]
            self._expirations += 1
            return None
        self._entries.move_to_end(key)
        return entry.value

    def get(self, key: str) -> Optional[OptimizedImage]:
        with self._lock:
            value = self._lookup_locked(key)
            if value is None:
                self._misses += 1
            else:
                self._hits += 1
            return value

    def reserve(self, key: str) -> Reservation:
        """Atomically look up ``key`` or claim the right to compute it."""
        with self._lock:
            value = self._lookup_locked(key)
            if value is not None:
                self._hits += 1
                return Reservation(self, key, ReservationKind.HIT, value=value)
            self._misses += 1
            pending = self._pending.get(key)
            if pending is not None:
                return Reservation(self, key, ReservationKind.WAITER, pending=pending)
            pending = _Pending()
            self._pending[key] = pending
            return Reservation(self, key, ReservationKind.OWNER, pending=pending)

    def _finish(self, key: str, pending: Optional[_Pending], value: Optional[OptimizedImage]) -> None:
        with self._lock:
            if value is not None:
                self._store_locked(key, value)
            if pending is not None and self._pending.get(key) is pending:
                del self._pending[key]
        if pending is not None:
            pending.value = value
            pending.done.set()

    def _store_locked(self, key: str, value: OptimizedImage) -> None:
        self._entries[key] = CacheEntry(value=value, expires_at=self._clock() + self.ttl_seconds)
        self._entries.move_to_end(key)
        while len(self._entries) > self.capacity:
            self._entries.popitem(last=False)
            self._evictions += 1

    def put(self, key: str, value: OptimizedImage) -> None:
        with self._lock:
            self._store_locked(key, value)

    def get_or_compute(
        self, key: str, compute: Callable[[], OptimizedImage]
    ) -> OptimizedImage:
        """
        Return the cached value for ``key`` or compute and store it.

        Only one concurrent caller runs ``compute`` per key. If it raises, the
        key is released, the error propagates to that caller, and the waiting
        callers retry the lookup.
        """
        while True:
            reservation = self.reserve(key)
            if reservation.kind is ReservationKind.HIT:
                return reservation.value
            if reservation.kind is ReservationKind.WAITER:
                value = reservation.wait()
                if value is not None:
                    return value
                continue
            try:
                value = compute()
            except BaseException:
                reservation.abandon()
                raise
            reservation.complete(value)
            return value

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, key: str) -> bool:
        with self._lock:
            return self._lookup_locked(key) is not None

    def stats(self) -> Dict[str, int]:
        with self._lock:
            return {
                "size": len(self._entries),
                "capacity": self.capacity,
                "hits": self._hits,
                "misses": self._misses,
                "evictions": self._evictions,
                "expirations": self._expirations,
                "in_flight": len(self._pending),
            }
