# card_identity/services/memory_cache.py
from __future__ import annotations

import time
from collections import OrderedDict
from dataclasses import dataclass, field
from threading import RLock
from typing import Any, Callable, Dict, Iterable, Optional, Set

from card_identity.constants import DEFAULT_CACHE_TTL_SECONDS
from card_identity.services.cache_provider import CacheProvider


@dataclass
class _Entry:
    value: Any
    expires_at: float
    tags: Set[str] = field(default_factory=set)


class InMemoryCacheProvider(CacheProvider):
    """
    Process-local LRU with per-entry expiry and a tag index.

    Thread-safe via a re-entrant lock. Expired entries are dropped lazily on
    access, and eagerly by `purge_expired()`.
    """

    def __init__(
        self,
        max_size: int = 10_000,
        default_ttl: int = DEFAULT_CACHE_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        if max_size <= 0:
            raise ValueError("max_size must be > 0")
        self._data: OrderedDict[str, _Entry] = OrderedDict()
        self._tags: Dict[str, Set[str]] = {}
        self._max = int(max_size)
        self._default_ttl = int(default_ttl)
        self._clock = clock
        self._lock = RLock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._data)

    def __contains__(self, key: str) -> bool:
        return self.get(key) is not None

    # -------- internal (lock held) --------

    def _drop(self, key: str) -> None:
        entry = self._data.pop(key, None)
        if entry is None:
            return
        for tag in entry.tags:
            keys = self._tags.get(tag)
            if keys is not None:
                keys.discard(key)
                if not keys:
                    del self._tags[tag]

    # -------- CacheProvider --------

    def get(self, key: str) -> Optional[Any]:
        with self._lock:
            entry = self._data.get(key)
            if entry is None:
                return None
            if entry.expires_at <= self._clock():
                self._drop(key)
                return None
            self._data.move_to_end(key, last=True)
            return entry.value

    def set(
        self,
        key: str,
        value: Any,
        ttl_seconds: Optional[int] = None,
        tags: Iterable[str] = (),
    ) -> None:
        ttl = self._default_ttl if ttl_seconds is None else int(ttl_seconds)
        with self._lock:
            self._drop(key)
            entry = _Entry(value=value, expires_at=self._clock() + ttl, tags=set(tags))
            self._data[key] = entry
            for tag in entry.tags:
                self._tags.setdefault(tag, set()).add(key)
            while len(self._data) > self._max:
                # evict least-recently-used (front)
                oldest = next(iter(self._data))
                self._drop(oldest)

    def invalidate_key(self, key: str) -> None:
        with self._lock:
            self._drop(key)

    def invalidate_tag(self, tag: str) -> int:
        with self._lock:
            keys = list(self._tags.get(tag, ()))
            for key in keys:
                self._drop(key)
            return len(keys)

    # -------- maintenance --------

    def purge_expired(self) -> int:
        with self._lock:
            now = self._clock()
            expired = [k for k, e in self._data.items() if e.expires_at <= now]
            for key in expired:
                self._drop(key)
            return len(expired)

    def clear(self) -> None:
        with self._lock:
            self._data.clear()
            self._tags.clear()

    def keys(self):
        with self._lock:
            return list(self._data.keys())
