# card_identity/services/cache_provider.py
from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Iterable, Optional


class CacheProvider(ABC):
    """
    Minimal cache contract used by the card identity service.

    - `get` returns None on a miss or an expired entry.
    - `set` stores a JSON-safe value for `ttl_seconds` (provider default when None)
      and indexes it under every tag in `tags`.
    - `invalidate_tag` drops every entry carrying the tag and returns how many went.
    """

    @abstractmethod
    def get(self, key: str) -> Optional[Any]:
        ...

    @abstractmethod
    def set(
        self,
        key: str,
        value: Any,
        ttl_seconds: Optional[int] = None,
        tags: Iterable[str] = (),
    ) -> None:
        ...

    @abstractmethod
    def invalidate_key(self, key: str) -> None:
        ...

    @abstractmethod
    def invalidate_tag(self, tag: str) -> int:
        ...
