# card_identity/utils/cache_keys.py
from __future__ import annotations

import threading
from typing import List
from urllib.parse import quote

from card_identity.constants import CACHE_KEY_PREFIX


def _part(raw: str) -> str:
    # ':' inside an owner id must not collide with the key separator
    return quote(str(raw), safe="")


def owner_list_key(owner_type: str, owner_id: str, *, prefix: str = CACHE_KEY_PREFIX) -> str:
    """Key for 'all active cards of this owner'."""
    return f"{prefix}:list:{_part(owner_type)}:{_part(owner_id)}"


def card_key(owner_type: str, owner_id: str, flag: str, *, prefix: str = CACHE_KEY_PREFIX) -> str:
    """Key for the single active card of (owner, flag)."""
    return f"{prefix}:card:{_part(owner_type)}:{_part(owner_id)}:{_part(flag)}"


def owner_write_keys(
    owner_type: str, owner_id: str, flag: str, *, prefix: str = CACHE_KEY_PREFIX
) -> List[str]:
    """Every key a write to (owner, flag) makes stale. Nothing of other owners or flags."""
    return [
        owner_list_key(owner_type, owner_id, prefix=prefix),
        card_key(owner_type, owner_id, flag, prefix=prefix),
    ]


class OwnerGenerations:
    """
    Per-owner write counters that keep a slow read from re-caching a value
    a concurrent write already replaced.

    A reader takes `token()` before its store read and only keeps its cache
    fill while `is_current()` still holds. Writers `bump()` after the store
    write and before dropping the owner's keys. Owners hash onto a fixed
    number of stripes, so memory stays bounded; a shared stripe only costs a
    skipped fill.
    """

    def __init__(self, stripes: int = 1024):
        self._stripes = [0] * max(1, int(stripes))
        self._lock = threading.Lock()

    def _slot(self, owner_type: str, owner_id: str) -> int:
        return hash(owner_list_key(owner_type, owner_id)) % len(self._stripes)

    def token(self, owner_type: str, owner_id: str) -> int:
        with self._lock:
            return self._stripes[self._slot(owner_type, owner_id)]

    def bump(self, owner_type: str, owner_id: str) -> None:
        with self._lock:
            self._stripes[self._slot(owner_type, owner_id)] += 1

    def is_current(self, owner_type: str, owner_id: str, token: int) -> bool:
        return self.token(owner_type, owner_id) == token
