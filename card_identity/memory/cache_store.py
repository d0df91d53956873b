# card_identity/memory/cache_store.py
from __future__ import annotations

import time
from typing import Any, Callable, Iterable, Optional

from sqlalchemy.exc import IntegrityError

from card_identity.constants import DEFAULT_CACHE_TTL_SECONDS
from card_identity.memory.base_store import BaseSQLAlchemyStore
from card_identity.models.cache_entry import CacheEntryORM, CacheTagORM
from card_identity.services.cache_provider import CacheProvider


class SQLCacheStore(BaseSQLAlchemyStore, CacheProvider):
    """
    Portable SQLAlchemy L2 cache shared by every process pointing at the same DB.

    Defaults
    --------
    - Fixed TTL measured from the write (`expires_at`); reads never extend it.
    - JSON payloads.
    - No dialect-specific UPSERT; uses update-then-insert with a race-safe fallback.
    - Give it its own engine with a short statement timeout: a slow cache must
      degrade into a miss, not hold up the caller.
    """

    orm_model = CacheEntryORM
    default_order_by = "created_at"
    name = "card_identity_cache"

    def __init__(
        self,
        session_maker,
        logger=None,
        *,
        default_ttl: int = DEFAULT_CACHE_TTL_SECONDS,
        clock: Callable[[], float] = time.time,
    ):
        super().__init__(session_maker, logger)
        self._ttl = int(default_ttl)
        self._clock = clock

    # ---------------------------------------------------------------------
    # CacheProvider
    # ---------------------------------------------------------------------
    def get(self, key: str) -> Optional[Any]:
        now = self._clock()

        def op(s):
            row = (
                s.query(CacheEntryORM)
                .filter(CacheEntryORM.key == key, CacheEntryORM.expires_at > now)
                .first()
            )
            return row.value_json if row else None

        return self._run(op)

    def set(
        self,
        key: str,
        value: Any,
        ttl_seconds: Optional[int] = None,
        tags: Iterable[str] = (),
    ) -> None:
        """
        Portable upsert: try UPDATE, if 0 rows affected then INSERT.
        Tags are replaced wholesale on every write.
        """
        now = self._clock()
        ttl_s = self._ttl if ttl_seconds is None else int(ttl_seconds)
        tag_set = sorted(set(tags))
        values = {
            CacheEntryORM.value_json: value,
            CacheEntryORM.created_at: now,
            CacheEntryORM.expires_at: now + ttl_s,
        }

        def op(s):
            updated = (
                s.query(CacheEntryORM)
                .filter(CacheEntryORM.key == key)
                .update(values, synchronize_session=False)
            )
            if not updated:
                obj = CacheEntryORM(
                    key=key,
                    value_json=value,
                    created_at=now,
                    expires_at=now + ttl_s,
                )
                try:
                    s.add(obj)
                    s.flush()
                except IntegrityError:
                    # Race: someone inserted the same key; overwrite theirs
                    s.rollback()
                    s.query(CacheEntryORM).filter(CacheEntryORM.key == key).update(
                        values, synchronize_session=False
                    )

            s.query(CacheTagORM).filter(CacheTagORM.key == key).delete(synchronize_session=False)
            for tag in tag_set:
                s.add(CacheTagORM(key=key, tag=tag))

        self._run(op)

    def invalidate_key(self, key: str) -> None:
        def op(s):
            s.query(CacheTagORM).filter(CacheTagORM.key == key).delete(synchronize_session=False)
            s.query(CacheEntryORM).filter(CacheEntryORM.key == key).delete(synchronize_session=False)

        self._run(op)

    def invalidate_tag(self, tag: str) -> int:
        def op(s):
            keys = [k for (k,) in s.query(CacheTagORM.key).filter(CacheTagORM.tag == tag).all()]
            if not keys:
                return 0
            s.query(CacheTagORM).filter(CacheTagORM.key.in_(keys)).delete(synchronize_session=False)
            return (
                s.query(CacheEntryORM)
                .filter(CacheEntryORM.key.in_(keys))
                .delete(synchronize_session=False)
            )

        return self._run(op)

    # ---------------------------------------------------------------------
    # Maintenance / retention
    # ---------------------------------------------------------------------
    def delete_expired(self) -> int:
        now = self._clock()

        def op(s):
            keys = [
                k
                for (k,) in s.query(CacheEntryORM.key)
                .filter(CacheEntryORM.expires_at <= now)
                .all()
            ]
            if not keys:
                return 0
            s.query(CacheTagORM).filter(CacheTagORM.key.in_(keys)).delete(synchronize_session=False)
            return (
                s.query(CacheEntryORM)
                .filter(CacheEntryORM.key.in_(keys))
                .delete(synchronize_session=False)
            )

        removed = self._run(op)
        if removed and self.logger:
            self.logger.log("CacheEntriesExpired", {"store": self.name, "removed": removed})
        return removed
