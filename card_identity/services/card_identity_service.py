# card_identity/services/card_identity_service.py
from __future__ import annotations

import threading
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional, Tuple

from card_identity.constants import CACHE_TAG, DEFAULT_CACHE_TTL_SECONDS
from card_identity.data.identity_record import (IdentityRecord,
                                                validate_card_fields,
                                                validate_card_key,
                                                validate_owner)
from card_identity.errors import ConflictError, NotFoundError
from card_identity.memory.identity_record_store import IdentityRecordRepository
from card_identity.services.cache_provider import CacheProvider
from card_identity.services.service_protocol import Service
from card_identity.utils.cache_keys import (OwnerGenerations, card_key,
                                            owner_list_key, owner_write_keys)


class CardIdentityService(Service):
    """
    Upsert coordinator for identity cards.

    Writes go through `set_card`: callers never need to know whether the owner
    already holds a card of that kind. Reads are read-through on the injected
    cache; the store stays the source of truth.

    Cache rules:
      - keys: one per owner (list) and one per (owner, flag) (single card)
      - every entry carries the shared tag (default "card_identity")
      - entries expire after `ttl_seconds` even without a write
      - a write drops only the two keys of the (owner, flag) it touched
      - a read that overlapped a write of the same owner does not fill the cache
      - any cache failure is logged and treated as a miss; it never fails a call
    """

    def __init__(
        self,
        store: IdentityRecordRepository,
        cache: Optional[CacheProvider] = None,
        cfg: Optional[Mapping[str, Any]] = None,
        logger: Any = None,
    ):
        self.store = store
        self.cache = cache
        self.cfg = cfg or {}
        self.logger = logger

        cache_cfg = self.cfg.get("cache", {}) or {}
        self.ttl_seconds = int(cache_cfg.get("ttl_seconds", DEFAULT_CACHE_TTL_SECONDS))
        self.cache_tag = str(cache_cfg.get("tag", CACHE_TAG))
        self._generations = OwnerGenerations()

        self._metrics_lock = threading.Lock()
        self._metrics = {
            "hits": 0,
            "misses": 0,
            "fills": 0,
            "skipped_fills": 0,
            "invalidations": 0,
            "cache_errors": 0,
            "creates": 0,
            "updates": 0,
            "deletes": 0,
            "conflict_retries": 0,
        }

    @property
    def name(self) -> str:
        return "card-identity-v1"

    # -------- Service lifecycle --------

    def initialize(self, **kwargs) -> None:
        if "ttl_seconds" in kwargs:
            self.ttl_seconds = int(kwargs["ttl_seconds"])
        if "cache_tag" in kwargs:
            self.cache_tag = str(kwargs["cache_tag"])
        if self.logger:
            self.logger.log(
                "CardIdentityServiceInit",
                {
                    "store": type(self.store).__name__,
                    "cache": type(self.cache).__name__ if self.cache else None,
                    "ttl_seconds": self.ttl_seconds,
                    "tag": self.cache_tag,
                },
            )

    def health_check(self) -> Dict[str, Any]:
        with self._metrics_lock:
            metrics = dict(self._metrics)
        return {
            "status": "healthy" if metrics["cache_errors"] == 0 else "degraded",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "metrics": metrics,
            "store": type(self.store).__name__,
            "cache": type(self.cache).__name__ if self.cache else None,
            "ttl_seconds": self.ttl_seconds,
        }

    def shutdown(self) -> None:
        if self.logger:
            self.logger.log("CardIdentityServiceShutdown", {"metrics": self.health_check()["metrics"]})

    # -------- Public API --------

    def set_card(self, owner_type: Any, owner_id: Any, flag: Any, value: Any) -> IdentityRecord:
        """
        Create or update the owner's active card of kind `flag`.

        Raises:
            ValidationError: empty or oversized field
            ConflictError: a concurrent create won twice in a row
            StoreError / StoreTimeoutError: backend failure
        """
        owner_type, owner_id, flag, value = validate_card_fields(owner_type, owner_id, flag, value)

        record, event = None, "CardUpdated"
        existing = self._lookup_active(owner_type, owner_id, flag)
        if existing is not None:
            try:
                record = self.store.update(existing.id, value)
                self._count("updates")
            except NotFoundError:
                # cached/read row vanished under us (deleted concurrently); create instead
                self._cache_invalidate(card_key(owner_type, owner_id, flag))

        if record is None:
            record, created = self._create_with_retry(owner_type, owner_id, flag, value)
            event = "CardCreated" if created else "CardUpdated"

        self._invalidate_owner(owner_type, owner_id, flag)

        if self.logger:
            self.logger.log(
                event,
                {"id": record.id, "owner_type": owner_type, "owner_id": owner_id, "flag": flag},
            )
        return record

    def set_cards(
        self, owner_type: Any, owner_id: Any, cards: Mapping[str, Any]
    ) -> Dict[str, IdentityRecord]:
        """Apply `set_card` for each flag -> value. Stops at the first failure."""
        return {flag: self.set_card(owner_type, owner_id, flag, value) for flag, value in cards.items()}

    def get_card(self, owner_type: Any, owner_id: Any, flag: Any) -> Optional[IdentityRecord]:
        owner_type, owner_id, flag = validate_card_key(owner_type, owner_id, flag)
        return self._lookup_active(owner_type, owner_id, flag)

    def get_card_value(
        self, owner_type: Any, owner_id: Any, flag: Any, default: Optional[str] = None
    ) -> Optional[str]:
        record = self.get_card(owner_type, owner_id, flag)
        return record.value if record is not None else default

    def list_cards(self, owner_type: Any, owner_id: Any) -> List[IdentityRecord]:
        owner_type, owner_id = validate_owner(owner_type, owner_id)
        key = owner_list_key(owner_type, owner_id)

        cached = self._cache_get(key)
        if cached is not None:
            try:
                records = [IdentityRecord.from_dict(d) for d in cached]
            except (KeyError, TypeError, ValueError) as e:
                self._cache_failed("decode", key, e)
            else:
                self._count("hits")
                return records

        self._count("misses")
        token = self._generations.token(owner_type, owner_id)
        records = self.store.find_all_active(owner_type, owner_id)
        self._cache_fill(owner_type, owner_id, token, key, [r.to_dict() for r in records])
        return records

    def delete_card(self, record_id: str) -> None:
        """Soft-delete a card. Deleting the same id twice raises NotFoundError."""
        record = self.store.soft_delete(record_id)
        self._count("deletes")
        self._invalidate_owner(record.owner_type, record.owner_id, record.flag)
        if self.logger:
            self.logger.log(
                "CardDeleted",
                {"id": record.id, "owner_type": record.owner_type, "owner_id": record.owner_id, "flag": record.flag},
            )

    def card_history(
        self, owner_type: Any, owner_id: Any, flag: Optional[Any] = None
    ) -> List[IdentityRecord]:
        """Audit view: every card row of the owner, soft-deleted ones included. Never cached."""
        owner_type, owner_id = validate_owner(owner_type, owner_id)
        return self.store.find_history(owner_type, owner_id, flag)

    def flush_cache(self) -> int:
        """Drop every entry carrying the shared tag."""
        if self.cache is None:
            return 0
        try:
            removed = self.cache.invalidate_tag(self.cache_tag)
        except Exception as e:
            self._cache_failed("invalidate_tag", self.cache_tag, e)
            return 0
        if self.logger:
            self.logger.log("CardCacheFlushed", {"tag": self.cache_tag, "removed": removed})
        return removed

    # -------- Upsert internals --------

    def _lookup_active(self, owner_type: str, owner_id: str, flag: str) -> Optional[IdentityRecord]:
        key = card_key(owner_type, owner_id, flag)
        cached = self._cache_get(key)
        if cached is not None:
            try:
                record = IdentityRecord.from_dict(cached)
            except (KeyError, TypeError, ValueError) as e:
                self._cache_failed("decode", key, e)
            else:
                self._count("hits")
                return record

        self._count("misses")
        token = self._generations.token(owner_type, owner_id)
        record = self.store.find_active(owner_type, owner_id, flag)
        if record is not None:
            self._cache_fill(owner_type, owner_id, token, key, record.to_dict())
        return record

    def _create_with_retry(
        self, owner_type: str, owner_id: str, flag: str, value: str
    ) -> Tuple[IdentityRecord, bool]:
        """Returns (record, created)."""
        try:
            record = self.store.create(owner_type, owner_id, flag, value)
            self._count("creates")
            return record, True
        except ConflictError:
            self._count("conflict_retries")

        # Lost the create race: the winner's row is the one to update. One retry only.
        if self.logger:
            self.logger.log(
                "CardCreateRaceRetried",
                {"owner_type": owner_type, "owner_id": owner_id, "flag": flag},
            )
        current = self.store.find_active(owner_type, owner_id, flag)
        if current is None:
            raise ConflictError(
                f"Card {owner_type}:{owner_id}:{flag} changed concurrently; retry the request"
            )
        try:
            record = self.store.update(current.id, value)
        except NotFoundError as e:
            raise ConflictError(
                f"Card {owner_type}:{owner_id}:{flag} changed concurrently; retry the request"
            ) from e
        self._count("updates")
        return record, False

    # -------- Cache internals (never raise) --------

    def _count(self, metric: str, n: int = 1) -> None:
        with self._metrics_lock:
            self._metrics[metric] += n

    def _cache_failed(self, op: str, key: str, error: Exception) -> None:
        self._count("cache_errors")
        if self.logger:
            self.logger.warning(
                "CardCacheError",
                {"op": op, "key": key, "error": f"{error.__class__.__name__}: {error}"},
            )

    def _cache_get(self, key: str) -> Optional[Any]:
        if self.cache is None:
            return None
        try:
            return self.cache.get(key)
        except Exception as e:
            self._cache_failed("get", key, e)
            return None

    def _cache_set(self, key: str, value: Any) -> None:
        if self.cache is None:
            return
        try:
            self.cache.set(key, value, ttl_seconds=self.ttl_seconds, tags=(self.cache_tag,))
            self._count("fills")
        except Exception as e:
            self._cache_failed("set", key, e)

    def _cache_invalidate(self, key: str) -> None:
        if self.cache is None:
            return
        try:
            self.cache.invalidate_key(key)
            self._count("invalidations")
        except Exception as e:
            self._cache_failed("invalidate_key", key, e)

    def _cache_fill(self, owner_type: str, owner_id: str, token: int, key: str, value: Any) -> None:
        """Fill `key` with a store read taken at `token`, unless a write of the owner came in between."""
        if not self._generations.is_current(owner_type, owner_id, token):
            self._count("skipped_fills")
            return
        self._cache_set(key, value)
        # a write may have bumped and invalidated between the check and the set
        if not self._generations.is_current(owner_type, owner_id, token):
            self._count("skipped_fills")
            self._cache_invalidate(key)

    def _invalidate_owner(self, owner_type: str, owner_id: str, flag: str) -> None:
        self._generations.bump(owner_type, owner_id)
        for key in owner_write_keys(owner_type, owner_id, flag):
            self._cache_invalidate(key)
