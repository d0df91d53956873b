# card_identity/memory/identity_record_store.py
from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, List, Optional

from sqlalchemy.exc import IntegrityError

from card_identity.core.ids import new_record_id
from card_identity.data.identity_record import (IdentityRecord, coerce_value,
                                                validate_card_fields,
                                                validate_card_key,
                                                validate_owner)
from card_identity.errors import ConflictError, NotFoundError
from card_identity.memory.base_store import BaseSQLAlchemyStore
from card_identity.models.identity_record import IdentityRecordORM


class IdentityRecordRepository(ABC):
    """
    Contract the card identity service is written against.

    Any implementation may be substituted (see `store.cls` in config) as long as it:
      - never returns soft-deleted rows from the `*_active` reads
      - enforces at most one active record per (owner_type, owner_id, flag) and
        reports a violation on `create` as ConflictError
      - raises NotFoundError from `update` / `soft_delete` for missing or deleted ids
      - raises StoreError (or StoreTimeoutError) for backend failures, without retrying
    """

    @abstractmethod
    def find_active(self, owner_type: str, owner_id: str, flag: str) -> Optional[IdentityRecord]:
        ...

    @abstractmethod
    def find_all_active(
        self,
        owner_type: str,
        owner_id: str,
        *,
        order_by: Optional[str] = None,
        desc: bool = False,
    ) -> List[IdentityRecord]:
        ...

    @abstractmethod
    def create(self, owner_type: str, owner_id: str, flag: str, value: Any) -> IdentityRecord:
        ...

    @abstractmethod
    def update(self, record_id: str, value: Any) -> IdentityRecord:
        ...

    @abstractmethod
    def soft_delete(self, record_id: str) -> IdentityRecord:
        ...

    @abstractmethod
    def get_by_id(self, record_id: str, *, include_deleted: bool = False) -> Optional[IdentityRecord]:
        ...

    @abstractmethod
    def find_history(
        self, owner_type: str, owner_id: str, flag: Optional[str] = None
    ) -> List[IdentityRecord]:
        ...


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SQLIdentityRecordStore(BaseSQLAlchemyStore, IdentityRecordRepository):
    """
    SQLAlchemy implementation over `card_identities`.

    Host applications that keep cards in their own table can subclass this and
    point `orm_model` at an ORM class with the same columns.

    Requires DB constraints:
      - card_identities: UNIQUE(reference_type, reference_id, flag) WHERE deleted_at IS NULL
    """

    orm_model = IdentityRecordORM
    default_order_by = "created_at"
    name = "card_identities"

    def __init__(self, session_maker, logger=None):
        super().__init__(session_maker, logger)

    # -------------------------
    # Internal helpers (same session)
    # -------------------------

    def _active_query(self, s):
        return s.query(self.orm_model).filter(self.orm_model.deleted_at.is_(None))

    def _get_active_row(self, s, record_id: str):
        return self._active_query(s).filter(self.orm_model.id == record_id).one_or_none()

    # -------------------------
    # Reads
    # -------------------------

    def find_active(self, owner_type: str, owner_id: str, flag: str) -> Optional[IdentityRecord]:
        owner_type, owner_id, flag = validate_card_key(owner_type, owner_id, flag)

        def op(s):
            row = (
                self._active_query(s)
                .filter_by(reference_type=owner_type, reference_id=owner_id, flag=flag)
                .one_or_none()
            )
            return IdentityRecord.from_orm(row) if row else None

        return self._run(op)

    def find_all_active(
        self,
        owner_type: str,
        owner_id: str,
        *,
        order_by: Optional[str] = None,
        desc: bool = False,
    ) -> List[IdentityRecord]:
        owner_type, owner_id = validate_owner(owner_type, owner_id)
        col = self._order_column(order_by)
        if col is None:
            raise ValueError(f"Unknown order_by column: {order_by!r}")

        def op(s):
            q = self._active_query(s).filter_by(reference_type=owner_type, reference_id=owner_id)
            tie = self.orm_model.id
            if desc:
                q = q.order_by(col.desc(), tie.desc())
            else:
                q = q.order_by(col.asc(), tie.asc())
            return [IdentityRecord.from_orm(r) for r in q.all()]

        return self._run(op)

    def get_by_id(self, record_id: str, *, include_deleted: bool = False) -> Optional[IdentityRecord]:
        def op(s):
            q = s.query(self.orm_model) if include_deleted else self._active_query(s)
            row = q.filter(self.orm_model.id == record_id).one_or_none()
            return IdentityRecord.from_orm(row) if row else None

        return self._run(op)

    def find_history(
        self, owner_type: str, owner_id: str, flag: Optional[str] = None
    ) -> List[IdentityRecord]:
        """Every row for the owner (soft-deleted included), oldest first."""
        owner_type, owner_id = validate_owner(owner_type, owner_id)

        def op(s):
            q = s.query(self.orm_model).filter_by(reference_type=owner_type, reference_id=owner_id)
            if flag is not None:
                q = q.filter(self.orm_model.flag == str(flag))
            q = q.order_by(self.orm_model.created_at.asc(), self.orm_model.id.asc())
            return [IdentityRecord.from_orm(r) for r in q.all()]

        return self._run(op)

    def count_active(self, owner_type: str, owner_id: str) -> int:
        owner_type, owner_id = validate_owner(owner_type, owner_id)

        def op(s):
            return (
                self._active_query(s)
                .filter_by(reference_type=owner_type, reference_id=owner_id)
                .count()
            )

        return self._run(op)

    # -------------------------
    # Writes
    # -------------------------

    def create(self, owner_type: str, owner_id: str, flag: str, value: Any) -> IdentityRecord:
        owner_type, owner_id, flag, value = validate_card_fields(owner_type, owner_id, flag, value)
        now = _utcnow()

        def op(s):
            obj = self.orm_model(
                id=new_record_id(),
                reference_type=owner_type,
                reference_id=owner_id,
                flag=flag,
                value=value,
                created_at=now,
                updated_at=now,
                deleted_at=None,
            )
            s.add(obj)
            try:
                s.flush()
            except IntegrityError as e:
                # race: another writer holds the active slot for this triple
                raise ConflictError(
                    f"Active card already exists for {owner_type}:{owner_id}:{flag}"
                ) from e
            return IdentityRecord.from_orm(obj)

        return self._run(op)

    def update(self, record_id: str, value: Any) -> IdentityRecord:
        value = coerce_value(value)

        def op(s):
            obj = self._get_active_row(s, record_id)
            if obj is None:
                raise NotFoundError(f"No active card with id {record_id!r}")
            obj.value = value
            obj.updated_at = _utcnow()
            s.flush()
            return IdentityRecord.from_orm(obj)

        return self._run(op)

    def soft_delete(self, record_id: str) -> IdentityRecord:
        """Mark the card deleted. A second call for the same id raises NotFoundError."""
        def op(s):
            obj = self._get_active_row(s, record_id)
            if obj is None:
                raise NotFoundError(f"No active card with id {record_id!r}")
            now = _utcnow()
            obj.deleted_at = now
            obj.updated_at = now
            s.flush()
            return IdentityRecord.from_orm(obj)

        return self._run(op)
