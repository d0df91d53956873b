# card_identity/memory/base_store.py
from __future__ import annotations

from typing import Any, Callable, Optional, Type

from sqlalchemy import func
from sqlalchemy.orm import sessionmaker

from card_identity.utils.db_scope import run_in_session


class BaseSQLAlchemyStore:
    """
    Generic SQLAlchemy store.
    Subclasses must set:
        - orm_model: the ORM class
        - name:      store name (string)

    Optional:
        - default_order_by:  a column object or column name string

    IMPORTANT:
    - This base uses SHORT-LIVED sessions per call.
    - No implicit retries: failures surface as StoreError / StoreTimeoutError.
    """

    orm_model: Type[Any] = None
    default_order_by: Optional[Any] = None

    def __init__(self, session_maker: sessionmaker, logger=None):
        self.logger = logger
        assert self.orm_model is not None, "Subclasses must set orm_model"
        self.session: sessionmaker = session_maker
        self.name = getattr(self, "name", self.orm_model.__tablename__)

    def _run(self, fn: Callable[[Any], Any]):
        return run_in_session(self.session, fn, name=self.name)

    def _order_column(self, order_by: Optional[Any]):
        col = order_by if order_by is not None else self.default_order_by
        if isinstance(col, str):
            # mapped columns only; methods and relationships are not sortable
            if col not in self.orm_model.__table__.columns:
                return None
            col = getattr(self.orm_model, col)
        return col

    def count(self, **filters) -> int:
        def op(s):
            q = s.query(func.count("*")).select_from(self.orm_model)
            if filters:
                q = q.filter_by(**filters)
            return int(q.scalar() or 0)
        return self._run(op)
