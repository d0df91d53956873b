# card_identity/utils/db_scope.py
from __future__ import annotations

from contextlib import contextmanager

from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError

from card_identity.errors import (CardIdentityError, StoreError,
                                  StoreTimeoutError)

# PostgreSQL SQLSTATE for query_canceled (statement_timeout)
_PG_QUERY_CANCELED = "57014"


@contextmanager
def session_scope(session_maker):
    s = session_maker()
    try:
        yield s
        s.commit()
    except Exception:
        s.rollback()
        raise
    finally:
        s.close()


def is_timeout(exc: BaseException) -> bool:
    if isinstance(exc, PoolTimeoutError):
        return True
    if isinstance(exc, OperationalError):
        orig = getattr(exc, "orig", None)
        if getattr(orig, "pgcode", None) == _PG_QUERY_CANCELED:
            return True
        # SQLite busy timeout expired
        if "database is locked" in str(orig or exc):
            return True
    return False


def run_in_session(session_maker, fn, *, name: str = "store"):
    """
    Run `fn(session)` in a short-lived session; commit on success.

    No retries. SQLAlchemy failures are re-raised as StoreTimeoutError / StoreError;
    CardIdentityError raised by `fn` itself passes through untouched.
    """
    try:
        with session_scope(session_maker) as s:
            return fn(s)
    except CardIdentityError:
        raise
    except SQLAlchemyError as e:
        if is_timeout(e):
            raise StoreTimeoutError(f"{name}: operation timed out: {e}") from e
        raise StoreError(f"{name}: {e.__class__.__name__}: {e}") from e
