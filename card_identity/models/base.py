# card_identity/models/base.py
from __future__ import annotations

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

Base = declarative_base()


def make_engine(
    url: str,
    *,
    statement_timeout_ms: int = 0,
    pool_timeout: int = 30,
    echo: bool = False,
) -> Engine:
    """
    Build an engine with the statement/checkout bounds the stores rely on.

    - PostgreSQL: `statement_timeout` via libpq options, pooled conns with keepalives.
    - SQLite: busy timeout from `statement_timeout_ms`; in-memory DBs share one
      connection (StaticPool) so every session sees the same data.
    """
    sa_url = make_url(url)
    backend = sa_url.get_backend_name()
    connect_args: dict = {}
    kwargs: dict = {"echo": echo, "pool_pre_ping": True}

    if backend == "postgresql":
        kwargs.update(
            pool_recycle=900,
            pool_size=10,
            max_overflow=20,
            pool_timeout=pool_timeout,
        )
        connect_args.update(
            keepalives=1,
            keepalives_idle=30,
            keepalives_interval=10,
            keepalives_count=3,
        )
        if statement_timeout_ms:
            connect_args["options"] = f"-c statement_timeout={int(statement_timeout_ms)}"
    elif backend == "sqlite":
        connect_args["check_same_thread"] = False
        if statement_timeout_ms:
            connect_args["timeout"] = statement_timeout_ms / 1000.0
        if sa_url.database in (None, "", ":memory:"):
            kwargs["poolclass"] = StaticPool

    return create_engine(sa_url, connect_args=connect_args, **kwargs)


def make_session_maker(engine: Engine) -> sessionmaker:
    return sessionmaker(bind=engine, expire_on_commit=False, autocommit=False, autoflush=False)


def create_schema(engine: Engine) -> None:
    # import for side effect: registers every table on Base.metadata
    from card_identity import models  # noqa: F401

    Base.metadata.create_all(engine)
