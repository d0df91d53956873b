# card_identity/services/factories.py
from __future__ import annotations

import importlib
from typing import Any, Optional

from card_identity.config.schema import AppConfig
from card_identity.memory.cache_store import SQLCacheStore
from card_identity.memory.identity_record_store import IdentityRecordRepository
from card_identity.models.base import (create_schema, make_engine,
                                       make_session_maker)
from card_identity.services.cache_provider import CacheProvider
from card_identity.services.card_identity_service import CardIdentityService
from card_identity.services.memory_cache import InMemoryCacheProvider


def _load_object(dotted: str):
    # "pkg.mod:func" or "pkg.mod.Class"
    if ":" in dotted:
        mod, obj = dotted.split(":", 1)
        return getattr(importlib.import_module(mod), obj)
    mod, attr = dotted.rsplit(".", 1)
    return getattr(importlib.import_module(mod), attr)


def make_store(cfg: AppConfig, session_maker, logger=None) -> IdentityRecordRepository:
    store_cls = _load_object(cfg.store.cls)
    store = store_cls(session_maker, logger=logger)
    if not isinstance(store, IdentityRecordRepository):
        raise TypeError(f"{cfg.store.cls} does not implement IdentityRecordRepository")
    return store


def make_cache(cfg: AppConfig, logger=None) -> Optional[CacheProvider]:
    cache_cfg = cfg.cache
    if cache_cfg.kind == "none":
        return None
    if cache_cfg.kind == "memory":
        return InMemoryCacheProvider(max_size=cache_cfg.max_size, default_ttl=cache_cfg.ttl_seconds)

    engine = make_engine(
        cache_cfg.url or cfg.db.url,
        statement_timeout_ms=cache_cfg.statement_timeout_ms,
        pool_timeout=cfg.db.pool_timeout,
    )
    if cfg.db.create_schema:
        create_schema(engine)
    return SQLCacheStore(make_session_maker(engine), logger, default_ttl=cache_cfg.ttl_seconds)


def build_card_identity_service(cfg: Any, logger=None) -> CardIdentityService:
    """
    Wire store + cache + service from config.

    `store.cls` is a dotted path, so a host application can swap in its own
    IdentityRecordRepository (different table, different backend) without code changes.
    """
    app_cfg = AppConfig.from_any(cfg)

    engine = make_engine(
        app_cfg.db.url,
        statement_timeout_ms=app_cfg.db.statement_timeout_ms,
        pool_timeout=app_cfg.db.pool_timeout,
        echo=app_cfg.db.echo,
    )
    if app_cfg.db.create_schema:
        create_schema(engine)
        if logger:
            logger.log("SchemaCreated", {"url": engine.url.render_as_string(hide_password=True)})

    store = make_store(app_cfg, make_session_maker(engine), logger=logger)
    cache = make_cache(app_cfg, logger=logger)

    service = CardIdentityService(store, cache, cfg=app_cfg.model_dump(), logger=logger)
    service.initialize()
    return service
