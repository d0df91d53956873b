# card_identity/config/schema.py
from __future__ import annotations

from typing import Any, Literal, Optional

from omegaconf import DictConfig, OmegaConf
from pydantic import BaseModel, PositiveInt, conint, constr

from card_identity.constants import CACHE_TAG, DEFAULT_CACHE_TTL_SECONDS


class DBConfig(BaseModel):
    url: str = "sqlite:///card_identity.db"
    echo: bool = False
    pool_timeout: PositiveInt = 30
    statement_timeout_ms: conint(ge=0) = 5000
    create_schema: bool = True


class CacheConfig(BaseModel):
    kind: Literal["memory", "sql", "none"] = "memory"
    ttl_seconds: PositiveInt = DEFAULT_CACHE_TTL_SECONDS
    tag: constr(min_length=1, max_length=128) = CACHE_TAG
    max_size: PositiveInt = 10_000
    # sql cache only; defaults to db.url
    url: Optional[str] = None
    statement_timeout_ms: conint(ge=0) = 500


class StoreConfig(BaseModel):
    cls: str = "card_identity.memory.identity_record_store.SQLIdentityRecordStore"


class LoggingConfig(BaseModel):
    log_path: str = "logs/card_identity.jsonl"
    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    enable_console: bool = True
    enable_jsonl: bool = True


class AppConfig(BaseModel):
    db: DBConfig = DBConfig()
    cache: CacheConfig = CacheConfig()
    store: StoreConfig = StoreConfig()
    logging: LoggingConfig = LoggingConfig()

    @classmethod
    def from_any(cls, cfg: Any) -> "AppConfig":
        """Accepts an AppConfig, a hydra/OmegaConf DictConfig or a plain dict."""
        if isinstance(cfg, AppConfig):
            return cfg
        if isinstance(cfg, DictConfig):
            cfg = OmegaConf.to_container(cfg, resolve=True)
        return cls.model_validate(cfg or {})
