# card_identity/models/cache_entry.py
from __future__ import annotations

from typing import Any, Dict

from sqlalchemy import JSON, Column, Float, Index, String

from card_identity.constants import CACHE_TABLE_NAME, CACHE_TAG_TABLE_NAME
from card_identity.models.base import Base


class CacheEntryORM(Base):
    """
    Portable L2 cache entry.

    Notes
    -----
    - JSON payload; callers cache plain dicts/lists.
    - Fixed TTL: `expires_at` (epoch seconds) is set on write and never slid on reads.
    - Tags live in `CacheTagORM` so one entry can carry several of them.
    """
    __tablename__ = CACHE_TABLE_NAME

    key = Column(String(512), primary_key=True, nullable=False)
    value_json = Column(JSON, nullable=True)

    created_at = Column(Float, nullable=False)
    expires_at = Column(Float, nullable=False)

    __table_args__ = (
        Index("ix_card_identity_cache_expires_at", "expires_at"),
    )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "key": self.key,
            "has_json": self.value_json is not None,
            "created_at": self.created_at,
            "expires_at": self.expires_at,
        }

    def __repr__(self) -> str:
        return f"<CacheEntryORM key={self.key}>"


class CacheTagORM(Base):
    __tablename__ = CACHE_TAG_TABLE_NAME

    key = Column(String(512), primary_key=True)
    tag = Column(String(128), primary_key=True)

    __table_args__ = (
        Index("ix_card_identity_cache_tags_tag", "tag"),
    )

    def __repr__(self) -> str:
        return f"<CacheTagORM key={self.key} tag={self.tag}>"
