# card_identity/models/__init__.py
from .base import Base
from .cache_entry import CacheEntryORM, CacheTagORM
from .identity_record import IdentityRecordORM

__all__ = ["Base", "CacheEntryORM", "CacheTagORM", "IdentityRecordORM"]
