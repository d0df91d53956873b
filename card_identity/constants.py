# card_identity/constants.py
from __future__ import annotations

# Column limits for card_identities
MAX_OWNER_TYPE_LENGTH = 50
MAX_OWNER_ID_LENGTH = 36
MAX_FLAG_LENGTH = 50
MAX_VALUE_LENGTH = 255

# Shared tag on every cache entry written by the card identity service
CACHE_TAG = "card_identity"
CACHE_KEY_PREFIX = "card_identity"
DEFAULT_CACHE_TTL_SECONDS = 24 * 60 * 60

TABLE_NAME = "card_identities"
CACHE_TABLE_NAME = "card_identity_cache"
CACHE_TAG_TABLE_NAME = "card_identity_cache_tags"
