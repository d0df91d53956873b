# card_identity/core/logging/icons.py
def get_event_icon(event_type: str) -> str:
    """Get the icon associated with a specific event type."""
    return EVENT_ICONS.get(event_type, "❓")


# ================
# CARD LIFECYCLE
# ================
CARD_EVENTS = {
    "CardCreated": "🪪",
    "CardUpdated": "✏️",
    "CardDeleted": "🗑️",
    "CardCreateRaceRetried": "🔁",
}

# ================
# CACHE
# ================
CACHE_EVENTS = {
    "CardCacheError": "⚠️",
    "CardCacheFlushed": "🧹",
    "CacheEntriesExpired": "⌛",
}

# ================
# SYSTEM
# ================
SYSTEM_EVENTS = {
    "CardIdentityServiceInit": "⚙️",
    "CardIdentityServiceShutdown": "🛑",
    "SchemaCreated": "🗄️",
    "info": "ℹ️",
    "warning": "⚠️",
    "error": "❌",
    "exception": "💥",
}

EVENT_ICONS = {
    **CARD_EVENTS,
    **CACHE_EVENTS,
    **SYSTEM_EVENTS,
}
