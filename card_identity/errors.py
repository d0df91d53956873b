# card_identity/errors.py
from __future__ import annotations


class CardIdentityError(Exception):
    """Base exception for all card identity errors."""
    pass


class ValidationError(CardIdentityError, ValueError):
    """Raised when a field is empty, of the wrong kind, or too long."""

    def __init__(self, message: str, field: str | None = None):
        super().__init__(message)
        self.field = field


class NotFoundError(CardIdentityError, LookupError):
    """Raised when a record is missing or already soft-deleted."""
    pass


class StoreError(CardIdentityError):
    """Raised when the backing store fails (constraint, connectivity, ...)."""
    pass


class ConflictError(StoreError):
    """Raised when a concurrent writer already holds the active (owner, flag) slot."""
    pass


class StoreTimeoutError(StoreError, TimeoutError):
    """Raised when a store operation breaches its statement or pool timeout."""
    pass
