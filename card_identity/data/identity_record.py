# card_identity/data/identity_record.py
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Tuple

from card_identity.constants import (MAX_FLAG_LENGTH, MAX_OWNER_ID_LENGTH,
                                     MAX_OWNER_TYPE_LENGTH, MAX_VALUE_LENGTH)
from card_identity.errors import ValidationError

# Fields exposed to callers that render a card (no deleted_at).
RESOURCE_FIELDS = (
    "id",
    "reference_type",
    "reference_id",
    "flag",
    "value",
    "created_at",
    "updated_at",
)


def _as_utc(dt: Optional[datetime]) -> Optional[datetime]:
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def _parse_dt(raw: Any) -> Optional[datetime]:
    if raw is None or isinstance(raw, datetime):
        return _as_utc(raw)
    return _as_utc(datetime.fromisoformat(str(raw)))


def _coerce_field(name: str, raw: Any, max_length: int) -> str:
    if raw is None:
        raise ValidationError(f"{name} is required", field=name)
    if isinstance(raw, bytes):
        raw = raw.decode("utf-8")
    text = str(raw)
    if not text.strip():
        raise ValidationError(f"{name} must not be empty", field=name)
    if len(text) > max_length:
        raise ValidationError(
            f"{name} exceeds {max_length} characters (got {len(text)})", field=name
        )
    return text


def validate_card_key(owner_type: Any, owner_id: Any, flag: Any) -> Tuple[str, str, str]:
    """Normalise and check the (owner_type, owner_id, flag) triple."""
    return (
        _coerce_field("owner_type", owner_type, MAX_OWNER_TYPE_LENGTH),
        _coerce_field("owner_id", owner_id, MAX_OWNER_ID_LENGTH),
        _coerce_field("flag", flag, MAX_FLAG_LENGTH),
    )


def validate_owner(owner_type: Any, owner_id: Any) -> Tuple[str, str]:
    return (
        _coerce_field("owner_type", owner_type, MAX_OWNER_TYPE_LENGTH),
        _coerce_field("owner_id", owner_id, MAX_OWNER_ID_LENGTH),
    )


def coerce_value(value: Any) -> str:
    """Card values are always persisted as strings: 12345 -> "12345"."""
    return _coerce_field("value", value, MAX_VALUE_LENGTH)


def validate_card_fields(
    owner_type: Any, owner_id: Any, flag: Any, value: Any
) -> Tuple[str, str, str, str]:
    return (*validate_card_key(owner_type, owner_id, flag), coerce_value(value))


@dataclass(frozen=True)
class IdentityRecord:
    """
    Detached, immutable view of one card row.

    Stores hand these out instead of live ORM objects so they can be cached,
    compared and passed across threads safely. All timestamps are UTC-aware.
    """

    id: str
    owner_type: str
    owner_id: str
    flag: str
    value: str
    created_at: datetime
    updated_at: datetime
    deleted_at: Optional[datetime] = None

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None

    @classmethod
    def from_orm(cls, obj: Any) -> "IdentityRecord":
        return cls(
            id=obj.id,
            owner_type=obj.reference_type,
            owner_id=obj.reference_id,
            flag=obj.flag,
            value=obj.value,
            created_at=_as_utc(obj.created_at),
            updated_at=_as_utc(obj.updated_at),
            deleted_at=_as_utc(obj.deleted_at),
        )

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "IdentityRecord":
        return cls(
            id=data["id"],
            owner_type=data["reference_type"],
            owner_id=data["reference_id"],
            flag=data["flag"],
            value=data["value"],
            created_at=_parse_dt(data["created_at"]),
            updated_at=_parse_dt(data["updated_at"]),
            deleted_at=_parse_dt(data.get("deleted_at")),
        )

    def to_dict(self) -> Dict[str, Any]:
        """JSON-safe dict using the persisted column names."""
        return {
            "id": self.id,
            "reference_type": self.owner_type,
            "reference_id": self.owner_id,
            "flag": self.flag,
            "value": self.value,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
            "deleted_at": self.deleted_at.isoformat() if self.deleted_at else None,
        }

    def to_resource(self) -> Dict[str, Any]:
        d = self.to_dict()
        return {k: d[k] for k in RESOURCE_FIELDS}
