# card_identity/models/identity_record.py
from __future__ import annotations

from typing import Any, Dict

from sqlalchemy import Column, DateTime, Index, String, text

from card_identity.constants import (MAX_FLAG_LENGTH, MAX_OWNER_ID_LENGTH,
                                     MAX_OWNER_TYPE_LENGTH, MAX_VALUE_LENGTH,
                                     TABLE_NAME)
from card_identity.models.base import Base


class IdentityRecordORM(Base):
    """
    One identity card held by an owner, e.g.
      - reference_type='patient', reference_id='p1', flag='KTP', value='3201234567890001'
      - reference_type='employee', reference_id='e-77', flag='SIM', value='1234-5678-000123'

    (reference_type, reference_id) is a weak polymorphic reference: no foreign key,
    the owner is never checked for existence.
    """
    __tablename__ = TABLE_NAME

    id = Column(String(26), primary_key=True)
    reference_type = Column(String(MAX_OWNER_TYPE_LENGTH), nullable=False)
    reference_id = Column(String(MAX_OWNER_ID_LENGTH), nullable=False)
    flag = Column(String(MAX_FLAG_LENGTH), nullable=False)
    value = Column(String(MAX_VALUE_LENGTH), nullable=False)

    created_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False)
    deleted_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        # at most one active card per (owner, flag); soft-deleted history is unconstrained
        Index(
            "uq_card_identities_active",
            "reference_type",
            "reference_id",
            "flag",
            unique=True,
            postgresql_where=text("deleted_at IS NULL"),
            sqlite_where=text("deleted_at IS NULL"),
        ),
        Index("ix_card_identities_reference", "reference_type", "reference_id"),
    )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "reference_type": self.reference_type,
            "reference_id": self.reference_id,
            "flag": self.flag,
            "value": self.value,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
            "deleted_at": self.deleted_at.isoformat() if self.deleted_at else None,
        }

    def __repr__(self) -> str:
        return (
            f"<IdentityRecordORM id={self.id} ref={self.reference_type}:{self.reference_id} "
            f"flag={self.flag} deleted={self.deleted_at is not None}>"
        )
