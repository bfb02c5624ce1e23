"""
Public access configuration model.

WHAT: The single row holding the public-access override.

WHY: A fixed primary key makes "exactly one logical instance" a schema
property; writes are upserts of the whole row.
"""

from sqlalchemy import Column, String, Boolean, DateTime, Text

from accessgate.models.base import Base
from accessgate.stores.records import PublicAccessConfig


SINGLETON_ID = "public_access"


class PublicAccessConfigModel(Base):
    """Singleton row; id is always SINGLETON_ID."""

    __tablename__ = "public_access_config"

    id = Column(String(32), primary_key=True, default=SINGLETON_ID)
    enabled = Column(Boolean, nullable=False, default=False)
    enabled_by = Column(String(255), nullable=True)
    enabled_at = Column(DateTime, nullable=True)
    reason = Column(Text, nullable=False, default="")

    def __repr__(self) -> str:
        return f"<PublicAccessConfig(enabled={self.enabled}, enabled_by={self.enabled_by})>"

    def to_record(self) -> PublicAccessConfig:
        return PublicAccessConfig(
            enabled=bool(self.enabled),
            enabled_by=self.enabled_by,
            enabled_at=self.enabled_at,
            reason=self.reason or "",
        )
