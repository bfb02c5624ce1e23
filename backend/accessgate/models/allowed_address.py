"""
Allowed address model.

WHAT: One row per address permitted when public access is disabled.

WHY: normalized_address carries the unique constraint, so the duplicate
check is enforced by the database at write time ("::1" and
"0:0:0:0:0:0:0:1" collide) instead of by a read-then-insert.
"""

from sqlalchemy import Column, String, Enum, DateTime, Text

from accessgate.models.base import Base, PrimaryKeyMixin
from accessgate.stores.records import AddressType, AllowedAddress


class AllowedAddressModel(Base, PrimaryKeyMixin):
    """Allow-list entry. Rows are inserted and deleted, never updated."""

    __tablename__ = "allowed_addresses"

    # Address as entered (trimmed)
    address = Column(String(45), nullable=False)

    # Canonical comparison key
    normalized_address = Column(String(45), nullable=False, unique=True, index=True)

    address_type = Column(
        Enum(
            AddressType,
            name="addresstype",
            native_enum=False,
            length=8,
            values_callable=lambda members: [member.value for member in members],
        ),
        nullable=False,
    )

    description = Column(Text, nullable=False, default="")

    # Actor (admin subject id) and time of the administrative action
    added_by = Column(String(255), nullable=False)
    added_at = Column(DateTime, nullable=False, index=True)

    def __repr__(self) -> str:
        return f"<AllowedAddress(id={self.id}, address={self.address}, type={self.address_type})>"

    def to_record(self) -> AllowedAddress:
        return AllowedAddress(
            id=self.id,
            address=self.address,
            address_type=self.address_type,
            description=self.description or "",
            added_by=self.added_by,
            added_at=self.added_at,
        )
