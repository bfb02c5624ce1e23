"""
Database models package.

WHY: Centralizing model imports ensures Alembic can discover all models
for migration generation and makes it easier to import models elsewhere.
"""

from accessgate.models.base import Base, PrimaryKeyMixin
from accessgate.models.allowed_address import AllowedAddressModel
from accessgate.models.public_access import PublicAccessConfigModel
from accessgate.models.verification_token import VerificationTokenModel

__all__ = [
    "Base",
    "PrimaryKeyMixin",
    "AllowedAddressModel",
    "PublicAccessConfigModel",
    "VerificationTokenModel",
]
