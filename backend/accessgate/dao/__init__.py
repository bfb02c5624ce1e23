"""
Data Access Object (DAO) package.

WHY: DAOs provide a clean separation between database operations and the
store implementations that own transactions.
"""

from accessgate.dao.base import BaseDAO
from accessgate.dao.allowed_address import AllowedAddressDAO
from accessgate.dao.public_access import PublicAccessConfigDAO
from accessgate.dao.verification_token import VerificationTokenDAO

__all__ = [
    "BaseDAO",
    "AllowedAddressDAO",
    "PublicAccessConfigDAO",
    "VerificationTokenDAO",
]
