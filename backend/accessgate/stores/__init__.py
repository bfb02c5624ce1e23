"""
Store package.

WHY: The access-decision and token-lifecycle services only see the records
and abstract interfaces exported here. Concrete implementations
(accessgate.stores.memory, accessgate.stores.sql) are wired up by
accessgate.stores.registry.
"""

from accessgate.stores.records import (
    AddressType,
    AllowedAddress,
    PublicAccessConfig,
    TokenPurpose,
    TokenStatus,
    VerificationToken,
)
from accessgate.stores.interfaces import AllowListStore, PublicAccessStore, TokenStore

__all__ = [
    "AddressType",
    "AllowedAddress",
    "PublicAccessConfig",
    "TokenPurpose",
    "TokenStatus",
    "VerificationToken",
    "AllowListStore",
    "PublicAccessStore",
    "TokenStore",
]
