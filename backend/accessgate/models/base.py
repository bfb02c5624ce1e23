"""
Base model class for all SQLAlchemy models.

WHY: Centralizing common model functionality (the opaque string primary key)
in a base class ensures consistency across all models.
"""

import uuid
from sqlalchemy import Column, String
from sqlalchemy.orm import DeclarativeBase


def new_id() -> str:
    """Opaque, unguessable record id (uuid4 hex)."""
    return uuid.uuid4().hex


class Base(DeclarativeBase):
    """
    Base class for all SQLAlchemy models.

    WHY: DeclarativeBase provides the foundation for SQLAlchemy 2.0 models
    with improved type hints and async support.
    """

    pass


class PrimaryKeyMixin:
    """
    Mixin to add an opaque string primary key to models.

    WHY: Ids appear in admin URLs and token links; sequential integers
    would let callers enumerate records.
    """

    id = Column(String(32), primary_key=True, default=new_id)
