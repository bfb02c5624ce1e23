"""Database package"""

from accessgate.db.session import create_engine, create_session_factory, create_tables, drop_tables
from accessgate.models.base import Base

__all__ = ["Base", "create_engine", "create_session_factory", "create_tables", "drop_tables"]
