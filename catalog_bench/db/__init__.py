"""Database package for the catalog stores."""

from .engine import (
    DIRECT_DATABASE_URL,
    MANAGED_DATABASE_URL,
    create_direct_engine,
    create_managed_engine,
    create_session_factory,
)
from .schema import SCHEMA_VERSION, Base, CategoryDB, ProductDB

__all__ = [
    "DIRECT_DATABASE_URL",
    "MANAGED_DATABASE_URL",
    "create_direct_engine",
    "create_managed_engine",
    "create_session_factory",
    "SCHEMA_VERSION",
    "Base",
    "CategoryDB",
    "ProductDB",
]
