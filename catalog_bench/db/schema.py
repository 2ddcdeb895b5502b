"""Database schema for the catalog stores."""

from datetime import datetime

from sqlalchemy import Column, Float, ForeignKey, Index, Integer, String, Text, text
from sqlalchemy.orm import declarative_base
from sqlalchemy.types import TypeDecorator

from catalog_bench.models import format_timestamp, parse_timestamp

Base = declarative_base()

# Stored in PRAGMA user_version; 0 means the file has never been initialized.
SCHEMA_VERSION = 1


class IsoDateTime(TypeDecorator):
    """Datetime kept as ISO-8601 text, matching what the direct layer writes."""

    impl = Text
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        return format_timestamp(value)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return parse_timestamp(value)


class CategoryDB(Base):
    """Product category."""

    __tablename__ = "categories"
    __table_args__ = {"sqlite_autoincrement": True}

    id = Column(Integer, primary_key=True)
    name = Column(String, nullable=False, unique=True)
    description = Column(String, nullable=True)


class ProductDB(Base):
    """Product row, owned by one category."""

    __tablename__ = "products"
    __table_args__ = (
        Index("idx_products_category", "category_id"),
        Index("idx_products_name", "name"),
        {"sqlite_autoincrement": True},
    )

    id = Column(Integer, primary_key=True)
    name = Column(String, nullable=False)
    price = Column(Float, nullable=False)
    category_id = Column(Integer, ForeignKey("categories.id", ondelete="CASCADE"), nullable=False)
    stock = Column(Integer, nullable=False, default=0, server_default=text("0"))
    created_at = Column(IsoDateTime, nullable=False, default=datetime.now)


# Literal DDL used by the direct layer; equivalent to the mappings above.
CREATE_STATEMENTS = (
    """
    CREATE TABLE IF NOT EXISTS categories (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        name TEXT NOT NULL UNIQUE,
        description TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS products (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        name TEXT NOT NULL,
        price REAL NOT NULL,
        category_id INTEGER NOT NULL,
        stock INTEGER NOT NULL DEFAULT 0,
        created_at TEXT NOT NULL,
        FOREIGN KEY (category_id) REFERENCES categories (id) ON DELETE CASCADE
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_products_category ON products(category_id)",
    "CREATE INDEX IF NOT EXISTS idx_products_name ON products(name)",
)
