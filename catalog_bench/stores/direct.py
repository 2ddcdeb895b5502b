"""
Direct store: hand-written SQL over a synchronous SQLAlchemy engine.

Every statement is literal SQL passed through ``text()``. The blocking calls run
in the threadpool so the store can be awaited like the managed one.
"""

import logging
from typing import Any, Callable, Iterable, Optional, TypeVar

from sqlalchemy import text
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import IntegrityError, OperationalError
from starlette.concurrency import run_in_threadpool

from catalog_bench.db.engine import DIRECT_DATABASE_URL, SQL_ECHO, create_direct_engine
from catalog_bench.db.schema import CREATE_STATEMENTS, SCHEMA_VERSION
from catalog_bench.errors import ConstraintViolation, InsufficientStock, NotFound, StoreUnavailable
from catalog_bench.models import (
    SAMPLE_CATEGORIES,
    CatalogCounts,
    Category,
    Product,
    ProductStats,
    ProductWithCategory,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

PRODUCT_COLUMNS = "id, name, price, category_id, stock, created_at"

INSERT_CATEGORY = text("INSERT INTO categories (name, description) VALUES (:name, :description)")
INSERT_PRODUCT = text(
    "INSERT INTO products (name, price, category_id, stock, created_at) "
    "VALUES (:name, :price, :category_id, :stock, :created_at)"
)

JOIN_QUERY = text(
    """
    SELECT
        p.id, p.name, p.price, p.category_id, p.stock, p.created_at,
        c.name AS category_name,
        c.description AS category_description
    FROM products p
    INNER JOIN categories c ON p.category_id = c.id
    ORDER BY p.created_at DESC, p.id DESC
    """
)

STOCK_QUERY = text(
    """
    SELECT c.name AS name, SUM(p.stock) AS total_stock
    FROM products p
    INNER JOIN categories c ON p.category_id = c.id
    GROUP BY c.id, c.name
    ORDER BY total_stock DESC, c.name ASC
    """
)

STATS_QUERY = text(
    """
    SELECT
        c.name AS category_name,
        COUNT(p.id) AS product_count,
        AVG(p.price) AS avg_price,
        SUM(p.stock) AS total_stock
    FROM products p
    INNER JOIN categories c ON p.category_id = c.id
    GROUP BY c.id, c.name
    ORDER BY product_count DESC, c.name ASC
    """
)


def _insert_sample_categories(conn: Connection) -> None:
    conn.execute(INSERT_CATEGORY, [{"name": c.name, "description": c.description} for c in SAMPLE_CATEGORIES])


def _product_params(product: Product) -> dict[str, Any]:
    row = product.to_row()
    del row["id"]
    return row


class DirectStore:
    """Catalog store issuing literal SQL statements."""

    label = "Direct"

    def __init__(self, engine: Engine):
        self._engine = engine
        self.url = engine.url.render_as_string(hide_password=True)

    @classmethod
    async def open(cls, url: str = DIRECT_DATABASE_URL, echo: bool = SQL_ECHO) -> "DirectStore":
        """Open the database file, creating and seeding the schema on first use."""
        store = cls(create_direct_engine(url, echo=echo))
        try:
            await run_in_threadpool(store._initialize)
        except OperationalError as e:
            store._engine.dispose()
            raise StoreUnavailable(f"Cannot open {store.url}: {e.orig}") from e
        return store

    def _initialize(self) -> None:
        with self._engine.begin() as conn:
            version = conn.execute(text("PRAGMA user_version")).scalar()
            if version:
                return
            logger.info("Creating schema version %d in %s", SCHEMA_VERSION, self.url)
            for statement in CREATE_STATEMENTS:
                conn.execute(text(statement))
            _insert_sample_categories(conn)
            conn.execute(text(f"PRAGMA user_version = {SCHEMA_VERSION}"))

    def _execute(self, work: Callable[[Connection], T]) -> T:
        try:
            with self._engine.begin() as conn:
                return work(conn)
        except IntegrityError as e:
            raise ConstraintViolation(str(e.orig)) from e

    async def _run(self, work: Callable[[Connection], T]) -> T:
        return await run_in_threadpool(self._execute, work)

    async def close(self) -> None:
        """Dispose the engine and its pooled connections."""
        self._engine.dispose()

    async def __aenter__(self) -> "DirectStore":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    # ========== CATEGORIES ==========

    async def create_category(self, name: str, description: Optional[str] = None) -> Category:
        """Insert a category and return it with its new id."""
        def work(conn: Connection) -> Category:
            result = conn.execute(INSERT_CATEGORY, {"name": name, "description": description})
            return Category(name, description, id=result.lastrowid)

        return await self._run(work)

    async def list_categories(self) -> list[Category]:
        """All categories ordered by name."""
        def work(conn: Connection) -> list[Category]:
            rows = conn.execute(text("SELECT id, name, description FROM categories ORDER BY name ASC"))
            return [Category.from_row(row) for row in rows.mappings()]

        return await self._run(work)

    async def get_category(self, category_id: int) -> Optional[Category]:
        """Category by id, or None."""
        def work(conn: Connection) -> Optional[Category]:
            row = (
                conn.execute(
                    text("SELECT id, name, description FROM categories WHERE id = :id"),
                    {"id": category_id},
                )
                .mappings()
                .first()
            )
            return Category.from_row(row) if row is not None else None

        return await self._run(work)

    async def update_category(self, category: Category) -> int:
        """Replace a category by id; returns rows updated."""
        if category.id is None:
            return 0

        def work(conn: Connection) -> int:
            result = conn.execute(
                text("UPDATE categories SET name = :name, description = :description WHERE id = :id"),
                category.to_row(),
            )
            return result.rowcount

        return await self._run(work)

    async def delete_category(self, category_id: int) -> int:
        """Delete a category; its products go with it."""
        return await self._run(
            lambda conn: conn.execute(text("DELETE FROM categories WHERE id = :id"), {"id": category_id}).rowcount
        )

    # ========== PRODUCTS ==========

    async def create_product(self, product: Product) -> Product:
        """Insert a product and return it with its new id."""
        def work(conn: Connection) -> Product:
            result = conn.execute(INSERT_PRODUCT, _product_params(product))
            return product.with_id(result.lastrowid)

        return await self._run(work)

    async def list_products(self) -> list[Product]:
        """All products, newest first."""
        def work(conn: Connection) -> list[Product]:
            rows = conn.execute(text(f"SELECT {PRODUCT_COLUMNS} FROM products ORDER BY created_at DESC, id DESC"))
            return [Product.from_row(row) for row in rows.mappings()]

        return await self._run(work)

    async def get_product(self, product_id: int) -> Optional[Product]:
        """Product by id, or None."""
        def work(conn: Connection) -> Optional[Product]:
            row = (
                conn.execute(text(f"SELECT {PRODUCT_COLUMNS} FROM products WHERE id = :id"), {"id": product_id})
                .mappings()
                .first()
            )
            return Product.from_row(row) if row is not None else None

        return await self._run(work)

    async def update_product(self, product: Product) -> int:
        """Replace a product by id; returns rows updated."""
        if product.id is None:
            return 0

        def work(conn: Connection) -> int:
            result = conn.execute(
                text(
                    "UPDATE products SET name = :name, price = :price, category_id = :category_id, "
                    "stock = :stock, created_at = :created_at WHERE id = :id"
                ),
                product.to_row(),
            )
            return result.rowcount

        return await self._run(work)

    async def delete_product(self, product_id: int) -> int:
        """Delete a product by id."""
        return await self._run(
            lambda conn: conn.execute(text("DELETE FROM products WHERE id = :id"), {"id": product_id}).rowcount
        )

    async def delete_products_by_category(self, category_id: int) -> int:
        """Delete every product of one category."""
        return await self._run(
            lambda conn: conn.execute(
                text("DELETE FROM products WHERE category_id = :category_id"), {"category_id": category_id}
            ).rowcount
        )

    # ========== COMPLEX QUERIES ==========

    async def list_products_with_category(self) -> list[ProductWithCategory]:
        """Products joined with their category, newest first."""
        def work(conn: Connection) -> list[ProductWithCategory]:
            return [ProductWithCategory.from_row(row) for row in conn.execute(JOIN_QUERY).mappings()]

        return await self._run(work)

    async def list_products_by_category(self, category_id: int) -> list[Product]:
        """Products of one category ordered by name."""
        def work(conn: Connection) -> list[Product]:
            rows = conn.execute(
                text(f"SELECT {PRODUCT_COLUMNS} FROM products WHERE category_id = :category_id ORDER BY name ASC"),
                {"category_id": category_id},
            )
            return [Product.from_row(row) for row in rows.mappings()]

        return await self._run(work)

    async def search_products(self, term: str) -> list[Product]:
        """Products whose name contains ``term``."""
        def work(conn: Connection) -> list[Product]:
            rows = conn.execute(
                text(f"SELECT {PRODUCT_COLUMNS} FROM products WHERE name LIKE :pattern"),
                {"pattern": f"%{term}%"},
            )
            return [Product.from_row(row) for row in rows.mappings()]

        return await self._run(work)

    async def stock_by_category(self) -> dict[str, int]:
        """Total stock per category name, largest first."""
        def work(conn: Connection) -> dict[str, int]:
            return {row["name"]: row["total_stock"] for row in conn.execute(STOCK_QUERY).mappings()}

        return await self._run(work)

    async def product_stats(self) -> list[ProductStats]:
        """Product count, average price and stock per category."""
        def work(conn: Connection) -> list[ProductStats]:
            return [ProductStats(**row) for row in conn.execute(STATS_QUERY).mappings()]

        return await self._run(work)

    async def batch_insert_products(self, products: Iterable[Product]) -> None:
        """Insert all products in one transaction."""
        rows = [_product_params(product) for product in products]
        if not rows:
            return
        await self._run(lambda conn: conn.execute(INSERT_PRODUCT, rows))

    async def transfer_stock(self, from_product_id: int, to_product_id: int, amount: int) -> None:
        """Move ``amount`` units of stock between two products atomically."""
        if amount <= 0:
            raise ValueError(f"Transfer amount must be positive, got {amount}")

        def work(conn: Connection) -> None:
            select_stock = text("SELECT stock FROM products WHERE id = :id")
            source = conn.execute(select_stock, {"id": from_product_id}).scalar()
            target = conn.execute(select_stock, {"id": to_product_id}).scalar()
            if source is None or target is None:
                raise NotFound("Product not found")
            if source < amount:
                raise InsufficientStock(f"Product {from_product_id} has {source} units, {amount} requested")
            change = text("UPDATE products SET stock = stock + :delta WHERE id = :id")
            conn.execute(change, {"delta": -amount, "id": from_product_id})
            conn.execute(change, {"delta": amount, "id": to_product_id})

        await self._run(work)

    # ========== UTILITY ==========

    async def clear_all(self) -> None:
        """Delete every row and reseed the sample categories."""
        def work(conn: Connection) -> None:
            conn.execute(text("DELETE FROM products"))
            conn.execute(text("DELETE FROM categories"))
            _insert_sample_categories(conn)

        await self._run(work)

    async def count(self) -> CatalogCounts:
        """Number of products and categories."""
        def work(conn: Connection) -> CatalogCounts:
            row = conn.execute(
                text("SELECT (SELECT COUNT(*) FROM products), (SELECT COUNT(*) FROM categories)")
            ).one()
            return CatalogCounts(products=row[0], categories=row[1])

        return await self._run(work)
