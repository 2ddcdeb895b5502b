"""
Managed store: SQLAlchemy ORM queries over an aiosqlite engine.

Queries are built with ``select()``/``update()``/``delete()`` against the mapped
classes in ``catalog_bench.db.schema``. List and join reads can also be watched:
each committed write publishes the touched tables to the store's ``ChangeHub``.
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Awaitable, Callable, Iterable, Optional, TypeVar

from sqlalchemy import delete, func, insert, select, text, update
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession

from catalog_bench.db.engine import (
    MANAGED_DATABASE_URL,
    SQL_ECHO,
    create_managed_engine,
    create_session_factory,
)
from catalog_bench.db.schema import SCHEMA_VERSION, Base, CategoryDB, ProductDB
from catalog_bench.errors import ConstraintViolation, InsufficientStock, NotFound, StoreUnavailable
from catalog_bench.models import (
    SAMPLE_CATEGORIES,
    CatalogCounts,
    Category,
    Product,
    ProductStats,
    ProductWithCategory,
)
from catalog_bench.stores.watch import ChangeHub, Subscription

logger = logging.getLogger(__name__)

T = TypeVar("T")

CATEGORIES = "categories"
PRODUCTS = "products"


def _to_category(row: CategoryDB) -> Category:
    return Category(row.name, row.description, id=row.id)


def _to_product(row: ProductDB) -> Product:
    return Product(
        id=row.id,
        name=row.name,
        price=row.price,
        category_id=row.category_id,
        stock=row.stock,
        created_at=row.created_at,
    )


def _product_values(product: Product) -> dict:
    return {
        "name": product.name,
        "price": product.price,
        "category_id": product.category_id,
        "stock": product.stock,
        "created_at": product.created_at,
    }


def _sample_category_values() -> list[dict]:
    return [{"name": c.name, "description": c.description} for c in SAMPLE_CATEGORIES]


def _newest_first(stmt):
    return stmt.order_by(ProductDB.created_at.desc(), ProductDB.id.desc())


class ManagedStore:
    """Catalog store built on the ORM query builder, with watchable reads."""

    label = "Managed"

    def __init__(self, engine: AsyncEngine):
        self._engine = engine
        self._sessions = create_session_factory(engine)
        self._hub = ChangeHub()
        self.url = engine.url.render_as_string(hide_password=True)

    @classmethod
    async def open(cls, url: str = MANAGED_DATABASE_URL, echo: bool = SQL_ECHO) -> "ManagedStore":
        """Open the database file, creating and seeding the schema on first use."""
        store = cls(create_managed_engine(url, echo=echo))
        try:
            await store._initialize()
        except OperationalError as e:
            await store._engine.dispose()
            raise StoreUnavailable(f"Cannot open {store.url}: {e.orig}") from e
        return store

    async def _initialize(self) -> None:
        async with self._engine.begin() as conn:
            version = (await conn.execute(text("PRAGMA user_version"))).scalar()
            if version:
                return
            logger.info("Creating schema version %d in %s", SCHEMA_VERSION, self.url)
            await conn.run_sync(Base.metadata.create_all)
            await conn.execute(insert(CategoryDB), _sample_category_values())
            await conn.execute(text(f"PRAGMA user_version = {SCHEMA_VERSION}"))

    @asynccontextmanager
    async def _session(self, changes: Iterable[str] = ()) -> AsyncIterator[AsyncSession]:
        """Transactional session; ``changes`` are published once it commits."""
        try:
            async with self._sessions() as session:
                async with session.begin():
                    yield session
        except IntegrityError as e:
            raise ConstraintViolation(str(e.orig)) from e
        if changes:
            self._hub.publish(changes)

    async def close(self) -> None:
        """End every subscription, then dispose the engine."""
        await self._hub.close()
        await self._engine.dispose()

    async def __aenter__(self) -> "ManagedStore":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    # ========== CATEGORIES ==========

    async def create_category(self, name: str, description: Optional[str] = None) -> Category:
        """Insert a category and return it with its new id."""
        async with self._session({CATEGORIES}) as session:
            row = CategoryDB(name=name, description=description)
            session.add(row)
            await session.flush()
            return _to_category(row)

    async def list_categories(self) -> list[Category]:
        """All categories ordered by name."""
        async with self._session() as session:
            result = await session.execute(select(CategoryDB).order_by(CategoryDB.name))
            return [_to_category(row) for row in result.scalars()]

    async def get_category(self, category_id: int) -> Optional[Category]:
        """Category by id, or None."""
        async with self._session() as session:
            row = await session.get(CategoryDB, category_id)
            return _to_category(row) if row is not None else None

    async def update_category(self, category: Category) -> int:
        """Replace a category by id; returns rows updated."""
        if category.id is None:
            return 0
        async with self._session({CATEGORIES}) as session:
            result = await session.execute(
                update(CategoryDB)
                .where(CategoryDB.id == category.id)
                .values(name=category.name, description=category.description)
                .execution_options(synchronize_session=False)
            )
            return result.rowcount

    async def delete_category(self, category_id: int) -> int:
        """Delete a category; its products go with it."""
        async with self._session({CATEGORIES, PRODUCTS}) as session:
            result = await session.execute(
                delete(CategoryDB)
                .where(CategoryDB.id == category_id)
                .execution_options(synchronize_session=False)
            )
            return result.rowcount

    # ========== PRODUCTS ==========

    async def create_product(self, product: Product) -> Product:
        """Insert a product and return it with its new id."""
        async with self._session({PRODUCTS}) as session:
            row = ProductDB(**_product_values(product))
            session.add(row)
            await session.flush()
            return product.with_id(row.id)

    async def list_products(self) -> list[Product]:
        """All products, newest first."""
        async with self._session() as session:
            result = await session.execute(_newest_first(select(ProductDB)))
            return [_to_product(row) for row in result.scalars()]

    async def get_product(self, product_id: int) -> Optional[Product]:
        """Product by id, or None."""
        async with self._session() as session:
            row = await session.get(ProductDB, product_id)
            return _to_product(row) if row is not None else None

    async def update_product(self, product: Product) -> int:
        """Replace a product by id; returns rows updated."""
        if product.id is None:
            return 0
        async with self._session({PRODUCTS}) as session:
            result = await session.execute(
                update(ProductDB)
                .where(ProductDB.id == product.id)
                .values(**_product_values(product))
                .execution_options(synchronize_session=False)
            )
            return result.rowcount

    async def delete_product(self, product_id: int) -> int:
        """Delete a product by id."""
        async with self._session({PRODUCTS}) as session:
            result = await session.execute(
                delete(ProductDB)
                .where(ProductDB.id == product_id)
                .execution_options(synchronize_session=False)
            )
            return result.rowcount

    async def delete_products_by_category(self, category_id: int) -> int:
        """Delete every product of one category."""
        async with self._session({PRODUCTS}) as session:
            result = await session.execute(
                delete(ProductDB)
                .where(ProductDB.category_id == category_id)
                .execution_options(synchronize_session=False)
            )
            return result.rowcount

    # ========== COMPLEX QUERIES ==========

    async def list_products_with_category(self) -> list[ProductWithCategory]:
        """Products joined with their category, newest first."""
        stmt = _newest_first(
            select(ProductDB, CategoryDB).join(CategoryDB, CategoryDB.id == ProductDB.category_id)
        )
        async with self._session() as session:
            result = await session.execute(stmt)
            return [
                ProductWithCategory(product=_to_product(product), category=_to_category(category))
                for product, category in result.all()
            ]

    async def list_products_by_category(self, category_id: int) -> list[Product]:
        """Products of one category ordered by name."""
        stmt = select(ProductDB).where(ProductDB.category_id == category_id).order_by(ProductDB.name)
        async with self._session() as session:
            result = await session.execute(stmt)
            return [_to_product(row) for row in result.scalars()]

    async def search_products(self, term: str) -> list[Product]:
        """Products whose name contains ``term``."""
        async with self._session() as session:
            result = await session.execute(select(ProductDB).where(ProductDB.name.like(f"%{term}%")))
            return [_to_product(row) for row in result.scalars()]

    async def stock_by_category(self) -> dict[str, int]:
        """Total stock per category name, largest first."""
        total_stock = func.sum(ProductDB.stock).label("total_stock")
        stmt = (
            select(CategoryDB.name, total_stock)
            .select_from(ProductDB)
            .join(CategoryDB, CategoryDB.id == ProductDB.category_id)
            .group_by(CategoryDB.id, CategoryDB.name)
            .order_by(total_stock.desc(), CategoryDB.name)
        )
        async with self._session() as session:
            result = await session.execute(stmt)
            return {name: total or 0 for name, total in result.all()}

    async def product_stats(self) -> list[ProductStats]:
        """Product count, average price and stock per category."""
        product_count = func.count(ProductDB.id).label("product_count")
        stmt = (
            select(
                CategoryDB.name,
                product_count,
                func.avg(ProductDB.price),
                func.sum(ProductDB.stock),
            )
            .select_from(ProductDB)
            .join(CategoryDB, CategoryDB.id == ProductDB.category_id)
            .group_by(CategoryDB.id, CategoryDB.name)
            .order_by(product_count.desc(), CategoryDB.name)
        )
        async with self._session() as session:
            result = await session.execute(stmt)
            return [
                ProductStats(category_name=name, product_count=count, avg_price=avg_price, total_stock=total)
                for name, count, avg_price, total in result.all()
            ]

    async def batch_insert_products(self, products: Iterable[Product]) -> None:
        """Insert all products in one transaction."""
        values = [_product_values(product) for product in products]
        if not values:
            return
        async with self._session({PRODUCTS}) as session:
            await session.execute(insert(ProductDB), values)

    async def transfer_stock(self, from_product_id: int, to_product_id: int, amount: int) -> None:
        """Move ``amount`` units of stock between two products atomically."""
        if amount <= 0:
            raise ValueError(f"Transfer amount must be positive, got {amount}")
        async with self._session({PRODUCTS}) as session:
            source = await session.get(ProductDB, from_product_id)
            target = await session.get(ProductDB, to_product_id)
            if source is None or target is None:
                raise NotFound("Product not found")
            if source.stock < amount:
                raise InsufficientStock(f"Product {from_product_id} has {source.stock} units, {amount} requested")
            source.stock -= amount
            target.stock += amount

    # ========== UTILITY ==========

    async def clear_all(self) -> None:
        """Delete every row and reseed the sample categories."""
        async with self._session({CATEGORIES, PRODUCTS}) as session:
            await session.execute(delete(ProductDB).execution_options(synchronize_session=False))
            await session.execute(delete(CategoryDB).execution_options(synchronize_session=False))
            await session.execute(insert(CategoryDB), _sample_category_values())

    async def count(self) -> CatalogCounts:
        """Number of products and categories."""
        async with self._session() as session:
            products = await session.scalar(select(func.count(ProductDB.id)))
            categories = await session.scalar(select(func.count(CategoryDB.id)))
            return CatalogCounts(products=products or 0, categories=categories or 0)

    # ========== WATCHERS ==========

    async def watch(self, tables: Iterable[str], query: Callable[[], Awaitable[T]]) -> Subscription[T]:
        """Re-run ``query`` after every committed write to any of ``tables``."""
        return await self._hub.subscribe(tables, query)

    async def watch_categories(self) -> Subscription[list[Category]]:
        """Categories by name, refreshed on category writes."""
        return await self.watch({CATEGORIES}, self.list_categories)

    async def watch_products(self) -> Subscription[list[Product]]:
        """Products newest first, refreshed on product writes."""
        return await self.watch({PRODUCTS}, self.list_products)

    async def watch_products_with_category(self) -> Subscription[list[ProductWithCategory]]:
        return await self.watch({CATEGORIES, PRODUCTS}, self.list_products_with_category)

    async def wait_for_watchers(self) -> None:
        """Wait until snapshots scheduled by earlier writes have been delivered."""
        await self._hub.wait_idle()

    @property
    def subscriber_count(self) -> int:
        return len(self._hub)
