"""
Data-access contract shared by the direct and managed stores.

The benchmark runner only talks to this protocol, so either store (or a test
double) can be timed the same way.
"""

from typing import Iterable, Optional, Protocol, runtime_checkable

from catalog_bench.models import (
    CatalogCounts,
    Category,
    Product,
    ProductStats,
    ProductWithCategory,
)


@runtime_checkable
class CatalogStore(Protocol):
    """
    CRUD, join and aggregate operations over ``categories`` and ``products``.

    Attributes
    ----------
    label : str
        Short display name used in benchmark labels.
    url : str
        Database URL the store was opened on.
    """

    label: str
    url: str

    async def create_category(self, name: str, description: Optional[str] = None) -> Category:
        """Insert a category; raises ConstraintViolation on a duplicate name."""
        ...

    async def list_categories(self) -> list[Category]:
        """All categories ordered by name."""
        ...

    async def get_category(self, category_id: int) -> Optional[Category]:
        ...

    async def update_category(self, category: Category) -> int:
        """Replace a category by id; returns the number of rows updated."""
        ...

    async def delete_category(self, category_id: int) -> int:
        """Delete a category and, through the cascade, its products."""
        ...

    async def create_product(self, product: Product) -> Product:
        ...

    async def list_products(self) -> list[Product]:
        """All products, newest first."""
        ...

    async def get_product(self, product_id: int) -> Optional[Product]:
        ...

    async def update_product(self, product: Product) -> int:
        ...

    async def delete_product(self, product_id: int) -> int:
        ...

    async def delete_products_by_category(self, category_id: int) -> int:
        ...

    async def list_products_with_category(self) -> list[ProductWithCategory]:
        ...

    async def list_products_by_category(self, category_id: int) -> list[Product]:
        ...

    async def search_products(self, term: str) -> list[Product]:
        """Products whose name contains ``term`` (SQLite LIKE semantics)."""
        ...

    async def stock_by_category(self) -> dict[str, int]:
        """Total stock per category name, largest first."""
        ...

    async def product_stats(self) -> list[ProductStats]:
        ...

    async def batch_insert_products(self, products: Iterable[Product]) -> None:
        """Insert all products in one transaction, or none of them."""
        ...

    async def transfer_stock(self, from_product_id: int, to_product_id: int, amount: int) -> None:
        """Move a positive ``amount`` of stock between products in one transaction."""
        ...

    async def clear_all(self) -> None:
        """Remove every row and reseed the sample categories."""
        ...

    async def count(self) -> CatalogCounts:
        ...

    async def close(self) -> None:
        ...
