"""Record types shared by both data-access layers."""

from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, Mapping, NamedTuple, Optional


def format_timestamp(value: datetime) -> str:
    """ISO-8601 text as stored in the ``created_at`` column."""
    return value.isoformat(timespec="microseconds")


def parse_timestamp(value: str) -> datetime:
    return datetime.fromisoformat(value)


@dataclass(frozen=True)
class Category:
    """Product category; ``id`` is assigned by the store."""

    name: str
    description: Optional[str] = None
    id: Optional[int] = None

    def to_row(self) -> dict[str, Any]:
        """Column mapping for the ``categories`` table."""
        return {"id": self.id, "name": self.name, "description": self.description}

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "Category":
        return cls(id=row["id"], name=row["name"], description=row["description"])

    def with_id(self, id: int) -> "Category":
        return replace(self, id=id)


@dataclass(frozen=True)
class Product:
    """Catalog product; ``created_at`` defaults to creation time."""

    name: str
    price: float
    category_id: int
    stock: int = 0
    created_at: datetime = field(default_factory=datetime.now)
    id: Optional[int] = None

    def to_row(self) -> dict[str, Any]:
        """Column mapping with the timestamp rendered as ISO-8601 text."""
        return {
            "id": self.id,
            "name": self.name,
            "price": self.price,
            "category_id": self.category_id,
            "stock": self.stock,
            "created_at": format_timestamp(self.created_at),
        }

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "Product":
        created_at = row["created_at"]
        if isinstance(created_at, str):
            created_at = parse_timestamp(created_at)
        return cls(
            id=row["id"],
            name=row["name"],
            price=float(row["price"]),
            category_id=row["category_id"],
            stock=row["stock"],
            created_at=created_at,
        )

    def with_id(self, id: int) -> "Product":
        return replace(self, id=id)


@dataclass(frozen=True)
class ProductWithCategory:
    """Product joined with the category it belongs to."""

    product: Product
    category: Category

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "ProductWithCategory":
        """Build from a join row carrying ``category_name`` and ``category_description``."""
        return cls(
            product=Product.from_row(row),
            category=Category(
                id=row["category_id"],
                name=row["category_name"],
                description=row["category_description"],
            ),
        )


@dataclass(frozen=True)
class ProductStats:
    """Per-category aggregate: product count, average price, total stock."""

    category_name: str
    product_count: int
    avg_price: float
    total_stock: int


class CatalogCounts(NamedTuple):
    """Row counts returned by ``count()``."""

    products: int
    categories: int


SAMPLE_CATEGORIES = (
    Category("Electronics", "Electronic devices"),
    Category("Books", "Books and magazines"),
    Category("Clothing", "Apparel and accessories"),
)
