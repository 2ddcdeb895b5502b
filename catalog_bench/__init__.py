"""Direct SQL vs ORM catalog stores over SQLite, and a benchmark comparing them."""

from .benchmark import BenchmarkReport, BenchmarkResult, BenchmarkRunner, BenchmarkSummary, format_report
from .errors import (
    BenchmarkAborted,
    CatalogError,
    ConstraintViolation,
    InsufficientStock,
    NotFound,
    StoreUnavailable,
)
from .models import CatalogCounts, Category, Product, ProductStats, ProductWithCategory
from .stores import CatalogStore, DirectStore, ManagedStore, Subscription

__version__ = "0.1.0"

__all__ = [
    "BenchmarkReport",
    "BenchmarkResult",
    "BenchmarkRunner",
    "BenchmarkSummary",
    "format_report",
    "BenchmarkAborted",
    "CatalogError",
    "ConstraintViolation",
    "InsufficientStock",
    "NotFound",
    "StoreUnavailable",
    "CatalogCounts",
    "Category",
    "Product",
    "ProductStats",
    "ProductWithCategory",
    "CatalogStore",
    "DirectStore",
    "ManagedStore",
    "Subscription",
]
