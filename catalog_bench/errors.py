"""Error types raised by the catalog stores and the benchmark runner."""

from typing import Optional


class CatalogError(Exception):
    """Base class for catalog errors."""


class ConstraintViolation(CatalogError):
    """A write broke a unique or foreign-key constraint."""


class StoreUnavailable(CatalogError):
    """The database file or engine could not be opened."""


class NotFound(CatalogError):
    """A product referenced by a multi-row operation does not exist."""


class InsufficientStock(CatalogError):
    """A stock transfer asked for more units than the source product holds."""


class BenchmarkAborted(CatalogError):
    """A timed operation failed and the rest of the run was skipped."""

    def __init__(self, operation: str, cause: BaseException):
        super().__init__(f"{operation} failed: {cause}")
        self.operation = operation
        self.cause = cause


def describe(error: Optional[BaseException]) -> Optional[str]:
    """Short printable form of an error, or None."""
    if error is None:
        return None
    return f"{type(error).__name__}: {error}"
