"""
Benchmark runner comparing the direct and managed stores.

Each operation is run on the direct store and then on the managed store with
freshly generated input, timed with ``time.perf_counter()`` around the awaited
call. A failure stops the run; whatever was measured so far is still reported.
"""

import logging
import math
import random
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Optional, Sequence

from catalog_bench.errors import BenchmarkAborted, NotFound, describe
from catalog_bench.models import Product
from catalog_bench.stores.base import CatalogStore

logger = logging.getLogger(__name__)

INSERT = "Batch Insert"
QUERY = "Query All"
JOIN = "JOIN Query"
SEARCH = "Search"
AGGREGATE = "Aggregate"

OPERATIONS = (INSERT, QUERY, JOIN, SEARCH, AGGREGATE)

DEFAULT_INSERT_COUNT = 1000
DEFAULT_SEARCH_TERM = "Product"


class RunnerState(Enum):
    """Runner lifecycle: idle between runs, running during one."""

    IDLE = "idle"
    RUNNING = "running"


@dataclass(frozen=True)
class BenchmarkResult:
    """One timed call on one store."""

    operation: str
    layer: str
    count: int
    duration_ms: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "operation": self.operation,
            "layer": self.layer,
            "count": self.count,
            "duration_ms": self.duration_ms,
        }


@dataclass(frozen=True)
class BenchmarkSummary:
    """Mean duration per layer and how much faster the quicker one was."""

    means_ms: dict[str, float]
    faster: Optional[str]
    percent_difference: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "means_ms": dict(self.means_ms),
            "faster": self.faster,
            # JSON has no infinity; an unbounded gap is written as null.
            "percent_difference": self.percent_difference if math.isfinite(self.percent_difference) else None,
        }


def summarize(results: Sequence[BenchmarkResult]) -> Optional[BenchmarkSummary]:
    """
    Mean duration per layer and the relative gap between the two.

    Returns None unless exactly two layers have results.
    """
    durations: dict[str, list[float]] = {}
    for result in results:
        durations.setdefault(result.layer, []).append(result.duration_ms)
    if len(durations) != 2:
        return None

    means = {layer: sum(values) / len(values) for layer, values in durations.items()}
    (low_layer, low), (_, high) = sorted(means.items(), key=lambda item: item[1])
    if high == low:
        return BenchmarkSummary(means_ms=means, faster=None, percent_difference=0.0)
    percent = (high - low) / low * 100 if low > 0 else float("inf")
    return BenchmarkSummary(means_ms=means, faster=low_layer, percent_difference=percent)


@dataclass
class BenchmarkReport:
    """Results of one run, plus the error that stopped it early, if any."""

    results: list[BenchmarkResult] = field(default_factory=list)
    error: Optional[BenchmarkAborted] = None

    @property
    def aborted(self) -> bool:
        return self.error is not None

    @property
    def summary(self) -> Optional[BenchmarkSummary]:
        return summarize(self.results)

    def to_dict(self) -> dict[str, Any]:
        summary = self.summary
        return {
            "results": [result.to_dict() for result in self.results],
            "summary": summary.to_dict() if summary else None,
            "error": describe(self.error),
        }


def generate_products(count: int, category_id: int, rng: Optional[random.Random] = None) -> list[Product]:
    """Synthetic products named ``Product <i>`` with random price and stock."""
    rng = rng or random.Random()
    return [
        Product(
            name=f"Product {index}",
            price=rng.random() * 1000,
            category_id=category_id,
            stock=rng.randrange(100),
        )
        for index in range(count)
    ]


class BenchmarkRunner:
    """Times the same sequence of operations on two stores."""

    def __init__(
        self,
        direct: CatalogStore,
        managed: CatalogStore,
        insert_count: int = DEFAULT_INSERT_COUNT,
        search_term: str = DEFAULT_SEARCH_TERM,
        category_id: Optional[int] = None,
        rng: Optional[random.Random] = None,
    ):
        self.stores = (direct, managed)
        self.insert_count = insert_count
        self.search_term = search_term
        self.category_id = category_id
        self._rng = rng or random.Random()
        self._state = RunnerState.IDLE

    @property
    def state(self) -> RunnerState:
        return self._state

    async def run(self) -> BenchmarkReport:
        """Run every operation on both stores, stopping at the first failure."""
        if self._state is RunnerState.RUNNING:
            raise RuntimeError("Benchmark is already running")
        self._state = RunnerState.RUNNING
        report = BenchmarkReport()
        logger.info("Starting benchmarks (%d products per insert)", self.insert_count)
        try:
            steps = (
                (INSERT, self._insert),
                (QUERY, self._query),
                (JOIN, self._join),
                (SEARCH, self._search),
                (AGGREGATE, self._aggregate),
            )
            for name, step in steps:
                logger.info("Testing %s performance", name)
                for store in self.stores:
                    label = f"{store.label} {name}"
                    try:
                        report.results.append(await step(store, label))
                    except Exception as e:
                        logger.error("Benchmark error in %s: %s", label, e)
                        report.error = BenchmarkAborted(label, e)
                        return report
            logger.info("Benchmarks completed")
            return report
        finally:
            self._state = RunnerState.IDLE

    async def _time(
        self,
        label: str,
        store: CatalogStore,
        call: Callable[[], Awaitable[Any]],
        count: Callable[[Any], int],
    ) -> BenchmarkResult:
        start = time.perf_counter()
        outcome = await call()
        end = time.perf_counter()
        return BenchmarkResult(
            operation=label,
            layer=store.label,
            count=count(outcome),
            duration_ms=(end - start) * 1000,
        )

    async def _target_category(self, store: CatalogStore) -> int:
        if self.category_id is not None:
            return self.category_id
        categories = await store.list_categories()
        if not categories:
            raise NotFound(f"No category to insert products into in {store.url}")
        return categories[0].id

    async def _insert(self, store: CatalogStore, label: str) -> BenchmarkResult:
        products = generate_products(self.insert_count, await self._target_category(store), self._rng)
        return await self._time(label, store, lambda: store.batch_insert_products(products), lambda _: len(products))

    async def _query(self, store: CatalogStore, label: str) -> BenchmarkResult:
        return await self._time(label, store, store.list_products, len)

    async def _join(self, store: CatalogStore, label: str) -> BenchmarkResult:
        return await self._time(label, store, store.list_products_with_category, len)

    async def _search(self, store: CatalogStore, label: str) -> BenchmarkResult:
        return await self._time(label, store, lambda: store.search_products(self.search_term), len)

    async def _aggregate(self, store: CatalogStore, label: str) -> BenchmarkResult:
        return await self._time(label, store, store.stock_by_category, lambda _: 0)


def format_report(report: BenchmarkReport) -> str:
    """Plain-text table of the results followed by the summary."""
    separator = "=" * 60
    lines = [separator, "PERFORMANCE BENCHMARK RESULTS", separator]
    for result in report.results:
        lines.append(f"{result.operation:<25} | Count: {result.count:>5} | Time: {result.duration_ms:.2f}ms")
    lines.append(separator)

    if report.error is not None:
        lines.append(f"Aborted: {report.error}")

    summary = report.summary
    if summary is not None:
        lines.append("")
        lines.append("SUMMARY:")
        for layer, mean in summary.means_ms.items():
            lines.append(f"  {layer} average: {mean:.2f}ms")
        if summary.faster is None:
            lines.append("  Both layers took the same time on average")
        else:
            lines.append(f"  {summary.faster} is {summary.percent_difference:.1f}% faster on average")
        lines.append(separator)
    return "\n".join(lines)
