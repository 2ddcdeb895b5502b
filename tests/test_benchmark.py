import json
import math
import random

import pytest

from catalog_bench.benchmark import (
    OPERATIONS,
    BenchmarkReport,
    BenchmarkResult,
    BenchmarkRunner,
    RunnerState,
    format_report,
    generate_products,
    summarize,
)
from catalog_bench.errors import BenchmarkAborted, NotFound
from catalog_bench.models import Category

EXPECTED_LABELS = [f"{layer} {operation}" for operation in OPERATIONS for layer in ("Direct", "Managed")]


class FakeStore:
    """In-memory stand-in that can be told to fail on one operation."""

    url = "memory://"

    def __init__(self, label, fail_on=None, categories=(Category("Books", id=7),)):
        self.label = label
        self.fail_on = fail_on
        self.categories = list(categories)
        self.products = []
        self.calls = []
        self.runner = None
        self.states = []

    def _call(self, name):
        self.calls.append(name)
        if self.runner is not None:
            self.states.append(self.runner.state)
        if name == self.fail_on:
            raise RuntimeError(f"{name} exploded")

    async def list_categories(self):
        return list(self.categories)

    async def batch_insert_products(self, products):
        self._call("batch_insert_products")
        self.products.extend(products)

    async def list_products(self):
        self._call("list_products")
        return list(self.products)

    async def list_products_with_category(self):
        self._call("list_products_with_category")
        return list(self.products)

    async def search_products(self, term):
        self._call("search_products")
        return [p for p in self.products if term in p.name]

    async def stock_by_category(self):
        self._call("stock_by_category")
        return {"Books": sum(p.stock for p in self.products)}


def result(layer, duration_ms):
    return BenchmarkResult(operation=f"{layer} Query All", layer=layer, count=1, duration_ms=duration_ms)


def test_generate_products():
    products = generate_products(100, 3, random.Random(42))
    assert [p.name for p in products[:3]] == ["Product 0", "Product 1", "Product 2"]
    assert len(products) == 100
    assert all(p.category_id == 3 for p in products)
    assert all(0 <= p.price < 1000 for p in products)
    assert all(0 <= p.stock < 100 for p in products)
    assert all(p.id is None for p in products)


def test_generate_products_is_seedable():
    first = generate_products(10, 1, random.Random(5))
    second = generate_products(10, 1, random.Random(5))
    assert [(p.price, p.stock) for p in first] == [(p.price, p.stock) for p in second]


def test_summarize_picks_faster_layer():
    summary = summarize([result("Direct", 10.0), result("Managed", 30.0), result("Direct", 20.0)])
    assert summary.means_ms == {"Direct": 15.0, "Managed": 30.0}
    assert summary.faster == "Direct"
    assert summary.percent_difference == pytest.approx(100.0)


def test_summarize_tie():
    summary = summarize([result("Direct", 5.0), result("Managed", 5.0)])
    assert summary.faster is None
    assert summary.percent_difference == 0.0


def test_summarize_zero_mean():
    summary = summarize([result("Direct", 0.0), result("Managed", 2.0)])
    assert summary.faster == "Direct"
    assert math.isinf(summary.percent_difference)


def test_unbounded_difference_serializes_as_null():
    summary = summarize([result("Direct", 0.0), result("Managed", 2.0)]).to_dict()
    assert summary["percent_difference"] is None
    assert json.loads(json.dumps(summary, allow_nan=False))["faster"] == "Direct"


def test_summarize_needs_both_layers():
    assert summarize([]) is None
    assert summarize([result("Direct", 1.0)]) is None


async def test_full_run(direct_store, managed_store):
    runner = BenchmarkRunner(direct_store, managed_store, insert_count=1000, rng=random.Random(1))
    report = await runner.run()

    assert not report.aborted
    assert [r.operation for r in report.results] == EXPECTED_LABELS
    assert all(r.duration_ms >= 0 for r in report.results)
    counts = {r.operation: r.count for r in report.results}
    for layer in ("Direct", "Managed"):
        assert counts[f"{layer} Batch Insert"] == 1000
        assert counts[f"{layer} Query All"] == 1000
        assert counts[f"{layer} JOIN Query"] == 1000
        assert counts[f"{layer} Search"] == 1000
        assert counts[f"{layer} Aggregate"] == 0
    assert len(await direct_store.list_products()) == 1000
    assert (await managed_store.count()).products == 1000
    assert report.summary is not None
    assert runner.state is RunnerState.IDLE


async def test_repeated_runs_keep_label_order(direct_store, managed_store):
    runner = BenchmarkRunner(direct_store, managed_store, insert_count=50)
    first = await runner.run()
    second = await runner.run()

    assert len(first.results) == len(second.results) == len(EXPECTED_LABELS)
    assert [r.operation for r in first.results] == [r.operation for r in second.results]
    assert second.results[2].count == 100


async def test_run_after_clear_all_uses_live_category(direct_store, managed_store):
    await direct_store.clear_all()
    await managed_store.clear_all()
    report = await BenchmarkRunner(direct_store, managed_store, insert_count=10).run()
    assert not report.aborted


async def test_failure_keeps_partial_results():
    direct, managed = FakeStore("Direct"), FakeStore("Managed", fail_on="search_products")
    report = await BenchmarkRunner(direct, managed, insert_count=20).run()

    assert report.aborted
    assert isinstance(report.error, BenchmarkAborted)
    assert report.error.operation == "Managed Search"
    assert isinstance(report.error.cause, RuntimeError)
    assert [r.operation for r in report.results] == EXPECTED_LABELS[:7]
    assert "stock_by_category" not in direct.calls
    assert report.to_dict()["error"] == "BenchmarkAborted: Managed Search failed: search_products exploded"


async def test_fixed_category_id():
    direct, managed = FakeStore("Direct"), FakeStore("Managed")
    await BenchmarkRunner(direct, managed, insert_count=5, category_id=3).run()
    assert {p.category_id for p in direct.products + managed.products} == {3}


async def test_missing_category_aborts_before_timing():
    direct, managed = FakeStore("Direct", categories=()), FakeStore("Managed")
    report = await BenchmarkRunner(direct, managed).run()

    assert report.results == []
    assert isinstance(report.error.cause, NotFound)
    assert direct.calls == []


async def test_state_while_running():
    direct, managed = FakeStore("Direct"), FakeStore("Managed")
    runner = BenchmarkRunner(direct, managed, insert_count=1)
    direct.runner = runner
    assert runner.state is RunnerState.IDLE

    await runner.run()
    assert set(direct.states) == {RunnerState.RUNNING}
    assert runner.state is RunnerState.IDLE


async def test_rejects_concurrent_run():
    direct, managed = FakeStore("Direct"), FakeStore("Managed")
    runner = BenchmarkRunner(direct, managed, insert_count=1)
    runner._state = RunnerState.RUNNING
    with pytest.raises(RuntimeError):
        await runner.run()


async def test_format_report():
    direct, managed = FakeStore("Direct"), FakeStore("Managed")
    report = await BenchmarkRunner(direct, managed, insert_count=3).run()
    text = format_report(report)

    assert "PERFORMANCE BENCHMARK RESULTS" in text
    for label in EXPECTED_LABELS:
        assert label in text
    assert "SUMMARY:" in text
    assert "Direct average" in text
    assert "Managed average" in text


def test_format_report_shows_abort():
    report = BenchmarkReport(
        results=[result("Direct", 1.0)],
        error=BenchmarkAborted("Managed Query All", RuntimeError("disk gone")),
    )
    text = format_report(report)
    assert "Aborted: Managed Query All failed: disk gone" in text
    assert "SUMMARY:" not in text
