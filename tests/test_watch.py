import asyncio

import pytest

from catalog_bench.benchmark import generate_products
from catalog_bench.errors import ConstraintViolation
from catalog_bench.models import Category, Product
from catalog_bench.stores import ManagedStore
from catalog_bench.stores.watch import ChangeHub


async def next_snapshot(subscription):
    return await asyncio.wait_for(subscription.__anext__(), timeout=5)


async def electronics_id(store):
    return next(c.id for c in await store.list_categories() if c.name == "Electronics")


async def test_initial_snapshot(managed_store):
    async with await managed_store.watch_categories() as categories:
        snapshot = await next_snapshot(categories)
        assert [c.name for c in snapshot] == ["Books", "Clothing", "Electronics"]


async def test_snapshot_after_each_write(managed_store):
    electronics = await electronics_id(managed_store)
    async with await managed_store.watch_products() as products:
        assert await next_snapshot(products) == []

        created = await managed_store.create_product(Product("Phone", 300.0, electronics))
        assert await next_snapshot(products) == [created]

        await managed_store.batch_insert_products(generate_products(3, electronics))
        assert len(await next_snapshot(products)) == 4

        await managed_store.delete_product(created.id)
        assert len(await next_snapshot(products)) == 3


async def test_unrelated_table_does_not_notify(managed_store):
    async with await managed_store.watch_products() as products:
        await next_snapshot(products)
        await managed_store.create_category("Toys")
        await managed_store.wait_for_watchers()
        assert products.pending() == 0


async def test_join_sees_category_changes(managed_store):
    electronics = await electronics_id(managed_store)
    await managed_store.create_product(Product("Phone", 300.0, electronics))
    async with await managed_store.watch_products_with_category() as rows:
        assert (await next_snapshot(rows))[0].category.name == "Electronics"

        await managed_store.update_category(Category("Gadgets", "Electronic devices", id=electronics))
        assert (await next_snapshot(rows))[0].category.name == "Gadgets"

        await managed_store.delete_category(electronics)
        assert await next_snapshot(rows) == []


async def test_failed_write_does_not_notify(managed_store):
    async with await managed_store.watch_categories() as categories:
        await next_snapshot(categories)
        with pytest.raises(ConstraintViolation):
            await managed_store.create_category("Books")
        await managed_store.wait_for_watchers()
        assert categories.pending() == 0


async def test_close_ends_iteration(managed_store):
    subscription = await managed_store.watch_categories()
    assert managed_store.subscriber_count == 1
    await subscription.close()
    assert managed_store.subscriber_count == 0

    await managed_store.create_category("Toys")
    received = [snapshot async for snapshot in subscription]
    assert received == []


async def test_store_close_ends_subscriptions(tmp_path):
    store = await ManagedStore.open(f"sqlite+aiosqlite:///{tmp_path / 'watched.db'}")
    subscription = await store.watch_products()
    await store.close()
    assert subscription.closed
    with pytest.raises(StopAsyncIteration):
        await subscription.__anext__()


async def test_write_does_not_wait_for_slow_watcher(managed_store):
    release = asyncio.Event()
    started = asyncio.Event()

    async def slow_categories():
        if started.is_set():
            await release.wait()
        started.set()
        return await managed_store.list_categories()

    async with await managed_store.watch({"categories"}, slow_categories) as categories:
        await next_snapshot(categories)

        created = await asyncio.wait_for(managed_store.create_category("Toys"), timeout=5)
        assert created.id is not None
        assert categories.pending() == 0

        release.set()
        snapshot = await next_snapshot(categories)
        assert "Toys" in [c.name for c in snapshot]


async def test_unread_snapshots_are_coalesced(managed_store):
    async with await managed_store.watch_categories() as categories:
        await managed_store.create_category("Toys")
        await managed_store.wait_for_watchers()
        await managed_store.create_category("Garden")
        await managed_store.wait_for_watchers()

        assert categories.pending() == 1
        snapshot = await next_snapshot(categories)
        assert {"Toys", "Garden"} <= {c.name for c in snapshot}
        assert categories.pending() == 0


async def test_hub_routes_by_table():
    calls = []

    async def query():
        calls.append(len(calls))
        return len(calls)

    hub = ChangeHub()
    products = await hub.subscribe({"products"}, query)
    assert await next_snapshot(products) == 1

    hub.publish({"categories"})
    await hub.wait_idle()
    assert products.pending() == 0

    hub.publish({"products", "categories"})
    assert await next_snapshot(products) == 2
    await hub.close()
    assert len(hub) == 0


async def test_hub_keeps_latest_snapshot_only():
    calls = []

    async def query():
        calls.append(len(calls))
        return len(calls)

    hub = ChangeHub()
    subscription = await hub.subscribe({"products"}, query)
    for _ in range(3):
        hub.publish({"products"})
        await hub.wait_idle()

    assert subscription.pending() == 1
    assert await next_snapshot(subscription) == 4
    await hub.close()


async def test_writes_during_refresh_fold_into_one_more_run():
    release = asyncio.Event()
    calls = []

    async def query():
        calls.append(len(calls))
        if len(calls) == 2:
            await release.wait()
        return len(calls)

    hub = ChangeHub()
    subscription = await hub.subscribe({"products"}, query)
    await next_snapshot(subscription)

    hub.publish({"products"})
    await asyncio.sleep(0)
    hub.publish({"products"})
    hub.publish({"products"})
    assert hub.in_flight == 1

    release.set()
    await hub.wait_idle()
    assert len(calls) == 3
    assert await next_snapshot(subscription) == 3
    await hub.close()


async def test_hub_close_cancels_refresh_in_flight():
    cancelled = asyncio.Event()
    first = True

    async def query():
        nonlocal first
        if first:
            first = False
            return []
        try:
            await asyncio.Event().wait()
        except asyncio.CancelledError:
            cancelled.set()
            raise

    hub = ChangeHub()
    subscription = await hub.subscribe({"products"}, query)
    await next_snapshot(subscription)

    hub.publish({"products"})
    await asyncio.sleep(0)
    assert hub.in_flight == 1

    await hub.close()
    assert cancelled.is_set()
    assert hub.in_flight == 0
    assert subscription.closed
    with pytest.raises(StopAsyncIteration):
        await subscription.__anext__()


async def test_query_failure_reaches_subscriber():
    outcomes = [["ok"], RuntimeError("boom")]

    async def query():
        outcome = outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    hub = ChangeHub()
    subscription = await hub.subscribe({"products"}, query)
    assert await next_snapshot(subscription) == ["ok"]

    hub.publish({"products"})
    with pytest.raises(RuntimeError, match="boom"):
        await next_snapshot(subscription)
    await hub.close()
