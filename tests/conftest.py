import pytest

from catalog_bench.stores import DirectStore, ManagedStore


@pytest.fixture
async def direct_store(tmp_path):
    store = await DirectStore.open(f"sqlite:///{tmp_path / 'direct.db'}")
    yield store
    await store.close()


@pytest.fixture
async def managed_store(tmp_path):
    store = await ManagedStore.open(f"sqlite+aiosqlite:///{tmp_path / 'managed.db'}")
    yield store
    await store.close()


@pytest.fixture(params=["direct", "managed"])
async def store(request, tmp_path):
    """Each contract test runs once per store."""
    if request.param == "direct":
        opened = await DirectStore.open(f"sqlite:///{tmp_path / 'direct.db'}")
    else:
        opened = await ManagedStore.open(f"sqlite+aiosqlite:///{tmp_path / 'managed.db'}")
    yield opened
    await opened.close()
