"""Publish/subscribe channel that re-runs queries when their tables change."""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Generic, Iterable, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

_CLOSED = object()


class Subscription(Generic[T]):
    """
    Stream of query snapshots.

    The first snapshot is the state at subscription time; another one follows
    every committed write to one of ``tables``. Refreshes run on their own task,
    never on the writer's. At most one snapshot is held for the reader: an unread
    one is replaced by the newer. Iterate with ``async for`` and call ``close()``
    (or leave the ``async with`` block) to unsubscribe.
    """

    def __init__(self, hub: "ChangeHub", tables: Iterable[str], query: Callable[[], Awaitable[T]]):
        self.tables = frozenset(tables)
        self.closed = False
        self._hub = hub
        self._query = query
        self._queue: asyncio.Queue = asyncio.Queue()
        self._stale = False
        self._task: Optional[asyncio.Task] = None

    async def refresh(self) -> None:
        """Run the query now and hand the result (or its error) to the reader."""
        if self.closed:
            return
        try:
            snapshot: Any = await self._query()
        except Exception as e:
            # Handed to the subscriber, who sees it raised from __anext__.
            logger.warning("Refreshing subscription on %s failed: %s", sorted(self.tables), e)
            snapshot = e
        self._deliver(snapshot)

    def schedule_refresh(self) -> Optional[asyncio.Task]:
        """
        Mark the snapshot stale and make sure a refresh task is running.

        Writes arriving while a refresh is in flight are folded into one more
        run after it, so the last delivered snapshot always follows the last write.
        """
        if self.closed:
            return None
        self._stale = True
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self._refresh_while_stale())
        return self._task

    async def _refresh_while_stale(self) -> None:
        while self._stale and not self.closed:
            self._stale = False
            await self.refresh()

    def _deliver(self, item: Any) -> None:
        if self.closed and item is not _CLOSED:
            return
        while not self._queue.empty():
            self._queue.get_nowait()
        self._queue.put_nowait(item)

    def pending(self) -> int:
        """Number of snapshots waiting to be consumed (0 or 1)."""
        return self._queue.qsize()

    def __aiter__(self) -> "Subscription[T]":
        return self

    async def __anext__(self) -> T:
        if self.closed and self._queue.empty():
            raise StopAsyncIteration
        item = await self._queue.get()
        if item is _CLOSED:
            raise StopAsyncIteration
        if isinstance(item, Exception):
            raise item
        return item

    async def close(self) -> None:
        """Unsubscribe; a refresh still in flight is cancelled."""
        if self.closed:
            return
        self.closed = True
        self._hub.remove(self)
        task, self._task = self._task, None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)
        self._deliver(_CLOSED)

    async def __aenter__(self) -> "Subscription[T]":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()


class ChangeHub:
    """Live subscriptions of one store, keyed by the tables their queries read."""

    def __init__(self):
        self._subscriptions: list[Subscription] = []
        self._tasks: set[asyncio.Task] = set()

    def __len__(self) -> int:
        return len(self._subscriptions)

    async def subscribe(self, tables: Iterable[str], query: Callable[[], Awaitable[T]]) -> Subscription[T]:
        """Register ``query`` and deliver its first snapshot before returning."""
        subscription: Subscription[T] = Subscription(self, tables, query)
        self._subscriptions.append(subscription)
        await subscription.refresh()
        return subscription

    def remove(self, subscription: Subscription) -> None:
        if subscription in self._subscriptions:
            self._subscriptions.remove(subscription)

    def publish(self, tables: Iterable[str]) -> None:
        """Schedule a fresh snapshot for every subscription reading any of ``tables``."""
        changed = frozenset(tables)
        for subscription in list(self._subscriptions):
            if subscription.tables & changed:
                task = subscription.schedule_refresh()
                if task is not None and task not in self._tasks:
                    self._tasks.add(task)
                    task.add_done_callback(self._tasks.discard)

    @property
    def in_flight(self) -> int:
        """Refresh tasks that have not finished yet."""
        return len(self._tasks)

    async def wait_idle(self) -> None:
        """Wait until every scheduled refresh has delivered its snapshot."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def close(self) -> None:
        for subscription in list(self._subscriptions):
            await subscription.close()
        for task in list(self._tasks):
            task.cancel()
        await asyncio.gather(*list(self._tasks), return_exceptions=True)
