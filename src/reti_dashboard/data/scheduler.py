"""Release many independent reads in timed waves to avoid overwhelming the node."""

import asyncio
import logging
import weakref
from collections import deque
from dataclasses import dataclass, replace
from typing import Any, Awaitable, Callable, Generic, Sequence, TypeVar

from ..core.config import get_settings
from .cache import QueryCache, QueryKey

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class QueryDescriptor(Generic[T]):
    """A named read: cache key plus the coroutine function that fetches it."""

    key: QueryKey
    fetch: Callable[[], Awaitable[T]]


@dataclass(frozen=True)
class QueuedResult(Generic[T]):
    """Combined snapshot of all queries of one generation, in input order."""

    data: list[T | None]
    is_complete: bool
    is_loading: bool
    is_fetching: bool
    is_error: bool
    error: BaseException | None
    generation: int = 0
    superseded: bool = False


class QueuedQueries(Generic[T]):
    """
    Fetches queries in batches on an interval.

    Cached queries plus the first ``batch_size`` uncached ones are released
    immediately; the rest follow ``batch_size`` at a time every
    ``batch_interval`` seconds. ``is_complete`` turns true once every query
    has been released, whether or not its fetch has resolved.

    Must be started from a running event loop.
    """

    def __init__(
        self,
        cache: QueryCache,
        batch_size: int | None = None,
        batch_interval: float | None = None,
    ):
        settings = get_settings()
        self.cache = cache
        self.batch_size = batch_size if batch_size is not None else settings.query_batch_size
        self.batch_interval = (
            batch_interval
            if batch_interval is not None
            else settings.query_batch_interval_ms / 1000
        )
        if self.batch_size < 1:
            raise ValueError("batch_size must be at least 1")

        self._generation = 0
        self._queries: list[QueryDescriptor[T]] = []
        self._queue: deque[int] = deque()
        self._results: dict[int, Any] = {}
        self._errors: dict[int, BaseException] = {}
        self._pending: set[asyncio.Task] = set()
        self._inflight: set[asyncio.Task] = set()
        self._timer: asyncio.Task | None = None
        self._complete = asyncio.Event()
        # final snapshot of each superseded generation, kept while its waiters hold the event
        self._superseded: weakref.WeakKeyDictionary[asyncio.Event, QueuedResult[T]] = (
            weakref.WeakKeyDictionary()
        )
        self.wave_sizes: list[int] = []

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def is_complete(self) -> bool:
        return self._complete.is_set()

    def start(self, queries: Sequence[QueryDescriptor[T]]) -> None:
        """Begin a new generation, discarding the wave state of the previous one."""
        self.cancel()
        self._superseded[self._complete] = replace(self.result, superseded=True)
        # wake waiters of the superseded generation
        self._complete.set()
        self._generation += 1
        generation = self._generation

        self._queries = list(queries)
        self._queue = deque()
        self._results = {}
        self._errors = {}
        self._pending = set()
        self._complete = asyncio.Event()
        self.wave_sizes = []

        for index, query in enumerate(self._queries):
            entry = self.cache.lookup(query.key)
            if entry is not None:
                self._results[index] = entry.value
            else:
                self._queue.append(index)

        logger.debug(
            f"Query generation {generation}: {len(self._queries)} queries, "
            f"{len(self._queue)} uncached"
        )
        self._release_wave(generation)

        if self._queue:
            self._timer = asyncio.get_running_loop().create_task(self._run_timer(generation))

    def cancel(self) -> None:
        """Stop releasing waves. In-flight fetches are left to settle."""
        if self._timer is not None and not self._timer.done():
            self._timer.cancel()
        self._timer = None

    def _release_wave(self, generation: int) -> None:
        count = min(self.batch_size, len(self._queue))
        wave = [self._queue.popleft() for _ in range(count)]
        loop = asyncio.get_running_loop()

        for index in wave:
            task = loop.create_task(self._fetch(generation, index, self._queries[index]))
            self._pending.add(task)
            self._inflight.add(task)
            task.add_done_callback(self._pending.discard)
            task.add_done_callback(self._inflight.discard)

        if wave:
            self.wave_sizes.append(len(wave))
            logger.debug(f"Released wave of {len(wave)}, {len(self._queue)} remaining")
        if not self._queue:
            self._complete.set()

    async def _run_timer(self, generation: int) -> None:
        while self._queue and generation == self._generation:
            await asyncio.sleep(self.batch_interval)
            if generation != self._generation:
                return
            self._release_wave(generation)

    async def _fetch(self, generation: int, index: int, query: QueryDescriptor[T]) -> None:
        try:
            value = await query.fetch()
        except Exception as e:
            if generation == self._generation:
                self._errors[index] = e
            logger.debug(f"Query {query.key!r} failed: {e}")
            return

        self.cache.set(query.key, value)
        if generation != self._generation:
            # superseded while in flight
            return
        self._results[index] = value

    @property
    def result(self) -> QueuedResult[T]:
        count = len(self._queries)
        error = next((self._errors[i] for i in sorted(self._errors)), None)
        return QueuedResult(
            data=[self._results.get(i) for i in range(count)],
            is_complete=self.is_complete,
            is_loading=not self.is_complete or bool(self._pending),
            is_fetching=bool(self._pending),
            is_error=bool(self._errors),
            error=error,
            generation=self._generation,
        )

    async def wait(self) -> QueuedResult[T]:
        """
        Wait until every query is released and every released fetch settled.

        If ``start`` begins a new generation meanwhile, the snapshot of the
        generation being waited on is returned as it stood when superseded,
        marked ``superseded``.
        """
        generation = self._generation
        complete = self._complete
        await complete.wait()
        while generation == self._generation and self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)
        if generation != self._generation:
            return self._superseded[complete]
        return self.result


async def run_queued(
    cache: QueryCache,
    queries: Sequence[QueryDescriptor[T]],
    batch_size: int | None = None,
    batch_interval: float | None = None,
) -> QueuedResult[T]:
    """Run one generation to completion and return its snapshot."""
    scheduler: QueuedQueries[T] = QueuedQueries(cache, batch_size, batch_interval)
    scheduler.start(queries)
    return await scheduler.wait()
