"""In-memory priority queue bounding concurrent scrape work."""

import asyncio
import itertools
import time
import uuid
from typing import Callable, Dict, List, Optional

from review_monitor.exceptions import ReviewMonitorError, ScrapeTaskError
from review_monitor.models.config import MonitorConfig
from review_monitor.models.data_models import (
    ProductStatus,
    QueueItem,
    QueueStatus,
    ScrapeKind,
    TaskStatus,
    utc_now,
)
from review_monitor.monitoring.logger import StructuredLogger
from review_monitor.pipeline.orchestrator import ScrapeOrchestrator
from review_monitor.storage.repository import StoreRepository


Subscriber = Callable[[List[QueueItem]], None]


class QueueManager:
    """
    Serializes scrape work across many products.

    A tick loop runs every ``queue_tick_interval`` seconds and fills free
    worker slots (at most ``max_concurrent`` items processing) with the
    highest-priority queued items, oldest first among equal priorities. Items
    that have used ``max_retries`` attempts are never selected again.

    State lives only in memory; nothing survives a restart.
    """

    def __init__(
        self,
        orchestrator: ScrapeOrchestrator,
        repository: StoreRepository,
        config: MonitorConfig,
        logger: Optional[StructuredLogger] = None,
        sleeper: Callable = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic
    ):
        self.orchestrator = orchestrator
        self.repository = repository
        self.config = config
        self.max_concurrent = config.max_concurrent
        self.max_retries = config.max_retries
        self.logger = logger or StructuredLogger(level=config.log_level)
        self._sleep = sleeper
        self._clock = clock

        self._items: Dict[str, QueueItem] = {}
        self._workers: Dict[str, asyncio.Task] = {}
        self._removals: Dict[str, asyncio.TimerHandle] = {}
        self._subscribers: List[Subscriber] = []
        self._sequence = itertools.count()
        self._changed = asyncio.Event()
        self._loop_task: Optional[asyncio.Task] = None

    # -- views --------------------------------------------------------------

    @staticmethod
    def _sort_key(item: QueueItem):
        return (-item.priority, item.queued_at, item.sequence)

    def items(self) -> List[QueueItem]:
        """All items, highest priority first, then oldest first."""
        return sorted(self._items.values(), key=self._sort_key)

    def get_item(self, item_id: str) -> Optional[QueueItem]:
        return self._items.get(item_id)

    def status(self) -> Dict[str, int]:
        """Item counts per state."""
        counts = {"total": len(self._items)}
        for state in QueueStatus:
            counts[state.value] = sum(1 for i in self._items.values() if i.status is state)
        return counts

    @property
    def processing_count(self) -> int:
        return len(self._workers)

    def _eligible(self, item: QueueItem) -> bool:
        return (
            item.status is QueueStatus.QUEUED
            and item.id not in self._workers
            and item.attempts < self.max_retries
        )

    def has_pending_work(self) -> bool:
        return bool(self._workers) or any(self._eligible(i) for i in self._items.values())

    # -- subscribers --------------------------------------------------------

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """
        Register a callback receiving the sorted item list on every change.

        The callback is invoked once immediately with the current state.

        Returns:
            A callable that unsubscribes the callback
        """
        self._subscribers.append(callback)
        callback(self.items())

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def _notify(self) -> None:
        self._changed.set()
        if not self._subscribers:
            return
        snapshot = self.items()
        for callback in list(self._subscribers):
            callback(snapshot)

    # -- enqueue and scheduling ---------------------------------------------

    async def enqueue(
        self,
        asins: List[str],
        priority: int = 0,
        kind: ScrapeKind = ScrapeKind.PRODUCT
    ) -> List[QueueItem]:
        """
        Add one item per ASIN and mark stored products queued.

        Product items chain their own review scrape through the orchestrator,
        so review items are only created when asked for explicitly.
        """
        added = []
        for asin in asins:
            asin = asin.strip()
            if not asin:
                continue
            item = QueueItem(
                id=f"{kind.value}_{uuid.uuid4().hex}",
                asin=asin,
                kind=kind,
                priority=priority,
                sequence=next(self._sequence),
            )
            self._items[item.id] = item
            added.append(item)
            self.logger.queue_item_state(item.id, asin, item.status.value, item.attempts)

        await self.repository.set_product_status([i.asin for i in added], ProductStatus.QUEUED)
        self._notify()
        return added

    def tick(self) -> List[QueueItem]:
        """
        Promote eligible items into free worker slots.

        Returns:
            Items started by this tick
        """
        free = self.max_concurrent - len(self._workers)
        if free <= 0:
            return []

        selected = [i for i in self.items() if self._eligible(i)][:free]
        for item in selected:
            item.status = QueueStatus.PROCESSING
            item.started_at = utc_now()
            item.completed_at = None
            item.progress = 0.0
            item.attempts += 1
            self._workers[item.id] = asyncio.create_task(self._work(item))
            self.logger.queue_item_state(item.id, item.asin, item.status.value, item.attempts)

        if selected:
            self._notify()
        return selected

    async def _run_loop(self) -> None:
        while True:
            self.tick()
            await self._sleep(self.config.queue_tick_interval)

    def start(self) -> None:
        """Start the scheduling loop on the running event loop."""
        if self._loop_task is None or self._loop_task.done():
            self._loop_task = asyncio.create_task(self._run_loop())

    async def stop(self) -> None:
        """Cancel the scheduling loop, running workers and pending removals."""
        if self._loop_task is not None:
            self._loop_task.cancel()
            await asyncio.gather(self._loop_task, return_exceptions=True)
            self._loop_task = None

        workers = list(self._workers.values())
        for worker in workers:
            worker.cancel()
        await asyncio.gather(*workers, return_exceptions=True)

        for handle in self._removals.values():
            handle.cancel()
        self._removals.clear()

    async def drain(self, timeout: Optional[float] = None) -> None:
        """
        Wait until no item is processing or eligible to run.

        Requires the scheduling loop to be running (see start()).
        """
        async def wait_idle():
            while self.has_pending_work():
                self._changed.clear()
                await self._changed.wait()

        await asyncio.wait_for(wait_idle(), timeout=timeout)

    # -- workers ------------------------------------------------------------

    async def _work(self, item: QueueItem) -> None:
        try:
            await asyncio.wait_for(self._process(item), timeout=self.config.queue_item_timeout)
            item.status = QueueStatus.COMPLETED
            item.progress = 100.0
            item.completed_at = utc_now()
            self._schedule_removal(item)
        except asyncio.CancelledError:
            await self._fail(item, "Cancelled")
            raise
        except asyncio.TimeoutError:
            await self._fail(item, f"Timed out after {self.config.queue_item_timeout:g}s")
        except Exception as e:
            await self._fail(item, str(e) or type(e).__name__)
        finally:
            self._workers.pop(item.id, None)
            self.logger.queue_item_state(item.id, item.asin, item.status.value, item.attempts)
            self._notify()

    async def _fail(self, item: QueueItem, error: str) -> None:
        item.status = QueueStatus.FAILED
        item.error = error
        item.completed_at = utc_now()
        self.logger.error("queue_item_failed", item_id=item.id, asin=item.asin, error=error)
        try:
            await self.repository.set_product_status([item.asin], ProductStatus.ERROR)
        except ReviewMonitorError as e:
            self.logger.error("status_update_failed", asins=[item.asin], error=str(e))

    async def _process(self, item: QueueItem) -> None:
        await self.repository.set_product_status([item.asin], ProductStatus.REFRESHING)
        item.task_id = await self.orchestrator.start_scraping([item.asin], item.kind)
        started = self._clock()

        while True:
            if await self._is_finished(item):
                return
            elapsed = self._clock() - started
            item.progress = min(95.0, elapsed / self.config.queue_estimated_duration * 100)
            self._notify()
            await self._sleep(self.config.queue_poll_interval)

    async def _is_finished(self, item: QueueItem) -> bool:
        task = self.orchestrator.get_task(item.task_id)
        if task is None:
            raise ScrapeTaskError(f"Unknown scrape task {item.task_id}", task_id=item.task_id)
        if task.status is TaskStatus.FAILED:
            raise ScrapeTaskError(task.error or "Scrape failed", task_id=task.id)
        if task.status is not TaskStatus.COMPLETED:
            return False
        if item.kind is ScrapeKind.REVIEWS:
            return True

        # Product items also wait for chained review runs to settle the row
        if await self.repository.get_product_status(item.asin) is ProductStatus.ACTIVE:
            return True
        linked = [self.orchestrator.get_task(t) for t in task.linked_task_ids]
        return all(t is None or t.status.is_terminal for t in linked)

    def _schedule_removal(self, item: QueueItem) -> None:
        loop = asyncio.get_running_loop()
        self._removals[item.id] = loop.call_later(
            self.config.queue_completed_retention, self._remove, item.id
        )

    def _remove(self, item_id: str) -> None:
        self._removals.pop(item_id, None)
        if self._items.pop(item_id, None) is not None:
            self._notify()

    # -- operator actions ---------------------------------------------------

    def retry_failed(self) -> int:
        """Requeue failed items that still have attempts left."""
        count = 0
        for item in self._items.values():
            if item.status is QueueStatus.FAILED and item.attempts < self.max_retries:
                item.status = QueueStatus.QUEUED
                item.error = None
                count += 1
        self._notify()
        return count

    def clear_completed(self) -> int:
        return self._clear(QueueStatus.COMPLETED)

    def clear_failed(self) -> int:
        return self._clear(QueueStatus.FAILED)

    def _clear(self, state: QueueStatus) -> int:
        ids = [i.id for i in self._items.values() if i.status is state]
        for item_id in ids:
            del self._items[item_id]
            handle = self._removals.pop(item_id, None)
            if handle:
                handle.cancel()
        self._notify()
        return len(ids)
