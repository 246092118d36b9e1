"""Scrape task orchestrator: starts provider runs, monitors them, ingests results."""

import asyncio
import time
import uuid
from typing import Any, Callable, Dict, List, Optional, Tuple

import httpx

from review_monitor.exceptions import InvalidRecordError, ReviewMonitorError, ScrapeTaskError
from review_monitor.fetcher.apify_client import ApifyClient
from review_monitor.models.config import MonitorConfig
from review_monitor.models.data_models import ProductStatus, ScrapeKind, ScrapeTask, TaskStatus
from review_monitor.monitoring.logger import StructuredLogger
from review_monitor.processor.normalizer import (
    normalize_product,
    normalize_review,
    validate_result_items,
)
from review_monitor.storage.repository import StoreRepository


_FAILED_PROVIDER_STATUSES = frozenset({"FAILED", "ABORTED", "ABORTING", "TIMED-OUT", "TIMING-OUT"})


def map_provider_status(status: str) -> TaskStatus:
    """
    Map a provider run status onto the local task state machine.

    SUCCEEDED is completed; FAILED, ABORTED and TIMED-OUT (and their
    in-progress spellings) are failed; READY, RUNNING and anything unknown
    are still processing.
    """
    status = (status or "").upper()
    if status == "SUCCEEDED":
        return TaskStatus.COMPLETED
    if status in _FAILED_PROVIDER_STATUSES:
        return TaskStatus.FAILED
    return TaskStatus.PROCESSING


class ScrapeOrchestrator:
    """
    Drives scrape runs to completion and materializes their results.

    Each started task gets one supervised monitor (an asyncio.Task) that polls
    the provider every ``poll_interval`` seconds, bounded by
    ``poll_max_attempts`` polls and ``poll_max_duration`` seconds. Completed
    runs are ingested into the store; product runs optionally chain a review
    run per ingested ASIN.
    """

    def __init__(
        self,
        apify_client: ApifyClient,
        repository: StoreRepository,
        config: MonitorConfig,
        logger: Optional[StructuredLogger] = None,
        sleeper: Callable = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic
    ):
        """
        Initialize orchestrator.

        Args:
            apify_client: Scraper provider client
            repository: Store repository for ingestion
            config: Monitor configuration
            logger: Structured logger
            sleeper: Awaitable sleep used between polls
            clock: Monotonic clock used for the monitoring bound
        """
        self.apify = apify_client
        self.repository = repository
        self.config = config
        self.logger = logger or StructuredLogger(level=config.log_level)
        self._sleep = sleeper
        self._clock = clock

        self._tasks: Dict[str, ScrapeTask] = {}
        self._monitors: Dict[str, asyncio.Task] = {}
        self._done: Dict[str, asyncio.Event] = {}

    # -- provider inputs ----------------------------------------------------

    def _product_url(self, asin: str) -> str:
        return f"https://www.{self.config.amazon_domain}/dp/{asin}"

    def build_product_input(self, asins: List[str]) -> Dict[str, Any]:
        return {
            "categoryOrProductUrls": [{"url": self._product_url(a), "method": "GET"} for a in asins],
            "maxItemsPerStartUrl": 1,
            "proxyCountry": self.config.proxy_country,
            "scrapeProductDetails": True,
            "scrapeProductVariantPrices": False,
        }

    def build_review_input(self, asin: str) -> Dict[str, Any]:
        return {
            "filterByRatings": ["allStars"],
            "includeGdprSensitive": False,
            "maxReviews": self.config.max_reviews,
            "productUrls": [{"url": self._product_url(asin), "method": "GET"}],
            "proxyCountry": self.config.proxy_country,
            "reviewsEnqueueProductVariants": False,
            "scrapeProductDetails": False,
            "sort": self.config.review_sort,
        }

    # -- starting -----------------------------------------------------------

    async def start_scraping(self, asins: List[str], kind: ScrapeKind = ScrapeKind.PRODUCT) -> str:
        """
        Submit targets to the provider and schedule monitoring.

        Args:
            asins: Target product ASINs (exactly one for review scrapes)
            kind: Product or review scrape

        Returns:
            The new task's identifier

        Raises:
            ValueError: If no ASIN is given, or several for a review scrape
            ProviderError / httpx.HTTPError: If the submission call fails
        """
        asins = [a.strip() for a in asins if a and a.strip()]
        if not asins:
            raise ValueError("At least one ASIN is required")
        if kind is ScrapeKind.REVIEWS and len(asins) != 1:
            raise ValueError("Review scrapes take exactly one ASIN")

        sync = kind is ScrapeKind.REVIEWS and self.config.review_run_sync
        if sync:
            # run-sync returns items directly; there is no provider run id
            task_id = f"sync-{uuid.uuid4().hex}"
        else:
            actor_id, run_input = self._actor_and_input(asins, kind)
            task_id = await self.apify.start_run(actor_id, run_input)

        task = ScrapeTask(id=task_id, kind=kind, asins=asins)
        self._tasks[task_id] = task
        self._done[task_id] = asyncio.Event()
        self.logger.task_started(task_id, kind.value, asins)

        self._monitors[task_id] = asyncio.create_task(self._supervise(task, sync))
        return task_id

    async def start_product_scrape(self, asins: List[str]) -> str:
        return await self.start_scraping(asins, ScrapeKind.PRODUCT)

    async def start_review_scrape(self, asin: str) -> str:
        return await self.start_scraping([asin], ScrapeKind.REVIEWS)

    def _actor_and_input(self, asins: List[str], kind: ScrapeKind) -> Tuple[str, Dict[str, Any]]:
        if kind is ScrapeKind.PRODUCT:
            return self.config.product_actor_id, self.build_product_input(asins)
        return self.config.review_actor_id, self.build_review_input(asins[0])

    # -- monitoring ---------------------------------------------------------

    async def _supervise(self, task: ScrapeTask, sync: bool) -> None:
        """Run one task's monitor and convert any failure into task state."""
        try:
            await self.repository.set_product_status(task.asins, ProductStatus.REFRESHING)
            if sync:
                task.status = TaskStatus.PROCESSING
                items = await self.apify.run_sync(
                    self.config.review_actor_id, self.build_review_input(task.asins[0])
                )
                await self._ingest(task, items)
            else:
                await self._poll_until_done(task)
        except asyncio.CancelledError:
            if not task.status.is_terminal:
                task.fail("Scrape monitoring cancelled")
                self.logger.task_failed(task.id, task.error)
            raise
        except Exception as e:
            task.fail(str(e) or type(e).__name__)
            self.logger.task_failed(task.id, task.error)
            await self._mark_error(task)
        finally:
            self._monitors.pop(task.id, None)
            self._done[task.id].set()

    async def _poll_until_done(self, task: ScrapeTask) -> None:
        actor_id = (
            self.config.product_actor_id if task.kind is ScrapeKind.PRODUCT
            else self.config.review_actor_id
        )
        started = self._clock()

        for _ in range(self.config.poll_max_attempts):
            run = await self.apify.get_run(actor_id, task.id)
            status = map_provider_status(run.status)
            task.progress = max(task.progress, min(run.progress, 100.0))
            self.logger.task_status(task.id, run.status, task.progress)

            if status is TaskStatus.COMPLETED:
                items = await self.apify.get_dataset_items(task.id)
                await self._ingest(task, items)
                return
            if status is TaskStatus.FAILED:
                raise ScrapeTaskError(run.error or f"Scraping failed: {run.status}", task_id=task.id)

            task.status = TaskStatus.PROCESSING
            if self._clock() - started >= self.config.poll_max_duration:
                break
            await self._sleep(self.config.poll_interval)

        raise ScrapeTaskError(
            f"Scrape did not finish within {self.config.poll_max_attempts} polls "
            f"or {self.config.poll_max_duration:g}s",
            task_id=task.id,
        )

    async def _mark_error(self, task: ScrapeTask) -> None:
        try:
            await self.repository.set_product_status(task.asins, ProductStatus.ERROR)
        except ReviewMonitorError as e:
            self.logger.error("status_update_failed", task_id=task.id, asins=task.asins, error=str(e))

    # -- ingestion ----------------------------------------------------------

    async def _ingest(self, task: ScrapeTask, items: Any) -> None:
        task.status = TaskStatus.PROCESSING
        if task.kind is ScrapeKind.PRODUCT:
            asins = await self.ingest_products(task.id, items)
            if self.config.chain_review_scrape:
                await self._chain_reviews(task, asins)
        else:
            await self.ingest_reviews(task.id, task.asins[0], items)
        task.complete()
        self.logger.task_status(task.id, task.status.value, task.progress)

    async def ingest_products(self, task_id: str, items: Any) -> List[str]:
        """
        Normalize and upsert product items by ASIN.

        Items that fail validation are skipped; a write failure propagates.

        Returns:
            ASINs written, in result order

        Raises:
            IngestionError: If the result set is empty or malformed
            PersistenceError: If a row write fails
        """
        records = validate_result_items(items)
        written, skipped = [], 0

        for raw in records:
            try:
                row = normalize_product(raw)
            except InvalidRecordError as e:
                skipped += 1
                self.logger.record_skipped(task_id, str(e), raw.get("asin"))
                continue
            await self.repository.upsert_product(row)
            written.append(row["asin"])

        self.logger.ingestion_complete(task_id, ScrapeKind.PRODUCT.value, len(written), skipped)
        return written

    async def ingest_reviews(self, task_id: str, asin: str, items: Any) -> int:
        """
        Normalize and upsert review items for one product by review id.

        Returns:
            Number of reviews written

        Raises:
            IngestionError: If the result set is empty or malformed
            IngestionError: If the parent product is missing
            PersistenceError: If a row write fails
        """
        records = validate_result_items(items)
        rows, skipped = [], 0

        for raw in records:
            try:
                rows.append(normalize_review(raw))
            except InvalidRecordError as e:
                skipped += 1
                self.logger.record_skipped(task_id, str(e), raw.get("reviewId") or raw.get("id"))

        written = await self.repository.upsert_reviews(asin, rows) if rows else 0
        await self.repository.set_product_status([asin], ProductStatus.ACTIVE)
        self.logger.ingestion_complete(task_id, ScrapeKind.REVIEWS.value, written, skipped)
        return written

    async def _chain_reviews(self, task: ScrapeTask, asins: List[str]) -> None:
        for asin in asins:
            try:
                review_task_id = await self.start_review_scrape(asin)
            except (ReviewMonitorError, httpx.HTTPError) as e:
                self.logger.warning("review_chain_failed", task_id=task.id, asin=asin, error=str(e))
                continue
            task.linked_task_ids.append(review_task_id)

    # -- inspection and lifecycle -------------------------------------------

    def get_task(self, task_id: str) -> Optional[ScrapeTask]:
        return self._tasks.get(task_id)

    def tasks(self) -> List[ScrapeTask]:
        return sorted(self._tasks.values(), key=lambda t: t.started_at)

    async def wait(self, task_id: str, timeout: Optional[float] = None) -> ScrapeTask:
        """
        Wait until a task reaches a terminal state.

        Raises:
            KeyError: If the task is unknown
            asyncio.TimeoutError: If timeout elapses first
        """
        task = self._tasks[task_id]
        await asyncio.wait_for(self._done[task_id].wait(), timeout=timeout)
        return task

    async def wait_all(self, task_id: str, timeout: Optional[float] = None) -> List[ScrapeTask]:
        """Wait for a task and every task chained from it."""
        finished = []
        pending = [task_id]
        while pending:
            task = await self.wait(pending.pop(0), timeout=timeout)
            finished.append(task)
            pending.extend(task.linked_task_ids)
        return finished

    async def cancel(self, task_id: str) -> bool:
        """Cancel a task's monitor. Returns False if it was not running."""
        monitor = self._monitors.get(task_id)
        if monitor is None:
            return False
        monitor.cancel()
        try:
            await monitor
        except asyncio.CancelledError:
            pass
        task = self._tasks[task_id]
        if not task.status.is_terminal:
            # Cancelled before the monitor ever ran
            task.fail("Scrape monitoring cancelled")
            self._monitors.pop(task_id, None)
            self._done[task_id].set()
        if task.status is TaskStatus.FAILED:
            await self._mark_error(task)
        return True

    async def shutdown(self) -> None:
        """Cancel every running monitor."""
        for task_id in list(self._monitors):
            await self.cancel(task_id)
