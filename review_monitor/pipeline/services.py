"""Wires provider clients, store and pipeline components from one config."""

from typing import Optional

import httpx

from review_monitor.fetcher.apify_client import ApifyClient
from review_monitor.fetcher.classifier_client import ViolationClassifier
from review_monitor.fetcher.http_client import AsyncHTTPClient
from review_monitor.fetcher.retry_handler import RetryHandler
from review_monitor.models.config import MonitorConfig
from review_monitor.monitoring.logger import StructuredLogger
from review_monitor.pipeline.orchestrator import ScrapeOrchestrator
from review_monitor.pipeline.queue_manager import QueueManager
from review_monitor.pipeline.violation_scanner import ViolationScanner
from review_monitor.processor.taxonomy import ViolationTaxonomy
from review_monitor.storage.database import Database
from review_monitor.storage.repository import StoreRepository


class MonitorServices:
    """
    Async context manager owning every component for one monitor session.

    Usage:
        async with MonitorServices(config) as services:
            task_id = await services.orchestrator.start_product_scrape(["B000TEST01"])

    Transports can be injected to point the HTTP clients at in-process mock
    apps. A passed-in database is left open on exit.
    """

    def __init__(
        self,
        config: MonitorConfig,
        logger: Optional[StructuredLogger] = None,
        database: Optional[Database] = None,
        apify_transport: Optional[httpx.AsyncBaseTransport] = None,
        classifier_transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self.config = config
        self.logger = logger or StructuredLogger(level=config.log_level)
        self._owns_database = database is None
        self.database = database or Database.from_config(config)
        self.repository = StoreRepository(self.database)

        headers = {"Authorization": f"Bearer {config.apify_token}"} if config.apify_token else {}
        self._apify_http = AsyncHTTPClient(
            connect_timeout=config.connect_timeout,
            read_timeout=config.read_timeout,
            base_url=config.apify_base_url,
            headers=headers,
            transport=apify_transport,
        )
        # Single-shot scans can run for the whole scan budget
        self._classifier_http = AsyncHTTPClient(
            connect_timeout=config.connect_timeout,
            read_timeout=max(config.read_timeout, config.scan_timeout),
            transport=classifier_transport,
        )

        self.apify = ApifyClient(
            self._apify_http,
            RetryHandler(
                max_attempts=config.provider_max_attempts,
                base_delay=config.provider_base_delay,
                logger=self.logger,
            ),
            retryable_status_codes=config.retryable_status_codes,
        )
        self.classifier = ViolationClassifier(
            self._classifier_http,
            config.classifier_webhook_url or "",
            RetryHandler(
                max_attempts=config.classifier_max_attempts,
                base_delay=config.classifier_base_delay,
                logger=self.logger,
            ),
            ViolationTaxonomy.from_config(config),
        )
        self.orchestrator = ScrapeOrchestrator(self.apify, self.repository, config, self.logger)
        self.queue = QueueManager(self.orchestrator, self.repository, config, self.logger)
        self.scanner = ViolationScanner(self.classifier, self.repository, config, self.logger)

    async def __aenter__(self) -> "MonitorServices":
        await self.database.init()
        await self._apify_http.__aenter__()
        await self._classifier_http.__aenter__()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.queue.stop()
        await self.orchestrator.shutdown()
        await self._classifier_http.__aexit__(exc_type, exc_val, exc_tb)
        await self._apify_http.__aexit__(exc_type, exc_val, exc_tb)
        if self._owns_database:
            await self.database.dispose()
