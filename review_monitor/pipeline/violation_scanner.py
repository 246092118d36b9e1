"""Violation scan pipeline: submits reviews to the classifier and stores findings."""

import asyncio
import time
from collections import Counter
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Tuple

from review_monitor.exceptions import ReviewMonitorError
from review_monitor.fetcher.classifier_client import ViolationClassifier
from review_monitor.models.config import MonitorConfig
from review_monitor.models.data_models import ReviewScanResult, ScanOutcome, ScanReport
from review_monitor.monitoring.logger import StructuredLogger
from review_monitor.storage.repository import StoreRepository


ProgressCallback = Callable[[float], None]


def _content(review: Dict[str, Any]) -> str:
    text = review.get("content") or review.get("text") or ""
    return text if isinstance(text, str) else str(text)


def _iso(value: Any) -> Any:
    return value.isoformat() if isinstance(value, datetime) else value


def prepare_review_payloads(reviews: List[Dict[str, Any]]) -> Tuple[List[Dict[str, Any]], int]:
    """
    Filter out unusable reviews and build classifier payloads.

    A review is skipped when it has no id or its body text is empty or
    whitespace only.

    Returns:
        Tuple of (payloads, number skipped)
    """
    payloads, skipped = [], 0
    for review in reviews:
        review_id = review.get("review_id") or review.get("id")
        content = _content(review)
        if not review_id or not str(review_id).strip() or not content.strip():
            skipped += 1
            continue
        payloads.append({
            "id": str(review_id),
            "content": content,
            "rating": review.get("rating"),
            "date": _iso(review.get("review_date") or review.get("date")),
            "author": review.get("author"),
            "verified": bool(review.get("verified_purchase") or review.get("verified")),
            "product_id": review.get("asin") or review.get("product_id"),
            "title": review.get("title"),
            "helpful_votes": review.get("helpful_votes") or 0,
            "total_votes": review.get("total_votes") or 0,
            "variant": review.get("variant"),
        })
    return payloads, skipped


class ViolationScanner:
    """
    Runs violation scans in one of two modes.

    ``batched``: reviews are split into batches of ``scan_batch_size``; each
    review in a batch is posted concurrently, batches run strictly in
    sequence with ``scan_batch_delay`` seconds between them, and the stop
    flag is checked before every batch.

    ``single``: all reviews go out in one request under ``scan_timeout``
    seconds, while a simulated progress value climbs to 95% over
    ``scan_progress_window`` seconds.

    Findings are persisted best-effort: a failed write is logged and counted
    but does not end the scan.
    """

    def __init__(
        self,
        classifier: ViolationClassifier,
        repository: StoreRepository,
        config: MonitorConfig,
        logger: Optional[StructuredLogger] = None,
        sleeper: Callable = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic
    ):
        self.classifier = classifier
        self.repository = repository
        self.config = config
        self.logger = logger or StructuredLogger(level=config.log_level)
        self._sleep = sleeper
        self._clock = clock
        self._stop = asyncio.Event()
        self.progress = 0.0

    def stop(self) -> None:
        """Request the running scan to stop before its next submission."""
        self._stop.set()

    @property
    def stop_requested(self) -> bool:
        return self._stop.is_set()

    def _set_progress(self, value: float, on_progress: Optional[ProgressCallback]) -> None:
        self.progress = value
        if on_progress:
            on_progress(value)

    async def scan_product(
        self,
        asin: str,
        mode: Optional[str] = None,
        on_progress: Optional[ProgressCallback] = None
    ) -> ScanReport:
        """Scan every stored review of a product."""
        reviews = await self.repository.list_reviews(asin)
        return await self.scan(reviews, mode=mode, on_progress=on_progress)

    async def scan(
        self,
        reviews: List[Dict[str, Any]],
        mode: Optional[str] = None,
        on_progress: Optional[ProgressCallback] = None
    ) -> ScanReport:
        """
        Scan reviews and persist any findings.

        Args:
            reviews: Review rows (store dicts or raw review objects)
            mode: "batched" or "single"; defaults to config.scan_mode
            on_progress: Called with a 0-100 progress value as the scan advances

        Returns:
            ScanReport describing the outcome; errors are reported, not raised
        """
        mode = mode or self.config.scan_mode
        self._stop.clear()
        self._set_progress(0.0, on_progress)

        payloads, skipped = prepare_review_payloads(reviews)
        report = ScanReport(outcome=ScanOutcome.COMPLETED, total_reviews=len(reviews), skipped=skipped)
        if skipped:
            self.logger.warning("reviews_skipped", count=skipped, reason="missing id or content")

        try:
            if mode == "single":
                await asyncio.wait_for(
                    self._scan_single(payloads, report, on_progress),
                    timeout=self.config.scan_timeout,
                )
            else:
                await self._scan_batched(payloads, report, on_progress)
        except asyncio.TimeoutError:
            report.outcome = ScanOutcome.TIMEOUT
            report.error = f"Scan exceeded {self.config.scan_timeout:g}s"
        except Exception as e:
            report.outcome = ScanOutcome.FAILED
            report.error = str(e) or type(e).__name__
            self.logger.error("scan_failed", error=report.error, submitted=report.submitted)

        if report.outcome is ScanOutcome.COMPLETED:
            self._set_progress(100.0, on_progress)
        self.logger.scan_finished(report.outcome.value, report.submitted, report.violations_found)
        return report

    async def _scan_batched(
        self,
        payloads: List[Dict[str, Any]],
        report: ScanReport,
        on_progress: Optional[ProgressCallback]
    ) -> None:
        size = self.config.scan_batch_size
        batches = [payloads[i:i + size] for i in range(0, len(payloads), size)]

        for index, batch in enumerate(batches):
            if index:
                await self._sleep(self.config.scan_batch_delay)
            if self._stop.is_set():
                report.outcome = ScanOutcome.STOPPED
                return

            started = self._clock()
            report.submitted += len(batch)
            responses = await self._classify_batch(batch)
            results = [result for response in responses for result in response]
            await self._record(results, report)

            report.batches_completed += 1
            self.logger.scan_batch(index + 1, len(batch), (self._clock() - started) * 1000)
            self._set_progress(report.batches_completed / len(batches) * 100, on_progress)

    async def _classify_batch(self, batch: List[Dict[str, Any]]) -> List[List[ReviewScanResult]]:
        """Classify a batch concurrently; the first failure cancels the rest."""
        calls = [asyncio.ensure_future(self.classifier.classify_review(review)) for review in batch]
        try:
            return await asyncio.gather(*calls)
        finally:
            pending = [call for call in calls if not call.done()]
            for call in pending:
                call.cancel()
            await asyncio.gather(*pending, return_exceptions=True)

    async def _scan_single(
        self,
        payloads: List[Dict[str, Any]],
        report: ScanReport,
        on_progress: Optional[ProgressCallback]
    ) -> None:
        if self._stop.is_set():
            report.outcome = ScanOutcome.STOPPED
            return
        if not payloads:
            return

        ticker = asyncio.create_task(self._simulate_progress(on_progress))
        try:
            report.submitted = len(payloads)
            results = await self.classifier.classify_reviews(payloads)
        finally:
            ticker.cancel()
            await asyncio.gather(ticker, return_exceptions=True)

        await self._record(results, report)
        report.batches_completed = 1

    async def _simulate_progress(self, on_progress: Optional[ProgressCallback]) -> None:
        # Not provider progress; only shows the request is still outstanding
        started = self._clock()
        while True:
            elapsed = self._clock() - started
            self._set_progress(min(95.0, elapsed / self.config.scan_progress_window * 100), on_progress)
            await asyncio.sleep(1.0)

    async def _record(self, results: List[ReviewScanResult], report: ScanReport) -> None:
        report.results.extend(results)
        counts = Counter(report.by_type)
        for result in results:
            if not result.has_violations:
                continue
            counts.update(finding.type for finding in result.violations)
            try:
                await self.repository.add_violation(
                    result.review_id, result.violations, scanned_at=result.scanned_at
                )
                report.persisted += 1
            except ReviewMonitorError as e:
                report.persist_failures += 1
                self.logger.error("violation_persist_failed", review_id=result.review_id, error=str(e))
        report.by_type = dict(counts)
