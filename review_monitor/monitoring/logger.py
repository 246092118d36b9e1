"""Structured logging for scrape, queue and scan monitoring."""

import json
import logging
from typing import Any, Optional


class StructuredLogger:
    """Structured logger with uniform schema."""

    def __init__(self, name: str = "review_monitor", level: str = "INFO"):
        self.logger = logging.getLogger(name)
        self.logger.setLevel(getattr(logging, level.upper()))

        if not self.logger.handlers:
            handler = logging.StreamHandler()
            handler.setFormatter(logging.Formatter('%(message)s'))
            self.logger.addHandler(handler)

    def log(self, event: str, **kwargs: Any) -> None:
        """
        Log structured event.

        Standard keys: event, task_id, kind, asin, review_id, item_id, status,
                      attempt, delay, error, elapsed_ms, batch, count
        """
        log_data = {"event": event, **kwargs}
        self.logger.info(json.dumps(log_data, default=str))

    def warning(self, event: str, **kwargs: Any) -> None:
        log_data = {"event": event, **kwargs}
        self.logger.warning(json.dumps(log_data, default=str))

    def error(self, event: str, **kwargs: Any) -> None:
        log_data = {"event": event, **kwargs}
        self.logger.error(json.dumps(log_data, default=str))

    def task_started(self, task_id: str, kind: str, asins: list) -> None:
        self.log("task_started", task_id=task_id, kind=kind, asins=asins)

    def task_status(self, task_id: str, status: str, progress: float) -> None:
        self.log("task_status", task_id=task_id, status=status, progress=progress)

    def task_failed(self, task_id: str, error: str) -> None:
        self.error("task_failed", task_id=task_id, error=error)

    def ingestion_complete(self, task_id: str, kind: str, count: int, skipped: int) -> None:
        self.log("ingestion_complete", task_id=task_id, kind=kind, count=count, skipped=skipped)

    def record_skipped(self, task_id: str, reason: str, record_id: Optional[str] = None) -> None:
        self.warning("record_skipped", task_id=task_id, record_id=record_id, reason=reason)

    def request_retry(self, target: str, attempt: int, delay: float, error: str) -> None:
        self.warning("request_retry", target=target, attempt=attempt, delay=delay, error=error)

    def queue_item_state(self, item_id: str, asin: str, status: str, attempts: int) -> None:
        self.log("queue_item", item_id=item_id, asin=asin, status=status, attempts=attempts)

    def scan_batch(self, batch: int, size: int, elapsed_ms: float) -> None:
        self.log("scan_batch", batch=batch, batch_size=size, elapsed_ms=elapsed_ms)

    def scan_finished(self, outcome: str, submitted: int, violations: int) -> None:
        self.log("scan_finished", outcome=outcome, submitted=submitted, violations=violations)
