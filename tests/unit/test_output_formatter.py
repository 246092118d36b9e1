"""Unit tests for JSON output formatter."""

import json
import tempfile
from datetime import datetime, timezone
from pathlib import Path

import pytest

from review_monitor.models.data_models import (
    QueueItem,
    QueueStatus,
    ReviewScanResult,
    ScanOutcome,
    ScanReport,
    ScrapeKind,
    ScrapeTask,
    TaskStatus,
    ViolationFinding,
)
from review_monitor.pipeline.output import JSONOutputFormatter


SCANNED_AT = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def sample_report():
    """Completed scan with one flagged review."""
    return ScanReport(
        outcome=ScanOutcome.COMPLETED,
        total_reviews=3,
        submitted=2,
        skipped=1,
        batches_completed=1,
        results=[
            ReviewScanResult(
                review_id="R1",
                violations=[ViolationFinding(
                    type="Content Violation", category="Spam", severity="High",
                    user_benefit="Low", action="Remove", details="External link",
                )],
                scanned_at=SCANNED_AT,
            ),
            ReviewScanResult(review_id="R2", violations=[], scanned_at=SCANNED_AT),
        ],
        persisted=1,
        by_type={"Content Violation": 1},
    )


class TestJSONOutputFormatter:

    @pytest.fixture
    def formatter(self):
        return JSONOutputFormatter()

    def test_format_scan_report_summary(self, formatter, sample_report):
        output = formatter.format_scan_report(sample_report)

        summary = output["summary"]
        assert summary["outcome"] == "completed"
        assert summary["message"] == "Found 1 violations in 2 reviews."
        assert summary["total_reviews"] == 3
        assert summary["skipped"] == 1
        assert summary["violations_found"] == 1
        assert summary["by_type"] == {"Content Violation": 1}
        assert summary["error"] is None

    def test_format_scan_report_results(self, formatter, sample_report):
        results = formatter.format_scan_report(sample_report)["results"]

        assert [r["review_id"] for r in results] == ["R1", "R2"]
        assert results[0]["scanned_at"] == "2024-01-01T12:00:00+00:00"
        assert results[0]["violations"] == [{
            "type": "Content Violation",
            "category": "Spam",
            "severity": "High",
            "userBenefit": "Low",
            "action": "Remove",
            "details": "External link",
        }]
        assert results[1]["violations"] == []

    def test_failed_report(self, formatter):
        report = ScanReport(outcome=ScanOutcome.FAILED, total_reviews=4, error="HTTP 500")

        summary = formatter.format_scan_report(report)["summary"]

        assert summary["outcome"] == "failed"
        assert summary["message"] == "Failed to scan reviews: HTTP 500"

    def test_format_tasks(self, formatter):
        task = ScrapeTask(id="run-1", kind=ScrapeKind.PRODUCT, asins=["B1"], started_at=SCANNED_AT)
        task.linked_task_ids.append("run-2")
        task.complete()

        [row] = formatter.format_tasks([task])

        assert row["status"] == TaskStatus.COMPLETED.value
        assert row["progress"] == 100.0
        assert row["kind"] == "product"
        assert row["linked_task_ids"] == ["run-2"]
        assert row["started_at"] == "2024-01-01T12:00:00+00:00"

    def test_format_queue(self, formatter):
        item = QueueItem(id="product_1", asin="B1", priority=3, progress=42.345, attempts=1)
        item.status = QueueStatus.PROCESSING

        [row] = formatter.format_queue([item])

        assert row["status"] == "processing"
        assert row["progress"] == 42.3
        assert row["priority"] == 3
        assert row["completed_at"] is None

    def test_save_creates_directories(self, formatter, sample_report):
        with tempfile.TemporaryDirectory() as tmpdir:
            output_path = Path(tmpdir) / "nested" / "dir" / "report.json"

            formatter.save(formatter.format_scan_report(sample_report), str(output_path))

            assert output_path.exists()
            with open(output_path) as f:
                data = json.load(f)
            assert data["summary"]["submitted"] == 2
            assert data["results"][0]["review_id"] == "R1"
