"""JSON output formatter for scan reports, scrape tasks and queue state.

Example scan report:
{
    "summary": {
        "outcome": "completed",
        "message": "Found 2 violations in 10 reviews.",
        "total_reviews": 12,
        "submitted": 10,
        "skipped": 2,
        "batches_completed": 2,
        "violations_found": 2,
        "persisted": 2,
        "persist_failures": 0,
        "by_type": {"Fake Review": 1, "Spam": 1}
    },
    "results": [
        {"review_id": "R1", "scanned_at": "...", "violations": [...]}
    ]
}
"""

import json
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

from review_monitor.models.data_models import QueueItem, ScanReport, ScrapeTask


def _timestamp(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


class JSONOutputFormatter:
    """Formats monitor results as JSON-serializable dictionaries."""

    def format_scan_report(self, report: ScanReport) -> Dict[str, Any]:
        """
        Format a scan report.

        Args:
            report: Finished scan report

        Returns:
            Dictionary with summary and per-review results sections
        """
        return {
            "summary": {
                "outcome": report.outcome.value,
                "message": report.message,
                "total_reviews": report.total_reviews,
                "submitted": report.submitted,
                "skipped": report.skipped,
                "batches_completed": report.batches_completed,
                "violations_found": report.violations_found,
                "persisted": report.persisted,
                "persist_failures": report.persist_failures,
                "by_type": dict(report.by_type),
                "error": report.error,
            },
            "results": [
                {
                    "review_id": result.review_id,
                    "scanned_at": _timestamp(result.scanned_at),
                    "violations": [finding.to_dict() for finding in result.violations],
                }
                for result in report.results
            ],
        }

    def format_tasks(self, tasks: List[ScrapeTask]) -> List[Dict[str, Any]]:
        return [
            {
                "id": task.id,
                "kind": task.kind.value,
                "asins": list(task.asins),
                "status": task.status.value,
                "progress": round(task.progress, 1),
                "error": task.error,
                "started_at": _timestamp(task.started_at),
                "completed_at": _timestamp(task.completed_at),
                "linked_task_ids": list(task.linked_task_ids),
            }
            for task in tasks
        ]

    def format_queue(self, items: List[QueueItem]) -> List[Dict[str, Any]]:
        return [
            {
                "id": item.id,
                "asin": item.asin,
                "kind": item.kind.value,
                "priority": item.priority,
                "status": item.status.value,
                "progress": round(item.progress, 1),
                "attempts": item.attempts,
                "error": item.error,
                "queued_at": _timestamp(item.queued_at),
                "started_at": _timestamp(item.started_at),
                "completed_at": _timestamp(item.completed_at),
            }
            for item in items
        ]

    def save(self, data: Dict[str, Any], path: str = "out/scan_report.json") -> None:
        """
        Save formatted data to a JSON file.

        Creates parent directories if they don't exist.

        Args:
            data: Formatted dictionary (see format_scan_report)
            path: Output file path (default: out/scan_report.json)
        """
        output_path = Path(path)
        output_path.parent.mkdir(parents=True, exist_ok=True)

        with open(output_path, 'w', encoding='utf-8') as f:
            json.dump(data, f, indent=2, ensure_ascii=False, default=str)
