"""Core data models for scrape tasks, queue items and violation scans."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional


def utc_now() -> datetime:
    """Return the current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


class ScrapeKind(Enum):
    """What a scrape run collects."""
    PRODUCT = "product"
    REVIEWS = "reviews"


class TaskStatus(Enum):
    """Lifecycle of a single external scrape run."""
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (TaskStatus.COMPLETED, TaskStatus.FAILED)


class QueueStatus(Enum):
    """Lifecycle of a queued unit of work."""
    QUEUED = "queued"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class ProductStatus(Enum):
    """Stored product lifecycle."""
    ACTIVE = "active"
    QUEUED = "queued"
    REFRESHING = "refreshing"
    ERROR = "error"


class ScanOutcome(Enum):
    """How a violation scan ended."""
    COMPLETED = "completed"
    STOPPED = "stopped"
    FAILED = "failed"
    TIMEOUT = "timeout"


@dataclass
class ScrapeTask:
    """One external scraping run, held in memory by its orchestrator."""
    id: str
    kind: ScrapeKind
    asins: List[str]
    status: TaskStatus = TaskStatus.PENDING
    progress: float = 0.0
    error: Optional[str] = None
    started_at: datetime = field(default_factory=utc_now)
    completed_at: Optional[datetime] = None
    linked_task_ids: List[str] = field(default_factory=list)

    def fail(self, error: str) -> None:
        self.status = TaskStatus.FAILED
        self.error = error
        self.completed_at = utc_now()

    def complete(self) -> None:
        self.status = TaskStatus.COMPLETED
        self.progress = 100.0
        self.completed_at = utc_now()


@dataclass
class QueueItem:
    """A unit of work awaiting processing by the queue manager."""
    id: str
    asin: str
    kind: ScrapeKind = ScrapeKind.PRODUCT
    priority: int = 0
    status: QueueStatus = QueueStatus.QUEUED
    progress: float = 0.0
    attempts: int = 0
    queued_at: datetime = field(default_factory=utc_now)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    error: Optional[str] = None
    task_id: Optional[str] = None
    # Tie-breaker for items enqueued within the same clock tick
    sequence: int = 0


@dataclass
class ViolationFinding:
    """A single policy concern raised by the classifier for a review."""
    type: str
    severity: str
    user_benefit: str
    action: str
    details: str = ""
    category: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Serialize using the stored JSON key names."""
        data = {
            "type": self.type,
            "severity": self.severity,
            "userBenefit": self.user_benefit,
            "action": self.action,
            "details": self.details,
        }
        if self.category is not None:
            data["category"] = self.category
        return data


@dataclass
class ReviewScanResult:
    """Classifier verdict for one review."""
    review_id: str
    violations: List[ViolationFinding]
    scanned_at: datetime = field(default_factory=utc_now)

    @property
    def has_violations(self) -> bool:
        return bool(self.violations)


@dataclass
class ScanReport:
    """Summary of one violation scan run."""
    outcome: ScanOutcome
    total_reviews: int
    submitted: int = 0
    skipped: int = 0
    batches_completed: int = 0
    results: List[ReviewScanResult] = field(default_factory=list)
    persisted: int = 0
    persist_failures: int = 0
    by_type: Dict[str, int] = field(default_factory=dict)
    error: Optional[str] = None

    @property
    def violations_found(self) -> int:
        """Number of reviews with at least one finding."""
        return sum(1 for result in self.results if result.has_violations)

    @property
    def message(self) -> str:
        """User-visible summary of the outcome."""
        if self.outcome is ScanOutcome.COMPLETED:
            return (
                f"Found {self.violations_found} violations in "
                f"{self.submitted} reviews."
            )
        if self.outcome is ScanOutcome.STOPPED:
            return "Review scanning was stopped manually"
        if self.outcome is ScanOutcome.TIMEOUT:
            return "The scan took too long and was cancelled"
        return f"Failed to scan reviews: {self.error}"
