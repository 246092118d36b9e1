"""Exception hierarchy for the review monitor."""

from typing import Optional


class ReviewMonitorError(Exception):
    """Base class for all review monitor errors."""


class ProviderError(ReviewMonitorError):
    """An external provider answered with a non-2xx status."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class EmptyResponseError(ReviewMonitorError):
    """An external provider answered with an empty body."""


class ResponseDecodeError(ReviewMonitorError):
    """An external provider answered with a body that is not valid JSON."""


class UnrecognizedResponseError(ReviewMonitorError):
    """The classifier answered with JSON in none of the known envelopes."""


class IngestionError(ReviewMonitorError):
    """A scrape result set could not be ingested."""


class InvalidRecordError(ReviewMonitorError):
    """A single scraped record failed validation and was skipped."""


class PersistenceError(ReviewMonitorError):
    """A write to the store failed."""


class ScrapeTaskError(ReviewMonitorError):
    """A scrape task failed or exceeded its polling bound."""

    def __init__(self, message: str, task_id: Optional[str] = None):
        super().__init__(message)
        self.task_id = task_id
