"""Async provider clients with retry and backoff."""

from .apify_client import ApifyClient, RunStatus
from .classifier_client import ViolationClassifier, decode_classifier_response
from .http_client import AsyncHTTPClient
from .retry_handler import RetryHandler, calculate_backoff_delay

__all__ = [
    "ApifyClient",
    "AsyncHTTPClient",
    "RetryHandler",
    "RunStatus",
    "ViolationClassifier",
    "calculate_backoff_delay",
    "decode_classifier_response",
]
