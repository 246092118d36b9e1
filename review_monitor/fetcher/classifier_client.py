"""Client for the webhook-based review violation classifier."""

import json
from typing import Any, Dict, List, Optional, Sequence

from review_monitor.exceptions import (
    EmptyResponseError,
    ProviderError,
    ResponseDecodeError,
    UnrecognizedResponseError,
)
from review_monitor.fetcher.http_client import AsyncHTTPClient
from review_monitor.fetcher.retry_handler import RetryHandler
from review_monitor.models.data_models import ReviewScanResult, utc_now
from review_monitor.processor.taxonomy import ViolationTaxonomy


# Envelope tags returned by classify_envelope
ENVELOPE_SINGLE = "single"
ENVELOPE_RESULTS = "results"
ENVELOPE_KEYED = "keyed"
ENVELOPE_LIST = "list"


def _result_review_id(entry: Dict[str, Any]) -> Optional[str]:
    for key in ("reviewId", "review_id", "id"):
        value = entry.get(key)
        if value:
            return str(value)
    return None


def classify_envelope(data: Any, submitted_ids: Sequence[str]) -> str:
    """
    Identify which known response envelope a decoded body uses.

    Known envelopes:
        single:  {"violations": [...], "reviewId"?: ...}
        results: {"results": [{"reviewId": ..., "violations": [...]}, ...]}
        keyed:   {"<review id>": {"violations": [...]}, ...}
        list:    [{"reviewId": ..., "violations": [...]}, ...]

    Raises:
        UnrecognizedResponseError: If the body matches none of them
    """
    if isinstance(data, dict):
        if "violations" in data:
            return ENVELOPE_SINGLE
        if isinstance(data.get("results"), list):
            return ENVELOPE_RESULTS
        if data and any(key in data for key in submitted_ids):
            return ENVELOPE_KEYED
    elif isinstance(data, list) and all(isinstance(entry, dict) for entry in data):
        return ENVELOPE_LIST

    raise UnrecognizedResponseError(
        f"Unrecognized classifier response shape: {str(data)[:200]}"
    )


def decode_classifier_response(
    data: Any,
    submitted_ids: Sequence[str],
    taxonomy: ViolationTaxonomy
) -> List[ReviewScanResult]:
    """
    Decode any known classifier envelope into uniform per-review results.

    Only results for submitted review ids are returned.

    Args:
        data: Decoded JSON body
        submitted_ids: Review ids sent in the request
        taxonomy: Taxonomy used to normalize findings

    Returns:
        One ReviewScanResult per recognized review

    Raises:
        UnrecognizedResponseError: If the body matches no known envelope
    """
    envelope = classify_envelope(data, submitted_ids)
    scanned_at = utc_now()
    submitted = set(submitted_ids)

    if envelope == ENVELOPE_SINGLE:
        review_id = _result_review_id(data)
        if review_id is None:
            if len(submitted_ids) != 1:
                raise UnrecognizedResponseError(
                    "Single-result classifier response without a review id "
                    f"for {len(submitted_ids)} submitted reviews"
                )
            review_id = submitted_ids[0]
        entries = [(review_id, data.get("violations"))]
    elif envelope == ENVELOPE_KEYED:
        entries = [
            (review_id, (data.get(review_id) or {}).get("violations"))
            for review_id in submitted_ids
            if isinstance(data.get(review_id), dict)
        ]
    else:
        rows = data["results"] if envelope == ENVELOPE_RESULTS else data
        entries = [
            (_result_review_id(row), row.get("violations"))
            for row in rows
            if isinstance(row, dict)
        ]

    results = []
    for review_id, raw_findings in entries:
        if review_id is None or review_id not in submitted:
            continue
        results.append(ReviewScanResult(
            review_id=review_id,
            violations=taxonomy.normalize_all(raw_findings),
            scanned_at=scanned_at,
        ))
    return results


class ViolationClassifier:
    """
    Posts reviews to the classifier webhook and decodes its verdicts.

    Any non-2xx status, an empty body or invalid JSON counts as a retryable
    failure; an unrecognized envelope is terminal.
    """

    def __init__(
        self,
        http_client: AsyncHTTPClient,
        webhook_url: str,
        retry_handler: RetryHandler,
        taxonomy: ViolationTaxonomy
    ):
        self.http_client = http_client
        self.webhook_url = webhook_url
        self.retry_handler = retry_handler
        self.taxonomy = taxonomy

    async def _post_once(self, body: Dict[str, Any]) -> Any:
        response = await self.http_client.post(
            self.webhook_url,
            json=body,
            headers={"Accept": "application/json"}
        )
        if not response.is_success:
            raise ProviderError(
                f"HTTP {response.status_code}", status_code=response.status_code
            )

        text = response.text
        if not text.strip():
            raise EmptyResponseError("Empty response")
        try:
            return json.loads(text)
        except ValueError as e:
            raise ResponseDecodeError(f"Parse error: {e}") from e

    async def _classify(self, body: Dict[str, Any], submitted_ids: List[str]) -> List[ReviewScanResult]:
        data = await self.retry_handler.execute(self._post_once, body, target="classifier")
        return decode_classifier_response(data, submitted_ids, self.taxonomy)

    async def classify_review(self, review: Dict[str, Any]) -> List[ReviewScanResult]:
        """Classify one prepared review payload."""
        return await self._classify({"review": review}, [review["id"]])

    async def classify_reviews(self, reviews: List[Dict[str, Any]]) -> List[ReviewScanResult]:
        """Classify a list of prepared review payloads in a single request."""
        return await self._classify(
            {"reviews": reviews}, [review["id"] for review in reviews]
        )
