"""Client for the Apify actor-run API used for product and review scraping."""

import json
from dataclasses import dataclass
from typing import Any, Dict, List, Optional
from urllib.parse import quote

import httpx

from review_monitor.exceptions import (
    EmptyResponseError,
    ProviderError,
    ResponseDecodeError,
)
from review_monitor.fetcher.http_client import AsyncHTTPClient
from review_monitor.fetcher.retry_handler import RetryHandler


@dataclass
class RunStatus:
    """Provider view of one actor run."""
    run_id: str
    status: str
    progress: float = 0.0
    error: Optional[str] = None


class ApifyClient:
    """
    Thin async wrapper around the Apify v2 REST API.

    Endpoints used:
    - POST /acts/{actorId}/runs                       start a run
    - GET  /acts/{actorId}/runs/{runId}               poll run status
    - GET  /actor-runs/{runId}/dataset/items          fetch results
    - POST /acts/{actorId}/run-sync-get-dataset-items run and return items

    Every call goes through the retry handler; non-2xx statuses in
    ``retryable_status_codes`` raise ProviderError and are retried.
    """

    def __init__(
        self,
        http_client: AsyncHTTPClient,
        retry_handler: RetryHandler,
        retryable_status_codes: Optional[List[int]] = None
    ):
        self.http_client = http_client
        self.retry_handler = retry_handler
        self.retryable_status_codes = frozenset(
            retryable_status_codes or [429, 500, 502, 503, 504]
        )

    @staticmethod
    def _actor_path(actor_id: str) -> str:
        # Actor ids of the form "user~name" are URL-safe but slashes are not
        return quote(actor_id.replace("/", "~"), safe="~")

    def _decode(self, response: httpx.Response) -> Any:
        """Validate status and decode a JSON body."""
        if response.status_code >= 400:
            message = f"Apify request failed: HTTP {response.status_code}"
            if response.status_code in self.retryable_status_codes:
                raise ProviderError(message, status_code=response.status_code)
            # Client errors (bad token, unknown actor) will not heal on retry
            raise httpx.HTTPStatusError(message, request=response.request, response=response)

        text = response.text
        if not text.strip():
            raise EmptyResponseError("Apify returned an empty response")
        try:
            return json.loads(text)
        except ValueError as e:
            raise ResponseDecodeError(f"Apify returned invalid JSON: {e}") from e

    async def _get(self, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        async def attempt():
            response = await self.http_client.get(path, params=params)
            return self._decode(response)

        return await self.retry_handler.execute(attempt, target=path)

    async def _post(self, path: str, body: Dict[str, Any]) -> Any:
        async def attempt():
            response = await self.http_client.post(path, json=body)
            return self._decode(response)

        return await self.retry_handler.execute(attempt, target=path)

    async def start_run(self, actor_id: str, run_input: Dict[str, Any]) -> str:
        """
        Start an actor run.

        Returns:
            The provider's run identifier
        """
        data = await self._post(f"/acts/{self._actor_path(actor_id)}/runs", run_input)
        try:
            return data["data"]["id"]
        except (KeyError, TypeError) as e:
            raise ResponseDecodeError(f"Apify run response missing run id: {data!r}") from e

    async def get_run(self, actor_id: str, run_id: str) -> RunStatus:
        """Poll the status of an actor run."""
        data = await self._get(f"/acts/{self._actor_path(actor_id)}/runs/{run_id}")
        run = (data or {}).get("data") or {}
        progress = run.get("progress") or {}
        status = str(run.get("status", "RUNNING")).upper()
        return RunStatus(
            run_id=run.get("id", run_id),
            status=status,
            progress=float(progress.get("percent", 0) or 0),
            error=run.get("statusMessage") if status == "FAILED" else None,
        )

    async def get_dataset_items(self, run_id: str) -> Any:
        """Fetch the raw result items of a finished run."""
        return await self._get(
            f"/actor-runs/{run_id}/dataset/items",
            params={"format": "json", "clean": "true"}
        )

    async def run_sync(self, actor_id: str, run_input: Dict[str, Any]) -> Any:
        """Run an actor synchronously and return its dataset items."""
        return await self._post(
            f"/acts/{self._actor_path(actor_id)}/run-sync-get-dataset-items",
            run_input
        )
