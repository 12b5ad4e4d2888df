"""Client for the remote generation job runner (Inngest).

``submit`` sends the generation event and returns the run handle;
``status`` reports ``running``/``completed``/``failed`` for a handle.
Status-check failures are split into two kinds because the poller treats
them differently: ``JobStatusFormatError`` (the request itself is bad) and
``JobRunnerUnavailableError`` (worth retrying).
"""

from __future__ import annotations

from enum import Enum
from typing import Any

import httpx

from queryloop.config import settings
from queryloop.errors import (
    JobRunnerUnavailableError,
    JobStatusFormatError,
    JobSubmissionError,
)
from queryloop.models.conversation import SearchResultItem

RUN_ENDPOINTS = (
    "/v1/events/{handle}/runs",
    "/v1/runs/{handle}",
)

FAILED_STATES = {"failed", "cancelled", "canceled"}


class JobStatus(str, Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


def parse_status(payload: Any) -> JobStatus:
    """Read the first run's status from a runs payload.

    No runs yet, or an unknown status string, counts as still running.
    """
    if not isinstance(payload, dict):
        raise JobStatusFormatError("Job status response is not an object")
    runs = payload.get("data")
    if isinstance(runs, dict):
        runs = [runs]
    if not isinstance(runs, list) or not runs or not isinstance(runs[0], dict):
        return JobStatus.RUNNING
    raw = str(runs[0].get("status") or "").strip().lower()
    if raw == "completed":
        return JobStatus.COMPLETED
    if raw in FAILED_STATES:
        return JobStatus.FAILED
    return JobStatus.RUNNING


class JobRunner:
    def __init__(self, client: httpx.AsyncClient | None = None):
        self._client = client

    def _http(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=settings.job_runner_timeout_seconds)
        return self._client

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def submit(
        self,
        *,
        query: str,
        results: list[SearchResultItem],
        message_id: str,
        model: str,
        use_direct_model: bool,
    ) -> str:
        if not settings.inngest_event_key:
            raise JobSubmissionError("AI processing service is not configured.")

        url = f"{settings.inngest_event_url.rstrip('/')}/e/{settings.inngest_event_key}"
        event = {
            "name": settings.generation_event_name,
            "data": {
                "searchInput": query,
                "searchResult": [item.to_row() for item in results],
                "recordId": message_id,
                "selectedModel": model,
                "useDirectModel": use_direct_model,
            },
        }
        try:
            response = await self._http().post(url, json=event)
            response.raise_for_status()
            payload = response.json()
        except (httpx.HTTPError, ValueError) as e:
            raise JobSubmissionError("AI processing service unavailable. Please try again.") from e

        ids = payload.get("ids") if isinstance(payload, dict) else None
        if not isinstance(ids, list) or not ids or not isinstance(ids[0], str) or not ids[0]:
            raise JobSubmissionError("AI service did not return a job handle.")
        return ids[0]

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if settings.inngest_signing_key:
            headers["Authorization"] = f"Bearer {settings.inngest_signing_key}"
        return headers

    async def status(self, handle: str) -> JobStatus:
        if not handle or not isinstance(handle, str):
            raise JobStatusFormatError("A valid job handle is required")

        base = settings.inngest_api_url.rstrip("/")
        last_error: Exception | None = None
        for endpoint in RUN_ENDPOINTS:
            try:
                response = await self._http().get(
                    base + endpoint.format(handle=handle), headers=self._headers()
                )
            except httpx.HTTPError as e:
                raise JobRunnerUnavailableError(f"Status check failed: {e}") from e

            if response.status_code == 404:
                last_error = JobRunnerUnavailableError("Job run not found yet")
                continue
            if response.status_code == 400:
                raise JobStatusFormatError("Invalid status check request format")
            if response.status_code >= 400:
                raise JobRunnerUnavailableError(f"Status check returned HTTP {response.status_code}")
            try:
                payload = response.json()
            except ValueError as e:
                raise JobStatusFormatError("Job status response is not valid JSON") from e
            return parse_status(payload)

        raise last_error or JobRunnerUnavailableError("No status endpoint answered")
