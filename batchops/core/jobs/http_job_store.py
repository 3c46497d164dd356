"""Job store client for the remote bulk-job API."""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from typing import Any

import httpx

from batchops.config import DEFAULT_REQUEST_TIMEOUT_SEC, DEFAULT_STORE_API_PATH
from batchops.core.errors import JobStoreError
from batchops.core.jobs.models import Job

logger = logging.getLogger(__name__)


class HttpJobStore:
    """Talks to ``<base_url><api_path>``.

    POST creates, PATCH checkpoints, DELETE retires, GET lists open jobs for a scope.
    Every transport or status failure surfaces as ``JobStoreError``.
    """

    def __init__(
        self,
        base_url: str,
        *,
        api_path: str = DEFAULT_STORE_API_PATH,
        timeout_sec: float = DEFAULT_REQUEST_TIMEOUT_SEC,
        headers: Mapping[str, str] | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._url = base_url.rstrip("/") + "/" + api_path.lstrip("/")
        self._headers = dict(headers or {})
        self._owns_client = client is None
        # Never trust environment proxy variables for the job store.
        self._client = client or httpx.AsyncClient(timeout=timeout_sec, trust_env=False)

    @property
    def url(self) -> str:
        return self._url

    async def _request(self, method: str, **kwargs: Any) -> httpx.Response:
        try:
            response = await self._client.request(
                method, self._url, headers=self._headers, **kwargs
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise JobStoreError(
                f"{method} {self._url} returned {e.response.status_code}", cause=e
            ) from e
        except httpx.RequestError as e:
            raise JobStoreError(f"{method} {self._url} failed: {e}", cause=e) from e
        return response

    @staticmethod
    def _json(response: httpx.Response) -> Any:
        try:
            return response.json()
        except ValueError as e:
            raise JobStoreError("Job store returned a non-JSON body", cause=e) from e

    async def create(self, scope: str, job_type: str, item_ids: Sequence[str]) -> str:
        response = await self._request(
            "POST", json={"scope": scope, "type": job_type, "itemIds": list(item_ids)}
        )
        body = self._json(response)
        job = body.get("job") if isinstance(body, dict) else None
        job_id = job.get("id") if isinstance(job, dict) else None
        if job_id is None or str(job_id) == "":
            raise JobStoreError("Job store create response has no job id")
        return str(job_id)

    async def checkpoint(self, job_id: str, completed_item_id: str, progress_hint: int) -> None:
        await self._request(
            "PATCH",
            json={"jobId": job_id, "completedItemId": completed_item_id, "progress": progress_hint},
        )

    async def retire(self, job_id: str) -> None:
        await self._request("DELETE", params={"jobId": job_id})

    async def list_open(self, scope: str) -> list[Job]:
        response = await self._request("GET", params={"scope": scope})
        body = self._json(response)
        raw_jobs = body.get("jobs") if isinstance(body, dict) else None
        if not isinstance(raw_jobs, list):
            logger.warning("Job store listing has no jobs array", extra={"scope": scope})
            return []
        jobs: list[Job] = []
        for raw in raw_jobs:
            job = Job.from_payload(raw, scope=scope) if isinstance(raw, dict) else None
            if job is None:
                logger.warning("Skipping listed job without id", extra={"scope": scope})
                continue
            jobs.append(job)
        return jobs

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()
