from __future__ import annotations

import json
from typing import Any

import httpx
import pytest

from batchops.core.errors import JobStoreError
from batchops.core.jobs import HttpJobStore


class _Api:
    """Captures requests and replies with a canned response."""

    def __init__(self, status: int = 200, body: Any = None) -> None:
        self.status = status
        self.body = {} if body is None else body
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if isinstance(self.body, str):
            return httpx.Response(self.status, text=self.body)
        return httpx.Response(self.status, json=self.body)


def _store(api: _Api) -> HttpJobStore:
    client = httpx.AsyncClient(transport=httpx.MockTransport(api))
    return HttpJobStore("http://studio.local/", client=client)


@pytest.mark.asyncio
async def test_create_posts_items_and_returns_job_id() -> None:
    api = _Api(body={"job": {"id": 17}})
    store = _store(api)

    job_id = await store.create("project-1", "spec-fill-batch", ["A", "B"])

    assert job_id == "17"
    req = api.requests[0]
    assert req.method == "POST"
    assert str(req.url) == "http://studio.local/api/bulk-job"
    assert json.loads(req.content) == {
        "scope": "project-1",
        "type": "spec-fill-batch",
        "itemIds": ["A", "B"],
    }


@pytest.mark.asyncio
async def test_create_without_job_id_is_an_error() -> None:
    store = _store(_Api(body={"job": {}}))
    with pytest.raises(JobStoreError):
        await store.create("p", "t", ["A"])


@pytest.mark.asyncio
async def test_checkpoint_and_retire_use_patch_and_delete() -> None:
    api = _Api(body={"ok": True})
    store = _store(api)

    await store.checkpoint("job-1", "B", 67)
    await store.retire("job-1")

    patch, delete = api.requests
    assert patch.method == "PATCH"
    assert json.loads(patch.content) == {"jobId": "job-1", "completedItemId": "B", "progress": 67}
    assert delete.method == "DELETE"
    assert delete.url.params["jobId"] == "job-1"


@pytest.mark.asyncio
async def test_list_open_parses_jobs_and_skips_records_without_id() -> None:
    api = _Api(
        body={
            "jobs": [
                {
                    "id": "j1",
                    "type": "spec-fill-batch",
                    "input": json.dumps({"itemIds": ["A", "B", "C"]}),
                    "output": json.dumps({"completedItemIds": ["A"]}),
                    "progress": 33,
                },
                {"type": "portrait-batch", "input": "{}"},
                {"id": "j2", "type": "portrait-batch", "input": "not json", "output": None},
            ]
        }
    )
    store = _store(api)

    jobs = await store.list_open("project-1")

    assert api.requests[0].method == "GET"
    assert api.requests[0].url.params["scope"] == "project-1"
    assert [j.id for j in jobs] == ["j1", "j2"]
    assert jobs[0].scope == "project-1"
    assert jobs[0].remaining_item_ids() == ["B", "C"]
    assert jobs[1].item_ids == []


@pytest.mark.asyncio
async def test_list_open_without_jobs_array_is_empty() -> None:
    store = _store(_Api(body={"unexpected": 1}))
    assert await store.list_open("p") == []


@pytest.mark.asyncio
async def test_status_errors_surface_as_job_store_error() -> None:
    store = _store(_Api(status=503, body={"error": "down"}))
    with pytest.raises(JobStoreError) as excinfo:
        await store.checkpoint("job-1", "A", 50)
    assert isinstance(excinfo.value.cause, httpx.HTTPStatusError)


@pytest.mark.asyncio
async def test_non_json_body_is_an_error() -> None:
    store = _store(_Api(body="<html>oops</html>"))
    with pytest.raises(JobStoreError):
        await store.list_open("p")


@pytest.mark.asyncio
async def test_transport_errors_surface_as_job_store_error() -> None:
    def refuse(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    client = httpx.AsyncClient(transport=httpx.MockTransport(refuse))
    store = HttpJobStore("http://studio.local", client=client)
    with pytest.raises(JobStoreError):
        await store.retire("job-1")
