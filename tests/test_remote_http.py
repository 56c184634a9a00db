# tests/test_remote_http.py

from __future__ import annotations

import json

import httpx
import pytest

from tasksync.sync.remote import (
    HttpTaskClient,
    RemoteConnectivityError,
    RemoteError,
    RemoteNotFoundError,
    task_from_payload,
    task_to_payload,
)
from tasksync.tasks.task_models import Location, SyncStatus, Task, TaskStatus


def _task(**overrides) -> Task:
    fields = dict(
        id="task_local",
        title="Audit 1",
        status=TaskStatus.IN_PROGRESS,
        sync_status=SyncStatus.PENDING_SYNC,
        created_at=1_700_000_000_000,
        updated_at=1_700_000_060_000,
        description="pumps",
        price=12.5,
        location=Location(52.0, 4.0, "Main St 1"),
        image_refs=["file:///first.jpg", "file:///second.jpg"],
        expires_at=None,
    )
    fields.update(overrides)
    return Task(**fields)


def _client(handler) -> HttpTaskClient:
    return HttpTaskClient("https://api.example.test/", transport=httpx.MockTransport(handler))


def test_payload_uses_iso_timestamps_and_first_image() -> None:
    payload = task_to_payload(_task())

    assert payload["created_at"] == "2023-11-14T22:13:20Z"
    assert payload["updated_at"] == "2023-11-14T22:14:20Z"
    assert payload["expires_at"] is None
    assert payload["image_url"] == "file:///first.jpg"
    assert payload["status"] == "in_progress"
    assert payload["location"] == {"lat": 52.0, "lng": 4.0, "address": "Main St 1"}

    back = task_from_payload(payload, task_id="task_local")
    assert back.created_at == 1_700_000_000_000
    assert back.updated_at == 1_700_000_060_000
    assert back.image_refs == ["file:///first.jpg"]


def test_payload_without_title_is_rejected() -> None:
    with pytest.raises(ValueError):
        task_from_payload({"status": "done"})


@pytest.mark.asyncio
async def test_create_posts_payload_and_parses_result() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(201, json={"id": "task_42", "status": "pending"})

    client = _client(handler)
    result = await client.create_remote(_task())
    await client.aclose()

    assert result is not None
    assert result.id == "task_42"
    assert result.status == TaskStatus.PENDING
    [req] = seen
    assert req.method == "POST"
    assert req.url.path == "/tasks"
    assert json.loads(req.content)["title"] == "Audit 1"


@pytest.mark.asyncio
async def test_update_puts_to_server_id() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.method == "PUT"
        assert request.url.path == "/tasks/task_42"
        return httpx.Response(200, json={"id": "task_42", "status": "cancelled"})

    client = _client(handler)
    result = await client.update_remote("task_42", _task())
    await client.aclose()

    assert result is not None and result.status == TaskStatus.CANCELLED


@pytest.mark.asyncio
async def test_connect_errors_are_expected_failures() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("network unreachable", request=request)

    client = _client(handler)
    assert await client.create_remote(_task()) is None
    assert await client.update_remote("task_1", _task()) is None
    with pytest.raises(RemoteConnectivityError):
        await client.delete_remote("task_1")
    assert await client.ping() is False
    await client.aclose()


@pytest.mark.asyncio
async def test_http_error_classes() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path.endswith("/missing"):
            return httpx.Response(404, json={"error": "not found"})
        return httpx.Response(500, text="boom")

    client = _client(handler)
    with pytest.raises(RemoteNotFoundError):
        await client.update_remote("missing", _task())
    with pytest.raises(RemoteNotFoundError):
        await client.delete_remote("missing")

    with pytest.raises(RemoteError) as exc_info:
        await client.update_remote("task_1", _task())
    assert exc_info.value.status_code == 500
    assert not isinstance(exc_info.value, RemoteConnectivityError)
    await client.aclose()


@pytest.mark.asyncio
async def test_missing_collection_endpoint_is_not_a_record_miss() -> None:
    client = _client(lambda request: httpx.Response(404))
    with pytest.raises(RemoteError) as exc_info:
        await client.create_remote(_task())
    assert not isinstance(exc_info.value, RemoteNotFoundError)
    await client.aclose()


@pytest.mark.asyncio
async def test_malformed_body_raises_remote_error() -> None:
    client = _client(lambda request: httpx.Response(200, text="<html>gateway</html>"))
    with pytest.raises(RemoteError):
        await client.update_remote("task_1", _task())
    with pytest.raises(RemoteError):
        await client.create_remote(_task())
    await client.aclose()


@pytest.mark.asyncio
async def test_ping_checks_health_endpoint() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200 if request.url.path == "/health" else 404)

    client = _client(handler)
    assert await client.ping() is True
    await client.aclose()


def test_base_url_is_required() -> None:
    with pytest.raises(ValueError):
        HttpTaskClient("  ")
