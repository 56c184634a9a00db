# src/tasksync/sync/remote.py

"""
Remote authority client.

Failure classes:
- connectivity (network unreachable, timeouts): expected; create/update return None,
  delete raises RemoteConnectivityError
- not found (404): RemoteNotFoundError
- anything else (5xx, malformed body): RemoteError, propagated to the caller
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

import httpx

from ..tasks.task_models import (
    Location,
    SyncStatus,
    Task,
    TaskStatus,
    iso_to_ms,
    ms_to_iso,
    new_task_id,
    now_ms,
)

logger = logging.getLogger(__name__)


class RemoteError(Exception):
    """Hard remote failure. Must reach the caller for logging."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class RemoteConnectivityError(RemoteError):
    """Network unreachable. Callers keep the work for the next sync trigger."""


class RemoteNotFoundError(RemoteError):
    """The remote record does not exist (e.g. server data was reset)."""


@dataclass(frozen=True, slots=True)
class CreateResult:
    id: str
    status: TaskStatus


@dataclass(frozen=True, slots=True)
class UpdateResult:
    status: TaskStatus


# ---- wire codec ----


def task_to_payload(task: Task) -> dict[str, Any]:
    """Serialize a task for the REST API (ISO-8601 timestamps, single image_url)."""
    return {
        "title": task.title,
        "description": task.description,
        "status": task.status.value,
        "price": task.price,
        "location": task.location.to_dict() if task.location else None,
        "image_url": task.image_refs[0] if task.image_refs else None,
        "expires_at": ms_to_iso(task.expires_at),
        "created_at": ms_to_iso(task.created_at),
        "updated_at": ms_to_iso(task.updated_at),
    }


def task_from_payload(payload: dict[str, Any], *, task_id: str | None = None) -> Task:
    """
    Build a Task from an API payload.

    Used for queued create/update operations whose local record may be gone.
    """
    try:
        title = str(payload["title"])
        status = TaskStatus(payload.get("status") or TaskStatus.PENDING)
    except (KeyError, ValueError) as e:
        raise ValueError(f"invalid task payload: {payload!r}") from e

    created_at = iso_to_ms(payload.get("created_at")) or now_ms()
    updated_at = iso_to_ms(payload.get("updated_at")) or created_at
    raw_location = payload.get("location")
    image_url = payload.get("image_url")
    price = payload.get("price")

    return Task(
        id=task_id or str(payload.get("id") or new_task_id()),
        title=title,
        status=status,
        sync_status=SyncStatus.PENDING_SYNC,
        created_at=created_at,
        updated_at=max(updated_at, created_at),
        description=payload.get("description"),
        price=float(price) if price is not None else None,
        location=Location.from_dict(raw_location) if raw_location else None,
        image_refs=[image_url] if image_url else [],
        expires_at=iso_to_ms(payload.get("expires_at")),
    )


def _parse_status(data: Any, op: str) -> TaskStatus:
    if not isinstance(data, dict):
        raise RemoteError(f"{op}: expected a JSON object, got {type(data).__name__}")
    try:
        return TaskStatus(data["status"])
    except (KeyError, ValueError) as e:
        raise RemoteError(f"{op}: missing or unknown status in response") from e


class HttpTaskClient:
    """
    REST client for the task backend.

    Timeouts and connection retries are explicit configuration: the transport retries
    connection establishment `max_retries` times; there is no backoff beyond that,
    the next sync trigger is the retry.
    """

    def __init__(
        self,
        base_url: str,
        *,
        timeout_seconds: float = 15.0,
        connect_timeout_seconds: float = 5.0,
        max_retries: int = 1,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        if not base_url or not base_url.strip():
            raise ValueError("base_url is required")

        if transport is None:
            transport = httpx.AsyncHTTPTransport(retries=max(0, int(max_retries)))

        self._base_url = base_url.rstrip("/")
        self._client = httpx.AsyncClient(
            base_url=self._base_url,
            timeout=httpx.Timeout(timeout_seconds, connect=connect_timeout_seconds),
            transport=transport,
            headers={"Accept": "application/json"},
        )

    @property
    def base_url(self) -> str:
        return self._base_url

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        """Send a request; transport failures become RemoteConnectivityError."""
        try:
            return await self._client.request(method, url, **kwargs)
        except httpx.TransportError as e:
            raise RemoteConnectivityError(f"{method} {url}: {e.__class__.__name__}: {e}") from e

    @staticmethod
    def _check(resp: httpx.Response, op: str) -> None:
        if resp.status_code == 404:
            raise RemoteNotFoundError(f"{op}: not found", status_code=404)
        if resp.is_error:
            raise RemoteError(
                f"{op}: HTTP {resp.status_code} {resp.reason_phrase}",
                status_code=resp.status_code,
            )

    @staticmethod
    def _json(resp: httpx.Response, op: str) -> Any:
        try:
            return resp.json()
        except ValueError as e:
            raise RemoteError(f"{op}: malformed JSON response") from e

    async def create_remote(self, task: Task) -> CreateResult | None:
        op = f"create task={task.id}"
        try:
            resp = await self._request("POST", "/tasks", json=task_to_payload(task))
        except RemoteConnectivityError as e:
            logger.info("%s: network unavailable (%s)", op, e)
            return None

        if resp.status_code == 404:
            # The collection endpoint itself is missing: a deployment problem, not a missing record.
            raise RemoteError(f"{op}: endpoint not found", status_code=404)
        self._check(resp, op)
        data = self._json(resp, op)
        status = _parse_status(data, op)
        server_id = data.get("id")
        if not server_id:
            raise RemoteError(f"{op}: response has no id")
        logger.debug("%s -> server_id=%s status=%s", op, server_id, status.value)
        return CreateResult(id=str(server_id), status=status)

    async def update_remote(self, server_id: str, task: Task) -> UpdateResult | None:
        op = f"update server_id={server_id}"
        try:
            resp = await self._request("PUT", f"/tasks/{server_id}", json=task_to_payload(task))
        except RemoteConnectivityError as e:
            logger.info("%s: network unavailable (%s)", op, e)
            return None

        self._check(resp, op)
        status = _parse_status(self._json(resp, op), op)
        logger.debug("%s -> status=%s", op, status.value)
        return UpdateResult(status=status)

    async def delete_remote(self, server_id: str) -> None:
        op = f"delete server_id={server_id}"
        resp = await self._request("DELETE", f"/tasks/{server_id}")
        self._check(resp, op)
        logger.debug("%s -> ok", op)

    async def ping(self) -> bool:
        """Reachability probe used by the connectivity loop."""
        try:
            resp = await self._client.get("/health")
        except httpx.TransportError:
            return False
        return resp.is_success
