from __future__ import annotations

import asyncio
import json
import logging
import uuid
from datetime import UTC, datetime
from typing import Any, Protocol
from urllib import error, parse, request

from pydantic import ValidationError as PydanticValidationError

from ..config.settings import Settings
from .errors import ProtocolViolation, TransportError
from .lifecycle import STATUS_RANK
from .models import CancelAck, Task

logger = logging.getLogger(__name__)

GENERATE_PATHS: dict[str, str] = {
    "cover_letter": "/ai/cover-letter/generate/",
    "job_match": "/ai/job-match/analyze/",
    "interview_questions": "/ai/interview-questions/generate/",
}


class RemoteProcessor(Protocol):
    """Opaque network-backed generation service."""

    async def create_task(
        self, kind: str, params: dict[str, Any], *, async_mode: bool
    ) -> Task: ...

    async def get_task(self, task_id: str) -> Task: ...

    async def request_cancel(self, task_id: str) -> CancelAck: ...

    async def list_tasks(self, *, pending_only: bool = False) -> list[Task]: ...


class HttpRemoteProcessor:
    """REST client for the remote generation processor.

    Requests use ``urllib`` and run in a worker thread so a waiting poller never
    blocks the event loop.
    """

    def __init__(
        self,
        *,
        base_url: str,
        api_token: str = "",
        timeout_s: float = 10.0,
        sync_timeout_s: float = 120.0,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.api_token = api_token
        self.timeout_s = timeout_s
        self.sync_timeout_s = sync_timeout_s

    async def create_task(
        self, kind: str, params: dict[str, Any], *, async_mode: bool
    ) -> Task:
        path = GENERATE_PATHS.get(kind)
        if path is None:
            raise ValueError(f"Unsupported content type: {kind}")
        body = {**params, "async_mode": async_mode, "save_to_history": False}
        timeout_s = self.timeout_s if async_mode else self.sync_timeout_s
        data = await asyncio.to_thread(
            self._request, "POST", path, body, timeout_s=timeout_s, operation="create_task"
        )
        if not isinstance(data, dict):
            raise ProtocolViolation(
                "Generation response was not an object", operation="create_task"
            )
        if async_mode or "status" in data:
            return task_from_wire(data, kind=kind)
        # Sync generation may answer with the bare artifact instead of a task record.
        now = datetime.now(tz=UTC)
        return task_from_wire(
            {
                "id": data.get("task_id") or data.get("id") or f"sync-{uuid.uuid4()}",
                "status": "completed",
                "result": data,
                "created_at": now,
                "updated_at": now,
            },
            kind=kind,
        )

    async def get_task(self, task_id: str) -> Task:
        path = f"/ai/tasks/{parse.quote(task_id, safe='')}/"
        data = await asyncio.to_thread(
            self._request, "GET", path, None, timeout_s=self.timeout_s, operation="get_task"
        )
        return task_from_wire(data)

    async def request_cancel(self, task_id: str) -> CancelAck:
        path = f"/ai/tasks/{parse.quote(task_id, safe='')}/cancel/"
        try:
            data = await asyncio.to_thread(
                self._request,
                "POST",
                path,
                None,
                timeout_s=self.timeout_s,
                operation="request_cancel",
            )
        except TransportError as exc:
            # The processor answers 400/409 when the task is already finished.
            if exc.status_code in (400, 409):
                return CancelAck(task_id=task_id, accepted=False)
            raise
        if not isinstance(data, dict):
            raise ProtocolViolation(
                "Cancel response was not an object", operation="request_cancel"
            )
        status = _normalize_status(data.get("status"))
        accepted = bool(data.get("cancelled")) or status == "cancelled"
        return CancelAck(
            task_id=task_id,
            accepted=accepted,
            status=status if status in STATUS_RANK else None,
        )

    async def list_tasks(self, *, pending_only: bool = False) -> list[Task]:
        path = "/ai/tasks/pending/" if pending_only else "/ai/tasks/"
        data = await asyncio.to_thread(
            self._request, "GET", path, None, timeout_s=self.timeout_s, operation="list_tasks"
        )
        items = data.get("results", data.get("items", [])) if isinstance(data, dict) else data
        if not isinstance(items, list):
            raise ProtocolViolation("Task listing did not contain a list", operation="list_tasks")
        return [task_from_wire(item) for item in items]

    def _request(
        self,
        method: str,
        path: str,
        payload: dict[str, Any] | None,
        *,
        timeout_s: float,
        operation: str,
    ) -> Any:
        url = f"{self.base_url}{path}"
        headers = {"Content-Type": "application/json", "Accept": "application/json"}
        if self.api_token:
            headers["Authorization"] = f"Bearer {self.api_token}"
        raw_payload = json.dumps(payload).encode("utf-8") if payload is not None else None
        req = request.Request(url=url, data=raw_payload, method=method, headers=headers)
        try:
            with request.urlopen(req, timeout=timeout_s) as response:
                body = response.read().decode("utf-8")
        except error.HTTPError as exc:
            raw_error = exc.read().decode("utf-8", errors="replace")
            logger.warning(
                "remote_request event=http_error operation=%s method=%s url=%s status=%s",
                operation,
                method,
                url,
                exc.code,
            )
            raise TransportError(
                f"Remote processor rejected {operation}: {raw_error or exc.reason}",
                operation=operation,
                status_code=exc.code,
            ) from exc
        except (TimeoutError, error.URLError, OSError) as exc:
            logger.warning(
                "remote_request event=unreachable operation=%s method=%s url=%s reason=%s",
                operation,
                method,
                url,
                exc,
            )
            raise TransportError(
                f"Remote processor unreachable during {operation}: {exc}",
                operation=operation,
            ) from exc
        if not body:
            return {}
        try:
            return json.loads(body)
        except json.JSONDecodeError as exc:
            raise ProtocolViolation(
                f"Remote processor returned invalid JSON for {operation}",
                operation=operation,
            ) from exc


def task_from_wire(data: Any, *, kind: str | None = None) -> Task:
    """Convert a processor task payload into a Task, mapping ``cancelled`` onto ``failed``."""
    if not isinstance(data, dict):
        raise ProtocolViolation("Task payload is not an object")
    raw_status = data.get("status")
    cancelled = raw_status == "cancelled" or bool(data.get("cancelled", False))
    status = "failed" if cancelled else _normalize_status(raw_status)
    error_message = data.get("error_message") or None
    if cancelled and error_message is None:
        error_message = "Task cancelled"
    raw_id = data.get("id") if data.get("id") is not None else data.get("task_id")
    candidate = {
        "id": "" if raw_id is None else str(raw_id),
        "kind": data.get("kind") or data.get("task_type") or kind,
        "status": status,
        "result": data.get("result") if status == "completed" else None,
        "error_message": error_message if status == "failed" else None,
        "cancelled": cancelled,
        "created_at": data.get("created_at"),
        "updated_at": data.get("updated_at") or data.get("created_at"),
    }
    if not candidate["id"]:
        raise ProtocolViolation("Task payload has no id")
    try:
        return Task.model_validate(candidate)
    except PydanticValidationError as exc:
        raise ProtocolViolation(
            f"Task payload failed validation: {exc.error_count()} error(s)",
            task_id=candidate["id"],
        ) from exc


def _normalize_status(raw: Any) -> str | None:
    if not isinstance(raw, str):
        return None
    return raw.strip().lower()


def build_remote_processor(settings: Settings) -> HttpRemoteProcessor:
    return HttpRemoteProcessor(
        base_url=settings.remote_base_url,
        api_token=settings.remote_api_token,
        timeout_s=settings.remote_timeout_s,
        sync_timeout_s=settings.remote_sync_timeout_s,
    )
