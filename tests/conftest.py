from __future__ import annotations

from datetime import UTC, datetime, timedelta
from typing import Any

import pytest
from fastapi.testclient import TestClient

from ai_tasks.app.errors import TransportError
from ai_tasks.app.models import CancelAck, GatewayDefaults, PollOptions, Task
from ai_tasks.app.orchestrator import TaskOrchestrator
from ai_tasks.config.settings import Settings
from ai_tasks.main import create_app
from ai_tasks.storage.memory import InMemoryHistoryStore


@pytest.fixture
def cover_letter_params() -> dict[str, Any]:
    return {
        "job_description": "Build data pipelines for the payments team.",
        "company_name": "Acme",
        "job_title": "Data Engineer",
        "resume_text": "Five years of Python and SQL.",
    }


class ScriptedRemoteProcessor:
    """Test-only remote processor that replays a status script per task.

    Each ``get_task`` call consumes the next scripted entry; once the script is
    exhausted the last entry repeats. Entries are a status string or a dict of
    Task field overrides.
    """

    def __init__(self) -> None:
        self._base = datetime(2026, 1, 1, tzinfo=UTC)
        self._next_id = 1
        self._tasks: dict[str, dict[str, Any]] = {}
        self._next_script: list[Any] | None = None
        self.get_calls: list[str] = []
        self.create_calls: list[dict[str, Any]] = []
        self.cancel_calls: list[str] = []
        # task_id -> 1-based get_task call numbers that raise TransportError
        self.transport_failures: dict[str, set[int]] = {}
        self.create_error: Exception | None = None
        self.sync_status = "completed"
        self.sync_error_message = "Model refused the request"

    def script_next(self, statuses: list[Any]) -> None:
        """Script the status sequence of the next task created by ``create_task``."""
        self._next_script = list(statuses)

    def add_task(self, statuses: list[Any], *, kind: str = "cover_letter") -> str:
        return self._register(kind, statuses, status="pending")

    async def create_task(
        self, kind: str, params: dict[str, Any], *, async_mode: bool
    ) -> Task:
        self.create_calls.append({"kind": kind, "params": params, "async_mode": async_mode})
        if self.create_error is not None:
            raise self.create_error
        if async_mode:
            script = self._next_script if self._next_script is not None else ["completed"]
            self._next_script = None
            task_id = self._register(kind, script, status="pending")
            return self._snapshot(task_id)
        task_id = self._register(kind, [], status=self.sync_status)
        return self._snapshot(task_id)

    async def get_task(self, task_id: str) -> Task:
        self.get_calls.append(task_id)
        state = self._tasks[task_id]
        state["calls"] += 1
        if state["calls"] in self.transport_failures.get(task_id, set()):
            raise TransportError("connection reset", operation="get_task")
        if state["cancelled"]:
            state["status"] = "failed"
        elif state["script"]:
            entry = state["script"].pop(0) if len(state["script"]) > 1 else state["script"][0]
            if isinstance(entry, dict):
                state["overrides"] = dict(entry)
                state["status"] = entry.get("status", state["status"])
            else:
                state["overrides"] = {}
                state["status"] = entry
        state["updated_at"] = self._base + timedelta(seconds=state["calls"])
        return self._snapshot(task_id)

    async def request_cancel(self, task_id: str) -> CancelAck:
        self.cancel_calls.append(task_id)
        state = self._tasks[task_id]
        if state["status"] in {"completed", "failed"}:
            return CancelAck(task_id=task_id, accepted=False, status=state["status"])
        state["cancelled"] = True
        return CancelAck(task_id=task_id, accepted=True)

    async def list_tasks(self, *, pending_only: bool = False) -> list[Task]:
        snapshots = [self._snapshot(task_id) for task_id in self._tasks]
        if pending_only:
            return [task for task in snapshots if not task.is_terminal]
        return snapshots

    def _register(self, kind: str, script: list[Any], *, status: str) -> str:
        task_id = f"task-{self._next_id}"
        self._next_id += 1
        self._tasks[task_id] = {
            "kind": kind,
            "status": status,
            "script": list(script),
            "calls": 0,
            "cancelled": False,
            "overrides": {},
            "updated_at": self._base,
        }
        return task_id

    def _snapshot(self, task_id: str) -> Task:
        state = self._tasks[task_id]
        status = state["status"]
        fields: dict[str, Any] = {
            "id": task_id,
            "kind": state["kind"],
            "status": status,
            "created_at": self._base,
            "updated_at": state["updated_at"],
        }
        if status == "completed":
            fields["result"] = {"content": f"Generated {state['kind']} for {task_id}"}
        if status == "failed":
            fields["cancelled"] = state["cancelled"]
            fields["error_message"] = (
                "Task cancelled" if state["cancelled"] else self.sync_error_message
            )
        fields.update(state["overrides"])
        return Task.model_validate(fields)


@pytest.fixture
def remote() -> ScriptedRemoteProcessor:
    return ScriptedRemoteProcessor()


@pytest.fixture
def history() -> InMemoryHistoryStore:
    return InMemoryHistoryStore()


@pytest.fixture
def fast_poll() -> PollOptions:
    return PollOptions(interval_s=0.0, max_attempts=30)


@pytest.fixture
def orchestrator(
    remote: ScriptedRemoteProcessor,
    history: InMemoryHistoryStore,
    fast_poll: PollOptions,
) -> TaskOrchestrator:
    return TaskOrchestrator(
        remote,
        history,
        defaults=GatewayDefaults(),
        poll_defaults=fast_poll,
    )


@pytest.fixture
def client(orchestrator: TaskOrchestrator) -> TestClient:
    app = create_app(orchestrator=orchestrator, settings_override=Settings())
    with TestClient(app) as test_client:
        yield test_client
