from __future__ import annotations

import asyncio
import threading
from contextlib import aclosing
from typing import Any

import pytest

from ai_tasks.app.errors import StorageError, TaskFailed, TransportError, ValidationError
from ai_tasks.app.gateway import TaskGateway
from ai_tasks.app.models import GatewayDefaults, HistoryItem, SubmitOptions
from ai_tasks.app.orchestrator import TaskOrchestrator
from ai_tasks.storage.memory import InMemoryHistoryStore

COVER_LETTER_PARAMS = {
    "job_description": "Build data pipelines for the payments team.",
    "company_name": "Acme",
    "job_title": "Data Engineer",
    "resume_text": "Five years of Python and SQL.",
}


def test_sync_submit_returns_completed_task_and_retains_history(
    remote, history, orchestrator
) -> None:
    task = asyncio.run(orchestrator.submit("acct-1", "cover_letter", COVER_LETTER_PARAMS))

    assert task.status == "completed"
    assert remote.create_calls[0]["async_mode"] is False
    page = history.list("acct-1")
    assert len(page.items) == 1
    item = page.items[0]
    assert item.content_type == "cover_letter"
    assert item.payload == task.result
    assert item.task_id == task.id
    assert item.parameters["tone"] == "professional"


def test_sync_submit_respects_history_opt_out(remote, history, orchestrator) -> None:
    asyncio.run(
        orchestrator.submit(
            "acct-1",
            "cover_letter",
            COVER_LETTER_PARAMS,
            SubmitOptions(save_to_history=False),
        )
    )

    assert history.list("acct-1").items == []


def test_sync_failure_raises_task_failed_and_skips_history(remote, history, orchestrator) -> None:
    remote.sync_status = "failed"

    with pytest.raises(TaskFailed) as excinfo:
        asyncio.run(orchestrator.submit("acct-1", "cover_letter", COVER_LETTER_PARAMS))

    assert excinfo.value.error_message == "Model refused the request"
    assert history.list("acct-1").items == []


def test_malformed_parameters_fail_before_remote_call(remote, orchestrator) -> None:
    params = {"job_description": "Anything", "company_name": "Acme"}

    with pytest.raises(ValidationError) as excinfo:
        asyncio.run(orchestrator.submit("acct-1", "cover_letter", params))

    assert remote.create_calls == []
    locations = {tuple(error["loc"]) for error in excinfo.value.errors}
    assert ("job_title",) in locations


def test_resume_source_must_be_exactly_one(remote, orchestrator) -> None:
    params = {**COVER_LETTER_PARAMS, "resume_version_id": 7}

    with pytest.raises(ValidationError):
        asyncio.run(orchestrator.submit("acct-1", "cover_letter", params))

    assert remote.create_calls == []


def test_unknown_kind_is_validation_error(remote, orchestrator) -> None:
    with pytest.raises(ValidationError, match="Unknown content type"):
        asyncio.run(orchestrator.submit("acct-1", "thank_you_note", {}))

    assert remote.create_calls == []


def test_interview_questions_default_count_is_sent(remote, orchestrator) -> None:
    params = {"job_description": "Backend role", "company_name": "Acme", "job_title": "SRE"}

    asyncio.run(orchestrator.submit("acct-1", "interview_questions", params))

    assert remote.create_calls[0]["params"]["question_count"] == 10


def test_submission_transport_failure_is_distinct_from_task_failure(
    remote, history, orchestrator
) -> None:
    remote.create_error = TransportError("connection refused", operation="create_task")

    with pytest.raises(TransportError) as excinfo:
        asyncio.run(orchestrator.submit("acct-1", "cover_letter", COVER_LETTER_PARAMS))

    assert not isinstance(excinfo.value, TaskFailed)
    assert excinfo.value.operation == "create_task"
    assert history.list("acct-1").items == []


def test_async_cover_letter_scenario(remote, history, orchestrator) -> None:
    remote.script_next(["processing", "processing", "completed"])

    async def scenario():
        handle = await orchestrator.submit(
            "acct-1", "cover_letter", COVER_LETTER_PARAMS, SubmitOptions(mode="async")
        )
        assert handle.status == "pending"
        assert history.list("acct-1").items == []
        return handle, await orchestrator.poll(handle.id, last_seen=handle)

    handle, task = asyncio.run(scenario())

    assert task.status == "completed"
    assert task.result is not None
    assert remote.get_calls == [handle.id] * 3
    items = history.list("acct-1").items
    assert len(items) == 1
    assert items[0].content_type == "cover_letter"
    assert items[0].task_id == handle.id


def test_async_completion_is_retained_once_with_two_pollers(remote, history, orchestrator) -> None:
    remote.script_next(["processing", "completed"])

    async def scenario():
        handle = await orchestrator.submit(
            "acct-1", "cover_letter", COVER_LETTER_PARAMS, SubmitOptions(mode="async")
        )
        return await asyncio.gather(orchestrator.poll(handle.id), orchestrator.poll(handle.id))

    results = asyncio.run(scenario())

    assert all(task.status == "completed" for task in results)
    assert len(history.list("acct-1").items) == 1


def test_async_failure_retains_nothing(remote, history, orchestrator) -> None:
    remote.script_next(["processing", "failed"])

    async def scenario():
        handle = await orchestrator.submit(
            "acct-1",
            "job_match",
            {"job_description": "x", "resume_version_id": 3},
            SubmitOptions(mode="async"),
        )
        await orchestrator.poll(handle.id)

    with pytest.raises(TaskFailed):
        asyncio.run(scenario())

    assert history.list("acct-1").items == []
    assert not orchestrator.gateway.has_pending_retention("task-1")


def test_gateway_defaults_are_explicit(remote, history, fast_poll) -> None:
    orchestrator = TaskOrchestrator(
        remote,
        history,
        defaults=GatewayDefaults(mode="async", save_to_history=False),
        poll_defaults=fast_poll,
    )

    async def scenario():
        handle = await orchestrator.submit("acct-1", "cover_letter", COVER_LETTER_PARAMS)
        assert handle.status == "pending"
        return await orchestrator.poll(handle.id)

    task = asyncio.run(scenario())

    assert task.status == "completed"
    assert history.list("acct-1").items == []


def test_observe_retains_completed_async_result(remote, history, orchestrator) -> None:
    remote.script_next(["processing", "completed"])

    async def scenario() -> list[str]:
        handle = await orchestrator.submit(
            "acct-2", "cover_letter", COVER_LETTER_PARAMS, SubmitOptions(mode="async")
        )
        return [task.status async for task in orchestrator.observe(handle.id)]

    statuses = asyncio.run(scenario())

    assert statuses == ["processing", "completed"]
    assert len(history.list("acct-2").items) == 1


def test_pending_task_listing(remote, orchestrator) -> None:
    remote.add_task(["processing"])
    done = remote.add_task(["completed"])

    async def scenario():
        await orchestrator.get_task(done)
        return await orchestrator.list_tasks(pending_only=True)

    pending = asyncio.run(scenario())

    assert [task.id for task in pending] == ["task-1"]


class FlakyHistoryStore(InMemoryHistoryStore):
    """In-memory store whose first ``create`` calls fail, as if the database were down."""

    def __init__(self, failures: int = 1) -> None:
        super().__init__()
        self.failures = failures
        self.create_threads: list[int] = []

    def create(self, owner_id: str, **fields: Any) -> HistoryItem:
        self.create_threads.append(threading.get_ident())
        if self.failures > 0:
            self.failures -= 1
            raise RuntimeError("connection refused")
        return super().create(owner_id, **fields)


def test_failed_retention_is_kept_for_the_next_poll(remote, fast_poll) -> None:
    store = FlakyHistoryStore(failures=1)
    orchestrator = TaskOrchestrator(remote, store, poll_defaults=fast_poll)
    remote.script_next(["completed"])

    handle = asyncio.run(
        orchestrator.submit(
            "acct-1", "cover_letter", COVER_LETTER_PARAMS, SubmitOptions(mode="async")
        )
    )

    with pytest.raises(StorageError) as excinfo:
        asyncio.run(orchestrator.poll(handle.id))
    assert excinfo.value.details["task_id"] == handle.id
    assert orchestrator.gateway.has_pending_retention(handle.id)

    asyncio.run(orchestrator.poll(handle.id))

    assert len(store.list("acct-1").items) == 1
    assert not orchestrator.gateway.has_pending_retention(handle.id)


def test_history_writes_run_off_the_event_loop_thread(remote, fast_poll) -> None:
    store = FlakyHistoryStore(failures=0)
    orchestrator = TaskOrchestrator(remote, store, poll_defaults=fast_poll)

    async def scenario() -> int:
        await orchestrator.submit("acct-1", "cover_letter", COVER_LETTER_PARAMS)
        return threading.get_ident()

    loop_thread = asyncio.run(scenario())

    assert store.create_threads
    assert loop_thread not in store.create_threads


def test_unclaimed_retentions_expire(remote, history) -> None:
    now = [0.0]
    gateway = TaskGateway(
        remote,
        history,
        defaults=GatewayDefaults(mode="async", retention_ttl_s=60.0),
        clock=lambda: now[0],
    )

    async def submit_many(count: int) -> list[str]:
        ids = []
        for _ in range(count):
            handle = await gateway.submit("acct-1", "cover_letter", COVER_LETTER_PARAMS)
            ids.append(handle.id)
        return ids

    stale = asyncio.run(submit_many(100))
    assert gateway.pending_retention_count() == 100

    now[0] = 61.0
    fresh = asyncio.run(submit_many(1))

    assert gateway.pending_retention_count() == 1
    assert not gateway.has_pending_retention(stale[0])
    assert gateway.has_pending_retention(fresh[0])


def test_observe_releases_poll_session_when_consumer_stops_early(
    remote, orchestrator
) -> None:
    task_id = remote.add_task(["processing"])

    async def scenario() -> int:
        async with aclosing(orchestrator.observe(task_id)) as snapshots:
            async for task in snapshots:
                assert task.status == "processing"
                break
        return orchestrator.tokens.active_sessions(task_id)

    assert asyncio.run(scenario()) == 0
