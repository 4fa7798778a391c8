"""Caller-facing facade wiring gateway, poller, cancellation and history together."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import aclosing
from dataclasses import replace
from typing import Any

from ..config.settings import Settings
from ..storage.base import HistoryStore
from ..storage.memory import InMemoryHistoryStore
from ..storage.postgres import PostgresHistoryStore
from .cancellation import CancellationController
from .errors import TaskFailed
from .gateway import TaskGateway
from .models import (
    CancelResult,
    GatewayDefaults,
    PollOptions,
    ProgressCallback,
    SubmitOptions,
    Task,
)
from .poller import TaskPoller
from .remote import RemoteProcessor, build_remote_processor
from .scheduler import TokenRegistry

logger = logging.getLogger(__name__)


class TaskOrchestrator:
    """Single entry point for submit, poll, cancel and history curation."""

    def __init__(
        self,
        remote: RemoteProcessor,
        history: HistoryStore,
        *,
        defaults: GatewayDefaults | None = None,
        poll_defaults: PollOptions | None = None,
    ) -> None:
        self.remote = remote
        self.history = history
        self.tokens = TokenRegistry()
        self.gateway = TaskGateway(remote, history, defaults=defaults)
        self.poller = TaskPoller(remote, tokens=self.tokens, defaults=poll_defaults)
        self.cancellation = CancellationController(remote, tokens=self.tokens)

    async def submit(
        self,
        owner_id: str,
        kind: str,
        parameters: dict[str, Any],
        options: SubmitOptions | None = None,
    ) -> Task:
        return await self.gateway.submit(owner_id, kind, parameters, options)

    def poll_options(
        self,
        *,
        interval_s: float | None = None,
        max_attempts: int | None = None,
        on_progress: ProgressCallback | None = None,
    ) -> PollOptions:
        """Overlay per-call values on the configured polling defaults."""
        overrides: dict[str, Any] = {}
        if interval_s is not None:
            overrides["interval_s"] = interval_s
        if max_attempts is not None:
            overrides["max_attempts"] = max_attempts
        if on_progress is not None:
            overrides["on_progress"] = on_progress
        return replace(self.poller.defaults, **overrides)

    async def poll(
        self,
        task_id: str,
        options: PollOptions | None = None,
        *,
        last_seen: Task | None = None,
    ) -> Task:
        """Poll until an outcome and retain a completed async result to history."""
        try:
            task = await self.poller.poll(task_id, options, last_seen=last_seen)
        except TaskFailed:
            self.gateway.discard_retention(task_id)
            raise
        if task.status == "completed":
            await self.gateway.record_completion(task)
        else:
            self.gateway.discard_retention(task_id)
        return task

    async def observe(
        self,
        task_id: str,
        options: PollOptions | None = None,
        *,
        last_seen: Task | None = None,
    ) -> AsyncIterator[Task]:
        """Stream snapshots like ``TaskPoller.observe`` with history retention."""
        snapshots = self.poller.observe(task_id, options, last_seen=last_seen)
        async with aclosing(snapshots):
            async for task in snapshots:
                if task.status == "completed":
                    await self.gateway.record_completion(task)
                elif task.status == "failed":
                    self.gateway.discard_retention(task_id)
                yield task

    async def cancel(self, task_id: str) -> CancelResult:
        return await self.cancellation.cancel(task_id)

    async def get_task(self, task_id: str) -> Task:
        return await self.remote.get_task(task_id)

    async def list_tasks(self, *, pending_only: bool = False) -> list[Task]:
        return await self.remote.list_tasks(pending_only=pending_only)


def build_history_store(settings: Settings) -> HistoryStore:
    if settings.database_url:
        store: HistoryStore = PostgresHistoryStore(settings.database_url)
    else:
        logger.info("history_store event=in_memory reason=no_database_url")
        store = InMemoryHistoryStore()
    store.migrate()
    return store


def build_orchestrator(
    settings: Settings,
    *,
    remote: RemoteProcessor | None = None,
    history: HistoryStore | None = None,
) -> TaskOrchestrator:
    """Turn settings into explicit defaults and wire the orchestrator."""
    return TaskOrchestrator(
        remote or build_remote_processor(settings),
        history or build_history_store(settings),
        defaults=GatewayDefaults(
            mode=settings.default_mode,
            save_to_history=settings.default_save_to_history,
            retention_ttl_s=settings.pending_retention_ttl_s,
        ),
        poll_defaults=PollOptions(
            interval_s=settings.poll_interval_s,
            max_attempts=settings.poll_max_attempts,
        ),
    )
