"""Task submission: validate, pick sync or async execution, retain results."""

from __future__ import annotations

import asyncio
import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from ..storage.base import HistoryStore
from .errors import ProtocolViolation, StorageError, TaskError, TaskFailed
from .models import GatewayDefaults, HistoryItem, SubmitOptions, Task
from .params import validate_parameters
from .remote import RemoteProcessor

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PendingRetention:
    """History retention promised to an async submission, claimed on completion."""

    owner_id: str
    kind: str
    parameters: dict[str, Any]
    registered_at: float


class TaskGateway:
    """Accept generation requests and route them to the remote processor."""

    def __init__(
        self,
        remote: RemoteProcessor,
        history: HistoryStore,
        *,
        defaults: GatewayDefaults | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.remote = remote
        self.history = history
        self.defaults = defaults or GatewayDefaults()
        self._clock = clock
        self._retention_lock = threading.Lock()
        self._pending_retention: dict[str, PendingRetention] = {}

    async def submit(
        self,
        owner_id: str,
        kind: str,
        parameters: dict[str, Any],
        options: SubmitOptions | None = None,
    ) -> Task:
        """Submit one generation job.

        In sync mode the returned task is always ``completed``; a remote failure
        raises ``TaskFailed``. In async mode the pending handle is returned
        immediately and the caller is expected to poll it.
        """
        opts = options or SubmitOptions()
        mode = opts.mode or self.defaults.mode
        save = opts.save_to_history
        if save is None:
            save = self.defaults.save_to_history
        validated = validate_parameters(kind, parameters)

        logger.info(
            "task_submit event=start owner_id=%s kind=%s mode=%s save_to_history=%s",
            owner_id,
            kind,
            mode,
            save,
        )
        task = await self.remote.create_task(kind, validated, async_mode=mode == "async")

        if mode == "async":
            if save and not task.is_terminal:
                now = self._clock()
                with self._retention_lock:
                    self._prune_expired(now)
                    self._pending_retention[task.id] = PendingRetention(
                        owner_id=owner_id,
                        kind=kind,
                        parameters=validated,
                        registered_at=now,
                    )
            logger.info(
                "task_submit event=accepted task_id=%s kind=%s status=%s",
                task.id,
                kind,
                task.status,
            )
            if save and task.status == "completed":
                # Processor finished before answering; retain right away.
                await self._retain(owner_id, kind, validated, task)
            return task

        if task.status == "failed":
            logger.info(
                "task_submit event=failed task_id=%s kind=%s error=%s",
                task.id,
                kind,
                task.error_message,
            )
            raise TaskFailed(task.id, task.error_message)
        if task.status != "completed":
            raise ProtocolViolation(
                f"Sync generation returned non-terminal status {task.status}",
                task_id=task.id,
                status=task.status,
            )
        logger.info("task_submit event=completed task_id=%s kind=%s", task.id, kind)
        if save:
            await self._retain(owner_id, kind, validated, task)
        return task

    async def record_completion(self, task: Task) -> HistoryItem | None:
        """Retain a completed async task if its submission asked for it.

        The pending entry is claimed under a lock, so concurrent pollers of the
        same task create at most one history item. A failed write puts the
        entry back so a later poll can retry it.
        """
        if task.status != "completed":
            return None
        with self._retention_lock:
            pending = self._pending_retention.pop(task.id, None)
        if pending is None:
            return None
        try:
            return await self._retain(pending.owner_id, pending.kind, pending.parameters, task)
        except TaskError:
            with self._retention_lock:
                self._pending_retention.setdefault(task.id, pending)
            raise

    def discard_retention(self, task_id: str) -> None:
        with self._retention_lock:
            self._pending_retention.pop(task_id, None)

    def has_pending_retention(self, task_id: str) -> bool:
        with self._retention_lock:
            return task_id in self._pending_retention

    def pending_retention_count(self) -> int:
        with self._retention_lock:
            return len(self._pending_retention)

    def _prune_expired(self, now: float) -> None:
        # Caller holds _retention_lock.
        horizon = now - self.defaults.retention_ttl_s
        expired = [
            task_id
            for task_id, pending in self._pending_retention.items()
            if pending.registered_at < horizon
        ]
        for task_id in expired:
            del self._pending_retention[task_id]
        if expired:
            logger.info("task_submit event=retention_expired count=%s", len(expired))

    async def _retain(
        self,
        owner_id: str,
        kind: str,
        parameters: dict[str, Any],
        task: Task,
    ) -> HistoryItem:
        # Store calls may block on I/O; keep them off the event loop.
        try:
            item = await asyncio.to_thread(
                self.history.create,
                owner_id,
                content_type=kind,
                payload=task.result or {},
                parameters=parameters,
                task_id=task.id,
            )
        except TaskError:
            raise
        except Exception as exc:
            logger.warning(
                "task_submit event=retain_failed task_id=%s kind=%s error=%s",
                task.id,
                kind,
                exc,
            )
            raise StorageError(
                "Failed to retain history item", task_id=task.id, content_type=kind
            ) from exc
        logger.info(
            "task_submit event=retained task_id=%s history_id=%s kind=%s",
            task.id,
            item.id,
            kind,
        )
        return item
