"""Bounded, sequential status polling for remote tasks.

Beginner terms:
- Observation: one ``get_task`` call and the snapshot it returned.
- Attempt budget: ``max_attempts`` is a hard ceiling on observations per session.
- Cancellation token: lets the cancellation controller cut the current wait short.
"""

from __future__ import annotations

import inspect
import logging
from collections.abc import AsyncIterator
from contextlib import aclosing

from .errors import PollingTimeout, TaskFailed, TransportError
from .lifecycle import check_observation
from .models import PollOptions, ProgressCallback, Task
from .remote import RemoteProcessor
from .scheduler import TokenRegistry

logger = logging.getLogger(__name__)


class TaskPoller:
    """Observe one task until it is terminal, the budget runs out, or it is cancelled."""

    def __init__(
        self,
        remote: RemoteProcessor,
        *,
        tokens: TokenRegistry | None = None,
        defaults: PollOptions | None = None,
    ) -> None:
        self.remote = remote
        self.tokens = tokens or TokenRegistry()
        self.defaults = defaults or PollOptions()

    async def observe(
        self,
        task_id: str,
        options: PollOptions | None = None,
        *,
        last_seen: Task | None = None,
    ) -> AsyncIterator[Task]:
        """Yield one snapshot per attempt, stopping after the first terminal one.

        ``last_seen`` seeds lifecycle checking, for example with the handle
        returned by an async submission.
        """
        opts = options or self.defaults
        previous = last_seen
        with self.tokens.session(task_id) as token:
            for attempt in range(1, opts.max_attempts + 1):
                try:
                    task = await self.remote.get_task(task_id)
                except TransportError:
                    logger.warning(
                        "task_poll event=transport_error task_id=%s attempt=%d/%d",
                        task_id,
                        attempt,
                        opts.max_attempts,
                    )
                    raise
                check_observation(previous, task)
                previous = task
                logger.info(
                    "task_poll event=observed task_id=%s attempt=%d/%d status=%s",
                    task_id,
                    attempt,
                    opts.max_attempts,
                    task.status,
                )
                await _notify_progress(opts.on_progress, task)
                yield task
                if task.is_terminal:
                    return
                if attempt < opts.max_attempts:
                    woken = await token.wait(opts.interval_s)
                    if woken:
                        logger.info(
                            "task_poll event=woken task_id=%s attempt=%d/%d",
                            task_id,
                            attempt,
                            opts.max_attempts,
                        )

    async def poll(
        self,
        task_id: str,
        options: PollOptions | None = None,
        *,
        last_seen: Task | None = None,
    ) -> Task:
        """Drive ``observe`` to an outcome.

        Returns the task when it completes or is cancelled, raises ``TaskFailed``
        on a terminal failure and ``PollingTimeout`` when the budget runs out.
        """
        opts = options or self.defaults
        attempts = 0
        last: Task | None = None
        async with aclosing(self.observe(task_id, opts, last_seen=last_seen)) as observations:
            async for task in observations:
                attempts += 1
                last = task
                if task.status == "completed":
                    logger.info(
                        "task_poll event=completed task_id=%s attempts=%d", task_id, attempts
                    )
                    return task
                if task.status == "failed":
                    if task.cancelled:
                        logger.info(
                            "task_poll event=cancelled task_id=%s attempts=%d", task_id, attempts
                        )
                        return task
                    logger.info(
                        "task_poll event=failed task_id=%s attempts=%d error=%s",
                        task_id,
                        attempts,
                        task.error_message,
                    )
                    raise TaskFailed(task.id, task.error_message)

        logger.warning(
            "task_poll event=timeout task_id=%s attempts=%d last_status=%s",
            task_id,
            attempts,
            last.status if last else None,
        )
        raise PollingTimeout(
            task_id,
            attempts=attempts,
            last_status=last.status if last else None,
        )


async def _notify_progress(callback: ProgressCallback | None, task: Task) -> None:
    if callback is None:
        return
    try:
        outcome = callback(task)
        if inspect.isawaitable(outcome):
            await outcome
    except Exception:  # noqa: BLE001
        # Progress is a side channel; a broken listener must not end the session.
        logger.exception("task_poll event=progress_callback_error task_id=%s", task.id)
