from __future__ import annotations

import logging

from .models import CancelResult
from .remote import RemoteProcessor
from .scheduler import TokenRegistry

logger = logging.getLogger(__name__)


class CancellationController:
    """Request early termination of a task and wake pollers watching it."""

    def __init__(self, remote: RemoteProcessor, *, tokens: TokenRegistry) -> None:
        self.remote = remote
        self.tokens = tokens

    async def cancel(self, task_id: str) -> CancelResult:
        """Cancel ``task_id``.

        An already-terminal task is reported as ``already_finished`` instead of
        an error, so a caller can tell a lost race from a logic bug.
        """
        current = await self.remote.get_task(task_id)
        if current.is_terminal:
            logger.info(
                "task_cancel event=already_finished task_id=%s status=%s",
                task_id,
                current.status,
            )
            return CancelResult(task_id=task_id, outcome="already_finished", task=current)

        ack = await self.remote.request_cancel(task_id)
        if not ack.accepted:
            logger.info(
                "task_cancel event=already_finished task_id=%s status=%s",
                task_id,
                ack.status,
            )
            return CancelResult(task_id=task_id, outcome="already_finished")

        woken = self.tokens.signal(task_id)
        logger.info("task_cancel event=cancelled task_id=%s pollers_woken=%d", task_id, woken)
        return CancelResult(task_id=task_id, outcome="cancelled")
