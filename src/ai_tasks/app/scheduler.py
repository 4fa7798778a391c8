"""Interruptible timer and per-task cancellation tokens used by the poller."""

from __future__ import annotations

import asyncio
import threading
from collections.abc import Iterator
from contextlib import contextmanager


class CancellationToken:
    """Wakes one polling session early when its task is cancelled.

    The token is signalled from the cancellation controller; the polling
    session consumes the signal so the following waits run their full
    interval again.
    """

    def __init__(self, task_id: str) -> None:
        self.task_id = task_id
        self._event = asyncio.Event()
        self.signalled = False

    def signal(self) -> None:
        self.signalled = True
        self._event.set()

    async def wait(self, interval_s: float) -> bool:
        """Sleep up to ``interval_s``; return True when woken by a signal."""
        if not self._event.is_set():
            try:
                await asyncio.wait_for(self._event.wait(), timeout=interval_s)
            except asyncio.TimeoutError:
                return False
        self._event.clear()
        return True


class TokenRegistry:
    """Tracks live polling sessions so cancellation can reach all of them."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._tokens: dict[str, list[CancellationToken]] = {}

    @contextmanager
    def session(self, task_id: str) -> Iterator[CancellationToken]:
        token = CancellationToken(task_id)
        with self._lock:
            self._tokens.setdefault(task_id, []).append(token)
        try:
            yield token
        finally:
            with self._lock:
                tokens = self._tokens.get(task_id, [])
                if token in tokens:
                    tokens.remove(token)
                if not tokens:
                    self._tokens.pop(task_id, None)

    def signal(self, task_id: str) -> int:
        """Signal every session polling ``task_id``; return how many were woken."""
        with self._lock:
            tokens = list(self._tokens.get(task_id, []))
        for token in tokens:
            token.signal()
        return len(tokens)

    def active_sessions(self, task_id: str) -> int:
        with self._lock:
            return len(self._tokens.get(task_id, []))
