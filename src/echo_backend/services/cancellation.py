"""Cancellation tokens and cancellable delayed tasks.

A :class:`CancellationToken` is shared by every step of one conversational
turn. Steps check it at their suspension points and exit quietly once it
fires. A :class:`ScheduledTask` is a delayed callback carrying its own token,
checked right before the callback runs.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Optional

from ..errors import TurnCancelled

logger = logging.getLogger(__name__)


class CancellationToken:
    """One-shot cancellation flag that coroutines can poll or await."""

    def __init__(self, name: str = "turn"):
        self.name = name
        self._event = asyncio.Event()
        self._callbacks: list[Callable[[], None]] = []

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        if self._event.is_set():
            return
        self._event.set()
        logger.debug("Cancellation token '%s' fired", self.name)
        callbacks, self._callbacks = self._callbacks, []
        for callback in callbacks:
            callback()

    def add_callback(self, callback: Callable[[], None]) -> None:
        """Run ``callback`` on cancellation (immediately if already cancelled)."""
        if self.cancelled:
            callback()
        else:
            self._callbacks.append(callback)

    def raise_if_cancelled(self) -> None:
        if self.cancelled:
            raise TurnCancelled(self.name)

    async def wait(self) -> None:
        await self._event.wait()


class ScheduledTask:
    """Run an async callback after ``delay`` seconds unless cancelled first."""

    def __init__(
        self,
        delay: float,
        callback: Callable[[], Awaitable[None]],
        *,
        token: Optional[CancellationToken] = None,
        name: str = "scheduled",
    ):
        self.delay = max(0.0, delay)
        self.name = name
        self.token = token or CancellationToken(name)
        self._callback = callback
        self._task: Optional[asyncio.Task[None]] = None

    def start(self) -> "ScheduledTask":
        if self._task is None:
            self._task = asyncio.create_task(self._run(), name=self.name)
        return self

    async def _run(self) -> None:
        await asyncio.sleep(self.delay)
        if self.token.cancelled:
            logger.debug("Scheduled task '%s' skipped: cancelled", self.name)
            return
        await self._callback()

    def cancel(self) -> None:
        self.token.cancel()
        if self._task is not None and not self._task.done():
            self._task.cancel()

    @property
    def pending(self) -> bool:
        return (
            self._task is not None
            and not self._task.done()
            and not self.token.cancelled
        )

    async def wait(self) -> None:
        """Wait for the task to finish; cancellation is not an error here."""
        if self._task is None:
            return
        try:
            await self._task
        except asyncio.CancelledError:
            if not self.token.cancelled:
                raise


__all__ = ["CancellationToken", "ScheduledTask"]
