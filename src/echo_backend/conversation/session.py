"""Per-session context shared by the conversation components."""

from __future__ import annotations

import asyncio
import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Coroutine, Optional

from ..schemas.conversation import ConversationTurn
from ..services.cancellation import CancellationToken, ScheduledTask

logger = logging.getLogger(__name__)


class SessionContext:
    """
    Owns everything that must not outlive one voice session.

    Components spawn their background tasks and delayed restarts through the
    context; :meth:`close` cancels all of them, so stopping a session never
    leaves timers or readers running.
    """

    def __init__(self, language: str = "en-US", session_id: Optional[str] = None):
        self.session_id = session_id or uuid.uuid4().hex[:12]
        self.language = language
        self.started_at = datetime.now(timezone.utc)
        self.token = CancellationToken(f"session-{self.session_id}")
        self.turns: list[ConversationTurn] = []
        self._tasks: set[asyncio.Task[Any]] = set()
        self._scheduled: list[ScheduledTask] = []

    @property
    def active(self) -> bool:
        return not self.token.cancelled

    def spawn(
        self, coro: Coroutine[Any, Any, Any], *, name: Optional[str] = None
    ) -> asyncio.Task[Any]:
        """Start ``coro`` as a task owned by this session."""
        if not self.active:
            coro.close()
            raise RuntimeError(f"Session {self.session_id} is closed")
        task = asyncio.create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)
        return task

    def schedule(
        self,
        delay: float,
        callback: Callable[[], Awaitable[None]],
        *,
        name: str = "scheduled",
    ) -> ScheduledTask:
        """Run ``callback`` after ``delay`` seconds unless the session closes first."""
        self._scheduled = [task for task in self._scheduled if task.pending]
        scheduled = ScheduledTask(delay, callback, name=name)
        self._scheduled.append(scheduled)
        return scheduled.start()

    def _task_done(self, task: asyncio.Task[Any]) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(
                "Session %s task %s failed: %s",
                self.session_id,
                task.get_name(),
                exc,
                exc_info=exc,
            )

    async def close(self) -> None:
        """Cancel every task and timer that belongs to the session."""
        self.token.cancel()
        for scheduled in self._scheduled:
            scheduled.cancel()
        self._scheduled.clear()

        current = asyncio.current_task()
        tasks = [task for task in self._tasks if task is not current]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        logger.info("Session %s closed", self.session_id)


__all__ = ["SessionContext"]
