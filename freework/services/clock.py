"""Injectable wall clock and one-shot timers."""

import asyncio
import inspect
import time
from abc import ABC, abstractmethod
from typing import Any, Callable, Protocol

import structlog

logger = structlog.get_logger(__name__)


class TimerHandle(Protocol):
    """A scheduled callback that can be cancelled before it fires."""

    def cancel(self) -> None: ...


class Clock(ABC):
    """Source of the current time and of delayed callbacks.

    Callbacks may be plain functions or coroutine functions; a coroutine
    returned by a callback is scheduled on the running loop.
    """

    @abstractmethod
    def now(self) -> float:
        """Current time as POSIX seconds."""

    @abstractmethod
    def call_later(self, delay: float, callback: Callable[[], Any]) -> TimerHandle:
        """Run ``callback`` after ``delay`` seconds (negative delays run immediately)."""


class LoopClock(Clock):
    """Clock backed by ``time.time`` and the running asyncio loop."""

    def __init__(self):
        self._tasks: set[asyncio.Task] = set()

    def now(self) -> float:
        return time.time()

    def call_later(self, delay: float, callback: Callable[[], Any]) -> TimerHandle:
        loop = asyncio.get_running_loop()
        return loop.call_later(max(0.0, delay), self._fire, callback)

    def _fire(self, callback: Callable[[], Any]) -> None:
        result = callback()
        if inspect.isawaitable(result):
            task = asyncio.ensure_future(result)
            # Hold a reference until done so the task is not garbage collected
            self._tasks.add(task)
            task.add_done_callback(self._task_done)

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error(
                "timer_callback_failed",
                error=str(task.exception()),
                error_type=type(task.exception()).__name__,
            )
