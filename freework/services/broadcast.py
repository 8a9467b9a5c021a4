"""Fan-out event streams for view-layer subscribers."""

import asyncio
import inspect
from typing import Any, AsyncIterator, Callable, Generic, Optional, TypeVar

import structlog

logger = structlog.get_logger(__name__)

T = TypeVar("T")

Handler = Callable[[T], Any]


class Broadcast(Generic[T]):
    """Publish each value to every current subscriber.

    A subscriber that raises is logged and skipped; coroutine subscribers
    are scheduled as tasks. Neither blocks the remaining subscribers.
    """

    def __init__(self, name: str):
        self.name = name
        self._handlers: list[Handler] = []
        self._tasks: set[asyncio.Task] = set()

    def subscribe(self, handler: Handler) -> Callable[[], None]:
        """Register a handler.

        Args:
            handler: Called with every published value

        Returns:
            A function that removes the handler again
        """
        self._handlers.append(handler)

        def unsubscribe() -> None:
            if handler in self._handlers:
                self._handlers.remove(handler)

        return unsubscribe

    @property
    def subscriber_count(self) -> int:
        return len(self._handlers)

    def publish(self, value: T) -> None:
        for handler in list(self._handlers):
            self._deliver(handler, value)

    def _deliver(self, handler: Handler, value: T) -> None:
        try:
            result = handler(value)
        except Exception as e:
            logger.error(
                "broadcast_subscriber_failed",
                stream=self.name,
                error=str(e),
                error_type=type(e).__name__,
            )
            return

        if inspect.isawaitable(result):
            task = asyncio.ensure_future(result)
            self._tasks.add(task)
            task.add_done_callback(self._task_done)

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error(
                "broadcast_subscriber_failed",
                stream=self.name,
                error=str(error),
                error_type=type(error).__name__,
            )

    async def listen(self) -> AsyncIterator[T]:
        """Iterate over values published from now on."""
        queue: asyncio.Queue = asyncio.Queue()
        unsubscribe = self.subscribe(queue.put_nowait)
        try:
            while True:
                yield await queue.get()
        finally:
            unsubscribe()


class StateBroadcast(Broadcast[T]):
    """A broadcast that remembers its latest value.

    New subscribers receive the current value immediately.
    """

    def __init__(self, name: str, initial: Optional[T] = None):
        super().__init__(name)
        self._value = initial

    @property
    def value(self) -> Optional[T]:
        return self._value

    def subscribe(self, handler: Handler) -> Callable[[], None]:
        unsubscribe = super().subscribe(handler)
        self._deliver(handler, self._value)
        return unsubscribe

    def publish(self, value: T) -> None:
        self._value = value
        super().publish(value)
