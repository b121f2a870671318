"""Best-effort event fan-out to subscribers.

Adapters and the executor report progress (``text_delta``, ``tool_use``,
``model_response``, ``model_response_complete``, ``tool_use_result``)
through :meth:`EventBus.notify`.  Notification never blocks or fails the
caller: synchronous subscribers run inline with their errors logged, and
coroutine subscribers are scheduled as tasks.
"""

import asyncio
import inspect
from typing import Any, Callable, List, Protocol, Set, runtime_checkable

from .logger import get_logger, truncate

log = get_logger("events")

Notify = Callable[[str, Any], None]

EVENT_TYPES = (
    "text_delta",
    "tool_use",
    "model_response",
    "model_response_complete",
    "tool_use_result",
)


@runtime_checkable
class SubscriberAdapter(Protocol):
    """Anything with ``record(event_type, data)``; sync or async."""

    def record(self, event_type: str, data: Any) -> Any:
        ...


class EventBus:
    """Fan-out of events to a list of subscribers."""

    def __init__(self):
        self.subscribers: List[SubscriberAdapter] = []
        self._tasks: Set[asyncio.Task] = set()

    def add(self, subscriber: SubscriberAdapter) -> None:
        self.subscribers.append(subscriber)

    def remove(self, subscriber: SubscriberAdapter) -> None:
        if subscriber in self.subscribers:
            self.subscribers.remove(subscriber)

    def notify(self, event_type: str, data: Any = None) -> None:
        for subscriber in list(self.subscribers):
            try:
                result = subscriber.record(event_type, data)
            except Exception as e:
                log.warning("subscriber %r failed on %s: %s", subscriber, event_type, e)
                continue
            if inspect.isawaitable(result):
                self._schedule(result, event_type)

    def _schedule(self, awaitable, event_type: str) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            log.warning("dropping async %s notification: no running loop", event_type)
            if inspect.iscoroutine(awaitable):
                awaitable.close()
            return
        task = loop.create_task(awaitable)
        self._tasks.add(task)
        task.add_done_callback(lambda t: self._finished(t, event_type))

    def _finished(self, task: asyncio.Task, event_type: str) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            log.warning("async subscriber failed on %s: %s", event_type, truncate(str(exc)))

    async def drain(self) -> None:
        """Wait for scheduled async notifications to finish."""
        while True:
            pending = [t for t in self._tasks if not t.done()]
            if not pending:
                return
            await asyncio.gather(*pending, return_exceptions=True)
