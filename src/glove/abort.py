"""Abort signalling for in-flight requests.

One ``AbortSignal`` is created per request.  ``Glove.abort()`` triggers
it; every suspension point of the request (model call, tool handler,
display wait) races against it through :func:`abortable`.
"""

import asyncio
from typing import Awaitable, Optional, TypeVar

from .errors import AbortError
from .logger import get_logger

log = get_logger("abort")

T = TypeVar("T")


class AbortSignal:
    """Shared abort state for one request."""

    def __init__(self):
        self._event = asyncio.Event()
        self.reason: str = ""

    @property
    def aborted(self) -> bool:
        return self._event.is_set()

    def abort(self, reason: str = "user") -> None:
        if self._event.is_set():
            return
        self.reason = reason
        self._event.set()

    async def wait(self) -> None:
        await self._event.wait()

    def raise_if_aborted(self) -> None:
        if self.aborted:
            raise AbortError(f"Operation aborted ({self.reason})")


async def abortable(signal: Optional[AbortSignal], awaitable: Awaitable[T]) -> T:
    """Await ``awaitable`` unless ``signal`` fires first.

    On abort the underlying task is cancelled and :class:`AbortError` is
    raised.  Without a signal this is a plain ``await``.
    """
    if signal is None:
        return await awaitable
    signal.raise_if_aborted()

    task = asyncio.ensure_future(awaitable)
    waiter = asyncio.ensure_future(signal.wait())
    try:
        done, _ = await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
    except asyncio.CancelledError:
        task.cancel()
        waiter.cancel()
        raise

    if task in done:
        waiter.cancel()
        return task.result()

    task.cancel()
    try:
        await task
    except (asyncio.CancelledError, AbortError):
        pass
    except Exception as e:
        # The task failed while being torn down; the abort wins.
        log.debug("aborted task raised during teardown: %s", e)
    raise AbortError(f"Operation aborted ({signal.reason})")
