"""Display stack: interactive slots brokered between tools and a UI.

Tools push slots onto the stack.  ``push_and_forget`` only shows
something; ``push_and_wait`` suspends the calling tool until an external
actor (the UI) calls ``resolve`` or ``reject`` for that slot.  Rendering
is entirely up to whoever subscribes to the stack.

Resolution may come from a UI thread: futures are settled on the loop
that created them, and the resolver map is guarded by a lock.
"""

import asyncio
import threading
from dataclasses import dataclass, replace
from typing import Any, Callable, Dict, List, Optional, Type

from pydantic import BaseModel

from .errors import AbortError, SlotConflictError
from .logger import get_logger

log = get_logger("display")

Listener = Callable[[List["DisplaySlot"]], None]


@dataclass(frozen=True)
class DisplaySlot:
    """A unit of UI state owned by the stack."""

    id: str
    renderer: str
    data: Any = None
    resolved: bool = False


@dataclass
class Renderer:
    """A named renderer the UI knows how to draw."""

    name: str
    input_schema: Optional[Type[BaseModel]] = None


def _settle(future: asyncio.Future, value: Any = None, error: Optional[BaseException] = None) -> None:
    if future.done():
        return
    if error is not None:
        future.set_exception(error)
    else:
        future.set_result(value)


class DisplayManager:
    """Ordered stack of display slots with a pending-resolution table."""

    def __init__(self, resolved_history: int = 200):
        self.renderers: Dict[str, Renderer] = {}
        self._stack: List[DisplaySlot] = []
        self._pending: Dict[str, asyncio.Future] = {}
        self._resolved: Dict[str, DisplaySlot] = {}
        self._resolved_history = resolved_history
        self._listeners: List[Listener] = []
        self._lock = threading.Lock()
        self._slot_count = 0

    # ── Renderers & listeners ────────────────────────────────

    def register_renderer(self, name: str, input_schema: Optional[Type[BaseModel]] = None) -> None:
        self.renderers[name] = Renderer(name=name, input_schema=input_schema)

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a stack listener.  Returns the unsubscribe function."""
        with self._lock:
            self._listeners.append(listener)

        def unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    def notify(self) -> None:
        with self._lock:
            listeners = list(self._listeners)
            snapshot = list(self._stack)
        for listener in listeners:
            try:
                listener(snapshot)
            except Exception as e:
                log.warning("display listener %r failed: %s", listener, e)

    # ── Stack inspection ─────────────────────────────────────

    @property
    def stack(self) -> List[DisplaySlot]:
        with self._lock:
            return list(self._stack)

    def active_slot(self) -> Optional[DisplaySlot]:
        """The most recently pushed slot still on the stack."""
        with self._lock:
            return self._stack[-1] if self._stack else None

    def pending_ids(self) -> List[str]:
        with self._lock:
            return list(self._pending)

    def is_pending(self, slot_id: str) -> bool:
        with self._lock:
            return slot_id in self._pending

    def get_slot(self, slot_id: str) -> Optional[DisplaySlot]:
        """Look up a slot on the stack, or a recently settled one (``resolved=True``)."""
        with self._lock:
            for slot in self._stack:
                if slot.id == slot_id:
                    return slot
            return self._resolved.get(slot_id)

    # ── Push ─────────────────────────────────────────────────

    def _next_slot_id(self) -> str:
        self._slot_count += 1
        return f"slot_{self._slot_count}"

    def _validate(self, renderer: str, data: Any) -> Any:
        registered = self.renderers.get(renderer)
        if registered is None or registered.input_schema is None:
            return data
        return registered.input_schema.model_validate(data).model_dump()

    def push_and_forget(self, renderer: str, data: Any = None) -> str:
        """Show a slot and return its id without waiting for anything."""
        data = self._validate(renderer, data)
        with self._lock:
            slot = DisplaySlot(id=self._next_slot_id(), renderer=renderer, data=data)
            self._stack.append(slot)
        log.debug("push_and_forget: %s renderer=%s", slot.id, renderer)
        self.notify()
        return slot.id

    async def push_and_wait(self, renderer: str, data: Any = None, slot_id: Optional[str] = None) -> Any:
        """Show a slot and suspend until it is resolved.

        Only the awaiting coroutine is suspended.  A caller-supplied
        ``slot_id`` that is still pending raises ``SlotConflictError``;
        the earlier slot keeps its resolver.
        """
        data = self._validate(renderer, data)
        future = asyncio.get_running_loop().create_future()
        with self._lock:
            if slot_id is not None and slot_id in self._pending:
                raise SlotConflictError(f"slot {slot_id!r} is already waiting for a value")
            sid = slot_id or self._next_slot_id()
            self._pending[sid] = future
            self._stack.append(DisplaySlot(id=sid, renderer=renderer, data=data))
        log.debug("push_and_wait: %s renderer=%s pending=%d", sid, renderer, len(self._pending))
        self.notify()
        try:
            return await future
        finally:
            # A cancelled waiter must not leave its resolver behind.
            with self._lock:
                orphaned = self._pending.get(sid) is future
                if orphaned:
                    del self._pending[sid]
                    self._stack = [s for s in self._stack if s.id != sid]
            if orphaned:
                self.notify()

    # ── Resolution ───────────────────────────────────────────

    def _complete(self, slot_id: str, value: Any = None, error: Optional[BaseException] = None) -> bool:
        with self._lock:
            future = self._pending.pop(slot_id, None)
            if future is None:
                return False
            for slot in self._stack:
                if slot.id == slot_id:
                    self._resolved[slot_id] = replace(slot, resolved=True)
            while len(self._resolved) > self._resolved_history:
                del self._resolved[next(iter(self._resolved))]
            self._stack = [s for s in self._stack if s.id != slot_id]

        loop = future.get_loop()
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if running is loop:
            _settle(future, value, error)
        else:
            loop.call_soon_threadsafe(_settle, future, value, error)
        self.notify()
        return True

    def resolve(self, slot_id: str, value: Any = None) -> bool:
        """Hand ``value`` to the tool waiting on ``slot_id``.

        Returns False (and does nothing) when no resolver is pending for
        that id, e.g. on a second resolve of the same slot.
        """
        done = self._complete(slot_id, value=value)
        if not done:
            log.info("resolve ignored: no pending slot %s", slot_id)
        return done

    def reject(self, slot_id: str, error: BaseException) -> bool:
        done = self._complete(slot_id, error=error)
        if not done:
            log.info("reject ignored: no pending slot %s", slot_id)
        return done

    def abort_pending(self, reason: str = "user") -> int:
        """Reject every pending slot with ``AbortError``.  Returns the count."""
        count = 0
        for slot_id in self.pending_ids():
            if self._complete(slot_id, error=AbortError(f"Display slot aborted ({reason})")):
                count += 1
        if count:
            log.info("abort_pending: rejected %d slot(s) reason=%s", count, reason)
        return count

    # ── Housekeeping for the UI ──────────────────────────────

    def remove_slot(self, slot_id: str) -> None:
        """Drop a slot from the stack.  A pending resolver stays registered."""
        with self._lock:
            self._stack = [s for s in self._stack if s.id != slot_id]
        self.notify()

    def clear_stack(self) -> None:
        with self._lock:
            self._stack = []
        self.notify()
