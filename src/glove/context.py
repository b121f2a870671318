"""Context management for a session.

The store keeps the full history for the UI; the model only ever sees
the slice that starts at the most recent compaction marker.
"""

import asyncio
from typing import List

from .logger import get_logger
from .messages import Message
from .store import StoreAdapter, Task

log = get_logger("context")


def split_at_last_compaction(messages: List[Message]) -> List[Message]:
    """Return messages from the last compaction marker onward.

    Scans backward; without a marker the full history is returned.
    """
    for i in range(len(messages) - 1, -1, -1):
        if messages[i].is_compaction:
            return messages[i:]
    return list(messages)


class Context:
    """Session history and counters on top of a ``StoreAdapter``."""

    def __init__(self, store: StoreAdapter):
        self.store = store
        self._lock = asyncio.Lock()

    async def append(self, messages: List[Message]) -> None:
        if not messages:
            return
        async with self._lock:
            await self.store.append_messages(list(messages))
        log.debug(
            "append: %d message(s) senders=%s compaction=%s",
            len(messages),
            [m.sender for m in messages],
            any(m.is_compaction for m in messages),
        )

    async def get_messages(self) -> List[Message]:
        """Full stored history, compaction markers included."""
        return await self.store.get_messages()

    async def get_model_view(self) -> List[Message]:
        """History since the last compaction; what gets sent to the model."""
        return split_at_last_compaction(await self.store.get_messages())

    # ── Counters ─────────────────────────────────────────────

    async def add_tokens(self, count: int) -> None:
        async with self._lock:
            await self.store.add_tokens(count)

    async def get_token_count(self) -> int:
        return await self.store.get_token_count()

    async def increment_turn(self) -> None:
        async with self._lock:
            await self.store.increment_turn()

    async def get_turn_count(self) -> int:
        return await self.store.get_turn_count()

    async def reset_counters(self) -> None:
        async with self._lock:
            await self.store.reset_counters()

    # ── Tasks ────────────────────────────────────────────────

    async def get_tasks(self) -> List[Task]:
        if not self.store.supports_tasks:
            return []
        return await self.store.get_tasks()

    async def set_tasks(self, tasks: List[Task]) -> None:
        if not self.store.supports_tasks:
            return
        async with self._lock:
            await self.store.set_tasks(tasks)

    async def update_task(self, task_id: str, **updates) -> None:
        if not self.store.supports_tasks:
            return
        async with self._lock:
            await self.store.update_task(task_id, **updates)
