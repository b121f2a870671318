"""Persistence contract for a session, plus an in-memory implementation.

A ``StoreAdapter`` owns everything a session needs to survive between
requests: the append-only message history and the token/turn counters
that drive compaction.  Tasks and tool permissions are optional
capabilities; stores that do not support them report so through
``supports_tasks`` / ``supports_permissions``.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, replace
from typing import Dict, List, Literal, Optional

from .messages import Message

TaskStatus = Literal["pending", "in_progress", "completed"]
PermissionStatus = Literal["granted", "denied", "unset"]


@dataclass(frozen=True)
class Task:
    """One entry of the session task list."""

    id: str
    content: str          # imperative: "Run tests"
    active_form: str      # continuous: "Running tests"
    status: TaskStatus = "pending"


class StoreAdapter(ABC):
    """Storage backend for one conversation session."""

    identifier: str = ""

    @abstractmethod
    async def get_messages(self) -> List[Message]:
        ...

    @abstractmethod
    async def append_messages(self, messages: List[Message]) -> None:
        ...

    @abstractmethod
    async def get_token_count(self) -> int:
        ...

    @abstractmethod
    async def add_tokens(self, count: int) -> None:
        ...

    @abstractmethod
    async def get_turn_count(self) -> int:
        ...

    @abstractmethod
    async def increment_turn(self) -> None:
        ...

    @abstractmethod
    async def reset_counters(self) -> None:
        """Reset token and turn counts without touching messages."""

    # ── Optional capabilities ────────────────────────────────

    supports_tasks: bool = False
    supports_permissions: bool = False

    async def get_tasks(self) -> List[Task]:
        return []

    async def set_tasks(self, tasks: List[Task]) -> None:
        raise NotImplementedError(f"{type(self).__name__} does not store tasks")

    async def update_task(self, task_id: str, **updates) -> None:
        raise NotImplementedError(f"{type(self).__name__} does not store tasks")

    async def get_permission(self, tool_name: str) -> PermissionStatus:
        return "unset"

    async def set_permission(self, tool_name: str, status: PermissionStatus) -> None:
        raise NotImplementedError(f"{type(self).__name__} does not store permissions")


class MemoryStore(StoreAdapter):
    """Store that keeps everything in process memory.

    Useful for prototyping, tests and short-lived sessions.  All data is
    lost with the instance.
    """

    supports_tasks = True
    supports_permissions = True

    def __init__(self, identifier: str = "default", messages: Optional[List[Message]] = None):
        self.identifier = identifier
        self._messages: List[Message] = list(messages or [])
        self._token_count = 0
        self._turn_count = 0
        self._tasks: List[Task] = []
        self._permissions: Dict[str, PermissionStatus] = {}

    async def get_messages(self) -> List[Message]:
        return list(self._messages)

    async def append_messages(self, messages: List[Message]) -> None:
        self._messages.extend(messages)

    async def get_token_count(self) -> int:
        return self._token_count

    async def add_tokens(self, count: int) -> None:
        self._token_count += count

    async def get_turn_count(self) -> int:
        return self._turn_count

    async def increment_turn(self) -> None:
        self._turn_count += 1

    async def reset_counters(self) -> None:
        self._token_count = 0
        self._turn_count = 0

    async def get_tasks(self) -> List[Task]:
        return list(self._tasks)

    async def set_tasks(self, tasks: List[Task]) -> None:
        self._tasks = list(tasks)

    async def update_task(self, task_id: str, **updates) -> None:
        self._tasks = [replace(t, **updates) if t.id == task_id else t for t in self._tasks]

    async def get_permission(self, tool_name: str) -> PermissionStatus:
        return self._permissions.get(tool_name, "unset")

    async def set_permission(self, tool_name: str, status: PermissionStatus) -> None:
        self._permissions[tool_name] = status
