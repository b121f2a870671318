"""Session builder and public surface.

    glove = (
        Glove(model=adapter, system_prompt="You are a barista.")
        .fold("get_menu", "List drinks", MenuInput, get_menu)
        .add_subscriber(printer)
        .build()
    )
    result = await glove.process_request("What's good today?")
"""

import asyncio
from typing import Any, Callable, List, Optional, Type

from pydantic import BaseModel

from .abort import AbortSignal
from .agent import DEFAULT_MAX_REQUEST_TURNS, Agent
from .context import Context
from .display import DisplayManager
from .errors import AlreadyBuiltError, NotBuiltError
from .events import EventBus, SubscriberAdapter
from .executor import Executor, Tool
from .logger import get_logger
from .messages import ContentPart, Message
from .metrics import ToolMetrics
from .models.base import ModelAdapter, PromptResult
from .observer import DEFAULT_COMPACTION_INSTRUCTIONS, DEFAULT_MAX_TURNS, Observer
from .prompt import PromptMachine
from .store import MemoryStore, StoreAdapter
from .tasks import create_task_tool

log = get_logger("glove")


class Glove:
    """One conversation session: store, display stack, tools and model."""

    def __init__(
        self,
        model: ModelAdapter,
        store: Optional[StoreAdapter] = None,
        display: Optional[DisplayManager] = None,
        system_prompt: str = "",
        max_retries: int = 0,
        max_turns: int = DEFAULT_MAX_TURNS,
        token_limit: Optional[int] = None,
        compaction_instructions: str = DEFAULT_COMPACTION_INSTRUCTIONS,
        max_request_turns: int = DEFAULT_MAX_REQUEST_TURNS,
    ):
        self.store = store or MemoryStore()
        self.display = display or DisplayManager()
        self.events = EventBus()
        self.metrics = ToolMetrics()

        self.context = Context(self.store)
        self.prompt = PromptMachine(model, system_prompt, self.events)
        self.executor = Executor(self.store, max_retries, self.events, self.metrics)
        self.observer = Observer(
            self.context,
            self.prompt,
            max_turns=max_turns,
            token_limit=token_limit,
            instructions=compaction_instructions,
        )
        self.agent = Agent(self.context, self.executor, self.observer, self.prompt, max_request_turns)

        self._built = False
        self._request_lock = asyncio.Lock()
        self._signal: Optional[AbortSignal] = None

        if self.store.supports_tasks:
            self.executor.register_tool(create_task_tool(self.context))

    # ── Builder ──────────────────────────────────────────────

    def fold(
        self,
        name: str,
        description: str,
        input_schema: Type[BaseModel],
        do: Callable[[Any, DisplayManager], Any],
        requires_permission: bool = False,
        unabortable: bool = False,
    ) -> "Glove":
        """Register a tool.  ``do(input, display)`` may be sync or async."""
        if self._built:
            raise AlreadyBuiltError(f"cannot fold {name!r} after build()")
        self.executor.register_tool(Tool(
            name=name,
            description=description,
            input_schema=input_schema,
            run=do,
            requires_permission=requires_permission,
            unabortable=unabortable,
        ))
        return self

    def add_subscriber(self, subscriber: SubscriberAdapter) -> "Glove":
        self.events.add(subscriber)
        return self

    def remove_subscriber(self, subscriber: SubscriberAdapter) -> "Glove":
        self.events.remove(subscriber)
        return self

    def build(self) -> "Glove":
        self.executor.freeze()
        self._built = True
        log.info("built session store=%s tools=%s", self.store.identifier,
                 [t.name for t in self.executor.tools])
        return self

    @property
    def built(self) -> bool:
        return self._built

    @property
    def tools(self) -> List[Tool]:
        return self.executor.tools

    def set_model(self, model: ModelAdapter) -> None:
        self.prompt.set_model(model)

    # ── Runtime ──────────────────────────────────────────────

    @property
    def busy(self) -> bool:
        return self._request_lock.locked()

    async def process_request(self, text: str, content: Optional[List[ContentPart]] = None) -> PromptResult:
        """Run one user request to completion.

        Requests on the same session are serialized.  Raises
        ``ProviderError`` when the model call fails and ``AbortError``
        when :meth:`abort` is called mid-request.
        """
        if not self._built:
            raise NotBuiltError("call build() before process_request()")
        async with self._request_lock:
            signal = AbortSignal()
            self._signal = signal
            try:
                return await self.agent.ask(
                    Message(sender="user", text=text, content=content), self.display, signal
                )
            finally:
                self._signal = None

    def abort(self, reason: str = "user") -> None:
        """Cancel the in-flight request and reject every pending display slot."""
        if self._signal is not None:
            self._signal.abort(reason)
        rejected = self.display.abort_pending(reason)
        log.info("abort(%s): request_active=%s rejected_slots=%d", reason, self._signal is not None, rejected)

    async def aclose(self) -> None:
        await self.events.drain()
        await self.prompt.model.aclose()
