"""Thin layer between the agent loop and the model adapter."""

from typing import List, Optional

from .abort import AbortSignal, abortable
from .events import EventBus
from .logger import get_logger
from .messages import Message
from .models.base import ModelAdapter, PromptRequest, PromptResult

log = get_logger("prompt")


class PromptMachine:
    """Sends a message list to the model and fans events out to subscribers."""

    def __init__(self, model: ModelAdapter, system_prompt: str = "", events: Optional[EventBus] = None):
        self.model = model
        self.system_prompt = system_prompt
        self.events = events or EventBus()
        model.set_system_prompt(system_prompt)

    def set_model(self, model: ModelAdapter) -> None:
        """Swap the adapter between requests, keeping the system prompt."""
        model.set_system_prompt(self.system_prompt)
        self.model = model

    def set_system_prompt(self, system_prompt: str) -> None:
        self.system_prompt = system_prompt
        self.model.set_system_prompt(system_prompt)

    async def run(
        self,
        messages: List[Message],
        tools=None,
        signal: Optional[AbortSignal] = None,
    ) -> PromptResult:
        """One model call.  Raises ``AbortError`` if ``signal`` fires first."""
        request = PromptRequest(messages=list(messages), tools=tools or None)
        log.debug("run: model=%s messages=%d tools=%d", self.model.name, len(request.messages),
                  len(request.tools or []))
        return await abortable(signal, self.model.prompt(request, self.events.notify))
