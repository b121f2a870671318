"""Uniform contract every provider adapter implements."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, List, Optional

from ..events import Notify
from ..messages import Message

if TYPE_CHECKING:
    from ..executor import Tool


class RequestState(str, Enum):
    """Lifecycle of one model request."""
    IDLE = "idle"
    SENDING = "sending"
    STREAMING = "streaming"
    FINALIZING = "finalizing"
    DONE = "done"


@dataclass
class PromptRequest:
    """What the agent sends to an adapter."""
    messages: List[Message]
    tools: Optional[List["Tool"]] = None
    system_prompt: Optional[str] = None


@dataclass
class PromptResult:
    """What an adapter returns once the response is complete."""
    messages: List[Message] = field(default_factory=list)
    tokens_in: int = 0
    tokens_out: int = 0
    stop_reason: Optional[str] = None

    @property
    def has_tool_calls(self) -> bool:
        return any(m.tool_calls for m in self.messages)

    @property
    def text(self) -> str:
        return "\n".join(m.text for m in self.messages if m.sender == "agent" and m.text)


class ModelAdapter(ABC):
    """One provider behind ``prompt(request, notify) -> PromptResult``.

    ``notify`` is the fire-and-forget side channel; adapters call it for
    every delta as it arrives, before returning the aggregated result.
    """

    name: str = "model"

    def __init__(self):
        self.system_prompt: Optional[str] = None

    def set_system_prompt(self, system_prompt: str) -> None:
        self.system_prompt = system_prompt

    def _system_prompt_for(self, request: PromptRequest) -> Optional[str]:
        return request.system_prompt or self.system_prompt

    @abstractmethod
    async def prompt(self, request: PromptRequest, notify: Notify) -> PromptResult:
        ...

    async def aclose(self) -> None:
        """Release network resources held by the adapter."""
