"""Agent-orchestration runtime: conversation loop, tools, display stack and model adapters."""

from .abort import AbortSignal, abortable
from .config import Config
from .context import Context
from .display import DisplayManager, DisplaySlot
from .errors import AbortError, AlreadyBuiltError, GloveError, NotBuiltError, ProviderError, SlotConflictError
from .events import EventBus, SubscriberAdapter
from .executor import Executor, Tool
from .glove import Glove
from .messages import ContentPart, Message, ToolCall, ToolResult, ToolResultData
from .models import (
    AnthropicAdapter,
    ModelAdapter,
    OpenAICompatAdapter,
    PromptRequest,
    PromptResult,
    RemoteModelAdapter,
    create_adapter,
    get_available_providers,
)
from .store import MemoryStore, StoreAdapter, Task

__version__ = "0.1.0"
__all__ = [
    "AbortError",
    "AbortSignal",
    "AlreadyBuiltError",
    "AnthropicAdapter",
    "Config",
    "ContentPart",
    "Context",
    "DisplayManager",
    "DisplaySlot",
    "EventBus",
    "Executor",
    "Glove",
    "GloveError",
    "MemoryStore",
    "Message",
    "ModelAdapter",
    "NotBuiltError",
    "OpenAICompatAdapter",
    "PromptRequest",
    "PromptResult",
    "ProviderError",
    "RemoteModelAdapter",
    "SlotConflictError",
    "StoreAdapter",
    "SubscriberAdapter",
    "Task",
    "Tool",
    "ToolCall",
    "ToolResult",
    "ToolResultData",
    "abortable",
    "create_adapter",
    "get_available_providers",
]
