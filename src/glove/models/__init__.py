"""Model adapters and provider wire formats."""

from .anthropic import AnthropicAdapter
from .base import ModelAdapter, PromptRequest, PromptResult, RequestState
from .formatting import StreamAggregator
from .openai_compat import OpenAICompatAdapter
from .providers import PROVIDERS, ProviderDef, create_adapter, get_available_providers
from .remote import RemoteModelAdapter

__all__ = [
    "AnthropicAdapter",
    "ModelAdapter",
    "OpenAICompatAdapter",
    "PROVIDERS",
    "PromptRequest",
    "PromptResult",
    "ProviderDef",
    "RemoteModelAdapter",
    "RequestState",
    "StreamAggregator",
    "create_adapter",
    "get_available_providers",
]
