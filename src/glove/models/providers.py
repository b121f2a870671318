"""Known providers and the adapter factory."""

import os
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .anthropic import AnthropicAdapter
from .base import ModelAdapter
from .openai_compat import OpenAICompatAdapter


@dataclass(frozen=True)
class ProviderDef:
    """Connection details for one provider."""

    id: str
    name: str
    base_url: str
    env_var: str
    default_model: str
    models: List[str] = field(default_factory=list)
    format: str = "openai"  # "anthropic" or "openai"
    default_max_tokens: int = 8192


PROVIDERS: Dict[str, ProviderDef] = {
    p.id: p
    for p in (
        ProviderDef(
            id="openrouter",
            name="OpenRouter",
            base_url="https://openrouter.ai/api/v1",
            env_var="OPENROUTER_API_KEY",
            default_model="anthropic/claude-sonnet-4",
            models=[
                "anthropic/claude-sonnet-4",
                "anthropic/claude-opus-4",
                "openai/gpt-4.1",
                "openai/gpt-4.1-mini",
                "google/gemini-2.5-flash",
                "google/gemini-2.5-pro",
                "minimax/minimax-m2.5",
                "moonshotai/kimi-k2.5",
                "z-ai/glm-5",
            ],
        ),
        ProviderDef(
            id="anthropic",
            name="Anthropic",
            base_url="https://api.anthropic.com",
            env_var="ANTHROPIC_API_KEY",
            default_model="claude-sonnet-4-20250514",
            models=["claude-sonnet-4-20250514", "claude-opus-4-20250514", "claude-haiku-3-5-20241022"],
            format="anthropic",
        ),
        ProviderDef(
            id="openai",
            name="OpenAI",
            base_url="https://api.openai.com/v1",
            env_var="OPENAI_API_KEY",
            default_model="gpt-4.1",
            models=["gpt-4.1", "gpt-4.1-mini", "gpt-4.1-nano", "gpt-4o", "o4-mini"],
            default_max_tokens=4096,
        ),
        ProviderDef(
            id="gemini",
            name="Google Gemini",
            base_url="https://generativelanguage.googleapis.com/v1beta/openai",
            env_var="GEMINI_API_KEY",
            default_model="gemini-2.5-flash",
            models=["gemini-2.5-flash", "gemini-2.5-pro", "gemini-2.0-flash"],
        ),
        ProviderDef(
            id="minimax",
            name="MiniMax",
            base_url="https://api.minimax.io/v1",
            env_var="MINIMAX_API_KEY",
            default_model="MiniMax-M2.5",
            models=["MiniMax-M2.5", "MiniMax-M2.5-highspeed", "MiniMax-M2.1"],
        ),
        ProviderDef(
            id="kimi",
            name="Kimi (Moonshot)",
            base_url="https://api.moonshot.ai/v1",
            env_var="MOONSHOT_API_KEY",
            default_model="kimi-k2.5",
            models=["kimi-k2.5", "kimi-k2-0905-preview", "moonshot-v1-auto"],
        ),
        ProviderDef(
            id="glm",
            name="GLM (Zhipu AI)",
            base_url="https://open.bigmodel.cn/api/paas/v4",
            env_var="ZHIPUAI_API_KEY",
            default_model="glm-4-plus",
            models=["glm-4-plus", "glm-4-long", "glm-4-flash"],
            default_max_tokens=4096,
        ),
    )
}


def create_adapter(
    provider: str,
    model: Optional[str] = None,
    api_key: Optional[str] = None,
    max_tokens: Optional[int] = None,
    stream: bool = True,
    base_url: Optional[str] = None,
) -> ModelAdapter:
    """Build the adapter for ``provider``.

    The API key falls back to the provider's environment variable.  Raises
    ``ValueError`` for an unknown provider or a missing key.
    """
    pdef = PROVIDERS.get(provider)
    if pdef is None:
        raise ValueError(f'Unknown provider "{provider}". Available: {", ".join(PROVIDERS)}')

    api_key = api_key or os.getenv(pdef.env_var)
    if not api_key:
        raise ValueError(
            f'No API key for provider "{pdef.name}". Set {pdef.env_var} env var or pass api_key.'
        )

    model = model or pdef.default_model
    max_tokens = max_tokens or pdef.default_max_tokens

    if pdef.format == "anthropic":
        return AnthropicAdapter(
            api_key=api_key,
            model=model,
            max_tokens=max_tokens,
            stream=stream,
            base_url=base_url,
        )
    return OpenAICompatAdapter(
        api_key=api_key,
        model=model,
        base_url=base_url or pdef.base_url,
        max_tokens=max_tokens,
        stream=stream,
        provider=pdef.id,
    )


def get_available_providers() -> List[Dict[str, Any]]:
    """List every provider and whether its API key is set in the environment."""
    return [
        {
            "id": p.id,
            "name": p.name,
            "available": bool(os.getenv(p.env_var)),
            "models": list(p.models),
            "default_model": p.default_model,
        }
        for p in PROVIDERS.values()
    ]
