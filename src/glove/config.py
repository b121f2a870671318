"""Configuration management for glove sessions."""

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

from .logger import get_logger
from .models.base import ModelAdapter
from .models.providers import PROVIDERS, create_adapter

log = get_logger("config")


def get_global_config_path() -> Path:
    """Get path to global config: ~/.glove.json"""
    return Path.home() / ".glove.json"


def get_workspace_config_path(workspace: Optional[Path] = None) -> Path:
    """Get path to workspace config: workspace/.glove/config.json"""
    ws = workspace or Path.cwd()
    return ws / ".glove" / "config.json"


def load_json_config(path: Path) -> dict:
    """Load config from JSON file if it exists."""
    if not path.exists():
        return {}
    try:
        return json.loads(path.read_text())
    except (json.JSONDecodeError, OSError) as e:
        log.warning("ignoring unreadable config %s: %s", path, e)
        return {}


def _env_bool(value: Optional[str], default: bool) -> bool:
    if value is None or value == "":
        return default
    return value.strip().lower() not in ("0", "false", "no", "off")


def _optional_int(value) -> Optional[int]:
    if value is None or value == "":
        return None
    return int(value)


@dataclass
class Config:
    """Settings for one glove session."""

    provider: str = "anthropic"
    model: str = ""
    api_key: str = ""
    base_url: str = ""
    max_tokens: Optional[int] = None
    stream: bool = True
    system_prompt: str = "You are a helpful assistant."
    max_turns: int = 120
    token_limit: Optional[int] = None
    max_retries: int = 0
    workspace_path: Path = field(default_factory=Path.cwd)

    @classmethod
    def from_json(cls, workspace: Optional[Path] = None) -> "Config":
        """Load configuration from JSON files.

        Priority (later overrides earlier):
        1. ~/.glove.json (global)
        2. workspace/.glove/config.json (workspace-specific)
        """
        data = {}
        data.update(load_json_config(get_global_config_path()))
        data.update(load_json_config(get_workspace_config_path(workspace)))

        defaults = cls()
        return cls(
            provider=data.get("provider", defaults.provider),
            model=data.get("model", ""),
            api_key=data.get("api_key", ""),
            base_url=data.get("base_url", ""),
            max_tokens=_optional_int(data.get("max_tokens")),
            stream=bool(data.get("stream", True)),
            system_prompt=data.get("system_prompt", defaults.system_prompt),
            max_turns=int(data.get("max_turns", defaults.max_turns)),
            token_limit=_optional_int(data.get("token_limit")),
            max_retries=int(data.get("max_retries", 0)),
            workspace_path=workspace or Path.cwd(),
        )

    @classmethod
    def from_env(cls, env_path: Optional[Path] = None) -> "Config":
        """Load configuration from ``GLOVE_*`` environment variables.

        A ``.env`` file is loaded first.  Without ``GLOVE_PROVIDER`` the
        JSON config files are used instead.
        """
        if env_path and env_path.exists():
            load_dotenv(env_path)
        else:
            load_dotenv()

        provider = os.getenv("GLOVE_PROVIDER", "")
        if not provider:
            return cls.from_json()

        defaults = cls()
        return cls(
            provider=provider,
            model=os.getenv("GLOVE_MODEL", ""),
            api_key=os.getenv("GLOVE_API_KEY", ""),
            base_url=os.getenv("GLOVE_BASE_URL", ""),
            max_tokens=_optional_int(os.getenv("GLOVE_MAX_TOKENS")),
            stream=_env_bool(os.getenv("GLOVE_STREAM"), True),
            system_prompt=os.getenv("GLOVE_SYSTEM_PROMPT", defaults.system_prompt),
            max_turns=int(os.getenv("GLOVE_MAX_TURNS", str(defaults.max_turns))),
            token_limit=_optional_int(os.getenv("GLOVE_TOKEN_LIMIT")),
            max_retries=int(os.getenv("GLOVE_MAX_RETRIES", "0")),
            workspace_path=Path(os.getenv("GLOVE_WORKSPACE", str(Path.cwd()))),
        )

    def resolved_api_key(self) -> str:
        if self.api_key:
            return self.api_key
        pdef = PROVIDERS.get(self.provider)
        return os.getenv(pdef.env_var, "") if pdef else ""

    def validate(self) -> bool:
        """Validate the configuration."""
        if self.provider not in PROVIDERS:
            raise ValueError(
                f'Unknown provider "{self.provider}". Available: {", ".join(PROVIDERS)}'
            )
        if not self.resolved_api_key():
            env_var = PROVIDERS[self.provider].env_var
            raise ValueError(
                f"API key is required. Set {env_var} or GLOVE_API_KEY, "
                f"or add api_key to {get_global_config_path()}."
            )
        if self.max_turns < 1:
            raise ValueError("max_turns must be at least 1")
        if self.token_limit is not None and self.token_limit < 1:
            raise ValueError("token_limit must be positive when set")
        return True

    def create_adapter(self) -> ModelAdapter:
        """Build the model adapter this configuration describes."""
        self.validate()
        return create_adapter(
            self.provider,
            model=self.model or None,
            api_key=self.resolved_api_key(),
            max_tokens=self.max_tokens,
            stream=self.stream,
            base_url=self.base_url or None,
        )
