"""Helpers shared by the provider formatters.

``StreamAggregator`` is the per-request accumulator for streamed
responses: text fragments are concatenated, tool-call argument fragments
are collected per index and parsed once the stream is over, and usage
figures keep the last value seen.
"""

import json
import uuid
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from ..logger import get_logger, truncate
from ..messages import Message, ToolCall, ToolResult
from .base import RequestState

log = get_logger("formatting")

MISSING_RESULT_TEXT = "No result available"


def new_call_id(prefix: str = "call") -> str:
    return f"{prefix}_{uuid.uuid4().hex[:24]}"


def safe_json_parse(text: str) -> Any:
    """Parse a JSON payload; malformed input comes back as the raw string."""
    if text is None or text == "":
        return {}
    try:
        return json.loads(text)
    except (json.JSONDecodeError, TypeError, ValueError):
        log.warning("tool arguments are not valid JSON, passing raw string: %s", truncate(text))
        return text


def get_field(obj: Any, name: str, default: Any = None) -> Any:
    """Read ``name`` from an SDK object or a plain dict."""
    if obj is None:
        return default
    if isinstance(obj, dict):
        return obj.get(name, default)
    return getattr(obj, name, default)


def to_json_text(value: Any) -> str:
    if isinstance(value, str):
        return value
    return json.dumps(value, default=str)


def format_tool_result_content(tool_result: ToolResult) -> str:
    """Model-facing text for a tool result.  ``render_data`` is never included."""
    result = tool_result.result
    if result.status in ("error", "aborted"):
        detail = to_json_text(result.data) if result.data else ""
        prefix = "Error" if result.status == "error" else "Aborted"
        return f"{prefix}: {result.message or 'Unknown error'}\n{detail}".strip()
    if result.data is None:
        return "null"
    return to_json_text(result.data)


@dataclass
class _PartialToolCall:
    id: str
    name: str = ""
    arguments: str = ""


class StreamAggregator:
    """Accumulates one streamed response into a canonical ``Message``."""

    def __init__(self, call_id_prefix: str = "call"):
        self.state = RequestState.IDLE
        self.text_parts: List[str] = []
        self.tool_calls: Dict[int, _PartialToolCall] = {}
        self.tokens_in = 0
        self.tokens_out = 0
        self.stop_reason: Optional[str] = None
        self._prefix = call_id_prefix

    def start(self) -> None:
        self.state = RequestState.SENDING

    def _streaming(self) -> None:
        if self.state in (RequestState.IDLE, RequestState.SENDING):
            self.state = RequestState.STREAMING

    def add_text(self, text: str) -> None:
        self._streaming()
        if text:
            self.text_parts.append(text)

    def start_tool_call(self, index: int, call_id: Optional[str] = None, name: Optional[str] = None) -> None:
        self._streaming()
        partial = self.tool_calls.get(index)
        if partial is None:
            partial = _PartialToolCall(id=call_id or new_call_id(self._prefix))
            self.tool_calls[index] = partial
        if call_id:
            partial.id = call_id
        if name:
            partial.name = name

    def add_tool_arguments(self, index: int, fragment: str) -> None:
        if index not in self.tool_calls:
            self.start_tool_call(index)
        self._streaming()
        if fragment:
            self.tool_calls[index].arguments += fragment

    def set_usage(self, tokens_in: Optional[int] = None, tokens_out: Optional[int] = None) -> None:
        """Record usage; later values replace earlier ones."""
        if tokens_in is not None:
            self.tokens_in = int(tokens_in)
        if tokens_out is not None:
            self.tokens_out = int(tokens_out)

    @property
    def text(self) -> str:
        return "".join(self.text_parts)

    def finalize(self) -> Message:
        self.state = RequestState.FINALIZING
        calls = [
            ToolCall(
                tool_name=partial.name,
                input_args=safe_json_parse(partial.arguments),
                id=partial.id,
            )
            for _, partial in sorted(self.tool_calls.items())
        ]
        message = Message(sender="agent", text=self.text, tool_calls=calls or None)
        self.state = RequestState.DONE
        return message
