"""Canonical conversation model shared by every adapter."""

from dataclasses import dataclass
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel

ToolStatus = Literal["success", "error", "aborted"]

ABORTED_MESSAGE = "Tool execution was aborted by the user."


class ToolResultData(BaseModel):
    """Outcome of a single tool run.

    ``render_data`` holds what a UI needs to replay the tool from history
    but should never reach the model (e.g. a full shipping address when
    the model only needs to know the order went through).
    """

    status: ToolStatus
    data: Any = None
    message: Optional[str] = None
    render_data: Any = None

    @classmethod
    def success(cls, data: Any = None) -> "ToolResultData":
        return cls(status="success", data=data)

    @classmethod
    def error(cls, message: str, data: Any = None) -> "ToolResultData":
        return cls(status="error", message=message, data=data)

    @classmethod
    def aborted(cls) -> "ToolResultData":
        return cls(status="aborted", message=ABORTED_MESSAGE)


class ToolResult(BaseModel):
    """A tool outcome paired with the call that produced it."""

    tool_name: str
    call_id: Optional[str] = None
    result: ToolResultData


@dataclass(frozen=True)
class ToolCall:
    """A model-requested tool invocation."""

    tool_name: str
    input_args: Any = None
    id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "tool_name": self.tool_name, "input_args": self.input_args}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ToolCall":
        return cls(
            tool_name=data.get("tool_name", ""),
            input_args=data.get("input_args"),
            id=data.get("id"),
        )


@dataclass(frozen=True)
class ContentPart:
    """A multimodal piece of a user message.

    ``source`` follows ``{"type": "base64"|"url", "media_type", "data"?, "url"?}``.
    """

    type: Literal["text", "image", "video", "document"]
    text: Optional[str] = None
    source: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"type": self.type}
        if self.text is not None:
            out["text"] = self.text
        if self.source is not None:
            out["source"] = dict(self.source)
        return out


@dataclass(frozen=True)
class Message:
    """One entry of the conversation.

    Messages are never mutated after they reach a store.  A message with
    ``is_compaction`` set marks the start of what the model gets to see.
    """

    sender: Literal["user", "agent"]
    text: str = ""
    id: Optional[str] = None
    content: Optional[List[ContentPart]] = None
    tool_calls: Optional[List[ToolCall]] = None
    tool_results: Optional[List[ToolResult]] = None
    is_compaction: bool = False

    @property
    def has_tool_calls(self) -> bool:
        return bool(self.tool_calls)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to the JSON shape used by stores and remote transports."""
        out: Dict[str, Any] = {"sender": self.sender, "text": self.text}
        if self.id:
            out["id"] = self.id
        if self.content:
            out["content"] = [p.to_dict() for p in self.content]
        if self.tool_calls:
            out["tool_calls"] = [tc.to_dict() for tc in self.tool_calls]
        if self.tool_results:
            out["tool_results"] = [tr.model_dump() for tr in self.tool_results]
        if self.is_compaction:
            out["is_compaction"] = True
        return out

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Message":
        content = data.get("content")
        tool_calls = data.get("tool_calls")
        tool_results = data.get("tool_results")
        return cls(
            sender=data.get("sender", "user"),
            text=data.get("text") or "",
            id=data.get("id"),
            content=[ContentPart(**p) for p in content] if content else None,
            tool_calls=[ToolCall.from_dict(tc) for tc in tool_calls] if tool_calls else None,
            tool_results=(
                [ToolResult.model_validate(tr) for tr in tool_results] if tool_results else None
            ),
            is_compaction=bool(data.get("is_compaction", False)),
        )


def user_message(text: str, content: Optional[List[ContentPart]] = None) -> Message:
    return Message(sender="user", text=text, content=content)


def agent_message(text: str, tool_calls: Optional[List[ToolCall]] = None) -> Message:
    return Message(sender="agent", text=text, tool_calls=tool_calls or None)
