"""Anthropic Messages API adapter.

The Messages API is strict about turn structure: roles must alternate,
``tool_result`` blocks live in the user turn right after the assistant
turn that issued the ``tool_use``, and every ``tool_use`` id needs a
result.  ``format_messages`` enforces all of that on the way out.
"""

import inspect
from typing import Any, Dict, List, Optional

import anthropic
from anthropic import AsyncAnthropic

from ..errors import ProviderError
from ..events import Notify
from ..logger import get_logger
from ..messages import ContentPart, Message, ToolCall
from .base import ModelAdapter, PromptRequest, PromptResult
from .formatting import (
    MISSING_RESULT_TEXT,
    StreamAggregator,
    format_tool_result_content,
    get_field,
    new_call_id,
    safe_json_parse,
)

_log = get_logger("models.anthropic")

DEFAULT_MODEL = "claude-sonnet-4-20250514"


def _normalize_base_url(url: str) -> str:
    """The SDK expects the API root, not a URL ending in /v1."""
    u = (url or "").rstrip("/")
    if u.lower().endswith("/v1"):
        return u[:-3]
    return u


# ── Glove → Anthropic ─────────────────────────────────────────────

def format_tools(tools) -> List[Dict[str, Any]]:
    return [
        {
            "name": tool.name,
            "description": tool.description,
            "input_schema": tool.json_schema(),
        }
        for tool in tools
    ]


def _media_block(part: ContentPart) -> Dict[str, Any]:
    source = part.source or {}
    if source.get("type") == "url":
        wire_source = {"type": "url", "url": source.get("url", "")}
    else:
        wire_source = {
            "type": "base64",
            "media_type": source.get("media_type", "application/octet-stream"),
            "data": source.get("data", ""),
        }
    return {"type": part.type, "source": wire_source}


def format_content_parts(parts: List[ContentPart]) -> List[Dict[str, Any]]:
    blocks: List[Dict[str, Any]] = []
    for part in parts:
        if part.type == "text":
            if part.text:
                blocks.append({"type": "text", "text": part.text})
        elif part.type in ("image", "document") and part.source:
            blocks.append(_media_block(part))
        else:
            media_type = (part.source or {}).get("media_type", part.type)
            blocks.append({"type": "text", "text": f"[{part.type.capitalize()} attachment: {media_type}]"})
    return blocks


def _tool_input(value: Any) -> Dict[str, Any]:
    if isinstance(value, dict):
        return value
    if value is None:
        return {}
    return {"input": value}


def format_message(msg: Message) -> Dict[str, Any]:
    role = "assistant" if msg.sender == "agent" else "user"

    if role == "user" and msg.tool_results:
        return {
            "role": "user",
            "content": [
                {
                    "type": "tool_result",
                    "tool_use_id": tr.call_id or "_unknown",
                    "content": format_tool_result_content(tr),
                    "is_error": tr.result.status != "success",
                }
                for tr in msg.tool_results
            ],
        }

    blocks: List[Dict[str, Any]] = []
    if role == "user" and msg.content:
        blocks = format_content_parts(msg.content)
        if msg.text and not any(p.type == "text" for p in msg.content):
            blocks.insert(0, {"type": "text", "text": msg.text})
    elif msg.text:
        blocks.append({"type": "text", "text": msg.text})

    if role == "assistant" and msg.tool_calls:
        for tc in msg.tool_calls:
            blocks.append({
                "type": "tool_use",
                "id": tc.id or new_call_id("toolu"),
                "name": tc.tool_name,
                "input": _tool_input(tc.input_args),
            })

    return {"role": role, "content": blocks}


def _placeholder(tool_use_id: str) -> Dict[str, Any]:
    return {"type": "tool_result", "tool_use_id": tool_use_id, "content": MISSING_RESULT_TEXT}


def format_messages(messages: List[Message]) -> List[Dict[str, Any]]:
    """Convert canonical messages into a valid Anthropic ``messages`` list."""
    # 1. convert and merge consecutive same-role turns
    merged: List[Dict[str, Any]] = []
    for msg in messages:
        formatted = format_message(msg)
        if not formatted["content"]:
            continue
        if merged and merged[-1]["role"] == formatted["role"]:
            merged[-1]["content"].extend(formatted["content"])
        else:
            merged.append(formatted)

    # 2. drop duplicate tool_result blocks within a turn, first one wins
    for turn in merged:
        if turn["role"] != "user":
            continue
        seen = set()
        kept = []
        for block in turn["content"]:
            if block.get("type") == "tool_result":
                if block["tool_use_id"] in seen:
                    continue
                seen.add(block["tool_use_id"])
            kept.append(block)
        turn["content"] = kept

    # 3. every tool_use needs a tool_result in the following user turn
    i = 0
    while i < len(merged):
        turn = merged[i]
        tool_use_ids = [b["id"] for b in turn["content"] if b.get("type") == "tool_use"]
        if turn["role"] == "assistant" and tool_use_ids:
            nxt = merged[i + 1] if i + 1 < len(merged) else None
            if nxt is None or nxt["role"] != "user":
                merged.insert(i + 1, {"role": "user", "content": [_placeholder(t) for t in tool_use_ids]})
            else:
                present = {b["tool_use_id"] for b in nxt["content"] if b.get("type") == "tool_result"}
                missing = [t for t in tool_use_ids if t not in present]
                if missing:
                    _log.warning("patching %d missing tool_result(s): %s", len(missing), missing)
                    insert_at = 0
                    for pos, block in enumerate(nxt["content"]):
                        if block.get("type") == "tool_result":
                            insert_at = pos + 1
                    nxt["content"][insert_at:insert_at] = [_placeholder(t) for t in missing]
        i += 1

    return merged


# ── Anthropic → Glove ─────────────────────────────────────────────

def parse_response(content: List[Any]) -> Message:
    """Turn a list of response content blocks into an agent message."""
    text_parts: List[str] = []
    tool_calls: List[ToolCall] = []
    for block in content or []:
        block_type = get_field(block, "type")
        if block_type == "text":
            text_parts.append(get_field(block, "text", "") or "")
        elif block_type == "tool_use":
            tool_calls.append(ToolCall(
                tool_name=get_field(block, "name", ""),
                input_args=get_field(block, "input"),
                id=get_field(block, "id"),
            ))
    return Message(sender="agent", text="".join(text_parts), tool_calls=tool_calls or None)


# ── Adapter ───────────────────────────────────────────────────────

class AnthropicAdapter(ModelAdapter):
    """Adapter for Claude models through the official SDK."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: str = DEFAULT_MODEL,
        max_tokens: int = 8192,
        stream: bool = False,
        base_url: Optional[str] = None,
        max_retries: int = 2,
        client: Optional[Any] = None,
    ):
        super().__init__()
        self.name = f"anthropic:{model}"
        self.model = model
        self.max_tokens = max_tokens
        self.stream = stream
        if client is None:
            kwargs: Dict[str, Any] = {"api_key": api_key, "max_retries": max_retries, "timeout": 600.0}
            if base_url:
                kwargs["base_url"] = _normalize_base_url(base_url)
            client = AsyncAnthropic(**kwargs)
        self.client = client

    def build_params(self, request: PromptRequest) -> Dict[str, Any]:
        params: Dict[str, Any] = {
            "model": self.model,
            "max_tokens": self.max_tokens,
            "messages": format_messages(request.messages),
        }
        system = self._system_prompt_for(request)
        if system:
            params["system"] = system
        if request.tools:
            params["tools"] = format_tools(request.tools)
        return params

    async def prompt(self, request: PromptRequest, notify: Notify) -> PromptResult:
        params = self.build_params(request)
        _log.info("prompt[anthropic]: model=%s msgs=%d tools=%d stream=%s",
                  self.model, len(params["messages"]), len(params.get("tools", [])), self.stream)
        try:
            if self.stream:
                return await self._prompt_streaming(params, notify)
            return await self._prompt_sync(params, notify)
        except anthropic.APIStatusError as e:
            raise ProviderError(f"Anthropic API error {e.status_code}: {e.message}", e.status_code) from e
        except anthropic.APIError as e:
            raise ProviderError(f"Anthropic request failed: {e}") from e

    async def _prompt_sync(self, params: Dict[str, Any], notify: Notify) -> PromptResult:
        response = await self.client.messages.create(**params)
        message = parse_response(get_field(response, "content", []))
        stop_reason = get_field(response, "stop_reason")
        notify("model_response", {
            "text": message.text,
            "tool_calls": [tc.to_dict() for tc in message.tool_calls or []],
            "stop_reason": stop_reason,
        })
        usage = get_field(response, "usage")
        return PromptResult(
            messages=[message],
            tokens_in=int(get_field(usage, "input_tokens", 0) or 0),
            tokens_out=int(get_field(usage, "output_tokens", 0) or 0),
            stop_reason=stop_reason,
        )

    async def _prompt_streaming(self, params: Dict[str, Any], notify: Notify) -> PromptResult:
        agg = StreamAggregator(call_id_prefix="toolu")
        agg.start()
        stream = await self.client.messages.create(**params, stream=True)
        try:
            async for event in stream:
                self._apply_event(agg, event, notify)
        finally:
            closer = getattr(stream, "close", None) or getattr(stream, "aclose", None)
            if closer is not None:
                res = closer()
                if inspect.isawaitable(res):
                    await res

        message = agg.finalize()
        notify("model_response_complete", {
            "text": message.text,
            "tool_calls": [tc.to_dict() for tc in message.tool_calls or []],
            "stop_reason": agg.stop_reason,
        })
        _log.info("prompt[anthropic] complete: stop=%s text_len=%d tool_calls=%d usage=%d/%d",
                  agg.stop_reason, len(message.text), len(message.tool_calls or []),
                  agg.tokens_in, agg.tokens_out)
        return PromptResult(
            messages=[message],
            tokens_in=agg.tokens_in,
            tokens_out=agg.tokens_out,
            stop_reason=agg.stop_reason,
        )

    @staticmethod
    def _apply_event(agg: StreamAggregator, event: Any, notify: Notify) -> None:
        event_type = get_field(event, "type")
        index = int(get_field(event, "index", 0) or 0)

        if event_type == "message_start":
            usage = get_field(get_field(event, "message"), "usage")
            agg.set_usage(get_field(usage, "input_tokens"), get_field(usage, "output_tokens"))

        elif event_type == "content_block_start":
            block = get_field(event, "content_block")
            block_type = get_field(block, "type")
            if block_type == "tool_use":
                agg.start_tool_call(index, get_field(block, "id"), get_field(block, "name"))
            elif block_type == "text":
                text = get_field(block, "text", "")
                if text:
                    agg.add_text(text)
                    notify("text_delta", {"text": text})

        elif event_type == "content_block_delta":
            delta = get_field(event, "delta")
            delta_type = get_field(delta, "type")
            if delta_type == "text_delta":
                text = get_field(delta, "text", "")
                if text:
                    agg.add_text(text)
                    notify("text_delta", {"text": text})
            elif delta_type == "input_json_delta":
                agg.add_tool_arguments(index, get_field(delta, "partial_json", "") or "")

        elif event_type == "content_block_stop":
            partial = agg.tool_calls.get(index)
            if partial is not None:
                notify("tool_use", {
                    "id": partial.id,
                    "name": partial.name,
                    "input": safe_json_parse(partial.arguments),
                })

        elif event_type == "message_delta":
            stop_reason = get_field(get_field(event, "delta"), "stop_reason")
            if stop_reason:
                agg.stop_reason = stop_reason
            usage = get_field(event, "usage")
            agg.set_usage(get_field(usage, "input_tokens"), get_field(usage, "output_tokens"))
