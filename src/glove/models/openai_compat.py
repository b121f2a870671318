"""OpenAI-compatible chat completions adapter.

Covers OpenAI itself and every provider that speaks the same
``/chat/completions`` dialect (OpenRouter, Gemini's OpenAI endpoint,
MiniMax, Kimi, GLM).  Requests go through ``httpx``; streaming reads the
SSE body line by line until ``[DONE]``.
"""

import asyncio
import json
from typing import Any, Dict, List, Optional

import httpx

from ..errors import ProviderError
from ..events import Notify
from ..logger import get_logger, truncate
from ..messages import ContentPart, Message, ToolCall
from .base import ModelAdapter, PromptRequest, PromptResult
from .formatting import (
    MISSING_RESULT_TEXT,
    StreamAggregator,
    format_tool_result_content,
    new_call_id,
    safe_json_parse,
    to_json_text,
)

_log = get_logger("models.openai_compat")

DEFAULT_BASE_URL = "https://api.openai.com/v1"


def retry_delay(attempt: int) -> int:
    """Seconds to wait before retry number ``attempt + 1``."""
    return min(2 ** (attempt + 1), 60)


def _is_retryable(status: int) -> bool:
    return status == 429 or status >= 500


# ── Glove → OpenAI ────────────────────────────────────────────────

def format_tools(tools) -> List[Dict[str, Any]]:
    return [
        {
            "type": "function",
            "function": {
                "name": tool.name,
                "description": tool.description,
                "parameters": tool.json_schema(),
            },
        }
        for tool in tools
    ]


def format_content_parts(parts: List[ContentPart]) -> List[Dict[str, Any]]:
    out: List[Dict[str, Any]] = []
    for part in parts:
        source = part.source or {}
        if part.type == "text":
            if part.text:
                out.append({"type": "text", "text": part.text})
        elif part.type == "image" and source:
            if source.get("type") == "url":
                url = source.get("url", "")
            else:
                url = f"data:{source.get('media_type', 'image/png')};base64,{source.get('data', '')}"
            out.append({"type": "image_url", "image_url": {"url": url}})
        else:
            media_type = source.get("media_type", part.type)
            out.append({"type": "text", "text": f"[{part.type.capitalize()} attachment: {media_type}]"})
    return out


def _user_content(msg: Message) -> Any:
    if not msg.content:
        return msg.text
    parts = format_content_parts(msg.content)
    if msg.text and not any(p.type == "text" for p in msg.content):
        parts.insert(0, {"type": "text", "text": msg.text})
    return parts


def _as_parts(content: Any) -> List[Dict[str, Any]]:
    if isinstance(content, list):
        return content
    return [{"type": "text", "text": content}] if content else []


def _merge_user_content(first: Any, second: Any) -> Any:
    if isinstance(first, str) and isinstance(second, str):
        return f"{first}\n\n{second}" if first and second else first or second
    return _as_parts(first) + _as_parts(second)


def _convert(messages: List[Message]) -> List[Dict[str, Any]]:
    entries: List[Dict[str, Any]] = []
    for msg in messages:
        if msg.sender == "user" and msg.tool_results:
            for tr in msg.tool_results:
                entries.append({
                    "role": "tool",
                    "tool_call_id": tr.call_id or "_unknown",
                    "content": format_tool_result_content(tr),
                })
        elif msg.sender == "agent":
            entry: Dict[str, Any] = {"role": "assistant", "content": msg.text or None}
            if msg.tool_calls:
                entry["tool_calls"] = [
                    {
                        "id": tc.id or new_call_id(),
                        "type": "function",
                        "function": {
                            "name": tc.tool_name,
                            "arguments": to_json_text(tc.input_args if tc.input_args is not None else {}),
                        },
                    }
                    for tc in msg.tool_calls
                ]
            elif entry["content"] is None:
                entry["content"] = ""
            entries.append(entry)
        else:
            content = _user_content(msg)
            if entries and entries[-1]["role"] == "user":
                entries[-1]["content"] = _merge_user_content(entries[-1]["content"], content)
            else:
                entries.append({"role": "user", "content": content})
    return entries


def _repair(entries: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Drop duplicate tool messages and answer every tool call."""
    repaired: List[Dict[str, Any]] = []
    seen = set()
    i = 0
    while i < len(entries):
        entry = entries[i]
        i += 1
        if entry["role"] == "tool":
            if entry["tool_call_id"] in seen:
                continue
            seen.add(entry["tool_call_id"])
            repaired.append(entry)
            continue

        repaired.append(entry)
        if entry["role"] != "assistant" or not entry.get("tool_calls"):
            continue

        answered = set()
        while i < len(entries) and entries[i]["role"] == "tool":
            tool_entry = entries[i]
            i += 1
            if tool_entry["tool_call_id"] in seen:
                continue
            seen.add(tool_entry["tool_call_id"])
            answered.add(tool_entry["tool_call_id"])
            repaired.append(tool_entry)
        for tc in entry["tool_calls"]:
            if tc["id"] not in answered and tc["id"] not in seen:
                _log.warning("synthesizing missing tool result for %s", tc["id"])
                seen.add(tc["id"])
                repaired.append({"role": "tool", "tool_call_id": tc["id"], "content": MISSING_RESULT_TEXT})
    return repaired


def format_messages(messages: List[Message], system_prompt: Optional[str] = None) -> List[Dict[str, Any]]:
    """Convert canonical messages into a chat-completions ``messages`` list."""
    out: List[Dict[str, Any]] = []
    if system_prompt:
        out.append({"role": "system", "content": system_prompt})
    out.extend(_repair(_convert(messages)))
    return out


# ── OpenAI → Glove ────────────────────────────────────────────────

def _text_of(content: Any) -> str:
    if isinstance(content, list):
        return "".join(
            part.get("text", "") for part in content
            if isinstance(part, dict) and isinstance(part.get("text"), str)
        )
    return content or ""


def _arguments(raw: Any) -> Any:
    if isinstance(raw, str):
        return safe_json_parse(raw)
    return raw if raw is not None else {}


def parse_response(data: Dict[str, Any]) -> Message:
    """Turn a non-streamed completion body into an agent message."""
    choices = data.get("choices") or []
    message = (choices[0].get("message") if choices else None) or {}
    tool_calls = [
        ToolCall(
            tool_name=(tc.get("function") or {}).get("name", ""),
            input_args=_arguments((tc.get("function") or {}).get("arguments")),
            id=tc.get("id") or new_call_id(),
        )
        for tc in message.get("tool_calls") or []
    ]
    return Message(sender="agent", text=_text_of(message.get("content")), tool_calls=tool_calls or None)


def normalize_usage(usage: Any) -> Dict[str, int]:
    """Map the usage payload variants onto ``prompt_tokens``/``completion_tokens``."""
    if not isinstance(usage, dict):
        return {}
    out: Dict[str, int] = {}
    for key in ("prompt_tokens", "completion_tokens", "input_tokens", "output_tokens"):
        if usage.get(key) is None:
            continue
        try:
            out[key] = int(usage[key])
        except (TypeError, ValueError):
            _log.debug("ignoring non-numeric usage field %s=%r", key, usage[key])
    # Some providers return input/output instead of prompt/completion.
    if "prompt_tokens" not in out and "input_tokens" in out:
        out["prompt_tokens"] = out["input_tokens"]
    if "completion_tokens" not in out and "output_tokens" in out:
        out["completion_tokens"] = out["output_tokens"]
    return out


# ── Adapter ───────────────────────────────────────────────────────

class OpenAICompatAdapter(ModelAdapter):
    """Adapter for any OpenAI-compatible ``/chat/completions`` endpoint."""

    def __init__(
        self,
        api_key: str,
        model: str,
        base_url: str = DEFAULT_BASE_URL,
        max_tokens: int = 8192,
        stream: bool = True,
        provider: str = "openai",
        temperature: Optional[float] = None,
        max_retries: int = 2,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        super().__init__()
        self.name = f"{provider}:{model}"
        self.api_key = api_key
        self.model = model
        self.base_url = base_url.rstrip("/")
        self.max_tokens = max_tokens
        self.stream = stream
        self.provider = provider
        self.temperature = temperature
        self.max_retries = max_retries
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(timeout=httpx.Timeout(600.0, connect=30.0))

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    def _headers(self) -> Dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self.api_key}",
        }
        if self.provider == "openrouter":
            headers["HTTP-Referer"] = "https://github.com/glove-agent/glove"
            headers["X-Title"] = "glove"
        return headers

    def build_payload(self, request: PromptRequest) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "model": self.model,
            "messages": format_messages(request.messages, self._system_prompt_for(request)),
            "max_tokens": self.max_tokens,
        }
        if self.temperature is not None:
            payload["temperature"] = self.temperature
        if request.tools:
            payload["tools"] = format_tools(request.tools)
        if self.stream:
            payload["stream"] = True
            payload["stream_options"] = {"include_usage": True}
        return payload

    async def prompt(self, request: PromptRequest, notify: Notify) -> PromptResult:
        url = f"{self.base_url}/chat/completions"
        payload = self.build_payload(request)
        _log.info("prompt[%s]: url=%s model=%s msgs=%d tools=%d stream=%s", self.provider, url,
                  self.model, len(payload["messages"]), len(payload.get("tools", [])), self.stream)

        for attempt in range(self.max_retries + 1):
            try:
                if self.stream:
                    return await self._prompt_streaming(url, payload, notify)
                return await self._prompt_sync(url, payload, notify)

            except httpx.HTTPStatusError as e:
                status = e.response.status_code
                _log.warning("HTTP error %d on attempt %d/%d: %s", status, attempt + 1,
                             self.max_retries + 1, truncate(e.response.text, 300))
                if _is_retryable(status) and attempt < self.max_retries:
                    wait = retry_delay(attempt)
                    _log.info("Retrying in %ds (attempt %d/%d) reason=HTTP %d",
                              wait, attempt + 1, self.max_retries, status)
                    await asyncio.sleep(wait)
                    continue
                raise ProviderError(
                    f"{self.provider} API error {status}: {truncate(e.response.text, 500)}", status
                ) from e

            except (httpx.TimeoutException, httpx.RequestError) as e:
                _log.warning("Connection error on attempt %d/%d: %s: %s", attempt + 1,
                             self.max_retries + 1, type(e).__name__, e)
                if attempt < self.max_retries:
                    wait = retry_delay(attempt)
                    _log.info("Retrying in %ds (attempt %d/%d) reason=%s",
                              wait, attempt + 1, self.max_retries, type(e).__name__)
                    await asyncio.sleep(wait)
                    continue
                raise ProviderError(
                    f"{self.provider} request failed after {attempt + 1} attempt(s): {type(e).__name__}: {e}"
                ) from e

        raise ProviderError(f"{self.provider} request failed")

    async def _prompt_sync(self, url: str, payload: Dict[str, Any], notify: Notify) -> PromptResult:
        response = await self._client.post(url, headers=self._headers(), json=payload)
        response.raise_for_status()
        data = response.json()
        message = parse_response(data)
        choices = data.get("choices") or []
        stop_reason = choices[0].get("finish_reason") if choices else None
        notify("model_response", {
            "text": message.text,
            "tool_calls": [tc.to_dict() for tc in message.tool_calls or []],
            "stop_reason": stop_reason,
        })
        usage = normalize_usage(data.get("usage"))
        return PromptResult(
            messages=[message],
            tokens_in=usage.get("prompt_tokens", 0),
            tokens_out=usage.get("completion_tokens", 0),
            stop_reason=stop_reason,
        )

    async def _prompt_streaming(self, url: str, payload: Dict[str, Any], notify: Notify) -> PromptResult:
        agg = StreamAggregator(call_id_prefix="call")
        agg.start()

        async with self._client.stream("POST", url, headers=self._headers(), json=payload) as response:
            if response.status_code >= 400:
                await response.aread()
            response.raise_for_status()

            line_buffer = ""
            done = False
            async for chunk in response.aiter_text():
                line_buffer += chunk
                while "\n" in line_buffer and not done:
                    line, line_buffer = line_buffer.split("\n", 1)
                    line = line.strip()
                    if not line or not line.startswith("data: "):
                        continue
                    data_str = line[6:]
                    if data_str.strip() == "[DONE]":
                        done = True
                        break
                    try:
                        data = json.loads(data_str)
                    except json.JSONDecodeError:
                        _log.debug("skipping malformed SSE line: %s", truncate(data_str))
                        continue
                    self._apply_chunk(agg, data, notify)
                if done:
                    break

        for partial in (p for _, p in sorted(agg.tool_calls.items())):
            notify("tool_use", {
                "id": partial.id,
                "name": partial.name,
                "input": safe_json_parse(partial.arguments),
            })
        message = agg.finalize()
        notify("model_response_complete", {
            "text": message.text,
            "tool_calls": [tc.to_dict() for tc in message.tool_calls or []],
            "stop_reason": agg.stop_reason,
        })
        _log.info("prompt[%s] complete: finish=%s content_len=%d tool_calls=%d usage=%d/%d",
                  self.provider, agg.stop_reason, len(message.text), len(message.tool_calls or []),
                  agg.tokens_in, agg.tokens_out)
        return PromptResult(
            messages=[message],
            tokens_in=agg.tokens_in,
            tokens_out=agg.tokens_out,
            stop_reason=agg.stop_reason,
        )

    @staticmethod
    def _apply_chunk(agg: StreamAggregator, data: Dict[str, Any], notify: Notify) -> None:
        if data.get("usage"):
            usage = normalize_usage(data["usage"])
            agg.set_usage(usage.get("prompt_tokens"), usage.get("completion_tokens"))

        choices = data.get("choices") or []
        if not choices:
            return
        choice = choices[0]
        delta = choice.get("delta") or {}

        text = _text_of(delta.get("content"))
        if text:
            agg.add_text(text)
            notify("text_delta", {"text": text})

        for position, tc in enumerate(delta.get("tool_calls") or []):
            index = tc.get("index", position)
            fn = tc.get("function") or {}
            agg.start_tool_call(index, tc.get("id"), fn.get("name"))
            args = fn.get("arguments")
            if args:
                agg.add_tool_arguments(index, args if isinstance(args, str) else json.dumps(args))

        if choice.get("finish_reason"):
            agg.stop_reason = choice["finish_reason"]
