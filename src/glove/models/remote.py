"""Model adapter that delegates to a user-supplied backend.

The backend receives ``{"system_prompt", "messages", "tools"}`` with
messages in their ``Message.to_dict()`` shape and tools reduced to name,
description and JSON schema.  It either answers in one go (``prompt``) or
streams wire events (``prompt_stream``)::

    {"type": "text_delta", "text": ...}
    {"type": "tool_use", "id": ..., "name": ..., "input": ...}
    {"type": "done", "message": {...}, "tokens_in": n, "tokens_out": n}
"""

import json
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, List, Optional

import httpx

from ..errors import ProviderError
from ..events import Notify
from ..logger import get_logger, truncate
from ..messages import Message
from .base import ModelAdapter, PromptRequest, PromptResult

_log = get_logger("models.remote")

PromptAction = Callable[[Dict[str, Any]], Awaitable[Dict[str, Any]]]
StreamAction = Callable[[Dict[str, Any]], AsyncIterator[Dict[str, Any]]]


def serialize_tools(tools) -> Optional[List[Dict[str, Any]]]:
    if not tools:
        return None
    return [
        {"name": t.name, "description": t.description, "parameters": t.json_schema()}
        for t in tools
    ]


class RemoteModelAdapter(ModelAdapter):
    """Adapter whose model calls are performed by ``prompt``/``prompt_stream``.

    When ``prompt_stream`` is given it is used instead of ``prompt``.
    """

    def __init__(
        self,
        name: str,
        prompt: Optional[PromptAction] = None,
        prompt_stream: Optional[StreamAction] = None,
    ):
        super().__init__()
        if prompt is None and prompt_stream is None:
            raise ValueError("RemoteModelAdapter needs a prompt or prompt_stream action")
        self.name = name
        self._prompt = prompt
        self._prompt_stream = prompt_stream

    def build_request(self, request: PromptRequest) -> Dict[str, Any]:
        return {
            "system_prompt": self._system_prompt_for(request) or "",
            "messages": [m.to_dict() for m in request.messages],
            "tools": serialize_tools(request.tools),
        }

    async def prompt(self, request: PromptRequest, notify: Notify) -> PromptResult:
        remote_request = self.build_request(request)
        if self._prompt_stream is not None:
            return await self._run_stream(remote_request, notify)

        response = await self._prompt(remote_request)
        message = Message.from_dict(response["message"])
        notify("model_response", {
            "text": message.text,
            "tool_calls": [tc.to_dict() for tc in message.tool_calls or []],
        })
        return PromptResult(
            messages=[message],
            tokens_in=int(response.get("tokens_in", 0) or 0),
            tokens_out=int(response.get("tokens_out", 0) or 0),
        )

    async def _run_stream(self, remote_request: Dict[str, Any], notify: Notify) -> PromptResult:
        final: Optional[Dict[str, Any]] = None
        async for event in self._prompt_stream(remote_request):
            event_type = event.get("type")
            if event_type == "text_delta":
                notify("text_delta", {"text": event.get("text", "")})
            elif event_type == "tool_use":
                notify("tool_use", {
                    "id": event.get("id"),
                    "name": event.get("name"),
                    "input": event.get("input"),
                })
            elif event_type == "done":
                final = event
            else:
                _log.debug("ignoring unknown remote event type %r", event_type)

        if final is None:
            raise ProviderError("Remote model stream ended without a 'done' event")

        message = Message.from_dict(final["message"])
        notify("model_response_complete", {
            "text": message.text,
            "tool_calls": [tc.to_dict() for tc in message.tool_calls or []],
        })
        return PromptResult(
            messages=[message],
            tokens_in=int(final.get("tokens_in", 0) or 0),
            tokens_out=int(final.get("tokens_out", 0) or 0),
        )

    @classmethod
    def from_endpoint(
        cls,
        url: str,
        name: Optional[str] = None,
        headers: Optional[Dict[str, str]] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ) -> "RemoteModelAdapter":
        """Adapter that POSTs to ``url`` and reads the reply as an SSE event stream."""
        client = http_client or httpx.AsyncClient(timeout=httpx.Timeout(600.0, connect=30.0))

        async def stream(remote_request: Dict[str, Any]) -> AsyncIterator[Dict[str, Any]]:
            async with client.stream("POST", url, headers=headers, json=remote_request) as response:
                if response.status_code >= 400:
                    await response.aread()
                    raise ProviderError(
                        f"endpoint error {response.status_code}: {truncate(response.text, 500)}",
                        response.status_code,
                    )
                buffer = ""
                async for chunk in response.aiter_text():
                    buffer += chunk
                    while "\n\n" in buffer:
                        segment, buffer = buffer.split("\n\n", 1)
                        event = _parse_segment(segment)
                        if event is not None:
                            yield event
                event = _parse_segment(buffer)
                if event is not None:
                    yield event

        return cls(name or url, prompt_stream=stream)


def _parse_segment(segment: str) -> Optional[Dict[str, Any]]:
    line = segment.strip()
    if not line.startswith("data: "):
        return None
    try:
        return json.loads(line[6:])
    except json.JSONDecodeError:
        _log.warning("skipping malformed endpoint event: %s", truncate(line))
        return None
