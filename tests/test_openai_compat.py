"""Tests for the OpenAI-compatible formatter and adapter (httpx mock transport)."""

import asyncio
import json
import os
import sys

import httpx
import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from glove.errors import ProviderError
from glove.messages import ContentPart, Message, ToolCall, ToolResult, ToolResultData
from glove.models import openai_compat
from glove.models.base import PromptRequest
from glove.models.formatting import MISSING_RESULT_TEXT
from glove.models.openai_compat import OpenAICompatAdapter, format_messages, normalize_usage, parse_response

from helpers import RecordingSubscriber


def _ok(call_id, data="ok"):
    return ToolResult(tool_name="t", call_id=call_id, result=ToolResultData.success(data))


def _sse(*chunks):
    lines = [f"data: {json.dumps(c)}\n\n" for c in chunks]
    lines.append("data: [DONE]\n\n")
    return "".join(lines).encode("utf-8")


def _adapter(handler, stream=True, **kwargs):
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return OpenAICompatAdapter(api_key="sk-test", model="gpt-test", base_url="https://api.test/v1",
                               stream=stream, http_client=client, **kwargs)


def _request(text="hi"):
    return PromptRequest(messages=[Message(sender="user", text=text)])


class TestFormatMessages:
    def test_system_prompt_comes_first(self):
        out = format_messages([Message(sender="user", text="hi")], "Be brief.")
        assert out == [{"role": "system", "content": "Be brief."}, {"role": "user", "content": "hi"}]

    def test_tool_calls_and_results(self):
        out = format_messages([
            Message(sender="user", text="add"),
            Message(sender="agent", tool_calls=[ToolCall("add", {"a": 1}, "call_1")]),
            Message(sender="user", text="tool results", tool_results=[_ok("call_1", {"sum": 3})]),
        ])
        assistant = out[1]
        assert assistant["content"] is None
        assert assistant["tool_calls"][0]["function"] == {"name": "add", "arguments": '{"a": 1}'}
        assert out[2] == {"role": "tool", "tool_call_id": "call_1", "content": '{"sum": 3}'}

    def test_missing_and_duplicate_results_are_repaired(self):
        out = format_messages([
            Message(sender="agent", tool_calls=[ToolCall("t", {}, "c1"), ToolCall("t", {}, "c2")]),
            Message(sender="user", tool_results=[_ok("c1", "first"), _ok("c1", "second")]),
        ])
        tools = [e for e in out if e["role"] == "tool"]
        assert [(t["tool_call_id"], t["content"]) for t in tools] == [("c1", "first"), ("c2", MISSING_RESULT_TEXT)]

    def test_consecutive_user_messages_merge(self):
        out = format_messages([Message(sender="user", text="one"), Message(sender="user", text="two")])
        assert out == [{"role": "user", "content": "one\n\ntwo"}]

    def test_image_becomes_data_uri(self):
        msg = Message(sender="user", text="look", content=[
            ContentPart(type="image", source={"type": "base64", "media_type": "image/jpeg", "data": "QUJD"}),
        ])
        (entry,) = format_messages([msg])
        assert entry["content"][0] == {"type": "text", "text": "look"}
        assert entry["content"][1]["image_url"]["url"] == "data:image/jpeg;base64,QUJD"


def test_parse_response_with_malformed_arguments():
    msg = parse_response({"choices": [{"message": {
        "content": None,
        "tool_calls": [{"id": "c1", "function": {"name": "calc", "arguments": '{"a": '}}],
    }}]})
    assert msg.text == ""
    assert msg.tool_calls[0].input_args == '{"a": '


def test_normalize_usage_accepts_input_output_names():
    assert normalize_usage({"input_tokens": 5, "output_tokens": "7"}) == {
        "input_tokens": 5, "output_tokens": 7, "prompt_tokens": 5, "completion_tokens": 7,
    }
    assert normalize_usage(None) == {}


class TestStreaming:
    def test_text_tool_fragments_and_usage(self):
        seen = {}

        def handler(request):
            seen["body"] = json.loads(request.content)
            seen["auth"] = request.headers["authorization"]
            body = _sse(
                {"choices": [{"delta": {"content": "Work"}}]},
                {"choices": [{"delta": {"content": "ing"}}]},
                {"choices": [{"delta": {"tool_calls": [
                    {"index": 0, "id": "call_1", "function": {"name": "calc", "arguments": '{"a":1'}}]}}]},
                {"choices": [{"delta": {"tool_calls": [{"index": 0, "function": {"arguments": ',"b":2}'}}]}}]},
                {"choices": [{"delta": {}, "finish_reason": "tool_calls"}],
                 "usage": {"prompt_tokens": 10, "completion_tokens": 4}},
                {"choices": [], "usage": {"prompt_tokens": 11, "completion_tokens": 6}},
            )
            return httpx.Response(200, content=body, headers={"content-type": "text/event-stream"})

        adapter = _adapter(handler)
        sub = RecordingSubscriber()
        result = asyncio.run(adapter.prompt(_request(), sub.record))

        assert seen["auth"] == "Bearer sk-test"
        assert seen["body"]["stream"] is True
        assert seen["body"]["stream_options"] == {"include_usage": True}
        (msg,) = result.messages
        assert msg.text == "Working"
        assert msg.tool_calls == [ToolCall("calc", {"a": 1, "b": 2}, "call_1")]
        assert result.stop_reason == "tool_calls"
        assert (result.tokens_in, result.tokens_out) == (11, 6)
        assert [d["text"] for d in sub.of_type("text_delta")] == ["Work", "ing"]
        assert sub.of_type("tool_use") == [{"id": "call_1", "name": "calc", "input": {"a": 1, "b": 2}}]

    def test_malformed_sse_lines_are_skipped(self):
        def handler(request):
            body = b"data: {not json}\n\n" + _sse({"choices": [{"delta": {"content": "ok"}}]})
            return httpx.Response(200, content=body)

        result = asyncio.run(_adapter(handler).prompt(_request(), lambda *a: None))
        assert result.text == "ok"

    def test_multibyte_character_split_across_chunks(self):
        payload = json.dumps({"choices": [{"delta": {"content": "café ☕"}}]}, ensure_ascii=False)
        body = f"data: {payload}\n\ndata: [DONE]\n\n".encode("utf-8")
        cut = body.index("é".encode("utf-8")) + 1

        async def chunks():
            yield body[:cut]
            yield body[cut:]

        def handler(request):
            return httpx.Response(200, content=chunks(), headers={"content-type": "text/event-stream"})

        sub = RecordingSubscriber()
        result = asyncio.run(_adapter(handler).prompt(_request(), sub.record))
        assert result.text == "café ☕"
        assert [d["text"] for d in sub.of_type("text_delta")] == ["café ☕"]


class TestErrors:
    def test_server_error_is_retried(self, monkeypatch):
        monkeypatch.setattr(openai_compat, "retry_delay", lambda attempt: 0)
        calls = []

        def handler(request):
            calls.append(1)
            if len(calls) == 1:
                return httpx.Response(500, text="overloaded")
            return httpx.Response(200, json={
                "choices": [{"message": {"content": "recovered"}, "finish_reason": "stop"}],
                "usage": {"prompt_tokens": 3, "completion_tokens": 1},
            })

        result = asyncio.run(_adapter(handler, stream=False).prompt(_request(), lambda *a: None))
        assert len(calls) == 2
        assert result.text == "recovered"
        assert result.stop_reason == "stop"

    def test_client_error_is_not_retried(self):
        calls = []

        def handler(request):
            calls.append(1)
            return httpx.Response(400, text="bad request")

        with pytest.raises(ProviderError) as exc_info:
            asyncio.run(_adapter(handler).prompt(_request(), lambda *a: None))
        assert exc_info.value.status_code == 400
        assert "bad request" in str(exc_info.value)
        assert len(calls) == 1

    def test_retries_exhausted(self, monkeypatch):
        monkeypatch.setattr(openai_compat, "retry_delay", lambda attempt: 0)

        def handler(request):
            return httpx.Response(429, text="slow down")

        with pytest.raises(ProviderError) as exc_info:
            asyncio.run(_adapter(handler, stream=False, max_retries=1).prompt(_request(), lambda *a: None))
        assert exc_info.value.status_code == 429

    def test_connection_error(self, monkeypatch):
        monkeypatch.setattr(openai_compat, "retry_delay", lambda attempt: 0)

        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        with pytest.raises(ProviderError, match="ConnectError"):
            asyncio.run(_adapter(handler, max_retries=0).prompt(_request(), lambda *a: None))


def test_openrouter_headers():
    adapter = OpenAICompatAdapter(api_key="k", model="m", provider="openrouter",
                                  http_client=httpx.AsyncClient())
    headers = adapter._headers()
    assert headers["X-Title"] == "glove"
    assert "HTTP-Referer" in headers
