"""Tests for the terminal front end pieces that do not need a live model."""

import asyncio
import os
import signal
import sys

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from rich.console import Console

from glove import Glove
from glove.cli import AskUserInput, ConsoleSubscriber, InterruptGuard, SlotResolver, ask_user
from glove.display import DisplayManager
from glove.errors import AbortError

from helpers import ScriptedModel


def _console():
    return Console(record=True, width=120, force_terminal=False)


def test_console_subscriber_streams_text_and_tools():
    console = _console()
    sub = ConsoleSubscriber(console)
    sub.record("text_delta", {"text": "Hel"})
    sub.record("text_delta", {"text": "lo"})
    sub.record("tool_use", {"id": "c1", "name": "get_menu", "input": {}})
    sub.record("tool_use_result", {
        "tool_name": "get_menu",
        "call_id": "c1",
        "result": {"status": "error", "message": "menu offline"},
    })
    out = console.export_text()
    assert sub.streamed
    assert "Hello" in out
    assert "> get_menu" in out
    assert "get_menu: error" in out
    assert "menu offline" in out


def test_model_response_alone_is_not_streaming():
    sub = ConsoleSubscriber(_console())
    sub.record("model_response", {"text": "hi"})
    assert not sub.streamed


def test_slot_resolver_answers_ask_user(monkeypatch):
    monkeypatch.setattr("glove.cli.Prompt.ask", lambda *args, **kwargs: "oat milk")

    async def scenario():
        dm = DisplayManager()
        SlotResolver(dm, _console())
        return await ask_user(AskUserInput(question="Which milk?"), dm)

    assert asyncio.run(scenario()) == {"answer": "oat milk"}


def test_slot_resolver_permission_uses_confirm(monkeypatch):
    monkeypatch.setattr("glove.cli.Confirm.ask", lambda *args, **kwargs: False)

    async def scenario():
        dm = DisplayManager()
        SlotResolver(dm, _console())
        return await dm.push_and_wait("permission_request", {"tool_name": "delete", "tool_input": {}})

    assert asyncio.run(scenario()) is False


def test_interrupt_guard_aborts_the_request():
    async def scenario():
        started = asyncio.Event()

        async def slow_reply(request):
            started.set()
            await asyncio.sleep(10)

        glove = Glove(model=ScriptedModel([slow_reply])).build()
        before = signal.getsignal(signal.SIGINT)
        with InterruptGuard(glove) as guard:
            request = asyncio.create_task(glove.process_request("hi"))
            await started.wait()
            guard._sigint_handler(signal.SIGINT, None)
            try:
                await request
            except AbortError:
                aborted = True
            else:
                aborted = False
            try:
                guard._sigint_handler(signal.SIGINT, None)
            except KeyboardInterrupt:
                second_raised = True
            else:
                second_raised = False
        return aborted, second_raised, signal.getsignal(signal.SIGINT) is before

    aborted, second_raised, restored = asyncio.run(scenario())
    assert aborted
    assert second_raised
    assert restored
