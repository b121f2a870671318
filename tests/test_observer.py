"""Tests for turn/token bookkeeping and compaction."""

import asyncio
import os
import sys

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from glove import Glove
from glove.context import Context
from glove.errors import AbortError, ProviderError
from glove.messages import Message
from glove.observer import SUMMARY_FOOTER, SUMMARY_HEADER, Observer
from glove.prompt import PromptMachine
from glove.store import MemoryStore, Task

from helpers import ScriptedModel, text_reply


def _observer(model, store=None, **kwargs):
    ctx = Context(store or MemoryStore())
    return Observer(ctx, PromptMachine(model), **kwargs), ctx


class TestShouldCompact:
    def test_turn_threshold_is_exclusive(self):
        async def scenario():
            obs, ctx = _observer(ScriptedModel([]), max_turns=2)
            results = []
            for _ in range(3):
                await obs.record_turn(1, 1)
                results.append(await obs.should_compact())
            return results

        assert asyncio.run(scenario()) == [False, False, True]

    def test_token_threshold_is_inclusive(self):
        async def scenario():
            obs, ctx = _observer(ScriptedModel([]), token_limit=100)
            await obs.record_turn(60, 30)
            below = await obs.should_compact()
            await obs.record_turn(5, 5)
            return below, await obs.should_compact()

        assert asyncio.run(scenario()) == (False, True)

    def test_configure_updates_thresholds(self):
        obs, _ = _observer(ScriptedModel([]))
        obs.configure(max_turns=5, token_limit=1000)
        obs.configure(instructions=None)
        assert (obs.max_turns, obs.token_limit) == (5, 1000)


class TestTryCompaction:
    def test_below_threshold_does_nothing(self):
        model = ScriptedModel([])
        obs, ctx = _observer(model)
        assert asyncio.run(obs.try_compaction()) is False
        assert model.requests == []

    def test_summary_is_appended_and_counters_reset(self):
        async def scenario():
            model = ScriptedModel([text_reply("They want a latte.", tokens_out=12)])
            obs, ctx = _observer(model, max_turns=1)
            await ctx.append([Message(sender="user", text="a latte please"), Message(sender="agent", text="ok")])
            await obs.record_turn(10, 10)
            await obs.record_turn(10, 10)
            await ctx.set_tasks([Task(id="t1", content="Order latte", active_form="Ordering latte",
                                      status="in_progress")])
            done = await obs.try_compaction()
            return model, ctx, done, await ctx.get_messages(), await ctx.get_model_view()

        model, ctx, done, everything, view = asyncio.run(scenario())
        assert done is True
        sent = model.requests[0].messages
        assert [m.text for m in sent[:2]] == ["a latte please", "ok"]
        assert sent[-1].sender == "user"
        assert len(everything) == 3
        (summary,) = view
        assert summary.is_compaction
        assert summary.text.startswith(SUMMARY_HEADER)
        assert summary.text.endswith(SUMMARY_FOOTER)
        assert "They want a latte." in summary.text
        assert "- [in_progress] Order latte" in summary.text
        assert asyncio.run(ctx.get_turn_count()) == 0
        assert asyncio.run(ctx.get_token_count()) == 12

    def test_failed_summary_leaves_state_untouched(self):
        async def scenario():
            model = ScriptedModel([ProviderError("overloaded", 529)])
            obs, ctx = _observer(model, max_turns=1)
            await ctx.append([Message(sender="user", text="hi")])
            await obs.record_turn(10, 10)
            await obs.record_turn(10, 10)
            done = await obs.try_compaction()
            return done, await ctx.get_messages(), await ctx.get_turn_count(), await ctx.get_token_count()

        done, messages, turns, tokens = asyncio.run(scenario())
        assert done is False
        assert len(messages) == 1
        assert (turns, tokens) == (2, 40)

    def test_abort_propagates(self):
        async def scenario():
            obs, ctx = _observer(ScriptedModel([AbortError()]), max_turns=0)
            await obs.record_turn(1, 1)
            await obs.try_compaction()

        with pytest.raises(AbortError):
            asyncio.run(scenario())


def test_three_requests_with_turn_threshold_two():
    """The third request crosses the threshold and ends with a compaction."""
    model = ScriptedModel([
        text_reply("one"),
        text_reply("two"),
        text_reply("three"),
        text_reply("summary of one two three", tokens_out=7),
        text_reply("four"),
    ])
    glove = Glove(model=model, max_turns=2).build()

    async def scenario():
        for text in ("first", "second", "third"):
            await glove.process_request(text)
        after_third = await glove.context.get_model_view()
        await glove.process_request("fourth")
        return after_third

    after_third = asyncio.run(scenario())

    assert len(after_third) == 1 and after_third[0].is_compaction
    fourth_request = model.requests[-1].messages
    assert fourth_request[0].is_compaction
    assert [m.text for m in fourth_request[1:]] == ["fourth"]
    everything = asyncio.run(glove.context.get_messages())
    assert len(everything) == 9
