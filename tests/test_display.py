"""Tests for the display stack and its suspend/resume protocol."""

import asyncio
import os
import sys
import threading

import pytest
from pydantic import BaseModel, ValidationError

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from glove.display import DisplayManager
from glove.errors import AbortError, SlotConflictError


async def _until_pending(dm, count=1):
    while len(dm.pending_ids()) < count:
        await asyncio.sleep(0)


def test_push_and_forget_returns_immediately():
    dm = DisplayManager()
    seen = []
    dm.subscribe(lambda stack: seen.append([s.renderer for s in stack]))
    slot_id = dm.push_and_forget("toast", {"text": "saved"})
    assert dm.active_slot().id == slot_id
    assert dm.pending_ids() == []
    assert seen == [["toast"]]


def test_push_and_wait_resumes_with_value():
    async def scenario():
        dm = DisplayManager()
        waiter = asyncio.create_task(dm.push_and_wait("confirm", {"q": "ok?"}))
        await _until_pending(dm)
        slot_id = dm.pending_ids()[0]
        assert dm.resolve(slot_id, "yes") is True
        value = await waiter
        return dm, slot_id, value

    dm, slot_id, value = asyncio.run(scenario())
    assert value == "yes"
    assert dm.stack == []
    assert dm.get_slot(slot_id).resolved is True


def test_second_resolve_is_a_noop():
    async def scenario():
        dm = DisplayManager()
        waiter = asyncio.create_task(dm.push_and_wait("confirm"))
        await _until_pending(dm)
        slot_id = dm.pending_ids()[0]
        first = dm.resolve(slot_id, 1)
        second = dm.resolve(slot_id, 2)
        return first, second, await waiter

    first, second, value = asyncio.run(scenario())
    assert (first, second, value) == (True, False, 1)


def test_resolve_unknown_id_is_a_noop():
    dm = DisplayManager()
    assert dm.resolve("nope", 1) is False
    assert dm.reject("nope", RuntimeError("x")) is False


def test_multiple_pending_slots_resolve_independently():
    async def scenario():
        dm = DisplayManager()
        a = asyncio.create_task(dm.push_and_wait("pick", {"n": 1}))
        b = asyncio.create_task(dm.push_and_wait("pick", {"n": 2}))
        await _until_pending(dm, 2)
        first, second = dm.pending_ids()
        assert dm.active_slot().id == second
        dm.resolve(second, "B")
        dm.resolve(first, "A")
        return await a, await b

    assert asyncio.run(scenario()) == ("A", "B")


def test_reject_raises_in_waiter():
    async def scenario():
        dm = DisplayManager()
        waiter = asyncio.create_task(dm.push_and_wait("form"))
        await _until_pending(dm)
        dm.reject(dm.pending_ids()[0], ValueError("bad input"))
        with pytest.raises(ValueError, match="bad input"):
            await waiter

    asyncio.run(scenario())


def test_abort_pending_rejects_everything():
    async def scenario():
        dm = DisplayManager()
        waiters = [asyncio.create_task(dm.push_and_wait("form")) for _ in range(3)]
        await _until_pending(dm, 3)
        count = dm.abort_pending("user")
        results = await asyncio.gather(*waiters, return_exceptions=True)
        return dm, count, results

    dm, count, results = asyncio.run(scenario())
    assert count == 3
    assert all(isinstance(r, AbortError) for r in results)
    assert dm.pending_ids() == []


def test_caller_slot_id_conflict_keeps_first_resolver():
    async def scenario():
        dm = DisplayManager()
        first = asyncio.create_task(dm.push_and_wait("form", slot_id="checkout"))
        await _until_pending(dm)
        with pytest.raises(SlotConflictError):
            await dm.push_and_wait("form", slot_id="checkout")
        dm.resolve("checkout", "paid")
        return await first

    assert asyncio.run(scenario()) == "paid"


def test_cancelled_waiter_leaves_no_resolver():
    async def scenario():
        dm = DisplayManager()
        waiter = asyncio.create_task(dm.push_and_wait("form"))
        await _until_pending(dm)
        waiter.cancel()
        with pytest.raises(asyncio.CancelledError):
            await waiter
        return dm

    dm = asyncio.run(scenario())
    assert dm.pending_ids() == []
    assert dm.stack == []


def test_resolve_from_another_thread():
    async def scenario():
        dm = DisplayManager()
        waiter = asyncio.create_task(dm.push_and_wait("form"))
        await _until_pending(dm)
        slot_id = dm.pending_ids()[0]
        thread = threading.Thread(target=dm.resolve, args=(slot_id, "from thread"))
        thread.start()
        value = await asyncio.wait_for(waiter, timeout=5)
        thread.join()
        return value

    assert asyncio.run(scenario()) == "from thread"


def test_failing_listener_does_not_break_push():
    dm = DisplayManager()

    def broken(stack):
        raise RuntimeError("render failed")

    dm.subscribe(broken)
    assert dm.push_and_forget("toast", "hi")


def test_unsubscribe():
    dm = DisplayManager()
    seen = []
    unsubscribe = dm.subscribe(seen.append)
    unsubscribe()
    dm.push_and_forget("toast")
    assert seen == []


def test_renderer_schema_validates_data():
    class CardData(BaseModel):
        title: str

    dm = DisplayManager()
    dm.register_renderer("card", CardData)
    dm.push_and_forget("card", {"title": "Latte"})
    with pytest.raises(ValidationError):
        dm.push_and_forget("card", {"nope": 1})


def test_clear_stack_keeps_pending_resolvers():
    async def scenario():
        dm = DisplayManager()
        waiter = asyncio.create_task(dm.push_and_wait("form"))
        await _until_pending(dm)
        slot_id = dm.pending_ids()[0]
        dm.clear_stack()
        assert dm.stack == []
        assert dm.resolve(slot_id, 42) is True
        return await waiter

    assert asyncio.run(scenario()) == 42


def test_settled_slot_history_is_bounded():
    async def scenario():
        dm = DisplayManager(resolved_history=2)
        ids = []
        for _ in range(4):
            waiter = asyncio.create_task(dm.push_and_wait("form"))
            await _until_pending(dm)
            slot_id = dm.pending_ids()[0]
            dm.resolve(slot_id, "ok")
            await waiter
            ids.append(slot_id)
        return dm, ids

    dm, ids = asyncio.run(scenario())
    assert dm.get_slot(ids[0]) is None
    assert dm.get_slot(ids[1]) is None
    assert dm.get_slot(ids[2]).resolved
    assert dm.get_slot(ids[3]).resolved
