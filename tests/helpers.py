"""Shared fakes for the test suite."""

import os
import sys

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from glove.messages import Message, ToolCall
from glove.models.base import ModelAdapter, PromptResult


def text_reply(text, tokens_in=10, tokens_out=5):
    return PromptResult(messages=[Message(sender="agent", text=text)], tokens_in=tokens_in, tokens_out=tokens_out)


def tool_reply(*calls, text="", tokens_in=10, tokens_out=5):
    """``calls`` are (tool_name, input_args, id) tuples."""
    tool_calls = [ToolCall(tool_name=name, input_args=args, id=call_id) for name, args, call_id in calls]
    return PromptResult(
        messages=[Message(sender="agent", text=text, tool_calls=tool_calls)],
        tokens_in=tokens_in,
        tokens_out=tokens_out,
    )


class ScriptedModel(ModelAdapter):
    """Returns queued replies in order; an exception in the queue is raised."""

    name = "scripted"

    def __init__(self, replies):
        super().__init__()
        self.replies = list(replies)
        self.requests = []

    async def prompt(self, request, notify):
        self.requests.append(request)
        if not self.replies:
            raise AssertionError("ScriptedModel ran out of replies")
        reply = self.replies.pop(0)
        if isinstance(reply, BaseException):
            raise reply
        if callable(reply):
            reply = await reply(request)
        notify("model_response", {"text": reply.text})
        return reply


class RecordingSubscriber:
    def __init__(self):
        self.events = []

    def record(self, event_type, data):
        self.events.append((event_type, data))

    def of_type(self, event_type):
        return [data for kind, data in self.events if kind == event_type]
