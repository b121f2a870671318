"""The conversation loop."""

from dataclasses import replace
from typing import List, Optional

from .abort import AbortSignal
from .context import Context
from .display import DisplayManager
from .executor import Executor
from .logger import get_logger
from .messages import Message, ToolCall
from .models.base import PromptResult
from .models.formatting import new_call_id
from .observer import Observer
from .prompt import PromptMachine

log = get_logger("agent")

DEFAULT_MAX_REQUEST_TURNS = 120


def _with_call_ids(message: Message) -> Message:
    """Give every tool call an id so its result can be matched to it."""
    if not message.tool_calls or all(tc.id for tc in message.tool_calls):
        return message
    calls = [tc if tc.id else replace(tc, id=new_call_id()) for tc in message.tool_calls]
    return replace(message, tool_calls=calls)


class Agent:
    """Runs model turns and tool batches until the model stops calling tools."""

    def __init__(
        self,
        context: Context,
        executor: Executor,
        observer: Observer,
        prompt: PromptMachine,
        max_request_turns: int = DEFAULT_MAX_REQUEST_TURNS,
    ):
        self.context = context
        self.executor = executor
        self.observer = observer
        self.prompt = prompt
        self.max_request_turns = max_request_turns

    async def ask(
        self,
        message: Message,
        display: Optional[DisplayManager] = None,
        signal: Optional[AbortSignal] = None,
    ) -> PromptResult:
        """Process one user message.

        The user message is only written together with the first model
        reply, so a provider error leaves the history as it was.
        Raises ``AbortError`` when ``signal`` fires; tool results produced
        before that point are still appended.
        """
        tools = self.executor.tools
        await self.observer.try_compaction(tools, signal)

        staged: List[Message] = [message]
        request_turns = 0

        while True:
            if signal is not None:
                signal.raise_if_aborted()

            if request_turns >= self.max_request_turns:
                notice = Message(
                    sender="agent",
                    text=(
                        f"Reached the maximum number of turns ({self.max_request_turns}) for this "
                        "request. Please send a new message to continue."
                    ),
                )
                log.warning("request turn cap reached (%d)", self.max_request_turns)
                await self.context.append(staged + [notice])
                return PromptResult(messages=[notice])

            view = await self.context.get_model_view()
            result = await self.prompt.run(view + staged, tools, signal)

            replies = [_with_call_ids(m) for m in result.messages]
            await self.context.append(staged + replies)
            staged = []
            await self.observer.record_turn(result.tokens_in, result.tokens_out)
            request_turns += 1

            calls: List[ToolCall] = [tc for m in replies for tc in m.tool_calls or []]
            log.info("turn %d: stop=%s text_len=%d tool_calls=%d", request_turns, result.stop_reason,
                     sum(len(m.text) for m in replies), len(calls))

            if not calls:
                await self._complete_in_progress_tasks()
                await self.observer.try_compaction(tools, signal)
                return PromptResult(
                    messages=replies,
                    tokens_in=result.tokens_in,
                    tokens_out=result.tokens_out,
                    stop_reason=result.stop_reason,
                )

            results = await self.executor.run_all(calls, display, signal)
            await self.context.append([Message(sender="user", text="tool results", tool_results=results)])

            if signal is not None:
                signal.raise_if_aborted()
            await self.observer.try_compaction(tools, signal)

    async def _complete_in_progress_tasks(self) -> None:
        tasks = await self.context.get_tasks()
        if not any(t.status == "in_progress" for t in tasks):
            return
        await self.context.set_tasks([
            replace(t, status="completed") if t.status == "in_progress" else t for t in tasks
        ])
