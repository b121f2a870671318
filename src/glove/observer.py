"""Turn/token bookkeeping and conversation compaction.

Compaction never deletes history.  It asks the model for a summary of
the model-visible window and appends it as a message flagged
``is_compaction``; from then on the model only sees that message and
whatever follows it.
"""

from typing import List, Optional

from .abort import AbortSignal
from .context import Context
from .errors import AbortError
from .logger import get_logger, log_exception
from .messages import Message
from .prompt import PromptMachine
from .store import Task

log = get_logger("observer")

DEFAULT_MAX_TURNS = 120

DEFAULT_COMPACTION_INSTRUCTIONS = (
    "Summarize the conversation so far so that it can continue without the earlier messages. "
    "Keep the user's goals, decisions that were made, facts learned from tool results, "
    "open questions and the next steps. Be concise but do not drop anything the rest of the "
    "conversation depends on. Reply with the summary only."
)

SUMMARY_HEADER = "[Conversation summary from compaction]"
SUMMARY_FOOTER = "[End of summary - the conversation continues from here]"


def _task_block(tasks: List[Task]) -> str:
    if not tasks:
        return ""
    lines = "\n".join(f"- [{t.status}] {t.content}" for t in tasks)
    return (
        "\n\n[Current task list - you MUST call glove_update_tasks to update these as you continue]\n"
        f"{lines}"
    )


class Observer:
    """Decides when to compact and performs the compaction."""

    def __init__(
        self,
        context: Context,
        prompt: PromptMachine,
        max_turns: int = DEFAULT_MAX_TURNS,
        token_limit: Optional[int] = None,
        instructions: str = DEFAULT_COMPACTION_INSTRUCTIONS,
    ):
        self.context = context
        self.prompt = prompt
        self.max_turns = max_turns
        self.token_limit = token_limit
        self.instructions = instructions

    def configure(
        self,
        max_turns: Optional[int] = None,
        token_limit: Optional[int] = None,
        instructions: Optional[str] = None,
    ) -> None:
        """Update thresholds at runtime; ``None`` leaves a value unchanged."""
        if max_turns is not None:
            self.max_turns = max_turns
        if token_limit is not None:
            self.token_limit = token_limit
        if instructions is not None:
            self.instructions = instructions

    async def record_turn(self, tokens_in: int, tokens_out: int) -> None:
        await self.context.increment_turn()
        await self.context.add_tokens(tokens_in + tokens_out)

    async def should_compact(self) -> bool:
        turns = await self.context.get_turn_count()
        if turns > self.max_turns:
            return True
        if self.token_limit:
            return await self.context.get_token_count() >= self.token_limit
        return False

    async def try_compaction(self, tools=None, signal: Optional[AbortSignal] = None) -> bool:
        """Compact if a threshold is crossed.  Returns True when a summary was appended.

        A failed summary call leaves history and counters untouched; the
        next check retries.  Aborts propagate.
        """
        if not await self.should_compact():
            return False

        turns = await self.context.get_turn_count()
        tokens = await self.context.get_token_count()
        history = await self.context.get_model_view()
        log.info("compacting: turns=%d tokens=%d window=%d messages", turns, tokens, len(history))

        request = history + [Message(sender="user", text=self.instructions)]
        try:
            result = await self.prompt.run(request, tools, signal)
        except AbortError:
            raise
        except Exception as e:
            log_exception(log, "compaction failed, continuing uncompacted", e)
            return False

        summary = "\n".join(m.text for m in result.messages if m.sender == "agent" and m.text)
        summary = summary or "No summary was generated"
        tasks = await self.context.get_tasks()

        await self.context.reset_counters()
        await self.context.append([
            Message(
                sender="user",
                text=f"{SUMMARY_HEADER}\n\n{summary}{_task_block(tasks)}\n\n{SUMMARY_FOOTER}",
                is_compaction=True,
            )
        ])
        # Only the summary counts towards the new window.
        await self.context.add_tokens(result.tokens_out)
        log.info("compaction done: summary_len=%d tasks=%d", len(summary), len(tasks))
        return True
