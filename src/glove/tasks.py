"""Built-in task list tool, registered when the store tracks tasks."""

import time
from typing import List, Literal

from pydantic import BaseModel, Field

from .context import Context
from .executor import Tool
from .store import Task

TASK_TOOL_NAME = "glove_update_tasks"

TASK_TOOL_DESCRIPTION = (
    "Use this tool to create and manage a structured task list for the current session. "
    "Call this tool with the FULL updated list of tasks each time. Each task has:\n"
    '- content: imperative form describing the task ("Fix the bug", "Run tests")\n'
    '- active_form: present continuous form shown during execution ("Fixing the bug", "Running tests")\n'
    '- status: "pending", "in_progress", or "completed"\n\n'
    "Only one task should be in_progress at a time. Mark tasks completed immediately after finishing them."
)


class TaskItem(BaseModel):
    content: str = Field(min_length=1)
    active_form: str = Field(min_length=1)
    status: Literal["pending", "in_progress", "completed"]


class TaskToolInput(BaseModel):
    todos: List[TaskItem]


def create_task_tool(context: Context) -> Tool:
    """Tool that replaces the session task list, keeping ids of tasks whose content is unchanged."""

    async def run(params: TaskToolInput, display=None) -> dict:
        current = {t.content: t for t in await context.get_tasks()}
        stamp = int(time.time() * 1000)
        updated = [
            Task(
                id=current[item.content].id if item.content in current else f"task_{stamp}_{i}",
                content=item.content,
                active_form=item.active_form,
                status=item.status,
            )
            for i, item in enumerate(params.todos)
        ]
        await context.set_tasks(updated)
        return {
            "status": "success",
            "data": {"tasks": [{"id": t.id, "content": t.content, "status": t.status} for t in updated]},
        }

    return Tool(
        name=TASK_TOOL_NAME,
        description=TASK_TOOL_DESCRIPTION,
        input_schema=TaskToolInput,
        run=run,
    )
