"""Tool registry and execution.

Every tool call a model emits ends up as exactly one ``ToolResult``:
unknown tools, invalid input, handler exceptions, denied permissions and
aborts are all reported as results, never raised out of the executor.
Calls of one turn run concurrently; results carry the originating call id.
"""

import asyncio
import inspect
import json
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Type

from pydantic import BaseModel, ValidationError

from .abort import AbortSignal, abortable
from .display import DisplayManager
from .errors import AbortError, AlreadyBuiltError
from .events import EventBus
from .logger import get_logger, truncate
from .messages import ToolCall, ToolResult, ToolResultData
from .metrics import ToolMetrics
from .store import StoreAdapter

log = get_logger("executor")

PERMISSION_RENDERER = "permission_request"
_TAGGED_KEYS = {"status", "data", "message", "render_data"}
_STATUSES = ("success", "error", "aborted")


@dataclass
class Tool:
    """A callable the model can invoke.

    ``run`` receives the validated input model and the session's display
    manager; it may be a plain function or a coroutine function and may
    return a ``ToolResultData``, a tagged dict, or any raw value.
    """

    name: str
    description: str
    input_schema: Type[BaseModel]
    run: Callable[[BaseModel, DisplayManager], Any]
    requires_permission: bool = False
    unabortable: bool = False

    def json_schema(self) -> Dict[str, Any]:
        return self.input_schema.model_json_schema()


def wrap_result(value: Any) -> ToolResultData:
    """Turn a handler's return value into a ``ToolResultData``."""
    if isinstance(value, ToolResultData):
        return value
    if (
        isinstance(value, dict)
        and value.get("status") in _STATUSES
        and set(value) <= _TAGGED_KEYS
    ):
        return ToolResultData.model_validate(value)
    return ToolResultData.success(value)


def _validation_summary(error: ValidationError) -> str:
    parts = []
    for err in error.errors(include_url=False):
        loc = ".".join(str(p) for p in err.get("loc", ())) or "input"
        parts.append(f"{loc}: {err.get('msg', 'invalid')}")
    return "; ".join(parts)


class Executor:
    """Holds the tool registry and runs tool calls."""

    def __init__(
        self,
        store: Optional[StoreAdapter] = None,
        max_retries: int = 0,
        events: Optional[EventBus] = None,
        metrics: Optional[ToolMetrics] = None,
    ):
        self.store = store
        self.max_retries = max_retries
        self.events = events or EventBus()
        self.metrics = metrics or ToolMetrics()
        self._tools: Dict[str, Tool] = {}
        self._frozen = False
        self._permission_locks: Dict[str, asyncio.Lock] = {}

    # ── Registry ─────────────────────────────────────────────

    def register_tool(self, tool: Tool) -> None:
        """Add a tool.  Duplicate names are rejected."""
        if self._frozen:
            raise AlreadyBuiltError(f"cannot register {tool.name!r}: registry is frozen")
        if tool.name in self._tools:
            raise ValueError(f"a tool named {tool.name!r} is already registered")
        self._tools[tool.name] = tool
        log.debug("registered tool: %s", tool.name)

    def freeze(self) -> None:
        self._frozen = True

    @property
    def tools(self) -> List[Tool]:
        return list(self._tools.values())

    def get(self, name: str) -> Optional[Tool]:
        tool = self._tools.get(name)
        if tool is not None:
            return tool
        # Some models change the casing of tool names.
        lowered = (name or "").lower()
        for candidate in self._tools.values():
            if candidate.name.lower() == lowered:
                return candidate
        return None

    # ── Execution ────────────────────────────────────────────

    async def run_all(
        self,
        calls: List[ToolCall],
        display: Optional[DisplayManager] = None,
        signal: Optional[AbortSignal] = None,
    ) -> List[ToolResult]:
        """Run every call concurrently and wait for all of them to settle."""
        if not calls:
            return []
        log.info("run_all: %d call(s) %s", len(calls), [c.tool_name for c in calls])
        results = await asyncio.gather(*(self.run(c, display, signal) for c in calls))
        return list(results)

    async def run(
        self,
        call: ToolCall,
        display: Optional[DisplayManager] = None,
        signal: Optional[AbortSignal] = None,
    ) -> ToolResult:
        started = time.perf_counter()
        data = await self._execute(call, display, signal)
        elapsed_ms = (time.perf_counter() - started) * 1000

        result = ToolResult(tool_name=call.tool_name, call_id=call.id, result=data)
        self.metrics.record(call.tool_name, call.id, data.status, elapsed_ms, data.message)
        log.info("tool %s (%s) -> %s in %.1fms %s", call.tool_name, call.id, data.status,
                 elapsed_ms, truncate(data.message or "", 120))
        self.events.notify("tool_use_result", result.model_dump())
        return result

    async def _execute(
        self,
        call: ToolCall,
        display: Optional[DisplayManager],
        signal: Optional[AbortSignal],
    ) -> ToolResultData:
        tool = self.get(call.tool_name)
        if tool is None:
            return ToolResultData.error("unknown tool", data={"tool_name": call.tool_name})

        abortable_tool = not tool.unabortable
        if abortable_tool and signal is not None and signal.aborted:
            return ToolResultData.aborted()

        try:
            permitted = await self._check_permission(tool, call.input_args, display, signal)
        except AbortError:
            return ToolResultData.aborted()
        if not permitted:
            return ToolResultData.error(
                f'Permission denied for tool "{tool.name}". '
                "The user has not granted permission to run this tool."
            )

        try:
            parsed = tool.input_schema.model_validate(call.input_args)
        except ValidationError as e:
            return ToolResultData.error(
                f"Invalid input for tool {tool.name}: {_validation_summary(e)}",
                data=json.loads(e.json(include_url=False)),
            )

        last_error: Optional[Exception] = None
        for attempt in range(self.max_retries + 1):
            try:
                if abortable_tool:
                    value = await abortable(signal, self._invoke(tool, parsed, display))
                else:
                    value = await self._invoke(tool, parsed, display)
                break
            except AbortError:
                return ToolResultData.aborted()
            except Exception as e:
                last_error = e
                log.warning("tool %s failed (attempt %d/%d): %s: %s", tool.name,
                            attempt + 1, self.max_retries + 1, type(e).__name__, e)
                if abortable_tool and signal is not None and signal.aborted:
                    return ToolResultData.aborted()
        else:
            return ToolResultData.error(str(last_error) or type(last_error).__name__)

        # The handler has finished; a malformed tagged result is not retried.
        try:
            return wrap_result(value)
        except ValidationError as e:
            log.warning("tool %s returned a malformed result: %s", tool.name, _validation_summary(e))
            return ToolResultData.error(
                f"Tool {tool.name} returned an invalid result: {_validation_summary(e)}",
                data=json.loads(e.json(include_url=False)),
            )

    @staticmethod
    async def _invoke(tool: Tool, parsed: BaseModel, display: Optional[DisplayManager]) -> Any:
        value = tool.run(parsed, display)
        if inspect.isawaitable(value):
            value = await value
        return value

    async def _check_permission(
        self,
        tool: Tool,
        input_args: Any,
        display: Optional[DisplayManager],
        signal: Optional[AbortSignal],
    ) -> bool:
        if not tool.requires_permission:
            return True
        if self.store is None or not self.store.supports_permissions:
            return True

        lock = self._permission_locks.setdefault(tool.name, asyncio.Lock())
        async with lock:
            status = await self.store.get_permission(tool.name)
            if status == "granted":
                return True
            if status == "denied":
                return False
            if display is None:
                return True

            answer = await abortable(signal, display.push_and_wait(
                PERMISSION_RENDERER,
                {"tool_name": tool.name, "tool_input": input_args},
            ))
            allowed = bool(answer)
            await self.store.set_permission(tool.name, "granted" if allowed else "denied")
            log.info("permission for %s set to %s", tool.name, "granted" if allowed else "denied")
            return allowed
