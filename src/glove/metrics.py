"""Per-tool execution metrics.

Tools of one turn run concurrently, so every update goes through a lock.
The summary is cheap to compute and safe to log or show in a status bar.
"""

import json
import threading
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from .logger import get_logger

log = get_logger("metrics")


@dataclass
class ToolCallRecord:
    """A single tool invocation record."""
    tool_name: str
    call_id: Optional[str]
    status: str
    elapsed_ms: float
    message: Optional[str] = None


class ToolMetrics:
    """Thread-safe counters for tool runs.

    Tracks per-tool: call count, total time, error and abort counts, and
    the last N runs.
    """

    def __init__(self, history_size: int = 200):
        self._lock = threading.Lock()
        self._history_size = history_size
        self._calls: List[ToolCallRecord] = []
        self._per_tool: Dict[str, dict] = {}
        self._start_time = time.time()

    def record(self, tool_name: str, call_id: Optional[str], status: str,
               elapsed_ms: float, message: Optional[str] = None) -> None:
        rec = ToolCallRecord(
            tool_name=tool_name,
            call_id=call_id,
            status=status,
            elapsed_ms=elapsed_ms,
            message=message,
        )
        with self._lock:
            self._calls.append(rec)
            if len(self._calls) > self._history_size:
                self._calls = self._calls[-self._history_size:]

            entry = self._per_tool.setdefault(tool_name, {
                "count": 0, "total_ms": 0.0, "errors": 0, "aborted": 0,
                "min_ms": float("inf"), "max_ms": 0.0,
            })
            entry["count"] += 1
            entry["total_ms"] += elapsed_ms
            entry["min_ms"] = min(entry["min_ms"], elapsed_ms)
            entry["max_ms"] = max(entry["max_ms"], elapsed_ms)
            if status == "error":
                entry["errors"] += 1
            elif status == "aborted":
                entry["aborted"] += 1

        log.debug("tool_metric: %s call=%s status=%s elapsed=%.1fms",
                  tool_name, call_id, status, elapsed_ms)

    def summary(self) -> Dict[str, Any]:
        with self._lock:
            total_calls = sum(e["count"] for e in self._per_tool.values())
            total_errors = sum(e["errors"] for e in self._per_tool.values())

            per_tool = {}
            for name, e in self._per_tool.items():
                avg_ms = e["total_ms"] / e["count"] if e["count"] else 0
                per_tool[name] = {
                    "count": e["count"],
                    "avg_ms": round(avg_ms, 1),
                    "min_ms": round(e["min_ms"], 1) if e["min_ms"] != float("inf") else 0,
                    "max_ms": round(e["max_ms"], 1),
                    "errors": e["errors"],
                    "aborted": e["aborted"],
                }

            return {
                "uptime_s": round(time.time() - self._start_time, 1),
                "total_calls": total_calls,
                "total_errors": total_errors,
                "per_tool": per_tool,
            }

    def recent(self, n: int = 20) -> List[dict]:
        with self._lock:
            return [
                {
                    "tool": r.tool_name,
                    "call_id": r.call_id,
                    "status": r.status,
                    "elapsed_ms": round(r.elapsed_ms, 1),
                    "message": r.message,
                }
                for r in self._calls[-n:]
            ]

    def to_json(self) -> str:
        return json.dumps({"summary": self.summary(), "recent": self.recent()}, indent=2)
