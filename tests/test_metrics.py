"""Tests for tool metrics."""

import json
import os
import sys
import threading

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from glove.metrics import ToolMetrics


def test_summary_per_tool():
    metrics = ToolMetrics()
    metrics.record("get_menu", "c1", "success", 10.0)
    metrics.record("get_menu", "c2", "error", 30.0, "timeout")
    metrics.record("checkout", "c3", "aborted", 5.0)

    summary = metrics.summary()
    assert summary["total_calls"] == 3
    assert summary["total_errors"] == 1
    menu = summary["per_tool"]["get_menu"]
    assert (menu["count"], menu["avg_ms"], menu["min_ms"], menu["max_ms"]) == (2, 20.0, 10.0, 30.0)
    assert summary["per_tool"]["checkout"]["aborted"] == 1


def test_history_is_bounded():
    metrics = ToolMetrics(history_size=3)
    for i in range(5):
        metrics.record("t", f"c{i}", "success", 1.0)
    assert [r["call_id"] for r in metrics.recent()] == ["c2", "c3", "c4"]
    assert metrics.summary()["per_tool"]["t"]["count"] == 5


def test_concurrent_records():
    metrics = ToolMetrics()

    def worker():
        for _ in range(100):
            metrics.record("t", None, "success", 1.0)

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    assert metrics.summary()["total_calls"] == 800


def test_to_json():
    metrics = ToolMetrics()
    metrics.record("t", "c1", "success", 2.5, None)
    data = json.loads(metrics.to_json())
    assert data["recent"][0]["tool"] == "t"
    assert data["summary"]["per_tool"]["t"]["count"] == 1
