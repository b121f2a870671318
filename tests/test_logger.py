"""Tests for the logging helpers."""

import logging
import os
import sys

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from glove.logger import _resolve_level, get_logger, log_exception, truncate


def test_truncate():
    assert truncate("") == "(empty)"
    assert truncate("a\nb") == "a\\nb"
    assert truncate("x" * 300, 10) == "x" * 10 + "...[300 chars]"


def test_loggers_live_under_glove_namespace():
    assert get_logger("executor").name == "glove.executor"


def test_level_from_environment(monkeypatch):
    monkeypatch.setenv("GLOVE_LOG_LEVEL", "warning")
    assert _resolve_level(None) == logging.WARNING
    monkeypatch.setenv("GLOVE_LOG_LEVEL", "chatty")
    assert _resolve_level(None) == logging.DEBUG
    assert _resolve_level(logging.INFO) == logging.INFO


def test_log_exception_includes_traceback(caplog):
    log = get_logger("test")
    try:
        raise OSError("disk full")
    except OSError as e:
        with caplog.at_level(logging.ERROR, logger="glove.test"):
            log_exception(log, "write failed", e)
    assert "write failed: disk full" in caplog.text
    assert "Traceback" in caplog.text
