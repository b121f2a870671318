"""Centralized logger for the runtime.

Writes a structured log to .glove_output/glove.log (or $GLOVE_LOG_DIR).
Every model call, tool run, display-stack change and compaction is
recorded there so a session can be reconstructed after the fact.

Usage in any module:
    from .logger import get_logger
    log = get_logger("executor")
    log.info("tool finished: %s", name)

The log file rotates at 5 MB and keeps the last 5 files.
"""

import logging
import os
import sys
import traceback
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

# ── Singleton state ──────────────────────────────────────────

_initialized = False
_log_dir: Optional[Path] = None


def _resolve_log_dir(directory: Optional[str] = None) -> Path:
    """Return (and create) the log directory."""
    if directory:
        path = Path(directory)
    elif os.environ.get("GLOVE_LOG_DIR"):
        path = Path(os.environ["GLOVE_LOG_DIR"])
    else:
        path = Path.cwd() / ".glove_output"
    path.mkdir(parents=True, exist_ok=True)
    return path


def _resolve_level(level: Optional[int]) -> int:
    if level is not None:
        return level
    name = os.environ.get("GLOVE_LOG_LEVEL", "DEBUG").upper()
    resolved = logging.getLevelName(name)
    return resolved if isinstance(resolved, int) else logging.DEBUG


def init_logging(
    directory: Optional[str] = None,
    level: Optional[int] = None,
) -> None:
    """Initialise the file logger.  Safe to call more than once.

    ``level`` defaults to $GLOVE_LOG_LEVEL, then DEBUG.
    """
    global _initialized, _log_dir

    if _initialized:
        return
    _initialized = True
    level = _resolve_level(level)

    root = logging.getLogger("glove")
    root.setLevel(level)

    if root.handlers:
        return

    _log_dir = _resolve_log_dir(directory)
    log_path = _log_dir / "glove.log"

    handler = RotatingFileHandler(
        str(log_path),
        maxBytes=5 * 1024 * 1024,
        backupCount=5,
        encoding="utf-8",
    )
    handler.setLevel(level)

    fmt = logging.Formatter(
        fmt="%(asctime)s.%(msecs)03d | %(levelname)-5s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    handler.setFormatter(fmt)
    root.addHandler(handler)

    if os.environ.get("GLOVE_DEBUG"):
        stderr_handler = logging.StreamHandler(sys.stderr)
        stderr_handler.setLevel(logging.DEBUG)
        stderr_handler.setFormatter(fmt)
        root.addHandler(stderr_handler)

    root.info(
        "=== Logging initialised === pid=%d python=%s log=%s",
        os.getpid(),
        sys.version.split()[0],
        log_path,
    )


def get_logger(name: str) -> logging.Logger:
    """Return a child logger under the 'glove' namespace.

    Initialises logging on first call so module-level loggers created
    at import time still end up in the file.
    """
    if not _initialized:
        init_logging()
    return logging.getLogger(f"glove.{name}")


# ── Convenience helpers ──────────────────────────────────────

def log_exception(logger: logging.Logger, msg: str, exc: BaseException) -> None:
    """Log an exception with full traceback."""
    tb = traceback.format_exception(type(exc), exc, exc.__traceback__)
    logger.error("%s: %s\n%s", msg, exc, "".join(tb))


def truncate(text: str, max_len: int = 200) -> str:
    """Truncate a string for log readability."""
    if not text:
        return "(empty)"
    text = text.replace("\n", "\\n")
    if len(text) <= max_len:
        return text
    return text[:max_len] + f"...[{len(text)} chars]"
