"""Leveled event reporting for the translation pipeline.

Every stage reports through a :class:`PipelineObserver` handed to it at
construction time. Two concrete observers are provided:

  LoggingObserver  – forwards to the ``mclang`` logger (CLI default)
  JsonLogObserver  – dashboard-compatible JSON lines on stdout

JSON line prefixes:
  JSON_LOG:         – leveled event (info / success / warn / error)
  JSON_RETRY:       – retry event
  JSON_OUTPUT_PATH: – output root of the run
  JSON_FINAL:       – run summary
  JSON_ERROR:       – fatal failure
"""

from __future__ import annotations

import json
import logging
import sys
import threading
import time
from typing import Any, Dict, Optional

LEVEL_INFO = "info"
LEVEL_SUCCESS = "success"
LEVEL_WARN = "warn"
LEVEL_ERROR = "error"

_LOGGING_LEVELS = {
    LEVEL_INFO: logging.INFO,
    LEVEL_SUCCESS: logging.INFO,
    LEVEL_WARN: logging.WARNING,
    LEVEL_ERROR: logging.ERROR,
}

_stdout_lock = threading.Lock()


def emit(prefix: str, data: Dict[str, Any]) -> None:
    """Thread-safe JSON log emission."""
    with _stdout_lock:
        sys.stdout.write(f"\n{prefix}:{json.dumps(data, ensure_ascii=False)}\n")
        sys.stdout.flush()


def emit_output_path(path: str) -> None:
    emit("JSON_OUTPUT_PATH", {"path": path})


def emit_retry(context: str, attempt: int, error_type: str, *, wait_seconds: float = 0.0) -> None:
    """Emit JSON_RETRY for retry events."""
    emit("JSON_RETRY", {
        "context": context,
        "attempt": attempt,
        "type": error_type,
        "wait": wait_seconds,
    })


def emit_final(summary: Dict[str, Any]) -> None:
    """Emit JSON_FINAL with the run summary counters."""
    emit("JSON_FINAL", summary)


def emit_error(message: str, title: str = "Translation Error") -> None:
    """Emit JSON_ERROR for critical failures."""
    emit("JSON_ERROR", {
        "title": title,
        "message": message,
    })


class PipelineObserver:
    def on_event(self, level: str, message: str) -> None:
        raise NotImplementedError

    def on_retry(self, context: str, attempt: int, error_type: str, wait_seconds: float) -> None:
        return None

    def info(self, message: str) -> None:
        self.on_event(LEVEL_INFO, message)

    def success(self, message: str) -> None:
        self.on_event(LEVEL_SUCCESS, message)

    def warn(self, message: str) -> None:
        self.on_event(LEVEL_WARN, message)

    def error(self, message: str) -> None:
        self.on_event(LEVEL_ERROR, message)


class NullObserver(PipelineObserver):
    def on_event(self, level: str, message: str) -> None:
        return None


class LoggingObserver(PipelineObserver):
    def __init__(self, logger: Optional[logging.Logger] = None):
        self.logger = logger or logging.getLogger("mclang")

    def on_event(self, level: str, message: str) -> None:
        if level == LEVEL_SUCCESS:
            message = f"[OK] {message}"
        self.logger.log(_LOGGING_LEVELS.get(level, logging.INFO), message)


class JsonLogObserver(PipelineObserver):
    def on_retry(self, context: str, attempt: int, error_type: str, wait_seconds: float) -> None:
        emit_retry(context, attempt, error_type, wait_seconds=wait_seconds)

    def on_event(self, level: str, message: str) -> None:
        emit("JSON_LOG", {
            "time": time.strftime("%H:%M:%S"),
            "level": level,
            "message": message,
        })
