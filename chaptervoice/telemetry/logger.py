"""Structured run logging utilities.

Responsibilities:
- Emit concise, deterministic phase-level runtime logs through `loguru`.
- Keep sensitive payloads (chapter text, API keys) out of log lines.
"""

from __future__ import annotations

import sys
from typing import TextIO

from loguru import logger as _loguru_logger


def _sanitize_context_value(value: object) -> str:
    """Convert context values into stable, shell-safe tokens."""

    raw = str(value).strip()
    if not raw:
        return "none"
    return "".join(
        character if character.isalnum() or character in {"-", "_", ".", ":", "/"} else "_"
        for character in raw
    )


def _format_context(context: dict[str, object]) -> str:
    """Serialize context key/value pairs in deterministic key order."""

    if not context:
        return ""
    tokens = [
        f"{key}={_sanitize_context_value(context[key])}"
        for key in sorted(context.keys())
    ]
    return " " + " ".join(tokens)


class RunLogger:
    """Emit deterministic phase logs for CLI-observable pipeline activity."""

    def __init__(self, sink: TextIO | None = None, level: str = "INFO") -> None:
        """Route loguru output to `sink` with a bare message format."""

        self._sink = sink or sys.stdout
        _loguru_logger.remove()
        _loguru_logger.add(self._sink, format="{message}", level=level, colorize=False)

    def _emit(self, level: str, event: str, stage: str, **context: object) -> None:
        """Emit one structured runtime log line."""

        line = f"[phase] level={level} stage={stage} event={event}{_format_context(context)}"
        _loguru_logger.log(level, line)

    def log_stage_start(self, stage: str, **context: object) -> None:
        """Emit a stage-start runtime event."""

        self._emit("INFO", "start", stage, **context)

    def log_stage_complete(self, stage: str, **context: object) -> None:
        """Emit a stage-complete runtime event."""

        self._emit("INFO", "complete", stage, **context)

    def log_stage_skipped(self, stage: str, reason: str) -> None:
        """Emit an event for a stage satisfied by persisted artifacts."""

        self._emit("INFO", "skipped", stage, reason=reason)

    def log_stage_failure(self, stage: str, error_type: str, **context: object) -> None:
        """Emit a stage-failure runtime event without sensitive payload details."""

        self._emit("ERROR", "failure", stage, error_type=error_type, **context)

    def log_cache_summary(self, hits: int, misses: int, generations: int) -> None:
        """Emit segment cache counters for one synthesis pass."""

        self._emit(
            "INFO",
            "cache",
            "synthesize",
            generations=generations,
            hits=hits,
            misses=misses,
        )
