"""Telemetry and observability helpers.

This package tracks usage counters, per-chapter progress, and run events for
deterministic auditing.
"""

from .cost_tracker import CostTracker
from .logger import RunLogger
from .progress import (
    ChapterProgress,
    ProgressFileMirror,
    snapshot_from_payload,
    snapshot_to_payload,
)

__all__ = [
    "ChapterProgress",
    "CostTracker",
    "ProgressFileMirror",
    "RunLogger",
    "snapshot_from_payload",
    "snapshot_to_payload",
]
