"""Chaptervoice pipeline package.

This package contains the chapter state machine, artifact persistence, resume
behavior, and construction of a configured pipeline.
"""

from .orchestrator import ChapterPipeline
from .runtime import build_pipeline
from .state import CancellationToken

__all__ = ["CancellationToken", "ChapterPipeline", "build_pipeline"]
