"""Top-level package for Chaptervoice.

This package turns chapter plain text into multi-voice narrated audio: quoted
dialogue is attributed to speakers, each segment is synthesized in its
speaker's voice through a permanent cache, and segments are merged into one
chapter file. The main orchestration entry point is `ChapterPipeline`.
"""

from .pipeline import ChapterPipeline

__all__ = ["ChapterPipeline", "__version__"]

__version__ = "0.1.0"
