"""Text segmentation components.

This package provides deterministic chunking, quote-span splitting, and
pronunciation rewriting used before attribution and synthesis.
"""

from .chunking import Chunker
from .pronunciation import PronunciationDictionary, is_pause_marker
from .quotes import QuoteSpanSplitter, is_system_text, scan_quotes

__all__ = [
    "Chunker",
    "PronunciationDictionary",
    "QuoteSpanSplitter",
    "is_pause_marker",
    "is_system_text",
    "scan_quotes",
]
