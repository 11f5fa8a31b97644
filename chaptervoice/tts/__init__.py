"""Text-to-speech provider abstractions.

This package contains provider speech clients, the segment synthesizer, the
bounded segment renderer, and speaker voice assignment.
"""

from .elevenlabs_client import ElevenLabsProviderError, ElevenLabsSpeechClient
from .renderer import RenderReport, SegmentRenderer
from .synthesizer import SpeechClient, VoiceSynthesizer, split_for_provider
from .voices import VoiceCatalog

__all__ = [
    "ElevenLabsProviderError",
    "ElevenLabsSpeechClient",
    "RenderReport",
    "SegmentRenderer",
    "SpeechClient",
    "VoiceCatalog",
    "VoiceSynthesizer",
    "split_for_provider",
]
