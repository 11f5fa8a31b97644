"""Audio merging, transition, and WAV helper components."""

from .merger import AudioMerger
from .transitions import TransitionPlan
from .wav import WavFormat, inspect_wav, silence_wav

__all__ = ["AudioMerger", "TransitionPlan", "WavFormat", "inspect_wav", "silence_wav"]
