"""Typed data models used by the pipeline stages."""

from .datatypes import (
    ANNOUNCER_SPEAKER_ID,
    NARRATOR_SPEAKER_ID,
    AttributedSpan,
    CacheEntry,
    CacheEntryMetadata,
    Chapter,
    ChapterRunResult,
    MergedChapterAudio,
    PipelineStage,
    PipelineState,
    ProgressSnapshot,
    QuoteSpan,
    RegeneratedSegment,
    SegmentKind,
    SegmentStatus,
    SpeakerSegment,
    StageFailure,
    SynthesisRequest,
    TextChunk,
    TransitionClip,
)

__all__ = [
    "ANNOUNCER_SPEAKER_ID",
    "NARRATOR_SPEAKER_ID",
    "AttributedSpan",
    "CacheEntry",
    "CacheEntryMetadata",
    "Chapter",
    "ChapterRunResult",
    "MergedChapterAudio",
    "PipelineStage",
    "PipelineState",
    "ProgressSnapshot",
    "QuoteSpan",
    "RegeneratedSegment",
    "SegmentKind",
    "SegmentStatus",
    "SpeakerSegment",
    "StageFailure",
    "SynthesisRequest",
    "TextChunk",
    "TransitionClip",
]
