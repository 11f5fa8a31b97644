"""Core datatypes shared across Chaptervoice modules.

Responsibilities:
- Represent immutable records exchanged between pipeline stages.
- Provide explicit typing for reproducibility and serialization.

Key types:
- `Chapter`, `TextChunk`, `AttributedSpan`, `SpeakerSegment`, `SynthesisRequest`,
  `CacheEntryMetadata`, `CacheEntry`, `TransitionClip`, `MergedChapterAudio`,
  `PipelineStage`, `StageFailure`, `PipelineState`, and `ProgressSnapshot`.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from hashlib import sha256
from pathlib import Path
from typing import Mapping


NARRATOR_SPEAKER_ID = "narrator"
ANNOUNCER_SPEAKER_ID = "ai_announcer"


class SegmentKind(str, Enum):
    """Classification of an attributed span of chapter text."""

    DIALOGUE = "dialogue"
    NARRATION = "narration"
    SYSTEM = "system"


class PipelineStage(str, Enum):
    """Monotonic per-chapter pipeline progress markers."""

    NEW = "new"
    CHUNKED = "chunked"
    ATTRIBUTED = "attributed"
    SEGMENTS_READY = "segments_ready"
    MERGED = "merged"

    @property
    def order(self) -> int:
        """Return the 0-based position of this stage in the pipeline sequence."""

        return _STAGE_ORDER.index(self)

    def at_least(self, other: PipelineStage) -> bool:
        """Return whether this stage is `other` or a later one."""

        return self.order >= other.order


_STAGE_ORDER = (
    PipelineStage.NEW,
    PipelineStage.CHUNKED,
    PipelineStage.ATTRIBUTED,
    PipelineStage.SEGMENTS_READY,
    PipelineStage.MERGED,
)


def text_sha256(text: str) -> str:
    """Return the hex SHA-256 digest of UTF-8 encoded text."""

    return sha256(text.encode("utf-8")).hexdigest()


@dataclass(frozen=True, slots=True)
class Chapter:
    """One chapter of source fiction to be narrated.

    A chapter is replaced wholesale when its source is re-extracted; it is
    never mutated in place.

    Attributes:
        chapter_id: Stable identifier used for work directories and state.
        text: Full chapter text.
        voice_map: Speaker-ID to provider voice-ID mapping.
        title: Optional human-readable title.
    """

    chapter_id: str
    text: str
    voice_map: Mapping[str, str] = field(default_factory=dict)
    title: str = ""

    @property
    def text_sha256(self) -> str:
        """Return the content hash used to detect re-extracted chapters."""

        return text_sha256(self.text)


@dataclass(frozen=True, slots=True)
class TextChunk:
    """A bounded slice of chapter text sent to attribution as one request.

    Attributes:
        chapter_id: Owning chapter identifier.
        chunk_index: 0-based chunk order within the chapter.
        text: Exact slice `chapter.text[char_start:char_end]`.
        char_start: Inclusive character offset in chapter.
        char_end: Exclusive character offset in chapter.
        boundary_strategy: How the end boundary was chosen (`paragraph`,
            `sentence`, `chapter_end`, or `oversized_unit`).
    """

    chapter_id: str
    chunk_index: int
    text: str
    char_start: int
    char_end: int
    boundary_strategy: str = "paragraph"

    @property
    def byte_length(self) -> int:
        """Return the UTF-8 byte length of the chunk text."""

        return len(self.text.encode("utf-8"))


@dataclass(frozen=True, slots=True)
class QuoteSpan:
    """A disjoint span of chunk text produced by the quote pre-pass.

    Attributes:
        order: 0-based position within the chunk.
        text: Exact source text of the span, trimmed of surrounding whitespace.
        char_start: Inclusive offset relative to the chunk text.
        char_end: Exclusive offset relative to the chunk text.
        kind: Pre-pass classification (`dialogue`, `narration`, `system`).
        needs_review: Whether quote boundaries were ambiguous for this span.
    """

    order: int
    text: str
    char_start: int
    char_end: int
    kind: SegmentKind
    needs_review: bool = False


@dataclass(frozen=True, slots=True)
class AttributedSpan:
    """One validated attribution result for a quote span of a chunk."""

    chunk_index: int
    order: int
    speaker_id: str
    text: str
    kind: SegmentKind
    char_start: int
    char_end: int
    needs_review: bool = False


@dataclass(frozen=True, slots=True)
class SpeakerSegment:
    """A speaker-attributed span of chapter text with its final audio position.

    Attributes:
        chapter_id: Owning chapter identifier.
        global_index: Contiguous 0-based order across the whole chapter.
        chunk_index: Source chunk index.
        speaker_id: Canonical speaker identifier.
        text: Exact source text of the segment.
        kind: Dialogue, narration, or system announcement.
        char_start: Inclusive character offset in chapter.
        char_end: Exclusive character offset in chapter.
        needs_review: Whether the quote pre-pass could not bound this span cleanly.
    """

    chapter_id: str
    global_index: int
    chunk_index: int
    speaker_id: str
    text: str
    kind: SegmentKind
    char_start: int
    char_end: int
    needs_review: bool = False


@dataclass(frozen=True, slots=True)
class SynthesisRequest:
    """Everything that determines the audio for one segment.

    Attributes:
        text: Segment text as sent to the provider.
        speaker_id: Canonical speaker identifier.
        voice_id: Provider voice identifier.
        provider: TTS provider identifier.
        model: TTS model identifier.
        parameters: Provider model parameters that change the audio.
    """

    text: str
    speaker_id: str
    voice_id: str
    provider: str
    model: str
    parameters: Mapping[str, str] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class CacheEntryMetadata:
    """Sidecar metadata recorded for one committed cache entry."""

    cache_key: str
    speaker_id: str
    voice_id: str
    provider: str
    model: str
    model_parameters: Mapping[str, str]
    source_text: str
    source_text_sha256: str
    generated_at: str
    regenerated: bool
    duration_seconds: float
    byte_size: int


@dataclass(frozen=True, slots=True)
class CacheEntry:
    """A committed, content-addressed audio segment in the cache."""

    key: str
    audio_path: Path
    metadata: CacheEntryMetadata

    @property
    def duration_seconds(self) -> float:
        """Return audio duration recorded at commit time."""

        return self.metadata.duration_seconds


@dataclass(frozen=True, slots=True)
class TransitionClip:
    """A fixed clip placed before the first or after the last segment.

    Attributes:
        name: Stable clip name (for example `intro_pause`).
        kind: `pause` (generated silence) or `announcement` (synthesized speech).
        placement: `leading` or `trailing`.
        duration_seconds: Silence length for pause clips.
        text: Spoken text for announcement clips.
    """

    name: str
    kind: str
    placement: str
    duration_seconds: float = 0.0
    text: str | None = None


@dataclass(frozen=True, slots=True)
class MergedChapterAudio:
    """Derived merged chapter audio artifact."""

    chapter_id: str
    path: Path
    duration_seconds: float
    segment_count: int
    cache_keys: tuple[str, ...]
    transition_names: tuple[str, ...]
    sha256: str


@dataclass(frozen=True, slots=True)
class StageFailure:
    """Last recorded failure of a chapter run."""

    stage: str
    error_type: str
    detail: str
    chunk_index: int | None = None
    segment_indices: tuple[int, ...] = field(default_factory=tuple)


@dataclass(frozen=True, slots=True)
class PipelineState:
    """Persisted per-chapter progress marker.

    Attributes:
        chapter_id: Chapter identifier.
        stage: Last fully completed stage.
        text_sha256: Hash of the chapter text the stage artifacts belong to.
        updated_at: ISO-8601 UTC timestamp of the last transition.
        failure: Last failure, cleared on the next successful transition.
    """

    chapter_id: str
    stage: PipelineStage
    text_sha256: str
    updated_at: str
    failure: StageFailure | None = None


@dataclass(frozen=True, slots=True)
class ProgressSnapshot:
    """Read-only view of chapter progress for pollers."""

    chapter_id: str
    phase: str
    current_chunk: int
    total_chunks: int
    speaker_counts: Mapping[str, int]
    segments_done: int
    segments_total: int
    error: str | None = None


@dataclass(frozen=True, slots=True)
class SegmentStatus:
    """Cache presence for one attributed segment."""

    global_index: int
    speaker_id: str
    voice_id: str
    kind: SegmentKind
    cache_key: str
    cached: bool
    byte_size: int | None
    needs_review: bool


@dataclass(frozen=True, slots=True)
class ChapterRunResult:
    """Outcome of one successful chapter run."""

    chapter_id: str
    state: PipelineState
    segments: tuple[SpeakerSegment, ...]
    merged: MergedChapterAudio
    cache_hits: int = 0
    cache_misses: int = 0
    resumed_from: PipelineStage = PipelineStage.NEW


@dataclass(frozen=True, slots=True)
class RegeneratedSegment:
    """Outcome of regenerating one segment's audio.

    Attributes:
        segment: The regenerated segment.
        entry: Fresh cache entry for the segment.
        merged: Rebuilt merged audio, when a remerge was requested.
    """

    segment: SpeakerSegment
    entry: CacheEntry
    merged: MergedChapterAudio | None = None
