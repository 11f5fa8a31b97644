"""Domain exceptions for pipeline and CLI diagnostics.

Every error raised by a pipeline stage derives from `PipelineStageError`, so the
CLI can render the failing stage, a short detail line, and an optional hint.
"""

from __future__ import annotations

from collections.abc import Iterable


class PipelineStageError(RuntimeError):
    """Raised when a specific pipeline stage fails."""

    def __init__(
        self,
        *,
        stage: str,
        detail: str,
        hint: str | None = None,
    ) -> None:
        """Initialize a stage-scoped pipeline error."""

        super().__init__(detail)
        self.stage = stage
        self.detail = detail
        self.hint = hint


class ChunkingError(PipelineStageError):
    """Raised when chapter text cannot be tiled into valid chunks."""

    def __init__(self, detail: str, *, hint: str | None = None) -> None:
        super().__init__(stage="chunk", detail=detail, hint=hint)


class AttributionError(PipelineStageError):
    """Raised when one chunk could not be attributed within the retry budget."""

    def __init__(
        self,
        detail: str,
        *,
        chunk_index: int,
        attempts: int = 0,
        hint: str | None = None,
    ) -> None:
        super().__init__(stage="attribute", detail=detail, hint=hint)
        self.chunk_index = chunk_index
        self.attempts = attempts


class SynthesisError(PipelineStageError):
    """Raised when audio for one segment could not be produced."""

    def __init__(
        self,
        detail: str,
        *,
        segment_index: int | None = None,
        failure_kind: str = "unknown",
        hint: str | None = None,
    ) -> None:
        super().__init__(stage="synthesize", detail=detail, hint=hint)
        self.segment_index = segment_index
        self.failure_kind = failure_kind

    def for_segment(self, segment_index: int) -> SynthesisError:
        """Return a copy of this error bound to a chapter segment index."""

        bound = SynthesisError(
            f"Segment {segment_index}: {self.detail}",
            segment_index=segment_index,
            failure_kind=self.failure_kind,
            hint=self.hint,
        )
        bound.__cause__ = self.__cause__ or self
        return bound


class IncompleteChapterError(PipelineStageError):
    """Raised when a merge is attempted while segments are missing from the cache."""

    def __init__(self, missing_indices: Iterable[int]) -> None:
        missing = tuple(sorted(missing_indices))
        preview = ", ".join(str(index) for index in missing[:10])
        if len(missing) > 10:
            preview += ", ..."
        super().__init__(
            stage="merge",
            detail=f"Cannot merge chapter: {len(missing)} segment(s) missing audio ({preview}).",
            hint="Rerun synthesis to fill the missing segments before merging.",
        )
        self.missing_indices = missing


class CacheCorruptionError(RuntimeError):
    """Raised when a committed cache entry points at missing or unreadable audio."""

    def __init__(self, key: str, reason: str) -> None:
        super().__init__(f"Cache entry `{key}` is corrupt: {reason}")
        self.key = key
        self.reason = reason


class PipelineCancelledError(PipelineStageError):
    """Raised when a run is cancelled at a stage boundary."""

    def __init__(self, stage: str) -> None:
        super().__init__(
            stage=stage,
            detail=f"Run cancelled before stage `{stage}`.",
            hint="Rerun the command to resume from the last completed stage.",
        )
