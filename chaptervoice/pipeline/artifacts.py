"""Artifact serialization and loading helpers for the chapter pipeline.

Responsibilities:
- Build deterministic JSON payloads persisted by pipeline stages.
- Load artifact JSON payloads into typed dataclass structures.
- Map unreadable artifacts to stage-aware errors with a recovery hint.
"""

from __future__ import annotations

import json
from pathlib import Path

from ..errors import PipelineStageError
from ..models.datatypes import (
    Chapter,
    MergedChapterAudio,
    SegmentKind,
    SpeakerSegment,
    TextChunk,
)


CHUNKS_ARTIFACT = "chunks.json"
SEGMENTS_ARTIFACT = "segments.json"
MERGED_AUDIO_ARTIFACT = "merged.wav"
MERGED_ARTIFACT = "merged.json"
STATE_ARTIFACT = "state.json"
PROGRESS_ARTIFACT = "progress.json"

_RESUME_HINT = "Delete the chapter work directory and rerun `chaptervoice synthesize`."


def chunk_artifact_payload(chapter: Chapter, chunks: list[TextChunk]) -> dict[str, object]:
    """Serialize chunk artifacts with the chapter text hash they belong to."""

    return {
        "chapter_id": chapter.chapter_id,
        "text_sha256": chapter.text_sha256,
        "chunks": [
            {
                "chunk_index": chunk.chunk_index,
                "char_start": chunk.char_start,
                "char_end": chunk.char_end,
                "boundary_strategy": chunk.boundary_strategy,
                "text": chunk.text,
            }
            for chunk in chunks
        ],
    }


def segment_artifact_payload(
    chapter: Chapter, segments: list[SpeakerSegment]
) -> dict[str, object]:
    """Serialize attributed segments together with the chapter voice map."""

    return {
        "chapter_id": chapter.chapter_id,
        "text_sha256": chapter.text_sha256,
        "voice_map": dict(sorted(chapter.voice_map.items())),
        "segments": [
            {
                "global_index": segment.global_index,
                "chunk_index": segment.chunk_index,
                "speaker_id": segment.speaker_id,
                "kind": segment.kind.value,
                "char_start": segment.char_start,
                "char_end": segment.char_end,
                "needs_review": segment.needs_review,
                "text": segment.text,
            }
            for segment in segments
        ],
    }


def merged_artifact_payload(merged: MergedChapterAudio) -> dict[str, object]:
    """Serialize merged audio metadata."""

    return {
        "chapter_id": merged.chapter_id,
        "filename": merged.path.name,
        "duration_seconds": round(merged.duration_seconds, 6),
        "segment_count": merged.segment_count,
        "cache_keys": list(merged.cache_keys),
        "transition_names": list(merged.transition_names),
        "sha256": merged.sha256,
    }


def load_json_object(path: Path) -> dict[str, object]:
    """Load an artifact JSON file and validate object root shape."""

    try:
        payload = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise PipelineStageError(
            stage="resume-artifacts",
            detail=f"Artifact JSON is invalid: {path}",
            hint=_RESUME_HINT,
        ) from exc
    if not isinstance(payload, dict):
        raise PipelineStageError(
            stage="resume-artifacts",
            detail=f"Artifact JSON must be an object: {path}",
            hint=_RESUME_HINT,
        )
    return payload


def _artifact_items(payload: dict[str, object], key: str, path: Path) -> list[dict[str, object]]:
    items = payload.get(key)
    if not isinstance(items, list) or not all(isinstance(item, dict) for item in items):
        raise PipelineStageError(
            stage="resume-artifacts",
            detail=f"Artifact missing `{key}` list: {path}",
            hint=_RESUME_HINT,
        )
    return items


def load_chunks(path: Path) -> list[TextChunk]:
    """Load chunk artifacts from JSON."""

    payload = load_json_object(path)
    chapter_id = str(payload.get("chapter_id", ""))
    try:
        return [
            TextChunk(
                chapter_id=chapter_id,
                chunk_index=int(item["chunk_index"]),
                text=str(item["text"]),
                char_start=int(item["char_start"]),
                char_end=int(item["char_end"]),
                boundary_strategy=str(item.get("boundary_strategy", "paragraph")),
            )
            for item in _artifact_items(payload, "chunks", path)
        ]
    except (KeyError, TypeError, ValueError) as exc:
        raise PipelineStageError(
            stage="resume-artifacts",
            detail=f"Malformed chunk item in {path}: {exc}",
            hint=_RESUME_HINT,
        ) from exc


def load_segments(path: Path) -> list[SpeakerSegment]:
    """Load attributed segments from JSON in global order."""

    payload = load_json_object(path)
    chapter_id = str(payload.get("chapter_id", ""))
    try:
        segments = [
            SpeakerSegment(
                chapter_id=chapter_id,
                global_index=int(item["global_index"]),
                chunk_index=int(item["chunk_index"]),
                speaker_id=str(item["speaker_id"]),
                text=str(item["text"]),
                kind=SegmentKind(str(item["kind"])),
                char_start=int(item["char_start"]),
                char_end=int(item["char_end"]),
                needs_review=bool(item.get("needs_review", False)),
            )
            for item in _artifact_items(payload, "segments", path)
        ]
    except (KeyError, TypeError, ValueError) as exc:
        raise PipelineStageError(
            stage="resume-artifacts",
            detail=f"Malformed segment item in {path}: {exc}",
            hint=_RESUME_HINT,
        ) from exc
    segments.sort(key=lambda item: item.global_index)
    if [segment.global_index for segment in segments] != list(range(len(segments))):
        raise PipelineStageError(
            stage="resume-artifacts",
            detail=f"Segment indices in {path} are not contiguous.",
            hint=_RESUME_HINT,
        )
    return segments


def load_segment_voice_map(path: Path) -> dict[str, str]:
    """Load the chapter voice map stored beside attributed segments."""

    payload = load_json_object(path)
    raw = payload.get("voice_map")
    if not isinstance(raw, dict):
        return {}
    return {str(key): str(value) for key, value in raw.items()}


def artifact_text_sha256(path: Path) -> str | None:
    """Return the chapter text hash recorded in an artifact, if present."""

    value = load_json_object(path).get("text_sha256")
    return str(value) if isinstance(value, str) else None


def load_merged(path: Path, audio_path: Path) -> MergedChapterAudio:
    """Load merged audio metadata from JSON."""

    payload = load_json_object(path)
    try:
        return MergedChapterAudio(
            chapter_id=str(payload["chapter_id"]),
            path=audio_path,
            duration_seconds=float(payload["duration_seconds"]),  # type: ignore[arg-type]
            segment_count=int(payload["segment_count"]),  # type: ignore[arg-type]
            cache_keys=tuple(str(key) for key in payload.get("cache_keys", [])),  # type: ignore[union-attr]
            transition_names=tuple(
                str(name) for name in payload.get("transition_names", [])  # type: ignore[union-attr]
            ),
            sha256=str(payload["sha256"]),
        )
    except (KeyError, TypeError, ValueError) as exc:
        raise PipelineStageError(
            stage="resume-artifacts",
            detail=f"Malformed merged artifact {path}: {exc}",
            hint=_RESUME_HINT,
        ) from exc
