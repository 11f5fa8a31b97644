"""Unit tests for persisted chapter artifacts and pipeline state."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from chaptervoice.errors import PipelineCancelledError, PipelineStageError
from chaptervoice.io.storage import ArtifactStore, atomic_write_json
from chaptervoice.models.datatypes import (
    Chapter,
    PipelineStage,
    PipelineState,
    SegmentKind,
    SpeakerSegment,
    StageFailure,
)
from chaptervoice.pipeline.artifacts import (
    artifact_text_sha256,
    load_segment_voice_map,
    load_segments,
    segment_artifact_payload,
)
from chaptervoice.pipeline.state import CancellationToken, load_state, save_state


def _segment(index: int, speaker_id: str = "narrator") -> SpeakerSegment:
    return SpeakerSegment(
        chapter_id="ch-1",
        global_index=index,
        chunk_index=0,
        speaker_id=speaker_id,
        text=f"Line {index}.",
        kind=SegmentKind.NARRATION,
        char_start=index * 8,
        char_end=index * 8 + 7,
        needs_review=index == 1,
    )


def test_segment_payload_roundtrips_through_load_helpers(tmp_path: Path) -> None:
    chapter = Chapter(chapter_id="ch-1", text="Line 0. Line 1.", voice_map={"mage": "onyx"})
    path = tmp_path / "segments.json"
    atomic_write_json(path, segment_artifact_payload(chapter, [_segment(1), _segment(0, "mage")]))

    segments = load_segments(path)

    assert [segment.global_index for segment in segments] == [0, 1]
    assert segments[0].speaker_id == "mage"
    assert segments[1].needs_review is True
    assert load_segment_voice_map(path) == {"mage": "onyx"}
    assert artifact_text_sha256(path) == chapter.text_sha256


def test_load_segments_rejects_gaps_in_global_indices(tmp_path: Path) -> None:
    """A hole in the segment list means the artifact cannot be trusted for merging."""

    chapter = Chapter(chapter_id="ch-1", text="x")
    path = tmp_path / "segments.json"
    atomic_write_json(path, segment_artifact_payload(chapter, [_segment(0), _segment(2)]))

    with pytest.raises(PipelineStageError, match="not contiguous") as exc_info:
        load_segments(path)
    assert exc_info.value.stage == "resume-artifacts"


def test_load_segments_reports_invalid_json(tmp_path: Path) -> None:
    path = tmp_path / "segments.json"
    path.write_text("{not json", encoding="utf-8")

    with pytest.raises(PipelineStageError, match="Artifact JSON is invalid"):
        load_segments(path)


def test_state_roundtrip_keeps_failure_details(tmp_path: Path) -> None:
    path = tmp_path / "state.json"
    state = PipelineState(
        chapter_id="ch-1",
        stage=PipelineStage.ATTRIBUTED,
        text_sha256="f" * 64,
        updated_at="2026-01-01T00:00:00+00:00",
        failure=StageFailure(
            stage="synthesize",
            error_type="SynthesisError",
            detail="Segment 5 failed.",
            segment_indices=(5, 9),
        ),
    )

    save_state(path, state)

    assert load_state(path) == state
    assert json.loads(path.read_text(encoding="utf-8"))["stage"] == "attributed"


def test_load_state_handles_missing_and_malformed_files(tmp_path: Path) -> None:
    path = tmp_path / "state.json"
    assert load_state(path) is None

    path.write_text(json.dumps({"chapter_id": "ch-1", "stage": "exploded"}), encoding="utf-8")
    with pytest.raises(PipelineStageError, match="Pipeline state is malformed"):
        load_state(path)


def test_pipeline_stage_order() -> None:
    assert PipelineStage.MERGED.at_least(PipelineStage.ATTRIBUTED)
    assert not PipelineStage.CHUNKED.at_least(PipelineStage.SEGMENTS_READY)
    assert PipelineStage.NEW.order < PipelineStage.CHUNKED.order


def test_cancellation_token_raises_at_stage_boundary() -> None:
    token = CancellationToken()
    token.raise_if_cancelled("chunk")

    token.cancel()

    assert token.cancelled is True
    with pytest.raises(PipelineCancelledError, match="before stage `merge`"):
        token.raise_if_cancelled("merge")


def test_artifact_store_writes_atomically_without_leftovers(tmp_path: Path) -> None:
    store = ArtifactStore(tmp_path / "ch-1")

    store.save_json("chunks.json", {"b": 1, "a": [1, 2]})
    store.save_audio("merged.wav", b"RIFF")

    assert store.load_json("chunks.json") == {"a": [1, 2], "b": 1}
    assert sorted(path.name for path in store.root.iterdir()) == ["chunks.json", "merged.wav"]
    assert store.delete("merged.wav") is True
    assert store.delete("merged.wav") is False
