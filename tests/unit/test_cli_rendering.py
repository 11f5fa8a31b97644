"""Unit tests for CLI output and error rendering helpers."""

from __future__ import annotations

import pytest
import typer

from chaptervoice.cli_rendering import (
    echo_cost_summary,
    echo_segment_rows,
    echo_status,
    exit_with_command_error,
)
from chaptervoice.errors import PipelineStageError, SynthesisError
from chaptervoice.models.datatypes import (
    PipelineStage,
    PipelineState,
    ProgressSnapshot,
    SegmentKind,
    SegmentStatus,
    StageFailure,
)
from chaptervoice.telemetry.cost_tracker import CostTracker


def _snapshot(**overrides: object) -> ProgressSnapshot:
    values: dict[str, object] = {
        "chapter_id": "ch-7",
        "phase": "synthesize",
        "current_chunk": 3,
        "total_chunks": 3,
        "speaker_counts": {"narrator": 4, "mage": 2},
        "segments_done": 5,
        "segments_total": 6,
    }
    values.update(overrides)
    return ProgressSnapshot(**values)  # type: ignore[arg-type]


def test_exit_with_command_error_renders_stage_error_with_hint(
    capsys: pytest.CaptureFixture[str],
) -> None:
    """Renderer should print stage diagnostics and hint before exiting with code 1."""

    error = SynthesisError(
        "Segment 4: provider rejected the request.",
        segment_index=4,
        hint="Rerun the chapter; completed segments are reused from the cache.",
    )

    with pytest.raises(typer.Exit) as exc_info:
        exit_with_command_error("synthesize", error)

    captured = capsys.readouterr()
    assert exc_info.value.exit_code == 1
    assert "synthesize failed at stage `synthesize`: Segment 4" in captured.err
    assert "Hint: Rerun the chapter; completed segments are reused from the cache." in captured.err


def test_exit_with_command_error_renders_non_stage_fallback(
    capsys: pytest.CaptureFixture[str],
) -> None:
    """Renderer should print fallback exception text for non-stage failures."""

    with pytest.raises(typer.Exit) as exc_info:
        exit_with_command_error("merge", RuntimeError("unexpected state error"))

    captured = capsys.readouterr()
    assert exc_info.value.exit_code == 1
    assert "merge failed: unexpected state error" in captured.err


def test_exit_with_command_error_omits_missing_hint(capsys: pytest.CaptureFixture[str]) -> None:
    with pytest.raises(typer.Exit):
        exit_with_command_error("status", PipelineStageError(stage="state", detail="bad json"))

    assert "Hint:" not in capsys.readouterr().err


def test_echo_status_renders_stage_progress_and_failure(
    capsys: pytest.CaptureFixture[str],
) -> None:
    state = PipelineState(
        chapter_id="ch-7",
        stage=PipelineStage.ATTRIBUTED,
        text_sha256="0" * 64,
        updated_at="2026-01-01T00:00:00+00:00",
        failure=StageFailure(
            stage="synthesize",
            error_type="SynthesisError",
            detail="1 segment(s) failed.",
            segment_indices=(5,),
        ),
    )

    echo_status(state, _snapshot())

    lines = capsys.readouterr().out.splitlines()
    assert lines == [
        "Chapter: ch-7",
        "Stage: attributed",
        "Updated at: 2026-01-01T00:00:00+00:00",
        "Phase: synthesize",
        "Chunks: 3/3",
        "Segments: 5/6",
        "Speakers: mage=2, narrator=4",
        "Last failure: synthesize SynthesisError",
        "Failure detail: 1 segment(s) failed.",
        "Failed segments: 5",
    ]


def test_echo_status_without_state(capsys: pytest.CaptureFixture[str]) -> None:
    echo_status(None, _snapshot(chapter_id="ch-9"))

    assert capsys.readouterr().out == "Chapter ch-9: no recorded state\n"


def test_echo_segment_rows_orders_by_global_index(capsys: pytest.CaptureFixture[str]) -> None:
    statuses = [
        SegmentStatus(
            global_index=1,
            speaker_id="narrator",
            voice_id="nova",
            kind=SegmentKind.NARRATION,
            cache_key="b" * 64,
            cached=False,
            byte_size=None,
            needs_review=True,
        ),
        SegmentStatus(
            global_index=0,
            speaker_id="mage",
            voice_id="onyx",
            kind=SegmentKind.DIALOGUE,
            cache_key="a" * 64,
            cached=True,
            byte_size=4844,
            needs_review=False,
        ),
    ]

    echo_segment_rows(statuses)

    assert capsys.readouterr().out.splitlines() == [
        f"0. dialogue speaker=mage voice=onyx cached key={'a' * 12}",
        f"1. narration speaker=narrator voice=nova missing key={'b' * 12} review",
    ]


def test_echo_cost_summary_reports_usage(capsys: pytest.CaptureFixture[str]) -> None:
    tracker = CostTracker(tts_model="tts-1")
    tracker.add_attribution_requests(3)
    tracker.add_synthesis(2000, hits=4, misses=2)

    echo_cost_summary(tracker)

    assert capsys.readouterr().out.splitlines() == [
        "Attribution requests: 3",
        "Synthesized characters: 2000",
        "Cost TTS (USD): 0.030000",
    ]
