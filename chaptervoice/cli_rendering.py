"""CLI output and error rendering helpers.

This module centralizes user-facing CLI presentation for command diagnostics,
chapter run results, pipeline status, segment listings, and usage summaries.
"""

from __future__ import annotations

from typing import NoReturn

import typer

from .errors import PipelineStageError
from .models.datatypes import (
    ChapterRunResult,
    PipelineState,
    ProgressSnapshot,
    SegmentStatus,
)
from .telemetry.cost_tracker import CostTracker


def exit_with_command_error(command_name: str, exc: Exception) -> NoReturn:
    """Print concise diagnostics for command failures and exit with code 1."""

    if isinstance(exc, PipelineStageError):
        typer.secho(
            f"{command_name} failed at stage `{exc.stage}`: {exc.detail}",
            fg=typer.colors.RED,
            err=True,
        )
        if exc.hint:
            typer.secho(f"Hint: {exc.hint}", fg=typer.colors.YELLOW, err=True)
    else:
        typer.secho(f"{command_name} failed: {exc}", fg=typer.colors.RED, err=True)
    raise typer.Exit(code=1) from exc


def echo_run_result(result: ChapterRunResult) -> None:
    """Print merged output location and cache usage for a finished chapter."""

    typer.echo(f"Chapter: {result.chapter_id}")
    typer.echo(f"Resumed from: {result.resumed_from.value}")
    typer.echo(f"Segments: {len(result.segments)}")
    typer.echo(f"Merged audio: {result.merged.path}")
    typer.echo(f"Duration (s): {result.merged.duration_seconds:.2f}")
    typer.echo(f"Segment cache: hits={result.cache_hits} misses={result.cache_misses}")


def echo_cost_summary(cost_tracker: CostTracker) -> None:
    """Print run-level provider usage and estimated TTS spend in USD."""

    summary = cost_tracker.summary()
    typer.echo(f"Attribution requests: {summary['attribution_requests']}")
    typer.echo(f"Synthesized characters: {summary['synthesized_chars']}")
    typer.echo(f"Cost TTS (USD): {summary['estimated_tts_cost_usd']:.6f}")


def echo_status(state: PipelineState | None, snapshot: ProgressSnapshot) -> None:
    """Print the recorded pipeline stage, failure, and progress counters."""

    if state is None:
        typer.echo(f"Chapter {snapshot.chapter_id}: no recorded state")
        return
    typer.echo(f"Chapter: {state.chapter_id}")
    typer.echo(f"Stage: {state.stage.value}")
    typer.echo(f"Updated at: {state.updated_at}")
    typer.echo(f"Phase: {snapshot.phase}")
    typer.echo(f"Chunks: {snapshot.current_chunk}/{snapshot.total_chunks}")
    typer.echo(f"Segments: {snapshot.segments_done}/{snapshot.segments_total}")
    if snapshot.speaker_counts:
        counts = ", ".join(
            f"{speaker}={count}" for speaker, count in sorted(snapshot.speaker_counts.items())
        )
        typer.echo(f"Speakers: {counts}")
    if state.failure is not None:
        typer.echo(f"Last failure: {state.failure.stage} {state.failure.error_type}")
        typer.echo(f"Failure detail: {state.failure.detail}")
        if state.failure.segment_indices:
            indices = ", ".join(str(index) for index in state.failure.segment_indices)
            typer.echo(f"Failed segments: {indices}")


def echo_segment_rows(statuses: list[SegmentStatus]) -> None:
    """Print one deterministic row per segment ordered by global index."""

    for status in sorted(statuses, key=lambda item: item.global_index):
        cached = "cached" if status.cached else "missing"
        review = " review" if status.needs_review else ""
        typer.echo(
            f"{status.global_index}. {status.kind.value} speaker={status.speaker_id} "
            f"voice={status.voice_id} {cached} key={status.cache_key[:12]}{review}"
        )
