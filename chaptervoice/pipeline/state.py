"""Persisted per-chapter pipeline state.

Responsibilities:
- Serialize `PipelineState` (with its last failure) to `state.json`.
- Load persisted state, treating unreadable files as stage-aware errors.
- Provide the cooperative `CancellationToken` checked at stage boundaries.
"""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path
import threading

from ..errors import PipelineCancelledError, PipelineStageError
from ..io.storage import atomic_write_json
from ..models.datatypes import PipelineStage, PipelineState, StageFailure
from .artifacts import load_json_object


def utc_timestamp() -> str:
    """Return the current UTC time as an ISO-8601 string."""

    return datetime.now(timezone.utc).isoformat()


class CancellationToken:
    """Cooperative cancellation flag checked between pipeline stages."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        """Request cancellation; in-flight provider calls are not interrupted."""

        self._event.set()

    @property
    def cancelled(self) -> bool:
        """Return whether cancellation has been requested."""

        return self._event.is_set()

    def raise_if_cancelled(self, stage: str) -> None:
        """Raise `PipelineCancelledError` before `stage` starts, if requested."""

        if self._event.is_set():
            raise PipelineCancelledError(stage)


def state_payload(state: PipelineState) -> dict[str, object]:
    """Serialize pipeline state for `state.json`."""

    failure: dict[str, object] | None = None
    if state.failure is not None:
        failure = {
            "stage": state.failure.stage,
            "error_type": state.failure.error_type,
            "detail": state.failure.detail,
            "chunk_index": state.failure.chunk_index,
            "segment_indices": list(state.failure.segment_indices),
        }
    return {
        "chapter_id": state.chapter_id,
        "stage": state.stage.value,
        "text_sha256": state.text_sha256,
        "updated_at": state.updated_at,
        "failure": failure,
    }


def state_from_payload(payload: dict[str, object], path: Path) -> PipelineState:
    """Rebuild `PipelineState` from decoded `state.json` content."""

    try:
        raw_failure = payload.get("failure")
        failure = None
        if isinstance(raw_failure, dict):
            chunk_index = raw_failure.get("chunk_index")
            failure = StageFailure(
                stage=str(raw_failure["stage"]),
                error_type=str(raw_failure["error_type"]),
                detail=str(raw_failure["detail"]),
                chunk_index=int(chunk_index) if chunk_index is not None else None,
                segment_indices=tuple(
                    int(index) for index in raw_failure.get("segment_indices", [])
                ),
            )
        return PipelineState(
            chapter_id=str(payload["chapter_id"]),
            stage=PipelineStage(str(payload["stage"])),
            text_sha256=str(payload["text_sha256"]),
            updated_at=str(payload.get("updated_at", "")),
            failure=failure,
        )
    except (KeyError, TypeError, ValueError) as exc:
        raise PipelineStageError(
            stage="resume-artifacts",
            detail=f"Pipeline state is malformed: {path} ({exc})",
            hint="Delete the chapter work directory and rerun `chaptervoice synthesize`.",
        ) from exc


def load_state(path: Path) -> PipelineState | None:
    """Load persisted state, returning `None` when no state was recorded."""

    if not path.exists():
        return None
    return state_from_payload(load_json_object(path), path)


def save_state(path: Path, state: PipelineState) -> PipelineState:
    """Persist state atomically and return it."""

    atomic_write_json(path, state_payload(state))
    return state
