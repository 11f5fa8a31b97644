"""Per-chapter progress records shared between workers and pollers.

Responsibilities:
- Own the mutable progress state of one chapter run behind a lock.
- Hand out immutable `ProgressSnapshot` views that never block workers for long.
- Optionally mirror updates to a JSON file for out-of-process polling, writing
  phase changes at once and rate-limiting per-chunk and per-segment counters.
"""

from __future__ import annotations

from collections import Counter
from collections.abc import Callable, Iterable
import threading
import time

from ..models.datatypes import ProgressSnapshot


ProgressListener = Callable[[ProgressSnapshot], None]


class ChapterProgress:
    """Thread-safe progress state for one chapter."""

    def __init__(self, chapter_id: str, listener: ProgressListener | None = None) -> None:
        self.chapter_id = chapter_id
        self._listener = listener
        self._lock = threading.Lock()
        self._phase = "new"
        self._current_chunk = 0
        self._total_chunks = 0
        self._speaker_counts: Counter[str] = Counter()
        self._segments_done = 0
        self._segments_total = 0
        self._error: str | None = None

    def set_phase(self, phase: str) -> None:
        """Record the currently running phase."""

        with self._lock:
            self._phase = phase
        self._publish()

    def begin_attribution(self, total_chunks: int) -> None:
        """Reset chunk counters for a new attribution pass."""

        with self._lock:
            self._phase = "attribute"
            self._current_chunk = 0
            self._total_chunks = total_chunks
            self._speaker_counts = Counter()
            self._error = None
        self._publish()

    def chunk_attributed(self, speaker_ids: Iterable[str]) -> None:
        """Count one finished chunk and the speakers found in it."""

        with self._lock:
            self._current_chunk += 1
            self._speaker_counts.update(speaker_ids)
        self._publish()

    def begin_synthesis(self, segments_total: int) -> None:
        """Reset segment counters for a synthesis pass."""

        with self._lock:
            self._phase = "synthesize"
            self._segments_done = 0
            self._segments_total = segments_total
            self._error = None
        self._publish()

    def segment_resolved(self) -> None:
        """Count one segment whose audio is available."""

        with self._lock:
            self._segments_done += 1
        self._publish()

    def restore_speaker_counts(self, speaker_ids: Iterable[str], total_chunks: int) -> None:
        """Seed counters from persisted segments when a run resumes past attribution."""

        with self._lock:
            self._speaker_counts = Counter(speaker_ids)
            self._total_chunks = total_chunks
            self._current_chunk = total_chunks
        self._publish()

    def fail(self, error: str) -> None:
        """Record a failure message."""

        with self._lock:
            self._error = error
        self._publish()

    def snapshot(self) -> ProgressSnapshot:
        """Return an immutable copy of the current progress."""

        with self._lock:
            return ProgressSnapshot(
                chapter_id=self.chapter_id,
                phase=self._phase,
                current_chunk=self._current_chunk,
                total_chunks=self._total_chunks,
                speaker_counts=dict(sorted(self._speaker_counts.items())),
                segments_done=self._segments_done,
                segments_total=self._segments_total,
                error=self._error,
            )

    def _publish(self) -> None:
        if self._listener is not None:
            self._listener(self.snapshot())


class ProgressFileMirror:
    """Progress listener that rate-limits writes of snapshots to a file.

    Phase, totals, and error changes are written immediately. Counter-only
    updates are written at most once per `min_interval_seconds`, and a snapshot
    that arrives behind the last written one is dropped.
    """

    def __init__(
        self,
        write: ProgressListener,
        min_interval_seconds: float = 0.5,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._write = write
        self.min_interval_seconds = min_interval_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self._last_milestone: tuple[object, ...] | None = None
        self._last_counters = (0, 0)
        self._last_written_at = 0.0
        self.writes = 0

    def __call__(self, snapshot: ProgressSnapshot) -> None:
        milestone = (
            snapshot.phase,
            snapshot.error,
            snapshot.total_chunks,
            snapshot.segments_total,
        )
        counters = (snapshot.current_chunk, snapshot.segments_done)
        with self._lock:
            now = self._clock()
            if milestone == self._last_milestone:
                if counters < self._last_counters:
                    return
                if now - self._last_written_at < self.min_interval_seconds:
                    return
            self._write(snapshot)
            self._last_milestone = milestone
            self._last_counters = counters
            self._last_written_at = now
            self.writes += 1


def snapshot_to_payload(snapshot: ProgressSnapshot) -> dict[str, object]:
    """Serialize a snapshot for `progress.json`."""

    return {
        "chapter_id": snapshot.chapter_id,
        "phase": snapshot.phase,
        "current_chunk": snapshot.current_chunk,
        "total_chunks": snapshot.total_chunks,
        "speaker_counts": dict(snapshot.speaker_counts),
        "segments_done": snapshot.segments_done,
        "segments_total": snapshot.segments_total,
        "error": snapshot.error,
    }


def snapshot_from_payload(payload: dict[str, object]) -> ProgressSnapshot:
    """Rebuild a snapshot from `progress.json` content."""

    counts = payload.get("speaker_counts") or {}
    error = payload.get("error")
    return ProgressSnapshot(
        chapter_id=str(payload.get("chapter_id", "")),
        phase=str(payload.get("phase", "new")),
        current_chunk=int(payload.get("current_chunk", 0)),  # type: ignore[arg-type]
        total_chunks=int(payload.get("total_chunks", 0)),  # type: ignore[arg-type]
        speaker_counts={
            str(key): int(value) for key, value in dict(counts).items()  # type: ignore[arg-type]
        },
        segments_done=int(payload.get("segments_done", 0)),  # type: ignore[arg-type]
        segments_total=int(payload.get("segments_total", 0)),  # type: ignore[arg-type]
        error=str(error) if error is not None else None,
    )
