"""Bounded-concurrency rendering of chapter segments through the cache.

Responsibilities:
- Resolve every segment to a cache entry, synthesizing only on misses.
- Bound in-flight work with a fixed worker pool and block dispatch when the
  pool is saturated.
- Report per-segment outcomes so one failure never touches sibling entries.
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
import threading

from loguru import logger

from ..cache.keys import make_cache_key
from ..cache.segment_cache import SegmentCache
from ..errors import SynthesisError
from ..models.datatypes import CacheEntry, SpeakerSegment, SynthesisRequest
from ..telemetry.progress import ChapterProgress
from .synthesizer import VoiceSynthesizer


VoiceLookup = Callable[[str], str]


@dataclass(slots=True)
class RenderReport:
    """Outcome of rendering a list of segments.

    Attributes:
        entries: Resolved cache entries by global segment index.
        failures: Synthesis errors by global segment index.
        synthesized_chars: Characters sent for synthesis on cache misses.
        synthesized_segments: Segments this render synthesized itself.
    """

    entries: dict[int, CacheEntry] = field(default_factory=dict)
    failures: dict[int, SynthesisError] = field(default_factory=dict)
    synthesized_chars: int = 0
    synthesized_segments: int = 0

    @property
    def failed_indices(self) -> list[int]:
        """Return failing segment indices in ascending order."""

        return sorted(self.failures)

    @property
    def ok(self) -> bool:
        """Return whether every segment resolved."""

        return not self.failures


class SegmentRenderer:
    """Render segments to cache entries with a bounded worker pool."""

    def __init__(
        self,
        cache: SegmentCache,
        synthesizer: VoiceSynthesizer,
        *,
        workers: int = 4,
    ) -> None:
        self.cache = cache
        self.synthesizer = synthesizer
        self.workers = max(1, workers)

    def request_for(self, segment: SpeakerSegment, voice_for: VoiceLookup) -> SynthesisRequest:
        """Return the synthesis request for one segment."""

        return self.synthesizer.build_request(
            segment.text,
            segment.speaker_id,
            voice_for(segment.speaker_id),
        )

    def key_for(self, segment: SpeakerSegment, voice_for: VoiceLookup) -> str:
        """Return the cache key for one segment."""

        return make_cache_key(self.request_for(segment, voice_for))

    def render_one(self, request: SynthesisRequest) -> tuple[CacheEntry, bool]:
        """Resolve one request and report whether this call synthesized it."""

        generated = threading.Event()

        def _generate() -> bytes:
            generated.set()
            return self.synthesizer.synthesize(request)

        entry = self.cache.get_or_create(make_cache_key(request), _generate, request)
        return entry, generated.is_set()

    def render(
        self,
        segments: Sequence[SpeakerSegment],
        voice_for: VoiceLookup,
        progress: ChapterProgress | None = None,
    ) -> RenderReport:
        """Resolve every segment and wait for all outcomes."""

        report = RenderReport()
        if progress is not None:
            progress.begin_synthesis(len(segments))
        if not segments:
            return report

        report_lock = threading.Lock()
        slots = threading.BoundedSemaphore(self.workers)

        def _render(segment: SpeakerSegment) -> None:
            request = self.request_for(segment, voice_for)
            try:
                entry, generated = self.render_one(request)
            except SynthesisError as exc:
                bound = exc.for_segment(segment.global_index)
                logger.error("Segment {} failed: {}", segment.global_index, exc.detail)
                with report_lock:
                    report.failures[segment.global_index] = bound
                return
            except OSError as exc:
                logger.error("Segment {} could not be cached: {}", segment.global_index, exc)
                with report_lock:
                    report.failures[segment.global_index] = SynthesisError(
                        f"Segment {segment.global_index}: cache write failed ({exc}).",
                        segment_index=segment.global_index,
                        failure_kind="storage",
                    )
                return
            with report_lock:
                report.entries[segment.global_index] = entry
                if generated:
                    report.synthesized_chars += len(request.text)
                    report.synthesized_segments += 1
            if progress is not None:
                progress.segment_resolved()

        with ThreadPoolExecutor(max_workers=self.workers, thread_name_prefix="synthesis") as pool:
            futures: list[Future[None]] = []
            for segment in segments:
                slots.acquire()
                future = pool.submit(_render, segment)
                future.add_done_callback(lambda _future: slots.release())
                futures.append(future)
            for future in futures:
                future.result()

        return report
