"""Pipeline orchestration for Chaptervoice.

Responsibilities:
- Drive one chapter through `new -> chunked -> attributed -> segments_ready
  -> merged`, recording each transition before the next stage starts.
- Resume from the last recorded stage and reset when the chapter text changes.
- Expose segment inspection, single-segment regeneration, and merge-from-cache.

Key types:
- `ChapterPipeline`: orchestration facade.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping, Sequence
from hashlib import sha256
from pathlib import Path
import threading

from loguru import logger

from ..audio.merger import AudioMerger
from ..audio.transitions import TransitionPlan
from ..cache.keys import make_cache_key
from ..errors import IncompleteChapterError, PipelineStageError, SynthesisError
from ..io.storage import ArtifactStore
from ..llm.attribution import AttributionClient
from ..models.datatypes import (
    NARRATOR_SPEAKER_ID,
    CacheEntry,
    Chapter,
    ChapterRunResult,
    MergedChapterAudio,
    PipelineStage,
    PipelineState,
    ProgressSnapshot,
    RegeneratedSegment,
    SegmentStatus,
    SpeakerSegment,
    StageFailure,
    TextChunk,
)
from ..telemetry.cost_tracker import CostTracker
from ..telemetry.logger import RunLogger
from ..telemetry.progress import (
    ChapterProgress,
    ProgressFileMirror,
    snapshot_from_payload,
    snapshot_to_payload,
)
from ..text.chunking import Chunker
from ..tts.renderer import RenderReport, SegmentRenderer
from ..tts.voices import DEFAULT_ANNOUNCER_VOICE, DEFAULT_NARRATOR_VOICE, VoiceCatalog
from .artifacts import (
    CHUNKS_ARTIFACT,
    MERGED_ARTIFACT,
    MERGED_AUDIO_ARTIFACT,
    PROGRESS_ARTIFACT,
    SEGMENTS_ARTIFACT,
    STATE_ARTIFACT,
    chunk_artifact_payload,
    load_chunks,
    load_json_object,
    load_merged,
    load_segment_voice_map,
    load_segments,
    merged_artifact_payload,
    segment_artifact_payload,
)
from .state import CancellationToken, save_state, utc_timestamp
from .state import load_state as read_state
from .telemetry import PipelineTelemetryMixin


_STAGE_ARTIFACTS = (CHUNKS_ARTIFACT, SEGMENTS_ARTIFACT, MERGED_AUDIO_ARTIFACT, MERGED_ARTIFACT)


class ChapterPipeline(PipelineTelemetryMixin):
    """Coordinate all stages for chapter runs sharing one segment cache."""

    def __init__(
        self,
        *,
        work_root: Path,
        chunker: Chunker,
        attribution_client: AttributionClient,
        renderer: SegmentRenderer,
        merger: AudioMerger | None = None,
        transitions: TransitionPlan | None = None,
        default_voices: Mapping[str, str] | None = None,
        narrator_voice: str = DEFAULT_NARRATOR_VOICE,
        announcer_voice: str = DEFAULT_ANNOUNCER_VOICE,
        cost_tracker: CostTracker | None = None,
        run_logger: RunLogger | None = None,
        stage_progress_callback: Callable[[str, int, int], None] | None = None,
        progress_write_interval_seconds: float = 0.5,
    ) -> None:
        """Wire stage components and optional runtime logging/progress hooks."""

        self.work_root = work_root
        self.chunker = chunker
        self.attribution_client = attribution_client
        self.renderer = renderer
        self.merger = merger or AudioMerger()
        self.transitions = transitions or TransitionPlan()
        self.default_voices = dict(default_voices or {})
        self.narrator_voice = narrator_voice
        self.announcer_voice = announcer_voice
        self.cost_tracker = cost_tracker or CostTracker()
        self._run_logger = run_logger
        self._stage_progress_callback = stage_progress_callback
        self.progress_write_interval_seconds = progress_write_interval_seconds
        self._progress: dict[str, ChapterProgress] = {}
        self._progress_lock = threading.Lock()

    def run(
        self,
        chapter: Chapter,
        cancel_token: CancellationToken | None = None,
    ) -> ChapterRunResult:
        """Run or resume one chapter and return its merged audio.

        Raises:
            ChunkingError: When the chapter cannot be tiled into chunks.
            AttributionError: For the lowest-indexed chunk that failed.
            SynthesisError: For the first failing segment; the chapter halts
                at `attributed` and failed indices are recorded in state.
            IncompleteChapterError: When merge finds segments without audio.
            PipelineCancelledError: When `cancel_token` fires between stages.
        """

        token = cancel_token or CancellationToken()
        store = self._store(chapter.chapter_id)
        progress = self._progress_for(chapter.chapter_id, store)
        state = self._resume_state(chapter, store)
        resumed_from = state.stage

        catalog = self._voice_catalog(chapter.voice_map)
        if state.stage is PipelineStage.MERGED:
            merged = self._intact_merged(store)
            segments = load_segments(store.path(SEGMENTS_ARTIFACT))
            voices_match = merged is not None and merged.cache_keys == tuple(
                self.renderer.key_for(segment, catalog.voice_for) for segment in segments
            )
            if merged is not None and voices_match:
                self._on_stage_skipped("merge", "merged_artifact_intact")
                progress.set_phase(PipelineStage.MERGED.value)
                return ChapterRunResult(
                    chapter_id=chapter.chapter_id,
                    state=state,
                    segments=tuple(segments),
                    merged=merged,
                    cache_hits=len(segments),
                    resumed_from=resumed_from,
                )
            if merged is not None:
                logger.info(
                    "Voice assignments for chapter {} changed; re-rendering affected segments.",
                    chapter.chapter_id,
                )
                state = self._record(store, chapter, PipelineStage.ATTRIBUTED)
            else:
                logger.warning(
                    "Merged audio for chapter {} is missing or altered; rebuilding it.",
                    chapter.chapter_id,
                )
                state = self._record(store, chapter, PipelineStage.SEGMENTS_READY)

        try:
            chunks, state = self._ensure_chunks(chapter, store, state, progress, token)
            segments, state = self._ensure_segments(
                chapter, store, state, chunks, progress, token
            )
            report, clip_entries, state = self._ensure_audio(
                chapter, store, state, segments, catalog, progress, token
            )
        except PipelineStageError as exc:
            self._halt(store, chapter, progress, exc)
            raise

        if not report.ok:
            failed = report.failed_indices
            error = report.failures[failed[0]]
            self._halt(store, chapter, progress, error, segment_indices=failed)
            raise error

        try:
            token.raise_if_cancelled("merge")
            merged = self._run_stage(
                "merge",
                lambda: self._merge(store, segments, report.entries, clip_entries),
            )
        except PipelineStageError as exc:
            self._halt(store, chapter, progress, exc)
            raise
        store.save_json(MERGED_ARTIFACT, merged_artifact_payload(merged))
        state = self._record(store, chapter, PipelineStage.MERGED)
        progress.set_phase(PipelineStage.MERGED.value)

        return ChapterRunResult(
            chapter_id=chapter.chapter_id,
            state=state,
            segments=tuple(segments),
            merged=merged,
            cache_hits=len(report.entries) - report.synthesized_segments,
            cache_misses=report.synthesized_segments,
            resumed_from=resumed_from,
        )

    def regenerate_segment(
        self,
        chapter: Chapter,
        global_index: int,
        remerge: bool = True,
    ) -> RegeneratedSegment:
        """Invalidate and re-synthesize exactly one segment.

        Sibling cache entries are untouched. With `remerge`, the merged file is
        rebuilt from the cache afterwards.
        """

        store = self._store(chapter.chapter_id)
        state = self._require_attributed(chapter, store, "regenerate")
        progress = self._progress_for(chapter.chapter_id, store)
        segments = load_segments(store.path(SEGMENTS_ARTIFACT))
        if not 0 <= global_index < len(segments):
            raise PipelineStageError(
                stage="regenerate",
                detail=(
                    f"Segment {global_index} does not exist; chapter "
                    f"`{chapter.chapter_id}` has {len(segments)} segment(s)."
                ),
                hint="Run `chaptervoice segments <chapter-id>` to list segment indices.",
            )

        segment = segments[global_index]
        catalog = self._voice_catalog(chapter.voice_map)
        request = self.renderer.request_for(segment, catalog.voice_for)
        if state.stage.at_least(PipelineStage.SEGMENTS_READY):
            state = self._record(store, chapter, PipelineStage.ATTRIBUTED)
        self.renderer.cache.regenerate(make_cache_key(request))

        try:
            entry, generated = self._run_stage(
                "synthesize", lambda: self.renderer.render_one(request)
            )
        except SynthesisError as exc:
            error = exc.for_segment(global_index)
            self._halt(store, chapter, progress, error, segment_indices=(global_index,))
            raise error from exc
        if generated:
            self.cost_tracker.add_synthesis(len(request.text), hits=0, misses=1)
        logger.info("Segment {} of chapter {} regenerated.", global_index, chapter.chapter_id)

        merged: MergedChapterAudio | None = None
        if remerge:
            merged = self.merge_from_cache(chapter)
        elif len(self._cached_entries(segments, catalog)) == len(segments):
            self._record(store, chapter, PipelineStage.SEGMENTS_READY)
        return RegeneratedSegment(segment=segment, entry=entry, merged=merged)

    def merge_from_cache(self, chapter: Chapter) -> MergedChapterAudio:
        """Rebuild merged chapter audio from cached entries without synthesis.

        Raises:
            IncompleteChapterError: When any segment has no cached audio; no
                output file is written.
        """

        store = self._store(chapter.chapter_id)
        self._require_attributed(chapter, store, "merge")
        progress = self._progress_for(chapter.chapter_id, store)
        segments = load_segments(store.path(SEGMENTS_ARTIFACT))
        catalog = self._voice_catalog(chapter.voice_map)
        entries = self._cached_entries(segments, catalog)
        clip_entries = self._cached_clip_entries(catalog)

        try:
            merged = self._run_stage(
                "merge", lambda: self._merge(store, segments, entries, clip_entries)
            )
        except PipelineStageError as exc:
            self._halt(store, chapter, progress, exc)
            raise
        store.save_json(MERGED_ARTIFACT, merged_artifact_payload(merged))
        self._record(store, chapter, PipelineStage.MERGED)
        progress.set_phase(PipelineStage.MERGED.value)
        return merged

    def segment_status(self, chapter_id: str) -> list[SegmentStatus]:
        """Return cache presence for every attributed segment of a chapter."""

        store = self._store(chapter_id)
        segments_path = store.path(SEGMENTS_ARTIFACT)
        if not segments_path.exists():
            raise PipelineStageError(
                stage="segments",
                detail=f"Chapter `{chapter_id}` has no attributed segments.",
                hint="Run `chaptervoice synthesize` for this chapter first.",
            )
        segments = load_segments(segments_path)
        catalog = self._voice_catalog(load_segment_voice_map(segments_path))

        statuses: list[SegmentStatus] = []
        for segment in segments:
            request = self.renderer.request_for(segment, catalog.voice_for)
            key = make_cache_key(request)
            entry = self.renderer.cache.lookup(key)
            statuses.append(
                SegmentStatus(
                    global_index=segment.global_index,
                    speaker_id=segment.speaker_id,
                    voice_id=request.voice_id,
                    kind=segment.kind,
                    cache_key=key,
                    cached=entry is not None,
                    byte_size=entry.metadata.byte_size if entry is not None else None,
                    needs_review=segment.needs_review,
                )
            )
        return statuses

    def progress(self, chapter_id: str) -> ProgressSnapshot:
        """Return the latest progress snapshot for a chapter."""

        with self._progress_lock:
            live = self._progress.get(chapter_id)
        if live is not None:
            return live.snapshot()

        store = self._store(chapter_id)
        if store.exists(PROGRESS_ARTIFACT):
            return snapshot_from_payload(load_json_object(store.path(PROGRESS_ARTIFACT)))
        state = self.load_state(chapter_id)
        return ProgressSnapshot(
            chapter_id=chapter_id,
            phase=state.stage.value if state is not None else PipelineStage.NEW.value,
            current_chunk=0,
            total_chunks=0,
            speaker_counts={},
            segments_done=0,
            segments_total=0,
            error=state.failure.detail if state is not None and state.failure else None,
        )

    def load_state(self, chapter_id: str) -> PipelineState | None:
        """Return persisted state for a chapter, or `None` when never run."""

        return read_state(self._store(chapter_id).path(STATE_ARTIFACT))

    def _ensure_chunks(
        self,
        chapter: Chapter,
        store: ArtifactStore,
        state: PipelineState,
        progress: ChapterProgress,
        token: CancellationToken,
    ) -> tuple[list[TextChunk], PipelineState]:
        if state.stage.at_least(PipelineStage.CHUNKED):
            self._on_stage_skipped("chunk", "chunks_artifact")
            return load_chunks(store.path(CHUNKS_ARTIFACT)), state

        token.raise_if_cancelled("chunk")
        progress.set_phase("chunk")
        chunks = self._run_stage("chunk", lambda: self.chunker.split(chapter))
        store.save_json(CHUNKS_ARTIFACT, chunk_artifact_payload(chapter, chunks))
        return chunks, self._record(store, chapter, PipelineStage.CHUNKED)

    def _ensure_segments(
        self,
        chapter: Chapter,
        store: ArtifactStore,
        state: PipelineState,
        chunks: list[TextChunk],
        progress: ChapterProgress,
        token: CancellationToken,
    ) -> tuple[list[SpeakerSegment], PipelineState]:
        if state.stage.at_least(PipelineStage.ATTRIBUTED):
            self._on_stage_skipped("attribute", "segments_artifact")
            segments = load_segments(store.path(SEGMENTS_ARTIFACT))
            if load_segment_voice_map(store.path(SEGMENTS_ARTIFACT)) != dict(chapter.voice_map):
                store.save_json(SEGMENTS_ARTIFACT, segment_artifact_payload(chapter, segments))
            progress.restore_speaker_counts(
                (segment.speaker_id for segment in segments), total_chunks=len(chunks)
            )
            return segments, state

        token.raise_if_cancelled("attribute")
        requests_before = self.attribution_client.request_count
        try:
            segments = self._run_stage(
                "attribute",
                lambda: self.attribution_client.attribute_chapter(chapter, chunks, progress),
            )
        finally:
            self.cost_tracker.add_attribution_requests(
                self.attribution_client.request_count - requests_before
            )
        flagged = sum(1 for segment in segments if segment.needs_review)
        if flagged:
            logger.warning(
                "Chapter {} has {} segment(s) with ambiguous quote boundaries.",
                chapter.chapter_id,
                flagged,
            )
        store.save_json(SEGMENTS_ARTIFACT, segment_artifact_payload(chapter, segments))
        return segments, self._record(store, chapter, PipelineStage.ATTRIBUTED)

    def _ensure_audio(
        self,
        chapter: Chapter,
        store: ArtifactStore,
        state: PipelineState,
        segments: list[SpeakerSegment],
        catalog: VoiceCatalog,
        progress: ChapterProgress,
        token: CancellationToken,
    ) -> tuple[RenderReport, dict[str, CacheEntry], PipelineState]:
        if state.stage.at_least(PipelineStage.SEGMENTS_READY):
            entries = self._cached_entries(segments, catalog)
            clip_entries = self._cached_clip_entries(catalog)
            expected_clips = len(self.transitions.announcements())
            if len(entries) == len(segments) and len(clip_entries) == expected_clips:
                self._on_stage_skipped("synthesize", "segments_cached")
                return RenderReport(entries=entries), clip_entries, state
            logger.warning(
                "Chapter {} lost cached audio since synthesis; re-rendering missing segments.",
                chapter.chapter_id,
            )
            state = self._record(store, chapter, PipelineStage.ATTRIBUTED)

        token.raise_if_cancelled("synthesize")
        self._on_stage_start("synthesize")
        try:
            report = self.renderer.render(segments, catalog.voice_for, progress)
            clip_entries: dict[str, CacheEntry] = {}
            if report.ok:
                clip_entries = self._render_clips(catalog, report)
        except Exception as exc:
            self._on_stage_failure("synthesize", exc)
            raise

        misses = report.synthesized_segments + len(report.failures)
        hits = len(segments) - misses
        self.cost_tracker.add_synthesis(report.synthesized_chars, hits=hits, misses=misses)
        if self._run_logger is not None:
            self._run_logger.log_cache_summary(
                hits=hits, misses=misses, generations=report.synthesized_segments
            )
        if not report.ok:
            self._on_stage_failure("synthesize", report.failures[report.failed_indices[0]])
            return report, clip_entries, state

        self._on_stage_complete("synthesize")
        return report, clip_entries, self._record(store, chapter, PipelineStage.SEGMENTS_READY)

    def _render_clips(self, catalog: VoiceCatalog, report: RenderReport) -> dict[str, CacheEntry]:
        """Resolve spoken transition clips in the narrator voice through the cache."""

        clip_entries: dict[str, CacheEntry] = {}
        for clip in self.transitions.announcements():
            request = self.renderer.synthesizer.build_request(
                clip.text or "", NARRATOR_SPEAKER_ID, catalog.narrator_voice
            )
            entry, generated = self.renderer.render_one(request)
            if generated:
                report.synthesized_chars += len(request.text)
            clip_entries[clip.name] = entry
        return clip_entries

    def _merge(
        self,
        store: ArtifactStore,
        segments: Sequence[SpeakerSegment],
        entries: Mapping[int, CacheEntry],
        clip_entries: Mapping[str, CacheEntry],
    ) -> MergedChapterAudio:
        try:
            return self.merger.merge(
                segments,
                entries,
                store.path(MERGED_AUDIO_ARTIFACT),
                transitions=self.transitions.clips(),
                clip_entries=clip_entries,
            )
        except ValueError as exc:
            raise PipelineStageError(
                stage="merge",
                detail=str(exc),
                hint="Regenerate the listed segment so every part shares one audio format.",
            ) from exc

    def _cached_entries(
        self, segments: Sequence[SpeakerSegment], catalog: VoiceCatalog
    ) -> dict[int, CacheEntry]:
        entries: dict[int, CacheEntry] = {}
        for segment in segments:
            entry = self.renderer.cache.lookup(self.renderer.key_for(segment, catalog.voice_for))
            if entry is not None:
                entries[segment.global_index] = entry
        return entries

    def _cached_clip_entries(self, catalog: VoiceCatalog) -> dict[str, CacheEntry]:
        clip_entries: dict[str, CacheEntry] = {}
        for clip in self.transitions.announcements():
            request = self.renderer.synthesizer.build_request(
                clip.text or "", NARRATOR_SPEAKER_ID, catalog.narrator_voice
            )
            entry = self.renderer.cache.lookup(make_cache_key(request))
            if entry is not None:
                clip_entries[clip.name] = entry
        return clip_entries

    def _resume_state(self, chapter: Chapter, store: ArtifactStore) -> PipelineState:
        """Load persisted state, resetting it when the chapter text changed."""

        state = read_state(store.path(STATE_ARTIFACT))
        if state is None:
            return self._record(store, chapter, PipelineStage.NEW)
        if state.text_sha256 != chapter.text_sha256:
            logger.info(
                "Chapter {} text changed since the last run; restarting from `new`.",
                chapter.chapter_id,
            )
            for artifact in _STAGE_ARTIFACTS:
                store.delete(artifact)
            return self._record(store, chapter, PipelineStage.NEW)

        stage = state.stage
        if stage.at_least(PipelineStage.CHUNKED) and not store.exists(CHUNKS_ARTIFACT):
            stage = PipelineStage.NEW
        elif stage.at_least(PipelineStage.ATTRIBUTED) and not store.exists(SEGMENTS_ARTIFACT):
            stage = PipelineStage.CHUNKED
        if stage is not state.stage:
            logger.warning(
                "Chapter {} recorded `{}` without its artifacts; resuming from `{}`.",
                chapter.chapter_id,
                state.stage.value,
                stage.value,
            )
            return self._record(store, chapter, stage, failure=state.failure)
        return state

    def _require_attributed(
        self, chapter: Chapter, store: ArtifactStore, stage: str
    ) -> PipelineState:
        state = read_state(store.path(STATE_ARTIFACT))
        if (
            state is None
            or state.text_sha256 != chapter.text_sha256
            or not state.stage.at_least(PipelineStage.ATTRIBUTED)
            or not store.exists(SEGMENTS_ARTIFACT)
        ):
            raise PipelineStageError(
                stage=stage,
                detail=(
                    f"Chapter `{chapter.chapter_id}` has no attributed segments for its "
                    "current text."
                ),
                hint="Run `chaptervoice synthesize` for this chapter first.",
            )
        return state

    def _intact_merged(self, store: ArtifactStore) -> MergedChapterAudio | None:
        if not store.exists(MERGED_ARTIFACT) or not store.exists(MERGED_AUDIO_ARTIFACT):
            return None
        audio_path = store.path(MERGED_AUDIO_ARTIFACT)
        merged = load_merged(store.path(MERGED_ARTIFACT), audio_path)
        if sha256(audio_path.read_bytes()).hexdigest() != merged.sha256:
            return None
        return merged

    def _record(
        self,
        store: ArtifactStore,
        chapter: Chapter,
        stage: PipelineStage,
        failure: StageFailure | None = None,
    ) -> PipelineState:
        """Persist a state transition; successful transitions clear the failure."""

        return save_state(
            store.path(STATE_ARTIFACT),
            PipelineState(
                chapter_id=chapter.chapter_id,
                stage=stage,
                text_sha256=chapter.text_sha256,
                updated_at=utc_timestamp(),
                failure=failure,
            ),
        )

    def _halt(
        self,
        store: ArtifactStore,
        chapter: Chapter,
        progress: ChapterProgress,
        exc: PipelineStageError,
        segment_indices: Sequence[int] | None = None,
    ) -> None:
        """Record a stage failure without advancing state."""

        if segment_indices is None:
            if isinstance(exc, IncompleteChapterError):
                segment_indices = exc.missing_indices
            elif isinstance(exc, SynthesisError) and exc.segment_index is not None:
                segment_indices = (exc.segment_index,)
            else:
                segment_indices = ()

        current = read_state(store.path(STATE_ARTIFACT))
        stage = current.stage if current is not None else PipelineStage.NEW
        if current is not None and current.text_sha256 != chapter.text_sha256:
            stage = PipelineStage.NEW
        if isinstance(exc, (SynthesisError, IncompleteChapterError)) and stage.at_least(
            PipelineStage.SEGMENTS_READY
        ):
            stage = PipelineStage.ATTRIBUTED

        self._record(
            store,
            chapter,
            stage,
            failure=StageFailure(
                stage=exc.stage,
                error_type=type(exc).__name__,
                detail=exc.detail,
                chunk_index=getattr(exc, "chunk_index", None),
                segment_indices=tuple(segment_indices),
            ),
        )
        progress.fail(exc.detail)

    def _voice_catalog(self, voice_map: Mapping[str, str]) -> VoiceCatalog:
        return VoiceCatalog.build(
            self.default_voices,
            voice_map,
            alias_resolver=self.attribution_client.alias_resolver,
            narrator_voice=self.narrator_voice,
            announcer_voice=self.announcer_voice,
        )

    def _store(self, chapter_id: str) -> ArtifactStore:
        if not chapter_id or chapter_id in {".", ".."} or "/" in chapter_id or "\\" in chapter_id:
            raise PipelineStageError(
                stage="config",
                detail=f"Invalid chapter id `{chapter_id}`.",
                hint="Use a chapter id without path separators.",
            )
        return ArtifactStore(self.work_root / chapter_id)

    def _progress_for(self, chapter_id: str, store: ArtifactStore) -> ChapterProgress:
        """Return the live progress record, mirrored to `progress.json`."""

        with self._progress_lock:
            progress = self._progress.get(chapter_id)
            if progress is not None:
                return progress
            mirror = ProgressFileMirror(
                lambda snapshot: store.save_json(PROGRESS_ARTIFACT, snapshot_to_payload(snapshot)),
                min_interval_seconds=self.progress_write_interval_seconds,
            )
            record = ChapterProgress(chapter_id, listener=mirror)
            self._progress[chapter_id] = record
            return record
