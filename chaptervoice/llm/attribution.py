"""Speaker attribution over chapter chunks.

Responsibilities:
- Split each chunk into quote/narration/system spans before calling the service.
- Request one structured attribution per chunk and validate it at the boundary.
- Repair speaker IDs (announcer, narrator, aliases) and retry bounded failures.
- Fan chunks out concurrently and reassemble results in chunk order, assigning
  contiguous global segment indices.
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from concurrent.futures import Future, ThreadPoolExecutor, as_completed
import threading
import time
from typing import Protocol

from loguru import logger

from ..errors import AttributionError
from ..models.datatypes import (
    ANNOUNCER_SPEAKER_ID,
    NARRATOR_SPEAKER_ID,
    AttributedSpan,
    Chapter,
    QuoteSpan,
    SegmentKind,
    SpeakerSegment,
    TextChunk,
)
from ..speakers.aliases import AliasResolver
from ..telemetry.progress import ChapterProgress
from ..text.pronunciation import is_pause_marker
from ..text.quotes import QuoteSpanSplitter
from .http_client import ProviderError
from .prompts import ATTRIBUTION_SCHEMA_NAME, PromptLibrary, attribution_json_schema
from .retry import RetryPolicy
from .schema import AttributionResponseError, RawAttribution, parse_attribution_response


_UNATTRIBUTED_SPEAKERS = frozenset({"none", "unknown", "n/a", "narration", "nobody"})
_PERMANENT_FAILURE_HINTS = {
    "invalid_api_key": "Set a valid API key via `OPENAI_API_KEY`, `--api-key`, or credentials.",
    "insufficient_quota": "Check the provider account billing and quota.",
    "invalid_model": "Choose an available model with `--model-attribution`.",
}


class ChatClient(Protocol):
    """Protocol for the chat-completions client used by attribution."""

    def chat_completion_json_schema(
        self,
        *,
        model: str,
        system_prompt: str,
        user_prompt: str,
        schema_name: str,
        json_schema: dict,
        temperature: float = 0.0,
    ) -> str:
        """Return raw JSON text produced under a strict schema."""


class AttributionClient:
    """Attribute chunk spans to canonical speakers through an LLM service."""

    def __init__(
        self,
        chat_client: ChatClient,
        *,
        model: str = "gpt-4o",
        alias_resolver: AliasResolver | None = None,
        retry_policy: RetryPolicy | None = None,
        parallelism: int = 4,
        temperature: float = 0.1,
        sleeper: Callable[[float], None] = time.sleep,
        splitter: QuoteSpanSplitter | None = None,
        prompts: PromptLibrary | None = None,
    ) -> None:
        self.chat_client = chat_client
        self.model = model
        self.alias_resolver = alias_resolver or AliasResolver()
        self.retry_policy = retry_policy or RetryPolicy()
        self.parallelism = max(1, parallelism)
        self.temperature = temperature
        self._sleeper = sleeper
        self._splitter = splitter or QuoteSpanSplitter()
        self._prompts = prompts or PromptLibrary()
        self.request_count = 0
        self._count_lock = threading.Lock()

    def attribute_chunk(
        self,
        chunk: TextChunk,
        known_speakers: Sequence[str] = (),
    ) -> list[AttributedSpan]:
        """Attribute every span of one chunk.

        Raises:
            AttributionError: When the chunk cannot be attributed within the
                retry budget, or on a permanent provider failure.
        """

        spans = self._splitter.split(chunk.text)
        if not spans:
            return []
        if all(self._fixed_speaker(span) is not None for span in spans):
            return [self._build_span(chunk, span, None) for span in spans]

        system_prompt = self._prompts.attribution_system_prompt(
            known_speakers=known_speakers,
            characters=self.alias_resolver.characters,
        )
        user_prompt = self._prompts.attribution_user_prompt(chunk.text, spans)

        attempt = 0
        last_error: Exception | None = None
        failure_kind = "unknown"
        while attempt < self.retry_policy.max_attempts:
            attempt += 1
            try:
                with self._count_lock:
                    self.request_count += 1
                raw_text = self.chat_client.chat_completion_json_schema(
                    model=self.model,
                    system_prompt=system_prompt,
                    user_prompt=user_prompt,
                    schema_name=ATTRIBUTION_SCHEMA_NAME,
                    json_schema=attribution_json_schema(),
                    temperature=self.temperature,
                )
                parsed = parse_attribution_response(raw_text, spans)
                return [
                    self._build_span(chunk, span, entry) for span, entry in zip(spans, parsed)
                ]
            except AttributionResponseError as exc:
                last_error, failure_kind = exc, "malformed"
            except ProviderError as exc:
                last_error, failure_kind = exc, exc.failure_kind

            if not self.retry_policy.should_retry(attempt, failure_kind):
                break
            delay = self.retry_policy.delay_for(attempt)
            logger.warning(
                "Attribution of chunk {} failed on attempt {}/{} ({}: {}); retrying in {:.2f}s",
                chunk.chunk_index,
                attempt,
                self.retry_policy.max_attempts,
                failure_kind,
                last_error,
                delay,
            )
            self._sleeper(delay)

        raise AttributionError(
            f"Chunk {chunk.chunk_index} could not be attributed after {attempt} "
            f"attempt(s): {last_error}",
            chunk_index=chunk.chunk_index,
            attempts=attempt,
            hint=_PERMANENT_FAILURE_HINTS.get(
                failure_kind,
                "Rerun the chapter; completed stages are not repeated.",
            ),
        ) from last_error

    def attribute_chapter(
        self,
        chapter: Chapter,
        chunks: Sequence[TextChunk],
        progress: ChapterProgress | None = None,
    ) -> list[SpeakerSegment]:
        """Attribute all chunks concurrently and return globally ordered segments.

        Raises:
            AttributionError: For the lowest-indexed chunk that failed; the
                chapter is never returned with a chunk skipped.
        """

        if progress is not None:
            progress.begin_attribution(total_chunks=len(chunks))
        if not chunks:
            return []

        known_speakers = sorted(
            speaker_id
            for speaker_id in chapter.voice_map
            if speaker_id not in {NARRATOR_SPEAKER_ID, ANNOUNCER_SPEAKER_ID}
        )
        results: dict[int, list[AttributedSpan]] = {}
        failures: dict[int, AttributionError] = {}
        workers = min(self.parallelism, len(chunks))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="attribution") as pool:
            futures: dict[Future[list[AttributedSpan]], TextChunk] = {
                pool.submit(self.attribute_chunk, chunk, known_speakers): chunk
                for chunk in chunks
            }
            for future in as_completed(futures):
                chunk = futures[future]
                if future.cancelled():
                    continue
                try:
                    spans = future.result()
                except AttributionError as exc:
                    failures[chunk.chunk_index] = exc
                    for pending in futures:
                        pending.cancel()
                    continue
                results[chunk.chunk_index] = spans
                if progress is not None:
                    progress.chunk_attributed(span.speaker_id for span in spans)

        if failures:
            first_failed = min(failures)
            if progress is not None:
                progress.fail(failures[first_failed].detail)
            raise failures[first_failed]

        segments: list[SpeakerSegment] = []
        for chunk in sorted(chunks, key=lambda item: item.chunk_index):
            for span in sorted(results[chunk.chunk_index], key=lambda item: item.order):
                segments.append(
                    SpeakerSegment(
                        chapter_id=chapter.chapter_id,
                        global_index=len(segments),
                        chunk_index=span.chunk_index,
                        speaker_id=span.speaker_id,
                        text=span.text,
                        kind=span.kind,
                        char_start=span.char_start,
                        char_end=span.char_end,
                        needs_review=span.needs_review,
                    )
                )
        return segments

    @staticmethod
    def _fixed_speaker(span: QuoteSpan) -> tuple[str, SegmentKind] | None:
        """Return the speaker and kind decided by the pre-pass, if any."""

        if span.kind is SegmentKind.SYSTEM:
            return ANNOUNCER_SPEAKER_ID, SegmentKind.SYSTEM
        if is_pause_marker(span.text):
            return NARRATOR_SPEAKER_ID, SegmentKind.NARRATION
        return None

    def _build_span(
        self,
        chunk: TextChunk,
        span: QuoteSpan,
        entry: RawAttribution | None,
    ) -> AttributedSpan:
        """Combine source span text with a validated entry into a repaired span."""

        fixed = self._fixed_speaker(span)
        if fixed is not None:
            speaker_id, kind = fixed
        elif span.kind is SegmentKind.NARRATION and not span.needs_review:
            # Text outside quotes is never a character line.
            speaker_id, kind = NARRATOR_SPEAKER_ID, SegmentKind.NARRATION
            if entry is not None and entry.speaker.strip().lower() != NARRATOR_SPEAKER_ID:
                logger.debug(
                    "Chunk {} span {}: ignoring speaker `{}` for narration outside quotes.",
                    chunk.chunk_index,
                    span.order,
                    entry.speaker,
                )
        else:
            assert entry is not None
            if span.kind is SegmentKind.DIALOGUE:
                kind = SegmentKind.DIALOGUE
            elif entry.kind is SegmentKind.SYSTEM:
                kind = SegmentKind.NARRATION
            else:
                kind = entry.kind
            if entry.speaker.strip().lower() in _UNATTRIBUTED_SPEAKERS:
                speaker_id = NARRATOR_SPEAKER_ID
            else:
                speaker_id = self.alias_resolver.resolve(entry.speaker)
            if kind is SegmentKind.NARRATION and speaker_id == ANNOUNCER_SPEAKER_ID:
                speaker_id = NARRATOR_SPEAKER_ID

        return AttributedSpan(
            chunk_index=chunk.chunk_index,
            order=span.order,
            speaker_id=speaker_id,
            text=span.text,
            kind=kind,
            char_start=chunk.char_start + span.char_start,
            char_end=chunk.char_start + span.char_end,
            needs_review=span.needs_review,
        )
