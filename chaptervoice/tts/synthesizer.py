"""Segment speech synthesis over pluggable TTS providers.

Responsibilities:
- Build deterministic `SynthesisRequest` records for segments.
- Turn one request into one WAV payload: pronunciation rewrites, pause-marker
  silence, and sentence-safe splitting of text over the provider input limit.
- Retry transient provider failures with bounded exponential backoff and map
  the final failure to `SynthesisError`.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
import re
import time
from typing import Any, Protocol

from loguru import logger

from ..audio.wav import concatenate_wav, inspect_wav, silence_wav
from ..errors import SynthesisError
from ..llm.http_client import ProviderError
from ..llm.retry import RetryPolicy
from ..models.datatypes import SynthesisRequest
from ..text.pronunciation import PAUSE_MARKER_SECONDS, PronunciationDictionary, is_pause_marker


_SENTENCE_END = re.compile(r"(?<=[.!?…])\s+|(?<=[.!?…][\"'”’)\]])\s+")


class SpeechClient(Protocol):
    """Protocol for provider speech clients returning WAV payloads."""

    MAX_INPUT_CHARS: int

    def synthesize_speech(self, *, model: str, voice: str, text: str, **kwargs: Any) -> bytes:
        """Return WAV bytes for one piece of text."""


def split_for_provider(text: str, max_chars: int) -> list[str]:
    """Split text into pieces of at most `max_chars`, preferring sentence ends."""

    stripped = text.strip()
    if len(stripped) <= max_chars:
        return [stripped]

    sentences = [piece for piece in _SENTENCE_END.split(stripped) if piece]
    pieces: list[str] = []
    current = ""
    for sentence in sentences:
        for fragment in _hard_wrap(sentence, max_chars):
            candidate = f"{current} {fragment}" if current else fragment
            if len(candidate) <= max_chars:
                current = candidate
                continue
            pieces.append(current)
            current = fragment
    if current:
        pieces.append(current)
    return pieces


def _hard_wrap(sentence: str, max_chars: int) -> list[str]:
    """Break one over-long sentence at whitespace, or mid-word as a last resort."""

    if len(sentence) <= max_chars:
        return [sentence]
    fragments: list[str] = []
    remaining = sentence
    while len(remaining) > max_chars:
        cut = remaining.rfind(" ", 0, max_chars + 1)
        if cut <= 0:
            cut = max_chars
        fragments.append(remaining[:cut].strip())
        remaining = remaining[cut:].strip()
    if remaining:
        fragments.append(remaining)
    return fragments


class VoiceSynthesizer:
    """Produce WAV audio for segment synthesis requests."""

    def __init__(
        self,
        speech_client: SpeechClient,
        *,
        provider_id: str = "openai",
        model: str = "tts-1",
        pronunciations: PronunciationDictionary | None = None,
        retry_policy: RetryPolicy | None = None,
        provider_options: Mapping[str, Any] | None = None,
        sleeper: Callable[[float], None] = time.sleep,
    ) -> None:
        self.speech_client = speech_client
        self.provider_id = provider_id
        self.model = model
        self.pronunciations = pronunciations or PronunciationDictionary()
        self.retry_policy = retry_policy or RetryPolicy(max_attempts=5)
        self.provider_options = dict(provider_options or {})
        self._sleeper = sleeper

    @property
    def max_input_chars(self) -> int:
        """Return the provider's per-request input limit."""

        return int(getattr(self.speech_client, "MAX_INPUT_CHARS", 4096))

    def build_request(self, text: str, speaker_id: str, voice_id: str) -> SynthesisRequest:
        """Return the request whose key identifies this segment's audio."""

        parameters = {key: str(value) for key, value in sorted(self.provider_options.items())}
        fingerprint = self.pronunciations.fingerprint()
        if fingerprint:
            parameters["pronunciations"] = fingerprint
        return SynthesisRequest(
            text=text,
            speaker_id=speaker_id,
            voice_id=voice_id,
            provider=self.provider_id,
            model=self.model,
            parameters=parameters,
        )

    def synthesize(self, request: SynthesisRequest) -> bytes:
        """Return one WAV payload for the request.

        Raises:
            SynthesisError: After the retry budget is exhausted, or immediately
                for permanent provider failures.
        """

        if is_pause_marker(request.text):
            return silence_wav(PAUSE_MARKER_SECONDS)

        spoken_text = self.pronunciations.apply(request.text)
        pieces = split_for_provider(spoken_text, self.max_input_chars)
        payloads = [self._synthesize_piece(request, piece) for piece in pieces]
        if len(payloads) == 1:
            return payloads[0]
        try:
            return concatenate_wav(payloads)
        except ValueError as exc:
            raise SynthesisError(
                f"Provider returned mismatched audio formats for one segment: {exc}",
                failure_kind="malformed",
            ) from exc

    def _synthesize_piece(self, request: SynthesisRequest, text: str) -> bytes:
        attempt = 0
        while True:
            attempt += 1
            try:
                audio = self.speech_client.synthesize_speech(
                    model=request.model,
                    voice=request.voice_id,
                    text=text,
                    **self.provider_options,
                )
                info = inspect_wav(audio)
                if info.frame_count <= 0:
                    raise ValueError("WAV payload has no audio frames.")
                return audio
            except ProviderError as exc:
                failure_kind, error = exc.failure_kind, exc
            except ValueError as exc:
                failure_kind, error = "malformed", exc

            if not self.retry_policy.should_retry(attempt, failure_kind):
                raise SynthesisError(
                    f"Speech synthesis with voice `{request.voice_id}` failed after "
                    f"{attempt} attempt(s): {error}",
                    failure_kind=failure_kind,
                ) from error
            delay = self.retry_policy.delay_for(attempt)
            logger.warning(
                "Synthesis attempt {}/{} for voice {} failed ({}); retrying in {:.2f}s",
                attempt,
                self.retry_policy.max_attempts,
                request.voice_id,
                failure_kind,
                delay,
            )
            self._sleeper(delay)
