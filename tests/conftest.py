"""Shared pytest fixtures for the full Chaptervoice test suite."""

from __future__ import annotations

from collections.abc import Callable
import io
import json
import sys
import threading
import wave

from loguru import logger
import pytest

from chaptervoice.llm.openai_client import OpenAIProviderError


def _wav_bytes(duration_seconds: float = 0.1, framerate: int = 24000, channels: int = 1) -> bytes:
    """Build a silent 16-bit PCM WAV payload."""

    frame_count = int(round(duration_seconds * framerate))
    buffer = io.BytesIO()
    with wave.open(buffer, "wb") as wav_file:
        wav_file.setnchannels(channels)
        wav_file.setsampwidth(2)
        wav_file.setframerate(framerate)
        wav_file.writeframes(b"\x00\x00" * frame_count * channels)
    return buffer.getvalue()


class FakeSpeechClient:
    """Deterministic speech client that records calls and fails on chosen texts."""

    MAX_INPUT_CHARS = 4096

    def __init__(self, duration_seconds: float = 0.1) -> None:
        """Initialize call recording and failure configuration."""

        self.duration_seconds = duration_seconds
        self.fail_texts: set[str] = set()
        self.failure_kind = "server_error"
        self.calls: list[dict[str, str]] = []
        self._lock = threading.Lock()

    def synthesize_speech(self, *, model: str, voice: str, text: str, **kwargs: object) -> bytes:
        """Return a short silent WAV, or raise for configured failing texts."""

        with self._lock:
            self.calls.append({"model": model, "voice": voice, "text": text})
        if text in self.fail_texts:
            raise OpenAIProviderError(
                f"synthetic failure for {text!r}", failure_kind=self.failure_kind
            )
        return _wav_bytes(self.duration_seconds)

    @property
    def texts(self) -> list[str]:
        """Return synthesized texts in call order."""

        with self._lock:
            return [call["text"] for call in self.calls]


class FakeChatClient:
    """Attribution chat client answering from the span list in the user prompt.

    Dialogue spans are attributed to the first speaker whose marker occurs in
    the span text; everything else goes to the narrator. Setting
    `credit_every_span_to` makes it answer one character and `dialogue` for
    every span, the way an uncooperative model does.
    """

    def __init__(self, speakers: dict[str, str] | None = None) -> None:
        """Initialize speaker markers and scripted failures."""

        self.speakers = dict(speakers or {})
        self.malformed_responses = 0
        self.credit_every_span_to: str | None = None
        self.calls = 0
        self.user_prompts: list[str] = []
        self._lock = threading.Lock()

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
        """Return a structured attribution for every span in the prompt."""

        with self._lock:
            self.calls += 1
            self.user_prompts.append(user_prompt)
            if self.malformed_responses > 0:
                self.malformed_responses -= 1
                return '{"segments": ['
        spans = json.loads(user_prompt.split("Spans to attribute:\n", 1)[1])
        segments = []
        for span in spans:
            if self.credit_every_span_to is not None:
                segments.append(
                    {
                        "span": span["span"],
                        "speaker": self.credit_every_span_to,
                        "text": span["text"],
                        "kind": "dialogue",
                    }
                )
                continue
            kind = "dialogue" if span["hint"] == "dialogue" else "narration"
            speaker = "narrator"
            if kind == "dialogue":
                speaker = next(
                    (name for marker, name in self.speakers.items() if marker in span["text"]),
                    "unknown",
                )
            segments.append(
                {"span": span["span"], "speaker": speaker, "text": span["text"], "kind": kind}
            )
        return json.dumps({"segments": segments})


@pytest.fixture
def make_wav() -> Callable[..., bytes]:
    """Provide a factory for short silent WAV payloads."""

    return _wav_bytes


@pytest.fixture
def fake_speech_client() -> FakeSpeechClient:
    """Provide a recording speech client double."""

    return FakeSpeechClient()


@pytest.fixture
def fake_chat_client() -> FakeChatClient:
    """Provide an attribution chat client double that gives all dialogue to the mage."""

    return FakeChatClient(speakers={"": "mage"})


@pytest.fixture
def make_chat_client() -> Callable[..., FakeChatClient]:
    """Provide a factory for attribution chat doubles with custom speaker markers."""

    return FakeChatClient


@pytest.fixture(autouse=True)
def _restore_default_log_sink():
    """Reset loguru sinks that a test redirected into a captured stream."""

    yield
    logger.remove()
    logger.add(sys.stderr)
