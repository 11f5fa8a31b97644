"""Provider factory helpers for attribution and TTS stages.

Responsibilities:
- Resolve provider identifiers to concrete HTTP clients.
- Keep orchestration independent from concrete provider class construction.

Notes:
- Stage-level retries are owned by `RetryPolicy` in the attribution client and
  the synthesizer, so HTTP clients are built without their own retry loop.
"""

from __future__ import annotations

from .llm.attribution import ChatClient
from .llm.openai_client import OpenAIChatClient, OpenAISpeechClient
from .llm.rate_limiter import RateLimiter
from .tts.elevenlabs_client import ElevenLabsSpeechClient
from .tts.synthesizer import SpeechClient


class ProviderFactory:
    """Factory for provider-backed stage clients used by the pipeline."""

    @staticmethod
    def create_chat_client(
        provider_id: str,
        api_key: str | None = None,
        timeout_seconds: float = 60.0,
        rate_limiter: RateLimiter | None = None,
    ) -> ChatClient:
        """Create an attribution chat client for a configured provider identifier."""

        if provider_id == "openai":
            return OpenAIChatClient(
                api_key=api_key,
                timeout_seconds=timeout_seconds,
                rate_limiter=rate_limiter,
            )
        raise ValueError(f"Unsupported attribution provider `{provider_id}`.")

    @staticmethod
    def create_speech_client(
        provider_id: str,
        api_key: str | None = None,
        timeout_seconds: float = 60.0,
        rate_limiter: RateLimiter | None = None,
    ) -> SpeechClient:
        """Create a speech client for a configured provider identifier."""

        if provider_id == "openai":
            return OpenAISpeechClient(
                api_key=api_key,
                timeout_seconds=timeout_seconds,
                rate_limiter=rate_limiter,
            )
        if provider_id == "elevenlabs":
            return ElevenLabsSpeechClient(
                api_key=api_key,
                timeout_seconds=timeout_seconds,
                rate_limiter=rate_limiter,
            )
        raise ValueError(f"Unsupported TTS provider `{provider_id}`.")
