"""ElevenLabs HTTP client for speech synthesis.

Responsibilities:
- Call the ElevenLabs text-to-speech endpoint for one voice and text.
- Request raw 16-bit PCM and wrap it into a WAV payload, so the cache and
  merger only ever handle WAV.
"""

from __future__ import annotations

from ..audio.wav import WavFormat, pcm_to_wav
from ..llm.http_client import ProviderError, ProviderHTTPClient
from ..llm.rate_limiter import RateLimiter


ELEVENLABS_BASE_URL = "https://api.elevenlabs.io/v1"
ELEVENLABS_DEFAULT_MODEL = "eleven_monolingual_v1"
ELEVENLABS_PCM_FORMAT = WavFormat(channels=1, sample_width=2, framerate=24000)


class ElevenLabsProviderError(ProviderError):
    """Raised when an ElevenLabs request fails or returns malformed output."""


class ElevenLabsSpeechClient(ProviderHTTPClient):
    """Minimal requests-based ElevenLabs text-to-speech client."""

    provider_label = "ElevenLabs"
    error_class = ElevenLabsProviderError
    MAX_INPUT_CHARS = 10000

    def __init__(
        self,
        *,
        api_key: str | None,
        base_url: str = ELEVENLABS_BASE_URL,
        timeout_seconds: float = 60.0,
        max_retries: int = 0,
        retry_backoff_base_seconds: float = 1.0,
        retry_backoff_max_seconds: float = 30.0,
        rate_limiter: RateLimiter | None = None,
    ) -> None:
        super().__init__(
            api_key=api_key,
            base_url=base_url,
            timeout_seconds=timeout_seconds,
            max_retries=max_retries,
            retry_backoff_base_seconds=retry_backoff_base_seconds,
            retry_backoff_max_seconds=retry_backoff_max_seconds,
            rate_limiter=rate_limiter,
        )

    def _auth_headers(self) -> dict[str, str]:
        return {"xi-api-key": self.api_key}

    def _missing_key_message(self) -> str:
        return (
            "Missing ElevenLabs API key. Set `ELEVENLABS_API_KEY` or store it with "
            "`chaptervoice credentials --set-api-key --provider elevenlabs`."
        )

    def synthesize_speech(
        self,
        *,
        model: str,
        voice: str,
        text: str,
        stability: float = 0.5,
        similarity_boost: float = 0.5,
    ) -> bytes:
        """Return a WAV payload synthesized by ElevenLabs for one voice."""

        self._require_api_key()
        payload = {
            "text": text,
            "model_id": model or ELEVENLABS_DEFAULT_MODEL,
            "voice_settings": {
                "stability": stability,
                "similarity_boost": similarity_boost,
            },
        }
        rate = ELEVENLABS_PCM_FORMAT.framerate
        pcm_bytes = self._post_json_bytes(
            endpoint_path=f"/text-to-speech/{voice}?output_format=pcm_{rate}",
            payload=payload,
            rate_limit_key=f"elevenlabs:tts:{model}",
            require_non_empty_response=True,
            empty_response_message="ElevenLabs speech response is empty.",
            extra_headers={"Accept": "audio/pcm"},
        )
        frame_bytes = ELEVENLABS_PCM_FORMAT.sample_width * ELEVENLABS_PCM_FORMAT.channels
        if len(pcm_bytes) % frame_bytes:
            raise ElevenLabsProviderError(
                "ElevenLabs returned a truncated PCM payload.",
                failure_kind="malformed",
            )
        return pcm_to_wav(pcm_bytes, ELEVENLABS_PCM_FORMAT)
