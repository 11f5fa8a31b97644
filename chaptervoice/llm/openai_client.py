"""OpenAI HTTP clients for attribution and speech synthesis.

Responsibilities:
- Send chat-completions requests (optionally with structured output) and
  speech requests to OpenAI's REST API.
- Normalize response extraction for deterministic stage integrations.
- Raise actionable provider exceptions for pipeline-level error mapping.
"""

from __future__ import annotations

import json
from typing import Any

from .http_client import ProviderError, ProviderHTTPClient
from .rate_limiter import RateLimiter


OPENAI_BASE_URL = "https://api.openai.com/v1"


class OpenAIProviderError(ProviderError):
    """Raised when an OpenAI provider request fails or returns malformed output."""


class _OpenAIBaseClient(ProviderHTTPClient):
    """Shared OpenAI HTTP settings used by stage-specific clients."""

    provider_label = "OpenAI"
    error_class = OpenAIProviderError

    def __init__(
        self,
        *,
        api_key: str | None,
        base_url: str = OPENAI_BASE_URL,
        timeout_seconds: float = 60.0,
        max_retries: int = 0,
        retry_backoff_base_seconds: float = 1.0,
        retry_backoff_max_seconds: float = 30.0,
        rate_limiter: RateLimiter | None = None,
    ) -> None:
        """Initialize OpenAI HTTP client settings."""

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
        return {"Authorization": f"Bearer {self.api_key}"}

    def _missing_key_message(self) -> str:
        return (
            "Missing OpenAI API key. Set `OPENAI_API_KEY`, use `--api-key`, or "
            "`--prompt-api-key`."
        )


class OpenAIChatClient(_OpenAIBaseClient):
    """Minimal requests-based OpenAI chat-completions HTTP client."""

    def chat_completion_text(
        self,
        *,
        model: str,
        system_prompt: str,
        user_prompt: str,
        temperature: float = 0.0,
        response_format: dict[str, Any] | None = None,
    ) -> str:
        """Return the first assistant text response from a chat-completions request."""

        self._require_api_key()

        payload: dict[str, Any] = {
            "model": model,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
            "temperature": temperature,
        }
        if response_format is not None:
            payload["response_format"] = response_format
        raw_payload = self._post_json_bytes(
            endpoint_path="/chat/completions",
            payload=payload,
            rate_limit_key=f"openai:chat:{model}",
        ).decode("utf-8")
        return self._extract_message_text(raw_payload)

    def chat_completion_json_schema(
        self,
        *,
        model: str,
        system_prompt: str,
        user_prompt: str,
        schema_name: str,
        json_schema: dict[str, Any],
        temperature: float = 0.0,
    ) -> str:
        """Return raw assistant JSON text constrained by a strict JSON schema."""

        return self.chat_completion_text(
            model=model,
            system_prompt=system_prompt,
            user_prompt=user_prompt,
            temperature=temperature,
            response_format={
                "type": "json_schema",
                "json_schema": {"name": schema_name, "strict": True, "schema": json_schema},
            },
        )

    @staticmethod
    def _extract_message_text(raw_payload: str) -> str:
        """Extract first assistant message text from chat-completions JSON payload."""

        try:
            payload = json.loads(raw_payload)
        except json.JSONDecodeError as exc:
            raise OpenAIProviderError(
                "OpenAI returned invalid JSON payload.",
                failure_kind="malformed",
            ) from exc

        choices = payload.get("choices") if isinstance(payload, dict) else None
        if not isinstance(choices, list) or not choices:
            raise OpenAIProviderError(
                "OpenAI response missing non-empty `choices` list.",
                failure_kind="malformed",
            )

        first_choice = choices[0]
        if not isinstance(first_choice, dict):
            raise OpenAIProviderError(
                "OpenAI response `choices[0]` is malformed.", failure_kind="malformed"
            )

        message = first_choice.get("message")
        if not isinstance(message, dict):
            raise OpenAIProviderError(
                "OpenAI response missing `choices[0].message` object.",
                failure_kind="malformed",
            )

        refusal = message.get("refusal")
        if isinstance(refusal, str) and refusal.strip():
            raise OpenAIProviderError(
                f"OpenAI refused the request: {refusal.strip()[:120]}",
                failure_kind="malformed",
            )

        text = OpenAIChatClient._message_content_to_text(message.get("content"))
        normalized = text.strip()
        if not normalized:
            raise OpenAIProviderError(
                "OpenAI response message content is empty.", failure_kind="malformed"
            )
        return normalized

    @staticmethod
    def _message_content_to_text(content: Any) -> str:
        """Convert OpenAI message content variants into a plain text string."""

        if isinstance(content, str):
            return content
        if isinstance(content, list):
            parts: list[str] = []
            for item in content:
                if not isinstance(item, dict):
                    continue
                if item.get("type") == "text" and isinstance(item.get("text"), str):
                    parts.append(item["text"])
            return "".join(parts)
        return ""


class OpenAISpeechClient(_OpenAIBaseClient):
    """Minimal requests-based OpenAI speech HTTP client."""

    MAX_INPUT_CHARS = 4096

    def synthesize_speech(
        self,
        *,
        model: str,
        voice: str,
        text: str,
        response_format: str = "wav",
        speed: float = 1.0,
    ) -> bytes:
        """Return synthesized audio bytes from OpenAI `/audio/speech`."""

        self._require_api_key()

        payload = {
            "model": model,
            "voice": voice,
            "input": text,
            "response_format": response_format,
            "speed": speed,
        }
        return self._post_json_bytes(
            endpoint_path="/audio/speech",
            payload=payload,
            rate_limit_key=f"openai:tts:{model}",
            require_non_empty_response=True,
            empty_response_message="OpenAI speech response is empty.",
        )
