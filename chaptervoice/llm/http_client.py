"""Shared requests-based HTTP plumbing for provider clients.

Responsibilities:
- POST JSON payloads and map transport/HTTP failures to `ProviderError`.
- Classify failures into deterministic kinds that drive retry decisions.
- Apply per-key rate limiting and bounded exponential-backoff retries.
- Redact key-like tokens from provider error messages.
"""

from __future__ import annotations

import json
import re
import socket
import threading
import time
from typing import Any

import requests
from loguru import logger

from .rate_limiter import RateLimiter
from .retry import RETRYABLE_FAILURE_KINDS


class ProviderError(RuntimeError):
    """Raised when a provider request fails or returns malformed output."""

    def __init__(
        self,
        message: str,
        *,
        failure_kind: str = "unknown",
        status_code: int | None = None,
        provider_code: str | None = None,
    ) -> None:
        """Initialize provider error metadata for stage-aware diagnostics."""

        super().__init__(message)
        self.failure_kind = failure_kind
        self.status_code = status_code
        self.provider_code = provider_code

    @property
    def retryable(self) -> bool:
        """Return whether the failure is transient."""

        return self.failure_kind in RETRYABLE_FAILURE_KINDS


class ProviderHTTPClient:
    """Provider-agnostic HTTP settings, retries, and error mapping."""

    provider_label = "Provider"
    error_class: type[ProviderError] = ProviderError
    _MAX_PROVIDER_MESSAGE_CHARS = 180

    def __init__(
        self,
        *,
        api_key: str | None,
        base_url: str,
        timeout_seconds: float = 60.0,
        max_retries: int = 0,
        retry_backoff_base_seconds: float = 1.0,
        retry_backoff_max_seconds: float = 30.0,
        rate_limiter: RateLimiter | None = None,
    ) -> None:
        """Initialize HTTP client settings."""

        self.api_key = api_key.strip() if isinstance(api_key, str) else ""
        self.base_url = base_url.rstrip("/")
        self.timeout_seconds = timeout_seconds
        self.max_retries = max(0, int(max_retries))
        self.retry_backoff_base_seconds = max(0.0, retry_backoff_base_seconds)
        self.retry_backoff_max_seconds = max(0.0, retry_backoff_max_seconds)
        self.rate_limiter = rate_limiter
        self.retry_attempt_count = 0
        self._counter_lock = threading.Lock()

    def _auth_headers(self) -> dict[str, str]:
        """Return provider authentication headers."""

        raise NotImplementedError

    def _missing_key_message(self) -> str:
        return f"Missing {self.provider_label} API key."

    def _require_api_key(self) -> None:
        """Require API key presence before issuing requests."""

        if not self.api_key:
            raise self.error_class(self._missing_key_message(), failure_kind="invalid_api_key")

    def _post_json_bytes(
        self,
        *,
        endpoint_path: str,
        payload: dict[str, Any],
        rate_limit_key: str,
        require_non_empty_response: bool = False,
        empty_response_message: str | None = None,
        extra_headers: dict[str, str] | None = None,
    ) -> bytes:
        """POST a JSON payload with rate limiting and bounded transient retries."""

        attempt = 0
        while True:
            attempt += 1
            if self.rate_limiter is not None:
                self.rate_limiter.acquire(rate_limit_key)
            try:
                return self._execute_json_post_bytes(
                    endpoint_path=endpoint_path,
                    payload=payload,
                    require_non_empty_response=require_non_empty_response,
                    empty_response_message=empty_response_message,
                    extra_headers=extra_headers,
                )
            except ProviderError as exc:
                if attempt > self.max_retries or not exc.retryable:
                    raise
                delay = min(
                    self.retry_backoff_max_seconds,
                    self.retry_backoff_base_seconds * (2 ** (attempt - 1)),
                )
                with self._counter_lock:
                    self.retry_attempt_count += 1
                logger.warning(
                    "{} request to {} failed ({}); retry {}/{} in {:.2f}s",
                    self.provider_label,
                    endpoint_path,
                    exc.failure_kind,
                    attempt,
                    self.max_retries,
                    delay,
                )
                time.sleep(delay)

    def _execute_json_post_bytes(
        self,
        *,
        endpoint_path: str,
        payload: dict[str, Any],
        require_non_empty_response: bool = False,
        empty_response_message: str | None = None,
        extra_headers: dict[str, str] | None = None,
    ) -> bytes:
        """Execute one JSON POST request and map failures consistently."""

        endpoint = f"{self.base_url}{endpoint_path}"
        headers = {"Content-Type": "application/json", **self._auth_headers()}
        if extra_headers:
            headers.update(extra_headers)
        label = self.provider_label
        try:
            response = requests.post(
                endpoint,
                headers=headers,
                json=payload,
                timeout=self.timeout_seconds,
            )
            response.raise_for_status()
            response_bytes = bytes(response.content)
        except requests.HTTPError as exc:
            raise self._http_error_to_provider_error(exc) from exc
        except requests.RequestException as exc:
            failure_kind = self._classify_transport_failure(exc)
            if failure_kind == "timeout":
                detail = f"{label} request timed out."
            else:
                detail = f"{label} request transport error: {self._short_message(str(exc))}"
            raise self.error_class(detail, failure_kind=failure_kind) from exc
        except TimeoutError as exc:
            raise self.error_class(f"{label} request timed out.", failure_kind="timeout") from exc

        if require_non_empty_response and not response_bytes:
            raise self.error_class(
                empty_response_message or f"{label} response is empty.",
                failure_kind="malformed",
            )
        return response_bytes

    @staticmethod
    def _decode_error_body(exc: requests.HTTPError) -> str:
        """Decode an HTTP error body into a best-effort UTF-8 payload string."""

        response = exc.response
        if response is None:
            return ""
        content = getattr(response, "content", b"") or b""
        return bytes(content).decode("utf-8", errors="replace").strip()

    @classmethod
    def _redact_sensitive_tokens(cls, text: str) -> str:
        """Redact API-key-like tokens from provider error content."""

        redacted = re.sub(r"\bsk-[A-Za-z0-9_-]{8,}\b", "[redacted-key]", text)
        redacted = re.sub(
            r"(?i)bearer\s+[A-Za-z0-9._-]{12,}",
            "Bearer [redacted-token]",
            redacted,
        )
        return redacted

    @classmethod
    def _short_message(cls, text: str) -> str:
        """Normalize and cap user-facing provider message length."""

        compact = " ".join(text.split())
        if len(compact) <= cls._MAX_PROVIDER_MESSAGE_CHARS:
            return compact
        return f"{compact[: cls._MAX_PROVIDER_MESSAGE_CHARS - 1]}..."

    @classmethod
    def _extract_provider_message(cls, body: str) -> tuple[str, str | None]:
        """Extract a concise provider message and optional provider error code.

        Understands `{"error": {"message", "code"}}` and
        `{"detail": {"message", "status"}}` / `{"detail": "..."}` bodies.
        """

        if not body:
            return "", None

        try:
            payload = json.loads(body)
        except json.JSONDecodeError:
            return cls._short_message(cls._redact_sensitive_tokens(body)), None

        provider_code: str | None = None
        message: str | None = None
        if isinstance(payload, dict):
            error_payload = payload.get("error", payload.get("detail"))
            if isinstance(error_payload, dict):
                code_value = error_payload.get("code", error_payload.get("status"))
                if isinstance(code_value, str) and code_value.strip():
                    provider_code = code_value.strip()
                message_value = error_payload.get("message")
                if isinstance(message_value, str) and message_value.strip():
                    message = message_value.strip()
            elif isinstance(error_payload, str) and error_payload.strip():
                message = error_payload.strip()

        if message is None:
            message = body

        return cls._short_message(cls._redact_sensitive_tokens(message)), provider_code

    @staticmethod
    def _classify_http_failure(
        status_code: int,
        provider_message: str,
        provider_code: str | None,
    ) -> str:
        """Classify HTTP errors into deterministic diagnostic kinds."""

        message_lower = provider_message.lower()
        normalized_code = provider_code.lower() if provider_code is not None else ""

        if status_code == 401 or "api key" in message_lower:
            return "invalid_api_key"
        if normalized_code in {"insufficient_quota", "quota_exceeded"} or (
            status_code == 429 and "quota" in message_lower
        ):
            return "insufficient_quota"
        if normalized_code == "model_not_found" or (
            "model" in message_lower
            and any(phrase in message_lower for phrase in ("not found", "does not exist", "invalid"))
        ):
            return "invalid_model"
        if status_code == 429:
            return "rate_limited"
        if status_code in {408, 504} or "timeout" in message_lower or "timed out" in message_lower:
            return "timeout"
        if status_code >= 500:
            return "server_error"
        return "http_error"

    @staticmethod
    def _classify_transport_failure(reason: object) -> str:
        """Classify network-layer failures into deterministic diagnostic kinds."""

        if isinstance(reason, TimeoutError | socket.timeout | requests.Timeout):
            return "timeout"
        return "transport"

    @classmethod
    def _http_error_to_provider_error(cls, exc: requests.HTTPError) -> ProviderError:
        """Convert HTTP errors into normalized provider exceptions with metadata."""

        status_code = exc.response.status_code if exc.response is not None else 0
        body = cls._decode_error_body(exc)
        provider_message, provider_code = cls._extract_provider_message(body)
        failure_kind = cls._classify_http_failure(status_code, provider_message, provider_code)

        label = cls.provider_label
        headline = {
            "invalid_api_key": f"{label} authentication failed",
            "insufficient_quota": f"{label} quota is insufficient for this request",
            "invalid_model": f"{label} rejected the selected model",
            "rate_limited": f"{label} rate limit reached",
            "timeout": f"{label} request timed out",
            "server_error": f"{label} server error",
        }.get(failure_kind, f"{label} request failed")

        if provider_message:
            detail = f"{headline} (HTTP {status_code}): {provider_message}"
        else:
            detail = f"{headline} (HTTP {status_code})."

        return cls.error_class(
            detail,
            failure_kind=failure_kind,
            status_code=status_code,
            provider_code=provider_code,
        )
