"""Bounded retry policy shared by attribution and synthesis calls."""

from __future__ import annotations

from dataclasses import dataclass


RETRYABLE_FAILURE_KINDS = frozenset(
    {"timeout", "transport", "rate_limited", "server_error", "malformed"}
)


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    """Exponential backoff with a hard attempt ceiling.

    Attributes:
        max_attempts: Total attempts including the first call.
        backoff_base_seconds: Delay before the second attempt.
        backoff_max_seconds: Upper bound for any single delay.
    """

    max_attempts: int = 3
    backoff_base_seconds: float = 1.0
    backoff_max_seconds: float = 30.0

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("`max_attempts` must be at least 1.")
        if self.backoff_base_seconds < 0 or self.backoff_max_seconds < 0:
            raise ValueError("Retry backoff values must be non-negative.")

    def delay_for(self, attempt: int) -> float:
        """Return the delay after failed attempt number `attempt` (1-based)."""

        exponent = max(0, attempt - 1)
        return min(self.backoff_max_seconds, self.backoff_base_seconds * (2**exponent))

    def should_retry(self, attempt: int, failure_kind: str) -> bool:
        """Return whether a failure of `failure_kind` on `attempt` gets another try."""

        return attempt < self.max_attempts and failure_kind in RETRYABLE_FAILURE_KINDS
