"""Usage accounting for attribution and synthesis providers.

Responsibilities:
- Count billable provider work per run: attribution requests and synthesized
  characters.
- Record segment cache hits so a resumed run shows what was not re-billed.
- Provide summary output for run artifacts and CLI reporting.
"""

from __future__ import annotations

from dataclasses import dataclass, field
import threading


_TTS_USD_PER_MILLION_CHARS = {
    "tts-1": 15.0,
    "tts-1-hd": 30.0,
    "eleven_monolingual_v1": 300.0,
}


@dataclass(slots=True)
class CostTracker:
    """Collect and summarize run-level usage counters."""

    attribution_requests: int = 0
    synthesized_chars: int = 0
    segment_cache_hits: int = 0
    segment_cache_misses: int = 0
    tts_model: str = "tts-1"
    _lock: threading.Lock = field(
        default_factory=threading.Lock, init=False, repr=False, compare=False
    )

    def add_attribution_requests(self, count: int) -> None:
        """Add attribution provider request counts, retries included."""

        with self._lock:
            self.attribution_requests += max(0, count)

    def add_synthesis(self, synthesized_chars: int, *, hits: int, misses: int) -> None:
        """Add one synthesis pass worth of usage."""

        with self._lock:
            self.synthesized_chars += max(0, synthesized_chars)
            self.segment_cache_hits += max(0, hits)
            self.segment_cache_misses += max(0, misses)

    def estimated_tts_cost_usd(self) -> float:
        """Estimate TTS spend from synthesized characters; unknown models cost 0."""

        rate = _TTS_USD_PER_MILLION_CHARS.get(self.tts_model, 0.0)
        return round(self.synthesized_chars * rate / 1_000_000, 6)

    def summary(self) -> dict[str, float | int]:
        """Return a summary dictionary for artifacts and reporting."""

        return {
            "attribution_requests": self.attribution_requests,
            "synthesized_chars": self.synthesized_chars,
            "segment_cache_hits": self.segment_cache_hits,
            "segment_cache_misses": self.segment_cache_misses,
            "estimated_tts_cost_usd": self.estimated_tts_cost_usd(),
        }
