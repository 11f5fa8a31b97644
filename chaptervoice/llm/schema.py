"""Validation of structured attribution responses.

Responsibilities:
- Parse raw service output into typed entries at the boundary.
- Enforce one entry per span, in order, with text that reconstructs the span.

Any violation is an `AttributionResponseError`, even when the HTTP call
itself succeeded.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
import json

from ..models.datatypes import QuoteSpan, SegmentKind
from ..parsing import normalize_whitespace


class AttributionResponseError(ValueError):
    """Raised when an attribution response breaks the response contract."""


@dataclass(frozen=True, slots=True)
class RawAttribution:
    """One validated response entry before repair and alias resolution."""

    span: int
    speaker: str
    kind: SegmentKind


def parse_attribution_response(
    raw_text: str,
    spans: Sequence[QuoteSpan],
) -> list[RawAttribution]:
    """Parse and validate a response against the spans that were sent.

    Raises:
        AttributionResponseError: On malformed JSON, count or order mismatch,
            empty fields, unknown kinds, or text that does not match its span.
    """

    try:
        payload = json.loads(raw_text)
    except json.JSONDecodeError as exc:
        raise AttributionResponseError(f"response is not valid JSON ({exc.msg})") from exc
    if not isinstance(payload, dict):
        raise AttributionResponseError("response root must be an object")
    entries = payload.get("segments")
    if not isinstance(entries, list):
        raise AttributionResponseError("response is missing the `segments` list")
    if len(entries) != len(spans):
        raise AttributionResponseError(
            f"expected {len(spans)} segment(s), got {len(entries)}"
        )

    parsed: list[RawAttribution] = []
    for position, (entry, span) in enumerate(zip(entries, spans)):
        if not isinstance(entry, dict):
            raise AttributionResponseError(f"segment {position} is not an object")

        span_number = entry.get("span")
        if isinstance(span_number, bool) or not isinstance(span_number, int):
            raise AttributionResponseError(f"segment {position} has no integer `span`")
        if span_number != span.order:
            raise AttributionResponseError(
                f"segment {position} refers to span {span_number}, expected {span.order}"
            )

        speaker = entry.get("speaker")
        if not isinstance(speaker, str) or not speaker.strip():
            raise AttributionResponseError(f"segment {position} has an empty speaker")

        text = entry.get("text")
        if not isinstance(text, str) or not text.strip():
            raise AttributionResponseError(f"segment {position} has empty text")
        if normalize_whitespace(text) != normalize_whitespace(span.text):
            raise AttributionResponseError(
                f"segment {position} text does not reconstruct span {span.order}"
            )

        kind_value = entry.get("kind")
        try:
            kind = SegmentKind(kind_value)
        except ValueError as exc:
            raise AttributionResponseError(
                f"segment {position} has unknown kind `{kind_value}`"
            ) from exc

        parsed.append(RawAttribution(span=span_number, speaker=speaker.strip(), kind=kind))
    return parsed
