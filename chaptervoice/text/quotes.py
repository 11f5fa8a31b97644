"""Deterministic quote/non-quote span splitting ahead of attribution.

Responsibilities:
- Locate quoted dialogue regions inside each paragraph (one line of text).
- Split chunk text into disjoint, ordered spans the attribution service labels
  one by one, so the service never decides where text is cut.
- Flag paragraphs whose quote boundaries cannot be bounded unambiguously.

Key types:
- `QuoteScan`: quote regions and ambiguity flag for one paragraph.
- `QuoteSpanSplitter`: chunk text to `QuoteSpan` list.
"""

from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass, field
import re

from loguru import logger

from ..models.datatypes import QuoteSpan, SegmentKind


PAUSE_MARKER = "--"

_STRAIGHT_QUOTE = '"'
_CURLY_OPEN = "“"
_CURLY_CLOSE = "”"
_PARAGRAPH_PATTERN = re.compile(r"[^\n]+")


@dataclass(frozen=True, slots=True)
class QuoteScan:
    """Quote regions found in one paragraph.

    Attributes:
        regions: `(start, end)` offsets of each quoted region, quote marks included.
        ambiguous: Whether nesting, mismatched, or unterminated quotes were found.
    """

    regions: tuple[tuple[int, int], ...] = field(default_factory=tuple)
    ambiguous: bool = False


def iter_paragraphs(text: str) -> Iterator[tuple[int, int]]:
    """Yield `(start, end)` offsets of every non-empty line in `text`."""

    for match in _PARAGRAPH_PATTERN.finditer(text):
        if match.group().strip():
            yield match.start(), match.end()


def is_system_text(text: str) -> bool:
    """Return whether text is an in-story system announcement.

    Bracketed lines (`[Skill upgraded]`) and lines starting with `DING!` are
    read by the announcer voice rather than a character or the narrator.
    """

    stripped = text.strip()
    if len(stripped) >= 2 and stripped.startswith("[") and stripped.endswith("]"):
        return True
    return stripped.startswith("DING!")


def scan_quotes(paragraph: str) -> QuoteScan:
    """Locate quoted regions in one paragraph without guessing on ambiguity."""

    regions: list[tuple[int, int]] = []
    open_index: int | None = None
    open_mark = ""
    for index, character in enumerate(paragraph):
        if character == _CURLY_OPEN:
            if open_index is not None:
                return QuoteScan(tuple(regions), ambiguous=True)
            open_index, open_mark = index, character
        elif character == _CURLY_CLOSE:
            if open_index is None or open_mark != _CURLY_OPEN:
                return QuoteScan(tuple(regions), ambiguous=True)
            regions.append((open_index, index + 1))
            open_index = None
        elif character == _STRAIGHT_QUOTE:
            if open_index is None:
                open_index, open_mark = index, character
            elif open_mark == _STRAIGHT_QUOTE:
                regions.append((open_index, index + 1))
                open_index = None
            else:
                return QuoteScan(tuple(regions), ambiguous=True)
    if open_index is not None:
        return QuoteScan(tuple(regions), ambiguous=True)
    return QuoteScan(tuple(regions))


def protected_regions(text: str) -> list[tuple[int, int]]:
    """Return chapter-level regions a chunk boundary must not fall inside.

    Quoted regions are protected individually; a paragraph with ambiguous
    quotes is protected as a whole.
    """

    protected: list[tuple[int, int]] = []
    for start, end in iter_paragraphs(text):
        scan = scan_quotes(text[start:end])
        if scan.ambiguous:
            protected.append((start, end))
            continue
        protected.extend((start + left, start + right) for left, right in scan.regions)
    return protected


def _trimmed_bounds(text: str, start: int, end: int) -> tuple[int, int] | None:
    """Shrink `[start, end)` past surrounding whitespace, or `None` when blank."""

    while start < end and text[start].isspace():
        start += 1
    while end > start and text[end - 1].isspace():
        end -= 1
    if start == end:
        return None
    return start, end


class QuoteSpanSplitter:
    """Split chunk text into disjoint quote, narration, and system spans."""

    def split(self, text: str) -> list[QuoteSpan]:
        """Return ordered spans covering every non-whitespace character exactly once."""

        raw_spans: list[tuple[int, int, SegmentKind, bool]] = []
        for paragraph_start, paragraph_end in iter_paragraphs(text):
            paragraph = text[paragraph_start:paragraph_end]
            if is_system_text(paragraph):
                raw_spans.append((paragraph_start, paragraph_end, SegmentKind.SYSTEM, False))
                continue

            scan = scan_quotes(paragraph)
            if scan.ambiguous:
                logger.warning(
                    "Ambiguous quote boundaries; keeping paragraph as one span flagged "
                    "for review: {}",
                    paragraph.strip()[:80],
                )
                raw_spans.append(
                    (paragraph_start, paragraph_end, SegmentKind.NARRATION, True)
                )
                continue

            cursor = 0
            for left, right in scan.regions:
                if left > cursor:
                    raw_spans.append(
                        (
                            paragraph_start + cursor,
                            paragraph_start + left,
                            SegmentKind.NARRATION,
                            False,
                        )
                    )
                raw_spans.append(
                    (paragraph_start + left, paragraph_start + right, SegmentKind.DIALOGUE, False)
                )
                cursor = right
            if cursor < len(paragraph):
                raw_spans.append(
                    (paragraph_start + cursor, paragraph_end, SegmentKind.NARRATION, False)
                )

        spans: list[QuoteSpan] = []
        for start, end, kind, needs_review in raw_spans:
            bounds = _trimmed_bounds(text, start, end)
            if bounds is None:
                continue
            spans.append(
                QuoteSpan(
                    order=len(spans),
                    text=text[bounds[0] : bounds[1]],
                    char_start=bounds[0],
                    char_end=bounds[1],
                    kind=kind,
                    needs_review=needs_review,
                )
            )
        return spans


def spans_cover_text(text: str, spans: list[QuoteSpan]) -> bool:
    """Return whether spans tile `text` with only whitespace between them."""

    cursor = 0
    for span in spans:
        if span.char_start < cursor or text[span.char_start : span.char_end] != span.text:
            return False
        if text[cursor : span.char_start].strip():
            return False
        cursor = span.char_end
    return not text[cursor:].strip()
