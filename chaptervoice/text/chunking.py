"""Chapter-to-chunk segmentation logic.

Responsibilities:
- Split chapter text into chunks bounded by a UTF-8 byte budget.
- Prefer paragraph boundaries, then sentence boundaries, and never cut inside
  a quoted span.
- Guarantee that chunks tile the chapter text exactly.
"""

from __future__ import annotations

from bisect import bisect_left, bisect_right
import re

from loguru import logger

from ..errors import ChunkingError
from ..models.datatypes import Chapter, TextChunk
from .quotes import protected_regions


DEFAULT_CHUNK_BUDGET_BYTES = 8192


class Chunker:
    """Create paragraph- or sentence-complete chunks within a byte budget."""

    _MIN_PARAGRAPH_RATIO = 0.60
    _SENTENCE_TERMINATORS = ".!?…"
    _TRAILING_SENTENCE_CLOSERS = "\"')]}»”’"
    _COMMON_ABBREVIATIONS = frozenset(
        {
            "mr.",
            "mrs.",
            "ms.",
            "dr.",
            "prof.",
            "sr.",
            "jr.",
            "st.",
            "etc.",
            "e.g.",
            "i.e.",
            "vs.",
            "no.",
            "lvl.",
        }
    )
    _ACRONYM_PATTERN = re.compile(r"(?:[A-Za-z]\.){2,}$")
    _PARAGRAPH_BREAK_PATTERN = re.compile(r"[ \t]*\n\s*")

    def __init__(self, budget_bytes: int = DEFAULT_CHUNK_BUDGET_BYTES) -> None:
        """Initialize the chunker with a positive UTF-8 byte budget."""

        if budget_bytes <= 0:
            raise ChunkingError(
                f"Chunk budget must be a positive number of bytes, got {budget_bytes}.",
                hint="Set `chunk_size_bytes` to a positive integer.",
            )
        self.budget_bytes = budget_bytes

    def split(self, chapter: Chapter) -> list[TextChunk]:
        """Split one chapter into ordered chunks.

        Args:
            chapter: Chapter whose text is split.

        Returns:
            Chunks in `chunk_index` order whose texts concatenate to `chapter.text`.

        Raises:
            ChunkingError: If the produced chunks do not tile the chapter text.
        """

        text = chapter.text
        if not text:
            return []

        byte_offsets = self._byte_offsets(text)
        protected = protected_regions(text)
        paragraph_boundaries = self._paragraph_boundaries(text, protected)
        sentence_boundaries = self._sentence_boundaries(text, protected)

        chunks: list[TextChunk] = []
        start = 0
        text_length = len(text)
        while start < text_length:
            end, strategy = self._resolve_boundary(
                start,
                text_length,
                byte_offsets,
                paragraph_boundaries,
                sentence_boundaries,
            )
            if strategy == "oversized_unit":
                logger.warning(
                    "Chapter {} chunk {} exceeds the {}-byte budget ({} bytes); "
                    "no paragraph or sentence boundary fits.",
                    chapter.chapter_id,
                    len(chunks),
                    self.budget_bytes,
                    byte_offsets[end] - byte_offsets[start],
                )
            chunks.append(
                TextChunk(
                    chapter_id=chapter.chapter_id,
                    chunk_index=len(chunks),
                    text=text[start:end],
                    char_start=start,
                    char_end=end,
                    boundary_strategy=strategy,
                )
            )
            start = end

        self._verify_tiling(chapter, chunks)
        return chunks

    def _resolve_boundary(
        self,
        start: int,
        text_length: int,
        byte_offsets: list[int],
        paragraph_boundaries: list[int],
        sentence_boundaries: list[int],
    ) -> tuple[int, str]:
        """Resolve chunk end index and boundary strategy marker."""

        limit_bytes = byte_offsets[start] + self.budget_bytes
        max_end = bisect_right(byte_offsets, limit_bytes) - 1
        if max_end >= text_length:
            return text_length, "chapter_end"

        paragraph_end = self._last_boundary_within(paragraph_boundaries, start, max_end)
        min_paragraph_bytes = byte_offsets[start] + int(
            self.budget_bytes * self._MIN_PARAGRAPH_RATIO
        )
        if paragraph_end is not None and byte_offsets[paragraph_end] >= min_paragraph_bytes:
            return paragraph_end, "paragraph"

        sentence_end = self._last_boundary_within(sentence_boundaries, start, max_end)
        if sentence_end is not None and (paragraph_end is None or sentence_end > paragraph_end):
            return sentence_end, "sentence"
        if paragraph_end is not None:
            return paragraph_end, "paragraph"

        next_candidates = [
            boundary
            for boundary in (
                self._first_boundary_after(paragraph_boundaries, max_end),
                self._first_boundary_after(sentence_boundaries, max_end),
            )
            if boundary is not None
        ]
        if next_candidates:
            return min(next_candidates), "oversized_unit"
        return text_length, "oversized_unit"

    @staticmethod
    def _last_boundary_within(boundaries: list[int], start: int, max_end: int) -> int | None:
        """Return the greatest boundary in `(start, max_end]`, if any."""

        position = bisect_right(boundaries, max_end) - 1
        if position >= 0 and boundaries[position] > start:
            return boundaries[position]
        return None

    @staticmethod
    def _first_boundary_after(boundaries: list[int], index: int) -> int | None:
        """Return the smallest boundary strictly greater than `index`, if any."""

        position = bisect_right(boundaries, index)
        if position < len(boundaries):
            return boundaries[position]
        return None

    @staticmethod
    def _byte_offsets(text: str) -> list[int]:
        """Return cumulative UTF-8 byte offsets, one per character position."""

        offsets = [0]
        total = 0
        for character in text:
            total += len(character.encode("utf-8"))
            offsets.append(total)
        return offsets

    def _paragraph_boundaries(
        self,
        text: str,
        protected: list[tuple[int, int]],
    ) -> list[int]:
        """Return offsets just after each line-break run."""

        boundaries = []
        for match in self._PARAGRAPH_BREAK_PATTERN.finditer(text):
            end = match.end()
            if 0 < end < len(text) and not self._inside_protected(end, protected):
                boundaries.append(end)
        return boundaries

    def _sentence_boundaries(
        self,
        text: str,
        protected: list[tuple[int, int]],
    ) -> list[int]:
        """Return offsets just after each sentence end and its trailing whitespace."""

        boundaries: list[int] = []
        for index, character in enumerate(text):
            if character not in self._SENTENCE_TERMINATORS:
                continue
            if not self._is_sentence_boundary(text, index):
                continue
            boundary = self._consume_trailing_sentence_tail(text, index + 1)
            if boundary is None or boundary >= len(text):
                continue
            if self._inside_protected(boundary, protected):
                continue
            if not boundaries or boundaries[-1] != boundary:
                boundaries.append(boundary)
        return boundaries

    @staticmethod
    def _inside_protected(boundary: int, protected: list[tuple[int, int]]) -> bool:
        """Return whether a cut at `boundary` would fall strictly inside a region."""

        position = bisect_left(protected, (boundary, boundary)) - 1
        for candidate in protected[max(0, position) : position + 2]:
            if candidate[0] < boundary < candidate[1]:
                return True
        return False

    def _is_sentence_boundary(self, text: str, punctuation_index: int) -> bool:
        """Return whether punctuation at index terminates a sentence."""

        if text[punctuation_index] != ".":
            return True
        if self._is_decimal_period(text, punctuation_index):
            return False
        return not self._is_abbreviation_period(text, punctuation_index)

    def _is_decimal_period(self, text: str, punctuation_index: int) -> bool:
        """Return whether a period is part of a decimal number."""

        if punctuation_index <= 0 or punctuation_index + 1 >= len(text):
            return False
        return text[punctuation_index - 1].isdigit() and text[punctuation_index + 1].isdigit()

    def _is_abbreviation_period(self, text: str, punctuation_index: int) -> bool:
        """Return whether a period belongs to a likely abbreviation token."""

        start = punctuation_index
        while start > 0 and text[start - 1].isalpha():
            start -= 1
        token = text[start : punctuation_index + 1].lower()
        if token in self._COMMON_ABBREVIATIONS:
            return True

        acronym_start = max(0, punctuation_index - 8)
        acronym_window = text[acronym_start : punctuation_index + 1]
        return bool(self._ACRONYM_PATTERN.search(acronym_window))

    def _consume_trailing_sentence_tail(self, text: str, index: int) -> int | None:
        """Consume closers and whitespace after a sentence end.

        Returns `None` when no whitespace follows, since the punctuation then
        sits inside a token (for example `...` runs or `?!`).
        """

        adjusted = index
        text_length = len(text)
        while adjusted < text_length and text[adjusted] in self._TRAILING_SENTENCE_CLOSERS:
            adjusted += 1
        if adjusted < text_length and not text[adjusted].isspace():
            return None
        while adjusted < text_length and text[adjusted].isspace():
            adjusted += 1
        return adjusted

    @staticmethod
    def _verify_tiling(chapter: Chapter, chunks: list[TextChunk]) -> None:
        """Raise when chunks do not reproduce the chapter text exactly."""

        cursor = 0
        for chunk in chunks:
            if chunk.char_start != cursor or chunk.char_end <= chunk.char_start:
                raise ChunkingError(
                    f"Chunk {chunk.chunk_index} of chapter `{chapter.chapter_id}` does not "
                    f"start where the previous chunk ended (expected {cursor}, "
                    f"got {chunk.char_start})."
                )
            cursor = chunk.char_end
        if cursor != len(chapter.text) or "".join(chunk.text for chunk in chunks) != chapter.text:
            raise ChunkingError(
                f"Chunks of chapter `{chapter.chapter_id}` do not reproduce the chapter text."
            )
