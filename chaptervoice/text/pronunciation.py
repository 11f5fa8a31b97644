"""Pronunciation rewrites applied to text right before speech synthesis.

Responsibilities:
- Replace configured words with phonetic spellings the TTS voices read correctly.
- Recognize standalone pause-marker segments rendered as silence.

Source segment text is never rewritten; only the provider request text is, so
segment text keeps matching the chapter while audio follows the dictionary.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
import re

from .quotes import PAUSE_MARKER


PAUSE_MARKER_SECONDS = 3.0


def is_pause_marker(text: str) -> bool:
    """Return whether a segment consists only of the pause marker."""

    return text.strip() == PAUSE_MARKER


@dataclass(frozen=True, slots=True)
class PronunciationDictionary:
    """Word-boundary pronunciation substitutions.

    Attributes:
        entries: Mapping of written word to spoken spelling.
    """

    entries: Mapping[str, str] = field(default_factory=dict)

    def variants(self) -> dict[str, str]:
        """Expand entries into the lower, upper, and capitalized spellings."""

        expanded: dict[str, str] = {}
        for word, spoken in self.entries.items():
            for variant in (word, word.lower(), word.upper(), word[:1].upper() + word[1:]):
                expanded.setdefault(variant, spoken)
        return expanded

    def apply(self, text: str) -> str:
        """Return `text` with every dictionary word replaced by its spoken form."""

        variants = self.variants()
        if not variants:
            return text
        # Longest first so multi-word entries win over their prefixes.
        ordered = sorted(variants, key=len, reverse=True)
        pattern = re.compile(r"\b(?:" + "|".join(re.escape(word) for word in ordered) + r")\b")
        return pattern.sub(lambda match: variants[match.group(0)], text)

    def fingerprint(self) -> str:
        """Return a stable string identifying the dictionary contents."""

        return ";".join(f"{word}={self.entries[word]}" for word in sorted(self.entries))
