"""Prompt templates for speaker attribution.

Responsibilities:
- Centralize the system prompt with known characters and alias context.
- Render numbered spans so the service labels spans and never re-splits text.
- Define the strict JSON schema the service must answer with.
"""

from __future__ import annotations

from collections.abc import Sequence
import json
from typing import Any

from ..models.datatypes import QuoteSpan, SegmentKind
from ..speakers.aliases import CharacterAlias


ATTRIBUTION_SCHEMA_NAME = "speaker_attribution"


def attribution_json_schema() -> dict[str, Any]:
    """Return the structured-output schema for attribution responses."""

    return {
        "type": "object",
        "properties": {
            "segments": {
                "type": "array",
                "items": {
                    "type": "object",
                    "properties": {
                        "span": {"type": "integer"},
                        "speaker": {"type": "string"},
                        "text": {"type": "string"},
                        "kind": {
                            "type": "string",
                            "enum": [kind.value for kind in SegmentKind],
                        },
                    },
                    "required": ["span", "speaker", "text", "kind"],
                    "additionalProperties": False,
                },
            }
        },
        "required": ["segments"],
        "additionalProperties": False,
    }


class PromptLibrary:
    """Build prompt strings for attribution requests."""

    def attribution_system_prompt(
        self,
        known_speakers: Sequence[str] = (),
        characters: Sequence[CharacterAlias] = (),
    ) -> str:
        """Return the system prompt with character context."""

        known = ", ".join(known_speakers) if known_speakers else "None yet"
        lines = [
            "You are a dialogue attribution specialist for serialized fiction.",
            "The user message contains numbered spans of one story excerpt, already "
            "split at quote boundaries. Attribute every span independently.",
            "",
            f"Known characters: {known}",
        ]
        if characters:
            lines.extend(["", "IMPORTANT CHARACTER ALIASES:"])
            for character in characters:
                description = f" ({character.description})" if character.description else ""
                lines.append(f"- {character.canonical_name}{description}")
                if character.aliases:
                    lines.append(f"  Also known as: {', '.join(character.aliases)}")
                lines.append(
                    f'  Use "{character.canonical_name}" as the speaker for all these aliases.'
                )
        lines.extend(
            [
                "",
                "RULES:",
                "1. Return exactly one entry per span, in span order, with the same span number.",
                "2. Copy each span's text exactly; never split, merge, or edit spans.",
                '3. Use "narrator" for non-dialogue text (descriptions, actions, thoughts).',
                "4. Use a character name only when you are confident that character speaks.",
                "5. kind is `dialogue` for spoken lines, `narration` for everything else, "
                "and `system` only for in-world system notifications.",
                "6. Use the main character name, not an alias.",
                'Be conservative: when in doubt, attribute to "narrator".',
            ]
        )
        return "\n".join(lines)

    def attribution_user_prompt(self, chunk_text: str, spans: Sequence[QuoteSpan]) -> str:
        """Return the user prompt listing the excerpt and its numbered spans."""

        rendered_spans = json.dumps(
            [
                {"span": span.order, "text": span.text, "hint": span.kind.value}
                for span in spans
            ],
            ensure_ascii=False,
            indent=2,
        )
        return (
            "Excerpt for context:\n"
            "<<<\n"
            f"{chunk_text.strip()}\n"
            ">>>\n\n"
            "Spans to attribute:\n"
            f"{rendered_spans}"
        )
