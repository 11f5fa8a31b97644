"""Speaker alias canonicalization.

Responsibilities:
- Map surface speaker names emitted by attribution to stable speaker IDs.
- Stay pure and idempotent so alias edits never fragment the segment cache.

Key types:
- `CharacterAlias`: one canonical character with its aliases and description.
- `AliasResolver`: case-insensitive alias lookup with identity-slug fallback.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
import re
from typing import Any

from ..models.datatypes import ANNOUNCER_SPEAKER_ID, NARRATOR_SPEAKER_ID


_SLUG_SEPARATORS = re.compile(r"\s+")
_RESERVED_SPEAKER_IDS = frozenset({NARRATOR_SPEAKER_ID, ANNOUNCER_SPEAKER_ID})


def speaker_slug(name: str) -> str:
    """Return the identity speaker ID for a surface name."""

    return _SLUG_SEPARATORS.sub("_", name.strip().lower())


def _lookup_token(name: str) -> str:
    return " ".join(name.split()).casefold()


@dataclass(frozen=True, slots=True)
class CharacterAlias:
    """Canonical character entry from the alias table.

    Attributes:
        canonical_name: Display name used in prompts.
        aliases: Alternative names the story uses for this character.
        description: Short description given to the attribution service.
    """

    canonical_name: str
    aliases: tuple[str, ...] = field(default_factory=tuple)
    description: str = ""

    @property
    def speaker_id(self) -> str:
        """Return the canonical speaker ID."""

        return speaker_slug(self.canonical_name)


def parse_alias_table(payload: Mapping[str, Any]) -> list[CharacterAlias]:
    """Parse `{canonical: {aliases: [...], description: str}}` into entries.

    A bare list value is accepted as the alias list.
    """

    entries: list[CharacterAlias] = []
    for canonical, raw in payload.items():
        canonical_name = str(canonical).strip()
        if not canonical_name:
            raise ValueError("Alias table contains a blank canonical name.")
        if isinstance(raw, Mapping):
            raw_aliases = raw.get("aliases") or []
            description = str(raw.get("description") or "").strip()
        elif isinstance(raw, list | tuple):
            raw_aliases = raw
            description = ""
        elif raw is None:
            raw_aliases = []
            description = ""
        else:
            raise ValueError(
                f"Alias entry `{canonical_name}` must be a mapping or a list of aliases."
            )
        if not isinstance(raw_aliases, list | tuple):
            raise ValueError(f"Alias entry `{canonical_name}` field `aliases` must be a list.")
        aliases = tuple(str(alias).strip() for alias in raw_aliases if str(alias).strip())
        entries.append(
            CharacterAlias(
                canonical_name=canonical_name,
                aliases=aliases,
                description=description,
            )
        )
    return entries


class AliasResolver:
    """Resolve surface speaker names to canonical speaker IDs."""

    def __init__(self, characters: Iterable[CharacterAlias] = ()) -> None:
        """Build the lookup table, rejecting aliases claimed by two characters."""

        self._characters = tuple(characters)
        lookup: dict[str, str] = {}
        for character in self._characters:
            canonical_id = character.speaker_id
            names = (character.canonical_name, canonical_id, *character.aliases)
            for name in names:
                token = _lookup_token(name)
                existing = lookup.get(token)
                if existing is not None and existing != canonical_id:
                    raise ValueError(
                        f"Alias `{name}` maps to both `{existing}` and `{canonical_id}`."
                    )
                lookup[token] = canonical_id
        self._lookup = lookup

    @classmethod
    def from_mapping(cls, payload: Mapping[str, Any]) -> AliasResolver:
        """Create a resolver from a config alias table."""

        return cls(parse_alias_table(payload))

    @property
    def characters(self) -> tuple[CharacterAlias, ...]:
        """Return configured characters in table order."""

        return self._characters

    def resolve(self, name: str) -> str:
        """Return the canonical speaker ID for `name`.

        Unknown names fall back to their identity slug, and resolving an
        already-canonical ID returns it unchanged.
        """

        slug = speaker_slug(name)
        if not slug:
            return NARRATOR_SPEAKER_ID
        if slug in _RESERVED_SPEAKER_IDS:
            return slug
        canonical = self._lookup.get(_lookup_token(name))
        if canonical is not None:
            return canonical
        return self._lookup.get(_lookup_token(slug), slug)
