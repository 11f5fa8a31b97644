"""Speaker identity helpers."""

from .aliases import AliasResolver, CharacterAlias, parse_alias_table, speaker_slug

__all__ = ["AliasResolver", "CharacterAlias", "parse_alias_table", "speaker_slug"]
