"""Speaker-to-voice assignment for synthesis.

Responsibilities:
- Represent provider voice identities for canonical speakers.
- Decouple pipeline logic from provider-specific voice naming.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
import threading

from loguru import logger

from ..models.datatypes import ANNOUNCER_SPEAKER_ID, NARRATOR_SPEAKER_ID
from ..speakers.aliases import AliasResolver


DEFAULT_NARRATOR_VOICE = "nova"
DEFAULT_ANNOUNCER_VOICE = "alloy"


@dataclass(slots=True)
class VoiceCatalog:
    """Resolve provider voice IDs for canonical speaker IDs.

    Attributes:
        assignments: Canonical speaker ID to provider voice ID.
        narrator_voice: Voice for the narrator and for unassigned speakers.
        announcer_voice: Voice for in-world system announcements.
    """

    assignments: dict[str, str] = field(default_factory=dict)
    narrator_voice: str = DEFAULT_NARRATOR_VOICE
    announcer_voice: str = DEFAULT_ANNOUNCER_VOICE
    _warned: set[str] = field(default_factory=set, repr=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    @classmethod
    def build(
        cls,
        *voice_maps: Mapping[str, str],
        alias_resolver: AliasResolver | None = None,
        narrator_voice: str = DEFAULT_NARRATOR_VOICE,
        announcer_voice: str = DEFAULT_ANNOUNCER_VOICE,
    ) -> VoiceCatalog:
        """Merge voice maps left to right, canonicalizing speaker keys."""

        resolver = alias_resolver or AliasResolver()
        assignments: dict[str, str] = {}
        for voice_map in voice_maps:
            for speaker, voice in voice_map.items():
                assignments[resolver.resolve(speaker)] = voice
        return cls(
            assignments=assignments,
            narrator_voice=assignments.get(NARRATOR_SPEAKER_ID, narrator_voice),
            announcer_voice=assignments.get(ANNOUNCER_SPEAKER_ID, announcer_voice),
        )

    def voice_for(self, speaker_id: str) -> str:
        """Return the voice for a speaker, falling back to the narrator voice."""

        assigned = self.assignments.get(speaker_id)
        if assigned is not None:
            return assigned
        if speaker_id == NARRATOR_SPEAKER_ID:
            return self.narrator_voice
        if speaker_id == ANNOUNCER_SPEAKER_ID:
            return self.announcer_voice
        with self._lock:
            first_time = speaker_id not in self._warned
            self._warned.add(speaker_id)
        if first_time:
            logger.warning(
                "Speaker `{}` has no voice assigned; using narrator voice `{}`.",
                speaker_id,
                self.narrator_voice,
            )
        return self.narrator_voice
