"""Fixed transition clips placed around chapter audio.

Responsibilities:
- Describe the ordered leading and trailing clips of every merged chapter.
- Keep transition layout out of the merge loop: clips sit only at the start
  and the end, never between segments.
"""

from __future__ import annotations

from dataclasses import dataclass

from ..models.datatypes import TransitionClip


INTRO_PAUSE = "intro_pause"
END_PAUSE = "end_pause"
END_ANNOUNCEMENT = "end_announcement"
OUTRO_PAUSE = "outro_pause"


@dataclass(frozen=True, slots=True)
class TransitionPlan:
    """Transition settings for merged chapters.

    Attributes:
        intro_pause_seconds: Silence before the first segment.
        end_pause_seconds: Silence after the last segment.
        end_announcement_text: Spoken closing line; empty disables it.
        outro_pause_seconds: Silence after the closing line.
    """

    intro_pause_seconds: float = 1.0
    end_pause_seconds: float = 2.0
    end_announcement_text: str = "End of Chapter"
    outro_pause_seconds: float = 2.0

    def clips(self) -> list[TransitionClip]:
        """Return clips in playback order; zero-length pauses are omitted."""

        clips: list[TransitionClip] = []
        if self.intro_pause_seconds > 0:
            clips.append(
                TransitionClip(
                    name=INTRO_PAUSE,
                    kind="pause",
                    placement="leading",
                    duration_seconds=self.intro_pause_seconds,
                )
            )
        if self.end_pause_seconds > 0:
            clips.append(
                TransitionClip(
                    name=END_PAUSE,
                    kind="pause",
                    placement="trailing",
                    duration_seconds=self.end_pause_seconds,
                )
            )
        if self.end_announcement_text.strip():
            clips.append(
                TransitionClip(
                    name=END_ANNOUNCEMENT,
                    kind="announcement",
                    placement="trailing",
                    text=self.end_announcement_text.strip(),
                )
            )
        if self.outro_pause_seconds > 0:
            clips.append(
                TransitionClip(
                    name=OUTRO_PAUSE,
                    kind="pause",
                    placement="trailing",
                    duration_seconds=self.outro_pause_seconds,
                )
            )
        return clips

    def announcements(self) -> list[TransitionClip]:
        """Return only clips that need synthesized speech."""

        return [clip for clip in self.clips() if clip.kind == "announcement"]
