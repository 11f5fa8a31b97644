"""Deterministic merge of cached segment audio into one chapter file.

Responsibilities:
- Check that every segment has readable cached audio before writing anything.
- Concatenate PCM frames losslessly in global segment order, with transition
  clips only before the first and after the last segment.
- Publish the merged file atomically so no partial output is ever visible.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from hashlib import sha256
from pathlib import Path
import wave

from loguru import logger

from ..errors import IncompleteChapterError, PipelineStageError
from ..io.storage import atomic_write_bytes
from ..models.datatypes import CacheEntry, MergedChapterAudio, SpeakerSegment, TransitionClip
from .wav import WavFormat, pcm_to_wav, read_frames, silence_frames


DURATION_TOLERANCE_SECONDS = 0.05


class AudioMerger:
    """Merge cached WAV segments into one deterministic WAV output."""

    def merge(
        self,
        segments: Sequence[SpeakerSegment],
        entries: Mapping[int, CacheEntry],
        output_path: Path,
        transitions: Sequence[TransitionClip] = (),
        clip_entries: Mapping[str, CacheEntry] | None = None,
    ) -> MergedChapterAudio:
        """Merge ordered segments and transition clips into `output_path`.

        Args:
            segments: Chapter segments; merged by `global_index`.
            entries: Cache entries keyed by `global_index`.
            output_path: Destination WAV path.
            transitions: Transition clips in playback order.
            clip_entries: Cache entries for announcement clips, keyed by clip name.

        Raises:
            IncompleteChapterError: If any segment lacks readable audio.
            ValueError: If parts have incompatible WAV parameters.
        """

        ordered = sorted(segments, key=lambda item: item.global_index)
        clip_entries = clip_entries or {}

        segment_frames: list[tuple[WavFormat, bytes]] = []
        missing: list[int] = []
        for segment in ordered:
            entry = entries.get(segment.global_index)
            decoded = self._read_entry(entry)
            if decoded is None:
                missing.append(segment.global_index)
                continue
            segment_frames.append(decoded)
        if missing:
            raise IncompleteChapterError(missing)

        announcement_frames: dict[str, tuple[WavFormat, bytes]] = {}
        for clip in transitions:
            if clip.kind != "announcement":
                continue
            decoded = self._read_entry(clip_entries.get(clip.name))
            if decoded is None:
                raise PipelineStageError(
                    stage="merge",
                    detail=f"Transition clip `{clip.name}` has no readable audio.",
                    hint="Rerun synthesis so the transition announcement is cached.",
                )
            announcement_frames[clip.name] = decoded

        if segment_frames:
            wav_format = segment_frames[0][0]
        elif announcement_frames:
            wav_format = next(iter(announcement_frames.values()))[0]
        else:
            wav_format = WavFormat()

        for segment, (part_format, _) in zip(ordered, segment_frames):
            if part_format != wav_format:
                raise ValueError(
                    f"Incompatible WAV parameters for segment {segment.global_index}: "
                    f"{entries[segment.global_index].audio_path}"
                )

        leading = [clip for clip in transitions if clip.placement == "leading"]
        trailing = [clip for clip in transitions if clip.placement != "leading"]
        frames: list[bytes] = []
        frames.extend(self._clip_frames(clip, wav_format, announcement_frames) for clip in leading)
        frames.extend(part_frames for _, part_frames in segment_frames)
        frames.extend(
            self._clip_frames(clip, wav_format, announcement_frames) for clip in trailing
        )

        pcm = b"".join(frames)
        payload = pcm_to_wav(pcm, wav_format)
        atomic_write_bytes(output_path, payload)

        bytes_per_frame = wav_format.channels * wav_format.sample_width
        duration = len(pcm) / float(bytes_per_frame * wav_format.framerate)
        expected = sum(entries[segment.global_index].duration_seconds for segment in ordered)
        expected += sum(
            clip.duration_seconds
            if clip.kind == "pause"
            else len(announcement_frames[clip.name][1]) / float(bytes_per_frame * wav_format.framerate)
            for clip in transitions
        )
        if abs(duration - expected) > DURATION_TOLERANCE_SECONDS:
            logger.warning(
                "Merged duration {:.3f}s differs from expected {:.3f}s for {}.",
                duration,
                expected,
                output_path,
            )

        chapter_id = ordered[0].chapter_id if ordered else output_path.parent.name
        return MergedChapterAudio(
            chapter_id=chapter_id,
            path=output_path,
            duration_seconds=duration,
            segment_count=len(ordered),
            cache_keys=tuple(entries[segment.global_index].key for segment in ordered),
            transition_names=tuple(clip.name for clip in transitions),
            sha256=sha256(payload).hexdigest(),
        )

    @staticmethod
    def _read_entry(entry: CacheEntry | None) -> tuple[WavFormat, bytes] | None:
        """Decode an entry's audio, or `None` when missing or unreadable."""

        if entry is None:
            return None
        try:
            return read_frames(entry.audio_path.read_bytes())
        except (OSError, EOFError, wave.Error) as exc:
            logger.warning("Cached audio {} is unreadable: {}", entry.audio_path, exc)
            return None

    @staticmethod
    def _clip_frames(
        clip: TransitionClip,
        wav_format: WavFormat,
        announcement_frames: Mapping[str, tuple[WavFormat, bytes]],
    ) -> bytes:
        if clip.kind == "pause":
            return silence_frames(clip.duration_seconds, wav_format)
        clip_format, frames = announcement_frames[clip.name]
        if clip_format != wav_format:
            raise ValueError(f"Incompatible WAV parameters for transition clip `{clip.name}`.")
        return frames
