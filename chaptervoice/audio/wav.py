"""WAV payload helpers shared by synthesis, cache, and merge stages.

Responsibilities:
- Inspect WAV payloads for format parameters and duration.
- Produce exact-length silence and wrap raw PCM into WAV containers.
- Concatenate same-format WAV payloads losslessly.
"""

from __future__ import annotations

from dataclasses import dataclass
import io
import wave


DEFAULT_SAMPLE_RATE = 24000
DEFAULT_SAMPLE_WIDTH = 2
DEFAULT_CHANNELS = 1


@dataclass(frozen=True, slots=True)
class WavFormat:
    """PCM format parameters that must match across merged parts."""

    channels: int = DEFAULT_CHANNELS
    sample_width: int = DEFAULT_SAMPLE_WIDTH
    framerate: int = DEFAULT_SAMPLE_RATE


@dataclass(frozen=True, slots=True)
class WavInfo:
    """Format and length of one decoded WAV payload."""

    format: WavFormat
    frame_count: int

    @property
    def duration_seconds(self) -> float:
        """Return the payload duration in seconds."""

        return self.frame_count / float(self.format.framerate)


def inspect_wav(audio_bytes: bytes) -> WavInfo:
    """Decode WAV headers and return format metadata.

    Raises:
        ValueError: If the payload is empty, unreadable, or has no sample rate.
    """

    if not audio_bytes:
        raise ValueError("WAV payload is empty.")
    try:
        with wave.open(io.BytesIO(audio_bytes), "rb") as wav_file:
            wav_format = WavFormat(
                channels=wav_file.getnchannels(),
                sample_width=wav_file.getsampwidth(),
                framerate=wav_file.getframerate(),
            )
            frame_count = wav_file.getnframes()
    except (wave.Error, EOFError) as exc:
        raise ValueError(f"WAV payload is not readable: {exc}") from exc
    if wav_format.framerate <= 0:
        raise ValueError("WAV payload has an invalid sample rate.")
    return WavInfo(format=wav_format, frame_count=frame_count)


def read_frames(audio_bytes: bytes) -> tuple[WavFormat, bytes]:
    """Return WAV format and raw PCM frames of a payload."""

    with wave.open(io.BytesIO(audio_bytes), "rb") as wav_file:
        wav_format = WavFormat(
            channels=wav_file.getnchannels(),
            sample_width=wav_file.getsampwidth(),
            framerate=wav_file.getframerate(),
        )
        frames = wav_file.readframes(wav_file.getnframes())
    return wav_format, frames


def pcm_to_wav(frames: bytes, wav_format: WavFormat = WavFormat()) -> bytes:
    """Wrap raw little-endian PCM frames in a WAV container."""

    buffer = io.BytesIO()
    with wave.open(buffer, "wb") as wav_file:
        wav_file.setnchannels(wav_format.channels)
        wav_file.setsampwidth(wav_format.sample_width)
        wav_file.setframerate(wav_format.framerate)
        wav_file.writeframes(frames)
    return buffer.getvalue()


def silence_frames(duration_seconds: float, wav_format: WavFormat = WavFormat()) -> bytes:
    """Return PCM frames of silence for the requested duration."""

    frame_count = max(0, round(duration_seconds * wav_format.framerate))
    return b"\x00" * (frame_count * wav_format.channels * wav_format.sample_width)


def silence_wav(duration_seconds: float, wav_format: WavFormat = WavFormat()) -> bytes:
    """Return a WAV payload of silence."""

    return pcm_to_wav(silence_frames(duration_seconds, wav_format), wav_format)


def concatenate_wav(payloads: list[bytes]) -> bytes:
    """Concatenate same-format WAV payloads into one payload.

    Raises:
        ValueError: If the list is empty or payload formats differ.
    """

    if not payloads:
        raise ValueError("Cannot concatenate an empty list of WAV payloads.")
    first_format, first_frames = read_frames(payloads[0])
    frames = [first_frames]
    for index, payload in enumerate(payloads[1:], start=1):
        wav_format, payload_frames = read_frames(payload)
        if wav_format != first_format:
            raise ValueError(f"Incompatible WAV parameters for part {index}.")
        frames.append(payload_frames)
    return pcm_to_wav(b"".join(frames), first_format)
