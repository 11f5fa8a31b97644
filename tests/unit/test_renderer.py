"""Unit tests for bounded-concurrency segment rendering."""

from __future__ import annotations

from pathlib import Path
import threading
import time

from chaptervoice.cache.segment_cache import SegmentCache
from chaptervoice.llm.retry import RetryPolicy
from chaptervoice.models.datatypes import SegmentKind, SpeakerSegment
from chaptervoice.telemetry.progress import ChapterProgress
from chaptervoice.tts.renderer import SegmentRenderer
from chaptervoice.tts.synthesizer import VoiceSynthesizer


def _segment(index: int, text: str, speaker_id: str = "narrator") -> SpeakerSegment:
    return SpeakerSegment(
        chapter_id="ch-1",
        global_index=index,
        chunk_index=0,
        speaker_id=speaker_id,
        text=text,
        kind=SegmentKind.NARRATION,
        char_start=0,
        char_end=len(text),
    )


def _renderer(tmp_path: Path, client: object, workers: int = 4) -> SegmentRenderer:
    synthesizer = VoiceSynthesizer(
        client,  # type: ignore[arg-type]
        retry_policy=RetryPolicy(max_attempts=2, backoff_base_seconds=0.0),
        sleeper=lambda _seconds: None,
    )
    return SegmentRenderer(SegmentCache(tmp_path / "cache"), synthesizer, workers=workers)


def _voice_for(speaker_id: str) -> str:
    return "onyx" if speaker_id == "mage" else "nova"


class _ConcurrencyCounter:
    """Speech client that records the highest number of overlapping calls."""

    MAX_INPUT_CHARS = 4096

    def __init__(self, audio: bytes) -> None:
        self.audio = audio
        self.active = 0
        self.peak = 0
        self._lock = threading.Lock()

    def synthesize_speech(self, **_kwargs: object) -> bytes:
        with self._lock:
            self.active += 1
            self.peak = max(self.peak, self.active)
        time.sleep(0.05)
        with self._lock:
            self.active -= 1
        return self.audio


def test_render_resolves_every_segment_and_reuses_identical_audio(
    tmp_path: Path, fake_speech_client
) -> None:
    segments = [
        _segment(0, "Hello."),
        _segment(1, "Hello.", speaker_id="mage"),
        _segment(2, "Hello."),
    ]
    renderer = _renderer(tmp_path, fake_speech_client)
    progress = ChapterProgress("ch-1")

    report = renderer.render(segments, _voice_for, progress)

    assert report.ok is True
    assert sorted(report.entries) == [0, 1, 2]
    assert report.entries[0].key == report.entries[2].key
    assert report.entries[0].key != report.entries[1].key
    assert len(fake_speech_client.calls) == 2
    assert report.synthesized_segments == 2
    assert report.synthesized_chars == 12
    assert progress.snapshot().segments_done == 3
    assert progress.snapshot().segments_total == 3


def test_render_isolates_failed_segments(tmp_path: Path, fake_speech_client) -> None:
    """One failing segment is reported by index; its siblings are still cached."""

    fake_speech_client.fail_texts = {"Line 1."}
    segments = [_segment(index, f"Line {index}.") for index in range(4)]
    renderer = _renderer(tmp_path, fake_speech_client)

    report = renderer.render(segments, _voice_for)

    assert report.ok is False
    assert report.failed_indices == [1]
    failure = report.failures[1]
    assert failure.segment_index == 1
    assert failure.detail.startswith("Segment 1:")
    assert sorted(report.entries) == [0, 2, 3]
    for index in (0, 2, 3):
        assert renderer.cache.contains(renderer.key_for(segments[index], _voice_for))
    assert not renderer.cache.contains(renderer.key_for(segments[1], _voice_for))


def test_render_second_pass_only_synthesizes_missing_segments(
    tmp_path: Path, fake_speech_client
) -> None:
    segments = [_segment(index, f"Line {index}.") for index in range(3)]
    renderer = _renderer(tmp_path, fake_speech_client)
    fake_speech_client.fail_texts = {"Line 2."}
    renderer.render(segments, _voice_for)
    fake_speech_client.fail_texts = set()
    fake_speech_client.calls.clear()

    report = renderer.render(segments, _voice_for)

    assert report.ok is True
    assert fake_speech_client.texts == ["Line 2."]
    assert report.synthesized_segments == 1


def test_render_never_exceeds_the_worker_bound(tmp_path: Path, make_wav) -> None:
    counter = _ConcurrencyCounter(make_wav())
    segments = [_segment(index, f"Line {index}.") for index in range(8)]
    renderer = _renderer(tmp_path, counter, workers=2)

    report = renderer.render(segments, _voice_for)

    assert report.ok is True
    assert 1 <= counter.peak <= 2


def test_render_with_no_segments_returns_empty_report(tmp_path: Path, fake_speech_client) -> None:
    report = _renderer(tmp_path, fake_speech_client).render([], _voice_for)

    assert report.entries == {}
    assert report.ok is True
