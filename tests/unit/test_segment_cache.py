"""Unit tests for the content-addressed segment cache."""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone
import json
from pathlib import Path
import threading
import time

import pytest

from chaptervoice.cache.keys import cache_key_identity, make_cache_key
from chaptervoice.cache.segment_cache import SegmentCache
from chaptervoice.errors import SynthesisError
from chaptervoice.models.datatypes import SynthesisRequest


def _request(text: str = "Hello there.", **overrides: object) -> SynthesisRequest:
    values: dict[str, object] = {
        "text": text,
        "speaker_id": "mage",
        "voice_id": "onyx",
        "provider": "openai",
        "model": "tts-1",
        "parameters": {},
    }
    values.update(overrides)
    return SynthesisRequest(**values)  # type: ignore[arg-type]


def _fixed_clock() -> datetime:
    return datetime(2026, 1, 2, 3, 4, 5, tzinfo=timezone.utc)


def test_cache_key_is_stable_and_whitespace_normalized() -> None:
    assert make_cache_key(_request("Hello   there.")) == make_cache_key(_request("Hello there."))
    assert make_cache_key(_request(provider=" OpenAI ")) == make_cache_key(_request())
    assert len(make_cache_key(_request())) == 64


@pytest.mark.parametrize(
    "override",
    [
        {"text": "Hello there!"},
        {"speaker_id": "narrator"},
        {"voice_id": "nova"},
        {"provider": "elevenlabs"},
        {"model": "tts-1-hd"},
        {"parameters": {"speed": "1.25"}},
    ],
)
def test_cache_key_changes_with_every_identity_field(override: dict[str, object]) -> None:
    assert make_cache_key(_request(**override)) != make_cache_key(_request())


def test_cache_key_identity_carries_format_version() -> None:
    identity = cache_key_identity(_request())

    assert identity["v"] == 1
    assert identity["speaker_id"] == "mage"


def test_get_or_create_generates_once_then_hits(tmp_path: Path, make_wav) -> None:
    cache = SegmentCache(tmp_path / "cache", clock=_fixed_clock)
    request = _request()
    key = make_cache_key(request)
    calls: list[int] = []

    def _generate() -> bytes:
        calls.append(1)
        return make_wav(0.2)

    first = cache.get_or_create(key, _generate, request)
    second = cache.get_or_create(key, _generate, request)

    assert len(calls) == 1
    assert first.audio_path == second.audio_path
    assert first.audio_path == tmp_path / "cache" / key[:2] / f"{key}.wav"
    assert first.duration_seconds == pytest.approx(0.2)
    assert first.metadata.generated_at == "2026-01-02T03:04:05+00:00"
    assert first.metadata.regenerated is False
    stats = cache.stats()
    assert (stats.hits, stats.misses, stats.generations) == (1, 1, 1)

    sidecar = json.loads(cache.sidecar_path(key).read_text(encoding="utf-8"))
    assert sidecar["cache_key"] == key
    assert sidecar["source_text"] == "Hello there."
    assert sidecar["byte_size"] == first.audio_path.stat().st_size


def test_concurrent_requests_for_one_key_share_a_single_generation(
    tmp_path: Path, make_wav
) -> None:
    """Eight simultaneous callers of one key must cause exactly one provider call."""

    cache = SegmentCache(tmp_path / "cache")
    request = _request()
    key = make_cache_key(request)
    calls: list[int] = []
    calls_lock = threading.Lock()
    start = threading.Barrier(8)

    def _generate() -> bytes:
        with calls_lock:
            calls.append(1)
        time.sleep(0.2)
        return make_wav()

    def _worker() -> Path:
        start.wait()
        return cache.get_or_create(key, _generate, request).audio_path

    with ThreadPoolExecutor(max_workers=8) as pool:
        paths = list(pool.map(lambda _index: _worker(), range(8)))

    assert len(calls) == 1
    assert len(set(paths)) == 1
    assert cache.stats().generations == 1


def test_joined_callers_receive_the_leader_error(tmp_path: Path) -> None:
    cache = SegmentCache(tmp_path / "cache")
    request = _request()
    key = make_cache_key(request)
    release = threading.Event()
    start = threading.Barrier(3)

    def _generate() -> bytes:
        release.wait(timeout=5)
        raise SynthesisError("provider down", failure_kind="server_error")

    def _worker() -> str:
        start.wait()
        try:
            cache.get_or_create(key, _generate, request)
        except SynthesisError as exc:
            return exc.detail
        return "no error"

    with ThreadPoolExecutor(max_workers=3) as pool:
        futures = [pool.submit(_worker) for _ in range(3)]
        time.sleep(0.2)
        release.set()
        outcomes = [future.result() for future in futures]

    assert outcomes == ["provider down"] * 3
    assert not cache.audio_path(key).exists()
    assert not cache.sidecar_path(key).exists()


def test_malformed_generator_output_is_not_committed(tmp_path: Path) -> None:
    cache = SegmentCache(tmp_path / "cache")
    request = _request()
    key = make_cache_key(request)

    with pytest.raises(SynthesisError, match="malformed"):
        cache.get_or_create(key, lambda: b"not audio", request)

    assert cache.lookup(key) is None
    assert not cache.audio_path(key).exists()


def test_regenerate_replaces_only_the_targeted_entry(tmp_path: Path, make_wav) -> None:
    times = iter(
        [
            datetime(2026, 1, 1, tzinfo=timezone.utc),
            datetime(2026, 1, 1, tzinfo=timezone.utc),
            datetime(2026, 2, 1, tzinfo=timezone.utc),
        ]
    )
    cache = SegmentCache(tmp_path / "cache", clock=lambda: next(times))
    target_request = _request("Target line.")
    sibling_request = _request("Sibling line.")
    target_key = make_cache_key(target_request)
    sibling_key = make_cache_key(sibling_request)
    cache.get_or_create(target_key, make_wav, target_request)
    sibling_before = cache.get_or_create(sibling_key, make_wav, sibling_request)

    assert cache.regenerate(target_key) is True
    assert cache.lookup(target_key) is None

    regenerated = cache.get_or_create(target_key, lambda: make_wav(0.3), target_request)
    sibling_after = cache.lookup(sibling_key)

    assert regenerated.metadata.regenerated is True
    assert regenerated.metadata.generated_at.startswith("2026-02-01")
    assert regenerated.duration_seconds == pytest.approx(0.3)
    assert sibling_after is not None
    assert sibling_after.metadata == sibling_before.metadata
    assert not (cache.root / target_key[:2] / f"{target_key}.regenerate").exists()


def test_regenerate_reports_missing_entries(tmp_path: Path) -> None:
    cache = SegmentCache(tmp_path / "cache")

    assert cache.regenerate("ab" * 32) is False


def test_corrupt_entries_are_reported_as_misses(tmp_path: Path, make_wav) -> None:
    cache = SegmentCache(tmp_path / "cache")
    request = _request()
    key = make_cache_key(request)
    cache.get_or_create(key, make_wav, request)

    cache.audio_path(key).write_bytes(b"truncated")

    assert cache.lookup(key) is None
    assert cache.stats().corruptions == 1

    replacement = cache.get_or_create(key, make_wav, request)
    assert cache.lookup(key) == replacement


def test_sidecar_without_audio_is_a_miss(tmp_path: Path, make_wav) -> None:
    cache = SegmentCache(tmp_path / "cache")
    request = _request()
    key = make_cache_key(request)
    cache.get_or_create(key, make_wav, request)

    cache.audio_path(key).unlink()

    assert cache.contains(key) is False
