"""Permanent content-addressed cache of synthesized segment audio.

Responsibilities:
- Store one WAV file plus one JSON sidecar per cache key.
- Collapse concurrent requests for the same key into one generator call.
- Publish entries atomically: audio first, sidecar last as the commit marker.
- Replace an entry only through explicit `regenerate`.

Layout under the cache root:
- `<key[:2]>/<key>.wav`: audio payload.
- `<key[:2]>/<key>.json`: sidecar metadata; present only for committed entries.
- `<key[:2]>/<key>.regenerate`: marker left by `regenerate` until the next commit.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
import json
from pathlib import Path
import threading
from typing import Any

from loguru import logger

from ..audio.wav import inspect_wav
from ..errors import CacheCorruptionError, SynthesisError
from ..io.storage import atomic_write_bytes, atomic_write_json
from ..models.datatypes import (
    CacheEntry,
    CacheEntryMetadata,
    SynthesisRequest,
    text_sha256,
)
from .keys import CACHE_KEY_FORMAT_VERSION


AudioGenerator = Callable[[], bytes]


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(slots=True)
class _Flight:
    """One in-progress generation shared by every caller of the same key."""

    done: threading.Event = field(default_factory=threading.Event)
    entry: CacheEntry | None = None
    error: BaseException | None = None


@dataclass(frozen=True, slots=True)
class CacheStats:
    """Counters describing cache activity since construction."""

    hits: int
    misses: int
    joined: int
    generations: int
    corruptions: int


class SegmentCache:
    """Filesystem segment cache with per-key single-flight generation."""

    def __init__(
        self,
        root: Path,
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        """Initialize a cache rooted at `root`."""

        self.root = root
        self._clock = clock
        self._registry_lock = threading.Lock()
        self._in_flight: dict[str, _Flight] = {}
        self._stats_lock = threading.Lock()
        self._hits = 0
        self._misses = 0
        self._joined = 0
        self._generations = 0
        self._corruptions = 0

    def audio_path(self, key: str) -> Path:
        """Return the audio file location for a key."""

        return self._shard(key) / f"{key}.wav"

    def sidecar_path(self, key: str) -> Path:
        """Return the sidecar metadata location for a key."""

        return self._shard(key) / f"{key}.json"

    def _marker_path(self, key: str) -> Path:
        return self._shard(key) / f"{key}.regenerate"

    def _shard(self, key: str) -> Path:
        prefix = key[:2] if len(key) >= 2 else "00"
        return self.root / prefix

    def stats(self) -> CacheStats:
        """Return a snapshot of cache counters."""

        with self._stats_lock:
            return CacheStats(
                hits=self._hits,
                misses=self._misses,
                joined=self._joined,
                generations=self._generations,
                corruptions=self._corruptions,
            )

    def lookup(self, key: str) -> CacheEntry | None:
        """Return the committed entry for `key`, or `None` on a miss.

        Corrupt entries are logged and reported as misses.
        """

        try:
            return self._load_entry(key)
        except CacheCorruptionError as exc:
            self._record_corruption(exc)
            return None

    def contains(self, key: str) -> bool:
        """Return whether `key` has a readable committed entry."""

        return self.lookup(key) is not None

    def get_or_create(
        self,
        key: str,
        generator: AudioGenerator,
        request: SynthesisRequest,
    ) -> CacheEntry:
        """Return the entry for `key`, generating it at most once across threads.

        Args:
            key: Cache key computed from `request`.
            generator: Callable returning WAV bytes for a miss.
            request: Synthesis request recorded in the sidecar.

        Raises:
            SynthesisError: If the generator returns unreadable audio.
            Exception: Whatever the generator raised; every concurrent caller
                waiting on the same key receives the same exception.
        """

        entry = self.lookup(key)
        if entry is not None:
            self._bump("hits")
            return entry

        with self._registry_lock:
            flight = self._in_flight.get(key)
            is_leader = flight is None
            if flight is None:
                flight = _Flight()
                self._in_flight[key] = flight

        if not is_leader:
            flight.done.wait()
            self._bump("joined")
            if flight.error is not None:
                raise flight.error
            assert flight.entry is not None
            return flight.entry

        try:
            entry = self.lookup(key)
            if entry is None:
                self._bump("misses")
                entry = self._generate_and_commit(key, generator, request)
            else:
                self._bump("hits")
            flight.entry = entry
            return entry
        except BaseException as exc:
            flight.error = exc
            raise
        finally:
            with self._registry_lock:
                self._in_flight.pop(key, None)
            flight.done.set()

    def regenerate(self, key: str) -> bool:
        """Invalidate exactly one entry so the next request re-synthesizes it.

        Returns:
            `True` when a committed entry (or its audio) was removed.
        """

        sidecar = self.sidecar_path(key)
        audio = self.audio_path(key)
        existed = sidecar.exists() or audio.exists()
        self._marker_path(key).parent.mkdir(parents=True, exist_ok=True)
        self._marker_path(key).touch()
        # Sidecar first: without it the key is a miss even if audio removal fails.
        sidecar.unlink(missing_ok=True)
        audio.unlink(missing_ok=True)
        logger.info("Cache entry {} invalidated for regeneration.", key)
        return existed

    def _generate_and_commit(
        self,
        key: str,
        generator: AudioGenerator,
        request: SynthesisRequest,
    ) -> CacheEntry:
        audio_bytes = generator()
        try:
            info = inspect_wav(audio_bytes)
        except ValueError as exc:
            raise SynthesisError(
                f"Synthesized audio for cache key `{key}` is malformed: {exc}",
                failure_kind="malformed",
            ) from exc
        if info.frame_count <= 0:
            raise SynthesisError(
                f"Synthesized audio for cache key `{key}` is empty.",
                failure_kind="malformed",
            )

        marker = self._marker_path(key)
        metadata = CacheEntryMetadata(
            cache_key=key,
            speaker_id=request.speaker_id,
            voice_id=request.voice_id,
            provider=request.provider,
            model=request.model,
            model_parameters=dict(request.parameters),
            source_text=request.text,
            source_text_sha256=text_sha256(request.text),
            generated_at=self._clock().isoformat(),
            regenerated=marker.exists(),
            duration_seconds=info.duration_seconds,
            byte_size=len(audio_bytes),
        )
        audio_path = atomic_write_bytes(self.audio_path(key), audio_bytes)
        atomic_write_json(self.sidecar_path(key), self._metadata_payload(metadata))
        marker.unlink(missing_ok=True)
        self._bump("generations")
        logger.debug(
            "Cached segment audio key={} speaker={} voice={} duration={:.3f}s",
            key,
            request.speaker_id,
            request.voice_id,
            info.duration_seconds,
        )
        return CacheEntry(key=key, audio_path=audio_path, metadata=metadata)

    def _load_entry(self, key: str) -> CacheEntry | None:
        sidecar = self.sidecar_path(key)
        if not sidecar.exists() or self._marker_path(key).exists():
            return None
        try:
            payload = json.loads(sidecar.read_text(encoding="utf-8"))
            metadata = self._metadata_from_payload(payload)
        except (OSError, ValueError, KeyError, TypeError) as exc:
            raise CacheCorruptionError(key, f"unreadable sidecar ({exc})") from exc
        if metadata.cache_key != key:
            raise CacheCorruptionError(key, f"sidecar records key `{metadata.cache_key}`")

        audio_path = self.audio_path(key)
        if not audio_path.exists():
            raise CacheCorruptionError(key, "audio file is missing")
        try:
            audio_bytes = audio_path.read_bytes()
            inspect_wav(audio_bytes)
        except (OSError, ValueError) as exc:
            raise CacheCorruptionError(key, f"audio file is unreadable ({exc})") from exc
        if len(audio_bytes) != metadata.byte_size:
            raise CacheCorruptionError(
                key,
                f"audio size {len(audio_bytes)} does not match recorded {metadata.byte_size}",
            )
        return CacheEntry(key=key, audio_path=audio_path, metadata=metadata)

    def _record_corruption(self, exc: CacheCorruptionError) -> None:
        self._bump("corruptions")
        logger.warning("Cache anomaly, treating as miss: {}", exc)

    def _bump(self, counter: str) -> None:
        with self._stats_lock:
            setattr(self, f"_{counter}", getattr(self, f"_{counter}") + 1)

    @staticmethod
    def _metadata_payload(metadata: CacheEntryMetadata) -> dict[str, Any]:
        return {
            "format_version": CACHE_KEY_FORMAT_VERSION,
            "cache_key": metadata.cache_key,
            "speaker_id": metadata.speaker_id,
            "voice_id": metadata.voice_id,
            "provider": metadata.provider,
            "model": metadata.model,
            "model_parameters": dict(metadata.model_parameters),
            "source_text": metadata.source_text,
            "source_text_sha256": metadata.source_text_sha256,
            "generated_at": metadata.generated_at,
            "regenerated": metadata.regenerated,
            "duration_seconds": metadata.duration_seconds,
            "byte_size": metadata.byte_size,
        }

    @staticmethod
    def _metadata_from_payload(payload: dict[str, Any]) -> CacheEntryMetadata:
        if not isinstance(payload, dict):
            raise ValueError("sidecar root must be an object")
        parameters = payload.get("model_parameters") or {}
        if not isinstance(parameters, dict):
            raise ValueError("`model_parameters` must be an object")
        return CacheEntryMetadata(
            cache_key=str(payload["cache_key"]),
            speaker_id=str(payload["speaker_id"]),
            voice_id=str(payload["voice_id"]),
            provider=str(payload["provider"]),
            model=str(payload["model"]),
            model_parameters={str(key): str(value) for key, value in parameters.items()},
            source_text=str(payload["source_text"]),
            source_text_sha256=str(payload["source_text_sha256"]),
            generated_at=str(payload["generated_at"]),
            regenerated=bool(payload.get("regenerated", False)),
            duration_seconds=float(payload["duration_seconds"]),
            byte_size=int(payload["byte_size"]),
        )
