"""Deterministic content-address keys for synthesized segment audio.

Two requests with the same key are interchangeable audio: the key covers the
normalized text, the canonical speaker, the voice, and every provider/model
setting that changes the rendered sound.
"""

from __future__ import annotations

from hashlib import sha256
import json
from typing import Any

from ..models.datatypes import SynthesisRequest


CACHE_KEY_FORMAT_VERSION = 1


def _normalize_identity_value(value: Any) -> Any:
    """Normalize identity payload values for stable cache key hashing."""

    if isinstance(value, str):
        return " ".join(value.split())
    if isinstance(value, list | tuple):
        return [_normalize_identity_value(item) for item in value]
    if isinstance(value, dict):
        return {
            str(key): _normalize_identity_value(value[key])
            for key in sorted(value.keys(), key=str)
        }
    return value


def cache_key_identity(request: SynthesisRequest) -> dict[str, Any]:
    """Return the canonical identity payload hashed into a cache key."""

    return {
        "v": CACHE_KEY_FORMAT_VERSION,
        "text": request.text,
        "speaker_id": request.speaker_id,
        "voice_id": request.voice_id,
        "provider": request.provider.strip().lower(),
        "model": request.model.strip(),
        "parameters": dict(request.parameters),
    }


def make_cache_key(request: SynthesisRequest) -> str:
    """Build the hex SHA-256 cache key for a synthesis request."""

    canonical_identity = json.dumps(
        _normalize_identity_value(cache_key_identity(request)),
        sort_keys=True,
        ensure_ascii=True,
        separators=(",", ":"),
    )
    return sha256(canonical_identity.encode("utf-8")).hexdigest()
