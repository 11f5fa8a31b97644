"""Filesystem input/output helpers."""

from .storage import ArtifactStore, atomic_write_bytes, atomic_write_json

__all__ = ["ArtifactStore", "atomic_write_bytes", "atomic_write_json"]
