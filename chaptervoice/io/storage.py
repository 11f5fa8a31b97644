"""Artifact storage with atomic publication.

Responsibilities:
- Provide filesystem storage for text, JSON, and audio artifacts.
- Publish every write through a same-directory temp file and `os.replace`, so
  readers observe either the previous file or the complete new one.
"""

from __future__ import annotations

import json
import os
from pathlib import Path
import tempfile
from typing import Any


def atomic_write_bytes(path: Path, data: bytes) -> Path:
    """Write bytes to `path` atomically and return the path."""

    path.parent.mkdir(parents=True, exist_ok=True)
    descriptor, temp_name = tempfile.mkstemp(
        dir=str(path.parent),
        prefix=f".{path.name}.",
        suffix=".tmp",
    )
    temp_path = Path(temp_name)
    try:
        with os.fdopen(descriptor, "wb") as handle:
            handle.write(data)
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(temp_path, path)
    except BaseException:
        temp_path.unlink(missing_ok=True)
        raise
    return path


def atomic_write_json(path: Path, payload: Any) -> Path:
    """Serialize JSON deterministically and write it atomically."""

    text = json.dumps(payload, ensure_ascii=False, indent=2, sort_keys=True)
    return atomic_write_bytes(path, f"{text}\n".encode("utf-8"))


class ArtifactStore:
    """Filesystem-backed artifact store rooted at one chapter work directory."""

    def __init__(self, root: Path) -> None:
        """Initialize the store with a root directory."""

        self.root = root

    def path(self, relative_path: Path | str) -> Path:
        """Return the absolute path of an artifact."""

        return self.root / relative_path

    def save_text(self, relative_path: Path | str, content: str) -> Path:
        """Save text content atomically and return final path."""

        return atomic_write_bytes(self.path(relative_path), content.encode("utf-8"))

    def save_json(self, relative_path: Path | str, payload: Any) -> Path:
        """Save JSON-serializable payload atomically and return final path."""

        return atomic_write_json(self.path(relative_path), payload)

    def save_audio(self, relative_path: Path | str, data: bytes) -> Path:
        """Save audio bytes atomically and return final path."""

        return atomic_write_bytes(self.path(relative_path), data)

    def load_text(self, relative_path: Path | str) -> str:
        """Load text content from artifact storage."""

        return self.path(relative_path).read_text(encoding="utf-8")

    def load_json(self, relative_path: Path | str) -> Any:
        """Load and decode a JSON artifact."""

        return json.loads(self.load_text(relative_path))

    def exists(self, relative_path: Path | str) -> bool:
        """Return whether the given artifact exists."""

        return self.path(relative_path).exists()

    def delete(self, relative_path: Path | str) -> bool:
        """Delete an artifact and report whether it existed."""

        target = self.path(relative_path)
        if not target.exists():
            return False
        target.unlink()
        return True
