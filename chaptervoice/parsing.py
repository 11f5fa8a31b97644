"""Shared parsing helpers for runtime config and persisted artifact values."""

from __future__ import annotations

import re


_WHITESPACE_RUN = re.compile(r"\s+")


def normalize_optional_string(value: object) -> str | None:
    """Normalize an optional value to a stripped non-empty string.

    Args:
        value: Arbitrary input value.

    Returns:
        Stripped string value, or `None` when the value is empty after trimming.
    """

    if value is None:
        return None
    text = str(value).strip()
    if not text:
        return None
    return text


def normalize_whitespace(text: str) -> str:
    """Collapse every whitespace run to one space and trim both ends."""

    return _WHITESPACE_RUN.sub(" ", text).strip()
