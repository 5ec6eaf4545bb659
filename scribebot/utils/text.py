"""Text helpers for chat delivery."""
from __future__ import annotations

from typing import List


def split_message(text: str, max_length: int = 1900) -> List[str]:
    """Split text into consecutive chunks no longer than max_length.

    Prefers to break on the last newline inside a window so paragraphs stay
    intact; falls back to a hard cut when a window has no newline.
    """
    if max_length <= 0:
        raise ValueError("max_length must be positive")
    if not text:
        return []

    chunks: List[str] = []
    remaining = text
    while len(remaining) > max_length:
        window = remaining[:max_length]
        cut = window.rfind("\n")
        if cut <= 0:
            cut = max_length
        chunks.append(remaining[:cut])
        remaining = remaining[cut:].lstrip("\n")
    if remaining:
        chunks.append(remaining)
    return chunks


def truncate(text: str, limit: int, marker: str = "...") -> str:
    """Cut text to limit characters and append marker when it was cut."""
    if len(text) <= limit:
        return text
    return text[:limit] + marker
