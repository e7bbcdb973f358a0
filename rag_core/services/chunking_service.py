"""
Text chunking for knowledge ingestion.

Splits long text into overlapping segments sized for embedding, preferring to
cut at paragraph, then sentence, then word boundaries.
"""

from __future__ import annotations

from typing import List, Optional

DEFAULT_MAX_SIZE = 1000
DEFAULT_OVERLAP = 100

# A boundary is only used when it keeps at least half of the window.
_MIN_WINDOW_FRACTION = 0.5


def chunk_text(
    text: str, max_size: int = DEFAULT_MAX_SIZE, overlap: int = DEFAULT_OVERLAP
) -> List[str]:
    """
    Split ``text`` into trimmed chunks of at most ``max_size`` characters.

    Consecutive chunks share roughly ``overlap`` characters. Raises
    ValueError when the window parameters could not make progress.
    """
    if max_size <= 0:
        raise ValueError("max_size must be positive")
    if overlap < 0 or overlap >= max_size:
        raise ValueError("overlap must be non-negative and smaller than max_size")

    if not text or not text.strip():
        return []
    if len(text) <= max_size:
        return [text.strip()]

    chunks: List[str] = []
    length = len(text)
    cursor = 0
    while cursor < length:
        end = min(cursor + max_size, length)
        if end < length:
            end = _find_boundary(text, cursor, end, max_size)

        piece = text[cursor:end].strip()
        if piece:
            chunks.append(piece)

        if end >= length:
            break
        next_cursor = end - overlap
        cursor = next_cursor if next_cursor > cursor else end

    return chunks


def _find_boundary(text: str, cursor: int, end: int, max_size: int) -> int:
    """Move ``end`` back to the nearest paragraph, sentence or word break."""
    floor = cursor + max_size * _MIN_WINDOW_FRACTION

    paragraph = text.rfind("\n\n", cursor, end)
    if paragraph > floor:
        return paragraph

    sentence = text.rfind(". ", cursor, end)
    if sentence > floor:
        return sentence + 1

    whitespace = max(text.rfind(ws, cursor, end) for ws in (" ", "\n", "\t"))
    if whitespace > floor:
        return whitespace

    return end


def build_chunk_title(base: Optional[str], index: int, total: int) -> Optional[str]:
    """Number chunk titles ``Part i/n`` (1-indexed) only for multi-chunk sources."""
    if total <= 1:
        return base
    label = f"Part {index + 1}/{total}"
    return f"{base} ({label})" if base else label
