"""Text helpers including whitespace-aware chunking."""

from __future__ import annotations

from typing import Iterator, List


def _boundary(text: str, start: int, end: int) -> int:
    """Return the last cut position in ``(start, end]`` that follows whitespace.

    Falls back to ``end`` (a hard cut) when the window holds no whitespace.
    """
    for pos in range(end, start, -1):
        if text[pos - 1].isspace():
            return pos
    return end


def iter_chunk_spans(text: str, *, max_chars: int) -> Iterator[tuple[int, int]]:
    """Yield ``(start, end)`` spans of at most ``max_chars`` covering ``text``."""
    if max_chars < 1:
        raise ValueError(f"max_chars must be >= 1, got {max_chars}")

    start = 0
    length = len(text)
    while start < length:
        end = min(start + max_chars, length)
        if end < length:
            end = _boundary(text, start, end)
        yield start, end
        start = end


def split_chunks(text: str, *, max_chars: int | None = None) -> List[str]:
    """Split text into contiguous chunks.

    ``max_chars=None`` keeps the whole document as a single chunk. Otherwise
    chunks are cut at the last whitespace inside each window, with a hard cut
    for runs without whitespace. Whitespace-only pieces are folded into a
    neighbour, so a chunk may exceed ``max_chars`` by that run. Chunks never
    overlap: ``"".join(split_chunks(text))`` is always ``text``.

    Blank text produces no chunks.
    """
    if not text or not text.strip():
        return []
    if max_chars is None or len(text) <= max_chars:
        return [text]

    chunks: List[str] = []
    pending = ""  # leading whitespace waiting for the first real chunk
    for start, end in iter_chunk_spans(text, max_chars=max_chars):
        piece = text[start:end]
        if not piece.strip():
            if chunks:
                chunks[-1] += piece
            else:
                pending += piece
            continue
        chunks.append(pending + piece)
        pending = ""
    return chunks
