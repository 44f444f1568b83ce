"""Builds the context string handed to the generation step."""

from __future__ import annotations

from typing import Sequence

from msgrag.models import SearchResult

DEFAULT_SEPARATOR = "\n---\n"


def assemble_context(
    results: Sequence[SearchResult], separator: str = DEFAULT_SEPARATOR
) -> str | None:
    """Join trimmed chunk contents in ranked order; ``None`` when there are no results."""
    if not results:
        return None
    return separator.join(result.content.strip() for result in results)
