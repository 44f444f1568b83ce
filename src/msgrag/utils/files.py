"""Utility helpers for working with files."""

from __future__ import annotations

from pathlib import Path
from typing import Iterable, Iterator

MESSAGE_SUFFIXES = (".json", ".jsonl")


def iter_message_files(inputs: Iterable[Path]) -> Iterator[Path]:
    """Yield message export files from input paths, descending into directories."""
    for item in inputs:
        if item.is_dir():
            yield from iter_message_files(
                sorted(child for child in item.rglob("*") if child.suffix.lower() in MESSAGE_SUFFIXES)
            )
        elif item.is_file() and item.suffix.lower() in MESSAGE_SUFFIXES:
            yield item
