"""Shared fixtures: deterministic stand-ins for the embedding and completion ports."""

from __future__ import annotations

from typing import Dict, List, Sequence

import numpy as np
import pytest

from msgrag.errors import CompletionError, EmbeddingError
from msgrag.index.storage import InMemoryChunkStore
from msgrag.models import ChatMessage

ALICE = "From: Alice\nMessage: lunch at noon"
BOB = "From: Bob\nMessage: invoice due Friday"
QUERY = "when is lunch?"


class FakeEmbedder:
    """Looks vectors up by exact text; unknown text gets a length-based 2-d vector."""

    def __init__(self, vectors: Dict[str, Sequence[float]] | None = None) -> None:
        self.vectors = dict(vectors or {})
        self.calls: List[str] = []
        self.fail_on: set[str] = set()

    def embed(self, text: str) -> np.ndarray:
        self.calls.append(text)
        if text in self.fail_on:
            raise EmbeddingError(f"cannot embed {text!r}")
        if text in self.vectors:
            return np.asarray(self.vectors[text], dtype="float32")
        return np.asarray([float(len(text) % 10), 1.0], dtype="float32")


class CountingCompleter:
    def __init__(self, reply: str = "Lunch is at noon.", error: CompletionError | None = None) -> None:
        self.reply = reply
        self.error = error
        self.calls: List[List[ChatMessage]] = []

    def complete(self, messages: Sequence[ChatMessage]) -> str:
        self.calls.append(list(messages))
        if self.error is not None:
            raise self.error
        return self.reply


@pytest.fixture
def embedder() -> FakeEmbedder:
    return FakeEmbedder({ALICE: [1.0, 0.0], BOB: [0.0, 1.0], QUERY: [0.9, 0.1]})


@pytest.fixture
def completer() -> CountingCompleter:
    return CountingCompleter()


@pytest.fixture
def store() -> InMemoryChunkStore:
    return InMemoryChunkStore()
