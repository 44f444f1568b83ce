"""Core msgrag data models."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Literal

import numpy as np

PREVIEW_CHARS = 400


@dataclass(frozen=True, slots=True, eq=False)
class Chunk:
    """Contiguous slice of a document paired with its embedding."""

    document_id: str
    index: int
    content: str
    embedding: np.ndarray

    @property
    def dimension(self) -> int:
        return int(self.embedding.shape[0])


@dataclass(frozen=True, slots=True)
class Document:
    """A stored document and its chunks, in sequence order."""

    id: str
    content: str
    created_at: datetime
    chunks: tuple[Chunk, ...]

    @property
    def size(self) -> int:
        return len(self.content.encode("utf-8"))

    @property
    def chunk_count(self) -> int:
        return len(self.chunks)

    @property
    def reconstructed_content(self) -> str:
        return "".join(chunk.content for chunk in self.chunks)

    def summary(self) -> "DocumentSummary":
        return DocumentSummary(
            id=self.id,
            size=self.size,
            chunk_count=self.chunk_count,
            content=self.reconstructed_content,
            created_at=self.created_at,
        )


@dataclass(frozen=True, slots=True)
class DocumentSummary:
    """Read-only view of a stored document."""

    id: str
    size: int
    chunk_count: int
    content: str
    created_at: datetime

    @property
    def preview(self) -> str:
        if len(self.content) > PREVIEW_CHARS:
            return f"{self.content[:PREVIEW_CHARS]}..."
        return self.content


@dataclass(frozen=True, slots=True)
class SearchResult:
    chunk: Chunk
    distance: float

    @property
    def document_id(self) -> str:
        return self.chunk.document_id

    @property
    def chunk_index(self) -> int:
        return self.chunk.index

    @property
    def content(self) -> str:
        return self.chunk.content


Role = Literal["system", "user", "assistant"]


@dataclass(frozen=True, slots=True)
class ChatMessage:
    role: Role
    content: str

    def to_dict(self) -> dict[str, str]:
        return {"role": self.role, "content": self.content}


class AnswerStatus(str, enum.Enum):
    ANSWERED = "answered"
    NO_CONTENT_STORED = "no_content_stored"
    NO_RELEVANT_CONTENT = "no_relevant_content"


@dataclass(slots=True)
class Answer:
    """Outcome of a question: generated text or a "nothing found" sentinel."""

    text: str
    status: AnswerStatus
    sources: List[SearchResult] = field(default_factory=list)
    context: str | None = None

    @property
    def found(self) -> bool:
        return self.status is AnswerStatus.ANSWERED
