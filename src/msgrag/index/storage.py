"""In-memory chunk + vector store."""

from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Dict, Iterator, List, Sequence

import numpy as np

from msgrag.errors import (
    DimensionMismatch,
    DocumentNotFound,
    DuplicateDocument,
    EmptyContent,
    ValidationError,
)
from msgrag.lifecycle import Lifecycle
from msgrag.models import Chunk, Document, DocumentSummary

LOGGER = logging.getLogger(__name__)


def _stack(chunks: Sequence[Chunk]) -> np.ndarray | None:
    if not chunks:
        return None
    matrix = np.vstack([chunk.embedding for chunk in chunks])
    matrix.setflags(write=False)
    return matrix


class StoreSnapshot:
    """Immutable view of the store at one point in time.

    ``matrix`` stacks every chunk embedding in insertion order, so row ``i``
    belongs to ``chunks[i]``. It is built on first access, so a run of
    inserts without a search in between never stacks embeddings.
    """

    __slots__ = ("documents", "chunks", "_matrix", "_matrix_lock")

    def __init__(
        self, documents: tuple[Document, ...] = (), chunks: tuple[Chunk, ...] = ()
    ) -> None:
        self.documents = documents
        self.chunks = chunks
        self._matrix: np.ndarray | None = None
        self._matrix_lock = threading.Lock()

    @property
    def matrix(self) -> np.ndarray | None:
        if self._matrix is None and self.chunks:
            with self._matrix_lock:
                if self._matrix is None:
                    self._matrix = _stack(self.chunks)
        return self._matrix

    def __len__(self) -> int:
        return len(self.documents)


class InMemoryChunkStore(Lifecycle):
    """Holds documents, their chunks and embeddings.

    Writers are serialized by a lock and publish a new :class:`StoreSnapshot`;
    readers work on whichever snapshot was current when they started, so a
    scan never observes a half-inserted document.

    The embedding dimension is fixed by the first insert and stays fixed for
    the life of the store, even if every document is later removed.
    """

    def __init__(self, *, dimension: int | None = None) -> None:
        self._dimension = dimension
        self._write_lock = threading.Lock()
        self._snapshot = StoreSnapshot()
        self._positions: Dict[str, int] = {}
        self._mark_ready()

    @property
    def dimension(self) -> int | None:
        return self._dimension

    def close(self) -> None:
        with self._write_lock:
            self._snapshot = StoreSnapshot()
            self._positions = {}
            self._mark_closed()

    @contextmanager
    def _writing(self) -> Iterator[None]:
        with self._write_lock:
            self._require_ready()
            yield

    def snapshot(self) -> StoreSnapshot:
        self._require_ready()
        return self._snapshot

    def _check_embeddings(
        self, chunks: Sequence[str], embeddings: Sequence[Sequence[float]] | np.ndarray
    ) -> List[np.ndarray]:
        if len(embeddings) != len(chunks):
            raise ValueError(
                f"Embeddings and chunks length mismatch: {len(embeddings)} != {len(chunks)}"
            )
        vectors = [np.array(vector, dtype="float32").reshape(-1) for vector in embeddings]
        expected = self._dimension if self._dimension is not None else vectors[0].shape[0]
        for vector in vectors:
            if vector.shape[0] != expected or vector.shape[0] == 0:
                raise DimensionMismatch(expected, int(vector.shape[0]))
        for vector in vectors:
            if not np.all(np.isfinite(vector)):
                raise ValidationError("Embeddings must contain only finite values")
            vector.setflags(write=False)
        return vectors

    def insert(
        self,
        document_id: str,
        content: str,
        chunks: Sequence[str],
        embeddings: Sequence[Sequence[float]] | np.ndarray,
        *,
        replace: bool = True,
    ) -> tuple[Document, str]:
        """Store a document with its chunks and their embeddings.

        Everything is validated before the store changes. An existing
        ``document_id`` is overwritten (all its chunks replaced) when
        ``replace`` is true, otherwise :class:`DuplicateDocument` is raised.

        Returns:
            (document, status) where status is 'inserted' or 'updated'.
        """
        if not content or not content.strip() or not chunks:
            raise EmptyContent()
        if any(not chunk for chunk in chunks):
            raise EmptyContent("Chunks must not be empty")
        if "".join(chunks) != content:
            raise ValueError("Chunks do not reconstruct the document content")

        with self._writing():
            vectors = self._check_embeddings(chunks, embeddings)
            current = self._snapshot
            existing = self._positions.get(document_id)
            if existing is not None and not replace:
                raise DuplicateDocument(document_id)

            document = Document(
                id=document_id,
                content=content,
                created_at=datetime.now(timezone.utc),
                chunks=tuple(
                    Chunk(document_id=document_id, index=i, content=text, embedding=vector)
                    for i, (text, vector) in enumerate(zip(chunks, vectors))
                ),
            )

            if existing is None:
                self._snapshot = StoreSnapshot(
                    documents=current.documents + (document,),
                    chunks=current.chunks + document.chunks,
                )
                self._positions[document_id] = len(current.documents)
                status = "inserted"
            else:
                documents = list(current.documents)
                documents[existing] = document
                self._publish(documents)
                status = "updated"

            if self._dimension is None:
                self._dimension = int(vectors[0].shape[0])

        LOGGER.debug("%s document %s (%d chunks)", status.capitalize(), document_id, document.chunk_count)
        return document, status

    def _publish(self, documents: Sequence[Document]) -> None:
        chunks = tuple(chunk for doc in documents for chunk in doc.chunks)
        self._snapshot = StoreSnapshot(documents=tuple(documents), chunks=chunks)
        self._positions = {doc.id: i for i, doc in enumerate(documents)}

    def all_documents(self) -> List[DocumentSummary]:
        """Summaries of every document, in insertion order."""
        return [doc.summary() for doc in self.snapshot().documents]

    def all_chunks(self) -> Iterator[Chunk]:
        """Iterate over every chunk in insertion order."""
        return iter(self.snapshot().chunks)

    def get_document(self, document_id: str) -> Document:
        for doc in self.snapshot().documents:
            if doc.id == document_id:
                return doc
        raise DocumentNotFound(document_id)

    def __contains__(self, document_id: object) -> bool:
        return any(doc.id == document_id for doc in self.snapshot().documents)

    def __len__(self) -> int:
        return len(self.snapshot())

    @property
    def document_count(self) -> int:
        return len(self)

    @property
    def chunk_count(self) -> int:
        return len(self.snapshot().chunks)

    def remove_document(self, document_id: str) -> Document:
        """Remove a document and all of its chunks."""
        with self._writing():
            documents = list(self._snapshot.documents)
            for i, doc in enumerate(documents):
                if doc.id == document_id:
                    del documents[i]
                    self._publish(documents)
                    break
            else:
                raise DocumentNotFound(document_id)
        LOGGER.debug("Removed document %s", document_id)
        return doc

    def clear(self) -> int:
        """Remove every document. Returns the number removed."""
        with self._writing():
            removed = len(self._snapshot.documents)
            self._snapshot = StoreSnapshot()
            self._positions = {}
        LOGGER.info("Cleared %d documents", removed)
        return removed

    def get_stats(self) -> Dict[str, Any]:
        snap = self.snapshot()
        return {
            "document_count": len(snap.documents),
            "chunk_count": len(snap.chunks),
            "total_size_bytes": sum(doc.size for doc in snap.documents),
            "dimension": self._dimension,
        }
