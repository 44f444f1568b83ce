"""Document indexing pipeline."""

from __future__ import annotations

import itertools
import logging
import threading
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, List, Sequence

import numpy as np

from msgrag.embedding.encoder import EmbeddingPort, as_vector
from msgrag.errors import (
    DuplicateDocument,
    EmbeddingError,
    EmbeddingFailed,
    EmptyContent,
    IdCollision,
    NotInitialized,
    RagError,
)
from msgrag.index.storage import InMemoryChunkStore
from msgrag.ingestion.messages import load_messages
from msgrag.utils.files import iter_message_files
from msgrag.utils.text import split_chunks

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class ItemOutcome:
    """Result of storing one item of a batch."""

    position: int
    document_id: str | None = None
    status: str = "failed"
    error: RagError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass(slots=True)
class BatchOutcome:
    items: List[ItemOutcome] = field(default_factory=list)

    @property
    def document_ids(self) -> List[str]:
        return [item.document_id for item in self.items if item.document_id is not None]

    @property
    def failures(self) -> List[ItemOutcome]:
        return [item for item in self.items if not item.ok]

    @property
    def ok(self) -> bool:
        return not self.failures

    def __len__(self) -> int:
        return len(self.items)


@dataclass(slots=True)
class IndexStats:
    inserted: int = 0
    updated: int = 0
    failed: int = 0
    processed_files: list[Path] = field(default_factory=list)

    def increment(self, status: str) -> None:
        if status == "inserted":
            self.inserted += 1
        elif status == "updated":
            self.updated += 1
        else:
            self.failed += 1


class Indexer:
    """Splits documents into chunks, embeds them and commits them to the store.

    Each document is stored all-or-nothing: chunks are embedded first and the
    store is touched only once every embedding succeeded.
    """

    def __init__(
        self,
        embedder: EmbeddingPort,
        store: InMemoryChunkStore,
        *,
        chunk_chars: int | None = None,
    ) -> None:
        self.embedder = embedder
        self.store = store
        self.chunk_chars = chunk_chars
        self._sequence = itertools.count(1)
        self._sequence_lock = threading.Lock()

    def _generate_id(self, prefix: str) -> str:
        with self._sequence_lock:
            seq = next(self._sequence)
        return f"{prefix}_{seq}_{int(time.time() * 1000)}.txt"

    def _embed_chunks(self, chunks: Sequence[str]) -> List[np.ndarray]:
        try:
            return [as_vector(self.embedder.embed(chunk)) for chunk in chunks]
        except EmbeddingError as exc:
            raise EmbeddingFailed(exc.message, retryable=exc.retryable) from exc

    def _store(self, content: str, name: str | None, prefix: str) -> tuple[str, str]:
        if not content or not content.strip():
            raise EmptyContent()

        chunks = split_chunks(content, max_chars=self.chunk_chars)
        embeddings = self._embed_chunks(chunks)

        document_id = name if name is not None else self._generate_id(prefix)
        try:
            _, status = self.store.insert(
                document_id, content, chunks, embeddings, replace=name is not None
            )
        except DuplicateDocument as exc:
            raise IdCollision(document_id) from exc

        LOGGER.debug("Stored document %s (%d chars, %d chunks)", document_id, len(content), len(chunks))
        return document_id, status

    def store_document(self, content: str, name: str | None = None) -> str:
        """Store a single document and return its id.

        A given ``name`` overwrites any document already stored under it; when
        omitted a unique id is generated.
        """
        document_id, _ = self._store(content, name, "doc")
        return document_id

    def store_documents(self, contents: Iterable[str], *, name_prefix: str = "doc") -> BatchOutcome:
        """Store many documents, best effort.

        Items are stored one after another. A failing item is recorded in its
        :class:`ItemOutcome` and does not stop the rest of the batch. Outcomes
        follow input order.
        """
        outcome = BatchOutcome()
        for position, content in enumerate(contents):
            item = ItemOutcome(position=position)
            try:
                item.document_id, item.status = self._store(content, None, name_prefix)
            except NotInitialized:
                raise
            except RagError as exc:
                LOGGER.warning("Failed to store item %d: %s", position, exc)
                item.error = exc
            outcome.items.append(item)

        LOGGER.info(
            "Stored %d/%d documents (%d failed)",
            len(outcome.document_ids),
            len(outcome),
            len(outcome.failures),
        )
        return outcome

    def index(self, paths: Sequence[Path]) -> IndexStats:
        """Index every message record found in export files under ``paths``.

        Records are stored as ``<file stem>_<n>``, so re-indexing a file
        replaces its previous records.
        """
        files = list(iter_message_files(paths))
        if not files:
            LOGGER.warning("No message files found")
            return IndexStats()

        stats = IndexStats()
        for path in files:
            LOGGER.info("Processing: %s", path)
            try:
                records = load_messages(path)
            except (OSError, ValueError) as exc:
                LOGGER.error("Failed to read %s: %s", path, exc)
                stats.failed += 1
                stats.processed_files.append(path)
                continue

            for n, record in enumerate(records, start=1):
                try:
                    _, status = self._store(record.to_document(), f"{path.stem}_{n}", path.stem)
                except NotInitialized:
                    raise
                except RagError as exc:
                    LOGGER.error("Failed to store record %d of %s: %s", n, path, exc)
                    status = "failed"
                stats.increment(status)
            stats.processed_files.append(path)

        return stats
