"""End-to-end retrieval-augmented question answering."""

from __future__ import annotations

import logging
from typing import Iterable, List, Sequence

from msgrag.config import AppConfig
from msgrag.embedding.encoder import EmbeddingPort
from msgrag.errors import CompletionError, GenerationFailed, NotInitialized
from msgrag.generation.completion import CompletionPort, strip_reasoning
from msgrag.index.indexer import BatchOutcome, Indexer
from msgrag.index.search import FilterOrder, Searcher
from msgrag.index.storage import InMemoryChunkStore
from msgrag.ingestion.messages import MessageRecord
from msgrag.lifecycle import Lifecycle, LifecycleState
from msgrag.models import (
    Answer,
    AnswerStatus,
    ChatMessage,
    Document,
    DocumentSummary,
    SearchResult,
)
from msgrag.rag.context import assemble_context

NO_RELEVANT_CONTENT = "No relevant content found for your query."

LOGGER = logging.getLogger(__name__)


class RagEngine(Lifecycle):
    """Wires the store, indexer, searcher and completion port together.

    The engine starts uninitialized; :meth:`initialize` loads the ports and
    makes it ready. Every other operation raises
    :class:`~msgrag.errors.NotInitialized` until then, and again after
    :meth:`close`.

    Usage::

        with RagEngine(EmbeddingModel(), OllamaChatModel()) as engine:
            engine.store_document("From: Alice\\nMessage: lunch at noon")
            answer = engine.ask("When is lunch?")
    """

    def __init__(
        self,
        embedder: EmbeddingPort | None,
        completer: CompletionPort | None = None,
        *,
        store: InMemoryChunkStore | None = None,
        config: AppConfig | None = None,
    ) -> None:
        self.config = config or AppConfig()
        self._embedder = embedder
        self._completer = completer
        self.store = store if store is not None else InMemoryChunkStore()
        self._indexer: Indexer | None = None
        self._searcher: Searcher | None = None

    @property
    def embedder(self) -> EmbeddingPort | None:
        return self._embedder

    @property
    def completer(self) -> CompletionPort | None:
        return self._completer

    def initialize(self) -> "RagEngine":
        if self._state is LifecycleState.READY:
            return self
        if self._state is LifecycleState.CLOSED:
            raise NotInitialized("RagEngine is closed")
        if self._embedder is None:
            raise NotInitialized("RagEngine requires an embedding port")

        LOGGER.info("Initializing RAG engine...")
        for port in (self._embedder, self._completer):
            load = getattr(port, "load", None)
            if callable(load):
                load()

        self._indexer = Indexer(self._embedder, self.store, chunk_chars=self.config.chunk_chars)
        self._searcher = Searcher(self._embedder, self.store)
        self._mark_ready()
        LOGGER.info(
            "RAG engine initialized (%s)",
            "with completion port" if self._completer is not None else "search only",
        )
        return self

    def close(self) -> None:
        if self._state is LifecycleState.CLOSED:
            return
        for port in (self._embedder, self._completer):
            close = getattr(port, "close", None)
            if callable(close):
                close()
        self._mark_closed()

    def __enter__(self) -> "RagEngine":
        return self.initialize()

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    @property
    def indexer(self) -> Indexer:
        self._require_ready()
        assert self._indexer is not None
        return self._indexer

    @property
    def searcher(self) -> Searcher:
        self._require_ready()
        assert self._searcher is not None
        return self._searcher

    # Storage

    def store_document(self, content: str, name: str | None = None) -> str:
        LOGGER.debug("Storing document: %s (%d chars)", name or "<generated>", len(content))
        return self.indexer.store_document(content, name)

    def store_documents(self, documents: Iterable[str], *, name_prefix: str = "doc") -> BatchOutcome:
        return self.indexer.store_documents(documents, name_prefix=name_prefix)

    def store_messages(self, records: Iterable[MessageRecord]) -> BatchOutcome:
        """Store message records, one document per message."""
        return self.store_documents((record.to_document() for record in records), name_prefix="sms")

    def all_documents(self) -> List[DocumentSummary]:
        self._require_ready()
        return self.store.all_documents()

    def document_count(self) -> int:
        self._require_ready()
        return self.store.document_count

    def remove_document(self, document_id: str) -> Document:
        self._require_ready()
        return self.store.remove_document(document_id)

    def clear(self) -> int:
        self._require_ready()
        return self.store.clear()

    # Retrieval

    def search(
        self,
        query: str,
        *,
        limit: int | None = None,
        max_distance: float | None = None,
        order: FilterOrder | None = None,
    ) -> List[SearchResult]:
        return self.searcher.search(
            query,
            limit=limit if limit is not None else self.config.search_limit,
            max_distance=max_distance,
            order=order if order is not None else self.config.filter_order,
        )

    def search_context(
        self,
        query: str,
        *,
        limit: int | None = None,
        max_distance: float | None = None,
        separator: str | None = None,
    ) -> str | None:
        """Search and assemble the results into a context string (``None`` if nothing matched)."""
        results = self.search(
            query,
            limit=limit,
            max_distance=max_distance if max_distance is not None else self.config.max_distance,
        )
        return assemble_context(
            results, separator if separator is not None else self.config.separator
        )

    # Generation

    def build_messages(self, query: str, context: str) -> List[ChatMessage]:
        return [
            ChatMessage(role="system", content=f"{self.config.system_prompt}\n\nCONTEXT:\n{context}"),
            ChatMessage(role="user", content=query),
        ]

    def _complete(self, messages: Sequence[ChatMessage]) -> str:
        if self._completer is None:
            raise NotInitialized("RagEngine has no completion port")
        try:
            response = self._completer.complete(messages)
        except CompletionError as exc:
            LOGGER.error("Completion failed: %s", exc)
            raise GenerationFailed(exc.message, retryable=exc.retryable) from exc
        if self.config.strip_reasoning:
            response = strip_reasoning(response)
        return response

    def ask(self, query: str) -> Answer:
        """Answer ``query`` from stored content.

        Returns an :class:`Answer` whose status tells apart an empty store, no
        relevant match and a generated answer. Backend failures raise
        :class:`~msgrag.errors.EmbeddingFailed` or
        :class:`~msgrag.errors.GenerationFailed`.
        """
        searcher = self.searcher
        snapshot = self.store.snapshot()
        if not snapshot.documents:
            LOGGER.info("No content stored")
            return Answer(text=NO_RELEVANT_CONTENT, status=AnswerStatus.NO_CONTENT_STORED)

        results = searcher.search(
            query,
            limit=self.config.search_limit,
            max_distance=self.config.max_distance,
            order=self.config.filter_order,
            snapshot=snapshot,
        )
        context = assemble_context(results, self.config.separator)
        if not context:
            LOGGER.info("No relevant context found")
            return Answer(text=NO_RELEVANT_CONTENT, status=AnswerStatus.NO_RELEVANT_CONTENT)

        LOGGER.debug("Context generated: %d chars from %d chunks", len(context), len(results))
        text = self._complete(self.build_messages(query, context))
        return Answer(text=text, status=AnswerStatus.ANSWERED, sources=results, context=context)
