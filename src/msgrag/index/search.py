"""Exact L2 similarity search over the chunk store."""

from __future__ import annotations

import enum
import logging
from typing import List

import numpy as np

from msgrag.embedding.encoder import EmbeddingPort, as_vector
from msgrag.errors import (
    DimensionMismatch,
    EmbeddingError,
    EmbeddingFailed,
    InvalidLimit,
    ValidationError,
)
from msgrag.index.storage import InMemoryChunkStore, StoreSnapshot
from msgrag.models import SearchResult

LOGGER = logging.getLogger(__name__)


class FilterOrder(str, enum.Enum):
    """When the distance threshold is applied relative to the limit.

    ``LIMIT_THEN_THRESHOLD`` keeps the ``limit`` nearest chunks and then drops
    those beyond the threshold. ``THRESHOLD_THEN_LIMIT`` filters first and then
    keeps up to ``limit`` of the remaining chunks. With an ascending ranking the
    two select the same chunks; the threshold is applied to the ranked window
    in both cases.
    """

    LIMIT_THEN_THRESHOLD = "limit_then_threshold"
    THRESHOLD_THEN_LIMIT = "threshold_then_limit"


def l2_distances(matrix: np.ndarray, query: np.ndarray) -> np.ndarray:
    """Euclidean distance between ``query`` and every row of ``matrix``.

    Vectors are compared as given; normalizing them is up to the embedder.
    """
    diff = np.asarray(matrix, dtype="float64") - np.asarray(query, dtype="float64")
    return np.sqrt(np.einsum("ij,ij->i", diff, diff))


class Searcher:
    """Brute-force nearest-chunk search, ranked by ascending L2 distance."""

    def __init__(self, embedder: EmbeddingPort, store: InMemoryChunkStore) -> None:
        self.embedder = embedder
        self.store = store

    def _embed_query(self, query: str) -> np.ndarray:
        try:
            return as_vector(self.embedder.embed(query))
        except EmbeddingError as exc:
            raise EmbeddingFailed(exc.message, retryable=exc.retryable) from exc

    def search(
        self,
        query: str,
        *,
        limit: int = 10,
        max_distance: float | None = None,
        order: FilterOrder = FilterOrder.LIMIT_THEN_THRESHOLD,
        snapshot: StoreSnapshot | None = None,
    ) -> List[SearchResult]:
        """Rank chunks of ``snapshot`` (the current one by default) against ``query``."""
        if limit < 1:
            raise InvalidLimit(limit)
        if max_distance is not None and max_distance < 0:
            raise ValidationError(f"max_distance must be >= 0, got {max_distance}")

        if snapshot is None:
            snapshot = self.store.snapshot()
        if snapshot.matrix is None:
            LOGGER.debug("Search on empty store: %r", query)
            return []

        embedding = self._embed_query(query)
        if embedding.shape[0] != snapshot.matrix.shape[1]:
            raise DimensionMismatch(int(snapshot.matrix.shape[1]), int(embedding.shape[0]))

        distances = l2_distances(snapshot.matrix, embedding)
        ranked = np.argsort(distances, kind="stable")

        if order is FilterOrder.THRESHOLD_THEN_LIMIT and max_distance is not None:
            ranked = ranked[distances[ranked] <= max_distance]
        ranked = ranked[:limit]
        if order is FilterOrder.LIMIT_THEN_THRESHOLD and max_distance is not None:
            before = len(ranked)
            ranked = ranked[distances[ranked] <= max_distance]
            LOGGER.debug("Filtered: %d -> %d (threshold: %s)", before, len(ranked), max_distance)

        results = [
            SearchResult(chunk=snapshot.chunks[idx], distance=float(distances[idx])) for idx in ranked
        ]
        LOGGER.debug("Search %r (limit: %d) -> %d results", query, limit, len(results))
        return results
