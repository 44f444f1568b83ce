"""Embedding port and its sentence-transformers adapter."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Iterable, Literal, Protocol, Sequence, runtime_checkable

import numpy as np
from sentence_transformers import SentenceTransformer

from msgrag.errors import EmbeddingError, NotInitialized
from msgrag.lifecycle import Lifecycle, LifecycleState

DEFAULT_MODEL = "sentence-transformers/all-MiniLM-L6-v2"

logger = logging.getLogger(__name__)


@runtime_checkable
class EmbeddingPort(Protocol):
    """Maps text to a fixed-length vector.

    Implementations return a non-empty 1-D vector of the same length for every
    call and raise :class:`~msgrag.errors.EmbeddingError` on failure.
    """

    def embed(self, text: str) -> np.ndarray: ...


def as_vector(values: Sequence[float] | np.ndarray) -> np.ndarray:
    """Coerce an embedding to a read-only 1-D float32 array."""
    vector = np.array(values, dtype="float32").reshape(-1)
    if vector.size == 0:
        raise EmbeddingError("Embedding backend returned an empty vector")
    if not np.all(np.isfinite(vector)):
        raise EmbeddingError("Embedding backend returned non-finite values")
    vector.setflags(write=False)
    return vector


@dataclass(slots=True)
class EmbeddingConfig:
    model_name: str = DEFAULT_MODEL
    batch_size: int = 16
    normalize: bool = True
    backend: Literal["torch", "onnx", "openvino"] | None = None
    device: str | None = None


class EmbeddingModel(Lifecycle):
    """Thin wrapper around `SentenceTransformer` implementing :class:`EmbeddingPort`.

    The model is loaded on :meth:`load` (or lazily on first use). Embeddings are
    L2-normalized by default so that distances fall between 0 and 2.
    """

    def __init__(self, config: EmbeddingConfig | None = None) -> None:
        self.config = config or EmbeddingConfig()
        self._model: SentenceTransformer | None = None
        self._lock = threading.Lock()
        self.dimension: int | None = None

    def load(self) -> None:
        with self._lock:
            if self._state is LifecycleState.READY:
                return
            if self._state is LifecycleState.CLOSED:
                raise NotInitialized("EmbeddingModel is closed")
            try:
                self._model = self._load_model()
            except Exception as exc:
                logger.error("Failed to load embedding model %s: %s", self.config.model_name, exc)
                raise EmbeddingError(
                    f"Embedding model {self.config.model_name!r} could not be loaded: {exc}"
                ) from exc
            self.dimension = int(self._model.get_sentence_embedding_dimension())
            self._mark_ready()
        logger.info(
            "Embedding model ready: %s (dim=%d, backend=%s)",
            self.config.model_name,
            self.dimension,
            self.config.backend or "torch",
        )

    def _load_model(self) -> SentenceTransformer:
        kwargs = {}
        if self.config.backend is not None:
            kwargs["backend"] = self.config.backend
        return SentenceTransformer(self.config.model_name, device=self.config.device, **kwargs)

    def close(self) -> None:
        self._model = None
        self._mark_closed()

    def embed_batch(self, texts: Sequence[str] | Iterable[str]) -> np.ndarray:
        """Return float32 embeddings for input texts, one row per text."""
        if not self.is_ready:
            self.load()
        assert self._model is not None
        sentences = list(texts)
        try:
            embeddings = self._model.encode(
                sentences,
                batch_size=self.config.batch_size,
                show_progress_bar=False,
                convert_to_numpy=True,
                normalize_embeddings=self.config.normalize,
            )
        except Exception as exc:
            raise EmbeddingError(f"Embedding generation failed: {exc}") from exc
        logger.debug("Embedded %d texts with %s", len(sentences), self.config.model_name)
        return embeddings.astype("float32", copy=False)

    def embed(self, text: str) -> np.ndarray:
        """Embed a single text."""
        return as_vector(self.embed_batch([text])[0])
