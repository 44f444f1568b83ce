"""Exception hierarchy shared by the retrieval engine and its adapters."""

from __future__ import annotations


class RagError(Exception):
    """Base class for every error raised by msgrag."""


class ValidationError(RagError, ValueError):
    """Input rejected before it reaches storage."""


class EmptyContent(ValidationError):
    def __init__(self, message: str = "Document content is empty") -> None:
        super().__init__(message)


class InvalidLimit(ValidationError):
    def __init__(self, limit: int) -> None:
        super().__init__(f"limit must be >= 1, got {limit}")
        self.limit = limit


class DimensionMismatch(RagError, ValueError):
    """Embedding length differs from the dimension established by the store."""

    def __init__(self, expected: int, actual: int) -> None:
        super().__init__(f"Embedding dimension mismatch: expected {expected}, got {actual}")
        self.expected = expected
        self.actual = actual


class DuplicateDocument(RagError):
    def __init__(self, document_id: str) -> None:
        super().__init__(f"Document already stored: {document_id}")
        self.document_id = document_id


class DocumentNotFound(RagError, KeyError):
    def __init__(self, document_id: str) -> None:
        super().__init__(document_id)
        self.document_id = document_id

    def __str__(self) -> str:
        return f"Document not found: {self.document_id}"


class NotInitialized(RagError, RuntimeError):
    """Operation attempted on a component that is not ready (or already closed)."""


class InternalError(RagError):
    pass


class IdCollision(InternalError):
    def __init__(self, document_id: str) -> None:
        super().__init__(f"Generated document id already in use: {document_id}")
        self.document_id = document_id


class CapabilityError(RagError):
    """Failure of an external capability (embedding or generation backend).

    ``retryable`` is set for transient failures such as timeouts.
    """

    def __init__(self, message: str, *, retryable: bool = False) -> None:
        super().__init__(message)
        self.message = message
        self.retryable = retryable


class EmbeddingError(CapabilityError):
    """Raised by embedding ports."""


class CompletionError(CapabilityError):
    """Raised by completion ports."""


class EmbeddingFailed(CapabilityError):
    """Embedding failed while indexing or searching."""


class GenerationFailed(CapabilityError):
    """The completion step of ``ask`` failed."""
