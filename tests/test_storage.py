"""Tests for InMemoryChunkStore."""

from __future__ import annotations

import threading
from unittest.mock import patch

import numpy as np
import pytest

from msgrag.errors import (
    DimensionMismatch,
    DocumentNotFound,
    DuplicateDocument,
    EmptyContent,
    NotInitialized,
    ValidationError,
)
from msgrag.index.storage import InMemoryChunkStore, _stack
from msgrag.lifecycle import LifecycleState


def _insert(store, doc_id="doc", content="hello world", vector=(1.0, 0.0), **kwargs):
    return store.insert(doc_id, content, [content], [list(vector)], **kwargs)


class TestInsert:
    """Test inserting documents."""

    def test_insert_new_document(self, store: InMemoryChunkStore) -> None:
        """Should store the document and report it as inserted."""
        document, status = _insert(store)

        assert status == "inserted"
        assert document.id == "doc"
        assert document.chunk_count == 1
        assert document.chunks[0].document_id == "doc"
        assert document.chunks[0].index == 0
        assert store.document_count == 1
        assert store.dimension == 2

    def test_insert_multiple_chunks(self, store: InMemoryChunkStore) -> None:
        """Should keep chunk order and indexes."""
        document, _ = store.insert(
            "doc", "abc def", ["abc ", "def"], np.array([[1, 0, 0], [0, 1, 0]], dtype="float32")
        )

        assert [c.index for c in document.chunks] == [0, 1]
        assert document.reconstructed_content == "abc def"
        assert store.chunk_count == 2

    def test_dimension_mismatch(self, store: InMemoryChunkStore) -> None:
        """Should reject embeddings whose dimension differs from the store's."""
        _insert(store, "a")

        with pytest.raises(DimensionMismatch) as exc_info:
            _insert(store, "b", vector=(1.0, 0.0, 0.0))

        assert exc_info.value.expected == 2
        assert exc_info.value.actual == 3
        assert store.document_count == 1
        assert "b" not in store

    def test_ragged_embeddings_in_one_document(self, store: InMemoryChunkStore) -> None:
        """Should reject a document whose chunks have different dimensions."""
        with pytest.raises(DimensionMismatch):
            store.insert("doc", "ab cd", ["ab ", "cd"], [[1.0, 0.0], [1.0, 0.0, 0.0]])
        assert store.document_count == 0
        assert store.dimension is None

    def test_preset_dimension(self) -> None:
        """Should enforce a dimension given at construction."""
        store = InMemoryChunkStore(dimension=3)
        with pytest.raises(DimensionMismatch):
            _insert(store)

    def test_empty_content(self, store: InMemoryChunkStore) -> None:
        """Should reject empty content."""
        with pytest.raises(EmptyContent):
            store.insert("doc", "", [], [])
        assert store.document_count == 0

    def test_blank_content(self, store: InMemoryChunkStore) -> None:
        """Should reject whitespace-only content."""
        with pytest.raises(EmptyContent):
            store.insert("doc", "   ", ["   "], [[1.0, 0.0]])

    def test_empty_chunk(self, store: InMemoryChunkStore) -> None:
        """Should reject empty chunks."""
        with pytest.raises(EmptyContent):
            store.insert("doc", "abc", ["abc", ""], [[1.0], [1.0]])

    def test_length_mismatch(self, store: InMemoryChunkStore) -> None:
        """Should reject a different number of chunks and embeddings."""
        with pytest.raises(ValueError, match="length mismatch"):
            store.insert("doc", "abc", ["abc"], [[1.0], [2.0]])

    def test_chunks_must_reconstruct_content(self, store: InMemoryChunkStore) -> None:
        """Should reject chunks that are not a split of the content."""
        with pytest.raises(ValueError, match="reconstruct"):
            store.insert("doc", "abc", ["abd"], [[1.0]])

    def test_replace_existing(self, store: InMemoryChunkStore) -> None:
        """Should overwrite an existing document and keep its position."""
        _insert(store, "a", "first")
        _insert(store, "b", "second")

        document, status = _insert(store, "a", "replaced")

        assert status == "updated"
        assert document.content == "replaced"
        assert [d.id for d in store.all_documents()] == ["a", "b"]
        assert [c.content for c in store.all_chunks()] == ["replaced", "second"]

    def test_reject_duplicate(self, store: InMemoryChunkStore) -> None:
        """Should raise DuplicateDocument when replace is disabled."""
        _insert(store, "a")

        with pytest.raises(DuplicateDocument):
            _insert(store, "a", "other", replace=False)
        assert store.get_document("a").content == "hello world"

    @pytest.mark.parametrize("value", [float("nan"), float("inf")])
    def test_non_finite_embedding(self, store: InMemoryChunkStore, value: float) -> None:
        """Non-finite vectors are rejected and nothing is stored."""
        with pytest.raises(ValidationError):
            _insert(store, vector=(value, 1.0))
        assert store.document_count == 0
        assert store.dimension is None

    def test_embeddings_are_read_only(self, store: InMemoryChunkStore) -> None:
        """Stored embeddings should not be writable."""
        document, _ = _insert(store)
        with pytest.raises(ValueError):
            document.chunks[0].embedding[0] = 5.0


class TestQueries:
    """Test read operations."""

    def test_all_documents_in_insertion_order(self, store: InMemoryChunkStore) -> None:
        """Should list summaries in insertion order."""
        _insert(store, "b", "bravo")
        _insert(store, "a", "alpha")

        summaries = store.all_documents()

        assert [s.id for s in summaries] == ["b", "a"]
        assert summaries[0].content == "bravo"
        assert summaries[0].size == 5
        assert summaries[0].chunk_count == 1

    def test_all_chunks_is_restartable(self, store: InMemoryChunkStore) -> None:
        """Should yield the same chunks on every call."""
        _insert(store, "a", "alpha")
        _insert(store, "b", "bravo")

        first = [c.content for c in store.all_chunks()]
        second = [c.content for c in store.all_chunks()]

        assert first == second == ["alpha", "bravo"]

    def test_iteration_sees_snapshot(self, store: InMemoryChunkStore) -> None:
        """An iterator started before an insert should not see the new document."""
        _insert(store, "a", "alpha")
        chunks = store.all_chunks()

        _insert(store, "b", "bravo")

        assert [c.document_id for c in chunks] == ["a"]

    def test_snapshot_matrix(self, store: InMemoryChunkStore) -> None:
        """Snapshot matrix rows should follow chunk order."""
        _insert(store, "a", "alpha", (1.0, 0.0))
        _insert(store, "b", "bravo", (0.0, 1.0))

        snapshot = store.snapshot()

        np.testing.assert_array_equal(snapshot.matrix, [[1.0, 0.0], [0.0, 1.0]])
        assert [c.document_id for c in snapshot.chunks] == ["a", "b"]

    def test_matrix_after_replace_and_remove(self, store: InMemoryChunkStore) -> None:
        """Rows should track chunks through replace and remove."""
        _insert(store, "a", "alpha", (1.0, 0.0))
        _insert(store, "b", "bravo", (0.0, 1.0))
        _insert(store, "c", "charlie", (0.5, 0.5))
        store.snapshot().matrix

        _insert(store, "a", "alpha two", (0.2, 0.8))
        store.remove_document("b")
        _insert(store, "d", "delta", (0.3, 0.3))

        snapshot = store.snapshot()
        assert [c.document_id for c in snapshot.chunks] == ["a", "c", "d"]
        np.testing.assert_allclose(snapshot.matrix, [[0.2, 0.8], [0.5, 0.5], [0.3, 0.3]], rtol=1e-6)

    def test_matrix_built_once_per_snapshot(self, store: InMemoryChunkStore) -> None:
        """Inserts alone never stack embeddings; a snapshot stacks them at most once."""
        with patch("msgrag.index.storage._stack", wraps=_stack) as mock_stack:
            for i in range(5):
                _insert(store, f"doc{i}", f"text {i}", (float(i), 1.0))
            assert mock_stack.call_count == 0

            snapshot = store.snapshot()
            first = snapshot.matrix
            assert snapshot.matrix is first
            assert mock_stack.call_count == 1
        assert first.shape == (5, 2)
        assert not first.flags.writeable

    def test_old_snapshot_unchanged_by_insert(self, store: InMemoryChunkStore) -> None:
        _insert(store, "a", "alpha", (1.0, 0.0))
        before = store.snapshot()

        _insert(store, "b", "bravo", (0.0, 1.0))

        assert len(before) == 1
        assert before.matrix.shape == (1, 2)
        assert store.snapshot().matrix.shape == (2, 2)

    def test_empty_snapshot(self, store: InMemoryChunkStore) -> None:
        """An empty store should have no matrix."""
        assert store.snapshot().matrix is None
        assert list(store.all_chunks()) == []

    def test_get_missing_document(self, store: InMemoryChunkStore) -> None:
        """Should raise DocumentNotFound."""
        with pytest.raises(DocumentNotFound):
            store.get_document("missing")

    def test_get_stats(self, store: InMemoryChunkStore) -> None:
        """Should report counts, size and dimension."""
        _insert(store, "a", "alpha")

        assert store.get_stats() == {
            "document_count": 1,
            "chunk_count": 1,
            "total_size_bytes": 5,
            "dimension": 2,
        }


class TestRemoval:
    """Test removal operations."""

    def test_remove_document(self, store: InMemoryChunkStore) -> None:
        """Should remove the document and its chunks."""
        _insert(store, "a", "alpha")
        _insert(store, "b", "bravo")

        removed = store.remove_document("a")

        assert removed.id == "a"
        assert [d.id for d in store.all_documents()] == ["b"]
        assert [c.document_id for c in store.all_chunks()] == ["b"]
        assert store.snapshot().matrix.shape == (1, 2)

    def test_remove_missing(self, store: InMemoryChunkStore) -> None:
        """Should raise DocumentNotFound for unknown ids."""
        with pytest.raises(DocumentNotFound):
            store.remove_document("missing")

    def test_clear(self, store: InMemoryChunkStore) -> None:
        """Should remove everything but keep the dimension."""
        _insert(store, "a")
        _insert(store, "b")

        assert store.clear() == 2
        assert store.document_count == 0
        assert store.dimension == 2
        with pytest.raises(DimensionMismatch):
            _insert(store, "c", vector=(1.0, 0.0, 0.0))


class TestLifecycle:
    """Test close semantics."""

    def test_ready_on_construction(self, store: InMemoryChunkStore) -> None:
        assert store.state is LifecycleState.READY

    def test_closed_store_rejects_operations(self, store: InMemoryChunkStore) -> None:
        """Should raise NotInitialized after close."""
        _insert(store)
        store.close()

        assert store.state is LifecycleState.CLOSED
        with pytest.raises(NotInitialized):
            store.all_documents()
        with pytest.raises(NotInitialized):
            _insert(store, "other")


class TestConcurrency:
    """Test concurrent writers and readers."""

    def test_concurrent_inserts(self, store: InMemoryChunkStore) -> None:
        """Every insert from several threads should be kept."""

        def worker(offset: int) -> None:
            for i in range(25):
                _insert(store, f"doc-{offset}-{i}", f"content {offset} {i}")

        threads = [threading.Thread(target=worker, args=(n,)) for n in range(4)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert store.document_count == 100
        snapshot = store.snapshot()
        assert snapshot.matrix.shape == (100, 2)
        assert all(chunk.document_id == doc.id for doc in snapshot.documents for chunk in doc.chunks)
