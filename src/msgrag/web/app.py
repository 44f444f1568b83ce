"""FastAPI application exposing the msgrag engine over HTTP."""

from __future__ import annotations

import asyncio
import logging
import threading
from typing import Any, Dict, List

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from msgrag import __version__
from msgrag.config import AppConfig
from msgrag.embedding.encoder import EmbeddingConfig, EmbeddingModel
from msgrag.errors import (
    CapabilityError,
    DimensionMismatch,
    DocumentNotFound,
    DuplicateDocument,
    NotInitialized,
    RagError,
    ValidationError,
)
from msgrag.generation.completion import CompletionConfig, OllamaChatModel
from msgrag.index.indexer import BatchOutcome
from msgrag.index.search import FilterOrder
from msgrag.ingestion.messages import MessageRecord
from msgrag.models import SearchResult
from msgrag.rag.engine import RagEngine

LOGGER = logging.getLogger(__name__)

MAX_LIMIT = 50

app = FastAPI(title="msgrag", version=__version__)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)

_engine: RagEngine | None = None
_engine_lock = threading.Lock()


class DocumentPayload(BaseModel):
    content: str
    name: str | None = None


class BatchPayload(BaseModel):
    documents: List[str]
    name_prefix: str = "doc"


class MessagesPayload(BaseModel):
    messages: List[Dict[str, Any]]


class SearchPayload(BaseModel):
    query: str
    limit: int = 10
    max_distance: float | None = Field(default=None, ge=0)
    threshold_first: bool = False


class AskPayload(BaseModel):
    query: str


def _build_engine(config: AppConfig) -> RagEngine:
    embedder = EmbeddingModel(EmbeddingConfig(model_name=config.embedding_model))
    completer = OllamaChatModel(
        CompletionConfig(
            model_name=config.chat_model,
            host=config.ollama_host,
            timeout=config.request_timeout,
        )
    )
    return RagEngine(embedder, completer, config=config)


def get_engine() -> RagEngine:
    """Process-wide engine, created and initialized on first use."""
    global _engine
    with _engine_lock:
        if _engine is None:
            engine = _build_engine(AppConfig.from_env())
            engine.initialize()
            _engine = engine
    return _engine


def _status_for(exc: RagError) -> int:
    if isinstance(exc, ValidationError):
        return 400
    if isinstance(exc, DocumentNotFound):
        return 404
    if isinstance(exc, (DimensionMismatch, DuplicateDocument)):
        return 409
    if isinstance(exc, NotInitialized):
        return 503
    if isinstance(exc, CapabilityError):
        return 504 if exc.retryable else 502
    return 500


@app.exception_handler(RagError)
async def rag_error_handler(request: Request, exc: RagError) -> JSONResponse:
    status = _status_for(exc)
    if status >= 500:
        LOGGER.error("%s %s failed: %s", request.method, request.url.path, exc)
    return JSONResponse(
        status_code=status,
        content={"detail": str(exc), "error": type(exc).__name__},
    )


@app.on_event("startup")
async def startup_event() -> None:
    logging.basicConfig(level=logging.INFO, format="[%(levelname)s] %(message)s")


def _result_dict(result: SearchResult) -> dict[str, Any]:
    return {
        "document_id": result.document_id,
        "chunk_index": result.chunk_index,
        "distance": result.distance,
        "content": result.content,
    }


def _batch_dict(outcome: BatchOutcome) -> dict[str, Any]:
    return {
        "stored": len(outcome.document_ids),
        "failed": len(outcome.failures),
        "items": [
            {
                "position": item.position,
                "document_id": item.document_id,
                "status": item.status,
                "error": str(item.error) if item.error is not None else None,
            }
            for item in outcome.items
        ],
    }


@app.post("/documents")
async def store_document(
    payload: DocumentPayload, engine: RagEngine = Depends(get_engine)
) -> dict[str, Any]:
    document_id = await asyncio.to_thread(engine.store_document, payload.content, payload.name)
    return {"status": "ok", "document_id": document_id}


@app.post("/documents/batch")
async def store_documents(
    payload: BatchPayload, engine: RagEngine = Depends(get_engine)
) -> dict[str, Any]:
    outcome = await asyncio.to_thread(
        engine.store_documents, payload.documents, name_prefix=payload.name_prefix
    )
    return _batch_dict(outcome)


@app.post("/messages")
async def store_messages(
    payload: MessagesPayload, engine: RagEngine = Depends(get_engine)
) -> dict[str, Any]:
    try:
        records = [MessageRecord.from_mapping(item) for item in payload.messages]
    except (TypeError, ValueError) as exc:
        raise HTTPException(status_code=400, detail=f"Invalid message: {exc}") from exc
    outcome = await asyncio.to_thread(engine.store_messages, records)
    return _batch_dict(outcome)


@app.get("/documents")
async def list_documents(engine: RagEngine = Depends(get_engine)) -> dict[str, Any]:
    """List all stored documents."""
    documents = [
        {
            "id": summary.id,
            "size": summary.size,
            "chunk_count": summary.chunk_count,
            "created_at": summary.created_at.isoformat(),
            "preview": summary.preview,
        }
        for summary in engine.all_documents()
    ]
    return {"documents": documents, "stats": engine.store.get_stats()}


@app.delete("/documents/{doc_id}")
async def delete_document(doc_id: str, engine: RagEngine = Depends(get_engine)) -> dict[str, Any]:
    """Delete a document by its ID."""
    engine.remove_document(doc_id)
    return {"status": "ok", "deleted_id": doc_id}


@app.delete("/documents")
async def clear_documents(engine: RagEngine = Depends(get_engine)) -> dict[str, Any]:
    removed = engine.clear()
    return {"status": "ok", "removed_count": removed}


@app.post("/search")
async def search_documents(
    payload: SearchPayload, engine: RagEngine = Depends(get_engine)
) -> dict[str, Any]:
    query = payload.query.strip()
    if not query:
        raise HTTPException(status_code=400, detail="Empty query")

    limit = max(1, min(payload.limit, MAX_LIMIT))
    order = (
        FilterOrder.THRESHOLD_THEN_LIMIT
        if payload.threshold_first
        else FilterOrder.LIMIT_THEN_THRESHOLD
    )
    results = await asyncio.to_thread(
        engine.search, query, limit=limit, max_distance=payload.max_distance, order=order
    )
    return {"results": [_result_dict(result) for result in results]}


@app.post("/ask")
async def ask(payload: AskPayload, engine: RagEngine = Depends(get_engine)) -> dict[str, Any]:
    query = payload.query.strip()
    if not query:
        raise HTTPException(status_code=400, detail="Empty query")

    answer = await asyncio.to_thread(engine.ask, query)
    return {
        "status": answer.status.value,
        "answer": answer.text,
        "sources": [_result_dict(result) for result in answer.sources],
    }
