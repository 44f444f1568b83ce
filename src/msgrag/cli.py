"""Command line interface for msgrag."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import List, Optional

import typer
from rich.console import Console
from rich.table import Table

from msgrag.config import AppConfig
from msgrag.embedding.encoder import EmbeddingConfig, EmbeddingModel
from msgrag.errors import CapabilityError, RagError
from msgrag.generation.completion import CompletionConfig, OllamaChatModel
from msgrag.index.search import FilterOrder
from msgrag.rag.engine import RagEngine
from msgrag.utils.files import iter_message_files
from msgrag.web.app import app as web_app

console = Console()
app = typer.Typer(help="msgrag - ask questions about your messages")


def _setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(level=level, format="[%(levelname)s] %(message)s")


def _build_engine(config: AppConfig, *, with_completion: bool) -> RagEngine:
    embedder = EmbeddingModel(EmbeddingConfig(model_name=config.embedding_model))
    completer = None
    if with_completion:
        completer = OllamaChatModel(
            CompletionConfig(
                model_name=config.chat_model,
                host=config.ollama_host,
                timeout=config.request_timeout,
            )
        )
    return RagEngine(embedder, completer, config=config)


def _find_inputs(inputs: List[Path]) -> List[Path]:
    files = list(iter_message_files(inputs))
    if not files:
        console.print("[yellow]No message files found.[/yellow]")
    return files


def _load_inputs(engine: RagEngine, files: List[Path]) -> None:
    stats = engine.indexer.index(files)
    console.print(
        f"Loaded {engine.document_count()} messages "
        f"(inserted: {stats.inserted}, updated: {stats.updated}, failed: {stats.failed})"
    )


def _fail(exc: RagError) -> None:
    label = "Backend error" if isinstance(exc, CapabilityError) else "Error"
    console.print(f"[red]{label}:[/red] {exc}")
    raise typer.Exit(code=1)


@app.command()
def search(
    inputs: List[Path] = typer.Argument(
        ..., help="Message export files (.json/.jsonl) or folders.", resolve_path=True
    ),
    query: str = typer.Option(..., "--query", "-q", help="Query text"),
    limit: int = typer.Option(10, help="Number of results to display"),
    max_distance: Optional[float] = typer.Option(None, help="Drop results farther than this"),
    threshold_first: bool = typer.Option(
        False, "--threshold-first", help="Apply the distance threshold before the limit"
    ),
    model: str = typer.Option(AppConfig().embedding_model, help="Sentence-transformer model name"),
    chunk_chars: Optional[int] = typer.Option(None, help="Chunk size in characters"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose logging"),
) -> None:
    """Run a semantic search over message exports."""
    _setup_logging(verbose)
    config = AppConfig.from_env(embedding_model=model, chunk_chars=chunk_chars)
    order = FilterOrder.THRESHOLD_THEN_LIMIT if threshold_first else FilterOrder.LIMIT_THEN_THRESHOLD

    files = _find_inputs(inputs)
    if not files:
        return

    try:
        with _build_engine(config, with_completion=False) as engine:
            _load_inputs(engine, files)
            results = engine.search(query, limit=limit, max_distance=max_distance, order=order)
    except RagError as exc:
        _fail(exc)

    if not results:
        console.print("[yellow]No matches found.[/yellow]")
        return

    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Distance")
    table.add_column("Document")
    table.add_column("Chunk")
    table.add_column("Snippet")

    for result in results:
        snippet = result.content.replace("\n", " ")
        table.add_row(
            f"{result.distance:.4f}", result.document_id, str(result.chunk_index), snippet[:180]
        )

    console.print(table)


@app.command()
def ask(
    inputs: List[Path] = typer.Argument(
        ..., help="Message export files (.json/.jsonl) or folders.", resolve_path=True
    ),
    query: str = typer.Option(..., "--query", "-q", help="Question to answer"),
    model: str = typer.Option(AppConfig().embedding_model, help="Sentence-transformer model name"),
    chat_model: str = typer.Option(AppConfig().chat_model, help="Ollama chat model"),
    host: str = typer.Option(AppConfig().ollama_host, help="Ollama server URL"),
    limit: int = typer.Option(AppConfig().search_limit, help="Chunks retrieved as context"),
    max_distance: Optional[float] = typer.Option(AppConfig().max_distance, help="Distance threshold"),
    sources: bool = typer.Option(False, "--sources", help="Show the retrieved messages"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose logging"),
) -> None:
    """Answer a question from message exports."""
    _setup_logging(verbose)
    config = AppConfig.from_env(
        embedding_model=model,
        chat_model=chat_model,
        ollama_host=host,
        search_limit=limit,
        max_distance=max_distance,
    )

    files = _find_inputs(inputs)
    if not files:
        return

    try:
        with _build_engine(config, with_completion=True) as engine:
            _load_inputs(engine, files)
            answer = engine.ask(query)
    except RagError as exc:
        _fail(exc)

    if not answer.found:
        console.print(f"[yellow]{answer.text}[/yellow]")
        return

    console.print(answer.text)
    if sources:
        for result in answer.sources:
            console.print(f"[dim]{result.distance:.4f}  {result.document_id}[/dim]")


@app.command()
def documents(
    inputs: List[Path] = typer.Argument(
        ..., help="Message export files (.json/.jsonl) or folders.", resolve_path=True
    ),
    model: str = typer.Option(AppConfig().embedding_model, help="Sentence-transformer model name"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose logging"),
) -> None:
    """List the documents built from message exports."""
    _setup_logging(verbose)
    config = AppConfig.from_env(embedding_model=model)

    files = _find_inputs(inputs)
    if not files:
        return

    try:
        with _build_engine(config, with_completion=False) as engine:
            _load_inputs(engine, files)
            summaries = engine.all_documents()
    except RagError as exc:
        _fail(exc)

    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Document")
    table.add_column("Size")
    table.add_column("Chunks")
    table.add_column("Preview")
    for summary in summaries:
        table.add_row(
            summary.id, str(summary.size), str(summary.chunk_count), summary.preview.replace("\n", " ")[:120]
        )
    console.print(table)


@app.command()
def web(
    host: str = typer.Option("127.0.0.1", help="Host interface"),
    port: int = typer.Option(8000, help="Server port"),
) -> None:
    """Start the HTTP API."""
    import uvicorn

    console.print(f"Starting msgrag API on http://{host}:{port}")
    uvicorn.run(
        web_app,
        host=host,
        port=port,
        reload=False,
        log_level="info",
    )
