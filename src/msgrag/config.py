"""Application configuration defaults."""

from __future__ import annotations

import os
from dataclasses import dataclass, fields
from typing import Any, Mapping

from msgrag.embedding.encoder import DEFAULT_MODEL
from msgrag.generation.completion import DEFAULT_CHAT_MODEL, DEFAULT_OLLAMA_HOST
from msgrag.index.search import FilterOrder
from msgrag.rag.context import DEFAULT_SEPARATOR

DEFAULT_SYSTEM_PROMPT = (
    "Answer the question using ONLY the provided CONTEXT. "
    "Do NOT add any information not present in the context. "
    "Do NOT use <think> tags. Be concise and direct."
)

ENV_PREFIX = "MSGRAG_"


def _parse_bool(value: str) -> bool:
    lowered = value.strip().lower()
    if lowered in {"1", "true", "yes", "on"}:
        return True
    if lowered in {"0", "false", "no", "off"}:
        return False
    raise ValueError(f"Not a boolean: {value!r}")


def _parse_optional_int(value: str) -> int | None:
    return None if value.strip().lower() in {"", "none"} else int(value)


def _parse_optional_float(value: str) -> float | None:
    return None if value.strip().lower() in {"", "none"} else float(value)


_PARSERS = {
    "request_timeout": float,
    "chunk_chars": _parse_optional_int,
    "search_limit": int,
    "max_distance": _parse_optional_float,
    "filter_order": FilterOrder,
    "strip_reasoning": _parse_bool,
}


@dataclass(slots=True)
class AppConfig:
    embedding_model: str = DEFAULT_MODEL
    chat_model: str = DEFAULT_CHAT_MODEL
    ollama_host: str = DEFAULT_OLLAMA_HOST
    request_timeout: float = 60.0
    # None stores each document as a single chunk
    chunk_chars: int | None = None
    search_limit: int = 5
    max_distance: float | None = 1.2
    filter_order: FilterOrder = FilterOrder.LIMIT_THEN_THRESHOLD
    separator: str = DEFAULT_SEPARATOR
    strip_reasoning: bool = True
    system_prompt: str = DEFAULT_SYSTEM_PROMPT

    def __post_init__(self) -> None:
        if self.search_limit < 1:
            raise ValueError(f"search_limit must be >= 1, got {self.search_limit}")
        if self.chunk_chars is not None and self.chunk_chars < 1:
            raise ValueError(f"chunk_chars must be >= 1, got {self.chunk_chars}")
        self.filter_order = FilterOrder(self.filter_order)

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None, **overrides: Any) -> "AppConfig":
        """Build a config from ``MSGRAG_*`` variables, e.g. ``MSGRAG_SEARCH_LIMIT=8``."""
        environ = os.environ if environ is None else environ
        values: dict[str, Any] = {}
        for item in fields(cls):
            raw = environ.get(ENV_PREFIX + item.name.upper())
            if raw is None:
                continue
            parser = _PARSERS.get(item.name, str)
            values[item.name] = parser(raw)
        values.update(overrides)
        return cls(**values)
