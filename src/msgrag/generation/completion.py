"""Completion port, reasoning-markup cleanup and an Ollama chat adapter."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Protocol, Sequence, runtime_checkable

import httpx

from msgrag.errors import CompletionError
from msgrag.lifecycle import Lifecycle
from msgrag.models import ChatMessage

DEFAULT_CHAT_MODEL = "qwen3:0.6b"
DEFAULT_OLLAMA_HOST = "http://127.0.0.1:11434"

_THINK_BLOCK = re.compile(r"<think>[\s\S]*?</think>\s*", re.IGNORECASE)

logger = logging.getLogger(__name__)


@runtime_checkable
class CompletionPort(Protocol):
    """Generates a reply for an ordered list of chat messages.

    Implementations raise :class:`~msgrag.errors.CompletionError` on failure.
    """

    def complete(self, messages: Sequence[ChatMessage]) -> str: ...


def strip_reasoning(text: str) -> str:
    """Remove ``<think>...</think>`` blocks (and the whitespace after them)."""
    return _THINK_BLOCK.sub("", text).strip()


@dataclass(slots=True)
class CompletionConfig:
    model_name: str = DEFAULT_CHAT_MODEL
    host: str = DEFAULT_OLLAMA_HOST
    timeout: float = 60.0
    temperature: float | None = None


class OllamaChatModel(Lifecycle):
    """Calls a local Ollama server's ``/api/chat`` endpoint.

    Timeouts and connection errors are reported as retryable
    :class:`CompletionError`; HTTP errors and malformed replies are not.
    """

    def __init__(
        self,
        config: CompletionConfig | None = None,
        *,
        client: httpx.Client | None = None,
    ) -> None:
        self.config = config or CompletionConfig()
        self._owns_client = client is None
        self._client = client

    def load(self) -> None:
        if self._client is None:
            self._client = httpx.Client(
                base_url=self.config.host,
                timeout=httpx.Timeout(self.config.timeout),
            )
        self._mark_ready()
        logger.info("Chat model ready: %s at %s", self.config.model_name, self.config.host)

    def close(self) -> None:
        if self._client is not None and self._owns_client:
            self._client.close()
        self._client = None
        self._mark_closed()

    def _payload(self, messages: Sequence[ChatMessage]) -> dict:
        payload: dict = {
            "model": self.config.model_name,
            "messages": [message.to_dict() for message in messages],
            "stream": False,
        }
        if self.config.temperature is not None:
            payload["options"] = {"temperature": self.config.temperature}
        return payload

    def complete(self, messages: Sequence[ChatMessage]) -> str:
        if not self.is_ready:
            self.load()
        assert self._client is not None

        logger.debug("Generating completion for %d messages", len(messages))
        try:
            response = self._client.post("/api/chat", json=self._payload(messages))
            response.raise_for_status()
        except httpx.TimeoutException as exc:
            raise CompletionError(
                f"Completion timed out after {self.config.timeout:.0f}s", retryable=True
            ) from exc
        except httpx.HTTPStatusError as exc:
            raise CompletionError(
                f"Completion failed with HTTP {exc.response.status_code}: {exc.response.text[:200]}",
                retryable=exc.response.status_code >= 500,
            ) from exc
        except httpx.TransportError as exc:
            raise CompletionError(f"Completion backend unreachable: {exc}", retryable=True) from exc

        try:
            data = response.json()
            content = data["message"]["content"]
        except (ValueError, KeyError, TypeError) as exc:
            raise CompletionError(f"Malformed completion response: {exc}") from exc
        if not isinstance(content, str):
            raise CompletionError("Malformed completion response: content is not text")

        logger.debug(
            "Completion generated: %d chars, eval_count=%s", len(content), data.get("eval_count")
        )
        return content
