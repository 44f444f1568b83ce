"""Message records and loaders for exported message files.

Exports are either a JSON array of objects or JSON Lines, one object per line,
with ``address``, ``body``, ``date`` (epoch milliseconds or ISO 8601) and an
optional integer ``type``.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping

LOGGER = logging.getLogger(__name__)


def _from_epoch_millis(value: float) -> datetime:
    try:
        return datetime.fromtimestamp(value / 1000, tz=timezone.utc)
    except (OverflowError, OSError, ValueError) as exc:
        raise ValueError(f"Invalid message date: {value!r}") from exc


def _parse_date(value: Any) -> datetime | None:
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        raise ValueError(f"Invalid message date: {value!r}")
    if isinstance(value, (int, float)):
        return _from_epoch_millis(value)
    if isinstance(value, str):
        if value.strip().lstrip("-").isdigit():
            return _from_epoch_millis(int(value))
        parsed = datetime.fromisoformat(value)
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    raise ValueError(f"Invalid message date: {value!r}")


@dataclass(frozen=True, slots=True)
class MessageRecord:
    address: str
    body: str
    date: datetime | None = None
    type: int | None = None

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "MessageRecord":
        address = data.get("address")
        body = data.get("body")
        kind = data.get("type")
        if kind is not None:
            try:
                kind = int(kind)
            except (TypeError, ValueError, OverflowError) as exc:
                raise ValueError(f"Invalid message type: {kind!r}") from exc
        return cls(
            address=str(address) if address is not None else "Unknown",
            body=str(body) if body is not None else "",
            date=_parse_date(data.get("date")),
            type=kind,
        )

    def to_mapping(self) -> Dict[str, Any]:
        return {
            "address": self.address,
            "body": self.body,
            "date": int(self.date.timestamp() * 1000) if self.date else None,
            "type": self.type,
        }

    def to_document(self) -> str:
        """Render the record as text suitable for indexing."""
        date = self.date.isoformat(sep=" ") if self.date else "Unknown date"
        return f"From: {self.address}\nDate: {date}\nMessage: {self.body}\n"


def load_messages(path: Path) -> List[MessageRecord]:
    """Read message records from a JSON array or JSON Lines file."""
    text = Path(path).read_text(encoding="utf-8")
    stripped = text.lstrip()
    if not stripped:
        return []

    if stripped.startswith("["):
        items = json.loads(text)
    else:
        items = [json.loads(line) for line in text.splitlines() if line.strip()]

    records: List[MessageRecord] = []
    for item in items:
        if not isinstance(item, Mapping):
            raise ValueError(f"Expected an object per message in {path}, got {type(item).__name__}")
        records.append(MessageRecord.from_mapping(item))
    LOGGER.debug("Loaded %d messages from %s", len(records), path)
    return records


def group_by_sender(records: Iterable[MessageRecord]) -> Dict[str, List[MessageRecord]]:
    grouped: Dict[str, List[MessageRecord]] = {}
    for record in records:
        grouped.setdefault(record.address, []).append(record)
    return grouped


def conversation_with(records: Iterable[MessageRecord], address: str) -> List[MessageRecord]:
    return [r for r in records if r.address == address]


def filter_by_date(
    records: Iterable[MessageRecord], start: datetime, end: datetime
) -> List[MessageRecord]:
    """Records strictly between ``start`` and ``end``; undated records are dropped."""
    return [r for r in records if r.date is not None and start < r.date < end]


def search_messages(records: Iterable[MessageRecord], query: str) -> List[MessageRecord]:
    """Case-insensitive substring match on message bodies."""
    needle = query.lower()
    return [r for r in records if needle in r.body.lower()]
