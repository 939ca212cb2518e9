"""
Key-value collaborators: the exact tier, emitted content and session history.

Each protocol has an in-memory implementation here; durable SQLite versions
live in ``persona_memory.sqlite``.  Implementations raise
``TransientBackendError`` when the backend is unreachable.
"""

from __future__ import annotations

from dataclasses import replace
from datetime import datetime
from typing import Iterable, Protocol

from .models import EmittedContentRecord, MemoryRecord, SessionMessage


class ExactMemoryStore(Protocol):
    async def get(self, scope: str, normalized_query: str) -> MemoryRecord | None:
        ...

    async def upsert(self, scope: str, record: MemoryRecord) -> None:
        """
        Insert or replace the row for (scope, record.normalized_query).

        The first ``created_at`` of a row is kept across replacements.
        """
        ...


class EmittedContentStore(Protocol):
    async def exists(self, normalized_text: str) -> bool:
        ...

    async def insert_if_absent(self, normalized_text: str, created_at: datetime) -> bool:
        """Insert the text; return ``False`` when it was already present."""
        ...

    async def recent(self, limit: int) -> list[EmittedContentRecord]:
        """Newest first."""
        ...


class SessionHistory(Protocol):
    async def append(self, actor_id: str, messages: Iterable[SessionMessage]) -> None:
        ...

    async def get(self, actor_id: str, limit: int | None = None) -> list[SessionMessage]:
        """Oldest first; with *limit*, only the last *limit* messages."""
        ...


class InMemoryExactStore:
    def __init__(self) -> None:
        self._rows: dict[tuple[str, str], MemoryRecord] = {}

    async def get(self, scope: str, normalized_query: str) -> MemoryRecord | None:
        return self._rows.get((scope, normalized_query))

    async def upsert(self, scope: str, record: MemoryRecord) -> None:
        key = (scope, record.normalized_query)
        existing = self._rows.get(key)
        if existing is not None:
            record = replace(record, created_at=existing.created_at)
        self._rows[key] = record

    def __len__(self) -> int:
        return len(self._rows)


class InMemoryEmittedStore:
    def __init__(self) -> None:
        self._rows: dict[str, EmittedContentRecord] = {}

    async def exists(self, normalized_text: str) -> bool:
        return normalized_text in self._rows

    async def insert_if_absent(self, normalized_text: str, created_at: datetime) -> bool:
        if normalized_text in self._rows:
            return False
        self._rows[normalized_text] = EmittedContentRecord(normalized_text, created_at)
        return True

    async def recent(self, limit: int) -> list[EmittedContentRecord]:
        # dicts keep insertion order, which is emission order
        return list(reversed(self._rows.values()))[:limit]


class InMemorySessionHistory:
    def __init__(self) -> None:
        self._messages: dict[str, list[SessionMessage]] = {}

    async def append(self, actor_id: str, messages: Iterable[SessionMessage]) -> None:
        self._messages.setdefault(actor_id, []).extend(messages)

    async def get(self, actor_id: str, limit: int | None = None) -> list[SessionMessage]:
        messages = self._messages.get(actor_id, [])
        if limit is not None:
            messages = messages[-limit:] if limit > 0 else []
        return list(messages)
