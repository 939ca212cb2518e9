"""
SQLite implementations of the key-value collaborators.

All three share one database file.  A connection is opened per operation
inside the default executor; SQLite's own locking makes each upsert and
insert-if-absent atomic per key.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import sqlite3
from datetime import datetime
from pathlib import Path
from typing import Iterable

from .context import ContextKey
from .errors import TransientBackendError
from .models import EmittedContentRecord, MemoryRecord, SessionMessage

logger = logging.getLogger(__name__)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS long_term_memory (
    scope TEXT NOT NULL,
    query TEXT NOT NULL,
    actor_id TEXT NOT NULL,
    summary TEXT NOT NULL,
    response TEXT NOT NULL,
    intent TEXT NOT NULL,
    topic TEXT NOT NULL,
    tone TEXT NOT NULL,
    created_at TEXT NOT NULL,
    last_cached_at TEXT NOT NULL,
    PRIMARY KEY (scope, query)
);
CREATE TABLE IF NOT EXISTS emitted_content (
    text TEXT PRIMARY KEY,
    created_at TEXT NOT NULL
);
CREATE TABLE IF NOT EXISTS session_messages (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    actor_id TEXT NOT NULL,
    role TEXT NOT NULL,
    content TEXT NOT NULL,
    created_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_session_actor ON session_messages (actor_id, id);
"""


class SQLiteDatabase:
    """Connection handling shared by the SQLite stores."""

    def __init__(self, db_path: str) -> None:
        if str(db_path).strip() == ":memory:":
            # Every operation opens its own connection, so an in-memory
            # database would vanish between calls.
            raise ValueError(
                "':memory:' is not supported, use the in-memory stores instead"
            )
        self.db_path = db_path
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        with self._connect() as conn:
            conn.executescript(_SCHEMA)

    @contextlib.contextmanager
    def _connect(self):
        """Yield a connection; commit on success, roll back on error, always close."""
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA busy_timeout=5000")
        try:
            yield conn
            conn.commit()
        except Exception as exc:
            logger.debug("Transaction failed, rolling back: %s", exc)
            conn.rollback()
            raise
        finally:
            conn.close()

    async def _run(self, fn, *args):
        loop = asyncio.get_running_loop()
        try:
            return await loop.run_in_executor(None, fn, *args)
        except sqlite3.Error as exc:
            raise TransientBackendError(f"SQLite request failed: {exc}") from exc


def _row_to_record(row: sqlite3.Row) -> MemoryRecord:
    return MemoryRecord(
        actor_id=row["actor_id"],
        normalized_query=row["query"],
        summary=row["summary"],
        response=row["response"],
        context=ContextKey.from_metadata(row),
        created_at=datetime.fromisoformat(row["created_at"]),
        last_cached_at=datetime.fromisoformat(row["last_cached_at"]),
    )


class SQLiteExactStore(SQLiteDatabase):
    async def get(self, scope: str, normalized_query: str) -> MemoryRecord | None:
        return await self._run(self._get, scope, normalized_query)

    def _get(self, scope: str, normalized_query: str) -> MemoryRecord | None:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM long_term_memory WHERE scope = ? AND query = ?",
                (scope, normalized_query),
            ).fetchone()
        return _row_to_record(row) if row else None

    async def upsert(self, scope: str, record: MemoryRecord) -> None:
        await self._run(self._upsert, scope, record)

    def _upsert(self, scope: str, record: MemoryRecord) -> None:
        ctx = record.context.to_metadata()
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO long_term_memory (
                    scope, query, actor_id, summary, response,
                    intent, topic, tone, created_at, last_cached_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT (scope, query) DO UPDATE SET
                    actor_id = excluded.actor_id,
                    summary = excluded.summary,
                    response = excluded.response,
                    intent = excluded.intent,
                    topic = excluded.topic,
                    tone = excluded.tone,
                    last_cached_at = excluded.last_cached_at
                """,
                (
                    scope,
                    record.normalized_query,
                    record.actor_id,
                    record.summary,
                    record.response,
                    ctx["intent"],
                    ctx["topic"],
                    ctx["tone"],
                    record.created_at.isoformat(),
                    record.last_cached_at.isoformat(),
                ),
            )


class SQLiteEmittedStore(SQLiteDatabase):
    async def exists(self, normalized_text: str) -> bool:
        return await self._run(self._exists, normalized_text)

    def _exists(self, normalized_text: str) -> bool:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT 1 FROM emitted_content WHERE text = ?", (normalized_text,)
            ).fetchone()
        return row is not None

    async def insert_if_absent(self, normalized_text: str, created_at: datetime) -> bool:
        return await self._run(self._insert_if_absent, normalized_text, created_at)

    def _insert_if_absent(self, normalized_text: str, created_at: datetime) -> bool:
        with self._connect() as conn:
            cursor = conn.execute(
                "INSERT OR IGNORE INTO emitted_content (text, created_at) VALUES (?, ?)",
                (normalized_text, created_at.isoformat()),
            )
            return cursor.rowcount == 1

    async def recent(self, limit: int) -> list[EmittedContentRecord]:
        return await self._run(self._recent, limit)

    def _recent(self, limit: int) -> list[EmittedContentRecord]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT text, created_at FROM emitted_content "
                "ORDER BY created_at DESC, rowid DESC LIMIT ?",
                (limit,),
            ).fetchall()
        return [
            EmittedContentRecord(row["text"], datetime.fromisoformat(row["created_at"]))
            for row in rows
        ]


class SQLiteSessionHistory(SQLiteDatabase):
    async def append(self, actor_id: str, messages: Iterable[SessionMessage]) -> None:
        await self._run(self._append, actor_id, list(messages))

    def _append(self, actor_id: str, messages: list[SessionMessage]) -> None:
        with self._connect() as conn:
            conn.executemany(
                "INSERT INTO session_messages (actor_id, role, content, created_at) "
                "VALUES (?, ?, ?, ?)",
                [(actor_id, m.role, m.content, m.created_at.isoformat()) for m in messages],
            )

    async def get(self, actor_id: str, limit: int | None = None) -> list[SessionMessage]:
        return await self._run(self._get, actor_id, limit)

    def _get(self, actor_id: str, limit: int | None) -> list[SessionMessage]:
        with self._connect() as conn:
            if limit is None:
                rows = conn.execute(
                    "SELECT role, content, created_at FROM session_messages "
                    "WHERE actor_id = ? ORDER BY id",
                    (actor_id,),
                ).fetchall()
            else:
                rows = conn.execute(
                    "SELECT role, content, created_at FROM ("
                    "  SELECT id, role, content, created_at FROM session_messages"
                    "  WHERE actor_id = ? ORDER BY id DESC LIMIT ?"
                    ") ORDER BY id",
                    (actor_id, max(limit, 0)),
                ).fetchall()
        return [
            SessionMessage(row["role"], row["content"], datetime.fromisoformat(row["created_at"]))
            for row in rows
        ]
