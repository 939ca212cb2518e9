"""
Composition root: build the stores once and hand them to the tiers.

The answer cache is built on first use.  Commands that only touch the
duplicate guard or the session history never open ChromaDB or load the
embedding model.
"""

from __future__ import annotations

import logging
from typing import Awaitable, Callable

from .config import MemoryConfig
from .dedup import DeduplicationGuard
from .embeddings import SentenceTransformerEmbeddingProvider
from .memory import TieredMemoryCache
from .models import AdmissionOutcome, Resolution, SessionMessage
from .records import SessionHistory
from .sqlite import SQLiteEmittedStore, SQLiteExactStore, SQLiteSessionHistory
from .store import VectorStore

logger = logging.getLogger(__name__)

#: Number of earlier messages handed to a generator as conversation context.
HISTORY_LIMIT = 20


class MemoryServices:
    """
    The answer cache, duplicate guard and session history of one deployment.

    Pass either a ready *cache* or a *cache_factory* that builds it on first
    access of :attr:`cache`.
    """

    def __init__(
        self,
        guard: DeduplicationGuard,
        history: SessionHistory,
        cache: TieredMemoryCache | None = None,
        cache_factory: Callable[[], TieredMemoryCache] | None = None,
    ) -> None:
        if cache is None and cache_factory is None:
            raise ValueError("either cache or cache_factory is required")
        self.guard = guard
        self.history = history
        self._cache = cache
        self._cache_factory = cache_factory

    @property
    def cache(self) -> TieredMemoryCache:
        if self._cache is None:
            self._cache = self._cache_factory()
        return self._cache

    async def reply(
        self,
        actor_id: str,
        message: str,
        generate: Callable[[str, list[SessionMessage]], Awaitable[str]],
        history_limit: int = HISTORY_LIMIT,
    ) -> Resolution:
        """
        Answer *message* from memory, or generate and remember a new reply.

        On a miss *generate* receives the message and the actor's recent
        conversation, oldest first.  A generated reply that was remembered is
        appended to the conversation as a user turn and an assistant turn.
        Replies served from memory, and replies too short to remember, leave
        the conversation untouched.
        """

        async def generate_with_history(query: str) -> str:
            earlier = await self.history.get(actor_id, limit=history_limit)
            return await generate(query, earlier)

        resolution = await self.cache.resolve(actor_id, message, generate_with_history)
        if not resolution.from_memory and resolution.outcome is not None:
            await self._append_turn(actor_id, message, resolution.response)
        return resolution

    async def remember_turn(
        self,
        actor_id: str,
        query: str,
        response: str,
        summary: str | None = None,
    ) -> AdmissionOutcome:
        """Admit an answer produced elsewhere and add it to the conversation."""
        outcome = await self.cache.admit(actor_id, query, summary or response, response)
        await self._append_turn(actor_id, query, response)
        return outcome

    async def _append_turn(self, actor_id: str, query: str, response: str) -> None:
        await self.history.append(
            actor_id,
            [
                SessionMessage(role="user", content=query),
                SessionMessage(role="assistant", content=response),
            ],
        )
        logger.debug("Appended turn to history of %r", actor_id)


def build_services(config: MemoryConfig | None = None) -> MemoryServices:
    """Wire SQLite, ChromaDB and sentence-transformers from *config*."""
    config = config or MemoryConfig.from_env()

    def build_cache() -> TieredMemoryCache:
        embedder = SentenceTransformerEmbeddingProvider(config.embedding_model)
        index = VectorStore(
            path=config.chroma_path,
            collection_name=config.collection_name,
            _embedding_function=embedder.function,
        )
        return TieredMemoryCache(
            exact_store=SQLiteExactStore(config.db_path),
            vector_index=index,
            embedder=embedder,
            config=config,
        )

    return MemoryServices(
        guard=DeduplicationGuard(SQLiteEmittedStore(config.db_path)),
        history=SQLiteSessionHistory(config.db_path),
        cache_factory=build_cache,
    )
