"""
Vector index backends for the semantic tier.
"""

from __future__ import annotations

import asyncio
import logging
import math
from typing import Any, Protocol

import chromadb

from .context import ContextKey
from .errors import TransientBackendError
from .models import VectorEntry, VectorMatch, VectorMetadata

logger = logging.getLogger(__name__)


class VectorMemoryIndex(Protocol):
    async def query(
        self, embedding: list[float], top_k: int, context: ContextKey
    ) -> list[VectorMatch]:
        """Nearest neighbours of *embedding* whose context equals *context*, best first."""
        ...

    async def upsert(self, entry: VectorEntry) -> None:
        ...

    async def count(self) -> int:
        ...


def context_filter(context: ContextKey) -> dict[str, Any]:
    """ChromaDB ``where`` clause requiring all three context fields."""
    return {"$and": [{k: v} for k, v in context.to_metadata().items()]}


class VectorStore:
    """
    Persistent vector index backed by ChromaDB.

    Uses cosine space so that distance values returned by queries
    are in the range [0, 2]:
        distance = 1 - cosine_similarity
        cosine_similarity ∈ [-1, 1]  →  distance ∈ [0, 2]

    Embeddings are always supplied by the caller; the collection's embedding
    function is only registered so the collection can be reopened with the
    same configuration.
    """

    def __init__(
        self,
        path: str = "./chroma_db",
        collection_name: str = "answers",
        _client: chromadb.ClientAPI | None = None,
        _embedding_function: Any | None = None,
    ) -> None:
        self.client = _client or chromadb.PersistentClient(path=path)
        kwargs: dict[str, Any] = {"metadata": {"hnsw:space": "cosine"}}
        if _embedding_function is not None:
            kwargs["embedding_function"] = _embedding_function
        self.collection = self.client.get_or_create_collection(
            name=collection_name, **kwargs
        )

    async def _run(self, fn, *args):
        loop = asyncio.get_running_loop()
        try:
            return await loop.run_in_executor(None, fn, *args)
        except Exception as exc:
            raise TransientBackendError(f"ChromaDB request failed: {exc}") from exc

    # ------------------------------------------------------------------
    # Write operations
    # ------------------------------------------------------------------

    async def upsert(self, entry: VectorEntry) -> None:
        """Insert *entry*, replacing any entry with the same id."""
        await self._run(self._upsert, entry)
        logger.debug("Upserted vector %s", entry.id)

    def _upsert(self, entry: VectorEntry) -> None:
        self.collection.upsert(
            ids=[entry.id],
            embeddings=[entry.embedding],
            documents=[entry.metadata.normalized_query],
            metadatas=[entry.metadata.to_dict()],
        )

    # ------------------------------------------------------------------
    # Read operations
    # ------------------------------------------------------------------

    async def query(
        self, embedding: list[float], top_k: int, context: ContextKey
    ) -> list[VectorMatch]:
        return await self._run(self._query, embedding, top_k, context)

    def _query(
        self, embedding: list[float], top_k: int, context: ContextKey
    ) -> list[VectorMatch]:
        n = min(top_k, self.collection.count())
        if n == 0:
            return []
        results = self.collection.query(
            query_embeddings=[embedding],
            n_results=n,
            where=context_filter(context),
            include=["metadatas", "distances"],
        )
        ids = results["ids"][0] if results["ids"] else []
        metadatas = results["metadatas"][0] if results.get("metadatas") else []
        distances = results["distances"][0] if results.get("distances") else []

        matches: list[VectorMatch] = []
        for i, entry_id in enumerate(ids):
            try:
                metadata = VectorMetadata.from_dict(metadatas[i] or {})
            except ValueError as exc:
                logger.warning("Skipping vector %s with bad metadata: %s", entry_id, exc)
                continue
            matches.append(
                VectorMatch(id=entry_id, score=1.0 - distances[i], metadata=metadata)
            )
        return matches

    async def get(self, entry_id: str) -> VectorMetadata | None:
        """Fetch the metadata stored under *entry_id*."""
        result = await self._run(lambda: self.collection.get(ids=[entry_id]))
        if not result["ids"]:
            return None
        return VectorMetadata.from_dict(result["metadatas"][0])

    async def count(self) -> int:
        """Return the total number of stored vectors."""
        return await self._run(self.collection.count)


def cosine_similarity(a: list[float], b: list[float]) -> float:
    dot = sum(x * y for x, y in zip(a, b))
    norm = math.sqrt(sum(x * x for x in a)) * math.sqrt(sum(y * y for y in b))
    return dot / norm if norm else 0.0


class InMemoryVectorIndex:
    """Brute-force cosine index for tests and single-process use."""

    def __init__(self) -> None:
        self._entries: dict[str, VectorEntry] = {}

    async def query(
        self, embedding: list[float], top_k: int, context: ContextKey
    ) -> list[VectorMatch]:
        matches = [
            VectorMatch(
                id=entry.id,
                score=cosine_similarity(embedding, entry.embedding),
                metadata=entry.metadata,
            )
            for entry in self._entries.values()
            if entry.metadata.context == context
        ]
        matches.sort(key=lambda m: m.score, reverse=True)
        return matches[:top_k]

    async def upsert(self, entry: VectorEntry) -> None:
        self._entries[entry.id] = entry

    async def get(self, entry_id: str) -> VectorMetadata | None:
        entry = self._entries.get(entry_id)
        return entry.metadata if entry else None

    async def count(self) -> int:
        return len(self._entries)
