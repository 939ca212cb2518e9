"""
TieredMemoryCache: "have we already answered this?" and "remember this".

This is the main entry-point for an engagement loop that wants to reuse
earlier answers instead of calling the generator again.

Usage example::

    from persona_memory import build_services

    services = build_services()
    cache = services.cache

    record = await cache.lookup("mando", "What is Beskar?")
    if record is None:
        reply = await generate("What is Beskar?")
        await cache.admit("mando", "What is Beskar?", reply, reply)
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Awaitable, Callable

from .config import MemoryConfig
from .context import ContextKey, classify, normalize_query
from .embeddings import EmbeddingProvider
from .errors import ExactStoreError, TransientBackendError, ValidationError
from .models import (
    AdmissionOutcome,
    MemoryRecord,
    Resolution,
    VectorEntry,
    VectorMatch,
    VectorMetadata,
    content_id,
    utcnow,
)
from .records import ExactMemoryStore
from .store import VectorMemoryIndex

logger = logging.getLogger(__name__)

#: Scope used for every exact row when actor scoping is off.
GLOBAL_SCOPE = ""


class TieredMemoryCache:
    """
    Two-tier answer memory.

    Responsibilities
    ----------------
    * **Lookup** – Tries the exact tier first (normalized query text as the
      key).  Only on a miss is the query embedded and matched against the
      vector index, filtered by its ``ContextKey``.  A semantic hit is
      copied into the exact tier so the next identical phrasing is O(1).
    * **Admit** – Always writes the exact tier, then queries the index with a
      stricter threshold and skips the vector write when the concept is
      already represented.

    The exact tier is essential: its failures raise ``ExactStoreError``.
    Embedding and vector-index failures only degrade the semantic tier.

    Parameters
    ----------
    exact_store:
        Key-value store for ``MemoryRecord`` rows.
    vector_index:
        Nearest-neighbour index over query embeddings.
    embedder:
        Turns normalized query text into an embedding.
    config:
        Thresholds, top-K, actor scoping and TTL.
    clock:
        Returns the current timezone-aware time.
    """

    def __init__(
        self,
        exact_store: ExactMemoryStore,
        vector_index: VectorMemoryIndex,
        embedder: EmbeddingProvider,
        config: MemoryConfig | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._exact = exact_store
        self._index = vector_index
        self._embedder = embedder
        self.config = config or MemoryConfig()
        self._clock = clock

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def lookup(self, actor_id: str, raw_query: str) -> MemoryRecord | None:
        """
        Return the remembered answer for *raw_query*, or ``None``.

        An exact row always wins over a semantic candidate.  Semantic
        candidates must reach ``config.read_threshold`` (inclusive) and share
        the query's intent, topic and tone.
        """
        normalized = self._normalize(raw_query)
        scope = self._scope(actor_id)

        try:
            existing = await self._exact.get(scope, normalized)
        except TransientBackendError as exc:
            raise ExactStoreError(f"exact lookup failed: {exc}") from exc

        if existing is not None and self._is_fresh(existing):
            logger.debug("Exact hit for %r", normalized)
            return existing
        if existing is not None:
            logger.debug("Exact row for %r is stale", normalized)

        context = classify(normalized)
        match = await self._semantic_match(normalized, context)
        if match is None:
            logger.debug("No memory for %r", normalized)
            return None

        logger.info(
            "Semantic hit for %r (score %.3f, matched %r)",
            normalized,
            match.score,
            match.metadata.normalized_query,
        )
        now = self._clock()
        record = MemoryRecord(
            actor_id=actor_id,
            normalized_query=normalized,
            summary=match.metadata.summary,
            response=match.metadata.response,
            context=context,
            created_at=now,
            last_cached_at=now,
        )
        try:
            await self._exact.upsert(scope, record)
        except TransientBackendError as exc:
            logger.warning("Could not promote semantic hit for %r: %s", normalized, exc)
        return record

    async def admit(
        self, actor_id: str, raw_query: str, summary: str, response: str
    ) -> AdmissionOutcome:
        """
        Remember *response* as the answer to *raw_query*.

        The exact row is always written (last writer wins).  The vector
        entry is written unless another entry with the same context already
        scores at least ``config.write_threshold`` against the query.

        Returns
        -------
        AdmissionOutcome
            ``STORED`` / ``REFRESHED`` when the vector tier was written,
            ``SUPPRESSED`` for a near-duplicate, ``EXACT_ONLY`` when the
            semantic tier was unavailable.
        """
        normalized = self._normalize(raw_query)
        if not response.strip():
            raise ValidationError("response must not be empty")
        context = classify(normalized)
        now = self._clock()

        record = MemoryRecord(
            actor_id=actor_id,
            normalized_query=normalized,
            summary=summary,
            response=response,
            context=context,
            created_at=now,
            last_cached_at=now,
        )
        try:
            await self._exact.upsert(self._scope(actor_id), record)
        except TransientBackendError as exc:
            raise ExactStoreError(f"exact upsert failed: {exc}") from exc

        entry_id = content_id(normalized)
        try:
            embedding = await self._embedder.embed(normalized)
            neighbours = await self._index.query(embedding, self.config.top_k, context)
        except TransientBackendError as exc:
            logger.warning("Skipping vector write for %r: %s", normalized, exc)
            return AdmissionOutcome.EXACT_ONLY

        duplicates = [
            c
            for c in neighbours
            if c.score >= self.config.write_threshold and c.metadata.context == context
        ]
        # The entry for this very query is always rewritten, even when another
        # near-duplicate ranks above it, so both tiers keep the same answer.
        refreshing = any(c.id == entry_id for c in duplicates)
        if duplicates and not refreshing:
            duplicate = duplicates[0]
            logger.info(
                "Skipped vector write for %r, matched %r (score %.3f)",
                normalized,
                duplicate.metadata.normalized_query,
                duplicate.score,
            )
            return AdmissionOutcome.SUPPRESSED

        entry = VectorEntry(
            id=entry_id,
            embedding=embedding,
            metadata=VectorMetadata(
                normalized_query=normalized,
                summary=summary,
                response=response,
                context=context,
            ),
        )
        try:
            await self._index.upsert(entry)
        except TransientBackendError as exc:
            logger.warning("Vector upsert failed for %r: %s", normalized, exc)
            return AdmissionOutcome.EXACT_ONLY

        logger.info(
            "Stored vector for %r (intent=%s, topic=%s, tone=%s)",
            normalized,
            context.intent.value,
            context.topic.value,
            context.tone.value,
        )
        return AdmissionOutcome.REFRESHED if refreshing else AdmissionOutcome.STORED

    async def resolve(
        self,
        actor_id: str,
        raw_query: str,
        generate: Callable[[str], Awaitable[str]],
        min_length: int = 6,
    ) -> Resolution:
        """
        Answer from memory, or call *generate* and remember its answer.

        Generated answers shorter than *min_length* characters are returned
        but not admitted.
        """
        record = await self.lookup(actor_id, raw_query)
        if record is not None:
            return Resolution(response=record.response, from_memory=True)

        response = (await generate(raw_query)).strip()
        if len(response) < min_length:
            logger.warning("Not remembering short reply %r", response)
            return Resolution(response=response, from_memory=False)
        outcome = await self.admit(actor_id, raw_query, response, response)
        return Resolution(response=response, from_memory=False, outcome=outcome)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _normalize(self, raw_query: str) -> str:
        normalized = normalize_query(raw_query)
        if not normalized:
            raise ValidationError("query must not be empty")
        return normalized

    def _scope(self, actor_id: str) -> str:
        return actor_id if self.config.scope_by_actor else GLOBAL_SCOPE

    def _is_fresh(self, record: MemoryRecord) -> bool:
        if self.config.exact_ttl is None:
            return True
        age = self._clock() - record.last_cached_at
        return age <= timedelta(seconds=self.config.exact_ttl)

    async def _semantic_match(
        self, normalized: str, context: ContextKey
    ) -> VectorMatch | None:
        try:
            embedding = await self._embedder.embed(normalized)
            candidates = await self._index.query(embedding, self.config.top_k, context)
        except TransientBackendError as exc:
            logger.warning("Semantic tier unavailable for %r: %s", normalized, exc)
            return None
        return self._first_match(candidates, context, self.config.read_threshold)

    @staticmethod
    def _first_match(
        candidates: list[VectorMatch], context: ContextKey, threshold: float
    ) -> VectorMatch | None:
        # Filtered backends may still return near-misses; re-check context.
        for candidate in candidates:
            if candidate.score >= threshold and candidate.metadata.context == context:
                return candidate
        return None
