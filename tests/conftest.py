"""
Shared pytest fixtures for persona-memory tests.

Uses ChromaDB in ephemeral (in-memory) mode and a deterministic
bag-of-words embedding so that tests run fast without downloading
any ML models.  Async code is driven with ``asyncio.run``.
"""

from __future__ import annotations

import hashlib
import re
import uuid
from datetime import datetime, timedelta, timezone

import chromadb
import pytest

from persona_memory.config import MemoryConfig
from persona_memory.context import ContextKey
from persona_memory.dedup import DeduplicationGuard
from persona_memory.errors import TransientBackendError
from persona_memory.memory import TieredMemoryCache
from persona_memory.models import VectorEntry, VectorMatch, VectorMetadata
from persona_memory.records import InMemoryEmittedStore, InMemoryExactStore, InMemorySessionHistory
from persona_memory.services import MemoryServices
from persona_memory.store import InMemoryVectorIndex, VectorStore

_DIM = 256


class FakeEmbeddingProvider:
    """
    Deterministic embedding: each word is hashed into one of 256 buckets
    and the count vector is L2-normalised.  Shared words give high cosine
    similarity, so paraphrases behave like they would with a real model.

    Also implements the ChromaDB embedding-function interface.
    """

    def __init__(self) -> None:
        self.calls: list[str] = []

    def name(self) -> str:  # required by ChromaDB >= 0.5
        return "fake-bag-of-words"

    def _embed(self, texts: list[str]) -> list[list[float]]:
        embeddings = []
        for text in texts:
            vec = [0.0] * _DIM
            for word in re.findall(r"[a-z0-9]+", text.lower()):
                bucket = int(hashlib.md5(word.encode()).hexdigest(), 16) % _DIM
                vec[bucket] += 1.0
            norm = sum(x * x for x in vec) ** 0.5 or 1.0
            embeddings.append([x / norm for x in vec])
        return embeddings

    def __call__(self, input: list[str]) -> list[list[float]]:  # noqa: A002
        return self._embed(input)

    def embed_documents(self, input: list[str]) -> list[list[float]]:  # noqa: A002
        return self._embed(input)

    def embed_query(self, input: list[str]) -> list[list[float]]:  # noqa: A002
        return self._embed(input)

    async def embed(self, text: str) -> list[float]:
        self.calls.append(text)
        return self._embed([text])[0]

    @property
    def function(self) -> "FakeEmbeddingProvider":
        return self


class FailingEmbeddingProvider:
    async def embed(self, text: str) -> list[float]:
        raise TransientBackendError("embedding service unavailable")


class FailingExactStore:
    async def get(self, scope, normalized_query):
        raise TransientBackendError("exact store down")

    async def upsert(self, scope, record):
        raise TransientBackendError("exact store down")


class ScriptedVectorIndex:
    """
    Vector index that answers every query with a fixed list of matches.

    Lets threshold tests pin exact similarity scores.
    """

    def __init__(self, matches: list[VectorMatch] | None = None) -> None:
        self.matches = list(matches or [])
        self.upserts: list[VectorEntry] = []
        self.queries: list[ContextKey] = []
        self.fail = False

    async def query(self, embedding, top_k, context):
        if self.fail:
            raise TransientBackendError("index unavailable")
        self.queries.append(context)
        return self.matches[:top_k]

    async def upsert(self, entry):
        if self.fail:
            raise TransientBackendError("index unavailable")
        self.upserts.append(entry)

    async def count(self):
        return len(self.upserts)


def make_match(
    score: float,
    context: ContextKey,
    query: str = "stored query",
    response: str = "stored response",
    id: str = "other-id",  # noqa: A002
) -> VectorMatch:
    return VectorMatch(
        id=id,
        score=score,
        metadata=VectorMetadata(
            normalized_query=query, summary=response, response=response, context=context
        ),
    )


class FrozenClock:
    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2025, 1, 1, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


# A single shared EphemeralClient instance for the test session.
# Each fixture call creates a uniquely named collection so tests are isolated.
_EPHEMERAL_CLIENT = chromadb.EphemeralClient()


@pytest.fixture()
def embedder() -> FakeEmbeddingProvider:
    return FakeEmbeddingProvider()


@pytest.fixture()
def chroma_index(embedder: FakeEmbeddingProvider) -> VectorStore:
    """ChromaDB-backed index in a fresh in-memory collection."""
    return VectorStore(
        _client=_EPHEMERAL_CLIENT,
        collection_name=f"test_{uuid.uuid4().hex}",
        _embedding_function=embedder,
    )


@pytest.fixture()
def exact_store() -> InMemoryExactStore:
    return InMemoryExactStore()


@pytest.fixture()
def vector_index() -> InMemoryVectorIndex:
    return InMemoryVectorIndex()


@pytest.fixture()
def clock() -> FrozenClock:
    return FrozenClock()


@pytest.fixture()
def cache(exact_store, vector_index, embedder, clock) -> TieredMemoryCache:
    """Cache wired to in-memory stores and the fake embedder."""
    return TieredMemoryCache(
        exact_store=exact_store,
        vector_index=vector_index,
        embedder=embedder,
        config=MemoryConfig(),
        clock=clock,
    )


@pytest.fixture()
def guard() -> DeduplicationGuard:
    return DeduplicationGuard(InMemoryEmittedStore())


@pytest.fixture()
def services(cache, guard) -> MemoryServices:
    return MemoryServices(cache=cache, guard=guard, history=InMemorySessionHistory())
