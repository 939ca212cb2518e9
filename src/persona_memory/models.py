"""
Typed records that flow between the memory tiers and their backends.
"""

from __future__ import annotations

import enum
import hashlib
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Mapping

from .context import ContextKey


def utcnow() -> datetime:
    """Timezone-aware current time; the default clock everywhere."""
    return datetime.now(timezone.utc)


def content_id(normalized_query: str) -> str:
    """
    Content-addressed vector id for *normalized_query*.

    Re-embedding identical text always targets the same index slot.
    """
    return hashlib.sha256(normalized_query.encode("utf-8")).hexdigest()


@dataclass(frozen=True)
class MemoryRecord:
    """One remembered answer in the exact tier."""

    actor_id: str
    normalized_query: str
    summary: str
    response: str
    context: ContextKey
    created_at: datetime
    last_cached_at: datetime


@dataclass(frozen=True)
class VectorMetadata:
    """The closed set of fields stored next to an embedding."""

    normalized_query: str
    summary: str
    response: str
    context: ContextKey

    def to_dict(self) -> dict[str, str]:
        meta = {
            "query": self.normalized_query,
            "summary": self.summary,
            "response": self.response,
        }
        meta.update(self.context.to_metadata())
        return meta

    @classmethod
    def from_dict(cls, metadata: Mapping[str, Any]) -> "VectorMetadata":
        """
        Parse backend metadata, ignoring unknown keys.

        Raises ``ValueError`` when a required field is missing or invalid.
        """
        try:
            query = metadata["query"]
            response = metadata["response"]
        except KeyError as exc:
            raise ValueError(f"vector metadata missing field: {exc}") from exc
        if not isinstance(query, str) or not isinstance(response, str):
            raise ValueError("vector metadata 'query' and 'response' must be strings")
        summary = metadata.get("summary")
        return cls(
            normalized_query=query,
            summary=summary if isinstance(summary, str) else response,
            response=response,
            context=ContextKey.from_metadata(metadata),
        )


@dataclass(frozen=True)
class VectorEntry:
    id: str
    embedding: list[float]
    metadata: VectorMetadata


@dataclass(frozen=True)
class VectorMatch:
    """A nearest-neighbour candidate; ``score`` is cosine similarity."""

    id: str
    score: float
    metadata: VectorMetadata


@dataclass(frozen=True)
class EmittedContentRecord:
    normalized_text: str
    created_at: datetime


@dataclass(frozen=True)
class SessionMessage:
    """A single turn in an actor's short-term conversation history."""

    role: str
    content: str
    created_at: datetime = field(default_factory=utcnow)


class AdmissionOutcome(str, enum.Enum):
    """What ``TieredMemoryCache.admit`` did with the vector tier."""

    #: A new vector entry was written.
    STORED = "stored"
    #: The entry for this exact query already existed and was rewritten.
    REFRESHED = "refreshed"
    #: A different entry already covers the concept; no vector write.
    SUPPRESSED = "suppressed"
    #: Embedding or index was unavailable; only the exact tier was written.
    EXACT_ONLY = "exact_only"


class EmissionOutcome(str, enum.Enum):
    RECORDED = "recorded"
    ALREADY_EMITTED = "already_emitted"


@dataclass(frozen=True)
class Resolution:
    """Result of ``TieredMemoryCache.resolve``."""

    response: str
    from_memory: bool
    outcome: AdmissionOutcome | None = None
