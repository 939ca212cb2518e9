"""
Runtime configuration.

Environment variables (all optional):
    PERSONA_MEMORY_DB_PATH          - SQLite file for the exact tier, emitted
                                      content and session history
    PERSONA_MEMORY_CHROMA_PATH      - directory of the ChromaDB store
    PERSONA_MEMORY_COLLECTION       - ChromaDB collection name
    PERSONA_MEMORY_MODEL            - sentence-transformers model
    PERSONA_MEMORY_READ_THRESHOLD   - similarity needed to reuse an answer
    PERSONA_MEMORY_WRITE_THRESHOLD  - similarity that suppresses a vector write
    PERSONA_MEMORY_TOP_K            - neighbours fetched per similarity query
    PERSONA_MEMORY_SCOPE_BY_ACTOR   - key the exact tier by actor as well
    PERSONA_MEMORY_EXACT_TTL        - seconds before an exact row goes stale
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping

#: Cosine similarity at or above which a stored answer is reused.
READ_THRESHOLD: float = 0.85

#: Cosine similarity at or above which a new vector write is skipped.
#: Deliberately much stricter than the read threshold: recall on reads,
#: precision on writes.
WRITE_THRESHOLD: float = 0.98

TOP_K: int = 5

DEFAULT_HOME = Path.home() / ".cache" / "persona-memory"
DEFAULT_MODEL = "all-MiniLM-L6-v2"
DEFAULT_COLLECTION = "answers"

_ENV_PREFIX = "PERSONA_MEMORY_"


def _bool(value: str) -> bool:
    return value.strip().lower() in ("true", "1", "yes", "on")


@dataclass(frozen=True)
class MemoryConfig:
    """
    Tunables for the memory tiers.

    Parameters
    ----------
    read_threshold:
        Minimum cosine similarity for a semantic hit in ``lookup``.
    write_threshold:
        Minimum cosine similarity for an existing entry to suppress a vector
        write in ``admit``.  Must not be lower than *read_threshold*.
    top_k:
        Number of neighbours requested from the vector index.
    scope_by_actor:
        When ``True`` exact rows are keyed by (actor, query); otherwise every
        actor shares one global exact tier.
    exact_ttl:
        Seconds after which an exact row is considered stale.  ``None``
        disables expiry.
    """

    read_threshold: float = READ_THRESHOLD
    write_threshold: float = WRITE_THRESHOLD
    top_k: int = TOP_K
    scope_by_actor: bool = False
    exact_ttl: float | None = None
    db_path: str = str(DEFAULT_HOME / "memory.sqlite3")
    chroma_path: str = str(DEFAULT_HOME / "chroma")
    collection_name: str = DEFAULT_COLLECTION
    embedding_model: str = DEFAULT_MODEL

    def __post_init__(self) -> None:
        for name in ("read_threshold", "write_threshold"):
            value = getattr(self, name)
            if not 0.0 <= value <= 1.0:
                raise ValueError(f"{name} must be within [0, 1], got {value}")
        if self.write_threshold < self.read_threshold:
            raise ValueError("write_threshold must not be lower than read_threshold")
        if self.top_k < 1:
            raise ValueError(f"top_k must be at least 1, got {self.top_k}")
        if self.exact_ttl is not None and self.exact_ttl < 0:
            raise ValueError(f"exact_ttl must be non-negative, got {self.exact_ttl}")
        if self.db_path.strip() == ":memory:":
            raise ValueError("db_path ':memory:' is not supported, use a file path")

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "MemoryConfig":
        """Build a config from ``PERSONA_MEMORY_*`` variables."""
        env = os.environ if environ is None else environ

        def get(name: str) -> str | None:
            value = env.get(_ENV_PREFIX + name)
            return value if value not in (None, "") else None

        kwargs: dict[str, object] = {}
        for name, key, convert in (
            ("DB_PATH", "db_path", str),
            ("CHROMA_PATH", "chroma_path", str),
            ("COLLECTION", "collection_name", str),
            ("MODEL", "embedding_model", str),
            ("READ_THRESHOLD", "read_threshold", float),
            ("WRITE_THRESHOLD", "write_threshold", float),
            ("TOP_K", "top_k", int),
            ("SCOPE_BY_ACTOR", "scope_by_actor", _bool),
            ("EXACT_TTL", "exact_ttl", float),
        ):
            raw = get(name)
            if raw is None:
                continue
            try:
                kwargs[key] = convert(raw)
            except ValueError as exc:
                raise ValueError(f"invalid {_ENV_PREFIX}{name}={raw!r}") from exc
        return cls(**kwargs)
