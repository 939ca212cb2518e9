"""
Embedding providers.

The memory tiers only need ``await provider.embed(text)``.  The default
provider runs a local sentence-transformers model through ChromaDB's
embedding-function wrapper, so the same function object can also be handed
to the ChromaDB collection.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Protocol

from chromadb.utils import embedding_functions

from .errors import TransientBackendError

logger = logging.getLogger(__name__)


class EmbeddingProvider(Protocol):
    async def embed(self, text: str) -> list[float]:
        """Return the embedding of *text*; raise ``TransientBackendError`` on failure."""
        ...


def get_embedding_function(
    model_name: str = "all-MiniLM-L6-v2",
) -> embedding_functions.SentenceTransformerEmbeddingFunction:
    """Return a sentence-transformer embedding function for ChromaDB."""
    return embedding_functions.SentenceTransformerEmbeddingFunction(
        model_name=model_name
    )


class SentenceTransformerEmbeddingProvider:
    """
    Local embeddings via sentence-transformers.

    The model is loaded on first access to :attr:`function`, which happens
    on the first ``embed`` or when a ChromaDB collection is built with it.
    Encoding is CPU bound and runs in the default executor so it does not
    block the event loop.
    """

    def __init__(
        self,
        model_name: str = "all-MiniLM-L6-v2",
        _embedding_function: Any | None = None,
    ) -> None:
        self.model_name = model_name
        self._function = _embedding_function

    @property
    def function(self) -> Any:
        """The ChromaDB-compatible embedding function."""
        if self._function is None:
            logger.info("Loading embedding model %s", self.model_name)
            self._function = get_embedding_function(self.model_name)
        return self._function

    async def embed(self, text: str) -> list[float]:
        loop = asyncio.get_running_loop()
        try:
            vectors = await loop.run_in_executor(None, self.function, [text])
        except Exception as exc:
            raise TransientBackendError(
                f"embedding with {self.model_name} failed: {exc}"
            ) from exc
        # Newer ChromaDB releases return numpy arrays.
        return [float(x) for x in vectors[0]]
