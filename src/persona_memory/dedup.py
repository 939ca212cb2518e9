"""
DeduplicationGuard: never publish the same content twice.

Unlike ``TieredMemoryCache`` this knows nothing about queries or context;
it only remembers the normalized text of everything already emitted.

A publishing loop is expected to look like::

    if await guard.has_been_emitted(post):
        post = await regenerate()
    ...
    await publish(post)
    await guard.record_emission(post)

or simply ``await guard.publish_once(post, publish)``.  Nothing spans the
external publish and the record, so a crash between the two can still let
a duplicate through.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Awaitable, Callable

from .context import normalize_content
from .errors import ValidationError
from .models import EmissionOutcome, utcnow
from .records import EmittedContentStore

logger = logging.getLogger(__name__)


class DeduplicationGuard:
    def __init__(
        self,
        store: EmittedContentStore,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._store = store
        self._clock = clock

    async def has_been_emitted(self, text: str) -> bool:
        """True if *text* (after normalization) was recorded before."""
        normalized = self._normalize(text)
        exists = await self._store.exists(normalized)
        logger.debug("Emitted %r: %s", normalized, exists)
        return exists

    async def record_emission(self, text: str) -> EmissionOutcome:
        """Record *text* as emitted.  Recording it again is a no-op."""
        normalized = self._normalize(text)
        inserted = await self._store.insert_if_absent(normalized, self._clock())
        if not inserted:
            logger.debug("Already recorded %r", normalized)
            return EmissionOutcome.ALREADY_EMITTED
        logger.info("Recorded emission %r", normalized)
        return EmissionOutcome.RECORDED

    async def publish_once(
        self, text: str, publish: Callable[[str], Awaitable[object]]
    ) -> EmissionOutcome:
        """
        Publish *text* unless it was emitted before, then record it.

        Errors raised by *publish* propagate and nothing is recorded.
        """
        if await self.has_been_emitted(text):
            logger.warning("Not publishing duplicate %r", normalize_content(text))
            return EmissionOutcome.ALREADY_EMITTED
        await publish(text)
        return await self.record_emission(text)

    async def recent_emissions(self, limit: int = 50) -> list[str]:
        """Normalized text of the latest emissions, newest first."""
        records = await self._store.recent(limit)
        return [r.normalized_text for r in records]

    @staticmethod
    def _normalize(text: str) -> str:
        normalized = normalize_content(text)
        if not normalized:
            raise ValidationError("content must not be empty")
        return normalized
