"""
MCP (Model Context Protocol) server for persona-memory.

Exposes the answer cache and duplicate guard as tools so that an agent can
check its memory before generating and record what it published.

Run as a stdio server:
    python -m persona_memory.mcp_server

Or via the installed entry-point:
    persona-memory-mcp

Configuration comes from the ``PERSONA_MEMORY_*`` environment variables
documented in ``persona_memory.config``.
"""

from __future__ import annotations

import json

from mcp.server.fastmcp import FastMCP

from .context import classify
from .services import MemoryServices, build_services


class MemoryTools:
    """Tool implementations, bound to one set of services."""

    def __init__(self, services: MemoryServices) -> None:
        self.services = services

    async def lookup_answer(self, query: str, actor_id: str = "default") -> str:
        """
        Look up a previously remembered answer for a query.

        An exact (case and whitespace insensitive) match is preferred; failing
        that, a semantically similar query with the same intent, topic and
        tone is accepted.

        Args:
            query:    The incoming question or message.
            actor_id: The persona answering.

        Returns:
            JSON with query, response, summary and context, or a short
            message when nothing is remembered.
        """
        record = await self.services.cache.lookup(actor_id, query)
        if record is None:
            return "No memory found."
        return json.dumps(
            {
                "query": record.normalized_query,
                "response": record.response,
                "summary": record.summary,
                "context": record.context.to_metadata(),
            },
            indent=2,
        )

    async def remember_answer(
        self,
        query: str,
        response: str,
        summary: str = "",
        actor_id: str = "default",
    ) -> str:
        """
        Remember the answer given to a query.

        The exchange is also appended to the actor's conversation history.

        Args:
            query:    The question or message that was answered.
            response: The answer that was given.
            summary:  Optional short summary (defaults to the response).
            actor_id: The persona answering.

        Returns:
            A confirmation with the admission outcome (stored, refreshed,
            suppressed or exact_only).
        """
        outcome = await self.services.remember_turn(actor_id, query, response, summary=summary)
        return f"Remembered answer ({outcome.value})."

    async def conversation_history(self, actor_id: str = "default", limit: int = 20) -> str:
        """
        Return the actor's most recent conversation turns, oldest first.

        Returns:
            JSON list of {role, content, created_at}, or a short message when
            there is no history.
        """
        messages = await self.services.history.get(actor_id, limit=limit)
        if not messages:
            return "No history."
        return json.dumps(
            [
                {"role": m.role, "content": m.content, "created_at": m.created_at.isoformat()}
                for m in messages
            ],
            indent=2,
        )

    async def classify_text(self, text: str) -> str:
        """Return the intent, topic and tone of a text as JSON."""
        return json.dumps(classify(text).to_metadata())

    async def check_emitted(self, text: str) -> str:
        """
        Check whether content was already published.

        Returns:
            "yes" or "no".
        """
        return "yes" if await self.services.guard.has_been_emitted(text) else "no"

    async def record_emitted(self, text: str) -> str:
        """
        Record content as published so it is never posted again.

        Returns:
            "recorded", or "already_emitted" if it was recorded before.
        """
        outcome = await self.services.guard.record_emission(text)
        return outcome.value

    async def recent_emissions(self, limit: int = 20) -> str:
        """
        List the most recently published content, newest first.

        Useful for telling a generator which posts not to repeat.
        """
        texts = await self.services.guard.recent_emissions(limit=limit)
        if not texts:
            return "Nothing published yet."
        return json.dumps(texts, indent=2)


def create_server(services: MemoryServices) -> FastMCP:
    """Build a FastMCP server whose tools use *services*."""
    tools = MemoryTools(services)
    server = FastMCP(
        "persona-memory",
        instructions=(
            "Answer memory for a social persona. "
            "Call `lookup_answer` before generating a reply and reuse the "
            "response when one is found. "
            "Call `remember_answer` after generating a new reply. "
            "`conversation_history` returns the recent turns to generate with. "
            "Call `check_emitted` before publishing a post and "
            "`record_emitted` right after publishing it. "
            "Use `recent_emissions` to see what must not be repeated."
        ),
    )
    for fn in (
        tools.lookup_answer,
        tools.remember_answer,
        tools.conversation_history,
        tools.classify_text,
        tools.check_emitted,
        tools.record_emitted,
        tools.recent_emissions,
    ):
        server.tool()(fn)
    return server


# ---------------------------------------------------------------------------
# Entry-point
# ---------------------------------------------------------------------------


def main() -> None:
    """Run the MCP server over stdio."""
    create_server(build_services()).run(transport="stdio")


if __name__ == "__main__":
    main()
