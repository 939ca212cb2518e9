"""
Command-line interface for persona-memory.

Sub-commands
------------
classify – Print the intent/topic/tone of a text.
lookup   – Look up the remembered answer for a query.
admit    – Remember an answer for a query.
emitted  – Check whether content was already published.
record   – Record content as published.
recent   – List the most recently published content.
history  – Show an actor's conversation history.
"""

from __future__ import annotations

import argparse
import asyncio
import dataclasses
import json
import logging
import sys

from .config import MemoryConfig
from .context import classify
from .errors import PersonaMemoryError
from .services import MemoryServices, build_services


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="persona-memory",
        description="Tiered answer memory and duplicate guard for persona agents.",
    )
    parser.add_argument(
        "--db",
        default=None,
        metavar="PATH",
        help="SQLite file for exact memory, emitted content and history.",
    )
    parser.add_argument(
        "--chroma",
        default=None,
        metavar="PATH",
        help="Path to the ChromaDB persistent store.",
    )
    parser.add_argument("--collection", default=None, metavar="NAME", help="ChromaDB collection name.")
    parser.add_argument("--model", default=None, help="sentence-transformers model name.")
    parser.add_argument("--actor", default="default", help="Actor (persona) id (default: default).")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging.")

    sub = parser.add_subparsers(dest="command", required=True)

    # classify
    p_classify = sub.add_parser("classify", help="Classify intent, topic and tone.")
    p_classify.add_argument("text")

    # lookup
    p_lookup = sub.add_parser("lookup", help="Look up a remembered answer.")
    p_lookup.add_argument("query", help="Query text.")
    p_lookup.add_argument("--json", action="store_true", dest="as_json", help="Output as JSON.")

    # admit
    p_admit = sub.add_parser("admit", help="Remember an answer for a query.")
    p_admit.add_argument("query", help="Query text.")
    p_admit.add_argument("response", nargs="?", help="Answer text (reads stdin if omitted).")
    p_admit.add_argument("--summary", default=None, help="Short summary (defaults to the response).")

    # emitted
    p_emitted = sub.add_parser("emitted", help="Check whether content was already published.")
    p_emitted.add_argument("text")

    # record
    p_record = sub.add_parser("record", help="Record content as published.")
    p_record.add_argument("text")

    # recent
    p_recent = sub.add_parser("recent", help="List recently published content.")
    p_recent.add_argument("-n", type=int, default=20, metavar="N", help="Number of entries (default: 20).")

    # history
    p_history = sub.add_parser("history", help="Show the actor's conversation history.")
    p_history.add_argument("-n", type=int, default=None, metavar="N", help="Only the last N messages.")

    return parser


def _config_from_args(args: argparse.Namespace) -> MemoryConfig:
    config = MemoryConfig.from_env()
    overrides = {
        key: value
        for key, value in (
            ("db_path", args.db),
            ("chroma_path", args.chroma),
            ("collection_name", args.collection),
            ("embedding_model", args.model),
        )
        if value is not None
    }
    return dataclasses.replace(config, **overrides)


async def _run(args: argparse.Namespace, services: MemoryServices) -> int:
    if args.command == "lookup":
        record = await services.cache.lookup(args.actor, args.query)
        if record is None:
            print("No memory found.")
            return 0
        if args.as_json:
            print(
                json.dumps(
                    {
                        "query": record.normalized_query,
                        "summary": record.summary,
                        "response": record.response,
                        "context": record.context.to_metadata(),
                        "cached_at": record.last_cached_at.isoformat(),
                    },
                    indent=2,
                )
            )
        else:
            print(record.response)

    elif args.command == "admit":
        response = args.response
        if response is None:
            response = sys.stdin.read()
        if not response.strip():
            print("Error: no response provided.", file=sys.stderr)
            return 1
        response = response.strip()
        outcome = await services.remember_turn(
            args.actor, args.query, response, summary=args.summary
        )
        print(f"Admitted ({outcome.value}).")

    elif args.command == "emitted":
        emitted = await services.guard.has_been_emitted(args.text)
        print("yes" if emitted else "no")

    elif args.command == "record":
        outcome = await services.guard.record_emission(args.text)
        print(outcome.value)

    elif args.command == "recent":
        texts = await services.guard.recent_emissions(limit=args.n)
        if not texts:
            print("Nothing published yet.")
            return 0
        for text in texts:
            print(text)

    elif args.command == "history":
        messages = await services.history.get(args.actor, limit=args.n)
        if not messages:
            print("No history.")
            return 0
        for m in messages:
            print(f"[{m.created_at:%Y-%m-%d %H:%M:%S}] {m.role}: {m.content}")

    return 0


def main(argv: list[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if args.command == "classify":
        print(json.dumps(classify(args.text).to_metadata()))
        return 0

    try:
        services = build_services(_config_from_args(args))
        return asyncio.run(_run(args, services))
    except (PersonaMemoryError, ValueError) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
