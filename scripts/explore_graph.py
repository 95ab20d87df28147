"""Command-line access to the similarity engine; prints JSON to stdout."""

from __future__ import annotations

import argparse
import json
import logging
import sys
from typing import Any, Dict, Sequence

from simgraph.core.errors import ItemNotFoundError
from simgraph.core.graph_builder import GRAPH_SOURCES
from simgraph.core.service import SimilarityService, build_similarity_service
from simgraph.db.session import session_scope

logger = logging.getLogger(__name__)


def _parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Explore the similarity graph.")
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging.")
    parser.add_argument(
        "--no-ai",
        action="store_true",
        help="Do not call the text generation provider.",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    similar = sub.add_parser("similar", help="Nearest neighbours of one title.")
    similar.add_argument("item_id")
    similar.add_argument("--type", choices=["movie", "series"], default="movie")
    similar.add_argument("--limit", type=int, default=12)

    graph = sub.add_parser("graph", help="Multi-level graph around one title.")
    graph.add_argument("item_id")
    graph.add_argument("--type", choices=["movie", "series"], default="movie")
    graph.add_argument("--depth", type=int, default=1)
    graph.add_argument("--limit", type=int, default=6)
    graph.add_argument("--user-id", default=None)

    search = sub.add_parser("search", help="Free-text semantic search.")
    search.add_argument("query")
    search.add_argument("--type", choices=["movie", "series", "both"], default="both")
    search.add_argument("--limit", type=int, default=20)
    search.add_argument("--user-id", default=None)

    search_graph = sub.add_parser(
        "search-graph", help="Semantic search results joined into a graph."
    )
    search_graph.add_argument("query")
    search_graph.add_argument(
        "--type", choices=["movie", "series", "both"], default="both"
    )
    search_graph.add_argument("--limit", type=int, default=20)

    source = sub.add_parser("source", help="Explore-page graph for a source.")
    source.add_argument("source", choices=list(GRAPH_SOURCES))
    source.add_argument("--user-id", required=True)
    source.add_argument("--limit", type=int, default=20)
    source.add_argument("--cross-media", action="store_true")

    return parser.parse_args(argv)


def run_command(service: SimilarityService, args: argparse.Namespace) -> Dict[str, Any]:
    if args.command == "similar":
        return service.find_similar(args.item_id, args.type, args.limit).model_dump()
    if args.command == "graph":
        graph = service.build_graph(
            args.item_id,
            args.type,
            depth=args.depth,
            limit=args.limit,
            user_id=args.user_id,
        )
        return graph.to_payload()
    if args.command == "search":
        return service.search(
            args.query, content_type=args.type, limit=args.limit, user_id=args.user_id
        ).model_dump()
    if args.command == "search-graph":
        result = service.search(args.query, content_type=args.type, limit=args.limit)
        graph = service.build_graph_from_search(result, use_ai=not args.no_ai)
        payload = graph.to_payload()
        payload["query"] = result.query
        return payload
    if args.command == "source":
        return service.graph_for_source(
            args.source,
            args.user_id,
            limit=args.limit,
            include_cross_media=args.cross_media,
        ).to_payload()
    raise ValueError(f"Unknown command: {args.command}")


def main(argv: Sequence[str] | None = None) -> int:  # pragma: no cover - CLI wrapper
    args = _parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)

    with session_scope() as session:
        service = build_similarity_service(session, enable_ai=not args.no_ai)
        try:
            payload = run_command(service, args)
        except ItemNotFoundError as exc:
            logger.error("%s", exc)
            return 1
    json.dump(payload, sys.stdout, indent=2, default=str)
    sys.stdout.write("\n")
    return 0


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
