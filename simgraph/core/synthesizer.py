"""
Typed connections between semantic-search results.

The text generator is asked which results relate and how. When it is
unavailable or answers nothing usable, links come from embedding similarity.
A final pass guarantees that no result is left without an edge.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Dict, List, Literal, Optional, Sequence, Set

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from simgraph import config
from simgraph.core.errors import TextGenerationError
from simgraph.core.interfaces import TextGenerator
from simgraph.core.models import (
    ConnectionReason,
    ConnectionType,
    GraphData,
    GraphEdge,
    GraphNode,
    SemanticSearchResult,
    SimilarityItem,
    edge_key,
)
from simgraph.core.neighbors import NearestNeighborFinder

logger = logging.getLogger(__name__)

MAX_AI_ITEMS = 15
MAX_AI_CONNECTIONS = 25
EMBEDDING_TIER_ITEMS = 10
EMBEDDING_TIER_NEIGHBORS = 20
ORPHAN_NEIGHBORS = 30

AI_EDGE_SIMILARITY = 0.85
ORPHAN_FALLBACK_SIMILARITY = 0.6
CHAIN_SIMILARITY = 0.7

_FENCED_BLOCK = re.compile(r"```(?:json)?\s*([\s\S]*?)```")


class AIConnection(BaseModel):
    """One suggested link between two numbered search results."""

    model_config = ConfigDict(strict=True, populate_by_name=True)

    source: int = Field(..., alias="from", ge=0)
    target: int = Field(..., alias="to", ge=0)
    type: Literal["director", "actor", "genre", "keyword", "studio", "similarity"]
    reason: Optional[str] = None


def _first_json_array(body: str) -> Optional[list]:
    decoder = json.JSONDecoder()
    start = body.find("[")
    while start >= 0:
        try:
            raw, _ = decoder.raw_decode(body, start)
        except json.JSONDecodeError:
            raw = None
        if isinstance(raw, list) and (not raw or any(isinstance(e, dict) for e in raw)):
            return raw
        start = body.find("[", start + 1)
    return None


def parse_ai_connections(text: str, item_count: int) -> List[AIConnection]:
    """
    Pull the first JSON array out of a model reply and keep the entries that
    are well formed, in range and not self-links. Never raises.
    """
    if not text or not text.strip():
        return []

    body = text.strip()
    fenced = _FENCED_BLOCK.search(body)
    if fenced:
        body = fenced.group(1).strip()

    raw = _first_json_array(body)
    if raw is None:
        logger.warning("AI connections reply held no JSON array.")
        return []

    connections: List[AIConnection] = []
    for entry in raw:
        try:
            conn = AIConnection.model_validate(entry)
        except ValidationError:
            logger.debug("Dropping malformed AI connection: %s", entry)
            continue
        if conn.source >= item_count or conn.target >= item_count:
            continue
        if conn.source == conn.target:
            continue
        connections.append(conn)
    return connections


def _connections_prompt(query: str, items: Sequence[SimilarityItem], count: int) -> str:
    listing = "\n".join(
        f"{idx}. {item.title} ({item.year or '?'})" for idx, item in enumerate(items)
    )
    return (
        f'Find {count} connections between these "{query}" results:\n\n'
        f"{listing}\n\n"
        "Types: director, actor, genre, keyword, studio, similarity\n\n"
        "Return JSON array only:\n"
        '[{"from":0,"to":1,"type":"genre","reason":"romantic comedies"}]'
    )


class _EdgeSet:
    def __init__(self) -> None:
        self.edges: List[GraphEdge] = []
        self.keys: Set[tuple[str, str]] = set()
        self.connected: Set[str] = set()

    def add(
        self,
        source_id: str,
        target_id: str,
        similarity: float,
        reasons: List[ConnectionReason],
    ) -> bool:
        if source_id == target_id:
            return False
        key = edge_key(source_id, target_id)
        if key in self.keys:
            return False
        self.keys.add(key)
        self.edges.append(
            GraphEdge(
                source=source_id,
                target=target_id,
                similarity=min(1.0, max(0.0, similarity)),
                reasons=reasons,
            )
        )
        self.connected.update((source_id, target_id))
        return True


def _similarity_reason() -> List[ConnectionReason]:
    return [ConnectionReason(type=ConnectionType.SIMILARITY)]


class AIConnectionSynthesizer:
    def __init__(
        self,
        finder: NearestNeighborFinder,
        text_generator: Optional[TextGenerator] = None,
        *,
        min_similarity: float = config.SEARCH_GRAPH_MIN_SIMILARITY,
    ):
        self.finder = finder
        self._generator = text_generator
        self.min_similarity = min_similarity

    def build_graph(
        self, search_result: SemanticSearchResult, use_ai: bool = True
    ) -> GraphData:
        items = [hit.item for hit in search_result.results]
        if not items:
            return GraphData()

        nodes: Dict[str, GraphNode] = {}
        for item in items:
            nodes.setdefault(item.id, GraphNode.from_item(item, is_center=True))
        edges = _EdgeSet()

        ai_succeeded = False
        if use_ai and len(nodes) >= 2:
            ai_succeeded = self._add_ai_edges(search_result.query, items, edges) > 0

        if not ai_succeeded and len(nodes) >= 2:
            logger.info(
                "Using embedding similarity for search graph | query=%s",
                search_result.query,
            )
            self._add_embedding_edges(items, nodes, edges)

        self._connect_orphans(items, nodes, edges)

        if not edges.edges and len(nodes) >= 2:
            logger.warning("No connections found, creating fallback chain.")
            ordered = list(nodes)
            for left, right in zip(ordered, ordered[1:]):
                edges.add(left, right, CHAIN_SIMILARITY, _similarity_reason())

        logger.info(
            "Built semantic search graph | query=%s nodes=%d edges=%d",
            search_result.query,
            len(nodes),
            len(edges.edges),
        )
        return GraphData(nodes=nodes, edges=edges.edges)

    def _add_ai_edges(
        self, query: str, items: Sequence[SimilarityItem], edges: _EdgeSet
    ) -> int:
        if self._generator is None:
            logger.info("No text generator configured; skipping AI connections.")
            return 0

        limited = list(items[:MAX_AI_ITEMS])
        count = min(len(limited) * 2, MAX_AI_CONNECTIONS)
        try:
            text = self._generator.generate(
                _connections_prompt(query, limited, count),
                max_tokens=1500,
                temperature=0.4,
            )
        except TextGenerationError as exc:
            logger.warning("AI connection finding failed: %s", exc)
            return 0
        except Exception:
            logger.exception("AI connection finding raised; continuing without AI edges.")
            return 0

        connections = parse_ai_connections(text, len(limited))
        added = 0
        for conn in connections:
            reason = ConnectionReason(type=conn.type, value=conn.reason or None)
            if edges.add(
                limited[conn.source].id,
                limited[conn.target].id,
                AI_EDGE_SIMILARITY,
                [reason],
            ):
                added += 1
        logger.info(
            "AI found connections | query=%s suggested=%d added=%d",
            query,
            len(connections),
            added,
        )
        return added

    def _add_embedding_edges(
        self,
        items: Sequence[SimilarityItem],
        nodes: Dict[str, GraphNode],
        edges: _EdgeSet,
    ) -> None:
        for item in items[:EMBEDDING_TIER_ITEMS]:
            try:
                result = self.finder.find_similar(
                    item.id, item.type, EMBEDDING_TIER_NEIGHBORS
                )
            except Exception as exc:
                logger.debug("Skipping embedding lookup | id=%s error=%s", item.id, exc)
                continue
            for conn in result.connections:
                if conn.item.id in nodes and conn.similarity >= self.min_similarity:
                    edges.add(item.id, conn.item.id, conn.similarity, _similarity_reason())

    def _connect_orphans(
        self,
        items: Sequence[SimilarityItem],
        nodes: Dict[str, GraphNode],
        edges: _EdgeSet,
    ) -> None:
        orphans = [item for item in items if item.id not in edges.connected]
        if not orphans or not edges.connected:
            return
        logger.debug("Connecting orphan nodes | count=%d", len(orphans))

        for item in orphans:
            if item.id in edges.connected:
                continue
            best_id: Optional[str] = None
            best_similarity = -1.0
            try:
                result = self.finder.find_similar(item.id, item.type, ORPHAN_NEIGHBORS)
            except Exception as exc:
                logger.debug("Orphan lookup failed | id=%s error=%s", item.id, exc)
                result = None
            if result is not None:
                for conn in result.connections:
                    if conn.item.id not in edges.connected or conn.item.id == item.id:
                        continue
                    if conn.similarity > best_similarity:
                        best_id = conn.item.id
                        best_similarity = conn.similarity

            if best_id is not None:
                edges.add(item.id, best_id, best_similarity, _similarity_reason())
                continue
            fallback = next(
                (other for other in items if other.id != item.id and other.id in edges.connected),
                None,
            )
            if fallback is not None:
                edges.add(
                    item.id, fallback.id, ORPHAN_FALLBACK_SIMILARITY, _similarity_reason()
                )
