"""
Multi-level similarity graph construction.

Level 1 is the center's direct neighbours. Each deeper level expands the
previous level's frontier through the collection limiter and the connection
validator. When a level still leaves the graph dominated by one collection,
the diverse content finder is asked for off-franchise titles that are joined
straight to the center.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Sequence, Set, Tuple

from simgraph import config
from simgraph.core.diverse import DiverseContentFinder
from simgraph.core.franchise import (
    CollectionLimiter,
    CollectionSizeCache,
    analyze_bubble,
)
from simgraph.core.interfaces import GraphSourceStore, MetadataStore
from simgraph.core.models import (
    ConnectionReason,
    GraphData,
    GraphEdge,
    GraphNode,
    SimilarityConnection,
    SimilarityItem,
    SimilarityPreferences,
    edge_key,
)
from simgraph.core.neighbors import NearestNeighborFinder
from simgraph.core.reasons import ai_diverse_reason
from simgraph.core.validation import ConnectionValidator

logger = logging.getLogger(__name__)

GRAPH_SOURCES: Tuple[str, ...] = (
    "ai-movies",
    "ai-series",
    "watching",
    "top-movies",
    "top-series",
)
CONNECTIONS_PER_SOURCE_NODE = 3


def max_nodes(depth: int, limit: int) -> int:
    if depth <= 1:
        return limit + 1
    if depth == 2:
        return 25
    return 45


@dataclass
class GraphBuildState:
    """Everything one build accumulates. Nothing here outlives the build."""

    limiter: CollectionLimiter
    hidden_ids: Set[str] = field(default_factory=set)
    nodes: Dict[str, GraphNode] = field(default_factory=dict)
    edges: List[GraphEdge] = field(default_factory=list)
    edge_keys: Set[Tuple[str, str]] = field(default_factory=set)
    processed_ids: Set[str] = field(default_factory=set)
    items_by_id: Dict[str, SimilarityItem] = field(default_factory=dict)
    all_items: List[SimilarityItem] = field(default_factory=list)

    def add_node(self, item: SimilarityItem, *, is_center: bool = False) -> bool:
        """False when the item is already present or hidden as watched."""
        if not is_center and item.id in self.hidden_ids:
            return False
        if item.id in self.nodes:
            return False
        self.nodes[item.id] = GraphNode.from_item(item, is_center=is_center)
        self.items_by_id[item.id] = item
        self.all_items.append(item)
        self.limiter.record(item.collection_name)
        return True

    def add_edge(
        self,
        source_id: str,
        target_id: str,
        similarity: float,
        reasons: Sequence[ConnectionReason],
    ) -> bool:
        if source_id == target_id:
            return False
        key = edge_key(source_id, target_id)
        if key in self.edge_keys:
            return False
        self.edge_keys.add(key)
        self.edges.append(
            GraphEdge(
                source=source_id,
                target=target_id,
                similarity=similarity,
                reasons=list(reasons),
            )
        )
        return True

    def add_connection(self, source_id: str, conn: SimilarityConnection) -> bool:
        return self.add_edge(source_id, conn.item.id, conn.similarity, conn.reasons)

    def add_ai_diverse_edge(
        self, center: SimilarityItem, item: SimilarityItem, similarity: float
    ) -> bool:
        return self.add_edge(center.id, item.id, similarity, [ai_diverse_reason(center.title)])

    def to_graph(self) -> GraphData:
        return GraphData(nodes=dict(self.nodes), edges=list(self.edges))


class GraphBuilder:
    def __init__(
        self,
        finder: NearestNeighborFinder,
        metadata: MetadataStore,
        validator: ConnectionValidator,
        diverse_finder: Optional[DiverseContentFinder] = None,
        collection_sizes: Optional[CollectionSizeCache] = None,
        *,
        bubble_threshold: float = config.BUBBLE_THRESHOLD,
        ai_diverse_score: float = config.AI_DIVERSE_SCORE,
        deadline_seconds: float = config.GRAPH_DEADLINE_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.finder = finder
        self.metadata = metadata
        self.validator = validator
        self.diverse_finder = diverse_finder
        self.collection_sizes = (
            collection_sizes if collection_sizes is not None else CollectionSizeCache()
        )
        self.bubble_threshold = bubble_threshold
        self.ai_diverse_score = ai_diverse_score
        self.deadline_seconds = deadline_seconds
        self._clock = clock

    def build(
        self,
        item_id: str,
        content_type: str,
        *,
        depth: int = 1,
        limit: int = 6,
        preferences: Optional[SimilarityPreferences] = None,
        watched_ids: Optional[Set[str]] = None,
    ) -> GraphData:
        """
        Build the similarity graph around *item_id*.

        Raises ItemNotFoundError for an unknown center. Everything else that
        goes wrong while expanding only makes the graph smaller.
        """
        prefs = preferences or SimilarityPreferences()
        hidden = set(watched_ids or ()) if prefs.hide_watched else set()
        cap = max_nodes(depth, limit)
        deadline = (
            self._clock() + self.deadline_seconds if self.deadline_seconds > 0 else None
        )

        center_result = self.finder.find_similar(item_id, content_type, limit)
        center = center_result.center

        limiter = CollectionLimiter(
            lambda name: self.metadata.count_by_collection(name, content_type),
            self.collection_sizes,
            content_type,
        )
        state = GraphBuildState(limiter=limiter, hidden_ids=hidden)
        state.add_node(center, is_center=True)
        state.processed_ids.add(center.id)

        frontier: List[SimilarityItem] = []
        for conn in center_result.connections:
            if len(state.nodes) >= cap:
                break
            if state.add_node(conn.item):
                state.add_connection(center.id, conn)
                frontier.append(conn.item)

        for level in range(2, depth + 1):
            if len(state.nodes) >= cap:
                logger.info(
                    "Stopping expansion, max nodes reached | level=%d nodes=%d max_nodes=%d",
                    level,
                    len(state.nodes),
                    cap,
                )
                break
            if self._expired(deadline):
                logger.warning(
                    "Graph deadline reached; returning partial graph | item_id=%s level=%d nodes=%d",
                    item_id,
                    level,
                    len(state.nodes),
                )
                break

            level_limit = max(2, limit // level)
            added_at_level, next_frontier = self._expand_level(
                state, center, frontier, level_limit, cap, prefs, deadline
            )
            logger.info(
                "Expanded graph level | level=%d added=%d nodes=%d",
                level,
                added_at_level,
                len(state.nodes),
            )

            bubble = analyze_bubble(state.all_items, self.bubble_threshold)
            if bubble.is_bubbled and added_at_level < 2:
                logger.info(
                    "Bubble detected, trying AI escape | level=%d collection=%s percentage=%d added=%d",
                    level,
                    bubble.dominant_collection,
                    round(bubble.collection_percentage * 100),
                    added_at_level,
                )
                next_frontier.extend(
                    self._escape_bubble(state, center, content_type, limit, added_at_level, cap)
                )
            frontier = next_frontier

        logger.debug(
            "Built similarity graph | item_id=%s depth=%d nodes=%d edges=%d collections=%s",
            item_id,
            depth,
            len(state.nodes),
            len(state.edges),
            limiter.counts,
        )
        return state.to_graph()

    def _expand_level(
        self,
        state: GraphBuildState,
        center: SimilarityItem,
        frontier: Sequence[SimilarityItem],
        level_limit: int,
        cap: int,
        prefs: SimilarityPreferences,
        deadline: Optional[float],
    ) -> Tuple[int, List[SimilarityItem]]:
        added_at_level = 0
        next_frontier: List[SimilarityItem] = []

        for source in frontier:
            if len(state.nodes) >= cap:
                break
            if self._expired(deadline):
                logger.warning("Graph deadline reached mid-level | nodes=%d", len(state.nodes))
                break
            if source.id in state.processed_ids:
                continue
            state.processed_ids.add(source.id)

            try:
                result = self.finder.find_similar(source.id, source.type, level_limit * 3)
            except Exception as exc:
                logger.warning("Skipping frontier node | id=%s error=%s", source.id, exc)
                continue

            added_for_node = 0
            for conn in result.connections:
                if len(state.nodes) >= cap or added_for_node >= level_limit:
                    break
                candidate = conn.item
                if candidate.id == center.id or candidate.id in state.nodes:
                    continue
                if candidate.id in state.hidden_ids:
                    continue
                if not state.limiter.can_admit(
                    candidate.collection_name, prefs.full_franchise_mode
                ):
                    logger.debug(
                        "Skipping over-represented collection | title=%s collection=%s",
                        candidate.title,
                        candidate.collection_name,
                    )
                    continue

                validation = self.validator.validate(source, candidate)
                if not validation.is_valid:
                    logger.debug(
                        "Connection rejected | source=%s target=%s reason=%s cached=%s",
                        source.title,
                        candidate.title,
                        validation.reason,
                        validation.from_cache,
                    )
                    continue

                if state.add_node(candidate) and state.add_connection(source.id, conn):
                    added_for_node += 1
                    added_at_level += 1
                    if candidate.id not in state.processed_ids:
                        next_frontier.append(candidate)

        return added_at_level, next_frontier

    def _escape_bubble(
        self,
        state: GraphBuildState,
        center: SimilarityItem,
        content_type: str,
        limit: int,
        added_at_level: int,
        cap: int,
    ) -> List[SimilarityItem]:
        if self.diverse_finder is None:
            return []
        budget = min(max(4, limit - added_at_level), cap - len(state.nodes))
        if budget <= 0:
            return []

        try:
            result = self.diverse_finder.find(
                center, state.all_items, limit=budget, content_type=content_type
            )
        except Exception:
            logger.exception("AI escape failed | center=%s", center.id)
            return []

        added: List[SimilarityItem] = []
        for item in result.items:
            if len(state.nodes) >= cap:
                break
            if state.add_node(item):
                state.add_ai_diverse_edge(center, item, self.ai_diverse_score)
                added.append(item)
        logger.info("Added diverse content from AI | added=%d", len(added))
        return added

    def _expired(self, deadline: Optional[float]) -> bool:
        return deadline is not None and self._clock() >= deadline


def graph_for_source(
    finder: NearestNeighborFinder,
    sources: GraphSourceStore,
    source: str,
    user_id: str,
    *,
    limit: int = 20,
    include_cross_media: bool = False,
) -> GraphData:
    """Explore-page graph: every source item is a center with a few links each."""
    if source not in GRAPH_SOURCES:
        raise ValueError(f"Unknown graph source: {source}")

    centers = sources.center_items(source, user_id, limit)
    if not centers:
        return GraphData()

    nodes: Dict[str, GraphNode] = {
        item.id: GraphNode.from_item(item, is_center=True) for item in centers
    }
    edges: List[GraphEdge] = []
    seen: Set[Tuple[str, str]] = set()

    for center in centers:
        try:
            result = finder.find_similar(
                center.id, center.type, CONNECTIONS_PER_SOURCE_NODE * 2
            )
        except Exception as exc:
            logger.warning("Skipping source center | id=%s error=%s", center.id, exc)
            continue

        ranked = sorted(
            result.connections,
            key=lambda conn: (
                not (conn.item.id in nodes and nodes[conn.item.id].is_center),
                -conn.similarity,
            ),
        )
        added = 0
        for conn in ranked:
            if added >= CONNECTIONS_PER_SOURCE_NODE:
                break
            if not include_cross_media and conn.item.type != center.type:
                continue
            key = edge_key(center.id, conn.item.id)
            if key in seen or center.id == conn.item.id:
                continue
            seen.add(key)
            if conn.item.id not in nodes:
                nodes[conn.item.id] = GraphNode.from_item(conn.item)
            edges.append(
                GraphEdge(
                    source=center.id,
                    target=conn.item.id,
                    similarity=conn.similarity,
                    reasons=conn.reasons,
                )
            )
            added += 1

    logger.debug(
        "Built graph for source | source=%s user_id=%s nodes=%d edges=%d",
        source,
        user_id,
        len(nodes),
        len(edges),
    )
    return GraphData(nodes=nodes, edges=edges)
