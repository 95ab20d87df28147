from __future__ import annotations

import logging
from typing import Dict, Optional, Set, Tuple

from sqlalchemy.orm import Session

from simgraph import config
from simgraph.core.diverse import DiverseContentFinder
from simgraph.core.embeddings import SentenceTransformerEmbedder
from simgraph.core.franchise import CollectionSizeCache
from simgraph.core.graph_builder import GraphBuilder, graph_for_source
from simgraph.core.interfaces import (
    GraphSourceStore,
    TextEmbedder,
    TextGenerator,
    UserPreferenceStore,
    WatchedIdStore,
)
from simgraph.core.llm_client import get_text_generator
from simgraph.core.models import (
    CONTENT_TYPES,
    GraphData,
    SemanticSearchResult,
    SimilarityPreferences,
    SimilarityResult,
)
from simgraph.core.neighbors import DEFAULT_LIMIT, NearestNeighborFinder
from simgraph.core.reasons import CONNECTION_COLORS
from simgraph.core.search import DEFAULT_SEARCH_LIMIT, SemanticSearchEngine
from simgraph.core.synthesizer import AIConnectionSynthesizer
from simgraph.core.validation import ConnectionValidator

logger = logging.getLogger(__name__)

MAX_GRAPH_DEPTH = 3

# Shared across services so collection sizes survive between requests.
_COLLECTION_SIZES = CollectionSizeCache()


class SimilarityService:
    """Entry point for callers: similar items, graphs, search and search graphs."""

    def __init__(
        self,
        finder: NearestNeighborFinder,
        graph_builder: GraphBuilder,
        search_engine: SemanticSearchEngine,
        synthesizer: AIConnectionSynthesizer,
        validator: ConnectionValidator,
        *,
        preferences: Optional[UserPreferenceStore] = None,
        watched: Optional[WatchedIdStore] = None,
        sources: Optional[GraphSourceStore] = None,
    ):
        self.finder = finder
        self.graph_builder = graph_builder
        self.search_engine = search_engine
        self.synthesizer = synthesizer
        self.validator = validator
        self.preferences = preferences
        self.watched = watched
        self.sources = sources

    def find_similar(
        self, item_id: str, content_type: str, limit: int = DEFAULT_LIMIT
    ) -> SimilarityResult:
        _check_content_type(content_type)
        return self.finder.find_similar(item_id, content_type, limit)

    def build_graph(
        self,
        item_id: str,
        content_type: str,
        depth: int = 1,
        limit: int = 6,
        user_id: Optional[str] = None,
    ) -> GraphData:
        _check_content_type(content_type)
        if depth < 1 or depth > MAX_GRAPH_DEPTH:
            raise ValueError(f"depth must be between 1 and {MAX_GRAPH_DEPTH}")
        if limit < 1:
            raise ValueError("limit must be positive")

        prefs, watched_ids = self.resolve_preferences(user_id, content_type)
        logger.debug(
            "Similarity graph preferences | user_id=%s full_franchise=%s hide_watched=%s watched=%d",
            user_id,
            prefs.full_franchise_mode,
            prefs.hide_watched,
            len(watched_ids),
        )
        return self.graph_builder.build(
            item_id,
            content_type,
            depth=depth,
            limit=limit,
            preferences=prefs,
            watched_ids=watched_ids,
        )

    def graph_for_source(
        self,
        source: str,
        user_id: str,
        limit: int = 20,
        include_cross_media: bool = False,
    ) -> GraphData:
        if self.sources is None:
            raise ValueError("No graph source store configured")
        return graph_for_source(
            self.finder,
            self.sources,
            source,
            user_id,
            limit=limit,
            include_cross_media=include_cross_media,
        )

    def search(
        self,
        query: str,
        content_type: str = "both",
        limit: int = DEFAULT_SEARCH_LIMIT,
        user_id: Optional[str] = None,
        hide_watched: Optional[bool] = None,
    ) -> SemanticSearchResult:
        excluded: Set[str] = set()
        if user_id:
            if hide_watched is None:
                hide_watched = self._stored_preferences(user_id).hide_watched
            if hide_watched and self.watched is not None:
                kinds = CONTENT_TYPES if content_type == "both" else (content_type,)
                for kind in kinds:
                    excluded |= self.watched.get(user_id, kind)
        return self.search_engine.search(
            query, content_type=content_type, limit=limit, exclude_ids=excluded
        )

    def build_graph_from_search(
        self, search_result: SemanticSearchResult, use_ai: bool = True
    ) -> GraphData:
        return self.synthesizer.build_graph(search_result, use_ai=use_ai)

    def connection_colors(self) -> Dict[str, str]:
        return dict(CONNECTION_COLORS)

    def validation_cache_stats(self) -> Dict[str, int]:
        return self.validator.cache_stats()

    def resolve_preferences(
        self, user_id: Optional[str], content_type: str
    ) -> Tuple[SimilarityPreferences, Set[str]]:
        """Stored preferences plus, when hiding watched titles, the ids to hide."""
        if not user_id:
            return SimilarityPreferences(), set()
        prefs = self._stored_preferences(user_id)
        watched_ids: Set[str] = set()
        if prefs.hide_watched and self.watched is not None:
            watched_ids = set(self.watched.get(user_id, content_type))
        return prefs, watched_ids

    def _stored_preferences(self, user_id: str) -> SimilarityPreferences:
        if self.preferences is None:
            return SimilarityPreferences(full_franchise_mode=False, hide_watched=True)
        return self.preferences.get(user_id)


def _check_content_type(content_type: str) -> None:
    if content_type not in CONTENT_TYPES:
        raise ValueError(f"Unsupported content type: {content_type}")


def build_similarity_service(
    db: Session,
    *,
    text_generator: Optional[TextGenerator] = None,
    embedder: Optional[TextEmbedder] = None,
    collection_sizes: Optional[CollectionSizeCache] = None,
    active_model_id: Optional[str] = config.ACTIVE_EMBED_MODEL,
    enable_ai: bool = True,
) -> SimilarityService:
    """
    Wire the SQL/pgvector stores and the configured model providers.

    With ``enable_ai=False`` no text generator is resolved from the
    environment, so validation, diversification and search graphs fall back
    to their rule and embedding paths.
    """
    from simgraph.db.stores import (
        PgvectorEmbeddingIndex,
        SqlGraphSourceStore,
        SqlMetadataStore,
        SqlUserPreferenceStore,
        SqlValidationCacheStore,
        SqlWatchedIdStore,
    )

    if text_generator is None and enable_ai:
        text_generator = get_text_generator()
    if embedder is None and active_model_id:
        embedder = SentenceTransformerEmbedder()

    metadata = SqlMetadataStore(db)
    index = PgvectorEmbeddingIndex(db)
    finder = NearestNeighborFinder(metadata, index, active_model_id=active_model_id)
    validator = ConnectionValidator(text_generator, SqlValidationCacheStore(db))
    builder = GraphBuilder(
        finder,
        metadata,
        validator,
        diverse_finder=DiverseContentFinder(metadata, text_generator),
        collection_sizes=(
            collection_sizes if collection_sizes is not None else _COLLECTION_SIZES
        ),
    )
    return SimilarityService(
        finder,
        builder,
        SemanticSearchEngine(embedder, index, active_model_id=active_model_id),
        AIConnectionSynthesizer(finder, text_generator),
        validator,
        preferences=SqlUserPreferenceStore(db),
        watched=SqlWatchedIdStore(db),
        sources=SqlGraphSourceStore(db, metadata),
    )
