from __future__ import annotations

import logging
import math
from typing import Iterable, List, Optional

from simgraph import config
from simgraph.core.errors import CapabilityUnavailableError
from simgraph.core.interfaces import EmbeddingIndex, TextEmbedder
from simgraph.core.models import CONTENT_TYPES, SearchHit, SemanticSearchResult

logger = logging.getLogger(__name__)

DEFAULT_SEARCH_LIMIT = 20
# Extra rows fetched per excluded id so filtering does not starve the result.
EXCLUDE_OVERSAMPLE_CAP = 100


class SemanticSearchEngine:
    """Free-text search over stored item vectors."""

    def __init__(
        self,
        embedder: Optional[TextEmbedder],
        index: EmbeddingIndex,
        active_model_id: Optional[str] = config.ACTIVE_EMBED_MODEL,
    ):
        self._embedder = embedder
        self._index = index
        self.active_model_id = active_model_id

    def search(
        self,
        query: str,
        content_type: str = "both",
        limit: int = DEFAULT_SEARCH_LIMIT,
        exclude_ids: Optional[Iterable[str]] = None,
    ) -> SemanticSearchResult:
        if content_type not in (*CONTENT_TYPES, "both"):
            raise ValueError(f"Unsupported content type: {content_type}")
        if not query or not query.strip() or limit <= 0:
            return SemanticSearchResult(query=query)

        if not self.active_model_id or self._embedder is None:
            logger.warning("No embedding model configured for semantic search.")
            return SemanticSearchResult(query=query)

        logger.info(
            "Performing semantic search | query=%s type=%s limit=%d",
            query,
            content_type,
            limit,
        )
        try:
            vector = self._embedder.embed(query)
        except CapabilityUnavailableError as exc:
            logger.warning("Query embedding unavailable: %s", exc)
            return SemanticSearchResult(query=query)
        except Exception:
            logger.exception("Failed to embed search query.")
            return SemanticSearchResult(query=query)

        excluded = set(exclude_ids or ())
        if content_type == "both":
            quotas = {"movie": math.ceil(limit / 2), "series": limit // 2}
        else:
            quotas = {content_type: limit}

        hits: List[SearchHit] = []
        for kind, quota in quotas.items():
            if quota <= 0:
                continue
            k = quota + min(len(excluded), EXCLUDE_OVERSAMPLE_CAP)
            try:
                rows = self._index.neighbors_of_vector(
                    vector, kind, self.active_model_id, k
                )
            except Exception as exc:
                logger.warning("Vector lookup failed | type=%s error=%s", kind, exc)
                continue
            kept = [hit for hit in rows if hit.item.id not in excluded]
            hits.extend(kept[:quota])

        hits.sort(key=lambda hit: hit.similarity, reverse=True)
        results = hits[:limit]
        logger.info(
            "Semantic search completed | query=%s results=%d type=%s",
            query,
            len(results),
            content_type,
        )
        return SemanticSearchResult(query=query, results=results)
