from __future__ import annotations

import logging
from typing import Optional

from simgraph import config
from simgraph.core.errors import ItemNotFoundError
from simgraph.core.interfaces import EmbeddingIndex, MetadataStore
from simgraph.core.models import SimilarityConnection, SimilarityResult
from simgraph.core.reasons import compute_connection_reasons

logger = logging.getLogger(__name__)

DEFAULT_LIMIT = 12


class NearestNeighborFinder:
    def __init__(
        self,
        metadata: MetadataStore,
        index: EmbeddingIndex,
        active_model_id: Optional[str] = config.ACTIVE_EMBED_MODEL,
    ):
        self._metadata = metadata
        self._index = index
        self.active_model_id = active_model_id

    def find_similar(
        self, item_id: str, content_type: str, limit: int = DEFAULT_LIMIT
    ) -> SimilarityResult:
        """
        Returns the item plus its nearest neighbours of the same content type.

        Raises ItemNotFoundError when the item is unknown. A missing model or a
        missing vector is not an error: the connection list is simply empty.
        """
        center = self._metadata.get_by_id(item_id, content_type)
        if center is None:
            raise ItemNotFoundError(item_id, content_type)

        if not self.active_model_id:
            logger.warning("No embedding model configured; returning bare center.")
            return SimilarityResult(center=center)

        if limit <= 0:
            return SimilarityResult(center=center)

        try:
            hits = self._index.neighbors_of_item(
                item_id, content_type, self.active_model_id, limit
            )
        except Exception as exc:
            logger.warning(
                "Neighbour lookup failed | item_id=%s type=%s error=%s",
                item_id,
                content_type,
                exc,
            )
            return SimilarityResult(center=center)
        if not hits:
            logger.warning(
                "No embedding found | item_id=%s type=%s model=%s",
                item_id,
                content_type,
                self.active_model_id,
            )
            return SimilarityResult(center=center)

        connections = [
            SimilarityConnection(
                item=hit.item,
                similarity=min(1.0, max(0.0, float(hit.similarity))),
                reasons=compute_connection_reasons(center, hit.item),
            )
            for hit in hits
            if hit.item.id != center.id
        ][:limit]
        logger.debug(
            "Found similar items | item_id=%s type=%s connections=%d",
            item_id,
            content_type,
            len(connections),
        )
        return SimilarityResult(center=center, connections=connections)
