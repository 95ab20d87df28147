"""
Franchise ("collection") bookkeeping for graph construction.

Plain top-K similarity over a franchise-heavy library collapses into a single
collection. The limiter caps how many members of one collection a graph may
admit, scaled by the collection's size; the bubble detector reports when a
graph is dominated by one collection anyway.
"""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass
from threading import Lock
from typing import Callable, Dict, Iterable, Optional, Tuple

from cachetools import LRUCache

from simgraph import config
from simgraph.core.models import SimilarityItem

logger = logging.getLogger(__name__)


def dynamic_collection_limit(collection_size: int) -> int:
    """
    Small collections (<=5) are admitted whole, medium ones (6-15) at 50%
    (at least 3), large ones at 30% clamped to [5, 8].
    """
    if collection_size <= 5:
        return max(0, collection_size)
    if collection_size <= 15:
        return max(3, int(collection_size * 0.5))
    return min(8, max(5, int(collection_size * 0.3)))


class CollectionSizeCache:
    """
    Cache-aside store of collection name -> item count. Safe to clear at any
    time; concurrent misses only cost a redundant count.
    """

    def __init__(self, maxsize: int = config.COLLECTION_SIZE_CACHE_MAXSIZE):
        self._cache: LRUCache[Tuple[str, str], int] = LRUCache(maxsize=maxsize)
        self._lock = Lock()

    def get_or_load(
        self, collection_name: str, content_type: str, loader: Callable[[], int]
    ) -> int:
        key = (content_type, collection_name)
        with self._lock:
            cached = self._cache.get(key)
        if cached is not None:
            return cached
        size = loader()
        with self._lock:
            self._cache[key] = size
        return size

    def clear(self) -> None:
        with self._lock:
            self._cache.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._cache)


class CollectionLimiter:
    """Per-build running counts checked against the dynamic collection limit."""

    def __init__(
        self,
        count_collection: Callable[[str], int],
        sizes: CollectionSizeCache,
        content_type: str,
    ):
        self._count_collection = count_collection
        self._sizes = sizes
        self._content_type = content_type
        self.counts: Dict[str, int] = {}

    def collection_size(self, collection_name: str) -> int:
        def _load() -> int:
            size = self._count_collection(collection_name)
            # A title that names a collection is at least its own member.
            return max(1, int(size or 0))

        return self._sizes.get_or_load(collection_name, self._content_type, _load)

    def can_admit(
        self, collection_name: Optional[str], full_franchise_mode: bool = False
    ) -> bool:
        if full_franchise_mode or not collection_name:
            return True
        count = self.counts.get(collection_name, 0)
        limit = dynamic_collection_limit(self.collection_size(collection_name))
        return count < limit

    def record(self, collection_name: Optional[str]) -> None:
        if collection_name:
            self.counts[collection_name] = self.counts.get(collection_name, 0) + 1


@dataclass(frozen=True)
class BubbleAnalysis:
    is_bubbled: bool
    dominant_collection: Optional[str]
    collection_percentage: float
    unique_collections: int


def analyze_bubble(
    items: Iterable[SimilarityItem], threshold: float = config.BUBBLE_THRESHOLD
) -> BubbleAnalysis:
    """Share of *items* held by the most common non-null collection."""
    items = list(items)
    if not items:
        return BubbleAnalysis(False, None, 0.0, 0)

    counts = Counter(item.collection_name for item in items if item.collection_name)
    if not counts:
        return BubbleAnalysis(False, None, 0.0, 0)

    dominant, max_count = counts.most_common(1)[0]
    percentage = max_count / len(items)
    return BubbleAnalysis(
        is_bubbled=percentage >= threshold,
        dominant_collection=dominant,
        collection_percentage=percentage,
        unique_collections=len(counts),
    )
