from __future__ import annotations

from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Set, Tuple

from simgraph.core.errors import TextGenerationError
from simgraph.core.models import (
    Actor,
    SearchHit,
    SimilarityItem,
    SimilarityPreferences,
    Studio,
)

MODEL_ID = "test-model"


def make_item(
    item_id: str,
    title: Optional[str] = None,
    *,
    type: str = "movie",
    genres: Sequence[str] = ("Drama",),
    collection: Optional[str] = None,
    year: Optional[int] = 2000,
    directors: Sequence[str] = (),
    actors: Sequence[Any] = (),
    keywords: Sequence[str] = (),
    studios: Sequence[str] = (),
    network: Optional[str] = None,
) -> SimilarityItem:
    return SimilarityItem(
        id=item_id,
        title=title or f"Title {item_id}",
        year=year,
        type=type,
        genres=list(genres),
        directors=list(directors),
        actors=[a if isinstance(a, Actor) else Actor(name=a) for a in actors],
        collection_name=collection,
        network=network,
        keywords=list(keywords),
        studios=[Studio(name=name) for name in studios],
    )


class FakeMetadataStore:
    def __init__(
        self,
        items: Iterable[SimilarityItem] = (),
        collection_sizes: Optional[Dict[str, int]] = None,
    ):
        self.items: Dict[str, SimilarityItem] = {item.id: item for item in items}
        self.collection_sizes = dict(collection_sizes or {})
        self.count_calls: List[Tuple[str, str]] = []

    def add(self, *items: SimilarityItem) -> None:
        for item in items:
            self.items[item.id] = item

    def get_by_id(self, item_id: str, content_type: str) -> Optional[SimilarityItem]:
        item = self.items.get(item_id)
        if item is None or item.type != content_type:
            return None
        return item

    def count_by_collection(self, collection_name: str, content_type: str) -> int:
        self.count_calls.append((collection_name, content_type))
        if collection_name in self.collection_sizes:
            return self.collection_sizes[collection_name]
        return sum(
            1
            for item in self.items.values()
            if item.collection_name == collection_name and item.type == content_type
        )

    def find_by_title(self, title: str, content_type: str) -> Optional[SimilarityItem]:
        for item in self.items.values():
            if item.type == content_type and item.title.lower() == title.lower():
                return item
        return None

    def top_rated(self, content_type: str, limit: int) -> List[SimilarityItem]:
        return [item for item in self.items.values() if item.type == content_type][:limit]


class FakeEmbeddingIndex:
    """
    Neighbour lists keyed by item id: ``links[a] = [(b, 0.9), ...]``.
    Items are resolved through the metadata store.
    """

    def __init__(
        self,
        metadata: FakeMetadataStore,
        links: Optional[Dict[str, Sequence[Tuple[str, float]]]] = None,
        vector_hits: Optional[Dict[str, Sequence[Tuple[str, float]]]] = None,
        failing_ids: Iterable[str] = (),
        failing_types: Iterable[str] = (),
    ):
        self.metadata = metadata
        self.links = {key: list(value) for key, value in (links or {}).items()}
        self.vector_hits = {key: list(value) for key, value in (vector_hits or {}).items()}
        self.failing_ids = set(failing_ids)
        self.failing_types = set(failing_types)
        self.item_calls: List[Tuple[str, str, str, int]] = []
        self.vector_calls: List[Tuple[List[float], str, str, int]] = []

    def link(self, source_id: str, target_id: str, similarity: float, both: bool = True) -> None:
        self.links.setdefault(source_id, []).append((target_id, similarity))
        if both:
            self.links.setdefault(target_id, []).append((source_id, similarity))

    def neighbors_of_item(
        self, item_id: str, content_type: str, model_id: str, k: int
    ) -> List[SearchHit]:
        self.item_calls.append((item_id, content_type, model_id, k))
        if item_id in self.failing_ids:
            raise RuntimeError(f"index unavailable for {item_id}")
        hits = []
        for target_id, similarity in self.links.get(item_id, []):
            item = self.metadata.items.get(target_id)
            if item is None or item.type != content_type or target_id == item_id:
                continue
            hits.append(SearchHit(item=item, similarity=similarity))
        hits.sort(key=lambda hit: hit.similarity, reverse=True)
        return hits[:k]

    def neighbors_of_vector(
        self, vector: Sequence[float], content_type: str, model_id: str, k: int
    ) -> List[SearchHit]:
        self.vector_calls.append((list(vector), content_type, model_id, k))
        if content_type in self.failing_types:
            raise RuntimeError(f"vector index unavailable for {content_type}")
        hits = [
            SearchHit(item=self.metadata.items[item_id], similarity=similarity)
            for item_id, similarity in self.vector_hits.get(content_type, [])
        ]
        hits.sort(key=lambda hit: hit.similarity, reverse=True)
        return hits[:k]


class FakeTextGenerator:
    def __init__(
        self,
        reply: str | Callable[[str], str] = "",
        error: Optional[Exception] = None,
    ):
        self.reply = reply
        self.error = error
        self.prompts: List[str] = []
        self.calls: List[Dict[str, Any]] = []

    def generate(
        self, prompt: str, *, max_tokens: int = 512, temperature: float = 0.2
    ) -> str:
        self.prompts.append(prompt)
        self.calls.append({"max_tokens": max_tokens, "temperature": temperature})
        if self.error is not None:
            raise self.error
        if callable(self.reply):
            return self.reply(prompt)
        return self.reply


def failing_text_generator() -> FakeTextGenerator:
    return FakeTextGenerator(error=TextGenerationError("provider down"))


class FakeEmbedder:
    def __init__(self, vector: Sequence[float] = (0.1, 0.2, 0.3), error: Optional[Exception] = None):
        self.vector = list(vector)
        self.error = error
        self.texts: List[str] = []

    def embed(self, text: str) -> List[float]:
        self.texts.append(text)
        if self.error is not None:
            raise self.error
        return list(self.vector)


class FakePreferenceStore:
    def __init__(self, prefs: Optional[Dict[str, SimilarityPreferences]] = None):
        self.prefs = dict(prefs or {})

    def get(self, user_id: str) -> SimilarityPreferences:
        return self.prefs.get(
            user_id, SimilarityPreferences(full_franchise_mode=False, hide_watched=True)
        )


class FakeWatchedStore:
    def __init__(self, watched: Optional[Dict[Tuple[str, str], Set[str]]] = None):
        self.watched = {key: set(value) for key, value in (watched or {}).items()}
        self.calls: List[Tuple[str, str]] = []

    def get(self, user_id: str, content_type: str) -> Set[str]:
        self.calls.append((user_id, content_type))
        return set(self.watched.get((user_id, content_type), set()))


class FakeSourceStore:
    def __init__(self, centers: Optional[Dict[str, List[SimilarityItem]]] = None):
        self.centers = dict(centers or {})
        self.calls: List[Tuple[str, str, int]] = []

    def center_items(self, source: str, user_id: str, limit: int) -> List[SimilarityItem]:
        self.calls.append((source, user_id, limit))
        return list(self.centers.get(source, []))[:limit]


class MemoryValidationStore:
    def __init__(self) -> None:
        self.rows: Dict[Tuple[str, str], Tuple[bool, str]] = {}
        self.puts = 0

    def get(self, source_id: str, target_id: str) -> Optional[Tuple[bool, str]]:
        return self.rows.get((source_id, target_id)) or self.rows.get((target_id, source_id))

    def put(self, source: SimilarityItem, target: SimilarityItem, is_valid: bool, reason: str) -> None:
        self.puts += 1
        self.rows[(source.id, target.id)] = (is_valid, reason)

    def stats(self) -> Dict[str, int]:
        valid = sum(1 for is_valid, _ in self.rows.values() if is_valid)
        return {
            "total_entries": len(self.rows),
            "valid_count": valid,
            "invalid_count": len(self.rows) - valid,
        }
