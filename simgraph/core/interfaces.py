"""Collaborator contracts consumed by the similarity engine."""

from __future__ import annotations

from typing import Dict, List, Optional, Protocol, Sequence, Set

from simgraph.core.models import SearchHit, SimilarityItem, SimilarityPreferences


class MetadataStore(Protocol):
    def get_by_id(self, item_id: str, content_type: str) -> Optional[SimilarityItem]: ...

    def count_by_collection(self, collection_name: str, content_type: str) -> int: ...

    def find_by_title(self, title: str, content_type: str) -> Optional[SimilarityItem]: ...

    def top_rated(self, content_type: str, limit: int) -> List[SimilarityItem]: ...


class EmbeddingIndex(Protocol):
    def neighbors_of_item(
        self, item_id: str, content_type: str, model_id: str, k: int
    ) -> List[SearchHit]:
        """Nearest items to a stored vector, self excluded. Empty if no vector."""
        ...

    def neighbors_of_vector(
        self, vector: Sequence[float], content_type: str, model_id: str, k: int
    ) -> List[SearchHit]: ...


class TextEmbedder(Protocol):
    def embed(self, text: str) -> List[float]: ...


class TextGenerator(Protocol):
    def generate(
        self, prompt: str, *, max_tokens: int = 512, temperature: float = 0.2
    ) -> str: ...


class UserPreferenceStore(Protocol):
    def get(self, user_id: str) -> SimilarityPreferences: ...


class WatchedIdStore(Protocol):
    def get(self, user_id: str, content_type: str) -> Set[str]: ...


class GraphSourceStore(Protocol):
    def center_items(
        self, source: str, user_id: str, limit: int
    ) -> List[SimilarityItem]: ...


class ValidationCacheStore(Protocol):
    def get(self, source_id: str, target_id: str) -> Optional[tuple[bool, str]]: ...

    def put(
        self,
        source: SimilarityItem,
        target: SimilarityItem,
        is_valid: bool,
        reason: str,
    ) -> None: ...

    def stats(self) -> Dict[str, int]: ...
