from __future__ import annotations

from enum import Enum
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

ContentType = Literal["movie", "series"]
CONTENT_TYPES: tuple[str, ...] = ("movie", "series")


class ConnectionType(str, Enum):
    DIRECTOR = "director"
    ACTOR = "actor"
    COLLECTION = "collection"
    GENRE = "genre"
    KEYWORD = "keyword"
    STUDIO = "studio"
    NETWORK = "network"
    SIMILARITY = "similarity"
    AI_DIVERSE = "ai_diverse"


class Actor(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    role: Optional[str] = None
    thumb: Optional[str] = None


class Studio(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str


class SimilarityItem(BaseModel):
    """
    Read-only snapshot of a movie or series as seen by the similarity engine.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    title: str
    year: Optional[int] = None
    poster_url: Optional[str] = None
    type: ContentType
    genres: List[str] = Field(default_factory=list)
    directors: List[str] = Field(default_factory=list)
    actors: List[Actor] = Field(default_factory=list)
    collection_name: Optional[str] = Field(
        None, description="Franchise/collection name (movies only)."
    )
    network: Optional[str] = Field(None, description="Broadcast network (series only).")
    keywords: List[str] = Field(default_factory=list)
    studios: List[Studio] = Field(default_factory=list)


class ConnectionReason(BaseModel):
    model_config = ConfigDict(frozen=True, use_enum_values=True)

    type: ConnectionType
    value: Optional[str] = None
    values: Optional[List[str]] = None
    photo: Optional[str] = None


class SimilarityConnection(BaseModel):
    item: SimilarityItem
    similarity: float
    reasons: List[ConnectionReason]


class SimilarityResult(BaseModel):
    center: SimilarityItem
    connections: List[SimilarityConnection] = Field(default_factory=list)


class SearchHit(BaseModel):
    item: SimilarityItem
    similarity: float


class SemanticSearchResult(BaseModel):
    query: str
    results: List[SearchHit] = Field(default_factory=list)


class GraphNode(BaseModel):
    id: str
    title: str
    year: Optional[int] = None
    poster_url: Optional[str] = None
    type: ContentType
    is_center: bool = False

    @classmethod
    def from_item(cls, item: SimilarityItem, *, is_center: bool = False) -> "GraphNode":
        return cls(
            id=item.id,
            title=item.title,
            year=item.year,
            poster_url=item.poster_url,
            type=item.type,
            is_center=is_center,
        )


class GraphEdge(BaseModel):
    source: str
    target: str
    similarity: float = Field(..., ge=0.0, le=1.0)
    reasons: List[ConnectionReason] = Field(..., min_length=1)


class GraphData(BaseModel):
    """
    Nodes keyed by item id plus the edge list. Every edge endpoint is a node.
    """

    nodes: Dict[str, GraphNode] = Field(default_factory=dict)
    edges: List[GraphEdge] = Field(default_factory=list)

    def node_list(self) -> List[GraphNode]:
        return list(self.nodes.values())

    def degree(self, node_id: str) -> int:
        return sum(
            1 for edge in self.edges if node_id in (edge.source, edge.target)
        )

    def to_payload(self) -> Dict[str, list]:
        return {
            "nodes": [node.model_dump() for node in self.nodes.values()],
            "edges": [edge.model_dump(exclude_none=True) for edge in self.edges],
        }


class SimilarityPreferences(BaseModel):
    full_franchise_mode: bool = Field(
        False, description="Show a whole franchise without collection limits."
    )
    hide_watched: bool = Field(
        False, description="Skip titles the user has already watched."
    )


def edge_key(source_id: str, target_id: str) -> tuple[str, str]:
    """Unordered identity of an edge."""
    if source_id <= target_id:
        return (source_id, target_id)
    return (target_id, source_id)
