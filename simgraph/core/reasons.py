from __future__ import annotations

from typing import Dict, Iterable, List, Sequence

from simgraph.core.models import ConnectionReason, ConnectionType, SimilarityItem

MAX_SHARED_KEYWORDS = 3

# Edge colours for the graph legend.
CONNECTION_COLORS: Dict[str, str] = {
    ConnectionType.DIRECTOR.value: "#3B82F6",
    ConnectionType.ACTOR.value: "#14B8A6",
    ConnectionType.COLLECTION.value: "#F59E0B",
    ConnectionType.GENRE.value: "#8B5CF6",
    ConnectionType.KEYWORD.value: "#EC4899",
    ConnectionType.STUDIO.value: "#F97316",
    ConnectionType.NETWORK.value: "#22C55E",
    ConnectionType.SIMILARITY.value: "#6B7280",
    ConnectionType.AI_DIVERSE.value: "#10B981",
}

_PRIMARY_PRIORITY: tuple[ConnectionType, ...] = (
    ConnectionType.AI_DIVERSE,
    ConnectionType.COLLECTION,
    ConnectionType.DIRECTOR,
    ConnectionType.ACTOR,
    ConnectionType.NETWORK,
    ConnectionType.STUDIO,
    ConnectionType.GENRE,
    ConnectionType.KEYWORD,
    ConnectionType.SIMILARITY,
)


def _shared(values: Sequence[str], others: Iterable[str]) -> List[str]:
    """Case-insensitive intersection, keeping the order of *values*."""
    lookup = {other.lower() for other in others if other}
    shared: List[str] = []
    seen: set[str] = set()
    for value in values:
        if not value:
            continue
        lowered = value.lower()
        if lowered in lookup and lowered not in seen:
            shared.append(value)
            seen.add(lowered)
    return shared


def compute_connection_reasons(
    source: SimilarityItem, target: SimilarityItem
) -> List[ConnectionReason]:
    """
    Explain why two titles are linked. Always returns at least one reason;
    with no metadata overlap the link is attributed to embedding similarity.
    """
    reasons: List[ConnectionReason] = []

    directors = _shared(source.directors, target.directors)
    if directors:
        reasons.append(
            ConnectionReason(
                type=ConnectionType.DIRECTOR,
                value=directors[0],
                values=directors if len(directors) > 1 else None,
            )
        )

    actor_names = _shared(
        [actor.name for actor in source.actors],
        [actor.name for actor in target.actors],
    )
    if actor_names:
        first = actor_names[0].lower()
        photo = None
        for actor in list(source.actors) + list(target.actors):
            if actor.name.lower() == first and actor.thumb:
                photo = actor.thumb
                break
        reasons.append(
            ConnectionReason(
                type=ConnectionType.ACTOR,
                value=actor_names[0],
                values=actor_names if len(actor_names) > 1 else None,
                photo=photo,
            )
        )

    if (
        source.collection_name
        and target.collection_name
        and source.collection_name == target.collection_name
    ):
        reasons.append(
            ConnectionReason(
                type=ConnectionType.COLLECTION, value=source.collection_name
            )
        )

    genres = _shared(source.genres, target.genres)
    if genres:
        reasons.append(ConnectionReason(type=ConnectionType.GENRE, values=genres))

    keywords = _shared(source.keywords, target.keywords)[:MAX_SHARED_KEYWORDS]
    if keywords:
        reasons.append(ConnectionReason(type=ConnectionType.KEYWORD, values=keywords))

    studios = _shared(
        [studio.name for studio in source.studios],
        [studio.name for studio in target.studios],
    )
    if studios:
        reasons.append(
            ConnectionReason(
                type=ConnectionType.STUDIO,
                value=studios[0],
                values=studios if len(studios) > 1 else None,
            )
        )

    if source.network and target.network and source.network == target.network:
        reasons.append(ConnectionReason(type=ConnectionType.NETWORK, value=source.network))

    if not reasons:
        reasons.append(ConnectionReason(type=ConnectionType.SIMILARITY))
    return reasons


def primary_connection_type(reasons: Sequence[ConnectionReason]) -> str:
    """Pick the reason type that should colour an edge."""
    present = {str(reason.type) for reason in reasons}
    for candidate in _PRIMARY_PRIORITY:
        if candidate.value in present:
            return candidate.value
    return ConnectionType.SIMILARITY.value


def ai_diverse_reason(suggested_for: str) -> ConnectionReason:
    return ConnectionReason(
        type=ConnectionType.AI_DIVERSE,
        value=f"AI suggested for fans of {suggested_for}",
    )
