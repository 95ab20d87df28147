"""SQLAlchemy / pgvector implementations of the similarity collaborators."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Mapping, Optional, Sequence, Set, Tuple

from pgvector.sqlalchemy import Vector
from sqlalchemy import and_, bindparam, case, func, or_, select, text
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.orm import Session

from simgraph import config
from simgraph.core.models import (
    Actor,
    SearchHit,
    SimilarityItem,
    SimilarityPreferences,
    Studio,
)
from simgraph.db.models import (
    Item,
    RecommendationCandidate,
    RecommendationRun,
    SimilarityValidationCache,
    UserPreferences,
    UserWatchingSeries,
    WatchHistory,
)

logger = logging.getLogger(__name__)

_ITEM_COLUMNS = (
    "i.id, i.media_type, i.title, i.release_year, i.poster_url, i.genres, "
    "i.directors, i.actors, i.collection_name, i.network, i.keywords, i.studios"
)


def parse_actors(raw: Any) -> List[Actor]:
    if not raw or not isinstance(raw, list):
        return []
    actors: List[Actor] = []
    for entry in raw:
        if isinstance(entry, str):
            if entry.strip():
                actors.append(Actor(name=entry))
        elif isinstance(entry, dict):
            name = entry.get("name")
            if isinstance(name, str) and name.strip():
                actors.append(
                    Actor(name=name, role=entry.get("role"), thumb=entry.get("thumb"))
                )
    return actors


def parse_studios(raw: Any) -> List[Studio]:
    if not raw or not isinstance(raw, list):
        return []
    studios: List[Studio] = []
    for entry in raw:
        if isinstance(entry, str):
            name = entry
        elif isinstance(entry, dict):
            name = entry.get("name")
        else:
            continue
        if isinstance(name, str) and name.strip():
            studios.append(Studio(name=name))
    return studios


def _string_list(raw: Any) -> List[str]:
    if not raw or not isinstance(raw, list):
        return []
    return [str(value) for value in raw if value]


def _field(row: Any, key: str) -> Any:
    if isinstance(row, Mapping):
        return row.get(key)
    return getattr(row, key, None)


def item_from_row(row: Any) -> SimilarityItem:
    """Accepts an ``Item`` instance or a row mapping with the same column names."""
    media_type = _field(row, "media_type")
    return SimilarityItem(
        id=str(_field(row, "id")),
        title=_field(row, "title") or "",
        year=_field(row, "release_year"),
        poster_url=_field(row, "poster_url"),
        type=media_type,
        genres=_string_list(_field(row, "genres")),
        directors=_string_list(_field(row, "directors")),
        actors=parse_actors(_field(row, "actors")),
        collection_name=_field(row, "collection_name") if media_type == "movie" else None,
        network=_field(row, "network") if media_type == "series" else None,
        keywords=_string_list(_field(row, "keywords")),
        studios=parse_studios(_field(row, "studios")),
    )


class SqlMetadataStore:
    def __init__(self, db: Session):
        self.db = db

    def get_by_id(self, item_id: str, content_type: str) -> Optional[SimilarityItem]:
        stmt = select(Item).where(Item.id == item_id, Item.media_type == content_type)
        row = self.db.execute(stmt).scalars().first()
        return item_from_row(row) if row is not None else None

    def count_by_collection(self, collection_name: str, content_type: str) -> int:
        stmt = (
            select(func.count())
            .select_from(Item)
            .where(
                Item.collection_name == collection_name,
                Item.media_type == content_type,
            )
        )
        return int(self.db.execute(stmt).scalar() or 0)

    def find_by_title(self, title: str, content_type: str) -> Optional[SimilarityItem]:
        """Exact (case-insensitive) title first, then the shortest containing title."""
        cleaned = title.strip()
        if not cleaned:
            return None
        lowered = func.lower(Item.title)
        exact = lowered == cleaned.lower()
        stmt = (
            select(Item)
            .where(
                Item.media_type == content_type,
                or_(exact, Item.title.icontains(cleaned, autoescape=True)),
            )
            .order_by(case((exact, 0), else_=1), func.length(Item.title))
            .limit(1)
        )
        row = self.db.execute(stmt).scalars().first()
        return item_from_row(row) if row is not None else None

    def top_rated(self, content_type: str, limit: int) -> List[SimilarityItem]:
        stmt = (
            select(Item)
            .where(Item.media_type == content_type, Item.community_rating.isnot(None))
            .order_by(Item.community_rating.desc(), Item.release_year.desc().nulls_last())
            .limit(limit)
        )
        return [item_from_row(row) for row in self.db.execute(stmt).scalars()]


class PgvectorEmbeddingIndex:
    """Cosine nearest neighbours over ``item_embeddings`` for one model id."""

    def __init__(self, db: Session, dim: int = config.EMBED_DIM):
        self.db = db
        self.dim = dim

    def neighbors_of_item(
        self, item_id: str, content_type: str, model_id: str, k: int
    ) -> List[SearchHit]:
        if k <= 0:
            return []
        q = text(
            f"""
            WITH target AS (
                SELECT vector FROM item_embeddings
                WHERE item_id = :item_id AND model = :model
                LIMIT 1
            )
            SELECT {_ITEM_COLUMNS}, 1 - (e.vector <=> t.vector) AS similarity
            FROM target t
            JOIN item_embeddings e ON e.model = :model
            JOIN items i ON i.id = e.item_id
            WHERE i.media_type = :media_type AND e.item_id <> :item_id
            ORDER BY e.vector <=> t.vector
            LIMIT :lim
            """
        )
        rows = self.db.execute(
            q,
            {"item_id": item_id, "model": model_id, "media_type": content_type, "lim": k},
        ).mappings()
        return [self._hit(row) for row in rows]

    def neighbors_of_vector(
        self, vector: Sequence[float], content_type: str, model_id: str, k: int
    ) -> List[SearchHit]:
        if k <= 0:
            return []
        q = text(
            f"""
            SELECT {_ITEM_COLUMNS}, 1 - (e.vector <=> :uvec) AS similarity
            FROM item_embeddings e
            JOIN items i ON i.id = e.item_id
            WHERE e.model = :model AND i.media_type = :media_type
            ORDER BY e.vector <=> :uvec
            LIMIT :lim
            """
        ).bindparams(bindparam("uvec", type_=Vector(self.dim)))
        rows = self.db.execute(
            q,
            {
                "uvec": [float(v) for v in vector],
                "model": model_id,
                "media_type": content_type,
                "lim": k,
            },
        ).mappings()
        return [self._hit(row) for row in rows]

    @staticmethod
    def _hit(row: Mapping[str, Any]) -> SearchHit:
        return SearchHit(item=item_from_row(row), similarity=float(row["similarity"]))


class SqlUserPreferenceStore:
    def __init__(self, db: Session):
        self.db = db

    def get(self, user_id: str) -> SimilarityPreferences:
        row = self.db.get(UserPreferences, user_id)
        if row is None:
            return SimilarityPreferences(full_franchise_mode=False, hide_watched=True)
        return SimilarityPreferences(
            full_franchise_mode=bool(row.similarity_full_franchise),
            hide_watched=(
                True
                if row.similarity_hide_watched is None
                else bool(row.similarity_hide_watched)
            ),
        )


class SqlWatchedIdStore:
    def __init__(self, db: Session):
        self.db = db

    def get(self, user_id: str, content_type: str) -> Set[str]:
        stmt = (
            select(WatchHistory.item_id)
            .join(Item, Item.id == WatchHistory.item_id)
            .where(
                WatchHistory.user_id == user_id,
                WatchHistory.play_count > 0,
                Item.media_type == content_type,
            )
            .distinct()
        )
        return {str(item_id) for item_id in self.db.execute(stmt).scalars()}


class SqlGraphSourceStore:
    def __init__(self, db: Session, metadata: Optional[SqlMetadataStore] = None):
        self.db = db
        self.metadata = metadata or SqlMetadataStore(db)

    def center_items(self, source: str, user_id: str, limit: int) -> List[SimilarityItem]:
        if source == "ai-movies":
            return self._selected_recommendations(user_id, "movie", limit)
        if source == "ai-series":
            return self._selected_recommendations(user_id, "series", limit)
        if source == "watching":
            return self._watching_series(user_id, limit)
        if source == "top-movies":
            return self.metadata.top_rated("movie", limit)
        if source == "top-series":
            return self.metadata.top_rated("series", limit)
        raise ValueError(f"Unknown graph source: {source}")

    def _selected_recommendations(
        self, user_id: str, media_type: str, limit: int
    ) -> List[SimilarityItem]:
        stmt = (
            select(Item)
            .join(RecommendationCandidate, RecommendationCandidate.item_id == Item.id)
            .join(RecommendationRun, RecommendationRun.id == RecommendationCandidate.run_id)
            .where(
                RecommendationRun.user_id == user_id,
                RecommendationRun.media_type == media_type,
                RecommendationRun.status == "completed",
                RecommendationCandidate.is_selected.is_(True),
                Item.media_type == media_type,
            )
            .order_by(RecommendationRun.created_at.desc(), RecommendationCandidate.rank)
            .limit(limit)
        )
        return _unique_items(self.db.execute(stmt).scalars())

    def _watching_series(self, user_id: str, limit: int) -> List[SimilarityItem]:
        stmt = (
            select(Item)
            .join(UserWatchingSeries, UserWatchingSeries.item_id == Item.id)
            .where(UserWatchingSeries.user_id == user_id, Item.media_type == "series")
            .order_by(UserWatchingSeries.added_at.desc())
            .limit(limit)
        )
        return _unique_items(self.db.execute(stmt).scalars())


def _unique_items(rows) -> List[SimilarityItem]:
    seen: Set[str] = set()
    items: List[SimilarityItem] = []
    for row in rows:
        item = item_from_row(row)
        if item.id in seen:
            continue
        seen.add(item.id)
        items.append(item)
    return items


class SqlValidationCacheStore:
    """
    Pair verdicts persisted in ``similarity_validation_cache``, either direction.

    Each statement runs in a savepoint so a failure leaves the caller's
    transaction usable. Committing is left to the caller (``session_scope``).
    """

    def __init__(self, db: Session):
        self.db = db

    def get(self, source_id: str, target_id: str) -> Optional[Tuple[bool, str]]:
        row_t = SimilarityValidationCache
        stmt = (
            select(row_t.is_valid, row_t.reason)
            .where(
                or_(
                    and_(row_t.source_id == source_id, row_t.target_id == target_id),
                    and_(row_t.source_id == target_id, row_t.target_id == source_id),
                )
            )
            .limit(1)
        )
        with self.db.begin_nested():
            row = self.db.execute(stmt).first()
        if row is None:
            return None
        return bool(row[0]), row[1] or ""

    def put(
        self,
        source: SimilarityItem,
        target: SimilarityItem,
        is_valid: bool,
        reason: str,
    ) -> None:
        stmt = pg_insert(SimilarityValidationCache).values(
            source_id=source.id,
            target_id=target.id,
            source_type=source.type,
            target_type=target.type,
            is_valid=is_valid,
            reason=reason,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["source_id", "target_id"],
            set_={"is_valid": is_valid, "reason": reason, "created_at": func.now()},
        )
        with self.db.begin_nested():
            self.db.execute(stmt)
        logger.debug(
            "Cached validation result | source=%s target=%s valid=%s",
            source.id,
            target.id,
            is_valid,
        )

    def stats(self) -> Dict[str, int]:
        row_t = SimilarityValidationCache
        stmt = select(
            func.count(),
            func.count().filter(row_t.is_valid.is_(True)),
            func.count().filter(row_t.is_valid.is_(False)),
        ).select_from(row_t)
        row = self.db.execute(stmt).first()
        total, valid, invalid = row if row is not None else (0, 0, 0)
        return {
            "total_entries": int(total or 0),
            "valid_count": int(valid or 0),
            "invalid_count": int(invalid or 0),
        }
