from __future__ import annotations

from datetime import datetime
from typing import Optional, List

from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy import (
    Boolean,
    Integer,
    String,
    Text,
    ForeignKey,
    DateTime,
    func,
    JSON,
    UniqueConstraint,
    Float,
)
from pgvector.sqlalchemy import Vector

from simgraph import config


class Base(DeclarativeBase):
    pass


class Item(Base):
    __tablename__ = "items"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    media_type: Mapped[str] = mapped_column(
        String(10), nullable=False, index=True
    )  # 'movie' or 'series'
    title: Mapped[str] = mapped_column(String(512), nullable=False, index=True)
    release_year: Mapped[Optional[int]] = mapped_column(
        Integer, nullable=True, index=True
    )
    poster_url: Mapped[Optional[str]] = mapped_column(String(1024), nullable=True)
    genres: Mapped[Optional[list]] = mapped_column(JSON, nullable=True)
    directors: Mapped[Optional[list]] = mapped_column(JSON, nullable=True)
    actors: Mapped[Optional[list]] = mapped_column(JSON, nullable=True)  # [{name, role, thumb}]
    keywords: Mapped[Optional[list]] = mapped_column(JSON, nullable=True)
    studios: Mapped[Optional[list]] = mapped_column(JSON, nullable=True)  # [{name}] or [name]
    collection_name: Mapped[Optional[str]] = mapped_column(
        String(255), nullable=True, index=True
    )  # movies only
    network: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)  # series only
    community_rating: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )


class ItemEmbedding(Base):
    __tablename__ = "item_embeddings"
    __table_args__ = (
        UniqueConstraint("item_id", "model", name="uq_item_embedding_item_model"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    item_id: Mapped[str] = mapped_column(
        ForeignKey("items.id", ondelete="CASCADE"), index=True
    )
    model: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    vector: Mapped[List[float]] = mapped_column(
        Vector(config.EMBED_DIM), nullable=False
    )


class UserPreferences(Base):
    __tablename__ = "user_preferences"

    user_id: Mapped[str] = mapped_column(String(128), primary_key=True)
    similarity_full_franchise: Mapped[Optional[bool]] = mapped_column(
        Boolean, nullable=True
    )
    similarity_hide_watched: Mapped[Optional[bool]] = mapped_column(
        Boolean, nullable=True
    )


class WatchHistory(Base):
    __tablename__ = "watch_history"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(128), index=True)
    item_id: Mapped[str] = mapped_column(
        ForeignKey("items.id", ondelete="CASCADE"), index=True
    )  # the movie, or the series an episode belongs to
    play_count: Mapped[int] = mapped_column(Integer, default=0)
    last_played_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )


class UserWatchingSeries(Base):
    __tablename__ = "user_watching_series"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(128), index=True)
    item_id: Mapped[str] = mapped_column(
        ForeignKey("items.id", ondelete="CASCADE"), index=True
    )
    added_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )


class RecommendationRun(Base):
    __tablename__ = "recommendation_runs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(128), index=True)
    media_type: Mapped[str] = mapped_column(String(10))
    status: Mapped[str] = mapped_column(String(16))  # running, completed, failed
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )


class RecommendationCandidate(Base):
    __tablename__ = "recommendation_candidates"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    run_id: Mapped[int] = mapped_column(
        ForeignKey("recommendation_runs.id", ondelete="CASCADE"), index=True
    )
    item_id: Mapped[str] = mapped_column(
        ForeignKey("items.id", ondelete="CASCADE"), index=True
    )
    rank: Mapped[int] = mapped_column(Integer)
    is_selected: Mapped[bool] = mapped_column(Boolean, default=False)


class SimilarityValidationCache(Base):
    __tablename__ = "similarity_validation_cache"
    __table_args__ = (
        UniqueConstraint("source_id", "target_id", name="uq_similarity_validation_pair"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    source_id: Mapped[str] = mapped_column(String(64), index=True)
    target_id: Mapped[str] = mapped_column(String(64), index=True)
    source_type: Mapped[str] = mapped_column(String(10))
    target_type: Mapped[str] = mapped_column(String(10))
    is_valid: Mapped[bool] = mapped_column(Boolean, nullable=False)
    reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
