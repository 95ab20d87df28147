from __future__ import annotations

import logging

import pytest

from simgraph.core.errors import ItemNotFoundError
from simgraph.core.neighbors import NearestNeighborFinder
from tests.helpers import MODEL_ID, FakeEmbeddingIndex, FakeMetadataStore, make_item


def _setup():
    center = make_item("a", genres=["Drama"])
    others = [make_item(str(i), genres=["Drama"]) for i in range(1, 5)]
    series = make_item("s", type="series")
    metadata = FakeMetadataStore([center, series, *others])
    index = FakeEmbeddingIndex(
        metadata,
        links={"a": [("1", 0.7), ("2", 0.9), ("s", 0.99), ("3", 0.8), ("4", 0.6)]},
    )
    return metadata, index


def test_find_similar_orders_by_similarity_and_respects_limit():
    metadata, index = _setup()
    finder = NearestNeighborFinder(metadata, index, active_model_id=MODEL_ID)

    result = finder.find_similar("a", "movie", limit=3)

    assert result.center.id == "a"
    assert [conn.item.id for conn in result.connections] == ["2", "3", "1"]
    assert all(conn.item.type == "movie" for conn in result.connections)
    assert result.connections[0].reasons[0].type == "genre"
    assert index.item_calls == [("a", "movie", MODEL_ID, 3)]


def test_find_similar_unknown_item_raises():
    metadata, index = _setup()
    finder = NearestNeighborFinder(metadata, index, active_model_id=MODEL_ID)

    with pytest.raises(ItemNotFoundError) as exc_info:
        finder.find_similar("missing", "movie")
    assert exc_info.value.item_id == "missing"
    assert "Movie not found" in str(exc_info.value)


def test_find_similar_without_model_returns_bare_center(caplog):
    metadata, index = _setup()
    finder = NearestNeighborFinder(metadata, index, active_model_id=None)

    with caplog.at_level(logging.WARNING):
        result = finder.find_similar("a", "movie")

    assert result.connections == []
    assert index.item_calls == []
    assert "No embedding model configured" in caplog.text


def test_find_similar_without_vector_returns_bare_center():
    metadata, _ = _setup()
    index = FakeEmbeddingIndex(metadata, links={})
    finder = NearestNeighborFinder(metadata, index, active_model_id=MODEL_ID)

    result = finder.find_similar("a", "movie")

    assert result.center.id == "a"
    assert result.connections == []


def test_find_similar_index_failure_returns_bare_center(caplog):
    metadata, _ = _setup()
    index = FakeEmbeddingIndex(metadata, failing_ids=["a"])
    finder = NearestNeighborFinder(metadata, index, active_model_id=MODEL_ID)

    with caplog.at_level(logging.WARNING):
        result = finder.find_similar("a", "movie")

    assert result.center.id == "a"
    assert result.connections == []
    assert "Neighbour lookup failed" in caplog.text
