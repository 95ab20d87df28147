from __future__ import annotations

import numpy as np
import pytest

from simgraph.core import embeddings
from simgraph.core.errors import CapabilityUnavailableError


def test_encode_texts_returns_zero_vector_for_empty_input():
    result = embeddings.encode_texts([])
    assert result.shape == (0, 384)
    assert result.dtype == np.float32


def test_encode_texts_uses_model_encode(monkeypatch):
    monkeypatch.setattr(embeddings, "_model", None, raising=False)

    class StubModel:
        def encode(
            self,
            texts,
            batch_size,
            normalize_embeddings,
            convert_to_numpy,
            show_progress_bar,
        ):
            assert normalize_embeddings is True
            assert convert_to_numpy is True
            assert show_progress_bar is False
            return np.array([[1.0, 0.0], [0.0, 1.0]], dtype="float64")

    monkeypatch.setattr(embeddings, "get_model", lambda: StubModel())

    result = embeddings.encode_texts(["foo", "bar"])

    assert result.shape == (2, 2)
    assert result.dtype == np.float32


def test_get_model_initialises_once(monkeypatch):
    monkeypatch.setattr(embeddings, "_model", None, raising=False)

    import sys
    import types

    created = {}

    class DummySentenceTransformer:
        def __init__(self, model_name, device):
            created["model_name"] = model_name
            created["device"] = device

    dummy_module = types.SimpleNamespace(SentenceTransformer=DummySentenceTransformer)
    monkeypatch.setitem(sys.modules, "sentence_transformers", dummy_module)

    class DummyCuda:
        @staticmethod
        def is_available():
            return False

    dummy_torch = types.SimpleNamespace(cuda=DummyCuda())
    monkeypatch.setitem(sys.modules, "torch", dummy_torch)

    first = embeddings.get_model()
    second = embeddings.get_model()

    assert first is second
    assert created["model_name"] == embeddings.DEFAULT_MODEL
    assert created["device"] == "cpu"


def test_embedder_returns_plain_floats(monkeypatch):
    monkeypatch.setattr(
        embeddings,
        "encode_texts",
        lambda texts: np.array([[0.6, 0.8]], dtype="float32"),
    )

    vector = embeddings.SentenceTransformerEmbedder().embed("space opera")

    assert vector == pytest.approx([0.6, 0.8])
    assert all(isinstance(value, float) for value in vector)


def test_embedder_without_vector_raises(monkeypatch):
    monkeypatch.setattr(
        embeddings, "encode_texts", lambda texts: np.zeros((0, 2), dtype="float32")
    )

    with pytest.raises(CapabilityUnavailableError):
        embeddings.SentenceTransformerEmbedder().embed("nothing")
