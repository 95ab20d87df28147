from __future__ import annotations

import os
from typing import TYPE_CHECKING, Any, Iterable, List

import numpy as np

from simgraph import config
from simgraph.core.errors import CapabilityUnavailableError

if TYPE_CHECKING:
    from sentence_transformers import SentenceTransformer  # pragma: no cover
else:
    SentenceTransformer = Any  # type: ignore

DEFAULT_MODEL = config.EMBED_MODEL

_model: SentenceTransformer | None = None


def get_model() -> SentenceTransformer:
    global _model
    if _model is None:
        import torch  # local import to avoid initialization overhead when unused
        from sentence_transformers import SentenceTransformer as _SentenceTransformer

        device = "cuda" if torch.cuda.is_available() else "cpu"
        _model = _SentenceTransformer(DEFAULT_MODEL, device=device)
    return _model


def encode_texts(texts: Iterable[str]) -> np.ndarray:
    """
    Returns float32 numpy array shape (N, EMBED_DIM), L2-normalized row-wise.
    """
    texts = list(texts)
    if not texts:
        return np.zeros((0, config.EMBED_DIM), dtype="float32")
    model = get_model()
    emb = model.encode(
        texts,
        batch_size=int(os.getenv("EMBED_BATCH", "64")),
        normalize_embeddings=True,  # L2-normalize for cosine
        convert_to_numpy=True,
        show_progress_bar=False,
    )
    return emb.astype("float32")


class SentenceTransformerEmbedder:
    """Query-side embedder; must match the model that produced stored vectors."""

    def embed(self, text: str) -> List[float]:
        vectors = encode_texts([text])
        if vectors.shape[0] != 1:
            raise CapabilityUnavailableError("Embedding model returned no vector.")
        return [float(v) for v in vectors[0]]
