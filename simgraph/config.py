import os
from dotenv import load_dotenv

load_dotenv()


def _float_from_env(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _int_from_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


DATABASE_URL = os.getenv(
    "DATABASE_URL", "postgresql+psycopg2://app:app@db:5432/library"
)
EMBED_MODEL = os.getenv("EMBED_MODEL", "all-MiniLM-L6-v2")
EMBED_DIM = _int_from_env("EMBED_DIM", 384)
# Identifier stored alongside each vector; blank means no model is active.
ACTIVE_EMBED_MODEL = os.getenv("ACTIVE_EMBED_MODEL", EMBED_MODEL).strip() or None

BUBBLE_THRESHOLD = _float_from_env("SIMILARITY_BUBBLE_THRESHOLD", 0.5)
AI_DIVERSE_SCORE = _float_from_env("SIMILARITY_AI_DIVERSE_SCORE", 0.5)
GRAPH_DEADLINE_SECONDS = max(0.0, _float_from_env("SIMILARITY_GRAPH_DEADLINE", 30.0))
COLLECTION_SIZE_CACHE_MAXSIZE = max(
    16, _int_from_env("COLLECTION_SIZE_CACHE_MAXSIZE", 1024)
)
VALIDATION_CACHE_MAXSIZE = max(16, _int_from_env("VALIDATION_CACHE_MAXSIZE", 5000))
VALIDATION_CACHE_TTL_SECONDS = max(
    60, _int_from_env("VALIDATION_CACHE_TTL", 7 * 24 * 3600)
)
SEARCH_GRAPH_MIN_SIMILARITY = _float_from_env("SEARCH_GRAPH_MIN_SIMILARITY", 0.55)
SQL_SLOW_QUERY_MS = _float_from_env("SQL_SLOW_QUERY_MS", 250.0)
