"""
Edge validation for graph expansion.

Embedding neighbours are sometimes linked for the wrong reasons: two sequels
named "... Returns", or two unrelated franchises sharing a tone. Rules reject
the obvious cases; an LLM decides between unrelated collections.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from threading import Lock
from typing import Optional, Tuple

from cachetools import TTLCache

from simgraph import config
from simgraph.core.errors import TextGenerationError
from simgraph.core.interfaces import TextGenerator, ValidationCacheStore
from simgraph.core.models import SimilarityItem, edge_key

logger = logging.getLogger(__name__)

TITLE_PATTERNS: Tuple[re.Pattern[str], ...] = (
    re.compile(r"^return of ", re.IGNORECASE),
    re.compile(r"^the return of ", re.IGNORECASE),
    re.compile(r" returns?$", re.IGNORECASE),
    re.compile(r"^revenge of ", re.IGNORECASE),
    re.compile(r"^rise of ", re.IGNORECASE),
    re.compile(r"^attack of ", re.IGNORECASE),
    re.compile(r"^battle of ", re.IGNORECASE),
    re.compile(r"^escape from ", re.IGNORECASE),
    re.compile(r"^journey to ", re.IGNORECASE),
    re.compile(r" ii$", re.IGNORECASE),
    re.compile(r" iii$", re.IGNORECASE),
    re.compile(r" 2$"),
    re.compile(r" 3$"),
)

RELATED_FRANCHISES: Tuple[Tuple[str, ...], ...] = (
    ("star wars", "lego star wars", "ewok"),
    ("star trek",),
    ("marvel", "avengers", "iron man", "captain america", "thor", "spider-man", "x-men"),
    ("dc", "batman", "superman", "justice league", "wonder woman"),
    ("lord of the rings", "hobbit", "middle-earth"),
    ("harry potter", "fantastic beasts", "wizarding world"),
    ("disney princess", "frozen", "tangled", "moana"),
    ("pixar", "toy story", "cars", "finding nemo", "incredibles"),
)

_COLLECTION_SUFFIX = re.compile(r"\s*collection$", re.IGNORECASE)
_VERDICT_PREFIX = re.compile(r"^(YES|NO)\s*[-–—:.,]?\s*", re.IGNORECASE)


@dataclass(frozen=True)
class ConnectionValidation:
    is_valid: bool
    reason: str
    from_cache: bool = False


def detect_title_pattern_match(title1: str, title2: str) -> Optional[str]:
    """Both titles share a stock pattern ("Return of ...") but not a subject."""
    for pattern in TITLE_PATTERNS:
        match1 = pattern.search(title1)
        match2 = pattern.search(title2)
        if not (match1 and match2):
            continue
        core1 = pattern.sub("", title1).strip().lower()
        core2 = pattern.sub("", title2).strip().lower()
        if core1 != core2 and core2 not in core1 and core1 not in core2:
            return f'Similar title pattern "{match1.group(0)}" but unrelated content'
    return None


def shared_genres(source: SimilarityItem, target: SimilarityItem) -> list[str]:
    lookup = {genre.lower() for genre in source.genres}
    return [genre for genre in target.genres if genre.lower() in lookup]


def collections_related(collection1: str, collection2: str) -> bool:
    c1 = collection1.lower()
    c2 = collection2.lower()
    if c1 == c2:
        return True

    franchise1 = _COLLECTION_SUFFIX.sub("", c1).strip()
    franchise2 = _COLLECTION_SUFFIX.sub("", c2).strip()
    if franchise1 == franchise2:
        return True
    if franchise1 in franchise2 or franchise2 in franchise1:
        return True

    for group in RELATED_FRANCHISES:
        in_group1 = any(name in franchise1 for name in group)
        in_group2 = any(name in franchise2 for name in group)
        if in_group1 and in_group2:
            return True
    return False


def _validation_prompt(source: SimilarityItem, target: SimilarityItem) -> str:
    kind = "movies" if source.type == "movie" else "titles"

    def _describe(label: str, item: SimilarityItem) -> str:
        return (
            f'{label}: "{item.title}" ({item.year or "unknown"})\n'
            f"- Genres: {', '.join(item.genres) or 'unknown'}\n"
            f"- Collection: {item.collection_name or 'none'}"
        )

    return (
        f"Are these two {kind} thematically related enough to recommend together?\n\n"
        f"{_describe('Title 1', source)}\n\n"
        f"{_describe('Title 2', target)}\n\n"
        'Answer with ONLY "YES" or "NO" followed by a brief reason (max 10 words).\n'
        'Example: "YES - both epic space adventures" or '
        '"NO - completely different genres and themes"'
    )


def parse_verdict(content: str) -> Tuple[bool, str]:
    text = (content or "").strip().strip('"').strip()
    is_valid = text.upper().startswith("YES")
    reason = _VERDICT_PREFIX.sub("", text).strip()
    if not reason:
        reason = "AI approved" if is_valid else "AI rejected"
    return is_valid, reason


class ConnectionValidator:
    def __init__(
        self,
        text_generator: Optional[TextGenerator] = None,
        store: Optional[ValidationCacheStore] = None,
        *,
        cache_maxsize: int = config.VALIDATION_CACHE_MAXSIZE,
        cache_ttl: int = config.VALIDATION_CACHE_TTL_SECONDS,
    ):
        self._generator = text_generator
        self._store = store
        self._cache: TTLCache[Tuple[str, str], Tuple[bool, str]] = TTLCache(
            maxsize=cache_maxsize, ttl=cache_ttl
        )
        self._lock = Lock()

    def validate(
        self,
        source: SimilarityItem,
        target: SimilarityItem,
        *,
        use_ai: bool = True,
    ) -> ConnectionValidation:
        title_issue = detect_title_pattern_match(source.title, target.title)
        if title_issue:
            logger.debug(
                "Connection rejected by title pattern | source=%s target=%s issue=%s",
                source.title,
                target.title,
                title_issue,
            )
            return ConnectionValidation(False, title_issue)

        if not shared_genres(source, target):
            logger.debug(
                "Connection rejected, no shared genres | source=%s target=%s",
                source.title,
                target.title,
            )
            return ConnectionValidation(False, "No shared genres")

        if source.collection_name and target.collection_name:
            if not collections_related(source.collection_name, target.collection_name):
                return self._validate_collection_chain(source, target, use_ai)

        return ConnectionValidation(True, "Passed all filters")

    def _validate_collection_chain(
        self, source: SimilarityItem, target: SimilarityItem, use_ai: bool
    ) -> ConnectionValidation:
        cached = self._cached(source.id, target.id)
        if cached is not None:
            is_valid, reason = cached
            return ConnectionValidation(is_valid, reason or "Cached result", True)

        if not use_ai or self._generator is None:
            return ConnectionValidation(False, "Unrelated collection chain")

        verdict = self._validate_with_ai(source, target)
        if verdict is None:
            return ConnectionValidation(False, "AI validation error")
        is_valid, reason = verdict
        self._remember(source, target, is_valid, reason)
        return ConnectionValidation(is_valid, reason)

    def _validate_with_ai(
        self, source: SimilarityItem, target: SimilarityItem
    ) -> Optional[Tuple[bool, str]]:
        try:
            content = self._generator.generate(  # type: ignore[union-attr]
                _validation_prompt(source, target), max_tokens=50, temperature=0.0
            )
        except TextGenerationError as exc:
            logger.warning("AI validation failed, defaulting to reject: %s", exc)
            return None
        except Exception:
            logger.exception("AI validation raised, defaulting to reject.")
            return None

        is_valid, reason = parse_verdict(content)
        logger.info(
            "AI validated connection | source=%s target=%s valid=%s reason=%s",
            source.title,
            target.title,
            is_valid,
            reason,
        )
        return is_valid, reason

    def _cached(self, source_id: str, target_id: str) -> Optional[Tuple[bool, str]]:
        key = edge_key(source_id, target_id)
        with self._lock:
            hit = self._cache.get(key)
        if hit is not None:
            return hit
        if self._store is None:
            return None
        try:
            stored = self._store.get(source_id, target_id)
        except Exception:
            logger.exception("Validation cache lookup failed; treating as miss.")
            return None
        if stored is not None:
            with self._lock:
                self._cache[key] = stored
        return stored

    def _remember(
        self, source: SimilarityItem, target: SimilarityItem, is_valid: bool, reason: str
    ) -> None:
        with self._lock:
            self._cache[edge_key(source.id, target.id)] = (is_valid, reason)
        if self._store is None:
            return
        try:
            self._store.put(source, target, is_valid, reason)
        except Exception:
            logger.exception("Failed to persist validation result.")

    def cache_stats(self) -> dict:
        if self._store is not None:
            return self._store.stats()
        with self._lock:
            values = list(self._cache.values())
        valid = sum(1 for is_valid, _ in values if is_valid)
        return {
            "total_entries": len(values),
            "valid_count": valid,
            "invalid_count": len(values) - valid,
        }
