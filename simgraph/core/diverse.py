from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

from simgraph.core.errors import TextGenerationError
from simgraph.core.interfaces import MetadataStore, TextGenerator
from simgraph.core.models import SimilarityItem

logger = logging.getLogger(__name__)

MAX_EXCLUDED_TITLES = 15
MAX_PROMPT_KEYWORDS = 5

_NUMBERED_LINE = re.compile(r"^\d+[.)]\s*")
_BULLET = re.compile(r"^[-•*]\s*")


@dataclass
class DiverseResult:
    items: List[SimilarityItem] = field(default_factory=list)
    ai_suggested: bool = False


def parse_title_lines(content: str) -> List[str]:
    """One suggested title per line; numbering, bullets and quotes removed."""
    titles: List[str] = []
    seen: set[str] = set()
    for raw_line in (content or "").splitlines():
        line = raw_line.strip()
        if not line or line.startswith("```"):
            continue
        line = _NUMBERED_LINE.sub("", line)
        line = _BULLET.sub("", line).strip().strip('"').strip()
        if len(line) <= 1 or len(line) >= 100:
            continue
        key = line.lower()
        if key in seen:
            continue
        seen.add(key)
        titles.append(line)
    return titles


def _diverse_prompt(
    center: SimilarityItem,
    exclude_titles: Sequence[str],
    exclude_collections: Sequence[str],
    limit: int,
) -> str:
    kind = center.type
    lines = [
        f'Given the {kind} "{center.title}" ({center.year or "unknown year"}), '
        "which has these characteristics:",
        f"- Genres: {', '.join(center.genres) or 'unknown'}",
        f"- Keywords: {', '.join(center.keywords[:MAX_PROMPT_KEYWORDS]) or 'unknown'}",
    ]
    if center.collection_name:
        lines.append(f"- Part of: {center.collection_name}")
    lines.extend(
        [
            "",
            f"Suggest {limit} thematically similar {kind}s that would appeal to fans "
            "but are from DIFFERENT franchises/collections.",
            "Look for titles with similar themes, tone, or appeal.",
            "",
            "EXCLUDE these titles and their franchises:",
            ", ".join(exclude_titles),
        ]
    )
    if exclude_collections:
        lines.append(f"ALSO EXCLUDE anything from: {', '.join(exclude_collections)}")
    lines.extend(
        [
            "",
            "Return ONLY the titles, one per line, without numbers or explanations.",
            "Focus on well-known, popular titles likely to be in a home media library.",
        ]
    )
    return "\n".join(lines)


class DiverseContentFinder:
    """Asks the text generator for off-franchise titles and maps them to the library."""

    def __init__(self, metadata: MetadataStore, text_generator: Optional[TextGenerator]):
        self._metadata = metadata
        self._generator = text_generator

    def find(
        self,
        center: SimilarityItem,
        existing: Sequence[SimilarityItem],
        *,
        limit: int = 10,
        content_type: Optional[str] = None,
    ) -> DiverseResult:
        if limit <= 0:
            return DiverseResult()
        if self._generator is None:
            logger.info("No text generator configured; skipping diverse content.")
            return DiverseResult()

        content_type = content_type or center.type
        exclude_titles = [item.title for item in existing][:MAX_EXCLUDED_TITLES]
        exclude_collections = list(
            dict.fromkeys(item.collection_name for item in existing if item.collection_name)
        )
        logger.info(
            "Finding diverse content | center=%s excluded_titles=%d excluded_collections=%s",
            center.title,
            len(exclude_titles),
            exclude_collections,
        )

        prompt = _diverse_prompt(center, exclude_titles, exclude_collections, limit)
        try:
            content = self._generator.generate(prompt, max_tokens=300, temperature=0.7)
        except TextGenerationError as exc:
            logger.warning("Diverse content generation failed: %s", exc)
            return DiverseResult()
        except Exception:
            logger.exception("Diverse content generation raised.")
            return DiverseResult()

        titles = parse_title_lines(content)
        logger.debug("AI suggested titles: %s", titles)

        existing_ids = {item.id for item in existing}
        existing_ids.add(center.id)
        matches: List[SimilarityItem] = []
        for title in titles:
            if len(matches) >= limit:
                break
            item = self._metadata.find_by_title(title, content_type)
            if item is None or item.id in existing_ids:
                continue
            existing_ids.add(item.id)
            matches.append(item)

        logger.info(
            "AI diverse content matched to library | suggested=%d matched=%d",
            len(titles),
            len(matches),
        )
        return DiverseResult(items=matches, ai_suggested=True)
