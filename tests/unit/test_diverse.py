from __future__ import annotations

from simgraph.core.diverse import DiverseContentFinder, parse_title_lines
from tests.helpers import (
    FakeMetadataStore,
    FakeTextGenerator,
    failing_text_generator,
    make_item,
)


def test_parse_title_lines_strips_numbering_and_bullets():
    content = '1. Dune\n- "Interstellar"\n* Arrival\n\nX\ndune\n```'
    assert parse_title_lines(content) == ["Dune", "Interstellar", "Arrival"]


def _library():
    center = make_item(
        "sw1",
        "A New Hope",
        genres=["Sci-Fi", "Adventure"],
        collection="Star Wars Collection",
        keywords=["space", "rebellion"],
    )
    existing = [center, make_item("sw2", "The Empire Strikes Back", collection="Star Wars Collection")]
    library = FakeMetadataStore(
        [
            *existing,
            make_item("d1", "Dune"),
            make_item("i1", "Interstellar"),
            make_item("st1", "Serenity"),
        ]
    )
    return center, existing, library


def test_find_matches_titles_and_skips_existing():
    center, existing, library = _library()
    generator = FakeTextGenerator("Dune\nThe Empire Strikes Back\nUnknown Film\nInterstellar")
    finder = DiverseContentFinder(library, generator)

    result = finder.find(center, existing, limit=5)

    assert result.ai_suggested is True
    assert [item.id for item in result.items] == ["d1", "i1"]
    prompt = generator.prompts[0]
    assert "A New Hope" in prompt
    assert "ALSO EXCLUDE anything from: Star Wars Collection" in prompt
    assert generator.calls[0]["temperature"] == 0.7


def test_find_respects_limit():
    center, existing, library = _library()
    generator = FakeTextGenerator("Dune\nInterstellar\nSerenity")
    finder = DiverseContentFinder(library, generator)

    result = finder.find(center, existing, limit=1)

    assert [item.id for item in result.items] == ["d1"]


def test_find_returns_empty_on_generation_failure():
    center, existing, library = _library()
    finder = DiverseContentFinder(library, failing_text_generator())

    result = finder.find(center, existing, limit=4)

    assert result.items == []
    assert result.ai_suggested is False


def test_find_without_generator_is_empty():
    center, existing, library = _library()
    result = DiverseContentFinder(library, None).find(center, existing)
    assert result.items == []
