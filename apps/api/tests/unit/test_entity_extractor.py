"""Unit tests for hashtag candidate extraction."""

import random
from unittest.mock import patch

from app.services.entity_extractor import EntityExtractor, camel_case, fallback_tags, mine_tags


def _keys(tags: list[str]) -> list[str]:
    return [t.lstrip("#").lower() for t in tags]


def test_inline_tags_keep_content_unchanged() -> None:
    text = "Great talk about #Kubernetes and #scaling today"
    result = EntityExtractor().extract(text)

    assert result.source == "inline"
    assert "kubernetes" in _keys(result.tags)
    assert "scaling" in _keys(result.tags)
    assert result.content == text


def test_single_inline_tag_is_topped_up_with_keywords() -> None:
    result = EntityExtractor().extract("Tell me about #graphql caching")

    assert result.source == "inline"
    assert _keys(result.tags) == ["graphql", "caching"]


def test_marker_section_is_stripped_from_content() -> None:
    text = "GraphQL responses can be cached per field.\n\n#HASHTAGS: #graphql, #caching"
    result = EntityExtractor().extract(text)

    assert result.source == "marker"
    assert result.tags == ["#graphql", "#caching"]
    assert result.content == "GraphQL responses can be cached per field."
    assert "#HASHTAGS" not in result.content


def test_marker_tokens_truncate_at_first_non_alphanumeric() -> None:
    result = EntityExtractor().extract("Body.\n\n#hashtags: #graph-ql #caching.")

    assert result.tags == ["#graph", "#caching"]


def test_marker_with_only_excluded_tokens_falls_through_on_stripped_content() -> None:
    text = "We should optimize the database in Berlin.\n\n#HASHTAGS: #ai #the"
    result = EntityExtractor().extract(text)

    assert result.source == "mined"
    assert result.content == "We should optimize the database in Berlin."
    assert "ai" not in _keys(result.tags)


def test_marker_tokens_without_hash_prefix() -> None:
    text = "GraphQL can cache responses per field.\n\n#HASHTAGS: graphql, caching"
    result = EntityExtractor().extract(text)

    assert result.source == "marker"
    assert result.tags == ["#graphql", "#caching"]
    assert result.content == "GraphQL can cache responses per field."


def test_marker_without_usable_tokens_is_still_stripped() -> None:
    text = "Kubernetes restarts failed pods automatically.\n\n#HASHTAGS: none"
    result = EntityExtractor().extract(text)

    assert result.content == "Kubernetes restarts failed pods automatically."
    assert "hashtags" not in _keys(result.tags)
    assert "none" not in _keys(result.tags)


def test_marker_label_is_never_an_inline_tag() -> None:
    result = EntityExtractor().extract("Use a cache layer. #HASHTAGS: #redis")

    assert result.source == "inline"
    assert "redis" in _keys(result.tags)
    assert "hashtags" not in _keys(result.tags)


def test_structured_mining_axes() -> None:
    tags = mine_tags("We should optimize the database in Berlin.")

    assert tags == ["#berlin", "#optimize", "#database"]


def test_mining_flattens_multi_word_entities() -> None:
    assert camel_case("New York City") == "newYorkCity"
    assert camel_case("Berlin") == "berlin"
    tags = mine_tags("Our team met people from New York City last week.")
    assert "#newYorkCity" in tags
    assert "#lastWeek" in tags


def test_fallback_signals() -> None:
    rng = random.Random(7)
    assert fallback_tags("ok?", rng) == ["#chat", "#question", "#brief"]
    assert fallback_tags("x" * 150, rng) == ["#chat", "#detailed"]


def test_fallback_generic_pick_is_deterministic_with_seeded_rng() -> None:
    text = "hmm, that is just what we had"
    first = fallback_tags(text, random.Random(42))
    second = fallback_tags(text, random.Random(42))

    assert first == second
    assert first[0] == "#chat"
    assert first[1] in {"#discussion", "#topic", "#conversation", "#query"}


def test_extract_uses_fallback_when_nothing_else_matches() -> None:
    result = EntityExtractor(random.Random(1)).extract("ok?")

    assert result.source == "fallback"
    assert result.tags == ["#chat", "#question", "#brief"]


def test_max_tags_caps_output() -> None:
    text = "#alpha #bravo #charlie #delta #echo #foxtrot #golf"
    result = EntityExtractor().extract(text, max_tags=3)

    assert result.tags == ["#alpha", "#bravo", "#charlie"]


def test_extraction_failure_degrades_to_default_tags() -> None:
    extractor = EntityExtractor()
    with patch.object(EntityExtractor, "_extract", side_effect=RuntimeError("boom")):
        result = extractor.extract("anything")

    assert result.source == "error"
    assert result.tags == ["#chat", "#conversation"]
    assert result.content == "anything"
