"""Unit tests for the canonical Hashtag type and helpers."""

from types import SimpleNamespace

import pytest

from app.services.tag_normalizer import (
    Hashtag,
    dedupe_tags,
    normalize_tag,
    parse_tags,
    same_tag,
    tag_key,
)


@pytest.mark.parametrize(
    "raw",
    ["##Foo ", "foo", "  #GraphQL!", "#design-pattern", "(#scaling)", "###", "", "#a_b"],
)
def test_normalize_is_idempotent(raw: str) -> None:
    once = normalize_tag(raw)
    assert normalize_tag(once) == once


def test_prefix_and_whitespace_do_not_change_identity() -> None:
    assert same_tag("##Foo ", "foo")
    assert tag_key("##Foo ") == tag_key("foo") == "foo"
    assert Hashtag.parse("##Foo ") == Hashtag.parse("FOO")


def test_display_keeps_spelling_canonical_lowercases() -> None:
    tag = Hashtag.parse("#GraphQL")
    assert str(tag) == "#GraphQL"
    assert tag.canonical == "#graphql"


@pytest.mark.parametrize("raw", [None, "", "#", "  ##  ", "!!!"])
def test_unparseable_values_yield_none(raw) -> None:
    assert Hashtag.parse(raw) is None
    assert normalize_tag(raw) is None


def test_accepts_mappings_and_objects() -> None:
    assert tag_key({"name": "#Python"}) == "python"
    assert tag_key({"tag_name": "rust"}) == "rust"
    assert tag_key(SimpleNamespace(name="#Go")) == "go"
    assert tag_key({"unrelated": "x"}) is None


def test_dedupe_is_case_insensitive_and_keeps_first_spelling() -> None:
    assert dedupe_tags(["#a", "#a", "#A"]) == ["#a"]
    assert dedupe_tags(["#Kubernetes", "kubernetes", "#scaling"]) == ["#Kubernetes", "#scaling"]


def test_parse_tags_skips_garbage() -> None:
    tags = parse_tags(["#one", None, "#", "two"])
    assert [t.key for t in tags] == ["one", "two"]
