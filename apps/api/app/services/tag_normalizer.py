"""Canonical hashtag type.

Every tag that enters the system (client input, extractor output, database
rows) goes through ``Hashtag.parse`` once. Past that point code only sees
``Hashtag`` or its canonical string.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any

# Trimmed from both ends along with whitespace; '-' and '_' are valid tag chars
_EDGE_PUNCTUATION = ".,;:!?\"'`()[]{}<>"
_NAME_KEYS = ("name", "tag", "tag_name")


def _raw_text(value: Any) -> str | None:
    if value is None:
        return None
    if isinstance(value, Hashtag):
        return value.name
    if isinstance(value, str):
        return value
    if isinstance(value, Mapping):
        for key in _NAME_KEYS:
            if isinstance(value.get(key), str):
                return value[key]
        return None
    name = getattr(value, "name", None)
    if isinstance(name, str):
        return name
    return str(value)


def _core(text: str) -> str:
    core = text
    while True:
        stripped = core.lstrip("#").strip().strip(_EDGE_PUNCTUATION)
        if stripped == core:
            return core
        core = stripped


@dataclass(frozen=True)
class Hashtag:
    """A tag name without the ``#`` prefix.

    Equality and hashing use the lower-cased key, so ``#Foo`` and ``foo`` are
    the same tag while ``name`` keeps the original casing for display.
    """

    name: str = field(compare=False)
    key: str = field(init=False, repr=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "key", self.name.lower())

    @classmethod
    def parse(cls, value: Any) -> Hashtag | None:
        text = _raw_text(value)
        if text is None:
            return None
        core = _core(text)
        if not core:
            return None
        return cls(core)

    @property
    def canonical(self) -> str:
        """Lower-case ``#`` form used for storage and comparison."""
        return f"#{self.key}"

    def lower(self) -> Hashtag:
        return Hashtag(self.key)

    def __str__(self) -> str:
        return f"#{self.name}"


def normalize_tag(value: Any) -> str | None:
    tag = Hashtag.parse(value)
    return str(tag) if tag else None


def tag_key(value: Any) -> str | None:
    tag = Hashtag.parse(value)
    return tag.key if tag else None


def same_tag(a: Any, b: Any) -> bool:
    left, right = Hashtag.parse(a), Hashtag.parse(b)
    return left is not None and left == right


def parse_tags(values: Iterable[Any]) -> list[Hashtag]:
    """Parse and de-duplicate, keeping the first spelling seen."""
    seen: set[str] = set()
    out: list[Hashtag] = []
    for value in values:
        tag = Hashtag.parse(value)
        if tag is None or tag.key in seen:
            continue
        seen.add(tag.key)
        out.append(tag)
    return out


def dedupe_tags(values: Iterable[Any]) -> list[str]:
    return [str(tag) for tag in parse_tags(values)]
