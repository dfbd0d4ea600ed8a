"""Hashtag candidate extraction from free text.

Sources are tried in priority order and the first one that yields anything
wins:

1. an explicit ``#HASHTAGS:`` section, tokens with or without ``#`` (the
   section is always stripped from the returned content)
2. inline ``#word`` tokens, topped up with frequent words when sparse
3. structured mining (entities, actions, locations, time, concepts)
4. coarse fallback tags
"""

from __future__ import annotations

import random
import re
from collections import Counter
from dataclasses import dataclass, field

import structlog

from app.core.constants import TagDefaults
from app.services.stopwords import filter_excluded, should_exclude

logger = structlog.get_logger(__name__)

_MARKER_RE = re.compile(
    r"^[ \t]*#\s*HASHTAGS\s*:(?P<body>.*?)(?=\n[ \t]*\n|\Z)",
    re.IGNORECASE | re.MULTILINE | re.DOTALL,
)
_MARKER_TOKEN_RE = re.compile(r"#?([^\W_]+)")
# A label left mid-line is never a tag candidate
_MARKER_LABEL_RE = re.compile(r"#\s*HASHTAGS\s*:", re.IGNORECASE)
_INLINE_RE = re.compile(r"(?<![\w#&])#(\w[\w-]*)")

_ENTITY_RE = re.compile(r"\b[A-Z][a-zA-Z]*(?:[ \t]+[A-Z][a-zA-Z]*){0,2}\b")
_LOCATION_RE = re.compile(
    r"\b(?:at|in|from|to)[ \t]+(?:the[ \t]+)?([A-Z][a-zA-Z]+(?:[ \t]+[A-Z][a-zA-Z]+){0,2})\b"
)
_ACTION_RE = re.compile(
    r"\b(?:create|build|develop|implement|analyze|design|optimize|improve|launch|manage|"
    r"establish|organize|conduct|research|present|investigate|resolve|process|execute|"
    r"achieve|complete|deliver|maintain|update|configure|deploy|integrate)\b",
    re.IGNORECASE,
)
_TIME_RE = re.compile(
    r"\b(?:January|February|March|April|May|June|July|August|September|October|November|"
    r"December|Monday|Tuesday|Wednesday|Thursday|Friday|Saturday|Sunday|today|tomorrow|"
    r"yesterday|(?:last|next)\s+(?:week|month|year)|(?:19|20)\d{2})\b",
    re.IGNORECASE,
)
_TECHNICAL_RE = re.compile(
    r"\b(?:algorithm|framework|protocol|system|platform|database|interface|architecture|"
    r"process|methodology|standard|deployment|infrastructure|configuration|integration|"
    r"optimization|component|module|function|variable|analysis|design[ \t]+pattern|pipeline|"
    r"workflow|benchmark|performance|security|encryption|authentication|validation|"
    r"verification|technology|innovation)\b",
    re.IGNORECASE,
)
_DOMAIN_TERM_RE = re.compile(r"\b(?:[a-z][a-z0-9]*[A-Z][a-zA-Z0-9]*|[A-Z]{2,}[a-z]*)\b")
_WORD_RE = re.compile(r"[^\w]")

# Capitalized words that start clauses rather than name things
_SENTENCE_WORDS = frozenset(
    {"I", "We", "They", "The", "This", "That", "These", "Those", "It", "However", "Finally",
     "Additionally"}
)
_SENTENCE_END = ".!?\n"

# Per-axis quotas for structured mining: who, what, where, when, why/how
_QUOTAS = {"entities": 2, "actions": 2, "locations": 1, "time": 1, "concepts": 3}
_MIN_MINED = 3
_PAD_TARGET = 5
_PAD_MIN_LENGTH = 6


@dataclass
class ExtractionResult:
    content: str
    tags: list[str] = field(default_factory=list)
    source: str = "none"  # marker | inline | mined | fallback | error


def camel_case(phrase: str) -> str:
    words = phrase.split()
    if not words:
        return ""
    if len(words) == 1:
        return words[0].lower()
    return words[0].lower() + "".join(w[:1].upper() + w[1:].lower() for w in words[1:])


def _is_sentence_start(text: str, index: int) -> bool:
    j = index - 1
    while j >= 0 and text[j] in " \t":
        j -= 1
    return j < 0 or text[j] in _SENTENCE_END


def _unique(items: list[str]) -> list[str]:
    seen: set[str] = set()
    out: list[str] = []
    for item in items:
        key = item.lower()
        if key not in seen:
            seen.add(key)
            out.append(item)
    return out


def _named_entities(text: str) -> list[str]:
    found: list[str] = []
    for match in _ENTITY_RE.finditer(text):
        words = match.group(0).split()
        if _is_sentence_start(text, match.start()):
            words = words[1:]
        while words and words[0] in _SENTENCE_WORDS:
            words = words[1:]
        if words:
            found.append(" ".join(words))
    return found


def _locations(text: str) -> list[str]:
    return [m.group(1) for m in _LOCATION_RE.finditer(text) if m.group(1) not in _SENTENCE_WORDS]


def _concepts(text: str) -> list[str]:
    technical = [m.group(0).lower() for m in _TECHNICAL_RE.finditer(text)]
    return _unique(technical) + _DOMAIN_TERM_RE.findall(text)


def _frequent_words(text: str, taken: set[str], limit: int) -> list[str]:
    if limit <= 0:
        return []
    counts: Counter[str] = Counter()
    for raw in text.split():
        word = _WORD_RE.sub("", raw.lower())
        if len(word) >= _PAD_MIN_LENGTH and not should_exclude(word) and word not in taken:
            counts[word] += 1
    # Counter keeps insertion order, and sorted() is stable: ties stay in first-seen order
    ranked = sorted(counts.items(), key=lambda item: -item[1])
    return [word for word, _ in ranked[:limit]]


def mine_tags(text: str) -> list[str]:
    """Structured mining over five axes, padded with frequent words."""
    axes = {
        "entities": _named_entities(text),
        "actions": [m.group(0).lower() for m in _ACTION_RE.finditer(text)],
        "locations": _locations(text),
        "time": [re.sub(r"\s+", " ", m.group(0).lower()) for m in _TIME_RE.finditer(text)],
        "concepts": _concepts(text),
    }

    picked: list[str] = []
    taken: set[str] = set()
    for axis, quota in _QUOTAS.items():
        count = 0
        for candidate in axes[axis]:
            if count >= quota:
                break
            flat = camel_case(candidate)
            if not flat or should_exclude(flat) or flat.lower() in taken:
                continue
            taken.add(flat.lower())
            picked.append(flat)
            count += 1

    if len(picked) < _MIN_MINED:
        picked.extend(_frequent_words(text, taken, _PAD_TARGET - len(picked)))

    return [f"#{tag}" for tag in picked]


def fallback_tags(text: str, rng: random.Random) -> list[str]:
    tags = ["#chat"]
    if "?" in text:
        tags.append("#question")
    if len(text) > 100:
        tags.append("#detailed")
    elif len(text) < 20:
        tags.append("#brief")
    else:
        tags.append(rng.choice(TagDefaults.GENERIC_POOL))
    return tags


class EntityExtractor:
    """Turns text into an ordered list of hashtag candidates.

    ``rng`` only feeds the generic fallback pick; pass a seeded
    ``random.Random`` to make that branch deterministic.
    """

    def __init__(self, rng: random.Random | None = None):
        self._rng = rng or random.Random()

    def extract(self, text: str, max_tags: int = 5) -> ExtractionResult:
        text = text or ""
        try:
            return self._extract(text, max_tags)
        except Exception as exc:
            logger.warning("tags.extraction_failed", error=str(exc), text_length=len(text))
            return ExtractionResult(
                content=text, tags=list(TagDefaults.EXTRACTION_FAILURE), source="error"
            )

    def _extract(self, text: str, max_tags: int) -> ExtractionResult:
        content = text
        scan_text = text

        marker = _MARKER_RE.search(text)
        if marker:
            raw: list[str] = []
            for token in re.split(r"[\s,]+", marker.group("body")):
                match = _MARKER_TOKEN_RE.match(token)
                if match:
                    raw.append(f"#{match.group(1)}")
            content = (text[: marker.start()] + text[marker.end() :]).strip()
            scan_text = content
            if raw:
                tags = self._finish(raw, max_tags)
                if tags:
                    return ExtractionResult(content=content, tags=tags, source="marker")

        scan_text = _MARKER_LABEL_RE.sub(" ", scan_text)

        inline = [f"#{m.group(1).rstrip('-')}" for m in _INLINE_RE.finditer(scan_text)]
        if inline:
            if len(inline) < _MIN_MINED:
                # A lone explicit tag is topped up with the message's keywords
                taken = {_WORD_RE.sub("", tag.lower()) for tag in inline}
                padding = _frequent_words(scan_text, taken, _PAD_TARGET - len(inline))
                inline.extend(f"#{word}" for word in padding)
            tags = self._finish(inline, max_tags)
            if tags:
                return ExtractionResult(content=content, tags=tags, source="inline")

        tags = self._finish(mine_tags(scan_text), max_tags)
        if tags:
            return ExtractionResult(content=content, tags=tags, source="mined")

        tags = self._finish(fallback_tags(scan_text, self._rng), max_tags)
        return ExtractionResult(content=content, tags=tags, source="fallback")

    @staticmethod
    def _finish(candidates: list[str], max_tags: int) -> list[str]:
        seen: set[str] = set()
        out: list[str] = []
        for tag in filter_excluded(candidates):
            if tag.key in seen:
                continue
            seen.add(tag.key)
            out.append(str(tag))
        return out[:max_tags]
