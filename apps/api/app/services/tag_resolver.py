"""Resolve extracted candidates against the persistent tag vocabulary."""

from __future__ import annotations

from collections.abc import Iterable
from typing import Any

import structlog

from app.core.constants import TagDefaults
from app.core.metrics import hashtag_resolutions_total, tag_store_errors_total
from app.repositories.base import TagStore
from app.services.stopwords import should_exclude
from app.services.tag_normalizer import Hashtag, parse_tags

logger = structlog.get_logger(__name__)


class TagResolver:
    """Blocked-list filtering, synonym rewrite and usage counting.

    Synonyms are applied before the exclusion check, so a short registered
    alias such as ``js`` still resolves to its preferred tag. A blocked name
    is dropped whether it arrives directly or as a synonym target.

    Output tags are canonical (``#`` + lower-case name). Store outages never
    propagate: the caller gets the exclusion-filtered candidates back instead,
    or the fallback tag when none survive.
    """

    def __init__(self, store: TagStore, fallback_tag: str = TagDefaults.FALLBACK):
        self._store = store
        fallback = Hashtag.parse(fallback_tag)
        self._fallback = fallback.lower() if fallback else Hashtag(TagDefaults.FALLBACK)

    async def resolve(self, candidates: Iterable[Any], record_usage: bool = True) -> list[str]:
        parsed = parse_tags(candidates)
        if not parsed:
            hashtag_resolutions_total.labels(outcome="empty").inc()
            return []
        candidates = [tag.lower() for tag in parsed]

        try:
            resolved = await self._apply_vocabulary(candidates)
        except Exception as exc:
            tag_store_errors_total.labels(operation="resolve").inc()
            hashtag_resolutions_total.labels(outcome="degraded").inc()
            logger.warning("tags.resolve_store_error", error=str(exc), candidates=len(candidates))
            degraded = [tag.canonical for tag in candidates if not should_exclude(tag.name)]
            return degraded or [self._fallback.canonical]

        if not resolved:
            logger.info("tags.all_filtered", candidates=[str(t) for t in parsed])
            hashtag_resolutions_total.labels(outcome="fallback").inc()
            resolved = [self._fallback]
        else:
            hashtag_resolutions_total.labels(outcome="resolved").inc()

        if record_usage:
            await self._record_usage(resolved)
        return [tag.canonical for tag in resolved]

    async def _apply_vocabulary(self, tags: list[Hashtag]) -> list[Hashtag]:
        seen: set[str] = set()
        out: list[Hashtag] = []
        for tag in tags:
            if await self._store.is_blocked(tag.key):
                logger.debug("tags.blocked_skipped", tag=tag.key)
                continue
            # One level only: the replacement is not looked up again
            better = await self._store.resolve_synonym(tag.key)
            replacement = Hashtag.parse(better) if better else None
            if replacement is not None:
                logger.debug("tags.synonym_applied", original=tag.key, better=replacement.key)
                tag = replacement.lower()
                if await self._store.is_blocked(tag.key):
                    logger.debug("tags.blocked_skipped", tag=tag.key)
                    continue
            if tag.key in seen or should_exclude(tag.name):
                continue
            seen.add(tag.key)
            out.append(tag)
        return out

    async def _record_usage(self, tags: list[Hashtag]) -> None:
        for tag in tags:
            try:
                await self._store.upsert_tag_usage(tag.key)
            except Exception as exc:
                tag_store_errors_total.labels(operation="upsert_tag_usage").inc()
                logger.warning("tags.usage_upsert_failed", tag=tag.key, error=str(exc))
