"""Extraction followed by vocabulary resolution, for the three places tags are made."""

from __future__ import annotations

from dataclasses import dataclass

from app.services.entity_extractor import EntityExtractor
from app.services.tag_resolver import TagResolver


@dataclass
class TaggedText:
    content: str
    tags: list[str]
    source: str


class HashtagService:
    def __init__(
        self,
        extractor: EntityExtractor,
        resolver: TagResolver,
        user_max_tags: int = 6,
        response_max_tags: int = 5,
    ):
        self.extractor = extractor
        self.resolver = resolver
        self._user_max = user_max_tags
        self._response_max = response_max_tags

    async def tag_user_message(self, text: str) -> list[str]:
        result = self.extractor.extract(text, self._user_max)
        return await self.resolver.resolve(result.tags)

    async def tag_response(self, text: str) -> TaggedText:
        """Final tags for a completed assistant response; records usage."""
        result = self.extractor.extract(text, self._response_max)
        tags = await self.resolver.resolve(result.tags)
        return TaggedText(content=result.content, tags=tags, source=result.source)

    async def preview(self, text: str, max_tags: int | None = None) -> TaggedText:
        """Same pipeline as ``tag_response`` without touching usage counters."""
        result = self.extractor.extract(text, max_tags or self._response_max)
        tags = await self.resolver.resolve(result.tags, record_usage=False)
        return TaggedText(content=result.content, tags=tags, source=result.source)
