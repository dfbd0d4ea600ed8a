"""Builds the long-lived collaborators once per process and hands them out.

Stored on ``app.state.services`` by the lifespan; routes reach it through
``app.api.deps``.
"""

from __future__ import annotations

import random
from dataclasses import dataclass

import httpx
import structlog

from app.core.config import GenerationOptions, Settings
from app.core.db import get_db_pool
from app.core.redis import get_redis
from app.repositories.base import MessageStore, TagStore
from app.repositories.memory import InMemoryMessageStore, InMemoryTagStore
from app.repositories.messages import MessageRepository
from app.repositories.tags import TagRepository
from app.services.chat import ChatService
from app.services.entity_extractor import EntityExtractor
from app.services.hashtags import HashtagService
from app.services.message_tags import MessageTagService
from app.services.ollama import ModelCatalog, OllamaClient
from app.services.session_context import ContextBuilder, SessionMemory
from app.services.tag_resolver import TagResolver

logger = structlog.get_logger(__name__)


@dataclass
class AppServices:
    settings: Settings
    tag_store: TagStore
    message_store: MessageStore
    ollama: OllamaClient
    catalog: ModelCatalog
    memory: SessionMemory
    hashtags: HashtagService
    context: ContextBuilder
    message_tags: MessageTagService

    def chat_service(self, options: GenerationOptions) -> ChatService:
        return ChatService(
            settings=self.settings,
            options=options,
            messages=self.message_store,
            hashtags=self.hashtags,
            context=self.context,
            memory=self.memory,
            ollama=self.ollama,
        )

    async def aclose(self) -> None:
        await self.ollama.aclose()


def build_services(
    settings: Settings,
    *,
    rng: random.Random | None = None,
    ollama_transport: httpx.AsyncBaseTransport | None = None,
) -> AppServices:
    if settings.STORE_BACKEND == "memory":
        tag_store: TagStore = InMemoryTagStore()
        message_store: MessageStore = InMemoryMessageStore()
        redis_factory = None
    else:
        tag_store = TagRepository(get_db_pool)
        message_store = MessageRepository(get_db_pool)
        redis_factory = get_redis
    logger.info("services.build", store_backend=settings.STORE_BACKEND)

    ollama = OllamaClient(
        settings.OLLAMA_BASE_URL, timeout=settings.OLLAMA_TIMEOUT, transport=ollama_transport
    )
    memory = SessionMemory(
        redis_factory,
        max_turns=settings.SESSION_MEMORY_TURNS,
        ttl=settings.SESSION_MEMORY_TTL,
    )
    hashtags = HashtagService(
        EntityExtractor(rng),
        TagResolver(tag_store, fallback_tag=settings.DEFAULT_FALLBACK_TAG),
        user_max_tags=settings.USER_MAX_TAGS,
        response_max_tags=settings.RESPONSE_MAX_TAGS,
    )
    return AppServices(
        settings=settings,
        tag_store=tag_store,
        message_store=message_store,
        ollama=ollama,
        catalog=ModelCatalog(ollama, ttl=settings.MODEL_CHECK_TTL),
        memory=memory,
        hashtags=hashtags,
        context=ContextBuilder(
            message_store,
            memory,
            related_limit=settings.RELATED_CONTEXT_LIMIT,
            excerpt_chars=settings.RELATED_EXCERPT_CHARS,
        ),
        message_tags=MessageTagService(message_store, tag_store),
    )
