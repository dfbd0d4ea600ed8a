"""Manual tag edits on stored messages."""

import structlog

from app.core.exceptions import MessageNotFoundError
from app.core.metrics import tag_store_errors_total
from app.models.entities import Message
from app.repositories.base import MessageStore, TagStore
from app.services.tag_normalizer import Hashtag

logger = structlog.get_logger(__name__)


class MessageTagService:
    def __init__(self, messages: MessageStore, tags: TagStore):
        self._messages = messages
        self._tags = tags

    async def get(self, message_id: str) -> Message:
        message = await self._messages.get_message(message_id)
        if message is None:
            raise MessageNotFoundError(message_id)
        return message

    async def add_tag(self, message_id: str, key: str) -> Message:
        """Attach ``#key`` and count one usage, unless the message already carries it."""
        current = await self.get(message_id)
        tag = Hashtag.parse(key)
        already_tagged = any(Hashtag.parse(t) == tag for t in current.tags)

        updated = await self._messages.add_message_tag(message_id, tag.canonical)
        if updated is None:
            raise MessageNotFoundError(message_id)

        if not already_tagged:
            try:
                await self._tags.upsert_tag_usage(tag.key)
            except Exception as exc:
                tag_store_errors_total.labels(operation="upsert_tag_usage").inc()
                logger.warning("tags.manual_usage_failed", tag=tag.key, error=str(exc))
        logger.info("message.tag_added", message_id=message_id, tag=tag.key, new=not already_tagged)
        return updated

    async def remove_tag(self, message_id: str, key: str) -> Message:
        updated = await self._messages.remove_message_tag(message_id, key)
        if updated is None:
            raise MessageNotFoundError(message_id)
        logger.info("message.tag_removed", message_id=message_id, tag=key)
        return updated
