"""One chat turn: tag the user message, build context, stream, tag, persist."""

from __future__ import annotations

import asyncio
import time
import uuid
from contextlib import aclosing
from typing import Any, Protocol

import structlog

from app.core.config import GenerationOptions, Settings
from app.core.constants import ClientEvents, MessageOrigin
from app.core.exceptions import ClientDisconnectedError, CompletionBackendError
from app.core.metrics import (
    chat_requests_total,
    chat_response_duration_seconds,
    chat_stream_chunks_total,
    completion_backend_errors_total,
    tag_store_errors_total,
)
from app.models.entities import Message
from app.repositories.base import MessageStore
from app.services.hashtags import HashtagService
from app.services.ollama import OllamaClient
from app.services.session_context import ContextBuilder, SessionMemory
from app.services.stream_assembler import Completed, Fragment, StreamAssembler

logger = structlog.get_logger(__name__)


class ClientChannel(Protocol):
    async def send(self, event: str, data: dict[str, Any]) -> None: ...


class ChatService:
    """Runs chat turns for one client connection.

    ``options`` is the generation snapshot current when the connection
    opened; config updates apply to new connections.
    """

    def __init__(
        self,
        *,
        settings: Settings,
        options: GenerationOptions,
        messages: MessageStore,
        hashtags: HashtagService,
        context: ContextBuilder,
        memory: SessionMemory,
        ollama: OllamaClient,
    ):
        self._settings = settings
        self._options = options
        self._messages = messages
        self._hashtags = hashtags
        self._context = context
        self._memory = memory
        self._ollama = ollama

    async def handle_user_message(
        self, session_id: str, text: str, channel: ClientChannel
    ) -> Message | None:
        """Run a full turn. Returns the persisted assistant message, or None on failure."""
        log = logger.bind(session_id=session_id)
        log.info("chat.turn_started", text_preview=text[:80])

        await self._touch_session(session_id)

        user_tags = await self._hashtags.tag_user_message(text)
        user_message = Message(
            id=str(uuid.uuid4()),
            session_id=session_id,
            origin=MessageOrigin.USER,
            content=text,
            tags=user_tags,
        )
        await self._save(user_message)
        await channel.send(
            ClientEvents.HASHTAGS_UPDATE,
            {"hashtags": user_message.tags, "messageId": user_message.id, "role": "user"},
        )

        prompt = await self._context.build_prompt(
            session_id, text, user_message.tags, history_turns=self._options.context_messages
        )
        return await self._generate(session_id, text, prompt, channel)

    async def _generate(
        self, session_id: str, user_text: str, prompt: str, channel: ClientChannel
    ) -> Message | None:
        message_id = str(uuid.uuid4())
        assembler = StreamAssembler(
            message_id,
            max_line_chars=self._settings.STREAM_MAX_LINE_CHARS,
            preview_min_chars=self._settings.PREVIEW_MIN_CHARS,
            preview_every_n_chunks=self._settings.PREVIEW_EVERY_N_CHUNKS,
        )
        previews: set[asyncio.Task] = set()
        start_time = time.perf_counter()
        status = "error"
        log = logger.bind(session_id=session_id, message_id=message_id)

        try:
            completed: Completed | None = None
            async with aclosing(self._ollama.stream_generate(prompt, self._options)) as stream:
                async for raw in stream:
                    for event in assembler.feed(raw):
                        if isinstance(event, Fragment):
                            await self._forward(channel, message_id, event.text)
                            if assembler.should_preview() and not previews:
                                self._schedule_preview(assembler, channel, previews)
                        else:
                            completed = event
                    if assembler.closed:
                        break
                if completed is None:
                    for event in assembler.finish():
                        if isinstance(event, Fragment):
                            await self._forward(channel, message_id, event.text)
                        else:
                            completed = event

            await self._drain_previews(previews)
            message = await self._finalize(
                session_id, user_text, message_id, assembler, completed, channel, start_time
            )
            status = "success"
            log.info(
                "chat.turn_completed",
                chunk_count=assembler.state.chunk_count,
                response_length=len(assembler.state.accumulated_text),
                tags=message.tags,
            )
            return message
        except CompletionBackendError as exc:
            assembler.close()
            await self._drain_previews(previews)
            completion_backend_errors_total.labels(kind=exc.kind).inc()
            log.warning("chat.stream_failed", kind=exc.kind, error=exc.message)
            await channel.send(ClientEvents.ERROR, {"message": exc.message, "messageId": message_id})
            return None
        except (asyncio.CancelledError, ClientDisconnectedError):
            status = "cancelled"
            assembler.close()
            for task in previews:
                task.cancel()
            log.info("chat.turn_cancelled", chunk_count=assembler.state.chunk_count)
            raise
        finally:
            chat_requests_total.labels(status=status).inc()
            chat_response_duration_seconds.observe(time.perf_counter() - start_time)

    async def _forward(self, channel: ClientChannel, message_id: str, text: str) -> None:
        chat_stream_chunks_total.inc()
        await channel.send(
            ClientEvents.MESSAGE_CHUNK, {"chunk": text, "messageId": message_id, "done": False}
        )

    async def _finalize(
        self,
        session_id: str,
        user_text: str,
        message_id: str,
        assembler: StreamAssembler,
        completed: Completed | None,
        channel: ClientChannel,
        start_time: float,
    ) -> Message:
        full_text = completed.text if completed else assembler.state.accumulated_text
        tagged = await self._hashtags.tag_response(full_text)
        message = Message(
            id=message_id,
            session_id=session_id,
            origin=MessageOrigin.ASSISTANT,
            content=tagged.content,
            tags=tagged.tags,
        )
        # Persist before the terminal event so a client that closes on done
        # cannot cut the write short
        await self._save(message)
        await self._memory.append(session_id, user_text, tagged.content)
        await channel.send(
            ClientEvents.MESSAGE_CHUNK,
            {
                "chunk": "",
                "messageId": message_id,
                "done": True,
                "hashtags": message.tags,
                "content": message.content,
                "responseTime": round((time.perf_counter() - start_time) * 1000),
            },
        )
        return message

    def _schedule_preview(
        self, assembler: StreamAssembler, channel: ClientChannel, previews: set[asyncio.Task]
    ) -> None:
        task = asyncio.create_task(
            self._preview(assembler, channel, assembler.state.accumulated_text)
        )
        previews.add(task)
        task.add_done_callback(previews.discard)
        task.add_done_callback(self._log_preview_error)

    async def _preview(self, assembler: StreamAssembler, channel: ClientChannel, text: str) -> None:
        tagged = await self._hashtags.preview(text)
        if not tagged.tags or assembler.closed:
            return
        assembler.state.hashtags_extracted_early = True
        await channel.send(
            ClientEvents.STREAMING_HASHTAGS,
            {"hashtags": tagged.tags, "messageId": assembler.state.message_id, "final": False},
        )

    @staticmethod
    def _log_preview_error(task: asyncio.Task) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.warning("chat.preview_failed", error=str(exc))

    @staticmethod
    async def _drain_previews(previews: set[asyncio.Task]) -> None:
        """Cancel outstanding previews and wait for them so none lands after the terminal event."""
        pending = list(previews)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

    async def _touch_session(self, session_id: str) -> None:
        try:
            await self._messages.touch_session(session_id)
        except Exception as exc:
            tag_store_errors_total.labels(operation="touch_session").inc()
            logger.warning("chat.session_touch_failed", session_id=session_id, error=str(exc))

    async def _save(self, message: Message) -> None:
        try:
            await self._messages.save_message(message)
        except Exception as exc:
            tag_store_errors_total.labels(operation="save_message").inc()
            logger.warning(
                "chat.message_save_failed",
                session_id=message.session_id,
                message_id=message.id,
                origin=message.origin.value,
                error=str(exc),
            )
