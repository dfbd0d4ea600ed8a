"""WebSocket chat endpoint.

Each connection owns one session. Inbound frames are ``{"event", "data"}``
envelopes; ``sendMessage`` starts a chat turn that runs as its own task so the
receive loop keeps reading (and notices a disconnect) while the model streams.
Turns on one connection are serialized.
"""

import asyncio
import json
import re
import uuid
from typing import Any

import structlog
from fastapi import APIRouter, Query, WebSocket, WebSocketDisconnect
from pydantic import ValidationError

from app.core.constants import ClientEvents
from app.core.exceptions import ClientDisconnectedError
from app.core.metrics import websocket_connections_active
from app.models.schemas import InboundEvent, SendMessagePayload
from app.services.chat import ChatService

logger = structlog.get_logger(__name__)

router = APIRouter()

_SESSION_ID_RE = re.compile(r"^[\w.:-]{1,128}$")


class WebSocketChannel:
    """Serializes sends on one socket and reports a closed peer as ``ClientDisconnectedError``."""

    def __init__(self, websocket: WebSocket):
        self._websocket = websocket
        self._lock = asyncio.Lock()
        self.closed = False

    async def send(self, event: str, data: dict[str, Any]) -> None:
        if self.closed:
            raise ClientDisconnectedError("connection already closed")
        async with self._lock:
            try:
                await self._websocket.send_json({"event": event, "data": data})
            except (WebSocketDisconnect, RuntimeError, OSError) as exc:
                self.closed = True
                raise ClientDisconnectedError(str(exc)) from exc

    async def send_error(self, message: str) -> None:
        await self.send(ClientEvents.ERROR, {"message": message})


class ChatConnection:
    def __init__(self, session_id: str, channel: WebSocketChannel, chat: ChatService):
        self.session_id = session_id
        self.channel = channel
        self.chat = chat
        self._turn_lock = asyncio.Lock()
        self._turns: set[asyncio.Task] = set()

    async def handle_frame(self, raw: str) -> None:
        try:
            inbound = InboundEvent.model_validate(json.loads(raw))
        except (json.JSONDecodeError, ValidationError):
            logger.warning("ws.invalid_frame", frame_preview=raw[:80])
            await self.channel.send_error("Invalid message format")
            return

        handlers = {
            ClientEvents.SEND_MESSAGE: self._handle_send_message,
        }

        handler = handlers.get(inbound.event)
        if handler is None:
            logger.warning("ws.unknown_event", event_name=inbound.event)
            await self.channel.send_error(f"Unknown event: {inbound.event}")
            return
        await handler(inbound.data)

    async def _handle_send_message(self, data: dict[str, Any]) -> None:
        try:
            payload = SendMessagePayload.model_validate(data)
        except ValidationError:
            await self.channel.send_error("Message text must not be empty")
            return

        task = asyncio.create_task(self._run_turn(payload.text))
        self._turns.add(task)
        task.add_done_callback(self._turns.discard)

    async def _run_turn(self, text: str) -> None:
        async with self._turn_lock:
            try:
                await self.chat.handle_user_message(self.session_id, text, self.channel)
            except ClientDisconnectedError:
                logger.info("ws.turn_abandoned", reason="client_disconnected")
            except Exception:
                logger.exception("ws.turn_failed")
                if not self.channel.closed:
                    await self.channel.send_error("Failed to generate a response")

    async def close(self) -> None:
        """Cancel in-flight turns and wait for them to unwind."""
        pending = list(self._turns)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
            logger.info("ws.turns_cancelled", count=len(pending))


@router.websocket("/ws/chat")
async def chat_socket(websocket: WebSocket, session_id: str | None = Query(default=None)):
    services = websocket.app.state.services
    options = websocket.app.state.generation

    if not session_id or not _SESSION_ID_RE.match(session_id):
        session_id = str(uuid.uuid4())

    await websocket.accept()
    structlog.contextvars.bind_contextvars(session_id=session_id)
    websocket_connections_active.inc()

    channel = WebSocketChannel(websocket)
    connection = ChatConnection(session_id, channel, services.chat_service(options))
    logger.info("ws.connected", model=options.model)

    try:
        try:
            await services.message_store.touch_session(session_id)
        except Exception as exc:
            logger.warning("ws.session_touch_failed", error=str(exc))
        await channel.send(ClientEvents.SESSION_CREATED, {"sessionId": session_id})

        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                break
            raw = message.get("text")
            if raw is None:
                raw = (message.get("bytes") or b"").decode("utf-8", errors="replace")
            await connection.handle_frame(raw)
    except (WebSocketDisconnect, ClientDisconnectedError):
        pass
    finally:
        channel.closed = True
        await connection.close()
        websocket_connections_active.dec()
        logger.info("ws.disconnected")
        structlog.contextvars.unbind_contextvars("session_id")
