import structlog
from fastapi import HTTPException
from starlette.requests import HTTPConnection

from app.core.config import GenerationOptions
from app.core.exceptions import MessageNotFoundError, SynonymCycleError
from app.models.entities import Message
from app.models.schemas import MessageResponse, canonical_tag
from app.services.container import AppServices

logger = structlog.get_logger(__name__)

# Domain errors the routes translate themselves
_PASSTHROUGH = (HTTPException, MessageNotFoundError, SynonymCycleError)


def get_services(conn: HTTPConnection) -> AppServices:
    return conn.app.state.services


def get_generation_options(conn: HTTPConnection) -> GenerationOptions:
    return conn.app.state.generation


async def run_store_call(action: str, detail: str, coro):
    """Translate unexpected store failures to consistent 503 responses."""
    try:
        return await coro
    except _PASSTHROUGH:
        raise
    except Exception:
        logger.exception(f"store.{action}.error")
        raise HTTPException(status_code=503, detail=detail)


def path_tag_key(value: str) -> str:
    """Path parameters get the same normalization as request bodies."""
    try:
        return canonical_tag(value, allow_excluded=True)
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc))


def message_response(message: Message) -> MessageResponse:
    return MessageResponse(**message.to_dict())
