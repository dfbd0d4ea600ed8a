import uuid

from fastapi import APIRouter, Depends, HTTPException, Path

from app.api.deps import get_services, message_response, path_tag_key, run_store_call
from app.core.exceptions import MessageNotFoundError
from app.models.schemas import MessageResponse, MessageTagRequest
from app.services.container import AppServices

router = APIRouter()


def _message_id(value: str) -> str:
    # Ids are UUIDs; anything else cannot exist, so answer 404 without a query
    try:
        uuid.UUID(value)
    except ValueError:
        raise HTTPException(status_code=404, detail="Message not found")
    return value


async def _with_message(action: str, detail: str, coro):
    try:
        return await run_store_call(action, detail, coro)
    except MessageNotFoundError:
        raise HTTPException(status_code=404, detail="Message not found")


@router.get("/{message_id}", response_model=MessageResponse)
async def get_message(message_id: str = Path(...), services: AppServices = Depends(get_services)):
    message = await _with_message(
        "get_message", "Failed to load message", services.message_tags.get(_message_id(message_id))
    )
    return message_response(message)


@router.post("/{message_id}/tags", response_model=MessageResponse)
async def add_message_tag(
    body: MessageTagRequest,
    message_id: str = Path(...),
    services: AppServices = Depends(get_services),
):
    message = await _with_message(
        "add_message_tag",
        "Failed to tag message",
        services.message_tags.add_tag(_message_id(message_id), body.tag),
    )
    return message_response(message)


@router.delete("/{message_id}/tags/{tag}", response_model=MessageResponse)
async def remove_message_tag(
    message_id: str = Path(...),
    tag: str = Path(..., max_length=100),
    services: AppServices = Depends(get_services),
):
    message = await _with_message(
        "remove_message_tag",
        "Failed to untag message",
        services.message_tags.remove_tag(_message_id(message_id), path_tag_key(tag)),
    )
    return message_response(message)
