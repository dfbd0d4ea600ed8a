from fastapi import APIRouter, Depends, HTTPException, Path, Query

from app.api.deps import get_services, message_response, run_store_call
from app.models.schemas import MessageResponse
from app.services.container import AppServices

router = APIRouter()


@router.get("/{session_id}/messages", response_model=list[MessageResponse])
async def session_history(
    session_id: str = Path(..., max_length=128),
    limit: int = Query(default=50, ge=1, le=500),
    services: AppServices = Depends(get_services),
):
    """Stored messages of one session, oldest first."""
    session = await run_store_call(
        "get_session", "Failed to load session", services.message_store.get_session(session_id)
    )
    if session is None:
        raise HTTPException(status_code=404, detail="Session not found")
    messages = await run_store_call(
        "fetch_session_messages",
        "Failed to load session history",
        services.message_store.fetch_session_messages(session_id, limit),
    )
    return [message_response(m) for m in messages]
