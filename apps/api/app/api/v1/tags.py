import structlog
from fastapi import APIRouter, Depends, HTTPException, Path, Query, Response, status

from app.api.deps import get_services, message_response, path_tag_key, run_store_call
from app.core.exceptions import SynonymCycleError
from app.models.schemas import (
    BlockedTagResponse,
    BlockTagRequest,
    ExtractTagsRequest,
    ExtractTagsResponse,
    RelatedMessagesResponse,
    SynonymRequest,
    SynonymResponse,
    TagResponse,
)
from app.services.container import AppServices

logger = structlog.get_logger(__name__)

router = APIRouter()


@router.get("", response_model=list[TagResponse])
async def list_popular_tags(
    limit: int = Query(default=20, ge=1, le=100),
    services: AppServices = Depends(get_services),
):
    tags = await run_store_call(
        "list_tags", "Failed to list tags", services.tag_store.list_tags(limit)
    )
    return [TagResponse(name=t.name, usage_count=t.usage_count, first_used=t.first_used) for t in tags]


@router.post("/extract", response_model=ExtractTagsResponse)
async def extract_tags(body: ExtractTagsRequest, services: AppServices = Depends(get_services)):
    """Preview the tags a text would receive. No usage is recorded."""
    tagged = await services.hashtags.preview(body.text, max_tags=body.max_tags)
    return ExtractTagsResponse(hashtags=tagged.tags, content=tagged.content, source=tagged.source)


# ---------------------------------------------------------------------------
# Blocked tags
# ---------------------------------------------------------------------------


@router.get("/blocked", response_model=list[BlockedTagResponse])
async def list_blocked_tags(services: AppServices = Depends(get_services)):
    blocked = await run_store_call(
        "list_blocked", "Failed to list blocked tags", services.tag_store.list_blocked()
    )
    return [BlockedTagResponse(name=b.name, reason=b.reason, created_at=b.created_at) for b in blocked]


@router.post("/blocked", response_model=BlockedTagResponse, status_code=status.HTTP_201_CREATED)
async def block_tag(body: BlockTagRequest, services: AppServices = Depends(get_services)):
    blocked = await run_store_call(
        "block_tag", "Failed to block tag", services.tag_store.block_tag(body.tag, body.reason)
    )
    logger.info("tags.blocked", tag=blocked.name)
    return BlockedTagResponse(name=blocked.name, reason=blocked.reason, created_at=blocked.created_at)


@router.delete("/blocked/{tag}", status_code=status.HTTP_204_NO_CONTENT)
async def unblock_tag(tag: str = Path(..., max_length=100), services: AppServices = Depends(get_services)):
    key = path_tag_key(tag)
    removed = await run_store_call(
        "unblock_tag", "Failed to unblock tag", services.tag_store.unblock_tag(key)
    )
    if not removed:
        raise HTTPException(status_code=404, detail=f"#{key} is not blocked")
    logger.info("tags.unblocked", tag=key)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# ---------------------------------------------------------------------------
# Synonyms
# ---------------------------------------------------------------------------


@router.get("/synonyms", response_model=list[SynonymResponse])
async def list_synonyms(services: AppServices = Depends(get_services)):
    synonyms = await run_store_call(
        "list_synonyms", "Failed to list synonyms", services.tag_store.list_synonyms()
    )
    return [SynonymResponse(original_tag=s.original_tag, better_tag=s.better_tag) for s in synonyms]


@router.post("/synonyms", response_model=SynonymResponse, status_code=status.HTTP_201_CREATED)
async def add_synonym(body: SynonymRequest, services: AppServices = Depends(get_services)):
    try:
        synonym = await run_store_call(
            "add_synonym",
            "Failed to save synonym",
            services.tag_store.add_synonym(body.original_tag, body.better_tag),
        )
    except SynonymCycleError as exc:
        raise HTTPException(status_code=409, detail=str(exc))
    logger.info("tags.synonym_added", original=synonym.original_tag, better=synonym.better_tag)
    return SynonymResponse(original_tag=synonym.original_tag, better_tag=synonym.better_tag)


@router.delete("/synonyms/{tag}", status_code=status.HTTP_204_NO_CONTENT)
async def remove_synonym(tag: str = Path(..., max_length=100), services: AppServices = Depends(get_services)):
    key = path_tag_key(tag)
    removed = await run_store_call(
        "remove_synonym", "Failed to remove synonym", services.tag_store.remove_synonym(key)
    )
    if not removed:
        raise HTTPException(status_code=404, detail=f"No synonym registered for #{key}")
    logger.info("tags.synonym_removed", original=key)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# ---------------------------------------------------------------------------
# Single tag lookups (declared last so they never shadow the routes above)
# ---------------------------------------------------------------------------


@router.get("/{tag}/messages", response_model=RelatedMessagesResponse)
async def messages_by_tag(
    tag: str = Path(..., max_length=100),
    exclude_session_id: str | None = Query(default=None, max_length=128),
    limit: int = Query(default=10, ge=1, le=100),
    services: AppServices = Depends(get_services),
):
    key = path_tag_key(tag)
    messages = await run_store_call(
        "find_messages_by_tags",
        "Failed to look up messages",
        services.message_store.find_messages_by_tags([key], exclude_session_id, limit),
    )
    return RelatedMessagesResponse(tag=f"#{key}", messages=[message_response(m) for m in messages])


@router.get("/{tag}", response_model=TagResponse)
async def get_tag(tag: str = Path(..., max_length=100), services: AppServices = Depends(get_services)):
    key = path_tag_key(tag)
    found = await run_store_call("get_tag", "Failed to load tag", services.tag_store.get_tag(key))
    if found is None:
        raise HTTPException(status_code=404, detail=f"#{key} has never been used")
    return TagResponse(name=found.name, usage_count=found.usage_count, first_used=found.first_used)
