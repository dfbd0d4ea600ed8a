"""Pydantic request/response schemas for HTTP routes and WebSocket events.

Route files import from here and never define BaseModel subclasses inline.
Tag fields are normalized here, at the edge, before reaching services.
"""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field, field_validator

from app.services.stopwords import should_exclude
from app.services.tag_normalizer import Hashtag


def canonical_tag(value: Any, *, allow_excluded: bool = False) -> str:
    tag = Hashtag.parse(value)
    if tag is None:
        raise ValueError("tag must contain at least one character besides '#'")
    if not allow_excluded and should_exclude(tag.name):
        raise ValueError(f"{tag} is too short, numeric or a common word")
    return tag.key


# ---------------------------------------------------------------------------
# WebSocket events
# ---------------------------------------------------------------------------


class InboundEvent(BaseModel):
    event: str = Field(..., min_length=1, max_length=64)
    data: dict[str, Any] = Field(default_factory=dict)


class SendMessagePayload(BaseModel):
    text: str = Field(..., min_length=1, max_length=10000)

    @field_validator("text")
    @classmethod
    def validate_text(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("text must not be whitespace-only")
        return v


# ---------------------------------------------------------------------------
# Tags
# ---------------------------------------------------------------------------


class TagResponse(BaseModel):
    name: str
    usage_count: int
    first_used: datetime


class BlockTagRequest(BaseModel):
    tag: str = Field(..., min_length=1, max_length=100)
    reason: str = Field(default="", max_length=500)

    @field_validator("tag")
    @classmethod
    def validate_tag(cls, v: str) -> str:
        # Blocking a stopword is pointless but harmless; accept anything parseable
        return canonical_tag(v, allow_excluded=True)


class BlockedTagResponse(BaseModel):
    name: str
    reason: str
    created_at: datetime


class SynonymRequest(BaseModel):
    original_tag: str = Field(..., min_length=1, max_length=100)
    better_tag: str = Field(..., min_length=1, max_length=100)

    @field_validator("original_tag")
    @classmethod
    def validate_original(cls, v: str) -> str:
        return canonical_tag(v, allow_excluded=True)

    @field_validator("better_tag")
    @classmethod
    def validate_better(cls, v: str) -> str:
        return canonical_tag(v)


class SynonymResponse(BaseModel):
    original_tag: str
    better_tag: str


class ExtractTagsRequest(BaseModel):
    text: str = Field(..., min_length=1, max_length=50000)
    max_tags: int = Field(default=5, ge=1, le=20)


class ExtractTagsResponse(BaseModel):
    hashtags: list[str]
    content: str
    source: str


# ---------------------------------------------------------------------------
# Messages / sessions
# ---------------------------------------------------------------------------


class MessageResponse(BaseModel):
    id: str
    session_id: str
    origin: str
    content: str
    tags: list[str]
    created_at: datetime


class MessageTagRequest(BaseModel):
    tag: str = Field(..., min_length=1, max_length=100)

    @field_validator("tag")
    @classmethod
    def validate_tag(cls, v: str) -> str:
        return canonical_tag(v)


class RelatedMessagesResponse(BaseModel):
    tag: str
    messages: list[MessageResponse]


# ---------------------------------------------------------------------------
# Models / config
# ---------------------------------------------------------------------------


class ModelInfo(BaseModel):
    name: str
    size: int | None = None
    modified_at: str | None = None


class ModelsResponse(BaseModel):
    models: list[ModelInfo]
    configured_model: str
    configured_model_available: bool


class GenerationConfigResponse(BaseModel):
    model: str
    temperature: float
    max_tokens: int
    system_prompt: str | None = None
    context_messages: int


class GenerationConfigUpdate(BaseModel):
    model: str | None = Field(default=None, min_length=1, max_length=200)
    temperature: float | None = None
    max_tokens: int | None = Field(default=None, ge=1, le=100000)
    system_prompt: str | None = Field(default=None, max_length=10000)
    context_messages: int | None = Field(default=None, ge=0, le=50)
