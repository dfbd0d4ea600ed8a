"""Records returned by the repositories.

Schema lives in alembic/versions; runtime access goes through asyncpg and
these rows are mapped into plain dataclasses.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from app.core.constants import MessageOrigin
from app.services.tag_normalizer import dedupe_tags


def _now() -> datetime:
    return datetime.now(UTC)


@dataclass
class Tag:
    name: str
    usage_count: int = 0
    first_used: datetime = field(default_factory=_now)


@dataclass
class BlockedTag:
    name: str
    reason: str = ""
    created_at: datetime = field(default_factory=_now)


@dataclass
class TagSynonym:
    original_tag: str
    better_tag: str


@dataclass
class Session:
    id: str
    created_at: datetime = field(default_factory=_now)
    last_activity: datetime = field(default_factory=_now)


@dataclass
class Message:
    id: str
    session_id: str
    origin: MessageOrigin
    content: str
    tags: list[str] = field(default_factory=list)
    created_at: datetime = field(default_factory=_now)

    def __post_init__(self) -> None:
        self.origin = MessageOrigin(self.origin)
        self.tags = dedupe_tags(self.tags)

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> Message:
        return cls(
            id=str(row["id"]),
            session_id=row["session_id"],
            origin=row["origin"],
            content=row["content"],
            tags=list(row["tags"] or []),
            created_at=row["created_at"],
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "session_id": self.session_id,
            "origin": self.origin.value,
            "content": self.content,
            "tags": list(self.tags),
            "created_at": self.created_at.isoformat(),
        }
