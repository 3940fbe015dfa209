"""Client-side value types for cached notifications."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any, Mapping


@dataclass(frozen=True)
class Notification:
    """Immutable client copy of a server notification record."""

    id: str
    user_id: str
    user_role: str
    type: str
    title: str
    message: str
    is_read: bool = False
    created_at: str | None = None
    related_entity_type: str | None = None
    related_entity_id: str | None = None
    metadata: Mapping[str, Any] | None = field(default=None, compare=False)

    def as_read(self) -> Notification:
        return self if self.is_read else replace(self, is_read=True)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Notification:
        return cls(
            id=str(data["id"]),
            user_id=str(data.get("user_id", "")),
            user_role=str(data.get("user_role", "")),
            type=str(data.get("type", "system")),
            title=data.get("title") or "",
            message=data.get("message") or "",
            is_read=bool(data.get("is_read", False)),
            created_at=data.get("created_at"),
            related_entity_type=data.get("related_entity_type"),
            related_entity_id=data.get("related_entity_id"),
            metadata=data.get("metadata"),
        )
