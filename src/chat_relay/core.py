"""Core data models for chat-relay."""

import secrets
import string
import time
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional

DEFAULT_CONVERSATION_TITLE = "New Conversation"

_BASE36 = string.digits + string.ascii_lowercase


class Role(str, Enum):
    """Author of a chat message."""

    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


@dataclass
class User:
    """A person allowed to chat, created by an admin."""

    uuid: str
    notes: str
    created_at: datetime
    last_active_at: datetime
    message_count: int = 0
    token_usage: int = 0

    def to_dict(self) -> dict:
        return {
            "uuid": self.uuid,
            "notes": self.notes,
            "createdAt": self.created_at.isoformat(),
            "lastActiveAt": self.last_active_at.isoformat(),
            "messageCount": self.message_count,
            "tokenUsage": self.token_usage,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "User":
        created = _parse_instant(data["createdAt"])
        return cls(
            uuid=data["uuid"],
            notes=data.get("notes", ""),
            created_at=created,
            last_active_at=_parse_instant(data.get("lastActiveAt")) or created,
            message_count=int(data.get("messageCount", 0)),
            token_usage=int(data.get("tokenUsage", 0)),
        )


@dataclass
class Conversation:
    """A titled thread of chats owned by one user."""

    id: str
    uuid: str  # owning user
    title: str
    created_at: datetime
    updated_at: datetime
    deleted: bool = False
    deleted_at: Optional[datetime] = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "uuid": self.uuid,
            "title": self.title,
            "createdAt": self.created_at.isoformat(),
            "updatedAt": self.updated_at.isoformat(),
            "deleted": self.deleted,
            "deletedAt": self.deleted_at.isoformat() if self.deleted_at else None,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Conversation":
        created = _parse_instant(data["createdAt"])
        title = data.get("title")
        return cls(
            id=data["id"],
            uuid=data["uuid"],
            title=DEFAULT_CONVERSATION_TITLE if title is None else title,
            created_at=created,
            updated_at=_parse_instant(data.get("updatedAt")) or created,
            deleted=bool(data.get("deleted", False)),
            deleted_at=_parse_instant(data.get("deletedAt")),
        )


@dataclass
class Chat:
    """A single message within a conversation."""

    id: str
    uuid: str  # owning user
    conversation_id: Optional[str]  # None for records written before conversations existed
    role: Role
    content: str
    timestamp: datetime
    model_id: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "uuid": self.uuid,
            "conversationId": self.conversation_id,
            "role": self.role.value,
            "content": self.content,
            "modelId": self.model_id,
            "timestamp": self.timestamp.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Chat":
        return cls(
            id=data["id"],
            uuid=data["uuid"],
            conversation_id=data.get("conversationId"),
            role=Role(data["role"]),
            content=data.get("content", ""),
            timestamp=_parse_instant(data["timestamp"]),
            model_id=data.get("modelId"),
        )


def generate_id() -> str:
    """Return a conversation/chat id: decimal epoch millis plus 9 random base-36 chars."""
    return f"{int(time.time() * 1000)}{_random_base36(9)}"


def generate_user_id() -> str:
    """Return a user id: base-36 epoch millis plus 11 random base-36 chars."""
    return f"{_to_base36(int(time.time() * 1000))}{_random_base36(11)}"


def _random_base36(length: int) -> str:
    return "".join(secrets.choice(_BASE36) for _ in range(length))


def _to_base36(value: int) -> str:
    if value == 0:
        return "0"
    digits = []
    while value:
        value, rem = divmod(value, 36)
        digits.append(_BASE36[rem])
    return "".join(reversed(digits))


def _parse_instant(value: str | None) -> datetime | None:
    """Parse an ISO-8601 instant (``Z`` suffix accepted), or None."""
    if not value:
        return None
    return datetime.fromisoformat(value)
