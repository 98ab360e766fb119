"""Flat-file document store for users, conversations and chats.

Each collection is a pretty-printed JSON array in its own file under the data
directory. Every mutation loads the whole collection, changes it in memory and
writes it back.

Within one process all read-modify-write cycles are serialized by a single
re-entrant lock, and each write lands in a temporary sibling that replaces the
target atomically. Overlapping requests therefore cannot clobber each other's
updates. Several processes sharing one data directory are NOT coordinated.
"""

import json
import logging
import os
import tempfile
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Iterator

from .core import (
    DEFAULT_CONVERSATION_TITLE,
    Chat,
    Conversation,
    Role,
    User,
    generate_id,
    generate_user_id,
)

logger = logging.getLogger(__name__)

USERS = "users"
CONVERSATIONS = "conversations"
CHATS = "chats"

_MODELS = {USERS: User, CONVERSATIONS: Conversation, CHATS: Chat}


class StoreCorruptedError(Exception):
    """A collection file decoded, but not into an array of valid records."""


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class DocumentStore:
    """Durable CRUD over the three collections."""

    def __init__(self, data_dir: Path, clock: Callable[[], datetime] | None = None):
        self.data_dir = Path(data_dir)
        self.clock = clock or _utcnow
        self._lock = threading.RLock()
        self._init_collections()

    def _init_collections(self) -> None:
        self.data_dir.mkdir(parents=True, exist_ok=True)
        for name in _MODELS:
            path = self._path(name)
            if not path.exists():
                self._write(name, [])
                logger.info("Initialized empty collection %s", path)

    # ── Users ────────────────────────────────────────────────────────

    def list_users(self) -> list[User]:
        return self._load(USERS)

    def get_user(self, uuid: str) -> User | None:
        return next((u for u in self._load(USERS) if u.uuid == uuid), None)

    def create_user(self, notes: str = "") -> User:
        now = self.clock()
        user = User(
            uuid=generate_user_id(),
            notes=notes,
            created_at=now,
            last_active_at=now,
        )
        with self._mutate(USERS) as users:
            users.append(user)
        logger.info("User created", extra={"meta": {"uuid": user.uuid, "notes": notes}})
        return user

    def update_user_notes(self, uuid: str, notes: str) -> None:
        with self._mutate(USERS) as users:
            user = _find(users, "uuid", uuid)
            if user is None:
                return
            user.notes = notes
        logger.info("User notes updated", extra={"meta": {"uuid": uuid, "notes": notes}})

    def delete_user(self, uuid: str) -> None:
        """Remove the user and all of their chats.

        Their conversations are kept and become orphans; admin tooling still
        lists them by owner id.
        """
        with self._lock:
            with self._mutate(USERS) as users:
                remaining = [u for u in users if u.uuid != uuid]
                if len(remaining) == len(users):
                    return
                users[:] = remaining
            with self._mutate(CHATS) as chats:
                chats[:] = [c for c in chats if c.uuid != uuid]
        logger.info("User deleted", extra={"meta": {"uuid": uuid}})

    def touch_user_activity(self, uuid: str) -> None:
        """Record one inbound user message: bump the counter and last-active time."""
        with self._mutate(USERS) as users:
            user = _find(users, "uuid", uuid)
            if user is None:
                return
            user.last_active_at = max(user.last_active_at, self.clock())
            user.message_count += 1

    def add_token_usage(self, uuid: str, tokens: int) -> None:
        if tokens < 0:
            raise ValueError(f"Token usage cannot decrease (got {tokens})")
        with self._mutate(USERS) as users:
            user = _find(users, "uuid", uuid)
            if user is None:
                return
            user.token_usage += tokens

    # ── Conversations ────────────────────────────────────────────────

    def create_conversation(self, uuid: str, title: str | None = None) -> Conversation:
        # The owner is not checked here; callers validate the user first.
        now = self.clock()
        conversation = Conversation(
            id=generate_id(),
            uuid=uuid,
            title=title or DEFAULT_CONVERSATION_TITLE,
            created_at=now,
            updated_at=now,
        )
        with self._mutate(CONVERSATIONS) as conversations:
            conversations.append(conversation)
        return conversation

    def get_conversation(self, conversation_id: str) -> Conversation | None:
        return next((c for c in self._load(CONVERSATIONS) if c.id == conversation_id), None)

    def get_user_conversations(self, uuid: str, include_deleted: bool = False) -> list[Conversation]:
        """Return a user's conversations, most recently updated first."""
        conversations = [
            c for c in self._load(CONVERSATIONS)
            if c.uuid == uuid and (include_deleted or not c.deleted)
        ]
        conversations.sort(key=lambda c: c.updated_at, reverse=True)
        return conversations

    def update_conversation(self, conversation_id: str, **fields) -> None:
        """Merge *fields* into a conversation and refresh ``updated_at``.

        Unknown fields and attempts to change the id raise ValueError; a
        missing conversation is ignored.
        """
        if "id" in fields:
            raise ValueError("Conversation id cannot be changed")
        unknown = set(fields) - set(Conversation.__dataclass_fields__)
        if unknown:
            raise ValueError(f"Unknown conversation fields: {', '.join(sorted(unknown))}")

        with self._mutate(CONVERSATIONS) as conversations:
            conversation = _find(conversations, "id", conversation_id)
            if conversation is None:
                return
            for key, value in fields.items():
                setattr(conversation, key, value)
            conversation.updated_at = self.clock()

    def soft_delete_conversation(self, conversation_id: str) -> None:
        self.update_conversation(conversation_id, deleted=True, deleted_at=self.clock())

    def restore_conversation(self, conversation_id: str) -> None:
        self.update_conversation(conversation_id, deleted=False, deleted_at=None)

    # ── Chats ────────────────────────────────────────────────────────

    def add_chat(
        self,
        uuid: str,
        conversation_id: str | None,
        role: Role | str,
        content: str,
        model_id: str | None = None,
    ) -> Chat:
        chat = Chat(
            id=generate_id(),
            uuid=uuid,
            conversation_id=conversation_id,
            role=Role(role),
            content=content,
            timestamp=self.clock(),
            model_id=model_id,
        )
        with self._lock:
            with self._mutate(CHATS) as chats:
                chats.append(chat)
            if conversation_id:
                self.update_conversation(conversation_id)
        return chat

    def get_user_chats(self, uuid: str) -> list[Chat]:
        return _by_timestamp(c for c in self._load(CHATS) if c.uuid == uuid)

    def get_conversation_chats(self, conversation_id: str) -> list[Chat]:
        # Soft-deleted conversations keep their history readable here.
        return _by_timestamp(c for c in self._load(CHATS) if c.conversation_id == conversation_id)

    def delete_chat(self, chat_id: str) -> None:
        with self._mutate(CHATS) as chats:
            chats[:] = [c for c in chats if c.id != chat_id]

    def clear_user_chats(self, uuid: str) -> int:
        """Remove every chat of a user; returns how many were removed."""
        with self._mutate(CHATS) as chats:
            before = len(chats)
            chats[:] = [c for c in chats if c.uuid != uuid]
            removed = before - len(chats)
        logger.info("User chat history cleared", extra={"meta": {"uuid": uuid, "removed": removed}})
        return removed

    # ── Stats ────────────────────────────────────────────────────────

    def get_stats(self, now: datetime | None = None) -> dict:
        now = now or self.clock()
        today = now.astimezone(timezone.utc).date()
        users = self._load(USERS)
        return {
            "totalUsers": len(users),
            "totalConversations": len(self._load(CONVERSATIONS)),
            "totalMessages": len(self._load(CHATS)),
            "totalTokens": sum(u.token_usage for u in users),
            "activeUsersToday": sum(
                1 for u in users if u.last_active_at.astimezone(timezone.utc).date() == today
            ),
        }

    # ── Persistence ──────────────────────────────────────────────────

    def _path(self, name: str) -> Path:
        return self.data_dir / f"{name}.json"

    def _load(self, name: str) -> list:
        """Decode a whole collection. Corrupt files propagate as errors."""
        path = self._path(name)
        data = json.loads(path.read_text(encoding="utf-8"))
        if not isinstance(data, list):
            raise StoreCorruptedError(f"{path} does not hold a JSON array")

        model = _MODELS[name]
        try:
            return [model.from_dict(item) for item in data]
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            raise StoreCorruptedError(f"{path} holds an invalid record: {e}") from e

    def _write(self, name: str, records: list) -> None:
        path = self._path(name)
        payload = json.dumps([r.to_dict() for r in records], indent=2, ensure_ascii=False)
        fd, tmp_name = tempfile.mkstemp(prefix=f".{name}-", suffix=".tmp", dir=self.data_dir)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                fh.write(payload)
            os.replace(tmp_name, path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

    @contextmanager
    def _mutate(self, name: str) -> Iterator[list]:
        """Load *name*, yield the records for in-place changes, then write them back.

        Nothing is written if the block raises.
        """
        with self._lock:
            records = self._load(name)
            yield records
            self._write(name, records)


def _find(records: list, attr: str, value: str):
    return next((r for r in records if getattr(r, attr) == value), None)


def _by_timestamp(chats) -> list[Chat]:
    return sorted(chats, key=lambda c: c.timestamp)
