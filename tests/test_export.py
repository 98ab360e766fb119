"""Tests for conversation export."""

import json
from datetime import datetime, timezone

import pytest

from chat_relay.core import Chat, Conversation, Role
from chat_relay.export import conversation_to_json, conversation_to_markdown


@pytest.fixture
def sample_conversation():
    return Conversation(
        id="1736935200000abcdefghi",
        uuid="m5xk2a9user",
        title="Fix authentication bug",
        created_at=datetime(2025, 1, 15, 10, 0, 0, tzinfo=timezone.utc),
        updated_at=datetime(2025, 1, 15, 11, 0, 0, tzinfo=timezone.utc),
    )


@pytest.fixture
def sample_chats():
    return [
        Chat(
            id="c1",
            uuid="m5xk2a9user",
            conversation_id="1736935200000abcdefghi",
            role=Role.USER,
            content="Fix the login bug in auth.ts",
            timestamp=datetime(2025, 1, 15, 10, 0, 0, tzinfo=timezone.utc),
        ),
        Chat(
            id="c2",
            uuid="m5xk2a9user",
            conversation_id="1736935200000abcdefghi",
            role=Role.ASSISTANT,
            content="Here's the change:\n\n```typescript\nconst token = await validateToken(input);\n```",
            timestamp=datetime(2025, 1, 15, 10, 0, 30, tzinfo=timezone.utc),
            model_id="gpt-4o",
        ),
    ]


class TestMarkdownExport:
    def test_includes_title_and_metadata(self, sample_conversation, sample_chats):
        result = conversation_to_markdown(sample_conversation, sample_chats)
        assert result.startswith("# Fix authentication bug")
        assert "**User:** m5xk2a9user" in result
        assert "**Messages:** 2" in result
        assert "**Deleted:**" not in result

    def test_includes_messages_with_roles(self, sample_conversation, sample_chats):
        result = conversation_to_markdown(sample_conversation, sample_chats)
        assert "## User (2025-01-15 10:00)" in result
        assert "## Assistant (2025-01-15 10:00) [gpt-4o]" in result
        assert "```typescript" in result

    def test_marks_soft_deleted(self, sample_conversation):
        sample_conversation.deleted = True
        sample_conversation.deleted_at = datetime(2025, 1, 16, tzinfo=timezone.utc)
        result = conversation_to_markdown(sample_conversation, [])
        assert "**Deleted:** 2025-01-16" in result
        assert "**Messages:** 0" in result


class TestJsonExport:
    def test_uses_storage_shape(self, sample_conversation, sample_chats):
        data = json.loads(conversation_to_json(sample_conversation, sample_chats))
        assert data["conversation"]["title"] == "Fix authentication bug"
        assert data["conversation"]["createdAt"] == "2025-01-15T10:00:00+00:00"
        assert [c["role"] for c in data["chats"]] == ["user", "assistant"]
        assert data["chats"][1]["modelId"] == "gpt-4o"

    def test_empty_chats(self, sample_conversation):
        data = json.loads(conversation_to_json(sample_conversation, []))
        assert data["chats"] == []
