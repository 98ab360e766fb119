"""Export conversations to Markdown and JSON formats."""

import json

from .core import Chat, Conversation


def conversation_to_markdown(conversation: Conversation, chats: list[Chat]) -> str:
    """Export a conversation and its chats as clean Markdown."""
    lines = [f"# {conversation.title}", ""]

    lines.append(f"**User:** {conversation.uuid}")
    lines.append(f"**Created:** {conversation.created_at.isoformat()}")
    lines.append(f"**Updated:** {conversation.updated_at.isoformat()}")
    if conversation.deleted:
        deleted = conversation.deleted_at.isoformat() if conversation.deleted_at else "yes"
        lines.append(f"**Deleted:** {deleted}")
    lines.append(f"**Messages:** {len(chats)}")
    lines.extend(["", "---", ""])

    for chat in chats:
        role_label = chat.role.value.capitalize()
        ts = f" ({chat.timestamp.strftime('%Y-%m-%d %H:%M')})"
        model = f" [{chat.model_id}]" if chat.model_id else ""
        lines.append(f"## {role_label}{ts}{model}")
        lines.append("")
        lines.append(chat.content)
        lines.extend(["", "---", ""])

    return "\n".join(lines)


def conversation_to_json(conversation: Conversation, chats: list[Chat]) -> str:
    """Export a conversation and its chats as structured JSON."""
    data = {
        "conversation": conversation.to_dict(),
        "chats": [chat.to_dict() for chat in chats],
    }
    return json.dumps(data, indent=2, ensure_ascii=False)
