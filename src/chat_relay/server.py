"""FastAPI web server for chat-relay."""

import asyncio
import logging
from contextlib import asynccontextmanager, suppress
from pathlib import Path

from fastapi import Depends, FastAPI, Header, HTTPException, Query, Request
from fastapi.responses import HTMLResponse, Response
from pydantic import BaseModel, Field

from .completion import CompletionError, request_completion
from .config import Settings, load_settings
from .core import Conversation, Role
from .export import conversation_to_json, conversation_to_markdown
from .logging_config import setup_logging
from .logs import LogManager
from .store import DocumentStore

logger = logging.getLogger(__name__)

RETENTION_INTERVAL_SECONDS = 24 * 60 * 60


class ChatInput(BaseModel):
    message: str = ""
    conversation_id: str | None = Field(None, alias="conversationId")


class ConversationInput(BaseModel):
    title: str | None = None


class NotesInput(BaseModel):
    notes: str = ""


class LoginInput(BaseModel):
    password: str = ""


def create_app(settings: Settings | None = None) -> FastAPI:
    """Build the app around a freshly constructed store and log manager."""
    settings = settings or load_settings()
    log_manager = LogManager(settings.log_dir)
    setup_logging(log_manager)
    store = DocumentStore(settings.data_dir)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        log_manager.info("Server starting...", {"config": {"port": settings.port}})
        task = asyncio.create_task(
            _retention_loop(log_manager, settings.retention_days, RETENTION_INTERVAL_SECONDS)
        )
        app.state.retention_task = task
        try:
            yield
        finally:
            task.cancel()
            with suppress(asyncio.CancelledError):
                await task
            log_manager.wait_for_compression(timeout=5)

    app = FastAPI(title="chat-relay", version="0.1.0", lifespan=lifespan)
    app.state.settings = settings
    app.state.store = store
    app.state.log_manager = log_manager
    _register_routes(app)
    return app


async def _retention_loop(log_manager: LogManager, days_to_keep: int, interval: float) -> None:
    """Sweep expired log destinations every *interval* seconds until cancelled.

    A failed sweep is logged and the loop keeps going.
    """
    while True:
        await asyncio.sleep(interval)
        try:
            await asyncio.to_thread(log_manager.sweep_retention, days_to_keep)
        except Exception:
            logger.exception("Log retention sweep failed")


# ── Dependencies ─────────────────────────────────────────────────


def get_store(request: Request) -> DocumentStore:
    return request.app.state.store


def get_log_manager(request: Request) -> LogManager:
    return request.app.state.log_manager


def client_ip(request: Request) -> str:
    """Best-effort client address, honouring proxy headers."""
    forwarded = request.headers.get("ali-real-client-ip") or request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else ""


def require_admin(
    request: Request,
    authorization: str | None = Header(None),
) -> None:
    """Reject requests without ``Authorization: Bearer <admin password>``."""
    if not authorization or not authorization.startswith("Bearer "):
        raise HTTPException(status_code=401, detail="Unauthorized")

    token = authorization[len("Bearer "):]
    if token != request.app.state.settings.admin_password:
        get_log_manager(request).warn("Failed admin login attempt", {"ip": client_ip(request)})
        raise HTTPException(status_code=401, detail="Invalid credentials")


def _require_user(request: Request, uuid: str, event: str):
    user = get_store(request).get_user(uuid)
    if not user:
        get_log_manager(request).warn(event, {"uuid": uuid, "ip": client_ip(request)})
        raise HTTPException(status_code=403, detail="Access denied")
    return user


def _owned_conversation(request: Request, uuid: str, conversation_id: str) -> Conversation:
    conversation = get_store(request).get_conversation(conversation_id)
    if not conversation or conversation.uuid != uuid or conversation.deleted:
        raise HTTPException(status_code=404, detail="Conversation not found")
    return conversation


def _to_dicts(records) -> list[dict]:
    return [r.to_dict() for r in records]


# ── Routes ───────────────────────────────────────────────────────


def _register_routes(app: FastAPI) -> None:

    @app.get("/user/{uuid}")
    async def watch_page(uuid: str, request: Request):
        """Serve the chat page to known users only."""
        _require_user(request, uuid, "Unauthorized access attempt")
        get_log_manager(request).info("User accessed watch UI", {"uuid": uuid, "ip": client_ip(request)})
        html_path = Path(__file__).parent / "static" / "watch.html"
        if not html_path.exists():
            raise HTTPException(status_code=404, detail="Frontend not found")
        return HTMLResponse(html_path.read_text(encoding="utf-8"))

    # User API: conversations

    @app.get("/api/conversations/{uuid}")
    async def list_conversations(uuid: str, request: Request):
        _require_user(request, uuid, "Unauthorized conversation access")
        conversations = get_store(request).get_user_conversations(uuid)
        return {"success": True, "conversations": _to_dicts(conversations)}

    @app.post("/api/conversations/{uuid}")
    async def create_conversation(uuid: str, body: ConversationInput, request: Request):
        _require_user(request, uuid, "Unauthorized conversation access")
        conversation = get_store(request).create_conversation(uuid, body.title)
        return {"success": True, "conversation": conversation.to_dict()}

    @app.put("/api/conversations/{uuid}/{conversation_id}")
    async def rename_conversation(uuid: str, conversation_id: str, body: ConversationInput, request: Request):
        _require_user(request, uuid, "Unauthorized conversation access")
        _owned_conversation(request, uuid, conversation_id)
        if not body.title or not body.title.strip():
            raise HTTPException(status_code=400, detail="Title is required")
        store = get_store(request)
        store.update_conversation(conversation_id, title=body.title.strip())
        return {"success": True, "conversation": store.get_conversation(conversation_id).to_dict()}

    @app.delete("/api/conversations/{uuid}/{conversation_id}")
    async def delete_conversation(uuid: str, conversation_id: str, request: Request):
        _require_user(request, uuid, "Unauthorized conversation access")
        _owned_conversation(request, uuid, conversation_id)
        get_store(request).soft_delete_conversation(conversation_id)
        get_log_manager(request).info(
            "User deleted conversation",
            {"uuid": uuid, "conversationId": conversation_id, "ip": client_ip(request)},
        )
        return {"success": True}

    # User API: chats

    @app.get("/api/chat/{uuid}")
    async def get_chat_history(
        uuid: str,
        request: Request,
        conversation_id: str | None = Query(None, alias="conversationId"),
        limit: int = Query(50, ge=1, le=1000),
    ):
        """Return the most recent chats, oldest first."""
        _require_user(request, uuid, "Unauthorized chat access")
        store = get_store(request)
        if conversation_id:
            _owned_conversation(request, uuid, conversation_id)
            chats = store.get_conversation_chats(conversation_id)
        else:
            chats = store.get_user_chats(uuid)
        return {"success": True, "chats": _to_dicts(chats[-limit:])}

    @app.post("/api/chat/{uuid}")
    async def send_message(uuid: str, body: ChatInput, request: Request):
        """Store the user's message, relay the conversation upstream and store the reply."""
        if not body.message or not body.message.strip():
            raise HTTPException(status_code=400, detail="Message is required")

        _require_user(request, uuid, "Unauthorized chat access")
        store = get_store(request)
        log_manager = get_log_manager(request)
        settings: Settings = request.app.state.settings

        if body.conversation_id:
            conversation = _owned_conversation(request, uuid, body.conversation_id)
        else:
            conversation = store.create_conversation(uuid, body.message.strip()[:40])

        store.add_chat(uuid, conversation.id, Role.USER, body.message)
        store.touch_user_activity(uuid)

        history = store.get_conversation_chats(conversation.id)[-settings.completion.history_limit:]
        try:
            completion = await request_completion(settings.completion, history)
        except CompletionError as e:
            log_manager.error("AI API Error", {"uuid": uuid, "ip": client_ip(request), "error": str(e)})
            raise HTTPException(status_code=500, detail=str(e))

        store.add_chat(uuid, conversation.id, Role.ASSISTANT, completion.reply, model_id=completion.model)
        store.add_token_usage(uuid, completion.total_tokens)

        log_manager.info(
            "Chat message processed",
            {"uuid": uuid, "ip": client_ip(request), "tokens": completion.total_tokens},
        )
        return {"success": True, "reply": completion.reply, "conversationId": conversation.id}

    @app.delete("/api/chat/{uuid}/clear")
    async def clear_chat_history(uuid: str, request: Request):
        _require_user(request, uuid, "Unauthorized chat access")
        get_store(request).clear_user_chats(uuid)
        get_log_manager(request).info("User cleared chat history", {"uuid": uuid, "ip": client_ip(request)})
        return {"success": True}

    # Admin API

    @app.post("/admin/api/login")
    async def admin_login(body: LoginInput, request: Request):
        log_manager = get_log_manager(request)
        if body.password == request.app.state.settings.admin_password:
            log_manager.info("Admin logged in", {"ip": client_ip(request)})
            return {"success": True, "token": body.password}
        log_manager.warn("Failed admin login", {"ip": client_ip(request)})
        raise HTTPException(status_code=401, detail="Invalid password")

    @app.get("/admin/api/users", dependencies=[Depends(require_admin)])
    async def admin_list_users(request: Request):
        return {"success": True, "users": _to_dicts(get_store(request).list_users())}

    @app.post("/admin/api/user/create", dependencies=[Depends(require_admin)])
    async def admin_create_user(body: NotesInput, request: Request):
        user = get_store(request).create_user(body.notes)
        get_log_manager(request).info("Admin created user", {"uuid": user.uuid, "ip": client_ip(request)})
        return {"success": True, "user": user.to_dict()}

    @app.delete("/admin/api/user/{uuid}", dependencies=[Depends(require_admin)])
    async def admin_delete_user(uuid: str, request: Request):
        get_store(request).delete_user(uuid)
        get_log_manager(request).info("Admin deleted user", {"uuid": uuid, "ip": client_ip(request)})
        return {"success": True}

    @app.put("/admin/api/user/{uuid}/notes", dependencies=[Depends(require_admin)])
    async def admin_update_notes(uuid: str, body: NotesInput, request: Request):
        get_store(request).update_user_notes(uuid, body.notes)
        get_log_manager(request).info("Admin updated user notes", {"uuid": uuid, "ip": client_ip(request)})
        return {"success": True}

    @app.get("/admin/api/user/{uuid}/chats", dependencies=[Depends(require_admin)])
    async def admin_user_chats(uuid: str, request: Request):
        return {"success": True, "chats": _to_dicts(get_store(request).get_user_chats(uuid))}

    @app.get("/admin/api/user/{uuid}/conversations", dependencies=[Depends(require_admin)])
    async def admin_user_conversations(
        uuid: str,
        request: Request,
        include_deleted: bool = Query(True, alias="includeDeleted"),
    ):
        conversations = get_store(request).get_user_conversations(uuid, include_deleted=include_deleted)
        return {"success": True, "conversations": _to_dicts(conversations)}

    @app.post("/admin/api/conversation/{conversation_id}/restore", dependencies=[Depends(require_admin)])
    async def admin_restore_conversation(conversation_id: str, request: Request):
        store = get_store(request)
        if not store.get_conversation(conversation_id):
            raise HTTPException(status_code=404, detail="Conversation not found")
        store.restore_conversation(conversation_id)
        get_log_manager(request).info(
            "Admin restored conversation",
            {"conversationId": conversation_id, "ip": client_ip(request)},
        )
        return {"success": True}

    @app.get("/admin/api/conversation/{conversation_id}/export", dependencies=[Depends(require_admin)])
    async def admin_export_conversation(
        conversation_id: str,
        request: Request,
        format: str = Query("md", description="Export format: md or json"),
    ):
        """Export a conversation as Markdown or JSON."""
        store = get_store(request)
        conversation = store.get_conversation(conversation_id)
        if not conversation:
            raise HTTPException(status_code=404, detail="Conversation not found")
        chats = store.get_conversation_chats(conversation_id)

        safe_title = "".join(c if c.isalnum() or c in "-_ " else "" for c in conversation.title)[:50]

        if format == "json":
            return Response(
                content=conversation_to_json(conversation, chats),
                media_type="application/json",
                headers={"Content-Disposition": f'attachment; filename="{safe_title}.json"'},
            )
        return Response(
            content=conversation_to_markdown(conversation, chats),
            media_type="text/markdown",
            headers={"Content-Disposition": f'attachment; filename="{safe_title}.md"'},
        )

    @app.delete("/admin/api/chat/{chat_id}", dependencies=[Depends(require_admin)])
    async def admin_delete_chat(chat_id: str, request: Request):
        get_store(request).delete_chat(chat_id)
        get_log_manager(request).info("Admin deleted chat", {"chatId": chat_id, "ip": client_ip(request)})
        return {"success": True}

    @app.get("/admin/api/stats", dependencies=[Depends(require_admin)])
    async def admin_stats(request: Request):
        return {"success": True, "stats": get_store(request).get_stats()}

    @app.get("/admin/api/logs", dependencies=[Depends(require_admin)])
    async def admin_logs(request: Request, limit: int = Query(100, ge=1, le=10000)):
        return {"success": True, "logs": get_log_manager(request).tail(limit)}

    @app.get("/admin/api/logs/files", dependencies=[Depends(require_admin)])
    async def admin_log_files(request: Request):
        return {"success": True, "files": get_log_manager(request).list_destinations()}
