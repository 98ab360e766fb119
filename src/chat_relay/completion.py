"""Client for an OpenAI-compatible chat-completion endpoint."""

import logging
from dataclasses import dataclass

import httpx

from .config import CompletionSettings
from .core import Chat

logger = logging.getLogger(__name__)


class CompletionError(Exception):
    """The upstream API rejected the request or could not be reached."""


@dataclass
class Completion:
    reply: str
    total_tokens: int
    model: str


async def request_completion(
    settings: CompletionSettings,
    history: list[Chat],
    client: httpx.AsyncClient | None = None,
) -> Completion:
    """Send *history* (oldest first) and return the assistant's reply."""
    if not settings.api_key:
        raise CompletionError("API key not configured")

    payload = {
        "model": settings.model,
        "messages": [{"role": chat.role.value, "content": chat.content} for chat in history],
        "max_tokens": settings.max_tokens,
        "temperature": settings.temperature,
    }
    headers = {"Authorization": f"Bearer {settings.api_key}"}

    owns_client = client is None
    if owns_client:
        client = httpx.AsyncClient(timeout=60.0)
    try:
        resp = await client.post(settings.api_url, json=payload, headers=headers)
        resp.raise_for_status()
        data = resp.json()
    except httpx.HTTPStatusError as e:
        raise CompletionError(_error_message(e.response)) from e
    except httpx.HTTPError as e:
        raise CompletionError(str(e) or "AI service error") from e
    finally:
        if owns_client:
            await client.aclose()

    try:
        reply = data["choices"][0]["message"]["content"]
    except (KeyError, IndexError, TypeError) as e:
        raise CompletionError("Malformed completion response") from e

    usage = data.get("usage") or {}
    return Completion(
        reply=reply,
        total_tokens=int(usage.get("total_tokens") or 0),
        model=data.get("model") or settings.model,
    )


def _error_message(response: httpx.Response) -> str:
    """Pull ``error.message`` out of a provider error body when there is one."""
    try:
        body = response.json()
    except ValueError:
        return f"AI service error ({response.status_code})"
    error = body.get("error") if isinstance(body, dict) else None
    if isinstance(error, dict) and error.get("message"):
        return error["message"]
    return f"AI service error ({response.status_code})"
