"""Settings loading: config.json merged over defaults, with env overrides for paths."""

import copy
import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

logger = logging.getLogger(__name__)

DEFAULT_CONFIG = {
    "port": 3000,
    "host": "127.0.0.1",
    "admin": {"password": "change_this_password"},
    "data": {"directory": "data"},
    "logging": {"directory": "logs", "retentionDays": 30},
    "openai": {
        "apiKey": "",
        "apiUrl": "https://api.openai.com/v1/chat/completions",
        "model": "gpt-3.5-turbo",
        "maxTokens": 500,
        "temperature": 0.7,
        "historyLimit": 10,
    },
}


@dataclass
class CompletionSettings:
    """Connection details for the upstream chat-completion API."""

    api_key: str = ""
    api_url: str = "https://api.openai.com/v1/chat/completions"
    model: str = "gpt-3.5-turbo"
    max_tokens: int = 500
    temperature: float = 0.7
    history_limit: int = 10  # chats of context sent with each request


@dataclass
class Settings:
    data_dir: Path
    log_dir: Path
    port: int = 3000
    host: str = "127.0.0.1"
    admin_password: str = "change_this_password"
    retention_days: int = 30
    completion: CompletionSettings = field(default_factory=CompletionSettings)


def get_config_path() -> Path:
    """Return the path to config.json."""
    env = os.environ.get("CHAT_RELAY_CONFIG")
    if env:
        return Path(env)

    return Path.cwd() / "config.json"


def merge_config(user_config: dict, defaults: dict) -> dict:
    """Deep-merge *user_config* over *defaults*; nested dicts merge, everything else replaces."""
    merged = copy.deepcopy(defaults)
    for key, value in user_config.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = merge_config(value, merged[key])
        else:
            merged[key] = value
    return merged


def load_settings(path: Path | None = None) -> Settings:
    """Build Settings from *path* (or the default config path).

    A missing file yields defaults. When the merge fills in keys the user file
    lacked, the merged document is written back so the file stays complete.
    """
    config_path = Path(path) if path else get_config_path()

    if config_path.exists():
        user_config = json.loads(config_path.read_text(encoding="utf-8"))
        merged = merge_config(user_config, DEFAULT_CONFIG)
        if merged != user_config:
            config_path.write_text(json.dumps(merged, indent=2), encoding="utf-8")
            logger.info("Config file updated with missing default values: %s", config_path)
    else:
        logger.warning("Config file %s not found, using defaults", config_path)
        merged = copy.deepcopy(DEFAULT_CONFIG)

    return settings_from_dict(merged, base_dir=config_path.parent)


def settings_from_dict(config: dict, base_dir: Path) -> Settings:
    """Turn a fully merged config document into Settings."""
    openai = config["openai"]
    completion = CompletionSettings(
        api_key=os.environ.get("OPENAI_API_KEY") or openai["apiKey"],
        api_url=openai["apiUrl"],
        model=openai["model"],
        max_tokens=int(openai["maxTokens"]),
        temperature=float(openai["temperature"]),
        history_limit=int(openai["historyLimit"]),
    )

    return Settings(
        data_dir=_resolve_dir(os.environ.get("CHAT_RELAY_DATA_DIR") or config["data"]["directory"], base_dir),
        log_dir=_resolve_dir(os.environ.get("CHAT_RELAY_LOG_DIR") or config["logging"]["directory"], base_dir),
        port=int(config["port"]),
        host=config["host"],
        admin_password=config["admin"]["password"],
        retention_days=int(config["logging"]["retentionDays"]),
        completion=completion,
    )


def _resolve_dir(value: str, base_dir: Path) -> Path:
    path = Path(value).expanduser()
    if not path.is_absolute():
        path = base_dir / path
    return path
