"""Application settings."""

import os
import logging
from pathlib import Path
from typing import Optional, Dict, List, Any, Union

import yaml
from pydantic import BaseModel, Field

from .conversation import ConversationProfile

logger = logging.getLogger(__name__)

# Responder key that means "an external actor answers through the mailbox"
MAILBOX_RESPONDER = "mailbox"


class ModelConfig(BaseModel):
    """A named text-generation backend."""
    provider: str = "ollama"  # "ollama", "openai" or "anthropic"
    model: Optional[str] = None  # None -> provider default
    base_url: Optional[str] = None  # Ollama endpoint
    temperature: Optional[float] = None  # used when this model is the responder
    max_tokens: int = 4000
    timeout: int = 300
    keep_alive: Optional[str] = None


class TelegramConfig(BaseModel):
    """Telegram notifications and remote control."""
    enabled: bool = False
    bot_token_env: str = "TELEGRAM_BOT_TOKEN"
    bot_token: Optional[str] = None
    allowed_user_ids: List[int] = Field(default_factory=list)
    default_chat_id: Optional[int] = None
    notify_on_turn: bool = True
    notify_on_start: bool = True
    notify_on_end: bool = True
    include_response_text: bool = True
    max_response_chars: int = 500
    poll_interval_ms: int = 2000

    def __init__(self, **data):
        # Auto-load bot token from the configured environment variable
        if not data.get("bot_token"):
            env_name = data.get("bot_token_env") or "TELEGRAM_BOT_TOKEN"
            data["bot_token"] = os.environ.get(env_name)

        super().__init__(**data)

    @property
    def is_configured(self) -> bool:
        return self.enabled and bool(self.bot_token)


class Settings(BaseModel):
    """Application configuration settings."""

    # Paths (relative paths resolve against workspace_root)
    workspace_root: str = "."
    log_folder: str = "_ai/trail/conversation"
    answer_folder: str = "_ai/trail/conversation"

    # Mailbox address parts; default to a per-process session and the host name
    session_id: Optional[str] = None
    machine_id: Optional[str] = None

    # Backends
    models: Dict[str, ModelConfig] = Field(default_factory=dict)
    default_model: Optional[str] = None
    responder: str = MAILBOX_RESPONDER

    # API Keys
    openai_api_key: Optional[str] = None
    anthropic_api_key: Optional[str] = None

    # Conversation defaults and named profiles
    conversation: Dict[str, Any] = Field(default_factory=dict)
    profiles: Dict[str, ConversationProfile] = Field(default_factory=dict)

    telegram: TelegramConfig = Field(default_factory=TelegramConfig)

    def __init__(self, **data):
        # Auto-load API keys from environment if not provided
        if "openai_api_key" not in data or data["openai_api_key"] is None:
            data["openai_api_key"] = os.environ.get("OPENAI_API_KEY")

        if "anthropic_api_key" not in data or data["anthropic_api_key"] is None:
            data["anthropic_api_key"] = os.environ.get("ANTHROPIC_API_KEY")

        super().__init__(**data)

    def get_api_key(self, provider: str) -> Optional[str]:
        """Get the API key for an LLM provider."""
        if provider == "openai":
            return self.openai_api_key
        elif provider == "anthropic":
            return self.anthropic_api_key
        return None

    def resolve_path(self, path: str) -> Path:
        candidate = Path(path).expanduser()
        if candidate.is_absolute():
            return candidate
        return Path(self.workspace_root).expanduser() / candidate

    @property
    def workspace_name(self) -> str:
        return Path(self.workspace_root).expanduser().resolve().name or "workspace"


def load_settings(path: Optional[Union[str, Path]] = None, **overrides) -> Settings:
    """
    Load settings from a YAML file.

    Args:
        path: YAML file; a missing file yields defaults
        **overrides: Top-level values that win over the file

    Returns:
        Validated Settings
    """
    data: Dict[str, Any] = {}
    if path is not None:
        config_path = Path(path)
        if config_path.exists():
            with open(config_path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
            logger.info(f"Loaded settings from {config_path}")
        else:
            logger.warning(f"Settings file not found: {config_path}, using defaults")

    data.update({k: v for k, v in overrides.items() if v is not None})
    return Settings(**data)
