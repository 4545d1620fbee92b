"""Configuration loading and per-run config building."""

from .conversation import (
    ConfigurationError,
    ConversationConfig,
    ConversationOverrides,
    ConversationProfile,
    HistoryMode,
    PersonaConfig,
    Topology,
    build_conversation_config,
)
from .settings import Settings, ModelConfig, TelegramConfig, MAILBOX_RESPONDER, load_settings

__all__ = [
    "ConfigurationError",
    "ConversationConfig",
    "ConversationOverrides",
    "ConversationProfile",
    "HistoryMode",
    "PersonaConfig",
    "Topology",
    "build_conversation_config",
    "Settings",
    "ModelConfig",
    "TelegramConfig",
    "MAILBOX_RESPONDER",
    "load_settings",
]
