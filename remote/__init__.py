"""Remote control and notifications."""

from .commands import CommandType, RemoteCommand, parse_command
from .notifier import ConversationNotifier
from .adapter import RemoteControlAdapter, format_status

__all__ = [
    "CommandType",
    "RemoteCommand",
    "parse_command",
    "ConversationNotifier",
    "RemoteControlAdapter",
    "format_status",
]
