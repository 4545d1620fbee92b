"""Parsing of free-form operator messages into remote commands."""

from enum import Enum
from typing import Optional, Union

from pydantic import BaseModel


class CommandType(str, Enum):
    """Remote command kinds."""
    STOP = "stop"
    HALT = "halt"
    CONTINUE = "continue"
    STATUS = "status"
    INFO = "info"
    UNKNOWN = "unknown"


class RemoteCommand(BaseModel):
    """A parsed inbound command."""
    type: CommandType
    text: str = ""
    sender_id: Optional[Union[int, str]] = None
    sender_name: str = ""
    chat_id: Optional[Union[int, str]] = None


_KEYWORDS = {
    "stop": CommandType.STOP,
    "halt": CommandType.HALT,
    "pause": CommandType.HALT,
    "continue": CommandType.CONTINUE,
    "resume": CommandType.CONTINUE,
    "status": CommandType.STATUS,
}
_INFO_KEYWORDS = ("info", "add")

# Words reserved as commands; a message starting with anything else is free text
KNOWN_COMMAND_WORDS = frozenset(list(_KEYWORDS) + list(_INFO_KEYWORDS) + ["help"])


def parse_command(
    text: str,
    sender_id: Optional[Union[int, str]] = None,
    sender_name: str = "",
    chat_id: Optional[Union[int, str]] = None
) -> Optional[RemoteCommand]:
    """
    Parse an operator message.

    A leading ``/`` and a ``@botname`` suffix on the command word are
    optional. ``info <text>`` and ``add <text>`` inject text. A message whose
    first word is not a command word is injected as a whole. A command word
    that cannot be acted on (``help``, ``info`` without text, ``status now``)
    yields UNKNOWN.

    Returns:
        RemoteCommand, or None for an empty message
    """
    text = (text or "").strip()
    if not text:
        return None

    meta = {"sender_id": sender_id, "sender_name": sender_name, "chat_id": chat_id}
    stripped = text[1:] if text.startswith("/") else text
    first, _, rest = stripped.partition(" ")
    word = first.split("@", 1)[0].lower()
    rest = rest.strip()

    if word in ("stop", "halt", "continue"):
        return RemoteCommand(type=_KEYWORDS[word], **meta)
    if word in ("pause", "resume", "status") and not rest:
        return RemoteCommand(type=_KEYWORDS[word], **meta)
    if word in _INFO_KEYWORDS and rest:
        return RemoteCommand(type=CommandType.INFO, text=rest, **meta)

    if word not in KNOWN_COMMAND_WORDS:
        return RemoteCommand(type=CommandType.INFO, text=text, **meta)

    return RemoteCommand(type=CommandType.UNKNOWN, text=text, **meta)
