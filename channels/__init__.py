"""Reply mailbox and chat channels."""

from .mailbox import ResponseMailbox, mailbox_address, reply_from_payload, reply_to_payload
from .chat_channel import ChatChannel, ChannelMessage, ChannelResult
from .telegram_channel import TelegramChannel

__all__ = [
    "ResponseMailbox",
    "mailbox_address",
    "reply_from_payload",
    "reply_to_payload",
    "ChatChannel",
    "ChannelMessage",
    "ChannelResult",
    "TelegramChannel",
]
