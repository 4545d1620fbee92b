"""Agents taking part in a conversation run."""

from .driver import DriverAgent
from .responder import ResponderAgent
from .self_talk import SelfTalkAgent, SelfTalkTurn
from .reply_parser import parse_inline_reply, parse_inline_payload

__all__ = [
    "DriverAgent",
    "ResponderAgent",
    "SelfTalkAgent",
    "SelfTalkTurn",
    "parse_inline_reply",
    "parse_inline_payload",
]
