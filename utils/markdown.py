"""Text helpers for model output and chat messages."""

import re

_THINK_RE = re.compile(r"<think>[\s\S]*?</think>", re.IGNORECASE)
_MARKDOWN_V2_SPECIAL = re.compile(r"([_*\[\]()~`>#+\-=|{}.!\\])")


def strip_thinking_tags(text: str) -> str:
    """Remove <think>...</think> blocks emitted by reasoning models."""
    return _THINK_RE.sub("", text).strip()


def escape_markdown_v2(text: str) -> str:
    """Escape characters reserved by Telegram MarkdownV2."""
    return _MARKDOWN_V2_SPECIAL.sub(r"\\\1", text)


def truncate(text: str, limit: int, suffix: str = "...") -> str:
    if len(text) <= limit:
        return text
    return text[:limit] + suffix


_STRIP_RULES = [
    (re.compile(r"^#{1,6}\s+", re.MULTILINE), r""),
    (re.compile(r"\*\*(.+?)\*\*"), r"\1"),
    (re.compile(r"\*(.+?)\*"), r"\1"),
    (re.compile(r"_(.+?)_"), r"\1"),
    (re.compile(r"`{1,3}([^`]+)`{1,3}"), r"\1"),
    (re.compile(r"~~(.+?)~~"), r"\1"),
    (re.compile(r"\[([^\]]+)\]\([^)]+\)"), r"\1"),
    (re.compile(r"\\([_*\[\]()~`>#+\-=|{}.!\\])"), r"\1"),
]


def strip_markdown(text: str) -> str:
    """Plain-text rendering used when a formatted send is rejected."""
    for pattern, replacement in _STRIP_RULES:
        text = pattern.sub(replacement, text)
    return text
