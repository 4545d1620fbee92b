"""Conversation history compaction and transcript persistence."""

from .history_compactor import HistoryCompactor, estimate_tokens, format_exchanges
from .transcript import TranscriptWriter

__all__ = [
    "HistoryCompactor",
    "estimate_tokens",
    "format_exchanges",
    "TranscriptWriter",
]
