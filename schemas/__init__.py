"""Pydantic schemas for conversation runs."""

from .conversation import (
    ConversationPhase,
    GenerationStats,
    StructuredReply,
    RawReply,
    Reply,
    Exchange,
    ControlResult,
    ConversationStatus,
    RunResult,
    ReviewAction,
    ReviewDecision,
)

__all__ = [
    "ConversationPhase",
    "GenerationStats",
    "StructuredReply",
    "RawReply",
    "Reply",
    "Exchange",
    "ControlResult",
    "ConversationStatus",
    "RunResult",
    "ReviewAction",
    "ReviewDecision",
]
