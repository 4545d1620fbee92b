"""Conversation records: exchanges, replies and run results."""

from datetime import datetime
from enum import Enum
from typing import Annotated, Optional, List, Dict, Literal, Union

from pydantic import BaseModel, Field


class ConversationPhase(str, Enum):
    """Engine state machine phases."""
    IDLE = "idle"
    RUNNING = "running"
    HALTED = "halted"
    GOAL_REACHED = "goal_reached"
    TURN_LIMIT_REACHED = "turn_limit_reached"
    CANCELLED = "cancelled"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (
            ConversationPhase.GOAL_REACHED,
            ConversationPhase.TURN_LIMIT_REACHED,
            ConversationPhase.CANCELLED,
            ConversationPhase.FAILED,
        )


class GenerationStats(BaseModel):
    """Token counts and timings for one or more backend calls."""
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_duration_ms: float = 0.0
    load_duration_ms: float = 0.0

    def __add__(self, other: "GenerationStats") -> "GenerationStats":
        return GenerationStats(
            prompt_tokens=self.prompt_tokens + other.prompt_tokens,
            completion_tokens=self.completion_tokens + other.completion_tokens,
            total_duration_ms=self.total_duration_ms + other.total_duration_ms,
            load_duration_ms=self.load_duration_ms + other.load_duration_ms,
        )

    def describe(self) -> str:
        parts = [f"{self.prompt_tokens} prompt / {self.completion_tokens} completion tokens"]
        if self.total_duration_ms:
            parts.append(f"{self.total_duration_ms / 1000:.1f}s")
        if self.load_duration_ms:
            parts.append(f"load {self.load_duration_ms / 1000:.1f}s")
        return ", ".join(parts)


class StructuredReply(BaseModel):
    """Reply delivered with a correlation id and side data."""
    kind: Literal["structured"] = "structured"
    correlation_id: str
    text: str
    comments: Optional[str] = None
    references: List[str] = Field(default_factory=list)
    attachments: List[str] = Field(default_factory=list)
    values: Dict[str, str] = Field(default_factory=dict)


class RawReply(BaseModel):
    """Unstructured reply text (inline fallback or synthetic placeholder)."""
    kind: Literal["raw"] = "raw"
    correlation_id: Optional[str] = None
    text: str
    source: Literal["inline", "placeholder"] = "inline"


Reply = Annotated[Union[StructuredReply, RawReply], Field(discriminator="kind")]


class Exchange(BaseModel):
    """One recorded turn. Never mutated after it is appended."""
    turn: int = Field(ge=1)
    timestamp: datetime = Field(default_factory=datetime.now)
    instruction: str
    reply: Reply
    stats: Optional[GenerationStats] = None

    model_config = {"frozen": True}


class ControlResult(BaseModel):
    """Outcome of a control operation (halt, resume, inject, stop, cancel)."""
    success: bool
    message: str
    halted: bool = False


class ConversationStatus(BaseModel):
    """Read-only snapshot of the engine."""
    active: bool = False
    halted: bool = False
    phase: ConversationPhase = ConversationPhase.IDLE
    conversation_id: Optional[str] = None
    goal: Optional[str] = None
    profile_key: Optional[str] = None
    topology: Optional[str] = None
    turns_completed: int = 0
    max_turns: int = 0
    pending_fragments: int = 0


class RunResult(BaseModel):
    """Result returned by ConversationEngine.start."""
    conversation_id: str
    outcome: ConversationPhase
    turns: int
    goal_reached: bool
    exchanges: List[Exchange] = Field(default_factory=list)
    log_file_path: Optional[str] = None
    error: Optional[str] = None


class ReviewAction(str, Enum):
    """Operator decision on a generated instruction before dispatch."""
    SEND = "send"
    EDIT = "edit"
    STOP = "stop"


class ReviewDecision(BaseModel):
    action: ReviewAction = ReviewAction.SEND
    text: Optional[str] = None  # replacement instruction for EDIT
