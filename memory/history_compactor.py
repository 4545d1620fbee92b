"""History compaction for follow-up prompts."""

import logging
import math
from typing import Awaitable, Callable, List, Optional, Sequence

from config.conversation import HistoryMode
from prompts.defaults import NO_HISTORY, SUMMARY_TEMPLATE
from prompts.templates import resolve_template
from schemas.conversation import Exchange
from utils.cancellation import CancelledRun

logger = logging.getLogger(__name__)

Summarizer = Callable[[str], Awaitable[str]]


def estimate_tokens(text: str) -> int:
    """Rough token count: one token per four characters."""
    return math.ceil(len(text) / 4)


def format_exchanges(exchanges: Sequence[Exchange]) -> str:
    """Render exchanges as markdown, oldest first."""
    blocks = []
    for exchange in exchanges:
        references = getattr(exchange.reply, "references", None) or []
        refs = f"\nReferences: {', '.join(references)}" if references else ""
        blocks.append(
            f"### Turn {exchange.turn}\n**Prompt:**\n{exchange.instruction}\n\n"
            f"**Response:**\n{exchange.reply.text}{refs}"
        )
    return "\n\n---\n\n".join(blocks)


class HistoryCompactor:
    """Builds the bounded history section passed to the driver."""

    # Preview lengths for "last" mode
    LAST_PROMPT_CHARS = 500
    LAST_REPLY_CHARS = 1000
    # Exchanges kept verbatim after a trim_and_summary summary
    RECENT_EXCHANGES = 2

    def __init__(
        self,
        mode: HistoryMode,
        max_tokens: int,
        summarizer: Optional[Summarizer] = None,
        summary_template: str = SUMMARY_TEMPLATE,
    ):
        """
        Initialize compactor.

        Args:
            mode: History mode
            max_tokens: Token budget for the history section
            summarizer: Async callable turning a summary prompt into summary text
            summary_template: Template with ${maxTokens} and ${history}
        """
        self.mode = HistoryMode(mode)
        self.max_tokens = max_tokens
        self.summarizer = summarizer
        self.summary_template = summary_template

    async def compact(self, exchanges: Sequence[Exchange]) -> str:
        """
        Render exchanges into a history section.

        The input sequence is never modified.

        Args:
            exchanges: Prior exchanges, oldest first

        Returns:
            Text ready for the ${historySection} placeholder
        """
        exchanges = list(exchanges)
        if not exchanges:
            return NO_HISTORY

        if self.mode == HistoryMode.LAST:
            last = exchanges[-1]
            return (
                f"Previous exchange (turn {last.turn}):\n"
                f"Prompt: {last.instruction[:self.LAST_PROMPT_CHARS]}...\n"
                f"Response: {last.reply.text[:self.LAST_REPLY_CHARS]}..."
            )

        full_history = format_exchanges(exchanges)

        if self.mode == HistoryMode.FULL:
            return f"Full conversation history:\n{full_history}"

        if self.mode == HistoryMode.SUMMARY:
            summary = await self._summarize(full_history)
            if summary is None:
                return self._trimmed(full_history)
            return f"Conversation summary:\n{summary}"

        # trim_and_summary
        if estimate_tokens(full_history) <= self.max_tokens:
            return f"Full conversation history:\n{full_history}"

        recent_count = min(self.RECENT_EXCHANGES, len(exchanges))
        older = exchanges[:-recent_count]
        recent = exchanges[-recent_count:]
        recent_history = format_exchanges(recent)

        if not older:
            # Only recent exchanges and they alone exceed the budget
            return self._trimmed(full_history)

        summary = await self._summarize(format_exchanges(older))
        if summary is None:
            return self._trimmed(full_history)

        return (
            f"Conversation summary (turns 1-{len(older)}):\n{summary}\n\n"
            f"Recent exchanges:\n{recent_history}"
        )

    async def _summarize(self, history: str) -> Optional[str]:
        """Run the summarizer; None when it is missing or fails."""
        if self.summarizer is None:
            logger.warning("No summarizer available for history compaction")
            return None

        prompt = resolve_template(self.summary_template, {
            "maxTokens": str(self.max_tokens),
            "history": history,
        })
        try:
            summary = await self.summarizer(prompt)
        except CancelledRun:
            raise
        except Exception as e:
            logger.error(f"History summarization failed: {e}")
            return None

        return summary.strip() or None

    def _trimmed(self, full_history: str) -> str:
        """Tail slice of the raw history sized to the budget."""
        max_chars = self.max_tokens * 4
        if len(full_history) > max_chars:
            full_history = full_history[len(full_history) - max_chars:] + "\n...(earlier history trimmed)"
        return f"Full conversation history:\n{full_history}"


def history_for_follow_up(exchanges: List[Exchange]) -> List[Exchange]:
    """All exchanges except the most recent one, which the follow-up shows separately."""
    return exchanges[:-1]
