"""Outbound conversation notifications over a chat channel."""

import asyncio
import logging
from typing import Optional

from channels.chat_channel import ChatChannel, ChatId
from config.settings import TelegramConfig
from schemas.conversation import GenerationStats
from utils.markdown import escape_markdown_v2, truncate

logger = logging.getLogger(__name__)


class ConversationNotifier:
    """
    Formats run events as MarkdownV2 messages.

    Sending happens in a worker thread. Failures are logged and never
    propagate to the conversation.
    """

    PROMPT_PREVIEW_CHARS = 200

    def __init__(self, channel: ChatChannel, config: TelegramConfig):
        """
        Initialize notifier.

        Args:
            channel: Outbound channel
            config: Notification flags and limits
        """
        self.channel = channel
        self.config = config

    @property
    def is_enabled(self) -> bool:
        return self.channel.is_enabled

    async def send(self, text: str, chat_id: Optional[ChatId] = None, plain: bool = False) -> bool:
        try:
            result = await asyncio.to_thread(self.channel.send_message, text, chat_id, plain)
        except Exception as e:
            logger.warning(f"Notification failed: {e}")
            return False
        if not result.ok:
            logger.warning(f"Notification rejected: {result.error}")
        return result.ok

    async def notify_start(self, conversation_id: str, goal: str, profile: str):
        if not self.config.notify_on_start:
            return
        esc = escape_markdown_v2
        await self.send(
            f"🤖 *Bot Conversation Started*\n\n"
            f"*ID:* `{conversation_id}`\n"
            f"*Profile:* {esc(profile)}\n"
            f"*Goal:* {esc(goal)}\n\n"
            f"Commands: stop halt continue status\n"
            f"Send info: info <your message\\>"
        )

    async def notify_turn(
        self,
        turn: int,
        max_turns: int,
        instruction: str,
        reply: str,
        stats: Optional[GenerationStats] = None
    ):
        if not self.config.notify_on_turn:
            return
        esc = escape_markdown_v2
        message = f"📝 *Turn {turn}/{max_turns}*\n\n"
        message += f"*Prompt:* {esc(truncate(instruction, self.PROMPT_PREVIEW_CHARS))}\n\n"
        if self.config.include_response_text:
            message += f"*Response:* {esc(truncate(reply, self.config.max_response_chars))}\n"
        if stats is not None:
            message += "\n_" + esc(
                f"{stats.prompt_tokens}+{stats.completion_tokens} tokens, "
                f"{stats.total_duration_ms / 1000:.1f}s"
            ) + "_"
        await self.send(message)

    async def notify_end(
        self,
        conversation_id: str,
        turns: int,
        goal_reached: bool,
        reason: Optional[str] = None
    ):
        if not self.config.notify_on_end:
            return
        if goal_reached:
            status = "✅ Goal Reached"
        elif reason:
            status = f"⏹ {escape_markdown_v2(reason)}"
        else:
            status = "⏹ Ended"
        await self.send(
            f"🏁 *Bot Conversation Ended*\n\n"
            f"*ID:* `{conversation_id}`\n"
            f"*Turns:* {turns}\n"
            f"*Status:* {status}"
        )

    async def notify_rejected(self, reason: str):
        """A run was refused before its first turn."""
        if not self.config.notify_on_end:
            return
        await self.send(
            f"🚫 *Bot Conversation Not Started*\n\n"
            f"*Reason:* {escape_markdown_v2(reason)}"
        )

    async def notify_halted(self, turn: int):
        await self.send(
            f"⏸ *Conversation halted* after turn {turn}\\.\n"
            f"Send continue to resume or info <text\\> to add context\\."
        )

    async def notify_continued(self, has_input: bool = False):
        message = "▶️ *Conversation resumed*"
        if has_input:
            message += "\nAdditional info will be included in next prompt\\."
        await self.send(message)
