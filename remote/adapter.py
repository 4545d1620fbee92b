"""Remote control: inbound chat messages onto the engine's control surface."""

import asyncio
import logging
from typing import Callable, List, Optional, Set, TYPE_CHECKING

from channels.chat_channel import ChannelMessage, ChatChannel, ChatId
from schemas.conversation import ConversationStatus
from utils.markdown import escape_markdown_v2
from .commands import CommandType, RemoteCommand, parse_command

if TYPE_CHECKING:
    from orchestrator import ConversationEngine

logger = logging.getLogger(__name__)

CommandCallback = Callable[[RemoteCommand], None]


def format_status(status: ConversationStatus) -> str:
    """MarkdownV2 status summary."""
    if status.halted:
        state = "⏸ Halted"
    elif status.active:
        state = "▶️ Running"
    else:
        state = "⏹ Finished"
    goal = escape_markdown_v2((status.goal or "")[:100])
    return (
        f"*Status:* {state}\n"
        f"*Turns:* {status.turns_completed}/{status.max_turns}\n"
        f"*Goal:* {goal}"
    )


class RemoteControlAdapter:
    """
    Translates operator messages into engine control calls.

    Holds no conversation state. Attaching or detaching only registers or
    removes the channel listener; a run in progress is unaffected.
    Subscribers receive every parsed command before it is applied.
    """

    HELP_TEXT = "❓ Unknown command. Use /stop /halt /continue /status or /info <text>"

    def __init__(self, engine: "ConversationEngine", channel: Optional[ChatChannel] = None):
        self.engine = engine
        self.channel = channel
        self._subscribers: List[CommandCallback] = []
        self._pending: Set[asyncio.Task] = set()
        self._attached = False

    @property
    def is_attached(self) -> bool:
        return self._attached

    def subscribe(self, callback: CommandCallback) -> CommandCallback:
        self._subscribers.append(callback)
        return callback

    def unsubscribe(self, callback: CommandCallback):
        if callback in self._subscribers:
            self._subscribers.remove(callback)

    async def attach(self):
        """Start receiving messages from the channel."""
        if self._attached or self.channel is None:
            return
        self.channel.on_message(self._on_message)
        await self.channel.start_listening()
        self._attached = True
        logger.info(f"Remote control attached to {self.channel.platform}")

    async def detach(self):
        if not self._attached or self.channel is None:
            return
        self.channel.remove_callback(self._on_message)
        await self.channel.stop_listening()
        self._attached = False
        logger.info(f"Remote control detached from {self.channel.platform}")

    def _on_message(self, message: ChannelMessage):
        command = parse_command(message.text, message.sender_id, message.sender_name, message.chat_id)
        if command is not None:
            self.dispatch(command)

    def handle_text(self, text: str, sender_name: str = "") -> Optional[str]:
        """Parse and dispatch a message that did not come through the channel."""
        command = parse_command(text, sender_name=sender_name)
        if command is None:
            return None
        return self.dispatch(command)

    def dispatch(self, command: RemoteCommand) -> Optional[str]:
        """
        Apply a command and report the outcome over the channel.

        Returns:
            The reply sent back, or None when the engine's own
            halted/resumed notification is the reply
        """
        preview = f" - {command.text[:50]}" if command.text else ""
        logger.info(f"Remote command from {command.sender_name or 'unknown'}: {command.type.value}{preview}")

        for callback in list(self._subscribers):
            try:
                callback(command)
            except Exception:
                logger.exception("Remote command subscriber failed")

        reply, plain = self._apply(command)
        if reply is not None:
            self._reply(reply, command.chat_id, plain)
        return reply

    def _apply(self, command: RemoteCommand):
        who = f" by @{command.sender_name}" if command.sender_name else ""

        if command.type == CommandType.STOP:
            result = self.engine.stop(f"Stopped via remote command{who}")
            return ("✅ Conversation stopped." if result.success else "ℹ️ No active conversation."), True

        if command.type == CommandType.HALT:
            result = self.engine.halt(f"Halted via remote command{who}")
            if result.success:
                return None, True
            return "ℹ️ No active conversation to halt (or already halted).", True

        if command.type == CommandType.CONTINUE:
            result = self.engine.resume()
            if result.success:
                return None, True
            return "ℹ️ Conversation is not halted.", True

        if command.type == CommandType.INFO:
            result = self.engine.inject(command.text)
            if result.success:
                return f"📝 Added to next prompt ({len(command.text)} chars).", True
            return "ℹ️ No active conversation to add input to.", True

        if command.type == CommandType.STATUS:
            status = self.engine.status()
            if status.conversation_id is None:
                return "ℹ️ No active conversation.", True
            return format_status(status), False

        return self.HELP_TEXT, True

    def _reply(self, text: str, chat_id: Optional[ChatId], plain: bool):
        if self.channel is None:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            loop = None

        if loop is None:
            result = self.channel.send_message(text, chat_id, plain)
            if not result.ok:
                logger.warning(f"Remote reply failed: {result.error}")
            return

        task = loop.create_task(asyncio.to_thread(self.channel.send_message, text, chat_id, plain))
        self._pending.add(task)
        task.add_done_callback(self._reply_done)

    def _reply_done(self, task: asyncio.Task):
        self._pending.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.warning(f"Remote reply failed: {error}")
        elif not task.result().ok:
            logger.warning(f"Remote reply failed: {task.result().error}")
