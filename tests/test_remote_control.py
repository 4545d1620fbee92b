"""Tests for the remote control adapter and notifier."""

import asyncio
from unittest.mock import Mock

import pytest

from channels.chat_channel import ChannelMessage, ChannelResult, ChatChannel
from config.settings import TelegramConfig
from remote.adapter import RemoteControlAdapter, format_status
from remote.commands import CommandType
from remote.notifier import ConversationNotifier
from schemas.conversation import ControlResult, ConversationPhase, ConversationStatus, GenerationStats


class RecordingChannel(ChatChannel):
    """In-memory channel that records sent messages."""

    platform = "test"

    def __init__(self, ok=True):
        super().__init__()
        self.sent = []
        self.ok = ok
        self.listening = False

    @property
    def is_enabled(self):
        return True

    @property
    def is_listening(self):
        return self.listening

    def send_message(self, text, chat_id=None, plain=False):
        self.sent.append((text, chat_id, plain))
        return ChannelResult(ok=self.ok, error=None if self.ok else "rejected")

    async def start_listening(self):
        self.listening = True

    async def stop_listening(self):
        self.listening = False


class TestRemoteControlAdapter:
    """Test command dispatch onto the engine."""

    def setup_method(self):
        self.engine = Mock()
        self.channel = RecordingChannel()
        self.adapter = RemoteControlAdapter(self.engine, self.channel)

    def test_stop(self):
        self.engine.stop.return_value = ControlResult(success=True, message="Conversation stopped")
        assert self.adapter.handle_text("/stop", sender_name="ana") == "✅ Conversation stopped."
        assert "@ana" in self.engine.stop.call_args.args[0]
        assert self.channel.sent[0][2] is True

        self.engine.stop.return_value = ControlResult(success=False, message="No active conversation")
        assert self.adapter.handle_text("stop") == "ℹ️ No active conversation."

    def test_halt_success_relies_on_engine_notification(self):
        self.engine.halt.return_value = ControlResult(success=True, message="Conversation halted", halted=True)

        assert self.adapter.handle_text("halt") is None
        assert self.channel.sent == []

    def test_halt_and_continue_failures(self):
        self.engine.halt.return_value = ControlResult(success=False, message="already")
        self.engine.resume.return_value = ControlResult(success=False, message="not halted")

        assert self.adapter.handle_text("pause") == "ℹ️ No active conversation to halt (or already halted)."
        assert self.adapter.handle_text("continue") == "ℹ️ Conversation is not halted."

    def test_info_injects_text(self):
        self.engine.inject.return_value = ControlResult(success=True, message="ok")

        reply = self.adapter.handle_text("info use structlog")

        self.engine.inject.assert_called_once_with("use structlog")
        assert reply == "📝 Added to next prompt (13 chars)."

    def test_status(self):
        self.engine.status.return_value = ConversationStatus(
            active=True, phase=ConversationPhase.RUNNING, conversation_id="bot_1",
            goal="add logging.", turns_completed=2, max_turns=5,
        )

        reply = self.adapter.handle_text("status")

        assert "▶️ Running" in reply
        assert "*Turns:* 2/5" in reply
        assert "add logging\\." in reply
        assert self.channel.sent[0][2] is False

    def test_status_without_run(self):
        self.engine.status.return_value = ConversationStatus()
        assert self.adapter.handle_text("status") == "ℹ️ No active conversation."

    def test_unknown(self):
        assert self.adapter.handle_text("help") == RemoteControlAdapter.HELP_TEXT

    def test_subscribers_see_every_command(self):
        seen = []
        self.engine.inject.return_value = ControlResult(success=True, message="ok")
        callback = self.adapter.subscribe(lambda command: seen.append(command.type))
        self.adapter.subscribe(Mock(side_effect=RuntimeError("broken subscriber")))

        self.adapter.handle_text("more context")
        self.adapter.unsubscribe(callback)
        self.adapter.handle_text("more context")

        assert seen == [CommandType.INFO]
        assert self.engine.inject.call_count == 2

    @pytest.mark.asyncio
    async def test_attach_routes_channel_messages(self):
        self.engine.stop.return_value = ControlResult(success=True, message="stopped")

        await self.adapter.attach()
        assert self.adapter.is_attached
        assert self.channel.is_listening
        self.channel._dispatch(ChannelMessage(sender_id=1, sender_name="ana", chat_id=5, text="stop"))
        await asyncio.sleep(0.05)
        await self.adapter.detach()

        self.engine.stop.assert_called_once()
        assert self.channel.is_listening is False
        self.channel._dispatch(ChannelMessage(sender_id=1, sender_name="ana", chat_id=5, text="stop"))
        self.engine.stop.assert_called_once()

    def test_format_status_halted(self):
        status = ConversationStatus(active=True, halted=True, turns_completed=1, max_turns=3, goal="g")
        assert format_status(status).startswith("*Status:* ⏸ Halted")


class TestConversationNotifier:
    """Test notification formatting and gating."""

    def setup_method(self):
        self.channel = RecordingChannel()
        self.config = TelegramConfig(enabled=True, bot_token="t", max_response_chars=10)
        self.notifier = ConversationNotifier(self.channel, self.config)

    @pytest.mark.asyncio
    async def test_start_message(self):
        await self.notifier.notify_start("bot_1", "add logging.", "default")

        text = self.channel.sent[0][0]
        assert "Bot Conversation Started" in text
        assert "add logging\\." in text

    @pytest.mark.asyncio
    async def test_turn_message_truncates_reply(self):
        stats = GenerationStats(prompt_tokens=10, completion_tokens=5, total_duration_ms=1500)

        await self.notifier.notify_turn(2, 5, "Do it", "a" * 50, stats)

        text = self.channel.sent[0][0]
        assert "Turn 2/5" in text
        assert "a" * 10 + "\\.\\.\\." in text
        assert "a" * 11 not in text
        assert "10\\+5 tokens" in text

    @pytest.mark.asyncio
    async def test_flags_gate_messages(self):
        self.config.notify_on_turn = False
        self.config.notify_on_end = False

        await self.notifier.notify_turn(1, 2, "x", "y")
        await self.notifier.notify_end("bot_1", 1, True)

        assert self.channel.sent == []

    @pytest.mark.asyncio
    async def test_end_message(self):
        await self.notifier.notify_end("bot_1", 3, True)
        assert "✅ Goal Reached" in self.channel.sent[0][0]

    @pytest.mark.asyncio
    async def test_rejected_message_carries_reason(self):
        await self.notifier.notify_rejected("Responder 'gpt' is not available.")

        text = self.channel.sent[0][0]
        assert "Not Started" in text
        assert "Responder 'gpt' is not available\\." in text

    @pytest.mark.asyncio
    async def test_failures_never_raise(self):
        channel = RecordingChannel(ok=False)
        notifier = ConversationNotifier(channel, self.config)

        assert await notifier.send("hello") is False

        broken = Mock()
        broken.send_message.side_effect = RuntimeError("boom")
        assert await ConversationNotifier(broken, self.config).send("hello") is False
