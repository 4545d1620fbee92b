"""Telegram Bot API channel."""

import asyncio
import logging
from typing import Any, Dict, List, Optional

import requests

from config.settings import TelegramConfig
from utils.markdown import strip_markdown
from .chat_channel import ChatChannel, ChannelMessage, ChannelResult, ChatId

logger = logging.getLogger(__name__)


class TelegramChannel(ChatChannel):
    """
    Telegram transport.

    Sends with MarkdownV2 and retries as plain text when Telegram rejects
    the formatting. Receives through short-polling ``getUpdates``; only
    messages from ``allowed_user_ids`` reach callbacks, everyone else gets
    an "unauthorized" reply.
    """

    platform = "telegram"

    API_BASE = "https://api.telegram.org"
    MAX_MESSAGE_LENGTH = 4096

    def __init__(self, config: TelegramConfig, timeout: int = 10):
        """
        Initialize Telegram channel.

        Args:
            config: Telegram settings (token, allowed users, default chat)
            timeout: Request timeout in seconds
        """
        super().__init__()
        self.config = config
        self.timeout = timeout
        self._last_update_id = 0
        self._poll_task: Optional[asyncio.Task] = None

    @property
    def is_enabled(self) -> bool:
        return self.config.enabled and bool(self.config.bot_token) and bool(self.config.allowed_user_ids)

    @property
    def is_listening(self) -> bool:
        return self._poll_task is not None and not self._poll_task.done()

    def _url(self, method: str) -> str:
        return f"{self.API_BASE}/bot{self.config.bot_token}/{method}"

    def _api_call(self, method: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        """
        POST a Bot API method.

        Returns:
            Parsed JSON body

        Raises:
            requests.exceptions.RequestException: Network failures
            ValueError: Body is not JSON
        """
        response = requests.post(self._url(method), json=payload, timeout=self.timeout)
        return response.json()

    def _call_with_result(self, method: str, payload: Dict[str, Any]) -> ChannelResult:
        try:
            data = self._api_call(method, payload)
        except requests.exceptions.Timeout:
            logger.warning(f"Telegram {method} timed out")
            return ChannelResult(ok=False, error="Request timed out")
        except requests.exceptions.ConnectionError as e:
            logger.warning(f"Telegram {method} connection error: {e}")
            return ChannelResult(ok=False, error=f"Network error: {e}")
        except requests.exceptions.RequestException as e:
            logger.warning(f"Telegram {method} request error: {e}")
            return ChannelResult(ok=False, error=f"Request error: {e}")
        except ValueError:
            return ChannelResult(ok=False, error="Failed to parse Telegram API response")

        if data.get("ok") is True:
            return ChannelResult(ok=True)
        error = data.get("description") or "Unknown Telegram API error"
        logger.warning(f"Telegram API error ({method}): {error}")
        return ChannelResult(ok=False, error=error)

    def _truncate(self, text: str) -> str:
        if len(text) <= self.MAX_MESSAGE_LENGTH:
            return text
        return text[:self.MAX_MESSAGE_LENGTH - 3] + "..."

    def send_message(
        self,
        text: str,
        chat_id: Optional[ChatId] = None,
        plain: bool = False
    ) -> ChannelResult:
        """Send a message, falling back to plain text if MarkdownV2 is rejected."""
        if not self.is_enabled:
            return ChannelResult(
                ok=False,
                error="Telegram channel is not enabled (check bot token and allowed_user_ids)"
            )

        target = chat_id if chat_id is not None else self.config.default_chat_id
        if target is None:
            return ChannelResult(ok=False, error="No target chat ID configured")

        payload = {
            "chat_id": target,
            "text": self._truncate(text),
            "disable_web_page_preview": True,
        }
        if plain:
            return self._call_with_result("sendMessage", payload)

        result = self._call_with_result("sendMessage", {**payload, "parse_mode": "MarkdownV2"})
        if not result.ok:
            logger.info(f"MarkdownV2 send failed ({result.error}), retrying as plain text")
            payload["text"] = self._truncate(strip_markdown(text))
            return self._call_with_result("sendMessage", payload)
        return result

    def get_updates(self) -> List[Dict[str, Any]]:
        """Short-poll for new updates after the last seen update id."""
        try:
            data = self._api_call("getUpdates", {
                "offset": self._last_update_id + 1,
                "timeout": 0,
                "allowed_updates": ["message"],
            })
        except (requests.exceptions.RequestException, ValueError) as e:
            logger.debug(f"Telegram getUpdates failed: {e}")
            return []
        if not data.get("ok"):
            return []
        return data.get("result") or []

    def fetch_messages(self) -> List[ChannelMessage]:
        """Fetch updates and convert allowed ones to ChannelMessages."""
        messages = []
        for update in self.get_updates():
            self._last_update_id = max(self._last_update_id, int(update.get("update_id", 0)))
            message = self._to_message(update)
            if message is not None:
                messages.append(message)
        return messages

    def _to_message(self, update: Dict[str, Any]) -> Optional[ChannelMessage]:
        msg = update.get("message") or {}
        sender = msg.get("from")
        text = msg.get("text")
        if not sender or not text:
            return None

        chat_id = msg.get("chat", {}).get("id")
        if sender.get("id") not in self.config.allowed_user_ids:
            logger.warning(
                f"Rejected Telegram message from unauthorized user: "
                f"{sender.get('id')} ({sender.get('username', 'unknown')})"
            )
            self.send_message(
                f"⛔ Unauthorized. Your user ID ({sender.get('id')}) is not whitelisted.",
                chat_id,
                plain=True,
            )
            return None

        return ChannelMessage(
            sender_id=sender["id"],
            sender_name=sender.get("username") or sender.get("first_name", ""),
            chat_id=chat_id,
            text=text.strip(),
            timestamp=int(msg.get("date", 0)),
        )

    async def start_listening(self):
        """Start the polling task on the running event loop."""
        if self.is_listening or not self.is_enabled:
            return
        logger.info(f"Telegram polling started (interval: {self.config.poll_interval_ms}ms)")
        self._poll_task = asyncio.create_task(self._poll_loop())

    async def stop_listening(self):
        if self._poll_task is None:
            return
        self._poll_task.cancel()
        try:
            await self._poll_task
        except asyncio.CancelledError:
            pass
        self._poll_task = None
        logger.info("Telegram polling stopped")

    async def _poll_loop(self):
        interval = self.config.poll_interval_ms / 1000
        while True:
            try:
                messages = await asyncio.to_thread(self.fetch_messages)
            except Exception as e:
                logger.error(f"Telegram poll error: {e}")
                messages = []
            # Callbacks run on the event loop, not the worker thread
            for message in messages:
                self._dispatch(message)
            await asyncio.sleep(interval)
