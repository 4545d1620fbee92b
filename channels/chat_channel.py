"""Platform-agnostic chat channel interface."""

import logging
from abc import ABC, abstractmethod
from typing import Callable, List, Optional, Union

from pydantic import BaseModel

logger = logging.getLogger(__name__)

ChatId = Union[int, str]


class ChannelResult(BaseModel):
    """Result of a channel API call."""
    ok: bool
    error: Optional[str] = None


class ChannelMessage(BaseModel):
    """Inbound message from an allowed sender."""
    sender_id: ChatId
    sender_name: str
    chat_id: ChatId
    text: str
    timestamp: int = 0


MessageCallback = Callable[[ChannelMessage], None]


class ChatChannel(ABC):
    """Abstract messaging transport (send text, receive text)."""

    platform: str = "unknown"

    def __init__(self):
        self._callbacks: List[MessageCallback] = []

    @property
    @abstractmethod
    def is_enabled(self) -> bool:
        """Whether the channel is configured and enabled."""
        pass

    @property
    @abstractmethod
    def is_listening(self) -> bool:
        pass

    @abstractmethod
    def send_message(
        self,
        text: str,
        chat_id: Optional[ChatId] = None,
        plain: bool = False
    ) -> ChannelResult:
        """
        Send a text message.

        Args:
            text: Message content (may contain markdown unless plain)
            chat_id: Target chat; the channel default when omitted
            plain: Send without platform formatting

        Returns:
            ChannelResult
        """
        pass

    @abstractmethod
    async def start_listening(self):
        """Begin delivering inbound messages to callbacks."""
        pass

    @abstractmethod
    async def stop_listening(self):
        pass

    def on_message(self, callback: MessageCallback):
        """Register a callback; every callback receives every message."""
        self._callbacks.append(callback)

    def remove_callback(self, callback: MessageCallback):
        if callback in self._callbacks:
            self._callbacks.remove(callback)

    def _dispatch(self, message: ChannelMessage):
        for callback in list(self._callbacks):
            try:
                callback(message)
            except Exception:
                logger.exception(f"{self.platform} message callback failed")
