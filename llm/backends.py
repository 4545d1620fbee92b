"""Driver and responder backends on top of the LLM clients."""

import asyncio
import logging
import os
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, List, Optional, TYPE_CHECKING

from pydantic import BaseModel

from schemas.conversation import GenerationStats
from config.settings import MAILBOX_RESPONDER
from utils.cancellation import CancellationToken, CancelledRun, run_cancellable
from utils.markdown import strip_thinking_tags
from .base_client import BaseLLMClient, Message, LLMResponse
from .factory import create_llm_client, LLMProvider

if TYPE_CHECKING:
    from config.settings import Settings, ModelConfig
    from channels.mailbox import ResponseMailbox

logger = logging.getLogger(__name__)

# Used for model responders whose ModelConfig sets no temperature
DEFAULT_RESPONDER_TEMPERATURE = 0.7


class BackendCallError(RuntimeError):
    """A driver or responder call failed."""

    def __init__(self, message: str, model_key: Optional[str] = None):
        super().__init__(message)
        self.model_key = model_key


class GenerationResult(BaseModel):
    """Text produced by a driver call plus its statistics."""
    text: str
    stats: GenerationStats = GenerationStats()


def stats_from_response(response: LLMResponse) -> GenerationStats:
    usage = response.usage or {}
    return GenerationStats(
        prompt_tokens=usage.get("prompt_tokens", 0),
        completion_tokens=usage.get("completion_tokens", 0),
        total_duration_ms=response.total_duration_ms,
        load_duration_ms=response.load_duration_ms,
    )


class ModelRegistry:
    """Named LLM clients, keyed the way settings name them."""

    def __init__(
        self,
        clients: Optional[Dict[str, BaseLLMClient]] = None,
        max_tokens: Optional[Dict[str, int]] = None,
        temperatures: Optional[Dict[str, float]] = None
    ):
        self._clients: Dict[str, BaseLLMClient] = dict(clients or {})
        self._max_tokens: Dict[str, int] = dict(max_tokens or {})
        self._temperatures: Dict[str, float] = dict(temperatures or {})

    @classmethod
    def from_settings(cls, settings: "Settings") -> "ModelRegistry":
        """Create one client per configured model."""
        registry = cls()
        for key, model_config in settings.models.items():
            registry.register(
                key,
                cls._create_client(settings, model_config),
                model_config.max_tokens,
                model_config.temperature,
            )
        return registry

    @staticmethod
    def _create_client(settings: "Settings", model_config: "ModelConfig") -> BaseLLMClient:
        provider = LLMProvider(model_config.provider)
        return create_llm_client(
            provider=provider,
            api_key=settings.get_api_key(provider.value),
            model=model_config.model,
            base_url=model_config.base_url,
            timeout=model_config.timeout,
            keep_alive=model_config.keep_alive,
        )

    def register(
        self,
        key: str,
        client: BaseLLMClient,
        max_tokens: int = 4000,
        temperature: Optional[float] = None
    ):
        self._clients[key] = client
        self._max_tokens[key] = max_tokens
        if temperature is not None:
            self._temperatures[key] = temperature

    def __contains__(self, key: object) -> bool:
        return key in self._clients

    def keys(self) -> List[str]:
        return sorted(self._clients)

    def get(self, key: str) -> BaseLLMClient:
        client = self._clients.get(key)
        if client is None:
            raise BackendCallError(f"No model registered under '{key}'", model_key=key)
        return client

    def max_tokens(self, key: str) -> int:
        return self._max_tokens.get(key, 4000)

    def temperature(self, key: str, default: float = DEFAULT_RESPONDER_TEMPERATURE) -> float:
        """Configured sampling temperature for a model, or ``default``."""
        return self._temperatures.get(key, default)


class DriverBackend:
    """
    Runs driver, persona and summarizer calls.

    Calls run in a worker thread. Cancellation stops the wait right away
    and the late result, if any, is dropped.
    """

    def __init__(self, registry: ModelRegistry):
        self.registry = registry
        # Rolling chat history per speaker, used when trim_history is False
        self._histories: Dict[str, List[Message]] = {}

    def reset_history(self, history_key: Optional[str] = None):
        if history_key is None:
            self._histories.clear()
        else:
            self._histories.pop(history_key, None)

    async def generate(
        self,
        system_prompt: str,
        user_prompt: str,
        model_key: str,
        temperature: float = 0.0,
        trim_history: bool = True,
        cancel_token: Optional[CancellationToken] = None,
        strip_thinking: bool = True,
        history_key: Optional[str] = None
    ) -> GenerationResult:
        """
        Generate text from a driver model.

        Args:
            system_prompt: System instruction
            user_prompt: User instruction
            model_key: Registry key
            temperature: Sampling temperature
            trim_history: Send only system + user instead of the rolling history
            cancel_token: Ends the wait early when it fires
            strip_thinking: Remove <think> blocks from the output
            history_key: Speaker whose rolling history is used; defaults to model_key

        Returns:
            GenerationResult

        Raises:
            CancelledRun: Cancellation requested before or during the call
            BackendCallError: The client failed
        """
        if cancel_token is not None:
            cancel_token.raise_if_cancelled()

        client = self.registry.get(model_key)
        history_key = history_key or model_key
        history = [] if trim_history else self._histories.get(history_key, [])
        messages = [Message(role="system", content=system_prompt), *history,
                    Message(role="user", content=user_prompt)]

        try:
            response = await run_cancellable(asyncio.to_thread(
                client.chat,
                messages,
                temperature,
                self.registry.max_tokens(model_key),
            ), cancel_token)
        except CancelledRun:
            raise
        except Exception as e:
            raise BackendCallError(f"Driver call to '{model_key}' failed: {e}", model_key=model_key) from e

        if cancel_token is not None:
            cancel_token.raise_if_cancelled()

        text = strip_thinking_tags(response.content) if strip_thinking else response.content.strip()

        if not trim_history:
            self._histories[history_key] = [
                *history,
                Message(role="user", content=user_prompt),
                Message(role="assistant", content=text),
            ]

        return GenerationResult(text=text, stats=stats_from_response(response))


class ResponderBackend(ABC):
    """Receives a full instruction and returns raw reply text."""

    @abstractmethod
    def is_available(self, model_key: Optional[str]) -> bool:
        pass

    @abstractmethod
    async def send(
        self,
        model_key: Optional[str],
        prompt: str,
        cancel_token: Optional[CancellationToken] = None
    ) -> str:
        """
        Dispatch an instruction.

        Returns:
            Inline reply text; empty when the reply arrives through the mailbox
        """
        pass


class DefaultResponderBackend(ResponderBackend):
    """
    Routes instructions to a registered model or to an external actor.

    With the ``mailbox`` key the instruction is published as
    ``<address>_prompt.md`` next to the mailbox and the call returns no
    inline text; the external actor answers by writing the answer file.
    """

    def __init__(self, registry: ModelRegistry, mailbox: Optional["ResponseMailbox"] = None):
        self.registry = registry
        self.mailbox = mailbox

    def prompt_path(self) -> Optional[Path]:
        if self.mailbox is None:
            return None
        return self.mailbox.folder / f"{self.mailbox.address}_prompt.md"

    def is_available(self, model_key: Optional[str]) -> bool:
        if model_key == MAILBOX_RESPONDER:
            return self.mailbox is not None
        return model_key is not None and model_key in self.registry

    async def send(
        self,
        model_key: Optional[str],
        prompt: str,
        cancel_token: Optional[CancellationToken] = None
    ) -> str:
        if cancel_token is not None:
            cancel_token.raise_if_cancelled()

        if model_key == MAILBOX_RESPONDER:
            path = self.prompt_path()
            if path is None:
                raise BackendCallError("Mailbox responder has no mailbox", model_key=model_key)
            try:
                await asyncio.to_thread(self._publish_prompt, path, prompt)
            except OSError as e:
                raise BackendCallError(f"Could not publish prompt to {path}: {e}", model_key=model_key) from e
            logger.info(f"Instruction published to {path}, waiting for the mailbox")
            return ""

        client = self.registry.get(model_key)
        try:
            response = await asyncio.to_thread(
                client.chat,
                [Message(role="user", content=prompt)],
                self.registry.temperature(model_key),
                self.registry.max_tokens(model_key),
            )
        except Exception as e:
            raise BackendCallError(f"Responder call to '{model_key}' failed: {e}", model_key=model_key) from e
        return response.content

    @staticmethod
    def _publish_prompt(path: Path, prompt: str):
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=".prompt-", suffix=".tmp")
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(prompt)
        os.replace(tmp_name, path)
