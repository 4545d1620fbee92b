"""Shared fixtures: scripted model clients and responders."""

import re
from typing import Callable, List, Optional, Union

import pytest

from channels.mailbox import ResponseMailbox
from config.settings import ModelConfig, Settings
from llm.backends import ModelRegistry, ResponderBackend
from llm.base_client import BaseLLMClient, LLMResponse, Message
from memory.transcript import TranscriptWriter
from orchestrator import ConversationEngine

REQUEST_ID_PATTERN = re.compile(r'"requestId": "([^"]+)"')


class ScriptedClient(BaseLLMClient):
    """Returns queued responses in order, then ``default``."""

    def __init__(
        self,
        responses: Optional[List[Union[str, Exception]]] = None,
        default: str = "Next step, please.",
        on_call: Optional[Callable[[List[Message]], None]] = None
    ):
        self.responses = list(responses or [])
        self.default = default
        self.on_call = on_call
        self.calls: List[List[Message]] = []
        self.temperatures: List[float] = []

    def chat(self, messages, temperature=0.7, max_tokens=4000):
        self.calls.append(list(messages))
        self.temperatures.append(temperature)
        if self.on_call is not None:
            self.on_call(messages)
        text = self.responses.pop(0) if self.responses else self.default
        if isinstance(text, Exception):
            raise text
        return LLMResponse(
            content=text,
            usage={"prompt_tokens": 10, "completion_tokens": 5, "total_tokens": 15},
            total_duration_ms=100.0,
        )

    def get_provider_name(self) -> str:
        return "stub"

    def get_model_name(self) -> str:
        return "scripted"

    def user_prompt(self, index: int) -> str:
        return self.calls[index][-1].content


class StubResponder(ResponderBackend):
    """
    Responder that answers inline from a script.

    ``on_send`` runs inside ``send`` with the call index (1-based) and the
    dispatched text, so tests can act on the engine or the mailbox mid-turn.
    """

    def __init__(
        self,
        replies: Optional[List[str]] = None,
        default: str = "Done.",
        on_send: Optional[Callable[[int, str], None]] = None,
        key: str = "stub"
    ):
        self.replies = list(replies or [])
        self.default = default
        self.on_send = on_send
        self.key = key
        self.prompts: List[str] = []

    def is_available(self, model_key):
        return model_key == self.key

    async def send(self, model_key, prompt, cancel_token=None):
        self.prompts.append(prompt)
        if self.on_send is not None:
            self.on_send(len(self.prompts), prompt)
        return self.replies.pop(0) if self.replies else self.default


def request_id_of(prompt: str) -> str:
    match = REQUEST_ID_PATTERN.search(prompt)
    assert match, "dispatched prompt carries no request id"
    return match.group(1)


def make_settings(tmp_path, **conversation) -> Settings:
    values = {
        "max_turns": 3,
        "history_mode": "full",
        "reply_timeout_seconds": 2.0,
        "reply_grace_seconds": 0.05,
        "mailbox_poll_seconds": 0.05,
        "mailbox_settle_seconds": 0.01,
    }
    values.update(conversation)
    return Settings(
        workspace_root=str(tmp_path),
        models={"driver": ModelConfig(provider="ollama")},
        default_model="driver",
        responder="stub",
        conversation=values,
    )


def make_engine(tmp_path, client: BaseLLMClient, responder: ResponderBackend, settings=None, **kwargs):
    return ConversationEngine(
        settings=settings or make_settings(tmp_path),
        registry=ModelRegistry({"driver": client}),
        responder_backend=responder,
        mailbox=ResponseMailbox(tmp_path / "mail", address="test_addr"),
        transcript=TranscriptWriter(tmp_path / "logs", workspace_name="ws"),
        **kwargs,
    )


@pytest.fixture
def mailbox(tmp_path):
    return ResponseMailbox(tmp_path / "mail", address="test_addr", poll_interval=0.05, settle_delay=0.01)
