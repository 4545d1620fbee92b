"""Tests for the driver, responder and self-talk agents."""

import pytest

from agents.driver import DriverAgent
from agents.responder import NO_REPLY_PLACEHOLDER, ResponderAgent
from agents.self_talk import SelfTalkAgent
from config.conversation import ConversationConfig
from llm.backends import DriverBackend, ModelRegistry
from prompts.defaults import DRIVER_FOLLOW_UP_SYSTEM_PROMPT, DRIVER_INITIAL_SYSTEM_PROMPT, NO_HISTORY
from schemas.conversation import Exchange, RawReply, StructuredReply
from conftest import ScriptedClient, StubResponder


class TestDriverAgent:
    """Test prompt building and generation."""

    def setup_method(self):
        self.client = ScriptedClient(["Instruction one", "Instruction two"])
        self.config = ConversationConfig(max_turns=4, driver_model="driver")
        self.driver = DriverAgent(DriverBackend(ModelRegistry({"driver": self.client})), self.config)

    def test_initial_prompt(self):
        prompt = self.driver.build_initial_prompt(
            "add logging", "Flask app", "--- app.py ---\nprint()", additional_info="Use JSON logs"
        )

        assert "Goal: add logging" in prompt
        assert "Description: Flask app" in prompt
        assert "--- app.py ---" in prompt
        assert "Additional user input:\nUse JSON logs" in prompt

    def test_follow_up_prompt(self):
        last = Exchange(turn=1, instruction="Add a logger", reply=RawReply(text="Logger added"))

        prompt = self.driver.build_follow_up_prompt("add logging", "", 2, last, NO_HISTORY)

        assert "Turn 2 of 4." in prompt
        assert "Add a logger" in prompt
        assert "Logger added" in prompt
        assert "Conversation history:" not in prompt
        assert "__GOAL_REACHED__" in prompt

    def test_follow_up_prompt_with_history(self):
        last = Exchange(turn=2, instruction="b", reply=RawReply(text="c"))

        prompt = self.driver.build_follow_up_prompt("g", "", 3, last, "Full conversation history:\nturn one")

        assert "Conversation history:\nFull conversation history:\nturn one" in prompt

    @pytest.mark.asyncio
    async def test_system_prompt_depends_on_turn(self):
        await self.driver.generate("first", 1)
        await self.driver.generate("second", 2)

        assert self.client.calls[0][0].content == DRIVER_INITIAL_SYSTEM_PROMPT
        assert self.client.calls[1][0].content == DRIVER_FOLLOW_UP_SYSTEM_PROMPT

    def test_reached_goal(self):
        assert self.driver.reached_goal("ok __GOAL_REACHED__")
        assert not self.driver.reached_goal("keep going")


class TestResponderAgent:
    """Test the reply fallback chain."""

    def setup_method(self):
        self.config = ConversationConfig(
            max_turns=2,
            driver_model="driver",
            responder_model="stub",
            reply_grace_seconds=0.05,
            reply_timeout_seconds=0.1,
        )

    @pytest.mark.asyncio
    async def test_inline_structured_payload(self, mailbox):
        inline = '```json\n{"requestId": "c1", "generatedMarkdown": "Structured"}\n```'
        agent = ResponderAgent(StubResponder([inline]), mailbox, self.config)

        reply = await agent.exchange("Do it", "c1")

        assert isinstance(reply, StructuredReply)
        assert reply.text == "Structured"

    @pytest.mark.asyncio
    async def test_clears_stale_reply_before_dispatch(self, mailbox):
        mailbox.write(StructuredReply(correlation_id="c1", text="stale from a previous run"))
        agent = ResponderAgent(StubResponder(["fresh"]), mailbox, self.config)

        reply = await agent.exchange("Do it", "c1")

        assert reply.text == "fresh"

    @pytest.mark.asyncio
    async def test_placeholder_when_nothing_arrives(self, mailbox):
        agent = ResponderAgent(StubResponder([""]), mailbox, self.config)

        reply = await agent.exchange("Do it", "c1")

        assert reply.text == NO_REPLY_PLACEHOLDER
        assert reply.source == "placeholder"


class TestSelfTalkAgent:
    """Test persona prompts."""

    def setup_method(self):
        self.config = ConversationConfig(max_turns=3, driver_model="driver")
        self.agent = SelfTalkAgent(DriverBackend(ModelRegistry({"driver": ScriptedClient()})), self.config)

    def test_person_a_opening_and_follow_up(self):
        opening = self.agent.person_a_prompt("design a cache", "LRU", "", 1, additional_info="Keep it simple")
        follow_up = self.agent.person_a_prompt("design a cache", "", "", 2, last_reply="Use a dict")

        assert "Context: LRU" in opening
        assert "Keep it simple" in opening
        assert "Start the discussion" in opening
        assert "Person B said (turn 1)" in follow_up
        assert "Use a dict" in follow_up
        assert "__GOAL_REACHED__" in follow_up

    def test_person_b_gets_injected_text_on_first_turn_only(self):
        assert "extra" in self.agent.person_b_prompt("g", 1, "a says", "extra")
        assert "extra" not in self.agent.person_b_prompt("g", 2, "a says", "extra")

    @pytest.mark.asyncio
    async def test_personas_use_their_system_prompts(self):
        client = ScriptedClient(["A speaks", "B answers"])
        agent = SelfTalkAgent(DriverBackend(ModelRegistry({"driver": client})), self.config)

        turn = await agent.run_turn("bot_1", "g", "", "", 1)

        assert turn.instruction == "A speaks"
        assert turn.reply.text == "B answers"
        assert turn.reply.correlation_id == "bot_1_t1"
        assert client.calls[0][0].content == self.config.self_talk.person_a.system_prompt
        assert client.calls[1][0].content == self.config.self_talk.person_b.system_prompt
