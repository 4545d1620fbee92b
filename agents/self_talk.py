"""Self-talk: two driver personas alternating on the same goal."""

import logging
from typing import Optional

from pydantic import BaseModel

from config.conversation import ConversationConfig, PersonaConfig
from llm.backends import DriverBackend, GenerationResult
from prompts.defaults import OTHER_PERSONA_PLACEHOLDER
from schemas.conversation import GenerationStats, RawReply
from utils.cancellation import CancellationToken

logger = logging.getLogger(__name__)


class SelfTalkTurn(BaseModel):
    """What one self-talk turn produced."""
    instruction: str
    reply: RawReply
    stats: GenerationStats
    goal_reached: bool = False
    finished_by: Optional[str] = None  # "A" or "B"


class SelfTalkAgent:
    """
    Persona A speaks first each turn, persona B answers.

    A's output is recorded as the instruction and B's as the reply, with
    both personas' statistics summed. Whichever persona emits the goal
    marker ends the run; if A does, B is not called and the reply is a
    placeholder.
    """

    def __init__(self, backend: DriverBackend, config: ConversationConfig):
        self.backend = backend
        self.config = config

    @property
    def person_a(self) -> PersonaConfig:
        return self.config.self_talk.person_a

    @property
    def person_b(self) -> PersonaConfig:
        return self.config.self_talk.person_b

    def person_a_prompt(
        self,
        goal: str,
        description: str,
        file_context: str,
        turn: int,
        last_reply: str = "",
        additional_info: str = ""
    ) -> str:
        if turn == 1:
            prompt = f"Goal: {goal}\n"
            if description:
                prompt += f"Context: {description}\n"
            if file_context:
                prompt += f"\nFiles:\n{file_context}\n"
            if additional_info:
                prompt += f"\nAdditional input from the user:\n{additional_info}\n"
            prompt += "\nStart the discussion. Present your initial analysis or approach."
            return prompt

        prompt = f"Goal: {goal}\n\nPerson B said (turn {turn - 1}):\n---\n{last_reply}\n---\n\n"
        if additional_info:
            prompt += f"Additional input from the user:\n{additional_info}\n\n"
        prompt += (
            f"Turn {turn} of {self.config.max_turns}. Respond to Person B's points and advance the discussion.\n"
            f"If the goal is fully achieved, include: {self.config.goal_reached_marker}"
        )
        return prompt

    def person_b_prompt(self, goal: str, turn: int, person_a_text: str, additional_info: str = "") -> str:
        prompt = f"Goal: {goal}\n\nPerson A said (turn {turn}):\n---\n{person_a_text}\n---\n\n"
        # Injected input reaches B only on the opening turn; afterwards it flows through A
        if additional_info and turn == 1:
            prompt += f"Additional input from the user:\n{additional_info}\n\n"
        prompt += (
            f"Turn {turn} of {self.config.max_turns}. Provide your perspective, challenge assumptions, "
            f"or build on Person A's ideas.\n"
            f"If the goal is fully achieved, include: {self.config.goal_reached_marker}"
        )
        return prompt

    async def _speak(
        self,
        speaker: str,
        persona: PersonaConfig,
        prompt: str,
        cancel_token: Optional[CancellationToken]
    ) -> GenerationResult:
        model_key = self.config.persona_model(persona)
        return await self.backend.generate(
            system_prompt=persona.system_prompt or "",
            user_prompt=prompt,
            model_key=model_key,
            temperature=self.config.persona_temperature(persona),
            trim_history=self.config.trim_driver_history,
            cancel_token=cancel_token,
            strip_thinking=self.config.strip_thinking_tags,
            history_key=f"{speaker}:{model_key}",
        )

    async def run_turn(
        self,
        conversation_id: str,
        goal: str,
        description: str,
        file_context: str,
        turn: int,
        last_reply: str = "",
        additional_info: str = "",
        cancel_token: Optional[CancellationToken] = None
    ) -> SelfTalkTurn:
        """
        Run persona A then persona B for one turn.

        Args:
            conversation_id: Used to tag the reply
            goal: Conversation goal
            description: Optional description
            file_context: Rendered context files, empty when none are configured
            turn: Current turn number
            last_reply: B's output from the previous turn
            additional_info: Drained operator input
            cancel_token: Cancellation token

        Returns:
            SelfTalkTurn
        """
        correlation_id = f"{conversation_id}_t{turn}"
        marker = self.config.goal_reached_marker

        a_result = await self._speak(
            "person_a",
            self.person_a,
            self.person_a_prompt(goal, description, file_context, turn, last_reply, additional_info),
            cancel_token,
        )
        if marker in a_result.text:
            logger.info(f"Self-talk goal reached by Person A at turn {turn}")
            return SelfTalkTurn(
                instruction=a_result.text,
                reply=RawReply(correlation_id=correlation_id, text=OTHER_PERSONA_PLACEHOLDER, source="placeholder"),
                stats=a_result.stats,
                goal_reached=True,
                finished_by="A",
            )

        b_result = await self._speak(
            "person_b",
            self.person_b,
            self.person_b_prompt(goal, turn, a_result.text, additional_info),
            cancel_token,
        )
        logger.info(
            f"Self-talk turn {turn} complete | A: {a_result.stats.prompt_tokens}+{a_result.stats.completion_tokens}t"
            f" | B: {b_result.stats.prompt_tokens}+{b_result.stats.completion_tokens}t"
        )
        goal_reached = marker in b_result.text
        return SelfTalkTurn(
            instruction=a_result.text,
            reply=RawReply(correlation_id=correlation_id, text=b_result.text),
            stats=a_result.stats + b_result.stats,
            goal_reached=goal_reached,
            finished_by="B" if goal_reached else None,
        )
