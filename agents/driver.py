"""Driver agent: writes instructions and judges progress toward the goal."""

import logging
from typing import Any, Dict, Mapping, Optional

from config.conversation import ConversationConfig
from llm.backends import DriverBackend, GenerationResult
from prompts.defaults import (
    DRIVER_INITIAL_SYSTEM_PROMPT,
    DRIVER_FOLLOW_UP_SYSTEM_PROMPT,
    NO_HISTORY,
    SUMMARIZER_SYSTEM_PROMPT,
)
from prompts.templates import resolve_template
from schemas.conversation import Exchange
from utils.cancellation import CancellationToken

logger = logging.getLogger(__name__)


def additional_info_block(text: str) -> str:
    """Render injected operator text for the ${additionalUserInfo} placeholder."""
    if not text:
        return ""
    return f"\nAdditional user input:\n{text}\n"


class DriverAgent:
    """
    Driver for the driver-responder topology.

    Turn 1 resolves the initial template; later turns resolve the
    follow-up template with the previous exchange and the compacted
    history. The driver signals completion by emitting the goal marker.
    """

    def __init__(self, backend: DriverBackend, config: ConversationConfig):
        """
        Initialize driver.

        Args:
            backend: Driver backend
            config: Frozen run configuration
        """
        self.backend = backend
        self.config = config

    def build_initial_prompt(
        self,
        goal: str,
        description: str,
        file_context: str,
        additional_info: str = "",
        extra_values: Optional[Mapping[str, Any]] = None
    ) -> str:
        values: Dict[str, Any] = dict(extra_values or {})
        values.update({
            "goal": goal,
            "description": description,
            "fileContext": file_context,
            "turnNumber": "1",
            "maxTurns": str(self.config.max_turns),
            "goalReachedMarker": self.config.goal_reached_marker,
            "additionalUserInfo": additional_info_block(additional_info),
        })
        return resolve_template(self.config.initial_prompt_template, values)

    def build_follow_up_prompt(
        self,
        goal: str,
        description: str,
        turn: int,
        last_exchange: Exchange,
        history_section: str,
        file_context: str = "",
        additional_info: str = "",
        extra_values: Optional[Mapping[str, Any]] = None
    ) -> str:
        """
        Resolve the follow-up template.

        Args:
            goal: Conversation goal
            description: Optional description
            turn: Current turn number (> 1)
            last_exchange: The immediately preceding exchange
            history_section: Compacted history of the exchanges before it
            file_context: Rendered context files
            additional_info: Drained operator input, may be empty
            extra_values: Extra placeholder values (e.g. the ``chat`` namespace)

        Returns:
            Prompt text for the driver model
        """
        values: Dict[str, Any] = dict(extra_values or {})
        values.update({
            "goal": goal,
            "description": description,
            "turnNumber": str(turn),
            "maxTurns": str(self.config.max_turns),
            "lastPrompt": last_exchange.instruction,
            "lastReply": last_exchange.reply.text,
            "copilotResponse": last_exchange.reply.text,
            "historySection": (
                f"Conversation history:\n{history_section}"
                if history_section and history_section != NO_HISTORY else ""
            ),
            "fileContext": file_context,
            "goalReachedMarker": self.config.goal_reached_marker,
            "additionalUserInfo": additional_info_block(additional_info),
        })
        return resolve_template(self.config.follow_up_template, values)

    async def generate(
        self,
        prompt: str,
        turn: int,
        cancel_token: Optional[CancellationToken] = None
    ) -> GenerationResult:
        """Run the driver model on a resolved prompt."""
        system_prompt = DRIVER_INITIAL_SYSTEM_PROMPT if turn == 1 else DRIVER_FOLLOW_UP_SYSTEM_PROMPT
        result = await self.backend.generate(
            system_prompt=system_prompt,
            user_prompt=prompt,
            model_key=self.config.driver_model,
            temperature=self.config.temperature,
            trim_history=self.config.trim_driver_history,
            cancel_token=cancel_token,
            strip_thinking=self.config.strip_thinking_tags,
        )
        logger.debug(f"Driver turn {turn}: {len(result.text)} chars ({result.stats.describe()})")
        return result

    def reached_goal(self, text: str) -> bool:
        return self.config.goal_reached_marker in text

    async def summarize(self, prompt: str, cancel_token: Optional[CancellationToken] = None) -> str:
        """Summarizer used by the history compactor."""
        result = await self.backend.generate(
            system_prompt=SUMMARIZER_SYSTEM_PROMPT,
            user_prompt=prompt,
            model_key=self.config.summary_model or self.config.driver_model,
            temperature=self.config.summary_temperature,
            trim_history=True,
            cancel_token=cancel_token,
            strip_thinking=self.config.strip_thinking_tags,
        )
        return result.text
