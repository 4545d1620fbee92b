"""Conversation engine: the turn loop, its controls and the persisted transcript."""

import asyncio
import uuid
import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set

from config.settings import Settings
from config.conversation import (
    ConfigurationError,
    ConversationConfig,
    ConversationOverrides,
    Topology,
    build_conversation_config,
)
from schemas.conversation import (
    ControlResult,
    ConversationPhase,
    ConversationStatus,
    Exchange,
    GenerationStats,
    RawReply,
    ReviewAction,
    ReviewDecision,
    RunResult,
    StructuredReply,
)

# LLM components
from llm.backends import (
    DefaultResponderBackend,
    DriverBackend,
    ModelRegistry,
    ResponderBackend,
)

# Memory components
from memory.history_compactor import HistoryCompactor, history_for_follow_up
from memory.transcript import TranscriptWriter

# Agents
from agents.driver import DriverAgent
from agents.responder import ResponderAgent
from agents.self_talk import SelfTalkAgent

from channels.chat_channel import ChatChannel
from channels.mailbox import ResponseMailbox, mailbox_address
from channels.telegram_channel import TelegramChannel
from prompts.defaults import GOAL_REACHED_PLACEHOLDER
from prompts.file_context import read_file_context
from prompts.templates import chat_values
from remote.notifier import ConversationNotifier
from utils.cancellation import CancellationToken, CancelledRun, run_cancellable

logger = logging.getLogger(__name__)

ReviewHandler = Callable[[int, str], Awaitable[ReviewDecision]]

_STATUS_LABELS = {
    ConversationPhase.RUNNING: "In progress",
    ConversationPhase.HALTED: "Halted",
    ConversationPhase.GOAL_REACHED: "Goal reached",
    ConversationPhase.TURN_LIMIT_REACHED: "Turn limit reached",
    ConversationPhase.CANCELLED: "Cancelled",
    ConversationPhase.FAILED: "Failed",
}


class ConversationAlreadyActiveError(RuntimeError):
    """A run was started while another one is still active."""


class ConversationState:
    """Mutable state of the one live run. Touched only by the engine."""

    def __init__(
        self,
        conversation_id: str,
        goal: str,
        description: str,
        config: ConversationConfig,
        profile_key: Optional[str] = None
    ):
        self.conversation_id = conversation_id
        self.goal = goal
        self.description = description
        self.config = config
        self.profile_key = profile_key
        self.exchanges: List[Exchange] = []
        self.active = True
        self.halted = False
        self.phase = ConversationPhase.RUNNING
        self.resume_event = asyncio.Event()
        self.resume_event.set()
        self.pending_fragments: List[str] = []
        self.cancel_token = CancellationToken()
        # responseValues collected from structured replies, for ${chat.<key>}
        self.chat_values: Dict[str, str] = {}
        self.log_file_path: Optional[Path] = None
        self.error: Optional[str] = None

    @property
    def turns_completed(self) -> int:
        return len(self.exchanges)

    def drain_fragments(self) -> str:
        """Take every pending fragment at once."""
        if not self.pending_fragments:
            return ""
        text = "\n\n".join(self.pending_fragments)
        self.pending_fragments = []
        return text


class ConversationEngine:
    """
    Runs one goal-directed conversation at a time.

    Each turn the driver writes an instruction, the responder answers it
    (or, in self-talk, a second persona does) and the exchange is recorded.
    The run ends when the driver emits the goal marker, the turn limit is
    reached, it is cancelled, or a backend fails.

    Control calls (halt, resume, inject, cancel, stop) may arrive at any
    time from the event loop; they only set flags and signals which the
    turn loop observes at its checkpoints.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        registry: Optional[ModelRegistry] = None,
        driver_backend: Optional[DriverBackend] = None,
        responder_backend: Optional[ResponderBackend] = None,
        mailbox: Optional[ResponseMailbox] = None,
        transcript: Optional[TranscriptWriter] = None,
        notifier: Optional[ConversationNotifier] = None,
        review_handler: Optional[ReviewHandler] = None
    ):
        """
        Initialize engine.

        Args:
            settings: Application settings
            registry: Named model clients (built from settings when omitted)
            driver_backend: Driver backend (built on the registry when omitted)
            responder_backend: Responder backend (registry plus mailbox when omitted)
            mailbox: Reply mailbox (in the settings' answer folder when omitted)
            transcript: Transcript writer (in the settings' log folder when omitted)
            notifier: Optional outbound notifications
            review_handler: Optional async callback reviewing instructions before dispatch
        """
        self.settings = settings or Settings()

        self.registry = registry or ModelRegistry.from_settings(self.settings)
        self._init_mailbox(mailbox)
        self.driver_backend = driver_backend or DriverBackend(self.registry)
        self.responder_backend = responder_backend or DefaultResponderBackend(self.registry, self.mailbox)
        self._init_transcript(transcript)

        self.notifier = notifier
        self.review_handler = review_handler

        self._state: Optional[ConversationState] = None
        self._background: Set[asyncio.Task] = set()

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        review_handler: Optional[ReviewHandler] = None
    ) -> "ConversationEngine":
        """Build an engine with Telegram notifications when they are configured."""
        notifier = None
        if settings.telegram.is_configured:
            notifier = ConversationNotifier(TelegramChannel(settings.telegram), settings.telegram)
            logger.info("Telegram notifications enabled")
        return cls(settings=settings, notifier=notifier, review_handler=review_handler)

    def _init_mailbox(self, mailbox: Optional[ResponseMailbox]):
        if mailbox is not None:
            self.mailbox = mailbox
            return
        folder = self.settings.resolve_path(self.settings.answer_folder)
        address = mailbox_address(self.settings.session_id, self.settings.machine_id)
        self.mailbox = ResponseMailbox(folder, address)
        logger.info(f"Reply mailbox: {self.mailbox.path}")

    def _init_transcript(self, transcript: Optional[TranscriptWriter]):
        if transcript is not None:
            self.transcript = transcript
            return
        self.transcript = TranscriptWriter(
            self.settings.resolve_path(self.settings.log_folder),
            workspace_name=self.settings.workspace_name,
        )

    @property
    def channel(self) -> Optional[ChatChannel]:
        return self.notifier.channel if self.notifier is not None else None

    @property
    def is_active(self) -> bool:
        return self._state is not None and self._state.active

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------

    def list_profiles(self) -> Dict[str, str]:
        """Profile keys mapped to their labels."""
        return {key: profile.label or key for key, profile in sorted(self.settings.profiles.items())}

    def get_config(
        self,
        profile: Optional[str] = None,
        overrides: Optional[ConversationOverrides] = None
    ) -> ConversationConfig:
        """The configuration a run with these arguments would use."""
        return build_conversation_config(self.settings, profile, overrides)

    def _validate(self, config: ConversationConfig):
        """Check that every backend the run needs is available."""
        needed = [config.driver_model]
        if config.summarizes and config.topology == Topology.DRIVER_RESPONDER:
            needed.append(config.summary_model or config.driver_model)
        if config.topology == Topology.DRIVER_DRIVER:
            needed.append(config.persona_model(config.self_talk.person_a))
            needed.append(config.persona_model(config.self_talk.person_b))

        for key in needed:
            if key not in self.registry:
                available = ", ".join(self.registry.keys()) or "(none)"
                raise ConfigurationError(f"Model '{key}' is not available. Available: {available}")

        if config.topology == Topology.DRIVER_RESPONDER:
            if not self.responder_backend.is_available(config.responder_model):
                raise ConfigurationError(f"Responder '{config.responder_model}' is not available")

    def _configure_mailbox(self, config: ConversationConfig):
        self.mailbox.poll_interval = config.mailbox_poll_seconds
        self.mailbox.settle_delay = config.mailbox_settle_seconds

    @staticmethod
    def _new_conversation_id() -> str:
        return f"bot_{datetime.now():%Y%m%d_%H%M%S}_{uuid.uuid4().hex[:6]}"

    # ------------------------------------------------------------------
    # Running
    # ------------------------------------------------------------------

    async def start(
        self,
        goal: str,
        description: str = "",
        profile: Optional[str] = None,
        overrides: Optional[ConversationOverrides] = None
    ) -> RunResult:
        """
        Run a conversation to completion.

        Args:
            goal: What the conversation should achieve
            description: Optional background for the driver
            profile: Optional profile key
            overrides: Optional per-call configuration

        Returns:
            RunResult with the terminal outcome and every exchange

        Raises:
            ConversationAlreadyActiveError: Another run is active
            ConfigurationError: The configuration is incomplete; no turn ran
        """
        if self.is_active:
            raise ConversationAlreadyActiveError(
                f"Conversation already active: {self._state.conversation_id}. Stop it first."
            )
        try:
            if not goal or not goal.strip():
                raise ConfigurationError("A goal is required")
            config = build_conversation_config(self.settings, profile, overrides)
            self._validate(config)
        except ConfigurationError as e:
            logger.error(f"Conversation not started: {e}")
            await self._notify_rejected(str(e))
            raise

        state = ConversationState(
            conversation_id=self._new_conversation_id(),
            goal=goal.strip(),
            description=(description or "").strip(),
            config=config,
            profile_key=profile,
        )
        self._state = state
        return await self._run(state)

    async def _run(self, state: ConversationState) -> RunResult:
        config = state.config
        self._configure_mailbox(config)
        self.driver_backend.reset_history()

        logger.info(
            f"Starting conversation {state.conversation_id} "
            f"({config.topology.value}, max {config.max_turns} turns): {state.goal[:100]}"
        )
        await self._notify_start(state)

        reason: Optional[str] = None
        try:
            if config.topology == Topology.DRIVER_DRIVER:
                await self._run_self_talk(state)
            else:
                await self._run_driver_responder(state)
        except CancelledRun as e:
            state.phase = ConversationPhase.CANCELLED
            reason = e.reason
            logger.info(f"Conversation {state.conversation_id} cancelled: {e.reason}")
        except Exception as e:
            state.phase = ConversationPhase.FAILED
            state.error = str(e)
            reason = f"Error: {e}"
            logger.exception(f"Conversation {state.conversation_id} failed")
        finally:
            state.active = False
            state.halted = False
            state.resume_event.set()
            self._persist(state)

        logger.info(
            f"Conversation {state.conversation_id} ended: {state.phase.value} "
            f"after {state.turns_completed} turns"
        )
        await self._notify_end(state, reason)

        return RunResult(
            conversation_id=state.conversation_id,
            outcome=state.phase,
            turns=state.turns_completed,
            goal_reached=state.phase == ConversationPhase.GOAL_REACHED,
            exchanges=list(state.exchanges),
            log_file_path=str(state.log_file_path) if state.log_file_path else None,
            error=state.error,
        )

    async def _checkpoint(self, state: ConversationState):
        """Loop-top checkpoint: honour cancellation and wait out a halt."""
        state.cancel_token.raise_if_cancelled()
        if state.halted:
            logger.info(f"Conversation {state.conversation_id} halted, waiting for resume")
            await run_cancellable(state.resume_event.wait(), state.cancel_token)
        state.cancel_token.raise_if_cancelled()

    def _file_context(self, config: ConversationConfig) -> str:
        return read_file_context(config.include_file_context, Path(self.settings.workspace_root).expanduser())

    async def _run_driver_responder(self, state: ConversationState):
        config = state.config
        driver = DriverAgent(self.driver_backend, config)
        responder = ResponderAgent(self.responder_backend, self.mailbox, config)
        compactor = HistoryCompactor(
            mode=config.history_mode,
            max_tokens=config.max_history_tokens,
            summarizer=(lambda prompt: driver.summarize(prompt, state.cancel_token)) if config.summarizes else None,
            summary_template=config.summary_template,
        )
        file_context = self._file_context(config)

        for turn in range(1, config.max_turns + 1):
            await self._checkpoint(state)
            additional_info = state.drain_fragments()
            extra_values = chat_values(state.chat_values)

            if turn == 1:
                prompt = driver.build_initial_prompt(
                    state.goal, state.description, file_context, additional_info, extra_values
                )
            else:
                history = await compactor.compact(history_for_follow_up(state.exchanges))
                prompt = driver.build_follow_up_prompt(
                    state.goal, state.description, turn, state.exchanges[-1], history,
                    file_context, additional_info, extra_values
                )

            result = await driver.generate(prompt, turn, state.cancel_token)
            logger.info(f"Turn {turn}/{config.max_turns}: driver produced {len(result.text)} chars")

            if turn > 1 and driver.reached_goal(result.text):
                logger.info(f"Goal reached at turn {turn}")
                await self._record(state, Exchange(
                    turn=turn,
                    instruction=result.text,
                    reply=RawReply(text=GOAL_REACHED_PLACEHOLDER, source="placeholder"),
                    stats=result.stats,
                ))
                state.phase = ConversationPhase.GOAL_REACHED
                return

            instruction = await self._review(state, turn, result.text)

            correlation_id = f"{state.conversation_id}_t{turn}"
            reply = await responder.exchange(instruction, correlation_id, state.cancel_token)

            await self._record(state, Exchange(
                turn=turn,
                instruction=instruction,
                reply=reply,
                stats=result.stats,
            ))
            if isinstance(reply, StructuredReply) and reply.values:
                state.chat_values.update(reply.values)

        state.phase = ConversationPhase.TURN_LIMIT_REACHED

    async def _run_self_talk(self, state: ConversationState):
        config = state.config
        agent = SelfTalkAgent(self.driver_backend, config)
        file_context = self._file_context(config) if config.include_file_context else ""
        last_reply = ""

        for turn in range(1, config.max_turns + 1):
            await self._checkpoint(state)
            additional_info = state.drain_fragments()

            outcome = await agent.run_turn(
                conversation_id=state.conversation_id,
                goal=state.goal,
                description=state.description,
                file_context=file_context,
                turn=turn,
                last_reply=last_reply,
                additional_info=additional_info,
                cancel_token=state.cancel_token,
            )
            await self._record(state, Exchange(
                turn=turn,
                instruction=outcome.instruction,
                reply=outcome.reply,
                stats=outcome.stats,
            ))
            if outcome.goal_reached:
                logger.info(f"Goal reached at turn {turn} by Person {outcome.finished_by}")
                state.phase = ConversationPhase.GOAL_REACHED
                return
            last_reply = outcome.reply.text

        state.phase = ConversationPhase.TURN_LIMIT_REACHED

    async def _review(self, state: ConversationState, turn: int, instruction: str) -> str:
        """
        Hand the instruction to the review callback when this turn pauses.

        Raises:
            CancelledRun: The reviewer chose to stop, or submitted an empty edit
        """
        config = state.config
        pause = config.pause_before_first if turn == 1 else config.pause_between_turns
        if not pause or self.review_handler is None:
            return instruction

        decision = await run_cancellable(self.review_handler(turn, instruction), state.cancel_token)
        if decision.action == ReviewAction.STOP:
            state.cancel_token.cancel("Stopped during review")
            raise CancelledRun("Stopped during review")
        if decision.action == ReviewAction.EDIT:
            edited = (decision.text or "").strip()
            if not edited:
                state.cancel_token.cancel("Empty instruction after review")
                raise CancelledRun("Empty instruction after review")
            logger.info(f"Turn {turn} instruction edited during review")
            return edited
        return instruction

    async def _record(self, state: ConversationState, exchange: Exchange):
        state.exchanges.append(exchange)
        self._persist(state)
        await self._notify_turn(state, exchange)

    def _persist(self, state: ConversationState):
        if not state.config.log_conversation:
            return
        try:
            state.log_file_path = self.transcript.write(
                conversation_id=state.conversation_id,
                goal=state.goal,
                exchanges=state.exchanges,
                description=state.description,
                profile_key=state.profile_key or "",
                max_turns=state.config.max_turns,
                status=_STATUS_LABELS.get(state.phase, state.phase.value),
            )
        except OSError as e:
            logger.error(f"Failed to write transcript for {state.conversation_id}: {e}")

    async def single_turn(
        self,
        prompt: str,
        profile: Optional[str] = None,
        overrides: Optional[ConversationOverrides] = None,
        cancel_token: Optional[CancellationToken] = None
    ) -> Exchange:
        """
        One driver call and one responder round-trip, outside any run.

        Args:
            prompt: Prompt handed to the driver as-is
            profile: Optional profile key
            overrides: Optional per-call configuration
            cancel_token: Optional cancellation

        Returns:
            The resulting exchange (not recorded anywhere)
        """
        if self.is_active:
            raise ConversationAlreadyActiveError(
                f"Conversation already active: {self._state.conversation_id}"
            )
        config = build_conversation_config(self.settings, profile, overrides)
        if config.topology != Topology.DRIVER_RESPONDER:
            config = config.model_copy(update={"topology": Topology.DRIVER_RESPONDER})
        self._validate(config)
        self._configure_mailbox(config)

        driver = DriverAgent(self.driver_backend, config)
        result = await driver.generate(prompt, 1, cancel_token)
        correlation_id = f"single_{datetime.now():%Y%m%d_%H%M%S}_{uuid.uuid4().hex[:6]}"
        responder = ResponderAgent(self.responder_backend, self.mailbox, config)
        reply = await responder.exchange(result.text, correlation_id, cancel_token)
        return Exchange(turn=1, instruction=result.text, reply=reply, stats=result.stats)

    # ------------------------------------------------------------------
    # Control surface
    # ------------------------------------------------------------------

    def halt(self, reason: str = "Halted by user") -> ControlResult:
        """Pause the run before its next turn."""
        state = self._state
        if state is None or not state.active:
            return ControlResult(success=False, message="No active conversation")
        if state.halted:
            return ControlResult(success=False, message="Conversation already halted", halted=True)

        state.halted = True
        state.phase = ConversationPhase.HALTED
        state.resume_event.clear()
        logger.info(f"Conversation {state.conversation_id} halted: {reason}")
        self._spawn(self._notify_halted(state))
        return ControlResult(success=True, message="Conversation halted", halted=True)

    def resume(self) -> ControlResult:
        """Release a halted run."""
        state = self._state
        if state is None or not state.active or not state.halted:
            return ControlResult(success=False, message="Conversation is not halted")

        state.halted = False
        state.phase = ConversationPhase.RUNNING
        state.resume_event.set()
        logger.info(f"Conversation {state.conversation_id} resumed")
        self._spawn(self._notify_continued(bool(state.pending_fragments)))
        return ControlResult(success=True, message="Conversation resumed")

    def inject(self, text: str) -> ControlResult:
        """Queue operator text for the next turn's prompt."""
        state = self._state
        if state is None or not state.active:
            return ControlResult(success=False, message="No active conversation")
        text = (text or "").strip()
        if not text:
            return ControlResult(success=False, message="Nothing to add", halted=state.halted)

        state.pending_fragments.append(text)
        logger.info(f"Queued {len(text)} chars of operator input ({len(state.pending_fragments)} pending)")
        return ControlResult(
            success=True,
            message=f"Added to next prompt ({len(text)} chars)",
            halted=state.halted,
        )

    def cancel(self, reason: str = "Cancelled") -> ControlResult:
        """End the run at its next checkpoint; pending waits return right away."""
        state = self._state
        if state is None or not state.active:
            return ControlResult(success=False, message="No active conversation")
        if not state.cancel_token.cancel(reason):
            return ControlResult(success=False, message="Conversation is already being cancelled")
        logger.info(f"Cancelling conversation {state.conversation_id}: {reason}")
        return ControlResult(success=True, message="Conversation cancelled")

    def stop(self, reason: str = "Stopped by user") -> ControlResult:
        result = self.cancel(reason)
        if not result.success:
            return result
        return ControlResult(success=True, message="Conversation stopped")

    def status(self) -> ConversationStatus:
        state = self._state
        if state is None:
            return ConversationStatus()
        return ConversationStatus(
            active=state.active,
            halted=state.halted,
            phase=state.phase,
            conversation_id=state.conversation_id,
            goal=state.goal,
            profile_key=state.profile_key,
            topology=state.config.topology.value,
            turns_completed=state.turns_completed,
            max_turns=state.config.max_turns,
            pending_fragments=len(state.pending_fragments),
        )

    def get_log(self, conversation_id: Optional[str] = None) -> Optional[str]:
        """Transcript of a run; the current or last run when no id is given."""
        if conversation_id is None:
            if self._state is None:
                return None
            conversation_id = self._state.conversation_id
        return self.transcript.read_log(conversation_id)

    # ------------------------------------------------------------------
    # Notifications
    # ------------------------------------------------------------------

    def _spawn(self, coro: Awaitable[Any]):
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            coro.close()
            return
        task = loop.create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    def _notifying(self) -> bool:
        return self.notifier is not None and self.notifier.is_enabled

    async def _notify_start(self, state: ConversationState):
        if self._notifying():
            await self.notifier.notify_start(state.conversation_id, state.goal, state.profile_key or "default")

    async def _notify_turn(self, state: ConversationState, exchange: Exchange):
        if self._notifying():
            await self.notifier.notify_turn(
                exchange.turn,
                state.config.max_turns,
                exchange.instruction,
                exchange.reply.text,
                exchange.stats or GenerationStats(),
            )

    async def _notify_end(self, state: ConversationState, reason: Optional[str]):
        if self._notifying():
            await self.notifier.notify_end(
                state.conversation_id,
                state.turns_completed,
                state.phase == ConversationPhase.GOAL_REACHED,
                reason or _STATUS_LABELS.get(state.phase),
            )

    async def _notify_rejected(self, reason: str):
        if self._notifying():
            await self.notifier.notify_rejected(reason)

    async def _notify_halted(self, state: ConversationState):
        if self._notifying():
            await self.notifier.notify_halted(state.turns_completed)

    async def _notify_continued(self, has_input: bool):
        if self._notifying():
            await self.notifier.notify_continued(has_input)
