"""Per-run conversation configuration and profile merging."""

import logging
from enum import Enum
from typing import Optional, Dict, Any, Tuple, TYPE_CHECKING

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from prompts import defaults

if TYPE_CHECKING:
    from .settings import Settings

logger = logging.getLogger(__name__)


class ConfigurationError(ValueError):
    """Invalid or incomplete configuration, detected before a run starts."""


class HistoryMode(str, Enum):
    """How prior exchanges are rendered into the follow-up prompt."""
    FULL = "full"
    LAST = "last"
    SUMMARY = "summary"
    TRIM_AND_SUMMARY = "trim_and_summary"


class Topology(str, Enum):
    """Who talks to whom."""
    DRIVER_RESPONDER = "driver-responder"
    DRIVER_DRIVER = "driver-driver"


class PersonaConfig(BaseModel):
    """One side of a self-talk conversation."""
    model_config = ConfigDict(frozen=True)

    system_prompt: Optional[str] = None
    model: Optional[str] = None  # None -> driver model
    temperature: Optional[float] = None  # None -> conversation temperature


class SelfTalkConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    person_a: PersonaConfig = PersonaConfig(system_prompt=defaults.PERSON_A_SYSTEM_PROMPT)
    person_b: PersonaConfig = PersonaConfig(system_prompt=defaults.PERSON_B_SYSTEM_PROMPT)


class ConversationOverrides(BaseModel):
    """Partial configuration. Fields left as None inherit."""
    model_config = ConfigDict(extra="forbid")

    max_turns: Optional[int] = None
    temperature: Optional[float] = None
    history_mode: Optional[HistoryMode] = None
    max_history_tokens: Optional[int] = None
    initial_prompt_template: Optional[str] = None
    follow_up_template: Optional[str] = None
    summary_template: Optional[str] = None
    goal_suffix_template: Optional[str] = None
    goal_reached_marker: Optional[str] = None
    include_file_context: Optional[Tuple[str, ...]] = None
    topology: Optional[Topology] = None
    person_a: Optional[PersonaConfig] = None
    person_b: Optional[PersonaConfig] = None
    pause_before_first: Optional[bool] = None
    pause_between_turns: Optional[bool] = None
    driver_model: Optional[str] = None
    summary_model: Optional[str] = None
    summary_temperature: Optional[float] = None
    responder_model: Optional[str] = None
    strip_thinking_tags: Optional[bool] = None
    trim_driver_history: Optional[bool] = None
    log_conversation: Optional[bool] = None
    reply_timeout_seconds: Optional[float] = None
    reply_grace_seconds: Optional[float] = None
    mailbox_poll_seconds: Optional[float] = None
    mailbox_settle_seconds: Optional[float] = None


class ConversationProfile(ConversationOverrides):
    """A named preset of overrides."""
    label: str = ""


class ConversationConfig(BaseModel):
    """Resolved configuration for one run. Frozen once built."""
    model_config = ConfigDict(frozen=True)

    max_turns: int = Field(gt=0)
    driver_model: str
    temperature: float = 0.0
    history_mode: HistoryMode = HistoryMode.TRIM_AND_SUMMARY
    max_history_tokens: int = 4000
    initial_prompt_template: str = defaults.INITIAL_PROMPT_TEMPLATE
    follow_up_template: str = defaults.FOLLOW_UP_TEMPLATE
    summary_template: str = defaults.SUMMARY_TEMPLATE
    goal_suffix_template: str = defaults.GOAL_SUFFIX_TEMPLATE
    goal_reached_marker: str = defaults.GOAL_REACHED_MARKER
    include_file_context: Tuple[str, ...] = ()
    topology: Topology = Topology.DRIVER_RESPONDER
    self_talk: SelfTalkConfig = SelfTalkConfig()
    pause_before_first: bool = False
    pause_between_turns: bool = False
    summary_model: Optional[str] = None
    summary_temperature: float = 0.3
    responder_model: Optional[str] = None
    strip_thinking_tags: bool = True
    trim_driver_history: bool = True
    log_conversation: bool = True
    reply_timeout_seconds: float = 600.0
    reply_grace_seconds: float = 1.0
    mailbox_poll_seconds: float = 5.0
    mailbox_settle_seconds: float = 0.5

    @property
    def summarizes(self) -> bool:
        return self.history_mode in (HistoryMode.SUMMARY, HistoryMode.TRIM_AND_SUMMARY)

    def persona_model(self, persona: PersonaConfig) -> str:
        return persona.model or self.driver_model

    def persona_temperature(self, persona: PersonaConfig) -> float:
        return self.temperature if persona.temperature is None else persona.temperature


def _merge_persona(base: PersonaConfig, override: Optional[PersonaConfig]) -> PersonaConfig:
    if override is None:
        return base
    merged = base.model_dump()
    merged.update(override.model_dump(exclude_none=True))
    return PersonaConfig(**merged)


def build_conversation_config(
    settings: "Settings",
    profile_key: Optional[str] = None,
    overrides: Optional[ConversationOverrides] = None,
) -> ConversationConfig:
    """
    Merge defaults, the settings file, a named profile and per-call overrides.

    Args:
        settings: Loaded settings (its ``conversation`` section and ``profiles``)
        profile_key: Optional profile name
        overrides: Optional per-call overrides

    Returns:
        Frozen ConversationConfig

    Raises:
        ConfigurationError: Unknown profile, missing turn limit or model, bad values
    """
    try:
        layers = [ConversationOverrides(**settings.conversation)]
    except ValidationError as e:
        raise ConfigurationError(f"Invalid conversation settings: {e}") from e

    if profile_key:
        profile = settings.profiles.get(profile_key)
        if profile is None:
            available = ", ".join(sorted(settings.profiles)) or "(none)"
            raise ConfigurationError(f"Unknown profile: {profile_key}. Available: {available}")
        layers.append(profile)

    if overrides is not None:
        layers.append(overrides)

    merged: Dict[str, Any] = {
        "driver_model": settings.default_model,
        "responder_model": settings.responder,
    }
    self_talk = SelfTalkConfig()
    for layer in layers:
        values = layer.model_dump(exclude_none=True, exclude={"label", "person_a", "person_b"})
        merged.update(values)
        self_talk = SelfTalkConfig(
            person_a=_merge_persona(self_talk.person_a, layer.person_a),
            person_b=_merge_persona(self_talk.person_b, layer.person_b),
        )

    if not merged.get("max_turns") or merged["max_turns"] <= 0:
        raise ConfigurationError("max_turns must be set to a positive number")

    driver_model = merged.get("driver_model")
    if not driver_model:
        raise ConfigurationError("No driver model configured. Set default_model or driver_model.")

    merged.setdefault("summary_model", None)
    if not merged["summary_model"]:
        merged["summary_model"] = driver_model

    for key in (driver_model, merged["summary_model"],
                self_talk.person_a.model, self_talk.person_b.model):
        if key and key not in settings.models:
            available = ", ".join(sorted(settings.models)) or "(none)"
            raise ConfigurationError(f"Unknown model config: {key}. Available: {available}")

    try:
        config = ConversationConfig(self_talk=self_talk, **merged)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid conversation config: {e}") from e

    logger.debug(
        f"Built conversation config: profile={profile_key or '(default)'} "
        f"topology={config.topology.value} max_turns={config.max_turns}"
    )
    return config
