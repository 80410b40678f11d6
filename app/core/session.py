"""
NaviCare session state machine.

    consent --Started--> conversing --TriageAdvanced(complete)--> resolved
    any --Reset--> consent

reduce(state, event) is pure: it returns a new SessionState or raises
InvalidTransitionError without touching the old one. Gateway calls, voice capture and
audio playback live in app.services.triage_session, which turns their outcomes into
events.
"""
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict

from app.core.errors import InvalidTransitionError
from app.core.locales import DEFAULT_LANGUAGE
from app.schemas.provider import Provider
from app.schemas.triage import Message, TriageLevel, TriageResult, TriageTurn

GREETING_FALLBACK = "Hello, I am NaviCare AI. How can I help you today?"
NEXT_QUESTION_FALLBACK = "Can you tell me more?"
TECHNICAL_ISSUE_MESSAGE = (
    "I'm having a technical issue. Please try again or seek medical advice "
    "if your symptoms are concerning."
)

# No directory search: EMERGENCY routes to emergency services, SELF_CARE needs no referral
NO_SEARCH_LEVELS = (TriageLevel.EMERGENCY, TriageLevel.SELF_CARE)


class Phase(str, Enum):
    CONSENT = "consent"
    CONVERSING = "conversing"
    RESOLVED = "resolved"


class VoiceStatus(str, Enum):
    IDLE = "idle"
    LISTENING = "listening"
    SPEAKING = "speaking"


class SessionState(BaseModel):
    model_config = ConfigDict(frozen=True)

    phase: Phase = Phase.CONSENT
    language: str = DEFAULT_LANGUAGE
    messages: Tuple[Message, ...] = ()
    triage_result: Optional[TriageResult] = None
    emergency_escalated: bool = False
    providers: Tuple[Provider, ...] = ()
    zip_code: str = ""
    insurance: str = ""
    loading: bool = False
    listening: bool = False
    speaking: bool = False

    @property
    def voice(self) -> VoiceStatus:
        if self.speaking:
            return VoiceStatus.SPEAKING
        if self.listening:
            return VoiceStatus.LISTENING
        return VoiceStatus.IDLE

    @property
    def can_send(self) -> bool:
        return self.phase == Phase.CONVERSING and not self.loading

    @property
    def can_search_providers(self) -> bool:
        result = self.triage_result
        return (
            self.phase == Phase.RESOLVED
            and result is not None
            and bool((result.specialty_needed or "").strip())
            and result.level not in NO_SEARCH_LEVELS
        )


def _now() -> datetime:
    return datetime.now(timezone.utc)


# ─── Events ─────────────────────────────────────────────────────

@dataclass(frozen=True)
class Started:
    language: str


@dataclass(frozen=True)
class GreetingReceived:
    text: str
    at: datetime = field(default_factory=_now)


@dataclass(frozen=True)
class UserTurnSubmitted:
    text: str
    at: datetime = field(default_factory=_now)


@dataclass(frozen=True)
class TriageAdvanced:
    turn: TriageTurn
    at: datetime = field(default_factory=_now)


@dataclass(frozen=True)
class TurnFailed:
    at: datetime = field(default_factory=_now)


@dataclass(frozen=True)
class ProviderSearchStarted:
    zip_code: str
    insurance: str = ""


@dataclass(frozen=True)
class ProvidersFound:
    providers: Tuple[Provider, ...]


@dataclass(frozen=True)
class LanguageChanged:
    language: str


@dataclass(frozen=True)
class ListeningChanged:
    listening: bool


@dataclass(frozen=True)
class SpeakingChanged:
    speaking: bool


@dataclass(frozen=True)
class Reset:
    pass


Event = Union[
    Started, GreetingReceived, UserTurnSubmitted, TriageAdvanced, TurnFailed,
    ProviderSearchStarted, ProvidersFound, LanguageChanged, ListeningChanged,
    SpeakingChanged, Reset,
]


# ─── Reducer ────────────────────────────────────────────────────

def _require(state: SessionState, phase: Phase, event: object) -> None:
    if state.phase != phase:
        raise InvalidTransitionError(
            f"{type(event).__name__} is not valid in phase {state.phase.value}"
        )


def _append(state: SessionState, role: str, text: str, at: datetime) -> Tuple[Message, ...]:
    return state.messages + (Message(role=role, text=text, timestamp=at),)


def reduce(state: SessionState, event: Event) -> SessionState:
    """Apply one event to the session state and return the new state."""
    if isinstance(event, Started):
        _require(state, Phase.CONSENT, event)
        return state.model_copy(update={
            "phase": Phase.CONVERSING,
            "language": event.language,
            "loading": True,
        })

    if isinstance(event, GreetingReceived):
        _require(state, Phase.CONVERSING, event)
        if state.messages:
            raise InvalidTransitionError("greeting must be the first message")
        text = event.text.strip() or GREETING_FALLBACK
        return state.model_copy(update={
            "messages": _append(state, "model", text, event.at),
            "loading": False,
        })

    if isinstance(event, UserTurnSubmitted):
        _require(state, Phase.CONVERSING, event)
        if not event.text.strip():
            raise InvalidTransitionError("empty message")
        if state.loading:
            raise InvalidTransitionError("a request is already in flight")
        return state.model_copy(update={
            "messages": _append(state, "user", event.text, event.at),
            "loading": True,
        })

    if isinstance(event, TriageAdvanced):
        _require(state, Phase.CONVERSING, event)
        turn = event.turn
        if turn.is_triage_complete and turn.triage_result is not None:
            result = turn.triage_result
            return state.model_copy(update={
                "phase": Phase.RESOLVED,
                "triage_result": result,
                "emergency_escalated": state.emergency_escalated or result.level == TriageLevel.EMERGENCY,
                "messages": _append(state, "model", result.recommendation, event.at),
                "loading": False,
            })
        return state.model_copy(update={
            "messages": _append(state, "model", turn.next_question or NEXT_QUESTION_FALLBACK, event.at),
            "loading": False,
        })

    if isinstance(event, TurnFailed):
        _require(state, Phase.CONVERSING, event)
        return state.model_copy(update={
            "messages": _append(state, "model", TECHNICAL_ISSUE_MESSAGE, event.at),
            "loading": False,
        })

    if isinstance(event, ProviderSearchStarted):
        if not state.can_search_providers:
            raise InvalidTransitionError("provider search is not available for this session")
        if not event.zip_code.strip():
            raise InvalidTransitionError("a ZIP code is required")
        return state.model_copy(update={
            "zip_code": event.zip_code.strip(),
            "insurance": event.insurance.strip(),
            "loading": True,
        })

    if isinstance(event, ProvidersFound):
        _require(state, Phase.RESOLVED, event)
        return state.model_copy(update={"providers": tuple(event.providers), "loading": False})

    if isinstance(event, LanguageChanged):
        return state.model_copy(update={"language": event.language})

    if isinstance(event, ListeningChanged):
        return state.model_copy(update={"listening": event.listening})

    if isinstance(event, SpeakingChanged):
        return state.model_copy(update={"speaking": event.speaking})

    if isinstance(event, Reset):
        return SessionState(language=state.language)

    raise TypeError(f"unknown session event: {event!r}")
