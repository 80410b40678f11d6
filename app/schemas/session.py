from pydantic import BaseModel
from typing import List, Optional

from app.core.session import Phase, SessionState, VoiceStatus
from app.schemas.provider import Provider
from app.schemas.triage import Message, TriageResult


class CreateSessionRequest(BaseModel):
    user_id: str  # anonymous browser id or signed-in user id; scopes saved providers


class StartRequest(BaseModel):
    language: Optional[str] = None  # keeps the current language when omitted


class SendRequest(BaseModel):
    text: str


class LanguageRequest(BaseModel):
    language: str


class ProviderSearchRequest(BaseModel):
    zip_code: str
    insurance: Optional[str] = None


class SpeechRequest(BaseModel):
    text: str


class TranscriptRequest(BaseModel):
    text: str


class CaptureErrorRequest(BaseModel):
    error: str


class LanguageOut(BaseModel):
    code: str
    label: str
    flag: str
    voice: str
    locale: str


class SessionView(BaseModel):
    session_id: str
    phase: Phase
    language: str
    messages: List[Message]
    triage_result: Optional[TriageResult] = None
    emergency_escalated: bool
    providers: List[Provider]
    zip_code: str
    insurance: str
    loading: bool
    listening: bool
    speaking: bool
    voice: VoiceStatus
    can_send: bool
    can_search_providers: bool

    @classmethod
    def from_state(cls, session_id: str, state: SessionState) -> "SessionView":
        return cls(
            session_id=session_id,
            phase=state.phase,
            language=state.language,
            messages=list(state.messages),
            triage_result=state.triage_result,
            emergency_escalated=state.emergency_escalated,
            providers=list(state.providers),
            zip_code=state.zip_code,
            insurance=state.insurance,
            loading=state.loading,
            listening=state.listening,
            speaking=state.speaking,
            voice=state.voice,
            can_send=state.can_send,
            can_search_providers=state.can_search_providers,
        )


class ConsentView(BaseModel):
    """What the consent screen needs before the assessment starts."""
    session: SessionView
    red_flags: List[str]
    languages: List[LanguageOut]
