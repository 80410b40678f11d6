"""
Assessment sessions: consent → conversation → triage result → provider search.
All state lives in TriageSession; these routes translate HTTP to session operations.
"""
import logging

from fastapi import APIRouter, Depends, Response
from fastapi.responses import PlainTextResponse

from app.api.deps import get_registry, get_session, to_http_error
from app.core.errors import NaviCareError
from app.core.locales import LANGUAGES
from app.core.prompts import RED_FLAGS
from app.schemas.session import (
    CaptureErrorRequest,
    ConsentView,
    CreateSessionRequest,
    LanguageOut,
    LanguageRequest,
    ProviderSearchRequest,
    SendRequest,
    SessionView,
    SpeechRequest,
    StartRequest,
    TranscriptRequest,
)
from app.services.triage_session import SessionRegistry, TriageSession

router = APIRouter()
logger = logging.getLogger(__name__)


def _view(session: TriageSession) -> SessionView:
    return SessionView.from_state(session.id, session.state)


@router.post("/", response_model=ConsentView)
async def create_session(request: CreateSessionRequest, registry: SessionRegistry = Depends(get_registry)):
    """New session in the consent phase, with the red-flag list and language picker data."""
    await registry.evict_idle()
    session = registry.create(request.user_id)
    return ConsentView(
        session=_view(session),
        red_flags=RED_FLAGS,
        languages=[LanguageOut(**lang._asdict()) for lang in LANGUAGES],
    )


@router.get("/{session_id}", response_model=SessionView)
async def get_session_view(session: TriageSession = Depends(get_session)):
    return _view(session)


@router.delete("/{session_id}", status_code=204)
async def delete_session(session: TriageSession = Depends(get_session), registry: SessionRegistry = Depends(get_registry)):
    """Close the session: pending request cancelled, microphone stopped, audio released."""
    await registry.remove(session.id)
    return Response(status_code=204)


@router.post("/{session_id}/start", response_model=SessionView)
async def start(request: StartRequest, session: TriageSession = Depends(get_session)):
    """Consent accepted: greet the user in the chosen language."""
    try:
        await session.start(request.language)
    except NaviCareError as e:
        raise to_http_error(e)
    return _view(session)


@router.post("/{session_id}/messages", response_model=SessionView)
async def send_message(request: SendRequest, session: TriageSession = Depends(get_session)):
    """One user turn. Rejected while another request for this session is pending."""
    try:
        await session.send(request.text)
    except NaviCareError as e:
        raise to_http_error(e)
    return _view(session)


@router.put("/{session_id}/language", response_model=SessionView)
async def change_language(request: LanguageRequest, session: TriageSession = Depends(get_session)):
    try:
        session.set_language(request.language)
    except NaviCareError as e:
        raise to_http_error(e)
    return _view(session)


@router.post("/{session_id}/providers/search", response_model=SessionView)
async def search_providers(request: ProviderSearchRequest, session: TriageSession = Depends(get_session)):
    """Find providers for the resolved specialty near a ZIP code (optionally by insurance)."""
    try:
        await session.search_providers(request.zip_code, request.insurance)
    except NaviCareError as e:
        raise to_http_error(e)
    return _view(session)


@router.get("/{session_id}/referral", response_class=PlainTextResponse)
async def referral(session: TriageSession = Depends(get_session)):
    try:
        return session.referral_note()
    except NaviCareError as e:
        raise to_http_error(e)


@router.post("/{session_id}/reset", response_model=SessionView)
async def reset(session: TriageSession = Depends(get_session)):
    """New assessment. Saved providers are kept."""
    await session.reset()
    return _view(session)


@router.post("/{session_id}/speech")
async def speech(request: SpeechRequest, session: TriageSession = Depends(get_session)):
    """Read a message aloud. audio/wav when synthesis succeeds, 204 otherwise."""
    try:
        output = await session.speak(request.text)
    except NaviCareError as e:
        raise to_http_error(e)
    clip = getattr(output, "clip", None) if output is not None else None
    if not clip:
        return Response(status_code=204)
    return Response(content=clip, media_type="audio/wav")


@router.post("/{session_id}/speech/ended", response_model=SessionView)
async def speech_ended(session: TriageSession = Depends(get_session)):
    """The client finished playing the clip; speech can be requested again."""
    session.playback_ended()
    return _view(session)


@router.post("/{session_id}/voice/listen", response_model=SessionView)
async def toggle_listening(session: TriageSession = Depends(get_session)):
    """Mic button. The response's `listening` tells the client whether to run its recognizer."""
    try:
        session.toggle_listening()
    except NaviCareError as e:
        raise to_http_error(e)
    return _view(session)


@router.post("/{session_id}/voice/transcript", response_model=SessionView)
async def voice_transcript(request: TranscriptRequest, session: TriageSession = Depends(get_session)):
    """Recognizer result from the client; handled exactly like a typed message."""
    try:
        await session.capture.relay_transcript(request.text)
    except NaviCareError as e:
        raise to_http_error(e)
    return _view(session)


@router.post("/{session_id}/voice/error", response_model=SessionView)
async def voice_error(request: CaptureErrorRequest, session: TriageSession = Depends(get_session)):
    session.capture.relay_error(request.error)
    return _view(session)
