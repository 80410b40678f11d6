"""
Session effect layer: runs gateway calls, voice capture and speech playback around the
pure reducer in app.core.session.

At most one gateway call is outstanding per session. It is held in a single-slot
request token; a second call while the slot is taken is rejected, never queued.
reset() cancels the token, stops capture and closes the speech output before the
state goes back to consent, and any result that arrives afterwards is discarded.
"""
import asyncio
import logging
import time
import uuid
from typing import Awaitable, Callable, Dict, List, Optional, Protocol, Sequence

from app.config import settings
from app.core.audio import decode_base64_to_pcm
from app.core.errors import (
    GatewayError,
    InvalidInputError,
    InvalidTransitionError,
    PlaybackBusyError,
    RequestInFlightError,
)
from app.core.locales import DEFAULT_LANGUAGE, find_language
from app.core.session import (
    GREETING_FALLBACK,
    GreetingReceived,
    LanguageChanged,
    ListeningChanged,
    Phase,
    ProviderSearchStarted,
    ProvidersFound,
    Reset,
    SessionState,
    SpeakingChanged,
    Started,
    TriageAdvanced,
    TurnFailed,
    UserTurnSubmitted,
    reduce,
)
from app.db.store import KeyValueStore
from app.schemas.provider import Provider
from app.schemas.triage import Message, TriageTurn
from app.services.directory import SavedProviderDirectory
from app.services.playback import SpeechOutput, WavSpeechOutput
from app.services.voice import RelayedSpeechCapture, SpeechCapture

logger = logging.getLogger(__name__)


class ReasoningGateway(Protocol):
    async def request_greeting(self, language: str) -> str: ...

    async def advance_triage(self, history: Sequence[Message], language: str) -> TriageTurn: ...

    async def search_providers(
        self, specialty: str, zip_code: str, insurance: Optional[str] = None, language: str = DEFAULT_LANGUAGE
    ) -> List[Provider]: ...

    async def synthesize_speech(self, text: str, voice: Optional[str] = None) -> Optional[str]: ...


class _Superseded(Exception):
    """The call's token was cancelled by reset(); its result no longer applies."""


class RequestToken:
    def __init__(self, task: "asyncio.Future"):
        self.task = task
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True
        self.task.cancel()


class TriageSession:
    def __init__(
        self,
        gateway: ReasoningGateway,
        directory: SavedProviderDirectory,
        capture: Optional[SpeechCapture] = None,
        output_factory: Callable[[], SpeechOutput] = WavSpeechOutput,
        session_id: Optional[str] = None,
        owner: Optional[str] = None,
    ):
        self.id = session_id or str(uuid.uuid4())
        self.owner = owner
        self.state = SessionState()
        self.gateway = gateway
        self.directory = directory
        self.capture = capture or RelayedSpeechCapture()
        self.capture.on_transcript = self.handle_transcript
        self.capture.on_error = self.handle_capture_error
        self._output_factory = output_factory
        self._output: Optional[SpeechOutput] = None
        self._token: Optional[RequestToken] = None
        self._generation = 0

    # ─── plumbing ───────────────────────────────────────────────

    def _dispatch(self, event) -> SessionState:
        self.state = reduce(self.state, event)
        return self.state

    @property
    def in_flight(self) -> bool:
        return self._token is not None

    @property
    def output(self) -> Optional[SpeechOutput]:
        return self._output

    def _ensure_idle(self) -> None:
        if self._token is not None or self.state.loading:
            raise RequestInFlightError("a request is already in progress for this session")

    async def _call(self, make_call: Callable[[], Awaitable]):
        """Run one gateway call under the request token."""
        if self._token is not None:
            raise RequestInFlightError("a request is already in progress for this session")
        token = RequestToken(asyncio.ensure_future(make_call()))
        self._token = token
        try:
            result = await token.task
            # the task may finish before reset() cancels it; the result is still stale
            if token.cancelled:
                raise _Superseded()
            return result
        except asyncio.CancelledError:
            if token.cancelled:
                raise _Superseded() from None
            raise
        finally:
            if self._token is token:
                self._token = None

    # ─── conversation ───────────────────────────────────────────

    def _language(self, language: Optional[str]) -> str:
        code = language or self.state.language
        if find_language(code) is None:
            raise InvalidInputError(f"unsupported language: {code}")
        return code

    async def start(self, language: Optional[str] = None) -> SessionState:
        """Consent accepted: move to conversing and seed the history with a greeting."""
        language = self._language(language)
        if self.state.phase != Phase.CONSENT:
            raise InvalidTransitionError("the assessment has already started")
        self._ensure_idle()
        self._dispatch(Started(language))
        try:
            text = await self._call(lambda: self.gateway.request_greeting(language))
        except _Superseded:
            return self.state
        except Exception as e:
            logger.warning("Greeting failed, using fallback: %s", e)
            text = GREETING_FALLBACK
        return self._dispatch(GreetingReceived(text))

    async def send(self, text: str) -> SessionState:
        """One user turn: append it, ask the gateway for the next step, apply the answer."""
        if not (text or "").strip():
            raise InvalidInputError("message is empty")
        if self.state.phase != Phase.CONVERSING:
            raise InvalidTransitionError("the conversation is not accepting messages")
        self._ensure_idle()
        if self.state.listening:
            self.capture.stop()
            self._dispatch(ListeningChanged(False))

        self._dispatch(UserTurnSubmitted(text))
        history = self.state.messages
        language = self.state.language
        try:
            turn = await self._call(lambda: self.gateway.advance_triage(history, language))
        except _Superseded:
            return self.state
        except GatewayError as e:
            logger.warning("Triage turn failed: %s", e)
            return self._dispatch(TurnFailed())
        except Exception as e:
            logger.exception("Unexpected triage failure: %s", e)
            return self._dispatch(TurnFailed())
        return self._dispatch(TriageAdvanced(turn))

    async def search_providers(self, zip_code: str, insurance: Optional[str] = None) -> SessionState:
        """Directory search for the resolved specialty. Re-running replaces earlier results."""
        if not self.state.can_search_providers:
            raise InvalidTransitionError("provider search is not available for this assessment")
        if not (zip_code or "").strip():
            raise InvalidInputError("a ZIP code is required")
        self._ensure_idle()

        self._dispatch(ProviderSearchStarted(zip_code=zip_code, insurance=insurance or ""))
        specialty = self.state.triage_result.specialty_needed
        zip_code = self.state.zip_code
        insurance = self.state.insurance or None
        language = self.state.language
        try:
            found = await self._call(
                lambda: self.gateway.search_providers(specialty, zip_code, insurance, language)
            )
        except _Superseded:
            return self.state
        except Exception as e:
            logger.exception("Provider search failed: %s", e)
            found = []
        return self._dispatch(ProvidersFound(tuple(found)))

    def set_language(self, language: str) -> SessionState:
        """Switch language for future turns; existing history stays as it is."""
        return self._dispatch(LanguageChanged(self._language(language)))

    def referral_note(self) -> str:
        """Plain-text referral the user can copy for a clinician."""
        result = self.state.triage_result
        if result is None:
            raise InvalidTransitionError("no triage result yet")
        lines = [f"Triage level: {result.level.value}"]
        if result.specialty_needed:
            lines.append(f"Specialty: {result.specialty_needed}")
        if result.reason_for_referral:
            lines.append(f"Reason for referral: {result.reason_for_referral}")
        if result.summary:
            lines.append(f"Summary: {result.summary}")
        if result.recommendation:
            lines.append(f"Next steps: {result.recommendation}")
        return "\n".join(lines)

    # ─── saved providers ────────────────────────────────────────

    def toggle_saved(self, provider: Provider) -> List[Provider]:
        return self.directory.toggle(provider)

    # ─── voice ──────────────────────────────────────────────────

    def toggle_listening(self) -> SessionState:
        """Mic button: stop capture if running, otherwise start it in the session language."""
        if self.state.listening:
            self.capture.stop()
            return self._dispatch(ListeningChanged(False))
        if self.state.phase != Phase.CONVERSING:
            raise InvalidTransitionError("voice input is only available during the conversation")
        lang = find_language(self.state.language)
        self.capture.start(lang.locale if lang else "en-US")
        return self._dispatch(ListeningChanged(True))

    async def handle_transcript(self, text: str) -> SessionState:
        """A recognized utterance goes through send() like typed text."""
        if self.state.listening:
            self._dispatch(ListeningChanged(False))
        return await self.send(text)

    def handle_capture_error(self, error: str) -> None:
        if self.state.listening:
            self._dispatch(ListeningChanged(False))

    def _playback_complete(self) -> None:
        if self.state.speaking:
            self._dispatch(SpeakingChanged(False))

    def playback_ended(self) -> SessionState:
        """The client finished playing the current clip."""
        if self._output is not None:
            self._output.finish()
        return self.state

    async def speak(self, text: str) -> Optional[SpeechOutput]:
        """
        Read text aloud. Rejected while already speaking; speaking stays set until the
        client reports the end of playback or the clip's play time has run out. Returns
        the output that holds the clip, or None when synthesis gave nothing back (no retry).

        Synthesis does not take the request token, so it can run alongside a pending
        triage turn. Its own guards are the speaking flag and the reset generation.
        """
        if not (text or "").strip():
            raise InvalidInputError("nothing to read aloud")
        if self.state.speaking:
            if self._output is None or not self._output.expired:
                raise PlaybackBusyError("speech is already playing")
            self._output.finish()
        generation = self._generation
        lang = find_language(self.state.language)
        self._dispatch(SpeakingChanged(True))
        try:
            payload = await self.gateway.synthesize_speech(text, lang.voice if lang else None)
            if generation != self._generation:
                return None
            if not payload:
                self._dispatch(SpeakingChanged(False))
                return None
            if self._output is None or self._output.closed:
                self._output = self._output_factory()
            output = self._output
            output.on_complete = self._playback_complete
            await output.play(decode_base64_to_pcm(payload))
            return output
        except Exception as e:
            logger.warning("Speech synthesis failed: %s", e)
            if generation == self._generation and self.state.speaking:
                self._dispatch(SpeakingChanged(False))
            return None

    # ─── reset ──────────────────────────────────────────────────

    async def reset(self) -> SessionState:
        """New assessment: cancel the pending call, stop the mic, release audio, back to consent."""
        self._generation += 1
        if self._token is not None:
            self._token.cancel()
            self._token = None
        self.capture.stop()
        if self._output is not None:
            output, self._output = self._output, None
            await output.close()
        return self._dispatch(Reset())


class SessionRegistry:
    """
    Live sessions and saved-provider directories, in process memory.

    Every lookup refreshes a session's last activity. Sessions idle for longer than
    settings.session_timeout_minutes are treated as gone and released by evict_idle(),
    which also drops directories whose client has no live session left. Directories
    are rebuilt from the store on next use.
    """

    def __init__(
        self,
        gateway: Optional[ReasoningGateway] = None,
        store_factory: Optional[Callable[[str], KeyValueStore]] = None,
        timeout_minutes: Optional[int] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        if gateway is None:
            from app.services.gemini import GeminiGateway
            gateway = GeminiGateway()
        if store_factory is None:
            from app.db.store import SqlKeyValueStore
            store_factory = SqlKeyValueStore
        self.gateway = gateway
        self._store_factory = store_factory
        minutes = settings.session_timeout_minutes if timeout_minutes is None else timeout_minutes
        self._timeout = minutes * 60
        self._clock = clock
        self._sessions: Dict[str, TriageSession] = {}
        self._last_activity: Dict[str, float] = {}
        self._directories: Dict[str, SavedProviderDirectory] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    def directory_for(self, owner: str) -> SavedProviderDirectory:
        """One directory per client, loaded from the store on first use."""
        if owner not in self._directories:
            self._directories[owner] = SavedProviderDirectory(self._store_factory(owner))
        return self._directories[owner]

    def create(self, owner: str) -> TriageSession:
        session = TriageSession(self.gateway, self.directory_for(owner), owner=owner)
        self._sessions[session.id] = session
        self._last_activity[session.id] = self._clock()
        return session

    def _idle(self, session_id: str) -> bool:
        return self._clock() - self._last_activity[session_id] >= self._timeout

    def get(self, session_id: str) -> Optional[TriageSession]:
        session = self._sessions.get(session_id)
        if session is None or self._idle(session_id):
            return None
        self._last_activity[session_id] = self._clock()
        return session

    async def remove(self, session_id: str) -> bool:
        """Release a session: pending call cancelled, capture stopped, audio closed."""
        session = self._sessions.pop(session_id, None)
        self._last_activity.pop(session_id, None)
        if session is None:
            return False
        await session.reset()
        return True

    async def evict_idle(self) -> List[str]:
        expired = [sid for sid in self._sessions if self._idle(sid)]
        for sid in expired:
            await self.remove(sid)
        if expired:
            logger.info("Evicted %d idle session(s)", len(expired))
        owners = {s.owner for s in self._sessions.values()}
        for owner in [o for o in self._directories if o not in owners]:
            del self._directories[owner]
        return expired
