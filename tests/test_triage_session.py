"""Session effect layer: gateway sequencing, request token, reset, voice."""
import asyncio

import numpy as np
import pytest

from app.core.errors import (
    GatewayError,
    InvalidInputError,
    InvalidTransitionError,
    PlaybackBusyError,
    RequestInFlightError,
)
from app.core.session import GREETING_FALLBACK, TECHNICAL_ISSUE_MESSAGE, Phase
from app.schemas.triage import TriageLevel
from app.services.gemini import CLARIFICATION_FALLBACK, GeminiGateway
from app.services.triage_session import SessionRegistry, TriageSession
from app.services.directory import SavedProviderDirectory

from conftest import RecordingOutput, complete, pcm_payload, provider, question


async def started(session):
    await session.start("English")
    return session


async def test_start_seeds_greeting(session, gateway):
    state = await session.start("French")
    assert state.phase == Phase.CONVERSING
    assert state.language == "French"
    assert [m.text for m in state.messages] == [gateway.greeting]
    assert gateway.calls == [("greeting", "French")]
    assert not state.loading


async def test_greeting_failure_uses_fallback(session, gateway):
    gateway.greeting = GatewayError("boom")
    state = await session.start("English")
    assert state.messages[0].text == GREETING_FALLBACK
    assert state.phase == Phase.CONVERSING


async def test_start_rejects_unknown_language(session, gateway):
    with pytest.raises(InvalidInputError):
        await session.start("Klingon")
    assert session.state.phase == Phase.CONSENT
    assert gateway.calls == []


async def test_start_twice_is_rejected(session):
    await started(session)
    with pytest.raises(InvalidTransitionError):
        await session.start("English")


async def test_next_question_keeps_conversing(session, gateway):
    await started(session)
    gateway.turns = [question("How long have symptoms lasted?")]
    state = await session.send("I have a headache")
    assert state.phase == Phase.CONVERSING
    assert [(m.role, m.text) for m in state.messages[1:]] == [
        ("user", "I have a headache"),
        ("model", "How long have symptoms lasted?"),
    ]


async def test_full_history_is_sent_in_order(session, gateway):
    await started(session)
    gateway.turns = [question("Q1"), question("Q2")]
    await session.send("first")
    await session.send("second")
    _, history, language = gateway.calls[-1]
    assert [m.text for m in history] == [gateway.greeting, "first", "Q1", "second"]
    assert language == "English"


@pytest.mark.parametrize("text", ["", "   ", "\n\t"])
async def test_blank_text_makes_no_message_and_no_call(session, gateway, text):
    await started(session)
    before = session.state
    with pytest.raises(InvalidInputError):
        await session.send(text)
    assert session.state is before
    assert gateway.count("triage") == 0


async def test_send_before_start_is_rejected(session, gateway):
    with pytest.raises(InvalidTransitionError):
        await session.send("hello")
    assert gateway.count("triage") == 0


async def test_self_care_resolves_without_provider_search(session, gateway):
    await started(session)
    gateway.turns = [complete(TriageLevel.SELF_CARE, None, "Rest and hydrate.")]
    state = await session.send("mild cold")
    assert state.phase == Phase.RESOLVED
    assert state.messages[-1].text == "Rest and hydrate."
    assert not state.can_search_providers
    with pytest.raises(InvalidTransitionError):
        await session.search_providers("90210")
    assert gateway.count("search") == 0


async def test_urgent_orthopedics_allows_search(session, gateway):
    await started(session)
    gateway.turns = [complete(TriageLevel.URGENT, "Orthopedics")]
    gateway.providers = [provider("Bay Ortho"), provider("Hill Ortho", "555-0101")]
    await session.send("twisted my ankle")
    state = await session.search_providers("90210", "Aetna")
    assert gateway.calls[-1] == ("search", "Orthopedics", "90210", "Aetna", "English")
    assert [p.name for p in state.providers] == ["Bay Ortho", "Hill Ortho"]
    assert not state.loading


async def test_search_without_zip_is_rejected(session, gateway):
    await started(session)
    gateway.turns = [complete(TriageLevel.ROUTINE, "Dermatology")]
    await session.send("rash")
    with pytest.raises(InvalidInputError):
        await session.search_providers("   ")
    assert gateway.count("search") == 0


async def test_search_omits_blank_insurance(session, gateway):
    await started(session)
    gateway.turns = [complete(TriageLevel.ROUTINE, "Dermatology")]
    await session.send("rash")
    await session.search_providers("10001", "  ")
    assert gateway.calls[-1][3] is None


async def test_emergency_stays_escalated(session, gateway):
    await started(session)
    gateway.turns = [complete(TriageLevel.EMERGENCY, "Cardiology", "Call 911 now.")]
    state = await session.send("crushing chest pain")
    assert state.emergency_escalated
    with pytest.raises(InvalidTransitionError):
        await session.search_providers("90210")
    session.set_language("Spanish")
    assert session.state.emergency_escalated
    state = await session.reset()
    assert not state.emergency_escalated


async def test_malformed_json_appends_clarification(session, gateway):
    class BadJsonChat:
        async def ainvoke(self, messages):
            from langchain_core.messages import AIMessage
            return AIMessage(content="{not json")

    session.gateway = GeminiGateway(api_key="test", chat_factory=lambda **kw: BadJsonChat())
    await started(session)
    state = await session.send("I feel dizzy")
    assert state.phase == Phase.CONVERSING
    assert state.messages[-1].text == CLARIFICATION_FALLBACK


async def test_gateway_error_appends_technical_issue(session, gateway):
    await started(session)
    gateway.turns = [GatewayError("503")]
    state = await session.send("fever")
    assert state.messages[-1].text == TECHNICAL_ISSUE_MESSAGE
    assert state.phase == Phase.CONVERSING
    assert state.can_send


async def test_second_send_while_in_flight_is_rejected(session, gateway):
    await started(session)
    gateway.turns = [question("Where does it hurt?")]
    gateway.gate = asyncio.Event()
    first = asyncio.create_task(session.send("stomach ache"))
    await asyncio.sleep(0)
    assert session.in_flight
    with pytest.raises(RequestInFlightError):
        await session.send("also nausea")
    gateway.gate.set()
    state = await first
    assert gateway.count("triage") == 1
    assert [m.text for m in state.messages[1:]] == ["stomach ache", "Where does it hurt?"]
    assert not session.in_flight


async def test_reset_cancels_in_flight_turn(session, gateway):
    await started(session)
    gateway.turns = [question("late answer")]
    gateway.gate = asyncio.Event()
    pending = asyncio.create_task(session.send("back pain"))
    await asyncio.sleep(0)
    state = await session.reset()
    assert state.phase == Phase.CONSENT
    await pending
    assert session.state.phase == Phase.CONSENT
    assert session.state.messages == ()
    assert not session.in_flight


async def test_reset_during_greeting_discards_it(session, gateway):
    gateway.gate = asyncio.Event()
    pending = asyncio.create_task(session.start("English"))
    await asyncio.sleep(0)
    await session.reset()
    await pending
    assert session.state.phase == Phase.CONSENT
    assert session.state.messages == ()
    # a fresh start works once the old call is gone
    gateway.gate = None
    state = await session.start("English")
    assert state.phase == Phase.CONVERSING


async def test_reset_releases_output_and_stops_capture(session, gateway, capture, outputs):
    await started(session)
    gateway.speech = pcm_payload([1, 2, 3])
    await session.speak("hello")
    session.toggle_listening()
    assert capture.active
    state = await session.reset()
    assert not capture.active
    assert outputs[0].closed
    assert session.output is None
    assert not state.listening and not state.speaking


async def test_speak_plays_decoded_pcm(session, gateway, outputs):
    await started(session)
    gateway.speech = pcm_payload([100, -100])
    output = await session.speak("How long?")
    assert output is outputs[0]
    assert output.played == [np.asarray([100, -100], dtype="<i2").tobytes()]
    assert not session.state.speaking
    assert gateway.calls[-1] == ("speech", "How long?", "Kore")


async def test_output_is_created_once(session, gateway, outputs):
    await started(session)
    gateway.speech = pcm_payload([1])
    await session.speak("a")
    await session.speak("b")
    assert len(outputs) == 1
    assert len(outputs[0].played) == 2


@pytest.mark.parametrize("speech", [None, "", GatewayError("tts down")])
async def test_missing_audio_skips_playback(session, gateway, outputs, speech):
    await started(session)
    gateway.speech = speech
    assert await session.speak("hello") is None
    assert outputs == []
    assert not session.state.speaking
    assert gateway.count("speech") == 1


async def test_playback_while_speaking_is_rejected(make_session, gateway):
    session = make_session(output_factory=lambda: RecordingOutput(finish_immediately=False))
    await started(session)
    gateway.speech = pcm_payload([1, 2])
    await session.speak("first")
    assert session.state.speaking
    with pytest.raises(PlaybackBusyError):
        await session.speak("second")
    assert gateway.count("speech") == 1


async def test_playback_ended_allows_next_clip(make_session, gateway):
    session = make_session(output_factory=lambda: RecordingOutput(finish_immediately=False))
    await started(session)
    gateway.speech = pcm_payload([1, 2])
    output = await session.speak("first")
    assert session.state.speaking
    state = session.playback_ended()
    assert not state.speaking
    await session.speak("second")
    assert len(output.played) == 2
    assert gateway.count("speech") == 2


async def test_expired_playback_is_not_busy(make_session, gateway):
    session = make_session(output_factory=lambda: RecordingOutput(finish_immediately=False))
    await started(session)
    gateway.speech = pcm_payload([1, 2])
    output = await session.speak("first")
    # the client never reported the end and the clip's time is up
    output.expired = True
    await session.speak("second")
    assert session.state.speaking
    assert gateway.count("speech") == 2


async def test_result_completed_before_reset_is_discarded(session, gateway):
    await started(session)
    gateway.turns = [question("Question from the old assessment")]
    pending = asyncio.create_task(session.send("old symptoms"))
    # two yields: the gateway call finishes, send() has not resumed yet
    await asyncio.sleep(0)
    await asyncio.sleep(0)
    assert gateway.count("triage") == 1
    await session.reset()
    state = await session.start("English")
    assert [m.text for m in state.messages] == [gateway.greeting]
    await pending
    assert session.state.phase == Phase.CONVERSING
    assert [m.text for m in session.state.messages] == [gateway.greeting]


async def test_completed_result_after_reset_leaves_consent(session, gateway):
    await started(session)
    gateway.turns = [question("Late question")]
    pending = asyncio.create_task(session.send("old symptoms"))
    await asyncio.sleep(0)
    await asyncio.sleep(0)
    await session.reset()
    state = await pending
    assert state.phase == Phase.CONSENT
    assert state.messages == ()
    assert not session.in_flight


async def test_listen_toggle_uses_language_locale(session, capture):
    await started(session)
    session.set_language("Japanese")
    state = session.toggle_listening()
    assert state.listening
    assert capture.active and capture.locale == "ja-JP"
    state = session.toggle_listening()
    assert not state.listening
    assert not capture.active


async def test_listening_requires_conversation(session):
    with pytest.raises(InvalidTransitionError):
        session.toggle_listening()


async def test_transcript_goes_through_send(session, gateway, capture):
    await started(session)
    gateway.turns = [question("Any fever?")]
    session.toggle_listening()
    await capture.relay_transcript("my throat hurts")
    assert not session.state.listening
    assert [m.text for m in session.state.messages[1:]] == ["my throat hurts", "Any fever?"]


async def test_transcript_respects_in_flight_guard(session, gateway, capture):
    await started(session)
    gateway.turns = [question("Q")]
    gateway.gate = asyncio.Event()
    pending = asyncio.create_task(session.send("typed"))
    await asyncio.sleep(0)
    session.toggle_listening()
    with pytest.raises(RequestInFlightError):
        await capture.relay_transcript("spoken")
    gateway.gate.set()
    await pending
    assert gateway.count("triage") == 1


async def test_capture_error_clears_listening(session, capture):
    await started(session)
    session.toggle_listening()
    capture.relay_error("no-speech")
    assert not session.state.listening


async def test_typed_send_stops_listening(session, gateway, capture):
    await started(session)
    gateway.turns = [question("Q")]
    session.toggle_listening()
    await session.send("typed instead")
    assert not capture.active
    assert not session.state.listening


async def test_referral_note(session, gateway):
    await started(session)
    with pytest.raises(InvalidTransitionError):
        session.referral_note()
    gateway.turns = [complete(TriageLevel.ROUTINE, "Dermatology", "Book a dermatology visit.")]
    await session.send("itchy rash for 2 weeks")
    note = session.referral_note()
    assert note.splitlines()[0] == "Triage level: ROUTINE"
    assert "Specialty: Dermatology" in note
    assert "Summary: Patient summary" in note


async def test_language_change_keeps_history(session, gateway):
    await started(session)
    gateway.turns = [question("Q1")]
    await session.send("hello")
    texts = [m.text for m in session.state.messages]
    session.set_language("Italian")
    assert [m.text for m in session.state.messages] == texts
    with pytest.raises(InvalidInputError):
        session.set_language("Elvish")


async def test_saved_providers_survive_reset(gateway, store):
    session = TriageSession(gateway, SavedProviderDirectory(store))
    session.toggle_saved(provider())
    await session.reset()
    assert [p.name for p in session.directory.providers] == ["Bay Ortho"]


class Clock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


async def test_registry_evicts_idle_sessions(gateway, store):
    clock = Clock()
    registry = SessionRegistry(gateway=gateway, store_factory=lambda owner: store, timeout_minutes=10, clock=clock)
    idle = registry.create("u1")
    await idle.start("English")
    idle.toggle_listening()
    directory = idle.directory
    clock.now = 5 * 60
    active = registry.create("u2")
    clock.now = 11 * 60

    assert registry.get(idle.id) is None
    assert registry.get(active.id) is active
    assert await registry.evict_idle() == [idle.id]
    assert len(registry) == 1
    assert not idle.capture.active
    assert idle.state.phase == Phase.CONSENT
    # the client's directory is rebuilt from the store on next use
    assert registry.directory_for("u1") is not directory


async def test_registry_lookup_keeps_session_alive(gateway, store):
    clock = Clock()
    registry = SessionRegistry(gateway=gateway, store_factory=lambda owner: store, timeout_minutes=10, clock=clock)
    session = registry.create("u1")
    for minute in (8, 16, 24):
        clock.now = minute * 60
        assert registry.get(session.id) is session
    assert await registry.evict_idle() == []


async def test_registry_remove_releases_session(gateway, store):
    registry = SessionRegistry(gateway=gateway, store_factory=lambda owner: store)
    session = registry.create("u1")
    await session.start("English")
    assert await registry.remove(session.id) is True
    assert registry.get(session.id) is None
    assert session.state.phase == Phase.CONSENT
    assert await registry.remove(session.id) is False
