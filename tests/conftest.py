import asyncio
import base64
from typing import List, Optional

import numpy as np
import pytest

from app.db.store import MemoryKeyValueStore
from app.schemas.provider import Provider
from app.schemas.triage import TriageLevel, TriageResult, TriageTurn
from app.services.directory import SavedProviderDirectory
from app.services.triage_session import TriageSession
from app.services.voice import RelayedSpeechCapture


def question(text: Optional[str]) -> TriageTurn:
    return TriageTurn(is_triage_complete=False, next_question=text)


def complete(level: TriageLevel, specialty: Optional[str] = None, recommendation: str = "See a clinician.") -> TriageTurn:
    return TriageTurn(
        is_triage_complete=True,
        triage_result=TriageResult(
            level=level,
            recommendation=recommendation,
            specialty_needed=specialty,
            reason_for_referral="Reported symptoms",
            summary="Patient summary",
        ),
    )


def provider(name: str = "Bay Ortho", phone: str = "555-0100", **kw) -> Provider:
    return Provider(name=name, phone=phone, address=kw.pop("address", "1 Main St"), specialty=kw.pop("specialty", "Orthopedics"), **kw)


def pcm_payload(values: List[int]) -> str:
    """int16 samples → base64 text as the TTS model sends it."""
    return base64.b64encode(np.asarray(values, dtype="<i2").tobytes()).decode("ascii")


class FakeGateway:
    """Scripted reasoning gateway. Set `gate` to an asyncio.Event to hold calls open."""

    def __init__(self, turns=None, greeting="Hi, I'm NaviCare AI. How can I help?", providers=None, speech=None):
        self.turns = list(turns or [])
        self.greeting = greeting
        self.providers = list(providers or [])
        self.speech = speech
        self.calls = []
        self.gate: Optional[asyncio.Event] = None

    async def _wait(self):
        if self.gate is not None:
            await self.gate.wait()

    async def request_greeting(self, language):
        self.calls.append(("greeting", language))
        await self._wait()
        if isinstance(self.greeting, Exception):
            raise self.greeting
        return self.greeting

    async def advance_triage(self, history, language):
        self.calls.append(("triage", list(history), language))
        await self._wait()
        item = self.turns.pop(0)
        if isinstance(item, Exception):
            raise item
        return item

    async def search_providers(self, specialty, zip_code, insurance=None, language="English"):
        self.calls.append(("search", specialty, zip_code, insurance, language))
        await self._wait()
        return list(self.providers)

    async def synthesize_speech(self, text, voice=None):
        self.calls.append(("speech", text, voice))
        await self._wait()
        if isinstance(self.speech, Exception):
            raise self.speech
        return self.speech

    def count(self, name: str) -> int:
        return sum(1 for c in self.calls if c[0] == name)


class RecordingOutput:
    """SpeechOutput double. finish_immediately=False leaves playback running."""

    def __init__(self, finish_immediately: bool = True):
        self.on_complete = None
        self.closed = False
        self.played: List[bytes] = []
        self.finish_immediately = finish_immediately
        self.playing = False
        self.expired = False

    async def play(self, pcm: bytes) -> None:
        self.played.append(pcm)
        self.playing = True
        if self.finish_immediately:
            self.finish()

    def finish(self) -> None:
        if not self.playing:
            return
        self.playing = False
        if self.on_complete is not None:
            self.on_complete()

    async def close(self) -> None:
        self.closed = True


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def store():
    return MemoryKeyValueStore()


@pytest.fixture
def capture():
    return RelayedSpeechCapture()


@pytest.fixture
def outputs():
    return []


@pytest.fixture
def make_session(gateway, store, capture, outputs):
    def _make(output_factory=None):
        def factory():
            out = (output_factory or RecordingOutput)()
            outputs.append(out)
            return out
        return TriageSession(gateway, SavedProviderDirectory(store), capture=capture, output_factory=factory)
    return _make


@pytest.fixture
def session(make_session):
    return make_session()
