"""
Speech output capability. WavSpeechOutput is the per-session playback context: it
decodes PCM into float channel buffers and renders them as a WAV clip that the speech
endpoint returns to the browser. The clip counts as playing until the browser reports
the end, or until its duration plus settings.speech_end_grace_seconds has passed.
"""
import time
from typing import Callable, Optional, Protocol

from app.config import settings
from app.core.audio import pcm_to_audio_buffer, render_wav


class SpeechOutput(Protocol):
    on_complete: Optional[Callable[[], None]]
    closed: bool
    expired: bool

    async def play(self, pcm: bytes) -> None: ...

    def finish(self) -> None: ...

    async def close(self) -> None: ...


class WavSpeechOutput:
    def __init__(
        self,
        sample_rate: Optional[int] = None,
        channels: Optional[int] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.sample_rate = sample_rate or settings.speech_sample_rate
        self.channels = channels or settings.speech_channels
        self.on_complete: Optional[Callable[[], None]] = None
        self.closed = False
        self.clip: Optional[bytes] = None
        self.ends_at: Optional[float] = None
        self._clock = clock

    async def play(self, pcm: bytes) -> None:
        if self.closed:
            raise RuntimeError("speech output is closed")
        buffers = pcm_to_audio_buffer(pcm, self.sample_rate, self.channels)
        self.clip = render_wav(buffers, self.sample_rate)
        duration = len(buffers[0]) / self.sample_rate
        self.ends_at = self._clock() + duration + settings.speech_end_grace_seconds

    @property
    def expired(self) -> bool:
        return self.ends_at is not None and self._clock() >= self.ends_at

    def finish(self) -> None:
        if self.ends_at is None:
            return
        self.ends_at = None
        if self.on_complete is not None:
            self.on_complete()

    async def close(self) -> None:
        self.closed = True
        self.clip = None
        self.ends_at = None
        self.on_complete = None
