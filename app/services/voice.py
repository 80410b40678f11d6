"""
Speech capture capability. Recognition runs in the browser; the recognizer's results are
relayed to the session through the /voice endpoints, so the session only sees the
start / stop / transcript / error contract.
"""
import inspect
import logging
from typing import Awaitable, Callable, Optional, Protocol, Union

logger = logging.getLogger(__name__)

TranscriptHandler = Callable[[str], Union[None, Awaitable[None]]]
ErrorHandler = Callable[[str], None]


class SpeechCapture(Protocol):
    on_transcript: Optional[TranscriptHandler]
    on_error: Optional[ErrorHandler]

    def start(self, locale: str) -> None: ...

    def stop(self) -> None: ...


class RelayedSpeechCapture:
    """SpeechCapture fed by transcripts that the client posts back."""

    def __init__(self):
        self.on_transcript: Optional[TranscriptHandler] = None
        self.on_error: Optional[ErrorHandler] = None
        self.active = False
        self.locale: Optional[str] = None

    def start(self, locale: str) -> None:
        self.active = True
        self.locale = locale

    def stop(self) -> None:
        self.active = False

    async def relay_transcript(self, text: str) -> None:
        """Deliver a final transcript. Ignored when capture is not running."""
        if not self.active:
            logger.debug("Dropping transcript received while capture is stopped")
            return
        self.active = False
        if self.on_transcript is None:
            return
        result = self.on_transcript(text)
        if inspect.isawaitable(result):
            await result

    def relay_error(self, error: str) -> None:
        logger.warning("Speech recognition error: %s", error)
        self.active = False
        if self.on_error is not None:
            self.on_error(error)
