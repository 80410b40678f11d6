"""
Audio codec for synthesized speech.
The TTS model returns base64-encoded 16-bit little-endian PCM (24 kHz mono).
decode → per-channel float buffers → WAV clip that the browser can play.
"""
import base64
import io
import wave
from typing import List

import numpy as np

DEFAULT_SAMPLE_RATE = 24000
PCM16_SCALE = 32768.0


def decode_base64_to_pcm(payload: str) -> bytes:
    """Standard-alphabet base64 → raw PCM bytes."""
    return base64.b64decode(payload)


def pcm_to_audio_buffer(data: bytes, sample_rate: int = DEFAULT_SAMPLE_RATE, channels: int = 1) -> List[np.ndarray]:
    """
    Reinterpret bytes as signed 16-bit LE samples and split them into one float32
    array per channel, each sample divided by 32768 (range [-1.0, 1.0)).
    A trailing odd byte and samples that do not complete a frame are dropped.
    sample_rate is not needed for the conversion itself; it travels with the buffer
    so callers can hand both to render_wav.
    """
    if channels < 1:
        raise ValueError("channels must be >= 1")
    if sample_rate <= 0:
        raise ValueError("sample_rate must be positive")
    usable = len(data) - (len(data) % 2)
    samples = np.frombuffer(data[:usable], dtype="<i2")
    frame_count = samples.size // channels
    frames = samples[: frame_count * channels].reshape(frame_count, channels)
    return [(frames[:, ch].astype(np.float32) / np.float32(PCM16_SCALE)) for ch in range(channels)]


def render_wav(buffers: List[np.ndarray], sample_rate: int = DEFAULT_SAMPLE_RATE) -> bytes:
    """Interleave float channel buffers back into 16-bit PCM inside a WAV container."""
    if not buffers:
        raise ValueError("at least one channel is required")
    stacked = np.stack(buffers, axis=1)
    pcm = np.clip(np.round(stacked * PCM16_SCALE), -32768, 32767).astype("<i2")
    out = io.BytesIO()
    with wave.open(out, "wb") as w:
        w.setnchannels(len(buffers))
        w.setsampwidth(2)
        w.setframerate(sample_rate)
        w.writeframes(pcm.tobytes())
    return out.getvalue()
