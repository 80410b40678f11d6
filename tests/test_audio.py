"""PCM16 decoding and WAV rendering for synthesized speech."""
import base64
import io
import wave

import numpy as np
import pytest

from app.core.audio import decode_base64_to_pcm, pcm_to_audio_buffer, render_wav


def pcm16_values(values: list[int]) -> bytes:
    """Pack explicit int16 sample values into little-endian bytes."""
    return np.asarray(values, dtype="<i2").tobytes()


def test_decode_base64_roundtrips_bytes():
    raw = bytes(range(256))
    assert decode_base64_to_pcm(base64.b64encode(raw).decode("ascii")) == raw


def test_mono_known_samples():
    (channel,) = pcm_to_audio_buffer(pcm16_values([0, 16384, -16384, 32767, -32768]))
    assert channel.dtype == np.float32
    assert channel.tolist() == [0.0, 0.5, -0.5, 32767 / 32768, -1.0]


def test_little_endian_interpretation():
    # 0x0100 little-endian is 1, not 256
    (channel,) = pcm_to_audio_buffer(b"\x01\x00\x00\x01")
    assert channel.tolist() == [1 / 32768, 256 / 32768]


def test_mono_sample_count_and_range():
    rng = np.random.default_rng(7)
    data = rng.integers(-32768, 32768, size=1000, dtype=np.int16).astype("<i2").tobytes()
    (channel,) = pcm_to_audio_buffer(data)
    assert channel.size == len(data) // 2
    assert channel.min() >= -1.0
    assert channel.max() < 1.0


def test_deterministic_output():
    data = pcm16_values([5, -7, 1200, -32768, 32767, 0])
    first = pcm_to_audio_buffer(data)[0]
    second = pcm_to_audio_buffer(data)[0]
    assert first.tobytes() == second.tobytes()


def test_stereo_deinterleaves_channels():
    left, right = pcm_to_audio_buffer(pcm16_values([1, -1, 2, -2, 3, -3]), channels=2)
    assert (left * 32768).tolist() == [1, 2, 3]
    assert (right * 32768).tolist() == [-1, -2, -3]


def test_incomplete_frame_is_dropped():
    left, right = pcm_to_audio_buffer(pcm16_values([1, 2, 3, 4, 5]), channels=2)
    assert left.size == 2
    assert right.size == 2


def test_trailing_odd_byte_is_dropped():
    (channel,) = pcm_to_audio_buffer(pcm16_values([100, 200]) + b"\x7f")
    assert channel.size == 2


def test_empty_input_gives_empty_channel():
    (channel,) = pcm_to_audio_buffer(b"")
    assert channel.size == 0


def test_invalid_channel_count():
    with pytest.raises(ValueError):
        pcm_to_audio_buffer(b"\x00\x00", channels=0)


def test_render_wav_header_and_samples():
    samples = [0, 1000, -1000, 32767, -32768]
    clip = render_wav(pcm_to_audio_buffer(pcm16_values(samples)), sample_rate=24000)
    with wave.open(io.BytesIO(clip), "rb") as w:
        assert w.getnchannels() == 1
        assert w.getsampwidth() == 2
        assert w.getframerate() == 24000
        frames = w.readframes(w.getnframes())
    assert np.frombuffer(frames, dtype="<i2").tolist() == samples


def test_render_wav_interleaves_stereo():
    data = pcm16_values([1, -1, 2, -2])
    clip = render_wav(pcm_to_audio_buffer(data, channels=2), sample_rate=16000)
    with wave.open(io.BytesIO(clip), "rb") as w:
        assert w.getnchannels() == 2
        assert w.readframes(w.getnframes()) == data
