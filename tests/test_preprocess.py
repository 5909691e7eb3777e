import io

import numpy as np
import pytest
import soundfile as sf

from pitchmidi.audio.preprocess import SampleBuffer, decode_audio, load_audio_file, resample_linear, to_mono
from pitchmidi.errors import DecodeError
from pitchmidi.live.audio_stream import CaptureBuffer


def _wav_bytes(data, sr):
    buf = io.BytesIO()
    sf.write(buf, data, sr, format="WAV", subtype="FLOAT")
    return buf.getvalue()


def _sine(sr, seconds, freq=440.0):
    t = np.arange(int(sr * seconds)) / sr
    return (0.5 * np.sin(2 * np.pi * freq * t)).astype(np.float32)


def test_decode_wav_at_model_rate():
    x = _sine(22050, 0.5)
    buf = decode_audio(_wav_bytes(x, 22050))

    assert isinstance(buf, SampleBuffer)
    assert buf.sample_rate == 22050
    assert buf.samples.shape == x.shape
    assert np.allclose(buf.samples, x, atol=1e-6)


def test_decode_downmixes_and_resamples():
    x = _sine(44100, 1.0)
    stereo = np.stack([x, x], axis=1)
    buf = decode_audio(_wav_bytes(stereo, 44100))

    assert buf.samples.ndim == 1
    assert buf.duration == pytest.approx(1.0, abs=1e-3)


def test_empty_bytes_rejected():
    with pytest.raises(DecodeError):
        decode_audio(b"")


def test_garbage_bytes_rejected():
    with pytest.raises(DecodeError):
        decode_audio(b"this is not audio " * 64)


def test_missing_file_rejected(tmp_path):
    with pytest.raises(DecodeError):
        load_audio_file(tmp_path / "nope.wav")


def test_load_audio_file(tmp_path):
    p = tmp_path / "tone.wav"
    sf.write(str(p), _sine(16000, 0.25), 16000)
    buf = load_audio_file(p)
    assert buf.sample_rate == 22050
    assert buf.duration == pytest.approx(0.25, abs=1e-3)


def test_to_mono_and_resample():
    assert to_mono(np.ones((10, 2), dtype=np.float32)).shape == (10,)
    assert resample_linear(np.zeros(1000), 44100, 22050).shape == (500,)
    assert resample_linear(np.zeros(1000), 22050, 22050).shape == (1000,)


def test_capture_buffer_snapshot():
    cap = CaptureBuffer(sample_rate=44100, max_seconds=10)
    cap.push(np.ones(22050, dtype=np.float32))
    cap.push(np.ones((22050, 1), dtype=np.float32))

    assert cap.seconds() == pytest.approx(1.0)
    snap = cap.snapshot(22050)
    assert snap.sample_rate == 22050
    assert snap.samples.shape == (22050,)


def test_capture_buffer_drops_oldest_past_limit():
    cap = CaptureBuffer(sample_rate=1000, max_seconds=1)
    for _ in range(5):
        cap.push(np.zeros(400, dtype=np.float32))
    assert cap.seconds() <= 1.0


def test_empty_capture_has_nothing_to_snapshot():
    cap = CaptureBuffer(sample_rate=44100, max_seconds=1)
    with pytest.raises(DecodeError):
        cap.snapshot()
