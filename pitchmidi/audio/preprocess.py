from __future__ import annotations

import io
import logging
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Union

import numpy as np
import soundfile as sf

from pitchmidi.constants import AUDIO_SAMPLE_RATE
from pitchmidi.errors import DecodeError, UnsupportedFormat

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SampleBuffer:
    """Mono float32 samples at a fixed rate."""

    samples: np.ndarray
    sample_rate: int = AUDIO_SAMPLE_RATE

    @property
    def duration(self) -> float:
        return float(self.samples.shape[0]) / float(self.sample_rate)


def decode_audio(raw: bytes, target_sr: int = AUDIO_SAMPLE_RATE) -> SampleBuffer:
    """
    Decode audio file bytes into a mono SampleBuffer at target_sr.

    libsndfile handles wav/flac/ogg (and mp3 on recent builds); anything it
    rejects is piped through ffmpeg.
    """
    if not raw:
        raise DecodeError("audio data is empty")

    try:
        audio, sr = sf.read(io.BytesIO(raw), dtype="float32", always_2d=False)
    except RuntimeError as e:  # soundfile.LibsndfileError
        logger.debug("libsndfile could not read input (%s); trying ffmpeg", e)
        audio, sr = _ffmpeg_decode(raw, target_sr), target_sr

    audio = to_mono(np.asarray(audio, dtype=np.float32))
    audio = np.nan_to_num(audio, nan=0.0, posinf=0.0, neginf=0.0).astype(np.float32)
    if audio.size == 0:
        raise DecodeError("audio decoded to zero samples")

    if int(sr) != int(target_sr):
        audio = resample_linear(audio, int(sr), int(target_sr))
    return SampleBuffer(samples=audio, sample_rate=int(target_sr))


def load_audio_file(path: Union[str, Path], target_sr: int = AUDIO_SAMPLE_RATE) -> SampleBuffer:
    p = Path(path)
    try:
        raw = p.read_bytes()
    except OSError as e:
        raise DecodeError(f"cannot read {p}: {e}") from e
    buf = decode_audio(raw, target_sr=target_sr)
    logger.info("loaded %s (%.2fs @ %d Hz)", p.name, buf.duration, buf.sample_rate)
    return buf


def _ffmpeg_decode(raw: bytes, target_sr: int) -> np.ndarray:
    cmd = [
        "ffmpeg", "-hide_banner", "-loglevel", "error",
        "-i", "pipe:0",
        "-f", "f32le",
        "-ac", "1",
        "-ar", str(target_sr),
        "pipe:1",
    ]
    try:
        proc = subprocess.run(cmd, input=raw, check=True, stdout=subprocess.PIPE, stderr=subprocess.PIPE)
    except FileNotFoundError as e:
        raise UnsupportedFormat(
            "Format not readable by libsndfile and ffmpeg was not found on PATH."
        ) from e
    except subprocess.CalledProcessError as e:
        msg = (e.stderr or b"").decode("utf-8", "replace").strip()
        if "Invalid data found" in msg or "could not find codec" in msg.lower():
            raise UnsupportedFormat(f"ffmpeg does not recognise the input: {msg}") from e
        raise DecodeError(f"ffmpeg failed decoding input: {msg}") from e
    return np.frombuffer(proc.stdout, dtype="<f4").astype(np.float32)


def to_mono(x: np.ndarray) -> np.ndarray:
    if x.ndim == 2:
        return np.mean(x, axis=1).astype(np.float32)
    return x


def resample_linear(x: np.ndarray, sr_in: int, sr_out: int) -> np.ndarray:
    x = np.asarray(x, dtype=np.float32)
    if sr_in == sr_out or x.size == 0:
        return x
    n_in = int(x.shape[0])
    n_out = int(round(n_in * (sr_out / sr_in)))
    if n_out <= 8:
        return x
    t_old = np.linspace(0.0, 1.0, num=n_in, endpoint=False)
    t_new = np.linspace(0.0, 1.0, num=n_out, endpoint=False)
    return np.interp(t_new, t_old, x).astype(np.float32, copy=False)


__all__ = ["SampleBuffer", "decode_audio", "load_audio_file", "resample_linear", "to_mono"]
