# pitchmidi/live/audio_stream.py
from __future__ import annotations

import logging
import threading
from collections import deque
from dataclasses import dataclass
from typing import Deque, Optional

import numpy as np

from pitchmidi.audio.preprocess import SampleBuffer, resample_linear
from pitchmidi.constants import AUDIO_SAMPLE_RATE
from pitchmidi.errors import AudioSourceError, DecodeError

try:
    import sounddevice as sd
except Exception as e:
    sd = None
    _sd_import_error = e

logger = logging.getLogger(__name__)


@dataclass
class AudioStreamConfig:
    sample_rate: int = 44100
    channels: int = 1
    dtype: str = "float32"
    max_seconds: float = 600.0  # longest take kept


class CaptureBuffer:
    """
    Recorded take, appended to from the PortAudio callback thread.
    Once the take exceeds its limit, whole chunks are dropped from the front.
    """

    def __init__(self, sample_rate: int, max_seconds: float):
        self.sample_rate = int(sample_rate)
        self.limit = int(self.sample_rate * max_seconds)
        self._chunks: Deque[np.ndarray] = deque()
        self._held = 0
        self._lock = threading.Lock()

    def push(self, chunk: np.ndarray) -> None:
        data = np.array(chunk, dtype=np.float32).ravel()
        with self._lock:
            self._chunks.append(data)
            self._held += data.size
            while self._held > self.limit and self._chunks:
                self._held -= self._chunks.popleft().size

    def clear(self) -> None:
        with self._lock:
            self._chunks = deque()
            self._held = 0

    def seconds(self) -> float:
        with self._lock:
            held = self._held
        return held / float(self.sample_rate)

    def snapshot(self, target_sr: int = AUDIO_SAMPLE_RATE) -> SampleBuffer:
        with self._lock:
            chunks = tuple(self._chunks)
        if not chunks:
            raise DecodeError("nothing was recorded")
        take = resample_linear(np.concatenate(chunks), self.sample_rate, int(target_sr))
        return SampleBuffer(samples=take, sample_rate=int(target_sr))


def _device_rate(device: int, fallback: int) -> int:
    info = sd.query_devices(device, "input")
    return int(round(float(info.get("default_samplerate", fallback))))


class LiveAudioInput:
    """Record-then-transcribe microphone input."""

    def __init__(self, cfg: Optional[AudioStreamConfig] = None):
        self.cfg = cfg or AudioStreamConfig()
        self.capture = CaptureBuffer(self.cfg.sample_rate, self.cfg.max_seconds)
        self._stream = None

    @property
    def running(self) -> bool:
        return self._stream is not None

    def _on_audio(self, indata, frames, time_info, status) -> None:
        if status:
            logger.debug("input stream status: %s", status)
        block = indata.mean(axis=1) if indata.ndim == 2 else indata
        self.capture.push(block)

    def start(self, device: Optional[int] = None) -> None:
        if sd is None:
            raise AudioSourceError(f"sounddevice import failed: {_sd_import_error!r}")
        if self.running:
            return
        if device is not None:
            # some host APIs only open at the device's own rate
            self.cfg.sample_rate = _device_rate(device, self.cfg.sample_rate)
        self.capture = CaptureBuffer(self.cfg.sample_rate, self.cfg.max_seconds)

        try:
            stream = sd.InputStream(
                samplerate=self.cfg.sample_rate,
                channels=self.cfg.channels,
                dtype=self.cfg.dtype,
                callback=self._on_audio,
                device=device,
                blocksize=0,
            )
            stream.start()
        except sd.PortAudioError as e:
            raise AudioSourceError(f"could not open input device {device!r}: {e}") from e
        self._stream = stream
        logger.info("recording: device=%s sr=%d", device, self.cfg.sample_rate)

    def stop(self, target_sr: int = AUDIO_SAMPLE_RATE) -> SampleBuffer:
        stream, self._stream = self._stream, None
        if stream is not None:
            stream.stop()
            stream.close()
        take = self.capture.snapshot(target_sr)
        logger.info("recorded %.2fs", take.duration)
        return take


__all__ = ["AudioStreamConfig", "CaptureBuffer", "LiveAudioInput"]
