from __future__ import annotations

import logging
import os
import tempfile
import threading
from typing import Dict, Iterable, Optional

import numpy as np
import soundfile as sf

from pitchmidi.errors import AudioSourceError
from pitchmidi.models.note_event import NoteEvent

try:
    import sounddevice as sd
except Exception as e:
    sd = None
    _sd_import_error = e

logger = logging.getLogger(__name__)


def midi_to_freq(midi: float) -> float:
    return float(440.0 * (2.0 ** ((midi - 69) / 12.0)))


def _karplus_strong(freq_hz: float, dur_s: float, sr: int, seed: Optional[int] = None) -> np.ndarray:
    """
    Simple plucked-string synthesis.
    Much closer to a real instrument than additive sines.
    """
    n = int(max(1, dur_s * sr))
    N = max(2, int(sr / max(40.0, float(freq_hz))))

    # lower notes damp a little faster
    if freq_hz < 110:
        decay = 0.992
    elif freq_hz < 220:
        decay = 0.994
    else:
        decay = 0.996

    rng = np.random.default_rng(seed)
    buf = (rng.random(N).astype(np.float32) * 2.0 - 1.0) * 0.6

    y = np.zeros(n, dtype=np.float32)
    idx = 0
    for i in range(n):
        y[i] = buf[idx]
        nxt = (idx + 1) % N
        buf[idx] = decay * 0.5 * (buf[idx] + buf[nxt])
        idx = nxt

    a = int(0.004 * sr)  # 4ms attack
    if a > 1 and y.size >= a:
        y[:a] *= np.linspace(0.0, 1.0, a, dtype=np.float32)

    r = int(0.020 * sr)  # 20ms release
    if r > 1 and y.size >= r:
        y[-r:] *= np.linspace(1.0, 0.0, r, dtype=np.float32)

    return y


def render_note(note: NoteEvent, sr: int, seed: Optional[int] = None) -> np.ndarray:
    """Pluck at the note's pitch (first bend applied), scaled by amplitude."""
    bend = note.pitch_bends[0] if note.pitch_bends else 0.0
    dur = max(float(note.duration), 0.06)
    wave = _karplus_strong(midi_to_freq(note.pitch + bend), dur_s=dur * 1.05, sr=sr, seed=seed)
    return wave * float(max(0.05, min(1.0, note.amplitude)))


def synth_notes_to_wav_path(
    notes: Iterable[NoteEvent],
    *,
    sr: int = 44100,
    gain: float = 0.35,
    seed: Optional[int] = None,
) -> Optional[str]:
    notes = list(notes)
    if not notes:
        return None

    end_t = max(n.offset for n in notes)
    if end_t <= 0:
        return None

    y = np.zeros((int(end_t * sr) + 1,), dtype=np.float32)
    for n in notes:
        start = int(float(n.onset) * sr)
        if start >= y.shape[0]:
            continue
        wave = render_note(n, sr, seed=seed)
        end = min(start + wave.shape[0], y.shape[0])
        y[start:end] += wave[: (end - start)]

    peak = float(np.max(np.abs(y))) if y.size else 1.0
    if peak > 1e-9:
        y = (float(gain) / peak) * y
    y = np.clip(y, -1.0, 1.0).astype(np.float32, copy=False)

    fd, path = tempfile.mkstemp(suffix=".wav")
    os.close(fd)
    sf.write(path, y, sr)
    return path


class VoiceMixer:
    """
    Polyphonic preview output driven by the playback scheduler:
    note_on() starts a plucked voice, note_off() fades it out.
    Voices are summed in a sounddevice output callback.
    """

    def __init__(self, sample_rate: int = 44100, gain: float = 0.25):
        self.sample_rate = int(sample_rate)
        self.gain = float(gain)
        self._voices: Dict[int, list] = {}  # id(note) -> [wave, cursor]
        self._lock = threading.Lock()
        self._stream = None

    def open(self, device: Optional[int] = None) -> None:
        if sd is None:
            raise AudioSourceError(f"sounddevice import failed: {_sd_import_error!r}")
        if self._stream is not None:
            return
        self._stream = sd.OutputStream(
            samplerate=self.sample_rate,
            channels=1,
            dtype="float32",
            callback=self._callback,
            device=device,
        )
        self._stream.start()

    def close(self) -> None:
        try:
            if self._stream is not None:
                self._stream.stop()
                self._stream.close()
        finally:
            self._stream = None
            self.all_off()

    def note_on(self, note: NoteEvent) -> None:
        wave = render_note(note, self.sample_rate)
        with self._lock:
            self._voices[id(note)] = [wave, 0]

    def note_off(self, note: NoteEvent) -> None:
        r = int(0.02 * self.sample_rate)
        with self._lock:
            voice = self._voices.get(id(note))
            if voice is None:
                return
            wave, cur = voice
            tail = wave[cur:cur + r].copy()
            tail *= np.linspace(1.0, 0.0, tail.shape[0], dtype=np.float32)
            self._voices[id(note)] = [tail, 0]

    def all_off(self) -> None:
        with self._lock:
            self._voices.clear()

    def mix(self, frames: int) -> np.ndarray:
        out = np.zeros(frames, dtype=np.float32)
        with self._lock:
            done = []
            for key, voice in self._voices.items():
                wave, cur = voice
                chunk = wave[cur:cur + frames]
                out[: chunk.shape[0]] += chunk
                voice[1] = cur + chunk.shape[0]
                if voice[1] >= wave.shape[0]:
                    done.append(key)
            for key in done:
                del self._voices[key]
        return np.clip(out * self.gain, -1.0, 1.0)

    def _callback(self, outdata, frames, time_info, status):
        if status:
            logger.debug("output stream status: %s", status)
        outdata[:, 0] = self.mix(frames)


__all__ = ["VoiceMixer", "midi_to_freq", "render_note", "synth_notes_to_wav_path"]
