from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import List, NamedTuple, Optional, Set

import numpy as np

from pitchmidi.constants import (
    ANNOT_N_FRAMES,
    AUDIO_N_SAMPLES,
    AUDIO_SAMPLE_RATE,
    FFT_HOP,
    FRAME_THRESHOLD_DEFAULT,
    MAX_PITCH_HZ_DEFAULT,
    MIDI_OFFSET,
    MIN_NOTE_LENGTH_FRAMES_DEFAULT,
    MIN_PITCH_HZ_DEFAULT,
    ONSET_THRESHOLD_DEFAULT,
    USE_MELODIA_TRICK_DEFAULT,
)
from pitchmidi.errors import EmptyInput, InvalidParameters
from pitchmidi.models.model_output import ModelOutput
from pitchmidi.models.note_event import NoteEvent, sort_notes
from pitchmidi.transcription.pitch_bends import pitch_bend_curve

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DecodingParameters:
    onset_threshold: float = ONSET_THRESHOLD_DEFAULT
    frame_threshold: float = FRAME_THRESHOLD_DEFAULT
    min_note_length_frames: int = MIN_NOTE_LENGTH_FRAMES_DEFAULT
    min_pitch_hz: float = MIN_PITCH_HZ_DEFAULT
    max_pitch_hz: float = MAX_PITCH_HZ_DEFAULT
    use_melodia_trick: bool = USE_MELODIA_TRICK_DEFAULT

    def validate(self) -> None:
        for name in ("onset_threshold", "frame_threshold"):
            v = float(getattr(self, name))
            if not 0.0 <= v <= 1.0:
                raise InvalidParameters(f"{name} must be within [0, 1], got {v!r}")
        if int(self.min_note_length_frames) < 1:
            raise InvalidParameters(
                f"min_note_length_frames must be >= 1, got {self.min_note_length_frames!r}"
            )
        if not float(self.min_pitch_hz) >= 0.0:
            raise InvalidParameters(f"min_pitch_hz must be >= 0, got {self.min_pitch_hz!r}")
        if not float(self.min_pitch_hz) < float(self.max_pitch_hz):
            raise InvalidParameters(
                f"min_pitch_hz ({self.min_pitch_hz}) must be below max_pitch_hz ({self.max_pitch_hz})"
            )


class NoteSpan(NamedTuple):
    start: int  # first frame
    end: int    # one past the last frame
    bin: int


# ---------- time / pitch helpers ----------

def frames_to_seconds(idx) -> np.ndarray:
    """
    Model frame index -> seconds.

    Each 2 s model window emits slightly more frames than its audio hop
    covers, so every completed window shifts later frames back by a fixed
    offset.
    """
    idx = np.asarray(idx, dtype=np.float64)
    original = idx * (FFT_HOP / AUDIO_SAMPLE_RATE)
    window_numbers = np.floor(idx / ANNOT_N_FRAMES)
    window_offset = (FFT_HOP / AUDIO_SAMPLE_RATE) * (ANNOT_N_FRAMES - (AUDIO_N_SAMPLES / FFT_HOP)) + 0.0018
    return original - window_offset * window_numbers


def midi_to_hz(pitch: int) -> float:
    return float(440.0 * 2.0 ** ((pitch - 69) / 12.0))


# ---------- onset candidates ----------

def infer_onsets(onsets: np.ndarray, frames: np.ndarray, n_diff: int = 2) -> np.ndarray:
    """
    Max-combine predicted onsets with onsets inferred from rises in frame
    energy, rescaled so the inferred ones never exceed the strongest
    predicted onset.
    """
    diffs = []
    for n in range(1, n_diff + 1):
        padded = np.concatenate([np.zeros((n, frames.shape[1]), dtype=frames.dtype), frames])
        diffs.append(padded[n:, :] - padded[:-n, :])
    frame_diff = np.min(diffs, axis=0)
    frame_diff[frame_diff < 0] = 0
    frame_diff[:n_diff, :] = 0

    peak = float(np.max(frame_diff)) if frame_diff.size else 0.0
    if peak <= 0.0:
        return onsets
    frame_diff = float(np.max(onsets)) * frame_diff / peak
    return np.maximum(onsets, frame_diff)


def onset_peaks(onsets: np.ndarray, onset_threshold: float) -> np.ndarray:
    """
    Boolean (n_frames, n_bins): local maxima in time above the threshold.
    A plateau counts once, at its first step; the first and last frames can
    be peaks.
    """
    prev = np.vstack([np.full((1, onsets.shape[1]), -np.inf), onsets[:-1]])
    nxt = np.vstack([onsets[1:], np.full((1, onsets.shape[1]), -np.inf)])
    return (onsets > prev) & (onsets >= nxt) & (onsets > onset_threshold)


def run_lengths(active: np.ndarray) -> np.ndarray:
    """run[t] = number of consecutive active steps starting at t (0 if inactive)."""
    n = active.shape[0]
    steps = np.arange(n)
    first_inactive = np.where(active, n, steps)
    ends = np.minimum.accumulate(first_inactive[::-1])[::-1]
    return ends - steps


# ---------- per-bin state machine ----------

class BinState(Enum):
    IDLE = "idle"
    ACTIVE = "active"


class BinTracker:
    """
    Note grouping for a single pitch bin.

    step() is given, for time step t, whether t is an onset candidate and how
    many consecutive steps from t stay at or above the frame threshold.
    It returns the span of a note it closed at t, if any.
    """

    def __init__(self, bin_index: int, min_note_length: int):
        self.bin = int(bin_index)
        self.min_len = int(min_note_length)
        self.state = BinState.IDLE
        self.start: Optional[int] = None

    def step(self, t: int, is_onset: bool, run_length: int) -> Optional[NoteSpan]:
        if self.state is BinState.ACTIVE:
            if run_length <= 0:
                closed = NoteSpan(self.start, t, self.bin)
                self.state = BinState.IDLE
                self.start = None
                return closed
            # re-onset: split only when both halves keep the minimum length
            if is_onset and t - self.start >= self.min_len and run_length >= self.min_len:
                closed = NoteSpan(self.start, t, self.bin)
                self.start = t
                return closed
            return None

        if is_onset and run_length >= self.min_len:
            self.state = BinState.ACTIVE
            self.start = t
        return None

    def finish(self, n_frames: int) -> Optional[NoteSpan]:
        if self.state is BinState.ACTIVE:
            closed = NoteSpan(self.start, n_frames, self.bin)
            self.state = BinState.IDLE
            self.start = None
            return closed
        return None


def _track_bin(bin_index: int, peaks: np.ndarray, run: np.ndarray, min_len: int) -> List[NoteSpan]:
    # Only onset steps and the first step after each run can change state.
    active = run > 0
    run_end = np.flatnonzero(~active[1:] & active[:-1]) + 1
    events = np.union1d(np.flatnonzero(peaks), run_end)

    tracker = BinTracker(bin_index, min_len)
    spans: List[NoteSpan] = []
    for t in events:
        t = int(t)
        closed = tracker.step(t, bool(peaks[t]), int(run[t]))
        if closed is not None:
            spans.append(closed)
    closed = tracker.finish(run.shape[0])
    if closed is not None:
        spans.append(closed)
    return spans


def _active_runs(run: np.ndarray) -> List[tuple]:
    active = run > 0
    starts = np.flatnonzero(active & np.concatenate([[True], ~active[:-1]]))
    return [(int(s), int(s + run[s])) for s in starts]


def _melodia_spans(
    frames: np.ndarray,
    runs_by_bin: dict,
    claimed: Set[tuple],
    min_len: int,
) -> List[NoteSpan]:
    """
    Recover notes that never got an onset: a whole activation run becomes a
    note when it is long enough, produced no onset-driven note, and its peak
    beats the adjacent bins at the peak frame.
    """
    n_bins = frames.shape[1]
    spans: List[NoteSpan] = []
    for b, runs in runs_by_bin.items():
        for a, e in runs:
            if e - a < min_len or (b, a) in claimed:
                continue
            p = a + int(np.argmax(frames[a:e, b]))
            val = frames[p, b]
            if b > 0 and not val > frames[p, b - 1]:
                continue
            if b < n_bins - 1 and not val >= frames[p, b + 1]:
                continue
            spans.append(NoteSpan(a, e, b))
    return spans


# ---------- entry point ----------

def _check_input(output: ModelOutput) -> None:
    for name in ("frames", "onsets", "contours"):
        arr = getattr(output, name)
        if arr.size == 0 or arr.shape[0] == 0:
            raise EmptyInput(f"{name} tensor is empty")
    if output.frames.ndim != 2 or output.onsets.ndim != 2 or output.contours.ndim != 2:
        raise InvalidParameters("frames, onsets and contours must be 2-D (time, bins)")
    if output.frames.shape != output.onsets.shape:
        raise InvalidParameters(
            f"frames {output.frames.shape} and onsets {output.onsets.shape} must have the same shape"
        )


def decode_notes(
    output: ModelOutput,
    params: Optional[DecodingParameters] = None,
    *,
    infer_onsets_from_frames: bool = True,
) -> List[NoteEvent]:
    """
    Turn cached model output into note events.

    Stages: onset/activation grouping per bin (plus the melodia pass when
    enabled), pitch-range filtering, then pitch-bend attachment. Returns
    notes sorted by (onset, pitch). Pure: same input, same output.
    """
    params = params or DecodingParameters()
    params.validate()
    _check_input(output)

    t0 = time.perf_counter()
    frames = np.asarray(output.frames, dtype=np.float64)
    onsets = np.asarray(output.onsets, dtype=np.float64)
    if infer_onsets_from_frames:
        onsets = infer_onsets(onsets, frames)

    min_len = int(params.min_note_length_frames)
    peaks = onset_peaks(onsets, float(params.onset_threshold))
    active = frames >= float(params.frame_threshold)

    spans: List[NoteSpan] = []
    runs_by_bin = {}
    claimed: Set[tuple] = set()
    for b in np.flatnonzero(active.any(axis=0)):
        b = int(b)
        run = run_lengths(active[:, b])
        bin_spans = _track_bin(b, peaks[:, b], run, min_len)
        spans.extend(bin_spans)
        runs_by_bin[b] = _active_runs(run)
        for s in bin_spans:
            # remember which run each onset-driven note came from
            claimed.add((b, _run_start(run, s.start)))

    if params.use_melodia_trick:
        spans.extend(_melodia_spans(frames, runs_by_bin, claimed, min_len))

    notes: List[NoteEvent] = []
    times = frames_to_seconds(np.arange(frames.shape[0] + 1))
    for s in spans:
        pitch = s.bin + MIDI_OFFSET
        hz = midi_to_hz(pitch)
        if hz < float(params.min_pitch_hz) or hz > float(params.max_pitch_hz):
            continue
        amplitude = float(np.clip(np.mean(frames[s.start:s.end, s.bin]), 0.0, 1.0))
        notes.append(
            NoteEvent(
                pitch=int(pitch),
                onset=float(times[s.start]),
                duration=float(times[s.end] - times[s.start]),
                amplitude=amplitude,
                pitch_bends=pitch_bend_curve(output.contours, s.start, s.end, pitch),
            )
        )

    notes = sort_notes(notes)
    logger.debug(
        "decoded %d notes from %d frames in %.1f ms (%s)",
        len(notes), frames.shape[0], (time.perf_counter() - t0) * 1000.0, params,
    )
    return notes


def _run_start(run: np.ndarray, t: int) -> int:
    while t > 0 and run[t - 1] > 0:
        t -= 1
    return t


__all__ = [
    "DecodingParameters",
    "BinState",
    "BinTracker",
    "NoteSpan",
    "decode_notes",
    "frames_to_seconds",
    "infer_onsets",
    "onset_peaks",
    "run_lengths",
]
