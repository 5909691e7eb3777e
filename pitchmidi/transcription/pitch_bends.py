from __future__ import annotations

from typing import Tuple

import numpy as np

from pitchmidi.constants import ANNOTATIONS_BASE_FREQUENCY, CONTOURS_BINS_PER_SEMITONE

N_BINS_TOLERANCE = 25  # contour bins searched either side of the nominal pitch
GAUSSIAN_STD = 5.0
FLAT_BEND_EPSILON = 1e-6


def _gaussian_window(n_bins_tolerance: int, std: float) -> np.ndarray:
    n = np.arange(2 * n_bins_tolerance + 1, dtype=np.float64) - n_bins_tolerance
    return np.exp(-0.5 * (n / std) ** 2)


_WINDOW = _gaussian_window(N_BINS_TOLERANCE, GAUSSIAN_STD)


def midi_pitch_to_contour_bin(pitch_midi: float) -> float:
    hz = 440.0 * 2.0 ** ((float(pitch_midi) - 69.0) / 12.0)
    return float(12.0 * CONTOURS_BINS_PER_SEMITONE * np.log2(hz / ANNOTATIONS_BASE_FREQUENCY))


def pitch_bend_curve(
    contours: np.ndarray,
    start: int,
    end: int,
    pitch_midi: int,
) -> Tuple[float, ...]:
    """
    Per-frame deviation (semitones) of the contour peak from the note's
    equal-tempered centre over frames [start, end).

    The contour rows are weighted by a gaussian centred on the nominal bin so
    a neighbouring note's energy does not pull the curve away. Rows with no
    energy count as 0. A curve that stays at 0 is returned as ().
    """
    n_frames = max(0, int(end) - int(start))
    if n_frames == 0 or contours.ndim != 2:
        return ()

    n_bins = contours.shape[1]
    freq_idx = int(round(midi_pitch_to_contour_bin(pitch_midi)))
    lo = max(freq_idx - N_BINS_TOLERANCE, 0)
    hi = min(n_bins, freq_idx + N_BINS_TOLERANCE + 1)
    if lo >= hi:
        return ()

    w0 = lo - (freq_idx - N_BINS_TOLERANCE)
    weights = _WINDOW[w0 : w0 + (hi - lo)]
    sub = np.asarray(contours[start:end, lo:hi], dtype=np.float64) * weights

    bends = np.zeros(n_frames, dtype=np.float64)
    if sub.shape[0] > 0:
        peak = np.argmax(sub, axis=1)
        row = (peak + lo - freq_idx) / float(CONTOURS_BINS_PER_SEMITONE)
        row[np.max(sub, axis=1) <= 0.0] = 0.0
        bends[: sub.shape[0]] = row

    if np.all(np.abs(bends) < FLAT_BEND_EPSILON):
        return ()
    return tuple(float(b) for b in bends)


__all__ = ["midi_pitch_to_contour_bin", "pitch_bend_curve", "N_BINS_TOLERANCE"]
