import numpy as np
import pytest

from pitchmidi.constants import N_FREQ_BINS_CONTOURS, N_FREQ_BINS_NOTES, MIDI_OFFSET
from pitchmidi.models.model_output import ModelOutput
from pitchmidi.transcription.pitch_bends import midi_pitch_to_contour_bin


class TensorBuilder:
    """Hand-built model output: zeros plus whatever notes a test paints in."""

    def __init__(self, n_frames: int = 120):
        self.frames = np.zeros((n_frames, N_FREQ_BINS_NOTES), dtype=np.float32)
        self.onsets = np.zeros_like(self.frames)
        self.contours = np.zeros((n_frames, N_FREQ_BINS_CONTOURS), dtype=np.float32)

    def note(self, pitch, start, end, level=0.8, onset=0.9, onsets_at=None):
        b = pitch - MIDI_OFFSET
        self.frames[start:end, b] = level
        for t in (onsets_at if onsets_at is not None else [start]):
            if onset:
                self.onsets[t, b] = onset
        return self

    def contour(self, pitch, start, end, offset_bins=0, level=0.9):
        c = int(round(midi_pitch_to_contour_bin(pitch))) + offset_bins
        self.contours[start:end, c] = level
        return self

    def build(self) -> ModelOutput:
        return ModelOutput(self.frames, self.onsets, self.contours)


@pytest.fixture
def tensors():
    return TensorBuilder


@pytest.fixture
def single_note_output():
    # one second of MIDI 60 starting on the first frame
    return TensorBuilder(120).note(60, 0, 86).build()
