import numpy as np
import pytest

from pitchmidi.constants import FFT_HOP, AUDIO_SAMPLE_RATE, ANNOT_N_FRAMES
from pitchmidi.errors import EmptyInput, InvalidParameters, NoteDecodingError
from pitchmidi.models.model_output import ModelOutput
from pitchmidi.transcription.note_decoder import (
    BinState,
    BinTracker,
    DecodingParameters,
    NoteSpan,
    decode_notes,
    frames_to_seconds,
    infer_onsets,
    onset_peaks,
    run_lengths,
)

FRAME_S = FFT_HOP / AUDIO_SAMPLE_RATE


def test_single_sustained_tone(single_note_output):
    notes = decode_notes(single_note_output, DecodingParameters())

    assert len(notes) == 1
    n = notes[0]
    assert n.pitch == 60
    assert n.onset == 0.0
    assert n.duration == pytest.approx(1.0, abs=0.01)
    assert n.pitch_bends == ()
    assert n.amplitude == pytest.approx(0.8, abs=1e-6)


def test_note_timing_follows_frames(tensors):
    out = tensors(100).note(60, 10, 40).build()
    (n,) = decode_notes(out)

    assert n.onset == pytest.approx(10 * FRAME_S)
    assert n.duration == pytest.approx(30 * FRAME_S)


def test_two_concurrent_pitches(tensors):
    out = tensors(120).note(60, 0, 86).note(64, 0, 86).build()
    notes = decode_notes(out)

    assert [n.pitch for n in notes] == [60, 64]
    assert notes[0].onset == notes[1].onset == 0.0
    assert notes[0].duration == pytest.approx(notes[1].duration)


def test_short_note_is_dropped(tensors):
    out = tensors(100).note(60, 10, 15).build()
    assert decode_notes(out) == []
    assert decode_notes(out, DecodingParameters(min_note_length_frames=5))[0].pitch == 60


def test_output_sorted_by_onset_then_pitch(tensors):
    out = (
        tensors(120)
        .note(67, 50, 80)
        .note(64, 10, 40)
        .note(60, 10, 40)
        .build()
    )
    notes = decode_notes(out)

    assert [(n.pitch, round(n.onset, 4)) for n in notes] == [
        (60, round(10 * FRAME_S, 4)),
        (64, round(10 * FRAME_S, 4)),
        (67, round(50 * FRAME_S, 4)),
    ]


def test_decoding_is_idempotent(tensors):
    rng = np.random.default_rng(7)
    b = tensors(200)
    b.frames[:] = rng.random(b.frames.shape) ** 4
    b.onsets[:] = rng.random(b.onsets.shape) ** 6
    out = b.build()
    params = DecodingParameters(onset_threshold=0.4, frame_threshold=0.3, min_note_length_frames=3)

    assert decode_notes(out, params) == decode_notes(out, params)


def test_higher_onset_threshold_never_adds_notes(tensors):
    rng = np.random.default_rng(11)
    b = tensors(300)
    b.frames[:] = rng.random(b.frames.shape) ** 3
    b.onsets[:] = rng.random(b.onsets.shape) ** 5
    out = b.build()

    counts = [
        len(decode_notes(out, DecodingParameters(onset_threshold=t, frame_threshold=0.25, min_note_length_frames=3)))
        for t in (0.05, 0.2, 0.4, 0.6, 0.8, 0.95)
    ]
    assert counts == sorted(counts, reverse=True)


def test_reonset_splits_when_both_halves_are_long(tensors):
    out = tensors(100).note(60, 10, 50, onsets_at=[10, 30]).build()
    notes = decode_notes(out)

    assert len(notes) == 2
    assert notes[0].offset == pytest.approx(notes[1].onset)


def test_reonset_too_close_is_absorbed(tensors):
    out = tensors(100).note(60, 10, 50, onsets_at=[10, 15]).build()
    (n,) = decode_notes(out)
    assert n.duration == pytest.approx(40 * FRAME_S)


def test_melodia_recovers_notes_without_onsets(tensors):
    out = tensors(100).note(60, 10, 40, onset=0.0).build()

    (n,) = decode_notes(out, DecodingParameters(use_melodia_trick=True))
    assert n.pitch == 60
    assert decode_notes(out, DecodingParameters(use_melodia_trick=False)) == []


def test_melodia_skips_runs_dominated_by_a_neighbour(tensors):
    out = tensors(100).note(60, 10, 40, level=0.5, onset=0.0).note(61, 10, 40, level=0.9, onset=0.0).build()
    notes = decode_notes(out)
    assert [n.pitch for n in notes] == [61]


def test_pitch_range_filter(tensors):
    out = tensors(100).note(60, 10, 40).note(81, 10, 40).build()

    assert [n.pitch for n in decode_notes(out, DecodingParameters(max_pitch_hz=500.0))] == [60]
    assert [n.pitch for n in decode_notes(out, DecodingParameters(min_pitch_hz=300.0))] == [81]


def test_bends_are_attached_from_contours(tensors):
    out = tensors(100).note(60, 10, 40).contour(60, 10, 40, offset_bins=1).build()
    (n,) = decode_notes(out)

    assert len(n.pitch_bends) == 30
    assert all(b == pytest.approx(1 / 3) for b in n.pitch_bends)


@pytest.mark.parametrize(
    "params",
    [
        DecodingParameters(onset_threshold=1.5),
        DecodingParameters(frame_threshold=-0.1),
        DecodingParameters(min_note_length_frames=0),
        DecodingParameters(min_pitch_hz=800.0, max_pitch_hz=400.0),
    ],
)
def test_invalid_parameters_rejected(single_note_output, params):
    with pytest.raises(InvalidParameters):
        decode_notes(single_note_output, params)


def test_empty_tensors_rejected():
    out = ModelOutput(np.zeros((0, 88)), np.zeros((0, 88)), np.zeros((0, 264)))
    with pytest.raises(EmptyInput):
        decode_notes(out)


def test_mismatched_shapes_rejected():
    out = ModelOutput(np.zeros((10, 88)), np.zeros((12, 88)), np.zeros((10, 264)))
    with pytest.raises(NoteDecodingError):
        decode_notes(out)


# ---------- building blocks ----------

def test_frames_to_seconds_applies_window_drift():
    t = frames_to_seconds([0, 86, ANNOT_N_FRAMES])
    assert t[0] == 0.0
    assert t[1] == pytest.approx(86 * FRAME_S)
    assert t[2] < ANNOT_N_FRAMES * FRAME_S


def test_onset_peaks_counts_plateau_once():
    onsets = np.array([[0.0], [0.7], [0.7], [0.2], [0.9]])
    peaks = onset_peaks(onsets, 0.5)[:, 0]
    assert peaks.tolist() == [False, True, False, False, True]


def test_infer_onsets_marks_energy_rises():
    frames = np.zeros((10, 2))
    frames[4:, 0] = 0.8
    onsets = np.zeros((10, 2))
    onsets[0, 1] = 0.6

    combined = infer_onsets(onsets, frames)
    assert combined[4, 0] == pytest.approx(0.6)
    assert combined[5, 0] == 0.0


def test_run_lengths():
    active = np.array([False, True, True, True, False, True])
    assert run_lengths(active).tolist() == [0, 3, 2, 1, 0, 1]


def test_bin_tracker_state_machine():
    tr = BinTracker(39, min_note_length=3)
    assert tr.state is BinState.IDLE

    assert tr.step(0, is_onset=True, run_length=2) is None  # too short to start
    assert tr.state is BinState.IDLE

    assert tr.step(2, is_onset=True, run_length=10) is None
    assert tr.state is BinState.ACTIVE

    assert tr.step(6, is_onset=True, run_length=6) == NoteSpan(2, 6, 39)
    assert tr.step(12, is_onset=False, run_length=0) == NoteSpan(6, 12, 39)
    assert tr.state is BinState.IDLE
    assert tr.finish(20) is None


def test_bin_tracker_closes_at_end_of_input():
    tr = BinTracker(5, min_note_length=1)
    tr.step(3, is_onset=True, run_length=4)
    assert tr.finish(7) == NoteSpan(3, 7, 5)
