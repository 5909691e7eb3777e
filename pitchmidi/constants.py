from __future__ import annotations

# Basic Pitch model geometry
AUDIO_SAMPLE_RATE = 22050
FFT_HOP = 256
ANNOTATIONS_FPS = AUDIO_SAMPLE_RATE // FFT_HOP
AUDIO_WINDOW_LENGTH = 2  # seconds per model window
ANNOT_N_FRAMES = ANNOTATIONS_FPS * AUDIO_WINDOW_LENGTH
AUDIO_N_SAMPLES = AUDIO_SAMPLE_RATE * AUDIO_WINDOW_LENGTH - FFT_HOP  # 43844

N_OVERLAPPING_FRAMES = 30
OVERLAP_LEN = N_OVERLAPPING_FRAMES * FFT_HOP
HOP_SIZE = AUDIO_N_SAMPLES - OVERLAP_LEN

ANNOTATIONS_BASE_FREQUENCY = 27.5  # A0
ANNOTATIONS_N_SEMITONES = 88
CONTOURS_BINS_PER_SEMITONE = 3
N_FREQ_BINS_NOTES = ANNOTATIONS_N_SEMITONES
N_FREQ_BINS_CONTOURS = ANNOTATIONS_N_SEMITONES * CONTOURS_BINS_PER_SEMITONE
MIDI_OFFSET = 21

# pitch bends: 4096 ticks per semitone (+/- 2 semitone wheel range)
PITCH_BEND_TICKS_PER_SEMITONE = 4096
PITCH_BEND_MIN = -8192
PITCH_BEND_MAX = 8191

# Decoding parameter ranges (UI sliders) and defaults
ONSET_THRESHOLD_MIN = 0.05
ONSET_THRESHOLD_MAX = 0.95
ONSET_THRESHOLD_DEFAULT = 0.5
FRAME_THRESHOLD_MIN = 0.05
FRAME_THRESHOLD_MAX = 0.95
FRAME_THRESHOLD_DEFAULT = 0.3
MIN_NOTE_LENGTH_FRAMES_MIN = 1
MIN_NOTE_LENGTH_FRAMES_MAX = 50
MIN_NOTE_LENGTH_FRAMES_DEFAULT = 11  # ~128 ms
MIN_PITCH_HZ_MIN = 0.0
MAX_PITCH_HZ_MAX = 5000.0
MIN_PITCH_HZ_DEFAULT = 0.0
MAX_PITCH_HZ_DEFAULT = 5000.0
USE_MELODIA_TRICK_DEFAULT = True

TEMPO_BPM_MIN = 30.0
TEMPO_BPM_MAX = 300.0
DEFAULT_TEMPO_BPM = 120.0

DEBOUNCE_SECONDS = 1.0

# A new onset inside an active note closes it and starts a new one, but only
# when both halves reach the minimum note length; otherwise it is absorbed.
ONSET_SPLIT_POLICY = "split-if-both-halves-long-enough"
