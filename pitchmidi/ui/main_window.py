import dataclasses
import logging
from pathlib import Path

from PyQt6.QtCore import QObject, Qt, pyqtSignal
from PyQt6.QtWidgets import (
    QCheckBox, QFileDialog, QFormLayout, QHBoxLayout, QLabel, QMainWindow,
    QMessageBox, QProgressBar, QPushButton, QSlider, QVBoxLayout, QWidget
)

from pitchmidi import constants as C
from pitchmidi.audio.preprocess import load_audio_file
from pitchmidi.controller.recompute import RecomputeController
from pitchmidi.errors import TranscriptionError
from pitchmidi.live.audio_stream import LiveAudioInput
from pitchmidi.playback.scheduler import PlaybackScheduler, PlaybackState
from pitchmidi.playback.synth import VoiceMixer

logger = logging.getLogger(__name__)


def _fmt_s(sec: float) -> str:
    s = int(max(0.0, sec))
    return f"{s // 60}:{s % 60:02d}"


class _Bridge(QObject):
    """Marshals worker / ticker thread callbacks onto the GUI thread."""
    notesChanged = pyqtSignal(object, object)
    errorRaised = pyqtSignal(object)
    progressChanged = pyqtSignal(float)
    transportTick = pyqtSignal(float)
    transportState = pyqtSignal(object)


class _ParamSlider(QSlider):
    """Integer slider mapped linearly onto [lo, hi]."""

    def __init__(self, lo: float, hi: float, value: float, steps: int = 100):
        super().__init__(Qt.Orientation.Horizontal)
        self.lo, self.hi, self.steps = float(lo), float(hi), int(steps)
        self.setRange(0, self.steps)
        self.set_value(value)

    def value_f(self) -> float:
        return self.lo + (self.hi - self.lo) * self.value() / self.steps

    def set_value(self, v: float) -> None:
        self.setValue(int(round((float(v) - self.lo) / (self.hi - self.lo) * self.steps)))


class MainWindow(QMainWindow):
    def __init__(self):
        super().__init__()
        self.setWindowTitle("pitchmidi: Audio to MIDI")

        self._bridge = _Bridge()
        self._bridge.notesChanged.connect(self.on_notes_changed)
        self._bridge.errorRaised.connect(self.on_fail)
        self._bridge.progressChanged.connect(self.on_progress)
        self._bridge.transportTick.connect(self.on_transport_tick)
        self._bridge.transportState.connect(self.on_transport_state)

        self.controller = RecomputeController(
            on_notes_changed=self._bridge.notesChanged.emit,
            on_error=self._bridge.errorRaised.emit,
            on_progress=self._bridge.progressChanged.emit,
        )

        self.mixer = VoiceMixer()
        self.scheduler = PlaybackScheduler(
            on_note_on=self.mixer.note_on,
            on_note_off=self.mixer.note_off,
            on_tick=self._bridge.transportTick.emit,
            on_state_changed=self._bridge.transportState.emit,
        )
        self.scheduler.start()
        self.recorder = LiveAudioInput()
        self.audio_name = "recording"

        # Source row
        btn_choose = QPushButton("Choose Audio")
        self.btn_record = QPushButton("Record")
        self.btn_save = QPushButton("Save MIDI")
        btn_choose.clicked.connect(self.choose_audio)
        self.btn_record.clicked.connect(self.toggle_record)
        self.btn_save.clicked.connect(self.save_midi)
        self.btn_save.setEnabled(False)

        top_row = QHBoxLayout()
        top_row.addWidget(btn_choose)
        top_row.addWidget(self.btn_record)
        top_row.addWidget(self.btn_save)

        self.progress = QProgressBar()
        self.progress.setRange(0, 100)
        self.status = QLabel("Choose an audio file or record.")

        # Decoding parameters
        p = self.controller.params
        self.s_onset = _ParamSlider(C.ONSET_THRESHOLD_MIN, C.ONSET_THRESHOLD_MAX, p.onset_threshold)
        self.s_frame = _ParamSlider(C.FRAME_THRESHOLD_MIN, C.FRAME_THRESHOLD_MAX, p.frame_threshold)
        self.s_min_len = _ParamSlider(
            C.MIN_NOTE_LENGTH_FRAMES_MIN, C.MIN_NOTE_LENGTH_FRAMES_MAX, p.min_note_length_frames,
            steps=C.MIN_NOTE_LENGTH_FRAMES_MAX - C.MIN_NOTE_LENGTH_FRAMES_MIN,
        )
        self.s_min_hz = _ParamSlider(C.MIN_PITCH_HZ_MIN, C.MAX_PITCH_HZ_MAX, p.min_pitch_hz, steps=500)
        self.s_max_hz = _ParamSlider(C.MIN_PITCH_HZ_MIN, C.MAX_PITCH_HZ_MAX, p.max_pitch_hz, steps=500)
        self.cb_melodia = QCheckBox("Melodia trick")
        self.cb_melodia.setChecked(p.use_melodia_trick)
        self.s_tempo = _ParamSlider(C.TEMPO_BPM_MIN, C.TEMPO_BPM_MAX, self.controller.tempo_bpm, steps=270)

        form = QFormLayout()
        for label, s in (
            ("Onset threshold", self.s_onset),
            ("Frame threshold", self.s_frame),
            ("Min note length (frames)", self.s_min_len),
            ("Min pitch (Hz)", self.s_min_hz),
            ("Max pitch (Hz)", self.s_max_hz),
            ("Tempo (BPM)", self.s_tempo),
        ):
            value_label = QLabel()
            row = QHBoxLayout()
            row.addWidget(s, 1)
            row.addWidget(value_label)
            form.addRow(label, row)
            s.valueChanged.connect(lambda _v, s=s, lab=value_label: lab.setText(f"{s.value_f():.2f}"))
            value_label.setText(f"{s.value_f():.2f}")
        form.addRow("", self.cb_melodia)

        for s in (self.s_onset, self.s_frame, self.s_min_len, self.s_min_hz, self.s_max_hz):
            s.valueChanged.connect(self.on_params_changed)
        self.cb_melodia.toggled.connect(self.on_params_changed)
        self.s_tempo.valueChanged.connect(lambda _v: self.controller.on_tempo_changed(self.s_tempo.value_f()))

        # Transport
        btn_play = QPushButton("Play")
        btn_pause = QPushButton("Pause")
        btn_stop = QPushButton("Stop")
        btn_play.clicked.connect(self.play_notes)
        btn_pause.clicked.connect(self.scheduler.pause)
        btn_stop.clicked.connect(self.scheduler.stop)

        self.seek = QSlider(Qt.Orientation.Horizontal)
        self.seek.setRange(0, 0)
        self.seek.sliderMoved.connect(lambda ms: self.scheduler.seek(ms / 1000.0))
        self.time_label = QLabel("0:00 / 0:00")
        self.notes_label = QLabel("0 notes")

        player_row = QHBoxLayout()
        player_row.addWidget(btn_play)
        player_row.addWidget(btn_pause)
        player_row.addWidget(btn_stop)
        player_row.addWidget(self.time_label)
        player_row.addStretch(1)
        player_row.addWidget(self.notes_label)

        root = QVBoxLayout()
        root.addLayout(top_row)
        root.addWidget(self.progress)
        root.addWidget(self.status)
        root.addLayout(form)
        root.addLayout(player_row)
        root.addWidget(self.seek)

        w = QWidget()
        w.setLayout(root)
        self.setCentralWidget(w)

    # ---------- lifecycle ----------
    def closeEvent(self, event):
        self.scheduler.shutdown()
        self.mixer.close()
        self.controller.shutdown()
        super().closeEvent(event)

    # ---------- sources ----------
    def choose_audio(self):
        fp, _ = QFileDialog.getOpenFileName(
            self, "Select audio file", "", "Audio Files (*.wav *.mp3 *.flac *.ogg *.m4a)"
        )
        if not fp:
            return
        try:
            samples = load_audio_file(fp)
        except TranscriptionError as e:
            self.on_fail(e)
            return
        self.audio_name = Path(fp).stem
        self._start_inference(samples)

    def toggle_record(self):
        try:
            if self.recorder.running:
                samples = self.recorder.stop()
                self.btn_record.setText("Record")
                self.audio_name = "recording"
                self._start_inference(samples)
            else:
                self.recorder.start()
                self.btn_record.setText("Stop Recording")
                self.status.setText("Recording...")
        except TranscriptionError as e:
            self.btn_record.setText("Record")
            self.on_fail(e)

    def _start_inference(self, samples):
        self.scheduler.stop()
        self.progress.setValue(0)
        self.status.setText(f"Transcribing {self.audio_name} ({samples.duration:.1f}s)...")
        self.controller.load_source(samples)

    # ---------- parameters ----------
    def current_params(self):
        return dataclasses.replace(
            self.controller.params,
            onset_threshold=self.s_onset.value_f(),
            frame_threshold=self.s_frame.value_f(),
            min_note_length_frames=int(round(self.s_min_len.value_f())),
            min_pitch_hz=self.s_min_hz.value_f(),
            max_pitch_hz=self.s_max_hz.value_f(),
            use_melodia_trick=self.cb_melodia.isChecked(),
        )

    def on_params_changed(self, *_):
        self.controller.on_parameters_changed(self.current_params())
        if self.controller.has_tensors:
            self.status.setText("Updating notes...")

    # ---------- controller results ----------
    def on_progress(self, fraction: float):
        self.progress.setValue(int(round(fraction * 100)))

    def on_notes_changed(self, notes, midi_bytes):
        was_playing = self.scheduler.state is PlaybackState.PLAYING
        self.scheduler.load(notes)
        self.seek.setMaximum(int(self.scheduler.duration * 1000))
        self.notes_label.setText(f"{len(notes)} notes")
        self.btn_save.setEnabled(bool(midi_bytes))
        self.status.setText(f"{self.audio_name}: {len(notes)} notes ({len(midi_bytes)} bytes MIDI)")
        self.on_transport_tick(0.0)
        if was_playing:
            self.scheduler.play()

    def save_midi(self):
        data = self.controller.midi_bytes
        if not data:
            QMessageBox.information(self, "MIDI", "Nothing to save yet.")
            return
        fp, _ = QFileDialog.getSaveFileName(self, "Save MIDI", f"{self.audio_name}.mid", "MIDI (*.mid)")
        if fp:
            Path(fp).write_bytes(data)
            logger.info("saved %s", fp)

    # ---------- transport ----------
    def play_notes(self):
        if not self.controller.notes:
            QMessageBox.information(self, "Notes", "No transcribed notes to play.")
            return
        try:
            self.mixer.open()
        except TranscriptionError as e:
            self.on_fail(e)
            return
        self.scheduler.play()

    def on_transport_tick(self, pos: float):
        if not self.seek.isSliderDown():
            self.seek.setValue(int(pos * 1000))
        self.time_label.setText(f"{_fmt_s(pos)} / {_fmt_s(self.scheduler.duration)}")

    def on_transport_state(self, state):
        if state is PlaybackState.STOPPED:
            self.on_transport_tick(0.0)

    # ---------- errors ----------
    def on_fail(self, err):
        self.status.setText(f"Error: {err}")
        QMessageBox.critical(self, "Error", str(err))
