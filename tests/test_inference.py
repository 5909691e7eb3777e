import queue
import threading

import numpy as np
import pytest

from pitchmidi.audio.preprocess import SampleBuffer
from pitchmidi.constants import AUDIO_N_SAMPLES, ANNOT_N_FRAMES
from pitchmidi.errors import InferenceError
from pitchmidi.models.model_output import ModelOutput
from pitchmidi.models.note_event import NoteEvent
from pitchmidi.transcription.inference import (
    InferenceEngine,
    InferenceProgress,
    run_to_completion,
    window_audio,
)
from pitchmidi.transcription.note_decoder import DecodingParameters
from pitchmidi.workers.decode_worker import DecodeWorker
from pitchmidi.workers.inference_worker import InferenceWorker
from pitchmidi.workers.payloads import (
    DecodeFailure,
    DecodeResult,
    InferenceDone,
    InferenceFailed,
    InferenceProgressed,
    InferenceRequest,
    RecomputeRequest,
)


class FakeModel:
    """Stands in for basic_pitch.inference.Model: zeros of the right shape."""

    def __init__(self, fail=False):
        self.calls = []
        self.fail = fail

    def predict(self, x):
        self.calls.append(x.shape)
        if self.fail:
            raise RuntimeError("model exploded")
        return {
            "note": np.zeros((1, ANNOT_N_FRAMES, 88), dtype=np.float32),
            "onset": np.zeros((1, ANNOT_N_FRAMES, 88), dtype=np.float32),
            "contour": np.zeros((1, ANNOT_N_FRAMES, 264), dtype=np.float32),
        }


def test_window_audio_covers_input():
    windows = window_audio(np.zeros(22050 * 3, dtype=np.float32))
    assert len(windows) == 2
    assert all(w.shape == (AUDIO_N_SAMPLES,) for w in windows)


def test_engine_reports_progress_then_output():
    model = FakeModel()
    steps = list(InferenceEngine(model=model).run(np.zeros(22050 * 3, dtype=np.float32)))

    progress = [s.fraction for s in steps if isinstance(s, InferenceProgress)]
    assert progress == [0.0, 0.5, 1.0]
    assert isinstance(steps[-1], ModelOutput)
    assert model.calls == [(1, AUDIO_N_SAMPLES, 1)] * 2


def test_output_frame_count_matches_audio_length():
    out = run_to_completion(InferenceEngine(model=FakeModel()), np.zeros(22050, dtype=np.float32))
    assert out.frames.shape == (86, 88)
    assert out.onsets.shape == (86, 88)
    assert out.contours.shape == (86, 264)


def test_sample_buffers_are_resampled():
    buf = SampleBuffer(np.zeros(44100, dtype=np.float32), 44100)
    out = run_to_completion(InferenceEngine(model=FakeModel()), buf)
    assert out.n_frames == 86


def test_model_failure_is_wrapped():
    with pytest.raises(InferenceError):
        run_to_completion(InferenceEngine(model=FakeModel(fail=True)), np.zeros(22050, dtype=np.float32))


def test_empty_audio_rejected():
    with pytest.raises(InferenceError):
        run_to_completion(InferenceEngine(model=FakeModel()), np.zeros(0, dtype=np.float32))


def test_stop_event_interrupts():
    stop = threading.Event()
    stop.set()
    with pytest.raises(InterruptedError):
        run_to_completion(InferenceEngine(model=FakeModel()), np.zeros(22050, dtype=np.float32), stop_event=stop)


# ---------- workers ----------

def _collect(inbox, kind, timeout=5.0):
    while True:
        msg = inbox.get(timeout=timeout)
        if isinstance(msg, kind):
            return msg


def test_inference_worker_posts_progress_and_result():
    inbox = queue.Queue()
    worker = InferenceWorker(inbox.put, engine=InferenceEngine(model=FakeModel()))
    worker.start()
    try:
        worker.submit(InferenceRequest(7, SampleBuffer(np.zeros(22050, dtype=np.float32))))
        done = _collect(inbox, InferenceDone)
    finally:
        worker.shutdown()

    assert done.source_id == 7
    assert done.output.n_frames == 86
    seen = []
    while not inbox.empty():
        seen.append(inbox.get_nowait())
    assert not any(isinstance(m, InferenceProgressed) and m.source_id != 7 for m in seen)


def test_inference_worker_reports_failures():
    inbox = queue.Queue()
    worker = InferenceWorker(inbox.put, engine=InferenceEngine(model=FakeModel(fail=True)))
    worker.start()
    try:
        worker.submit(InferenceRequest(1, SampleBuffer(np.zeros(22050, dtype=np.float32))))
        failed = _collect(inbox, InferenceFailed)
    finally:
        worker.shutdown()
    assert isinstance(failed.error, InferenceError)


def _request(seq):
    z = np.zeros((20, 88), dtype=np.float32)
    return RecomputeRequest(seq, ModelOutput(z, z, np.zeros((20, 264))), DecodingParameters())


def test_decode_worker_posts_results():
    inbox = queue.Queue()
    worker = DecodeWorker(inbox.put, decoder=lambda t, p: [NoteEvent(60, 0.0, 0.1)])
    worker.start()
    try:
        worker.submit(_request(3))
        result = _collect(inbox, DecodeResult)
    finally:
        worker.shutdown()
    assert result.sequence == 3
    assert result.notes == (NoteEvent(60, 0.0, 0.1),)


def test_decode_worker_posts_failures():
    def broken(tensors, params):
        raise ValueError("bad tensors")

    inbox = queue.Queue()
    worker = DecodeWorker(inbox.put, decoder=broken)
    worker.start()
    try:
        worker.submit(_request(4))
        failure = _collect(inbox, DecodeFailure)
    finally:
        worker.shutdown()
    assert failure.sequence == 4
    assert isinstance(failure.error, ValueError)


def test_decode_worker_keeps_only_newest_pending_request():
    worker = DecodeWorker(lambda msg: None)
    worker.submit(_request(1))
    worker.submit(_request(2))
    assert worker._next_request().sequence == 2
