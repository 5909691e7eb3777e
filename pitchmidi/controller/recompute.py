from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from typing import Any, Optional, Sequence, Tuple

from pitchmidi.constants import DEBOUNCE_SECONDS, DEFAULT_TEMPO_BPM
from pitchmidi.errors import EncodingError
from pitchmidi.export.midi_export import encode_midi
from pitchmidi.models.model_output import ModelOutput
from pitchmidi.models.note_event import NoteEvent
from pitchmidi.transcription.inference import InferenceEngine
from pitchmidi.transcription.note_decoder import DecodingParameters, decode_notes
from pitchmidi.workers.decode_worker import DecodeWorker
from pitchmidi.workers.inference_worker import InferenceWorker
from pitchmidi.workers.payloads import (
    DecodeFailure,
    DecodeResult,
    InferenceDone,
    InferenceFailed,
    InferenceProgressed,
    InferenceRequest,
    InferenceStopped,
    RecomputeRequest,
)

logger = logging.getLogger(__name__)

NotesListener = Callable[[Tuple[NoteEvent, ...], bytes], None]
ErrorListener = Callable[[Exception], None]
ProgressListener = Callable[[float], None]


class RecomputeController:
    """
    Session state between the expensive inference run and cheap re-decoding.

    Owns the cached model output, the current decoding parameters and tempo,
    and the visible result (notes + MIDI bytes + last error). Parameter
    changes are debounced through a single pending timer; every request
    carries a sequence number and only a result for the newest sequence is
    accepted, whatever order the worker finishes in.

    Worker messages may arrive on any thread; all state is behind one lock
    and listeners are called outside it.
    """

    def __init__(
        self,
        *,
        params: Optional[DecodingParameters] = None,
        tempo_bpm: float = DEFAULT_TEMPO_BPM,
        debounce_s: float = DEBOUNCE_SECONDS,
        timer_factory: Callable[[float, Callable[[], None]], Any] = threading.Timer,
        decode_worker: Any = None,
        inference_worker: Any = None,
        engine: Optional[InferenceEngine] = None,
        decoder=decode_notes,
        on_notes_changed: Optional[NotesListener] = None,
        on_error: Optional[ErrorListener] = None,
        on_progress: Optional[ProgressListener] = None,
    ) -> None:
        self.debounce_s = float(debounce_s)
        self._timer_factory = timer_factory
        self.on_notes_changed = on_notes_changed
        self.on_error = on_error
        self.on_progress = on_progress

        self._lock = threading.RLock()
        self._params = params or DecodingParameters()
        self._tempo = float(tempo_bpm)
        self._tensors: Optional[ModelOutput] = None
        self._sequence = 0
        self._in_flight: Optional[int] = None
        self._timer = None
        self._timer_token = 0
        self._source_id = 0
        self._progress = 0.0

        self._notes: Tuple[NoteEvent, ...] = ()
        self._midi: bytes = b""
        self._error: Optional[Exception] = None

        self._owned = []
        if decode_worker is None:
            decode_worker = DecodeWorker(self.handle, decoder=decoder)
            decode_worker.start()
            self._owned.append(decode_worker)
        self._decode_worker = decode_worker
        self._inference_worker = inference_worker
        self._engine = engine

    # ---------- read-only view ----------

    @property
    def notes(self) -> Tuple[NoteEvent, ...]:
        with self._lock:
            return self._notes

    @property
    def midi_bytes(self) -> bytes:
        with self._lock:
            return self._midi

    @property
    def error(self) -> Optional[Exception]:
        with self._lock:
            return self._error

    @property
    def params(self) -> DecodingParameters:
        with self._lock:
            return self._params

    @property
    def tempo_bpm(self) -> float:
        with self._lock:
            return self._tempo

    @property
    def latest_sequence(self) -> int:
        with self._lock:
            return self._sequence

    @property
    def decode_in_flight(self) -> bool:
        with self._lock:
            return self._in_flight is not None

    @property
    def has_tensors(self) -> bool:
        with self._lock:
            return self._tensors is not None

    @property
    def progress(self) -> float:
        with self._lock:
            return self._progress

    # ---------- audio source / inference ----------

    def load_source(self, samples) -> int:
        """
        Start inference for a new clip. Cached tensors are discarded and every
        request issued so far becomes stale.
        """
        with self._lock:
            self._source_id += 1
            self._sequence += 1
            self._tensors = None
            self._error = None
            self._progress = 0.0
            self._cancel_timer()
            source_id = self._source_id
            worker = self._ensure_inference_worker()
        logger.info("loading source %d", source_id)
        worker.submit(InferenceRequest(source_id, samples))
        return source_id

    def on_inference_progress(self, fraction: float, source_id: Optional[int] = None) -> None:
        with self._lock:
            if source_id is not None and source_id != self._source_id:
                return
            self._progress = float(fraction)
            listener = self.on_progress
        if listener is not None:
            listener(float(fraction))

    def on_inference_complete(self, tensors: ModelOutput, source_id: Optional[int] = None) -> None:
        with self._lock:
            if source_id is not None and source_id != self._source_id:
                logger.debug("dropping inference output for stale source %d", source_id)
                return
            self._tensors = tensors
            self._progress = 1.0
            self._cancel_timer()
            self._dispatch_locked()

    def on_inference_failed(self, error: Exception, source_id: Optional[int] = None) -> None:
        with self._lock:
            if source_id is not None and source_id != self._source_id:
                return
            self._error = error
            listener = self.on_error
        logger.warning("inference failed: %s", error)
        if listener is not None:
            listener(error)

    # ---------- parameters ----------

    def on_parameters_changed(self, params: DecodingParameters) -> int:
        with self._lock:
            self._params = params
            self._sequence += 1
            self._restart_timer()
            return self._sequence

    def on_tempo_changed(self, bpm: float) -> None:
        """Tempo only affects MIDI encoding; the current notes are re-encoded."""
        failure = None
        with self._lock:
            self._tempo = float(bpm)
            if not self._notes:
                return
            try:
                self._midi = encode_midi(self._notes, self._tempo)
            except EncodingError as exc:
                self._error = failure = exc
            notes, midi = self._notes, self._midi
            on_notes, on_error = self.on_notes_changed, self.on_error
        if failure is not None:
            logger.warning("could not re-encode at %.1f bpm: %s", bpm, failure)
            if on_error is not None:
                on_error(failure)
        elif on_notes is not None:
            on_notes(notes, midi)

    # ---------- debounce ----------

    def _restart_timer(self) -> None:
        self._cancel_timer()
        self._timer_token += 1
        token = self._timer_token
        timer = self._timer_factory(self.debounce_s, lambda: self._on_debounce_fire(token))
        timer.daemon = True
        timer.start()
        self._timer = timer

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        self._timer_token += 1

    def _on_debounce_fire(self, token: int) -> None:
        with self._lock:
            if token != self._timer_token:
                return
            self._timer = None
            if self._tensors is None:
                logger.debug("debounce fired with nothing to decode")
                return
            self._dispatch_locked()

    def _dispatch_locked(self) -> None:
        if self._tensors is None:
            return
        request = RecomputeRequest(self._sequence, self._tensors, self._params)
        self._in_flight = request.sequence
        logger.debug("dispatching decode #%d", request.sequence)
        self._decode_worker.submit(request)

    # ---------- decode results ----------

    def on_decode_result(self, notes: Sequence[NoteEvent], sequence: int) -> bool:
        with self._lock:
            if self._in_flight == sequence:
                self._in_flight = None
            if sequence < self._sequence:
                logger.debug("dropping stale decode #%d (latest #%d)", sequence, self._sequence)
                return False
            notes = tuple(notes)
            failure = None
            try:
                midi = encode_midi(notes, self._tempo)
            except EncodingError as exc:
                self._error = failure = exc
                listener = self.on_error
                accepted = False
            else:
                self._notes = notes
                self._midi = midi
                self._error = None
                listener = self.on_notes_changed
                accepted = True
        if not accepted:
            logger.warning("could not encode decode #%d: %s", sequence, failure)
            if listener is not None:
                listener(failure)
            return False
        logger.debug("accepted decode #%d: %d notes", sequence, len(notes))
        if listener is not None:
            listener(notes, midi)
        return True

    def on_decode_failed(self, error: Exception, sequence: int) -> bool:
        with self._lock:
            if self._in_flight == sequence:
                self._in_flight = None
            if sequence < self._sequence:
                return False
            self._error = error
            listener = self.on_error
        logger.warning("decode #%d failed: %s", sequence, error)
        if listener is not None:
            listener(error)
        return True

    # ---------- worker mailbox ----------

    def handle(self, message: Any) -> None:
        if isinstance(message, DecodeResult):
            self.on_decode_result(message.notes, message.sequence)
        elif isinstance(message, DecodeFailure):
            self.on_decode_failed(message.error, message.sequence)
        elif isinstance(message, InferenceProgressed):
            self.on_inference_progress(message.fraction, message.source_id)
        elif isinstance(message, InferenceDone):
            self.on_inference_complete(message.output, message.source_id)
        elif isinstance(message, InferenceFailed):
            self.on_inference_failed(message.error, message.source_id)
        elif isinstance(message, InferenceStopped):
            logger.debug("inference for source %d stopped", message.source_id)
        else:
            raise TypeError(f"unexpected worker message: {message!r}")

    def _ensure_inference_worker(self):
        if self._inference_worker is None:
            self._inference_worker = InferenceWorker(self.handle, engine=self._engine)
            self._inference_worker.start()
            self._owned.append(self._inference_worker)
        return self._inference_worker

    def shutdown(self) -> None:
        with self._lock:
            self._cancel_timer()
            owned, self._owned = self._owned, []
        for w in owned:
            w.shutdown()
