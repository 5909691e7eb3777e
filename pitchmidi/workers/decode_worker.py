from __future__ import annotations

import logging
import threading
from typing import Callable, List, Optional

from pitchmidi.models.model_output import ModelOutput
from pitchmidi.models.note_event import NoteEvent
from pitchmidi.transcription.note_decoder import DecodingParameters, decode_notes

from .base_worker import Outbox, WorkerBase
from .payloads import DecodeFailure, DecodeResult, RecomputeRequest

logger = logging.getLogger(__name__)

Decoder = Callable[[ModelOutput, DecodingParameters], List[NoteEvent]]


class DecodeWorker(WorkerBase):
    """
    Runs the note decoder off the interactive thread, one request at a time.

    The inbound channel is a single slot: submitting while a request waits
    replaces it, so only the newest parameters are ever decoded next.
    """

    name = "decode-worker"

    def __init__(self, outbox: Outbox, decoder: Decoder = decode_notes) -> None:
        super().__init__(outbox)
        self._decoder = decoder
        self._cond = threading.Condition()
        self._pending: Optional[RecomputeRequest] = None

    def submit(self, request: RecomputeRequest) -> None:
        with self._cond:
            if self._pending is not None:
                logger.debug("request #%d superseded by #%d", self._pending.sequence, request.sequence)
            self._pending = request
            self._cond.notify()

    def _next_request(self) -> Optional[RecomputeRequest]:
        with self._cond:
            while self._pending is None and not self._stopping.is_set():
                self._cond.wait()
            request, self._pending = self._pending, None
            return request

    def _wake(self) -> None:
        with self._cond:
            self._cond.notify_all()

    def handle(self, request: RecomputeRequest) -> None:
        self.run_task(
            lambda: self._decoder(request.tensors, request.params),
            on_success=lambda notes: self.post(DecodeResult(request.sequence, tuple(notes))),
            on_error=lambda exc: self.post(DecodeFailure(request.sequence, exc)),
        )
