from __future__ import annotations

import logging
import queue
import threading
from typing import Optional, Tuple

from pitchmidi.errors import InferenceError
from pitchmidi.transcription.inference import InferenceEngine, InferenceProgress

from .base_worker import Outbox, WorkerBase
from .payloads import (
    InferenceDone,
    InferenceFailed,
    InferenceProgressed,
    InferenceRequest,
    InferenceStopped,
)

logger = logging.getLogger(__name__)


class InferenceWorker(WorkerBase):
    """
    Long-running Basic Pitch runs with incremental progress messages.

    Each request carries its own stop event; submitting a new request stops
    the one before it between model windows.
    """

    name = "inference-worker"

    def __init__(self, outbox: Outbox, engine: Optional[InferenceEngine] = None) -> None:
        super().__init__(outbox)
        self.engine = engine or InferenceEngine()
        self._inbox: "queue.Queue[Optional[Tuple[InferenceRequest, threading.Event]]]" = queue.Queue()
        self._current_stop = threading.Event()

    def submit(self, request: InferenceRequest) -> None:
        self._current_stop.set()
        stop_event = threading.Event()
        self._current_stop = stop_event
        self._inbox.put((request, stop_event))

    def stop_current(self) -> None:
        self._current_stop.set()

    def _next_request(self):
        return self._inbox.get()

    def _wake(self) -> None:
        self._current_stop.set()
        self._inbox.put(None)

    def handle(self, item) -> None:
        request, stop_event = item
        source_id = request.source_id

        def task():
            output = None
            for step in self.engine.run(request.samples, stop_event=stop_event):
                if isinstance(step, InferenceProgress):
                    self.post(InferenceProgressed(source_id, step.fraction))
                else:
                    output = step
            if output is None:
                raise InferenceError("inference produced no output")
            return output

        def on_success(output) -> None:
            logger.info("inference for source %d finished: %d frames", source_id, output.n_frames)
            self.post(InferenceDone(source_id, output))

        def on_stopped() -> None:
            logger.debug("inference for source %d stopped", source_id)
            self.post(InferenceStopped(source_id))

        self.run_task(
            task,
            on_success=on_success,
            on_stopped=on_stopped,
            on_error=lambda exc: self.post(InferenceFailed(source_id, exc)),
        )
