from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from typing import Any, Optional

logger = logging.getLogger(__name__)

Outbox = Callable[[Any], None]


class WorkerBase:
    """
    A single daemon thread consuming requests from an inbound channel and
    posting typed messages to an outbound callable.

    Subclasses implement _next_request() (block until a request or shutdown)
    and handle(request).
    """

    name = "worker"

    def __init__(self, outbox: Outbox) -> None:
        self._outbox = outbox
        self._stopping = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._stopping.clear()
        self._thread = threading.Thread(target=self._loop, name=self.name, daemon=True)
        self._thread.start()

    def shutdown(self, timeout: float = 2.0) -> None:
        self._stopping.set()
        self._wake()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None

    def post(self, message: Any) -> None:
        self._outbox(message)

    def _loop(self) -> None:
        while not self._stopping.is_set():
            request = self._next_request()
            if request is None:
                continue
            self.handle(request)

    def run_task(
        self,
        task: Callable[[], Any],
        *,
        on_success: Callable[[Any], None] | None = None,
        on_stopped: Callable[[], None] | None = None,
        on_error: Callable[[Exception], None] | None = None,
    ) -> None:
        try:
            result = task()
        except InterruptedError:
            if on_stopped is not None:
                on_stopped()
        except Exception as exc:
            logger.warning("%s task failed: %s", self.name, exc)
            if on_error is not None:
                on_error(exc)
            else:
                raise
        else:
            if on_success is not None:
                on_success(result)

    # subclass hooks
    def _next_request(self) -> Any:
        raise NotImplementedError

    def _wake(self) -> None:
        raise NotImplementedError

    def handle(self, request: Any) -> None:
        raise NotImplementedError
