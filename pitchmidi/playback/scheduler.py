from __future__ import annotations

import logging
import threading
import time
from enum import Enum
from typing import Callable, Iterable, List, NamedTuple, Optional

from pitchmidi.models.note_event import NoteEvent, sort_notes

logger = logging.getLogger(__name__)


class PlaybackState(Enum):
    STOPPED = "stopped"
    PLAYING = "playing"
    PAUSED = "paused"


class _Scheduled(NamedTuple):
    time: float
    order: int  # note-offs before note-ons at the same instant
    pitch: int
    note: NoteEvent


NoteCallback = Callable[[NoteEvent], None]


class PlaybackScheduler:
    """
    Replays notes against a transport clock for preview.

    While playing, transport time is derived from the clock; poll() fires
    every note-on / note-off that has come due, reports the position through
    on_tick and stops by itself after the last note ends. Pausing and
    stopping drop every pending event, so nothing fires after a stop.

    start() runs poll() on a background ticker; tests call poll() directly
    with a fake clock.
    """

    def __init__(
        self,
        notes: Iterable[NoteEvent] = (),
        *,
        on_note_on: Optional[NoteCallback] = None,
        on_note_off: Optional[NoteCallback] = None,
        on_tick: Optional[Callable[[float], None]] = None,
        on_state_changed: Optional[Callable[[PlaybackState], None]] = None,
        clock: Callable[[], float] = time.monotonic,
        tick_interval: float = 0.03,
    ):
        self.on_note_on = on_note_on
        self.on_note_off = on_note_off
        self.on_tick = on_tick
        self.on_state_changed = on_state_changed
        self.tick_interval = float(tick_interval)
        self._clock = clock

        self._lock = threading.RLock()
        self._notes: List[NoteEvent] = sort_notes(notes)
        self._state = PlaybackState.STOPPED
        self._position = 0.0
        self._anchor_clock = 0.0
        self._anchor_position = 0.0
        self._pending: List[_Scheduled] = []
        self._cursor = 0
        self._sounding: List[NoteEvent] = []

        self._ticker: Optional[threading.Thread] = None
        self._ticker_stop = threading.Event()

    # ---------- transport view ----------

    @property
    def state(self) -> PlaybackState:
        with self._lock:
            return self._state

    @property
    def duration(self) -> float:
        with self._lock:
            return max((n.offset for n in self._notes), default=0.0)

    @property
    def position(self) -> float:
        with self._lock:
            if self._state is PlaybackState.PLAYING:
                return self._anchor_position + (self._clock() - self._anchor_clock)
            return self._position

    @property
    def pending_count(self) -> int:
        with self._lock:
            return len(self._pending) - self._cursor

    # ---------- control ----------

    def load(self, notes: Iterable[NoteEvent]) -> None:
        self.stop()
        with self._lock:
            self._notes = sort_notes(notes)

    def play(self) -> None:
        with self._lock:
            if self._state is PlaybackState.PLAYING or not self._notes:
                return
            start = self._position if self._state is PlaybackState.PAUSED else 0.0
            self._schedule_from(start)
            actions = self._set_state(PlaybackState.PLAYING)
        self._run(actions)

    def pause(self) -> None:
        with self._lock:
            if self._state is not PlaybackState.PLAYING:
                return
            self._position = self.position
            actions = self._cancel_pending()
            actions += self._set_state(PlaybackState.PAUSED)
        self._run(actions)

    def stop(self) -> None:
        with self._lock:
            actions = self._cancel_pending()
            self._position = 0.0
            if self._state is not PlaybackState.STOPPED:
                actions += self._set_state(PlaybackState.STOPPED)
        self._run(actions)

    def seek(self, position: float) -> None:
        with self._lock:
            position = max(0.0, min(float(position), self.duration))
            actions = self._cancel_pending()
            self._position = position
            if self._state is PlaybackState.PLAYING:
                self._schedule_from(position)
        self._run(actions)

    def poll(self) -> float:
        """Fire due events; returns the transport position."""
        with self._lock:
            if self._state is not PlaybackState.PLAYING:
                return self._position
            now = self.position
            end = self.duration
            actions = self._due(now)
            reported = min(now, end)
            actions.append((self.on_tick, reported))
            if now >= end:
                actions += self._cancel_pending()
                self._position = 0.0
                actions += self._set_state(PlaybackState.STOPPED)
                logger.debug("playback reached the end (%.2fs)", end)
        self._run(actions)
        return reported

    # ---------- ticker thread ----------

    def start(self) -> None:
        if self._ticker is not None and self._ticker.is_alive():
            return
        self._ticker_stop.clear()
        self._ticker = threading.Thread(target=self._tick_loop, name="playback-ticker", daemon=True)
        self._ticker.start()

    def shutdown(self) -> None:
        self.stop()
        self._ticker_stop.set()
        if self._ticker is not None:
            self._ticker.join(1.0)
            self._ticker = None

    def _tick_loop(self) -> None:
        while not self._ticker_stop.wait(self.tick_interval):
            self.poll()

    # ---------- internals (lock held) ----------

    def _schedule_from(self, start: float) -> None:
        events: List[_Scheduled] = []
        for n in self._notes:
            if n.onset < start:
                continue
            events.append(_Scheduled(n.onset, 1, n.pitch, n))
            events.append(_Scheduled(n.offset, 0, n.pitch, n))
        events.sort(key=lambda e: (e.time, e.order, e.pitch))
        self._pending = events
        self._cursor = 0
        self._anchor_position = start
        self._anchor_clock = self._clock()

    def _due(self, now: float) -> list:
        actions = []
        while self._cursor < len(self._pending) and self._pending[self._cursor].time <= now:
            ev = self._pending[self._cursor]
            self._cursor += 1
            if ev.order == 1:
                self._sounding.append(ev.note)
                actions.append((self.on_note_on, ev.note))
            else:
                self._release(ev.note)
                actions.append((self.on_note_off, ev.note))
        return actions

    def _release(self, note: NoteEvent) -> None:
        for i, n in enumerate(self._sounding):
            if n is note:
                del self._sounding[i]
                return

    def _cancel_pending(self) -> list:
        dropped = len(self._pending) - self._cursor
        if dropped:
            logger.debug("cancelled %d pending note events", dropped)
        self._pending = []
        self._cursor = 0
        sounding, self._sounding = self._sounding, []
        return [(self.on_note_off, n) for n in sounding]

    def _set_state(self, state: PlaybackState) -> list:
        self._state = state
        return [(self.on_state_changed, state)]

    @staticmethod
    def _run(actions) -> None:
        for callback, arg in actions:
            if callback is not None:
                callback(arg)


__all__ = ["PlaybackScheduler", "PlaybackState"]
