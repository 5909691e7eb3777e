from __future__ import annotations

import io
import logging
from pathlib import Path
from typing import Iterable, List, Optional, Union

import pretty_midi

from pitchmidi.constants import (
    DEFAULT_TEMPO_BPM,
    PITCH_BEND_MAX,
    PITCH_BEND_MIN,
    PITCH_BEND_TICKS_PER_SEMITONE,
)
from pitchmidi.errors import EmptyNoteSequence, EncodingError
from pitchmidi.models.note_event import NoteEvent, sort_notes

logger = logging.getLogger(__name__)


def semitones_to_bend(semitones: float) -> int:
    ticks = int(round(float(semitones) * PITCH_BEND_TICKS_PER_SEMITONE))
    return max(PITCH_BEND_MIN, min(PITCH_BEND_MAX, ticks))


def build_pretty_midi(
    notes: Iterable[NoteEvent],
    bpm: Optional[float] = DEFAULT_TEMPO_BPM,
    *,
    program: int = 0,
) -> pretty_midi.PrettyMIDI:
    notes = list(notes)
    if bpm is None:
        if not notes:
            raise EmptyNoteSequence("no notes to encode and no tempo given")
        bpm = DEFAULT_TEMPO_BPM
    if float(bpm) <= 0:
        raise EncodingError(f"tempo must be positive, got {bpm!r}")

    pm = pretty_midi.PrettyMIDI(initial_tempo=float(bpm))
    instrument = pretty_midi.Instrument(program=int(program))  # 0 = Acoustic Grand Piano

    for n in sort_notes(notes):
        if not 0 <= int(n.pitch) <= 127:
            raise EncodingError(f"pitch {n.pitch!r} is outside the MIDI range")
        if float(n.duration) <= 0:
            raise EncodingError(f"note at {n.onset:.3f}s has non-positive duration")
        instrument.notes.append(
            pretty_midi.Note(
                velocity=n.velocity,
                pitch=int(n.pitch),
                start=float(n.onset),
                end=float(n.offset),
            )
        )
        bends = n.pitch_bends
        for i, bend in enumerate(bends):
            instrument.pitch_bends.append(
                pretty_midi.PitchBend(
                    pitch=semitones_to_bend(bend),
                    time=float(n.onset + (i / len(bends)) * n.duration),
                )
            )

    pm.instruments.append(instrument)
    return pm


def encode_midi(
    notes: Iterable[NoteEvent],
    bpm: Optional[float] = DEFAULT_TEMPO_BPM,
    *,
    program: int = 0,
) -> bytes:
    """Serialize notes to a single-track Standard MIDI File (bytes)."""
    pm = build_pretty_midi(notes, bpm, program=program)
    buf = io.BytesIO()
    try:
        pm.write(buf)
    except (ValueError, TypeError, OSError) as e:
        raise EncodingError(f"MIDI serialization failed: {e}") from e
    return buf.getvalue()


def write_midi(
    notes: Iterable[NoteEvent],
    out_path: Union[str, Path],
    bpm: Optional[float] = DEFAULT_TEMPO_BPM,
) -> Path:
    data = encode_midi(notes, bpm)
    out = Path(out_path)
    out.parent.mkdir(parents=True, exist_ok=True)
    out.write_bytes(data)
    logger.info("wrote %d bytes of MIDI to %s", len(data), out)
    return out


def decode_midi(data: bytes) -> List[NoteEvent]:
    """
    Parse a MIDI byte stream back into NoteEvents (all instruments merged).
    Bends are reported per note as the semitone values falling inside it.
    """
    try:
        pm = pretty_midi.PrettyMIDI(io.BytesIO(data))
    except Exception as e:  # mido raises a mix of OSError / EOFError / KeyError
        raise EncodingError(f"not a readable MIDI stream: {e}") from e

    out: List[NoteEvent] = []
    for inst in pm.instruments:
        bends = sorted(inst.pitch_bends, key=lambda b: b.time)
        for n in inst.notes:
            dur = float(n.end - n.start)
            if dur <= 0:
                continue
            inside = tuple(
                b.pitch / float(PITCH_BEND_TICKS_PER_SEMITONE)
                for b in bends
                if n.start <= b.time < n.end
            )
            out.append(
                NoteEvent(
                    pitch=int(n.pitch),
                    onset=float(n.start),
                    duration=dur,
                    amplitude=float(n.velocity) / 127.0,
                    pitch_bends=inside,
                )
            )
    return sort_notes(out)


__all__ = ["encode_midi", "write_midi", "decode_midi", "build_pretty_midi", "semitones_to_bend"]
