from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any, Dict, Tuple


@dataclass(frozen=True)
class NoteEvent:
    """Canonical note contract shared by the decoder, MIDI export and playback.

    Timing is in seconds.
    - pitch: MIDI integer (0-127)
    - onset: seconds from start
    - duration: seconds (> 0)
    - amplitude: 0..1, mean frame activation over the note
    - pitch_bends: per-frame offsets from the semitone centre, in semitones
    """

    pitch: int
    onset: float
    duration: float
    amplitude: float = 0.6
    pitch_bends: Tuple[float, ...] = field(default_factory=tuple)

    @property
    def offset(self) -> float:
        return float(self.onset + self.duration)

    @property
    def velocity(self) -> int:
        return int(max(1, min(127, round(float(self.amplitude) * 127))))

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        d["pitch_bends"] = list(self.pitch_bends)
        return d

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "NoteEvent":
        return cls(
            pitch=int(d["pitch"]),
            onset=float(d["onset"]),
            duration=float(d["duration"]),
            amplitude=float(d.get("amplitude", 0.6)),
            pitch_bends=tuple(float(b) for b in d.get("pitch_bends", ())),
        )


def sort_notes(notes) -> list:
    return sorted(notes, key=lambda n: (n.onset, n.pitch))
