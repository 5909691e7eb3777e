from __future__ import annotations

from dataclasses import dataclass

import numpy as np


def _frozen(x) -> np.ndarray:
    arr = np.array(x, dtype=np.float32, copy=True)
    if arr.ndim == 1 and arr.size == 0:
        arr = arr.reshape(0, 0)
    arr.setflags(write=False)
    return arr


@dataclass(frozen=True, eq=False)
class ModelOutput:
    """Per-frame Basic Pitch output for one audio clip.

    frames:   (n_frames, 88)  sustained-note activation per semitone bin
    onsets:   (n_frames, 88)  note-start likelihood per semitone bin
    contours: (n_frames, 264) pitch likelihood at 1/3 semitone resolution

    Arrays are copied and made read-only, so a cached instance can be shared
    with the decode worker without locking.
    """

    frames: np.ndarray
    onsets: np.ndarray
    contours: np.ndarray

    def __post_init__(self) -> None:
        object.__setattr__(self, "frames", _frozen(self.frames))
        object.__setattr__(self, "onsets", _frozen(self.onsets))
        object.__setattr__(self, "contours", _frozen(self.contours))

    @property
    def n_frames(self) -> int:
        return int(self.frames.shape[0])

    @classmethod
    def from_dict(cls, d) -> "ModelOutput":
        # basic_pitch's Model.predict / run_inference key names
        return cls(frames=d["note"], onsets=d["onset"], contours=d["contour"])
