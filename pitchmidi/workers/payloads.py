from __future__ import annotations

from dataclasses import dataclass
from typing import Tuple

from pitchmidi.audio.preprocess import SampleBuffer
from pitchmidi.models.model_output import ModelOutput
from pitchmidi.models.note_event import NoteEvent
from pitchmidi.transcription.note_decoder import DecodingParameters


# decode worker: inbound
@dataclass(frozen=True, slots=True)
class RecomputeRequest:
    sequence: int
    tensors: ModelOutput
    params: DecodingParameters


# decode worker: outbound
@dataclass(frozen=True, slots=True)
class DecodeResult:
    sequence: int
    notes: Tuple[NoteEvent, ...]


@dataclass(frozen=True, slots=True)
class DecodeFailure:
    sequence: int
    error: Exception


# inference worker: inbound
@dataclass(frozen=True, slots=True)
class InferenceRequest:
    source_id: int
    samples: SampleBuffer


# inference worker: outbound
@dataclass(frozen=True, slots=True)
class InferenceProgressed:
    source_id: int
    fraction: float


@dataclass(frozen=True, slots=True)
class InferenceDone:
    source_id: int
    output: ModelOutput


@dataclass(frozen=True, slots=True)
class InferenceFailed:
    source_id: int
    error: Exception


@dataclass(frozen=True, slots=True)
class InferenceStopped:
    source_id: int
