from __future__ import annotations


class TranscriptionError(Exception):
    """Base class for every recoverable failure in the audio -> MIDI path."""


class AudioSourceError(TranscriptionError):
    pass


class DecodeError(AudioSourceError):
    """Audio bytes could not be decoded into samples."""


class UnsupportedFormat(DecodeError):
    """No available decoder understands the container / codec."""


class ModelLoadError(TranscriptionError):
    pass


class InferenceError(TranscriptionError):
    pass


class NoteDecodingError(TranscriptionError):
    pass


class InvalidParameters(NoteDecodingError, ValueError):
    pass


class EmptyInput(NoteDecodingError, ValueError):
    pass


class EncodingError(TranscriptionError):
    pass


class EmptyNoteSequence(EncodingError):
    pass


__all__ = [
    "TranscriptionError",
    "AudioSourceError",
    "DecodeError",
    "UnsupportedFormat",
    "ModelLoadError",
    "InferenceError",
    "NoteDecodingError",
    "InvalidParameters",
    "EmptyInput",
    "EncodingError",
    "EmptyNoteSequence",
]
