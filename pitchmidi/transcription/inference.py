from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Any, Iterator, List, Optional, Union

import numpy as np

from pitchmidi.audio.preprocess import SampleBuffer, resample_linear
from pitchmidi.constants import (
    ANNOTATIONS_FPS,
    AUDIO_N_SAMPLES,
    AUDIO_SAMPLE_RATE,
    HOP_SIZE,
    N_OVERLAPPING_FRAMES,
    OVERLAP_LEN,
)
from pitchmidi.errors import InferenceError, ModelLoadError
from pitchmidi.models.model_output import ModelOutput

logger = logging.getLogger(__name__)

OUTPUT_KEYS = ("note", "onset", "contour")


@dataclass(frozen=True)
class InferenceProgress:
    fraction: float


def window_audio(audio: np.ndarray) -> List[np.ndarray]:
    """
    Split audio into model-sized windows that overlap by OVERLAP_LEN samples.
    Half the overlap is prepended as silence so the first frames line up
    with t=0 after unwrapping.
    """
    audio = np.concatenate([np.zeros(OVERLAP_LEN // 2, dtype=np.float32), audio.astype(np.float32)])
    windows = []
    for i in range(0, audio.shape[0], HOP_SIZE):
        w = audio[i:i + AUDIO_N_SAMPLES]
        if w.shape[0] < AUDIO_N_SAMPLES:
            w = np.pad(w, (0, AUDIO_N_SAMPLES - w.shape[0]))
        windows.append(w)
    return windows


def unwrap_output(output: np.ndarray, audio_original_length: int) -> np.ndarray:
    """(n_windows, n_times, n_bins) -> (n_frames, n_bins), overlaps trimmed."""
    n_olap = int(0.5 * N_OVERLAPPING_FRAMES)
    if n_olap > 0:
        output = output[:, n_olap:-n_olap, :]
    n_frames_original = int(np.floor(audio_original_length * (ANNOTATIONS_FPS / AUDIO_SAMPLE_RATE)))
    unwrapped = output.reshape(output.shape[0] * output.shape[1], output.shape[2])
    return unwrapped[:n_frames_original, :]


class InferenceEngine:
    """
    Runs Basic Pitch over a sample buffer.

    run() is a generator: InferenceProgress per model window, then exactly
    one ModelOutput once the whole buffer has been consumed.
    """

    def __init__(self, model: Any = None, model_path: Optional[str] = None):
        self._model = model
        self._model_path = model_path

    def load(self) -> Any:
        if self._model is not None:
            return self._model
        try:
            from basic_pitch import ICASSP_2022_MODEL_PATH
            from basic_pitch.inference import Model
        except Exception as e:
            raise ModelLoadError(
                "Basic Pitch failed to import. Install with: pip install basic-pitch\n"
                f"Import error: {e!r}"
            ) from e

        path = self._model_path or ICASSP_2022_MODEL_PATH
        try:
            self._model = Model(path)
        except Exception as e:
            raise ModelLoadError(f"could not load model from {path}: {e}") from e
        logger.info("loaded Basic Pitch model from %s", path)
        return self._model

    def run(
        self,
        samples: Union[SampleBuffer, np.ndarray],
        stop_event: Optional[threading.Event] = None,
    ) -> Iterator[Union[InferenceProgress, ModelOutput]]:
        audio = _as_model_audio(samples)
        model = self.load()

        windows = window_audio(audio)
        collected = {k: [] for k in OUTPUT_KEYS}
        logger.info("running inference: %.2fs of audio, %d windows", audio.shape[0] / AUDIO_SAMPLE_RATE, len(windows))

        yield InferenceProgress(0.0)
        for i, w in enumerate(windows):
            if stop_event is not None and stop_event.is_set():
                raise InterruptedError("inference stopped")
            try:
                pred = model.predict(w[np.newaxis, :, np.newaxis])
                for k in OUTPUT_KEYS:
                    collected[k].append(np.asarray(pred[k], dtype=np.float32).reshape(-1, *np.shape(pred[k])[-2:]))
            except (KeyError, TypeError, ValueError) as e:
                raise InferenceError(f"model returned malformed output for window {i}: {e!r}") from e
            except Exception as e:
                raise InferenceError(f"model prediction failed on window {i}: {e}") from e
            yield InferenceProgress((i + 1) / len(windows))

        try:
            tensors = {
                k: unwrap_output(np.concatenate(v, axis=0), audio.shape[0]) for k, v in collected.items()
            }
        except (IndexError, ValueError) as e:
            raise InferenceError(f"model output has an unexpected shape: {e}") from e
        yield ModelOutput.from_dict(tensors)


def run_to_completion(engine: InferenceEngine, samples, on_progress=None, stop_event=None) -> ModelOutput:
    """Drain engine.run(), forwarding progress fractions; returns the tensors."""
    result: Optional[ModelOutput] = None
    for item in engine.run(samples, stop_event=stop_event):
        if isinstance(item, InferenceProgress):
            if on_progress is not None:
                on_progress(item.fraction)
        else:
            result = item
    if result is None:
        raise InferenceError("inference produced no output")
    return result


def _as_model_audio(samples: Union[SampleBuffer, np.ndarray]) -> np.ndarray:
    if isinstance(samples, SampleBuffer):
        audio = np.asarray(samples.samples, dtype=np.float32)
        if samples.sample_rate != AUDIO_SAMPLE_RATE:
            audio = resample_linear(audio, samples.sample_rate, AUDIO_SAMPLE_RATE)
    else:
        audio = np.asarray(samples, dtype=np.float32)
    if audio.ndim != 1:
        raise InferenceError(f"expected mono samples, got shape {audio.shape}")
    if audio.size == 0:
        raise InferenceError("cannot run inference on empty audio")
    return np.nan_to_num(audio, nan=0.0, posinf=0.0, neginf=0.0)


__all__ = ["InferenceEngine", "InferenceProgress", "run_to_completion", "window_audio", "unwrap_output"]
