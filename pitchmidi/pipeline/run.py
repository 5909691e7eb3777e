# pitchmidi/pipeline/run.py
from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

from pitchmidi.audio.preprocess import load_audio_file
from pitchmidi.constants import DEFAULT_TEMPO_BPM
from pitchmidi.export.midi_export import write_midi
from pitchmidi.models.note_event import NoteEvent
from pitchmidi.transcription.inference import InferenceEngine, run_to_completion
from pitchmidi.transcription.note_decoder import DecodingParameters, decode_notes

logger = logging.getLogger(__name__)


@dataclass
class RunConfig:
    tempo_bpm: float = DEFAULT_TEMPO_BPM
    midi_filename: str = "out.mid"
    notes_filename: str = "notes.json"
    export_notes_json: bool = True


def run_pipeline(
    audio_path: str,
    out_dir: Optional[str] = None,
    params: Optional[DecodingParameters] = None,
    cfg: Optional[RunConfig] = None,
    engine: Optional[InferenceEngine] = None,
) -> List[NoteEvent]:
    """
    End-to-end file pipeline:
      audio file -> mono 22.05 kHz -> Basic Pitch -> note decoding
      -> out.mid + notes.json (when out_dir is given)
    """
    cfg = cfg or RunConfig()
    params = params or DecodingParameters()
    engine = engine or InferenceEngine()

    out_path = Path(out_dir) if out_dir else None
    if out_path:
        out_path.mkdir(parents=True, exist_ok=True)

    samples = load_audio_file(audio_path)

    last = {"pct": -10}

    def on_progress(fraction: float) -> None:
        pct = int(fraction * 100)
        if pct >= last["pct"] + 10 or pct == 100:
            last["pct"] = pct
            logger.info("transcribing %d%%", pct)

    output = run_to_completion(engine, samples, on_progress=on_progress)
    notes = decode_notes(output, params)
    logger.info("%d notes decoded", len(notes))

    if out_path is not None:
        write_midi(notes, out_path / cfg.midi_filename, bpm=cfg.tempo_bpm)
        if cfg.export_notes_json:
            (out_path / cfg.notes_filename).write_text(
                json.dumps([n.to_dict() for n in notes], indent=2), encoding="utf-8"
            )

    return notes
