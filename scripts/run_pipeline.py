"""
CLI entry point for the file transcription pipeline.

Usage:
    python -m scripts.run_pipeline --in path/to/audio.wav --out data/output
"""
import argparse
import logging
import sys
from pathlib import Path

from pitchmidi.errors import TranscriptionError
from pitchmidi.pipeline.run import RunConfig, run_pipeline
from pitchmidi.transcription.note_decoder import DecodingParameters


def build_parser() -> argparse.ArgumentParser:
    defaults = DecodingParameters()
    parser = argparse.ArgumentParser(description="pitchmidi: audio to MIDI")
    parser.add_argument("--in", dest="input_path", required=True, help="Input audio (wav/flac/mp3/...)")
    parser.add_argument("--out", dest="output_dir", required=True, help="Output directory")
    parser.add_argument("--onset-threshold", type=float, default=defaults.onset_threshold)
    parser.add_argument("--frame-threshold", type=float, default=defaults.frame_threshold)
    parser.add_argument("--min-note-frames", type=int, default=defaults.min_note_length_frames)
    parser.add_argument("--min-pitch-hz", type=float, default=defaults.min_pitch_hz)
    parser.add_argument("--max-pitch-hz", type=float, default=defaults.max_pitch_hz)
    parser.add_argument("--no-melodia", action="store_true", help="Disable the melodia trick")
    parser.add_argument("--tempo", type=float, default=RunConfig.tempo_bpm, help="Tempo (BPM) written to the MIDI file")
    parser.add_argument("-v", "--verbose", action="store_true")
    return parser


def main() -> int:
    args = build_parser().parse_args()
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    params = DecodingParameters(
        onset_threshold=args.onset_threshold,
        frame_threshold=args.frame_threshold,
        min_note_length_frames=args.min_note_frames,
        min_pitch_hz=args.min_pitch_hz,
        max_pitch_hz=args.max_pitch_hz,
        use_melodia_trick=not args.no_melodia,
    )

    out_dir = Path(args.output_dir)
    try:
        notes = run_pipeline(args.input_path, str(out_dir), params, RunConfig(tempo_bpm=args.tempo))
    except TranscriptionError as e:
        logging.getLogger("pitchmidi").error("%s", e)
        return 1

    print(f"Transcription complete: {len(notes)} notes")
    for name in ("out.mid", "notes.json"):
        p = out_dir / name
        if p.exists():
            print(f"  -> {p}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
