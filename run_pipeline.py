import argparse
import json
import os
import sys
from typing import Any, Dict, List, Mapping, Optional

from PIL import Image

from modules.common.color_memory import ColorMemory
from modules.common.colorize_client import ColorizeError, OpenAIColorizer
from modules.common.image_utils import SliceFile, list_slices, load_rgba, output_slice_name, save_image
from modules.common.openai_client import OpenAI
from modules.common.pipeline import ColorizePipeline
from modules.common.utils import ProgressLogger, ensure_dir, load_settings, save_json
from schemas import PipelineSettings

# Environment variable -> (settings section, field, type)
ENV_OVERRIDES = {
    "OUTPUT_WIDTH": ("output", "width", int),
    "OUTPUT_HEIGHT": ("output", "height", int),
    "DARK_THRESHOLD": ("split", "dark_threshold", int),
    "MIN_GAP_HEIGHT": ("split", "min_gap_height", int),
    "EDGE_TOLERANCE": ("split", "edge_tolerance", float),
}


def resolve_settings(path: Optional[str] = None, env: Optional[Mapping[str, str]] = None,
                     overrides: Optional[Dict[str, Any]] = None) -> PipelineSettings:
    """
    Settings precedence: command line > environment > settings file > defaults.
    overrides uses dotted keys ("split.dark_threshold"); None values are ignored.
    """
    data: Dict[str, Any] = load_settings(path) if path else {}
    env = os.environ if env is None else env

    for var, (section, key, cast) in ENV_OVERRIDES.items():
        raw = env.get(var)
        if raw:
            data.setdefault(section, {})[key] = cast(raw)
    if env.get("DEBUG", "").lower() == "true":
        data["debug"] = True

    for dotted, value in (overrides or {}).items():
        if value is None:
            continue
        section, _, key = dotted.partition(".")
        if key:
            data.setdefault(section, {})[key] = value
        else:
            data[section] = value
    return PipelineSettings(**data)


def write_slices(slices: List[Image.Image], inputs: List[SliceFile], out_dir: str) -> List[str]:
    """Save output slices with the first input's prefix/extension and index offset."""
    ensure_dir(out_dir)
    first = inputs[0]
    last_index = inputs[-1].index
    paths = []
    for i, img in enumerate(slices):
        name = output_slice_name(first.prefix, first.index, i, last_index, first.ext)
        path = os.path.join(out_dir, name)
        save_image(img, path)
        paths.append(path)
    return paths


def main():
    parser = argparse.ArgumentParser(description="Colorize webtoon strip slices without cutting through panels.")
    parser.add_argument("--input", default=os.getenv("INPUT_DIR", "./input"), help="Directory of input slices")
    parser.add_argument("--output", default=os.getenv("OUTPUT_DIR", "./output"), help="Directory for output slices")
    parser.add_argument("--settings", help="YAML settings file (see settings.example.yaml)")
    parser.add_argument("--output-width", dest="output_width", type=int)
    parser.add_argument("--output-height", dest="output_height", type=int)
    parser.add_argument("--dark-threshold", dest="dark_threshold", type=int)
    parser.add_argument("--min-gap-height", dest="min_gap_height", type=int)
    parser.add_argument("--edge-tolerance", dest="edge_tolerance", type=float)
    parser.add_argument("--model", help="Colorization model (default from settings)")
    parser.add_argument("--debug", action="store_true", default=None, help="Dump intermediate images")
    parser.add_argument("--debug-dir", dest="debug_dir", default="./debug")
    parser.add_argument("--learned-colors", dest="learned_colors",
                        help="JSON file to seed and store the learned color list")
    parser.add_argument("--summary", help="Run summary path (default: <output>/run_summary.json)")
    parser.add_argument("--progress-file", help="Path to pipeline_events.jsonl")
    parser.add_argument("--state-file", help="Path to pipeline_state.json")
    parser.add_argument("--run-id", help="Run identifier for logging")
    args = parser.parse_args()

    settings = resolve_settings(args.settings, overrides={
        "output.width": args.output_width,
        "output.height": args.output_height,
        "split.dark_threshold": args.dark_threshold,
        "split.min_gap_height": args.min_gap_height,
        "split.edge_tolerance": args.edge_tolerance,
        "service.model": args.model,
        "debug": args.debug,
    })

    if "OPENAI_API_KEY" not in os.environ:
        print("Error: OPENAI_API_KEY not set in environment.", file=sys.stderr)
        sys.exit(1)

    try:
        inputs = list_slices(args.input)
    except FileNotFoundError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)
    print(f"Found {len(inputs)} input slices")
    images = [load_rgba(f.path) for f in inputs]

    memory = ColorMemory()
    if args.learned_colors and os.path.exists(args.learned_colors):
        with open(args.learned_colors, "r", encoding="utf-8") as f:
            memory = ColorMemory.from_dict(json.load(f))

    logger = ProgressLogger(state_path=args.state_file, progress_path=args.progress_file, run_id=args.run_id)
    colorizer = OpenAIColorizer(OpenAI(), model=settings.service.model,
                                input_fidelity=settings.service.input_fidelity)
    pipeline = ColorizePipeline(settings, colorizer, logger=logger, debug_dir=args.debug_dir,
                                show_progress=True, run_id=args.run_id)

    try:
        result = pipeline.run(images, memory)
    except ColorizeError as e:
        logger.log("colorize", "failed", message=str(e))
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)

    paths = write_slices(result.slices, inputs, args.output)
    summary_path = args.summary or os.path.join(args.output, "run_summary.json")
    save_json(summary_path, result.summary.model_dump())
    if args.learned_colors:
        save_json(args.learned_colors, result.memory.to_dict())

    summary = result.summary
    logger.log("colorize", "done", current=len(paths), total=len(paths),
               message="Colorization run complete", artifact=summary_path,
               extra={"counts": summary.counts, "fallback_segments": summary.fallback_segments})
    counts = ", ".join(f"{k}={v}" for k, v in summary.counts.items())
    print(f"Done. {len(paths)} slices saved to {args.output}")
    print(f"   Segments: {summary.segment_count} ({counts})")
    if summary.fallback_segments:
        print(f"   Fell back to original: segments {[i + 1 for i in summary.fallback_segments]}")


if __name__ == "__main__":
    main()
