"""
Strip colorization pipeline.

    slices -> strip -> split points -> segments
           -> per segment: classify | fit canvas -> colorize (retry) -> uncanvas -> restore blacks
           -> reassemble -> re-slice at the original heights

Segments are processed strictly in order. The learned-color memory produced by
one segment feeds the request for the next, so it is threaded through the loop
as an explicit value. A segment whose service call keeps failing falls back to
its uncolored bitmap; the run continues and the fallback shows up in the summary.
"""
import os
import time
from dataclasses import dataclass
from typing import Any, Callable, List, Optional, Sequence, Tuple

from PIL import Image
from tqdm import tqdm

from modules.common.black_restore import restoration_mask, restore_blacks
from modules.common.canvas_fit import fit_canvas, from_canvas, to_canvas
from modules.common.color_memory import ColorMemory
from modules.common.colorize_client import build_prompt, colorize_with_retry
from modules.common.content_classifier import analyze_segment
from modules.common.image_utils import save_image
from modules.common.segmenter import Segment, split_strip
from modules.common.split_points import SplitCandidate, detect_split_points
from modules.common.strip import Strip, assemble_strip, reassemble_segments, reslice_strip
from modules.common.utils import ProgressLogger, ensure_dir
from schemas import PipelineSettings, RunSummary, SegmentReport


@dataclass
class PipelineResult:
    slices: List[Image.Image]
    reports: List[SegmentReport]
    summary: RunSummary
    memory: ColorMemory
    strip: Strip
    split_points: List[SplitCandidate]


class ColorizePipeline:
    def __init__(self, settings: PipelineSettings, colorizer: Any,
                 sleep: Callable[[float], None] = time.sleep,
                 logger: Optional[ProgressLogger] = None,
                 debug_dir: Optional[str] = None,
                 show_progress: bool = False,
                 run_id: Optional[str] = None):
        self.settings = settings
        self.colorizer = colorizer
        self.sleep = sleep
        self.logger = logger or ProgressLogger(run_id=run_id)
        self.debug_dir = debug_dir if settings.debug else None
        self.show_progress = show_progress
        self.run_id = run_id

    def _say(self, message: str) -> None:
        if self.show_progress:
            tqdm.write(message)

    def _debug_save(self, name: str, image: Image.Image) -> None:
        if not self.debug_dir:
            return
        ensure_dir(self.debug_dir)
        save_image(image, os.path.join(self.debug_dir, name))

    def run(self, images: Sequence[Image.Image], memory: Optional[ColorMemory] = None) -> PipelineResult:
        s = self.settings
        strip = assemble_strip(images)
        self.logger.log("assemble", "done", message=f"Stitched {len(images)} slices into {strip.width}x{strip.height}")
        self._say(f"Stitched: {strip.width}x{strip.height}")
        self._debug_save("01_stitched.png", strip.image)

        points = detect_split_points(
            strip.image,
            dark_threshold=s.split.dark_threshold,
            min_gap_height=s.split.min_gap_height,
            edge_tolerance=s.split.edge_tolerance,
        )
        segments = split_strip(strip.image, points, s.split.min_segment_height)
        self.logger.log(
            "segment", "done",
            message=f"{len(points)} split points, {len(segments)} segments",
            extra={"split_points": [p.midpoint for p in points]},
        )
        self._say("Split points: " + (", ".join(f"row {p.midpoint} (gap {p.band_height}px)" for p in points) or "none"))

        memory = memory or ColorMemory()
        colorized: List[Image.Image] = []
        reports: List[SegmentReport] = []
        total = len(segments)
        for seg in tqdm(segments, desc="Segments", disable=not self.show_progress):
            self._debug_save(f"02_segment_{seg.index + 1:03d}_input.png", seg.image)
            image, report, memory = self.process_segment(seg, total, memory)
            self._debug_save(f"03_segment_{seg.index + 1:03d}_colorized.png", image)
            colorized.append(image)
            reports.append(report)

        reassembled = reassemble_segments(colorized, [seg.height for seg in segments], strip.width)
        self._debug_save("04_reassembled.png", reassembled)
        slices = reslice_strip(reassembled, strip.heights, s.output.width, s.output.height)
        self.logger.log("reslice", "done", current=len(slices), total=len(strip.heights),
                        message=f"Re-sliced into {len(slices)} slices")

        summary = RunSummary.from_reports(
            reports,
            run_id=self.run_id,
            slice_count=len(slices),
            strip_width=strip.width,
            strip_height=strip.height,
            split_points=[p.midpoint for p in points],
        )
        return PipelineResult(slices=slices, reports=reports, summary=summary,
                              memory=memory, strip=strip, split_points=points)

    def process_segment(self, segment: Segment, total: int,
                        memory: ColorMemory) -> Tuple[Image.Image, SegmentReport, ColorMemory]:
        s = self.settings
        label = f"Segment {segment.index + 1}/{total} ({segment.width}x{segment.height})"
        kind, ratio = analyze_segment(
            segment.image,
            dark_threshold=s.split.dark_threshold,
            blank_ratio=s.classify.blank_ratio,
            text_dark_ratio=s.classify.text_dark_ratio,
            text_white_ratio=s.classify.text_white_ratio,
            white_level=s.classify.white_level,
        )
        base = dict(index=segment.index, start_row=segment.start_row,
                    height=segment.height, width=segment.width, dark_ratio=round(ratio, 4))
        if kind is not None:
            report = SegmentReport(disposition=f"skipped_{kind}", **base)
            self._report(label, report, f"{kind} segment, no colorization needed")
            return segment.image, report, memory

        fit = fit_canvas(segment.width, segment.height, s.canvas.sizes,
                         s.canvas.max_upscale, s.canvas.upscale_penalty)
        canvas = to_canvas(segment.image, fit)
        self._say(f"  {label}: {segment.width}x{segment.height} -> "
                  f"{fit.scaled_width}x{fit.scaled_height} padded to {fit.size_label}")
        prompt = build_prompt(s.service.hints, memory.prompt_hint() if s.learn_colors else None)

        def on_retry(attempt: int, delay: float, exc: Exception) -> None:
            self.logger.log("colorize", "warning", current=attempt, total=s.service.max_attempts,
                            segment=segment.index,
                            message=f"{label}: attempt {attempt} failed ({exc}), retrying in {delay:.1f}s")

        outcome = colorize_with_retry(
            self.colorizer, canvas, prompt, (fit.target_width, fit.target_height),
            max_attempts=s.service.max_attempts,
            base_delay=s.service.base_delay,
            max_delay=s.service.max_delay,
            sleep=self.sleep,
            on_retry=on_retry,
        )
        if outcome.fell_back:
            report = SegmentReport(disposition="fallback", canvas=fit.size_label,
                                   attempts=outcome.attempts, retry_delays=outcome.delays,
                                   error=outcome.error, **base)
            self._report(label, report, f"gave up after {outcome.attempts} attempts, keeping original")
            return segment.image, report, memory

        uncanvased = from_canvas(outcome.image, fit)
        mask = restoration_mask(
            segment.image,
            threshold=s.restore.threshold,
            window=s.restore.window,
            min_density=s.restore.min_density,
            white_level=s.restore.white_level,
            radius=s.restore.radius,
        )
        result = restore_blacks(segment.image, uncanvased, mask=mask)
        if s.learn_colors:
            memory = memory.extend(result, exclude=mask)

        report = SegmentReport(disposition="colorized", canvas=fit.size_label,
                               attempts=outcome.attempts, retry_delays=outcome.delays,
                               restored_pixels=int(mask.sum()), **base)
        self._report(label, report, f"colorized via {fit.size_label}, restored {report.restored_pixels} black pixels")
        return result, report, memory

    def _report(self, label: str, report: SegmentReport, detail: str) -> None:
        status = "warning" if report.disposition == "fallback" else "running"
        self.logger.log(
            "colorize", status,
            current=report.index + 1,
            segment=report.index,
            message=f"{label}: {detail}",
            extra={"disposition": report.disposition},
        )
        self._say(f"  {label}: {detail}")
