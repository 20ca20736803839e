from typing import Any, Dict, List, Literal, Optional, Tuple
from pydantic import BaseModel, Field, field_validator, model_validator


class OutputSettings(BaseModel):
    # None keeps the working geometry of each slice.
    width: Optional[int] = Field(default=None, gt=0)
    height: Optional[int] = Field(default=None, gt=0)


class SplitSettings(BaseModel):
    dark_threshold: int = Field(default=20, ge=1, le=256)
    min_gap_height: int = Field(default=30, ge=1)
    edge_tolerance: float = Field(default=0.02, ge=0.0, lt=1.0)
    min_segment_height: int = Field(default=100, ge=1)


class ClassifySettings(BaseModel):
    blank_ratio: float = Field(default=0.98, gt=0.0, le=1.0)
    text_dark_ratio: float = Field(default=0.85, gt=0.0, le=1.0)
    text_white_ratio: float = Field(default=0.60, gt=0.0, le=1.0)
    white_level: int = Field(default=200, ge=0, le=255)


class CanvasSettings(BaseModel):
    sizes: List[Tuple[int, int]] = Field(default_factory=lambda: [(1024, 1024), (1024, 1536), (1536, 1024)])
    max_upscale: float = Field(default=2.0, gt=0.0)
    upscale_penalty: float = Field(default=0.25, ge=0.0)

    @field_validator("sizes", mode="before")
    def parse_size_strings(cls, v):
        if isinstance(v, (list, tuple)):
            out = []
            for item in v:
                if isinstance(item, str):
                    w, _, h = item.lower().partition("x")
                    out.append((int(w), int(h)))
                else:
                    out.append(item)
            return out
        return v

    @field_validator("sizes")
    def sizes_not_empty(cls, v):
        if not v:
            raise ValueError("at least one canvas size is required")
        for w, h in v:
            if w <= 0 or h <= 0:
                raise ValueError(f"invalid canvas size {w}x{h}")
        return v


class RestoreSettings(BaseModel):
    threshold: int = Field(default=10, ge=1, le=256)
    window: int = Field(default=33, ge=1)
    min_density: float = Field(default=0.70, ge=0.0, le=1.0)
    white_level: int = Field(default=250, ge=0, le=255)
    radius: int = Field(default=3, ge=0)


class ServiceSettings(BaseModel):
    model: str = "gpt-4.1"
    input_fidelity: str = "high"
    max_attempts: int = Field(default=3, ge=1)
    base_delay: float = Field(default=2.0, ge=0.0)
    max_delay: float = Field(default=30.0, ge=0.0)
    hints: Optional[str] = None


class PipelineSettings(BaseModel):
    output: OutputSettings = Field(default_factory=OutputSettings)
    split: SplitSettings = Field(default_factory=SplitSettings)
    classify: ClassifySettings = Field(default_factory=ClassifySettings)
    canvas: CanvasSettings = Field(default_factory=CanvasSettings)
    restore: RestoreSettings = Field(default_factory=RestoreSettings)
    service: ServiceSettings = Field(default_factory=ServiceSettings)
    learn_colors: bool = True
    debug: bool = False

    @model_validator(mode="after")
    def restore_threshold_is_strict(self):
        if self.restore.threshold > self.split.dark_threshold:
            raise ValueError(
                f"restore.threshold ({self.restore.threshold}) must not exceed "
                f"split.dark_threshold ({self.split.dark_threshold})"
            )
        return self


Disposition = Literal["colorized", "skipped_blank", "skipped_text", "fallback"]
DISPOSITIONS: Tuple[str, ...] = ("colorized", "skipped_blank", "skipped_text", "fallback")


class SegmentReport(BaseModel):
    index: int
    start_row: int
    height: int
    width: int
    disposition: Disposition
    dark_ratio: float = 0.0
    canvas: Optional[str] = None
    attempts: int = 0
    retry_delays: List[float] = Field(default_factory=list)
    restored_pixels: int = 0
    error: Optional[str] = None


class RunSummary(BaseModel):
    schema_version: str = "colorize_run_v1"
    run_id: Optional[str] = None
    slice_count: int
    strip_width: int
    strip_height: int
    split_points: List[int] = Field(default_factory=list)
    segment_count: int
    counts: Dict[str, int] = Field(default_factory=dict)
    fallback_segments: List[int] = Field(default_factory=list)
    segments: List[SegmentReport] = Field(default_factory=list)
    extra: Dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_reports(cls, reports: List[SegmentReport], **kwargs) -> "RunSummary":
        counts = {d: 0 for d in DISPOSITIONS}
        for r in reports:
            counts[r.disposition] += 1
        return cls(
            segment_count=len(reports),
            counts=counts,
            fallback_segments=[r.index for r in reports if r.disposition == "fallback"],
            segments=list(reports),
            **kwargs,
        )
