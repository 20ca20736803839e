from .utils import (
    load_settings,
    ensure_dir,
    save_json,
    append_jsonl,
    read_jsonl,
    ProgressLogger,
    PROGRESS_STATUS_VALUES,
    validate_progress_event,
    log_llm_usage,
)
from .image_utils import SliceFile, list_slices, load_rgba, save_image, output_slice_name

__all__ = [
    "load_settings",
    "ensure_dir",
    "save_json",
    "append_jsonl",
    "read_jsonl",
    "ProgressLogger",
    "PROGRESS_STATUS_VALUES",
    "validate_progress_event",
    "log_llm_usage",
    "SliceFile",
    "list_slices",
    "load_rgba",
    "save_image",
    "output_slice_name",
]
