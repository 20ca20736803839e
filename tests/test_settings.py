import pytest
from pydantic import ValidationError

from run_pipeline import resolve_settings
from schemas import PipelineSettings, RunSummary, SegmentReport


def test_defaults():
    s = PipelineSettings()
    assert (s.output.width, s.output.height) == (None, None)
    assert (s.split.dark_threshold, s.split.min_gap_height, s.split.edge_tolerance) == (20, 30, 0.02)
    assert s.split.min_segment_height == 100
    assert s.canvas.sizes == [(1024, 1024), (1024, 1536), (1536, 1024)]
    assert s.restore.threshold < s.split.dark_threshold
    assert s.service.max_attempts == 3
    assert s.learn_colors and not s.debug


def test_settings_file_is_loaded(tmp_path):
    path = tmp_path / "settings.yaml"
    path.write_text(
        "split:\n"
        "  dark_threshold: 25\n"
        "canvas:\n"
        "  sizes: [\"1024x1024\", \"1536X1024\"]\n"
        "service:\n"
        "  hints: Mina has red hair.\n"
    )
    s = resolve_settings(str(path), env={})
    assert s.split.dark_threshold == 25
    assert s.canvas.sizes == [(1024, 1024), (1536, 1024)]
    assert s.service.hints == "Mina has red hair."


def test_environment_overrides_file(tmp_path):
    path = tmp_path / "settings.yaml"
    path.write_text("split:\n  dark_threshold: 25\n  min_gap_height: 50\n")
    env = {"DARK_THRESHOLD": "30", "OUTPUT_WIDTH": "800", "EDGE_TOLERANCE": "0.05", "DEBUG": "TRUE"}

    s = resolve_settings(str(path), env=env)

    assert s.split.dark_threshold == 30
    assert s.split.min_gap_height == 50
    assert s.split.edge_tolerance == 0.05
    assert s.output.width == 800
    assert s.debug is True


def test_command_line_overrides_environment():
    s = resolve_settings(env={"DARK_THRESHOLD": "30", "OUTPUT_HEIGHT": "1280"},
                         overrides={"split.dark_threshold": 40, "output.height": None, "debug": None})
    assert s.split.dark_threshold == 40
    assert s.output.height == 1280
    assert s.debug is False


def test_restore_threshold_may_not_exceed_split_threshold():
    with pytest.raises(ValueError):
        resolve_settings(env={"DARK_THRESHOLD": "5"})


@pytest.mark.parametrize("data", [
    {"canvas": {"sizes": []}},
    {"canvas": {"sizes": ["0x1024"]}},
    {"output": {"width": 0}},
    {"service": {"max_attempts": 0}},
    {"split": {"edge_tolerance": 1.5}},
])
def test_invalid_settings_rejected(data):
    with pytest.raises(ValidationError):
        PipelineSettings(**data)


def test_summary_counts_every_disposition():
    reports = [
        SegmentReport(index=0, start_row=0, height=150, width=60, disposition="colorized"),
        SegmentReport(index=1, start_row=150, height=120, width=60, disposition="fallback", error="x"),
        SegmentReport(index=2, start_row=270, height=130, width=60, disposition="skipped_blank"),
    ]
    summary = RunSummary.from_reports(reports, slice_count=2, strip_width=60, strip_height=400)
    assert summary.counts == {"colorized": 1, "skipped_blank": 1, "skipped_text": 0, "fallback": 1}
    assert summary.fallback_segments == [1]
    assert summary.model_dump()["schema_version"] == "colorize_run_v1"


def test_unknown_disposition_rejected():
    with pytest.raises(ValidationError):
        SegmentReport(index=0, start_row=0, height=1, width=1, disposition="painted")
