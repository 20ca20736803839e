import json
import os
import yaml
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple
from pathlib import Path

# Progress event schema constants for lightweight validation/testing
PROGRESS_EVENT_SCHEMA: Dict[str, Tuple[type, ...]] = {
    "timestamp": (str,),
    "run_id": (str, type(None)),
    "stage": (str,),
    "status": (str,),
    "current": (int, type(None)),
    "total": (int, type(None)),
    "percent": (float, int, type(None)),
    "message": (str, type(None)),
    "artifact": (str, type(None)),
    "segment": (int, type(None)),
    "extra": (dict,),
}
# `warning` marks a non-fatal issue (e.g. a segment falling back to its original)
# and never replaces the stage lifecycle status in the state file.
PROGRESS_STATUS_VALUES = {"running", "done", "failed", "skipped", "warning"}
TERMINAL_STATUSES = {"done", "failed", "skipped"}


def load_settings(path: str) -> Dict[str, Any]:
    with open(path, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f)
    return data or {}


def ensure_dir(path: str):
    os.makedirs(path, exist_ok=True)


def save_json(path: str, data: Any):
    """Save JSON file, ensuring parent directory exists."""
    Path(path).parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        json.dump(data, f, ensure_ascii=False, indent=2)


def append_jsonl(path: str, row):
    Path(path).parent.mkdir(parents=True, exist_ok=True)
    with open(path, "a", encoding="utf-8") as f:
        f.write(json.dumps(row, ensure_ascii=False) + "\n")


def read_jsonl(path: str):
    with open(path, "r", encoding="utf-8") as f:
        for line in f:
            if line.strip():
                yield json.loads(line)


def _utc() -> str:
    return datetime.utcnow().isoformat() + "Z"


def _type_ok(val: Any, allowed: Tuple[type, ...]) -> bool:
    if val is None:
        return type(None) in allowed
    for typ in allowed:
        if typ is float and isinstance(val, (int, float)) and not isinstance(val, bool):
            return True
        if typ is int and isinstance(val, int) and not isinstance(val, bool):
            return True
        if isinstance(val, typ):
            return True
    return False


def validate_progress_event(event: Dict[str, Any]):
    """Lightweight runtime guard to keep progress events well-shaped."""
    missing = [k for k in PROGRESS_EVENT_SCHEMA if k not in event]
    if missing:
        raise ValueError(f"Missing progress event fields: {missing}")
    if event.get("status") not in PROGRESS_STATUS_VALUES:
        raise ValueError(f"Invalid progress status: {event.get('status')}")
    for key, allowed in PROGRESS_EVENT_SCHEMA.items():
        if not _type_ok(event.get(key), allowed):
            expected = ", ".join([t.__name__ if t is not type(None) else "None" for t in allowed])
            raise ValueError(f"Field '{key}' expected types [{expected}], got {type(event.get(key)).__name__}")


class ProgressLogger:
    """
    Progress/state emitter for a colorization run.

    Events go to an append-only JSONL file; pipeline_state.json holds one entry
    per stage plus a `segments` map with the latest disposition of every
    segment that has reported one. Both paths are optional. Events are also
    kept on `self.events`.
    """

    def __init__(self, state_path: Optional[str] = None, progress_path: Optional[str] = None,
                 run_id: Optional[str] = None):
        self.state_path = state_path
        self.progress_path = progress_path
        self.run_id = run_id
        self.events: List[Dict[str, Any]] = []
        for path in (progress_path, state_path):
            if path:
                Path(path).parent.mkdir(parents=True, exist_ok=True)

    def log(self, stage: str, status: str, current: Optional[int] = None, total: Optional[int] = None,
            message: Optional[str] = None, artifact: Optional[str] = None, segment: Optional[int] = None,
            extra: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        percent = round(current / total * 100, 1) if current is not None and total else None
        event = dict(
            timestamp=_utc(),
            run_id=self.run_id,
            stage=stage,
            status=status,
            current=current,
            total=total,
            percent=percent,
            message=message,
            artifact=artifact,
            segment=segment,
            extra=extra or {},
        )
        validate_progress_event(event)
        self.events.append(event)
        if self.progress_path:
            append_jsonl(self.progress_path, event)
        if self.state_path:
            self._write_state(event)
        return event

    def _read_state(self) -> Dict[str, Any]:
        if not os.path.exists(self.state_path):
            return {}
        with open(self.state_path, "r", encoding="utf-8") as f:
            return json.load(f)

    def _write_state(self, event: Dict[str, Any]):
        state = self._read_state()
        if self.run_id:
            state["run_id"] = self.run_id

        stages = state.setdefault("stages", {})
        entry = stages.setdefault(event["stage"], {})
        status = event["status"]
        if status == "warning":
            # warnings are event-only; the stage keeps its lifecycle status
            status = entry.get("status") if entry.get("status") in TERMINAL_STATUSES else "running"
        entry["status"] = status
        entry["artifact"] = event["artifact"] or entry.get("artifact")
        entry["updated_at"] = event["timestamp"]
        entry["progress"] = {k: event[k] for k in ("current", "total", "percent", "message")}

        disposition = event["extra"].get("disposition")
        if event["segment"] is not None and disposition:
            state.setdefault("segments", {})[str(event["segment"])] = {
                "disposition": disposition,
                "message": event["message"],
                "updated_at": event["timestamp"],
            }

        with open(self.state_path, "w", encoding="utf-8") as f:
            json.dump(state, f, indent=2)


def log_llm_usage(model: str, prompt_tokens: int, completion_tokens: int, *,
                  provider: str = "openai", request_ms: Optional[float] = None,
                  request_id: Optional[str] = None, image_size: Optional[str] = None,
                  run_id: Optional[str] = None, sink_env: str = "INSTRUMENT_SINK"):
    """
    Append a usage event to the file named by $INSTRUMENT_SINK.
    No-op when the variable is unset.
    """
    sink = os.getenv(sink_env)
    if not sink:
        return None
    if prompt_tokens is None or completion_tokens is None:
        raise ValueError("prompt_tokens and completion_tokens are required")
    event = {
        "schema_version": "instrumentation_call_v1",
        "model": model,
        "provider": provider,
        "prompt_tokens": int(prompt_tokens),
        "completion_tokens": int(completion_tokens),
        "image_size": image_size,
        "request_ms": request_ms,
        "request_id": request_id,
        "run_id": run_id or os.getenv("RUN_ID"),
        "created_at": _utc(),
    }
    append_jsonl(sink, event)
    return event
