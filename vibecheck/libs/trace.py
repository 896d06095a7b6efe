"""Run tracing: run ids, per-run trace directories and JSON payload files."""

import json
import logging
import uuid
from pathlib import Path
from typing import Any, Optional, Union

from pydantic import BaseModel

LOG = logging.getLogger(__name__)

TRACE_DIRNAME = "trace"

PathLike = Union[str, Path]


def create_run_id() -> str:
    """Allocate a fresh, effectively unique run identifier."""
    return str(uuid.uuid4())


def trace_dir_for(root_dir: PathLike, source_folder: str, run_id: str) -> Path:
    """Path of a run's trace directory, without creating it."""
    return Path(root_dir) / source_folder / TRACE_DIRNAME / run_id


def ensure_trace_dir(root_dir: PathLike, source_folder: str, run_id: str) -> Path:
    """Create (if needed) and return <root>/<folder>/trace/<run_id>."""
    trace_dir = trace_dir_for(root_dir, source_folder, run_id)
    trace_dir.mkdir(parents=True, exist_ok=True)
    return trace_dir


def safe_json(value: Any) -> Any:
    """Convert a value to plain JSON data, falling back to its string form."""
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json")
    try:
        return json.loads(json.dumps(value, default=_json_default))
    except (TypeError, ValueError):
        return str(value)


def _json_default(value: Any) -> Any:
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json")
    if isinstance(value, Path):
        return str(value)
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def write_trace_file(trace_dir: PathLike, filename: str, payload: Any) -> Path:
    """Write a stage payload as pretty-printed JSON and return its path."""
    file_path = Path(trace_dir) / filename
    file_path.write_text(
        json.dumps(safe_json(payload), indent=2, ensure_ascii=False),
        encoding="utf-8",
    )
    LOG.debug("Wrote trace file %s", file_path)
    return file_path


def read_json_file(file_path: PathLike) -> Optional[Any]:
    """Read a JSON file, returning None if it is missing or unparsable."""
    try:
        return json.loads(Path(file_path).read_text(encoding="utf-8"))
    except (OSError, ValueError):
        return None
