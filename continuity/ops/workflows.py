# continuity/ops/workflows.py
import json
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List

from continuity.core.paths import active_workflows_dir
from continuity.storage.atomic import atomic_write_text

_WORKFLOW_ID = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]{0,127}$")


@dataclass(frozen=True)
class WorkflowInfo:
    name: str
    updated: datetime


def _workflow_file(base_dir: Path, workflow_id: str) -> Path:
    if not _WORKFLOW_ID.match(workflow_id):
        raise ValueError(f"Invalid workflow id: {workflow_id!r}")
    return active_workflows_dir(base_dir) / f"{workflow_id}.json"


def checkpoint_workflow(base_dir: Path, workflow_id: str, state: Dict[str, Any]) -> Path:
    """Persist the state of an in-flight multi-step workflow (fsync'd, atomic replace)."""
    path = _workflow_file(base_dir, workflow_id)
    atomic_write_text(path, json.dumps(state, indent=2, sort_keys=True) + "\n")
    return path


def load_workflow(base_dir: Path, workflow_id: str) -> Dict[str, Any]:
    return json.loads(_workflow_file(base_dir, workflow_id).read_text(encoding="utf-8"))


def complete_workflow(base_dir: Path, workflow_id: str) -> bool:
    """Drop the active checkpoint. False if there was none."""
    path = _workflow_file(base_dir, workflow_id)
    try:
        path.unlink()
    except FileNotFoundError:
        return False
    return True


def list_workflows(base_dir: Path) -> List[WorkflowInfo]:
    directory = active_workflows_dir(base_dir)
    if not directory.is_dir():
        return []
    found = []
    for path in sorted(directory.glob("*.json")):
        try:
            mtime = path.stat().st_mtime
        except FileNotFoundError:
            continue
        found.append(WorkflowInfo(name=path.stem, updated=datetime.fromtimestamp(mtime, timezone.utc)))
    return found


def count_active_workflows(base_dir: Path) -> int:
    directory = active_workflows_dir(base_dir)
    if not directory.is_dir():
        return 0
    return sum(1 for _ in directory.glob("*.json"))
