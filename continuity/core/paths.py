# continuity/core/paths.py
"""On-disk layout of a continuity base directory."""

from datetime import date, datetime, timezone
from pathlib import Path
from typing import Optional

STREAM_PREFIX = "action-stream-"
EMERGENCY_FILENAME = "EMERGENCY_RECOVERY.jsonl"
ALERTS_FILENAME = "ALERTS.jsonl"
MANIFEST_FILENAME = "COMPACTION_MANIFEST.json"
SEQUENCE_FILENAME = ".sequence"
LAST_HASH_FILENAME = ".last_hash"
LOCK_FILENAME = ".chain.lock"


def utc_today(now: Optional[datetime] = None) -> date:
    return (now or datetime.now(timezone.utc)).astimezone(timezone.utc).date()


def stream_path(base_dir: Path, day: date) -> Path:
    return Path(base_dir) / f"{STREAM_PREFIX}{day.isoformat()}.jsonl"


def backups_dir(base_dir: Path) -> Path:
    return Path(base_dir) / "backups"


def active_workflows_dir(base_dir: Path) -> Path:
    return Path(base_dir) / "workflows" / "active"


def ensure_layout(base_dir: Path) -> Path:
    """Create the base directory tree with owner-only permissions."""
    base = Path(base_dir)
    base.mkdir(mode=0o700, parents=True, exist_ok=True)
    for sub in (backups_dir(base), active_workflows_dir(base)):
        sub.mkdir(mode=0o700, parents=True, exist_ok=True)
    return base
