# continuity/query/engine.py
import logging
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional

from continuity.core.canon import parse_line
from continuity.core.config import Settings
from continuity.core.paths import STREAM_PREFIX, backups_dir, stream_path, utc_today
from continuity.storage.jsonl import JsonlStorage

logger = logging.getLogger(__name__)

DEFAULT_QUERY_LIMIT = 50


def _actions(path: Path) -> Iterator[Dict[str, Any]]:
    """Yield the `action` object of every parseable line; garbage lines are skipped."""
    if not Path(path).exists():
        return
    with JsonlStorage(path) as storage:
        for index, line in storage.iter_lines():
            try:
                envelope = parse_line(line)
            except ValueError:
                logger.debug("Skipping unparseable line %d in %s", index, path)
                continue
            action = envelope.get("action") if isinstance(envelope, dict) else None
            if isinstance(action, dict):
                yield action


def project(action: Dict[str, Any], with_cost: bool = True) -> Dict[str, Any]:
    """Display projection of a record."""
    row = {
        "seq": action.get("sequence"),
        "time": action.get("timestamp"),
        "type": action.get("type"),
        "platform": action.get("platform"),
        "desc": action.get("description"),
    }
    if with_cost:
        row["cost"] = action.get("cost")
    return row


def query(
    stream: Path,
    type: Optional[str] = None,
    platform: Optional[str] = None,
    since: Optional[str] = None,
    limit: int = DEFAULT_QUERY_LIMIT,
) -> List[Dict[str, Any]]:
    """
    Records matching every given filter, in file order, at most `limit` of them.
    `since` is compared against the RFC 3339 timestamp as a string (inclusive).
    """
    if limit <= 0:
        return []
    results: List[Dict[str, Any]] = []
    for action in _actions(stream):
        if type is not None and action.get("type") != type:
            continue
        if platform is not None and action.get("platform") != platform:
            continue
        if since is not None and str(action.get("timestamp", "")) < since:
            continue
        results.append(project(action))
        if len(results) >= limit:
            break
    return results


def last_action(stream: Path, platform: Optional[str] = None) -> Optional[Dict[str, Any]]:
    """Most recent record (optionally on one platform). Scans the whole file."""
    last = None
    for action in _actions(stream):
        if platform is None or action.get("platform") == platform:
            last = action
    return project(last, with_cost=False) if last is not None else None


def newest_backup_copy(base_dir: Path) -> Optional[Path]:
    """Most recently modified short-term (uncompressed) backup."""
    directory = backups_dir(base_dir)
    if not directory.is_dir():
        return None
    copies = [p for p in directory.glob(f"{STREAM_PREFIX}*.jsonl") if p.is_file()]
    if not copies:
        return None
    return max(copies, key=lambda p: p.stat().st_mtime)


def recall(base_dir: Path, settings: Settings, now=None) -> List[Dict[str, Any]]:
    """
    Recent actions for re-establishing context after a restart.

    recall_mode selects the source: today's stream (primary), the newest backup
    copy (secondary) or both merged by sequence. Returns the newest
    `recall_limit` projections, oldest first.
    """
    mode = settings.recall_mode
    if mode == "off":
        return []

    merged: Dict[Any, Dict[str, Any]] = {}
    if mode in ("secondary", "both"):
        backup = newest_backup_copy(base_dir)
        if backup is not None:
            for action in _actions(backup):
                merged[action.get("sequence")] = action
    if mode in ("primary", "both"):
        for action in _actions(stream_path(base_dir, utc_today(now))):
            merged[action.get("sequence")] = action

    ordered = sorted(
        merged.values(),
        key=lambda a: a.get("sequence") if isinstance(a.get("sequence"), int) else -1,
    )
    return [project(a) for a in ordered[-settings.recall_limit:]]
