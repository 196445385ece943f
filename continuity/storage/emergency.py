# continuity/storage/emergency.py
import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, Iterator, Optional

from continuity.core.paths import ALERTS_FILENAME, EMERGENCY_FILENAME
from continuity.core.types import utc_now_ms

logger = logging.getLogger(__name__)


def _best_effort_append(path: Path, entry: Dict[str, Any]) -> bool:
    line = json.dumps(entry, separators=(",", ":"), default=str) + "\n"
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(str(path), os.O_WRONLY | os.O_CREAT | os.O_APPEND, 0o600)
        try:
            os.write(fd, line.encode("utf-8"))
            try:
                os.fsync(fd)
            except OSError:
                pass                    # the bytes may still reach disk
        finally:
            os.close(fd)
        return True
    except OSError as e:
        logger.critical("Could not write to %s: %s (lost entry: %s)", path, e, line.strip())
        return False


def _count_lines(path: Path) -> int:
    if not path.exists():
        return 0
    try:
        with open(path, "r", encoding="utf-8", errors="replace") as f:
            return sum(1 for line in f if line.strip())
    except OSError as e:
        logger.error("Cannot read %s: %s", path, e)
        return 0


class EmergencySink:
    """
    Last-resort, unchained store for writes the durable path could not complete.

    Not gated by the disk guard: a possibly truncated emergency entry is better
    than losing the fact that a write failed. `divert` never raises.
    """

    def __init__(self, base_dir: Path):
        self.base_dir = Path(base_dir)
        self.emergency_path = self.base_dir / EMERGENCY_FILENAME
        self.alerts_path = self.base_dir / ALERTS_FILENAME

    def divert(
        self,
        reason: str,
        action_type: Optional[str] = None,
        payload: Optional[Dict[str, Any]] = None,
        alert: str = "write_failure",
    ) -> bool:
        """Record why a write failed (and what it was), then raise an alert."""
        timestamp = utc_now_ms()
        entry: Dict[str, Any] = {"timestamp": timestamp, "type": action_type, "error": reason}
        if payload is not None:
            entry["payload"] = payload

        stored = _best_effort_append(self.emergency_path, entry)
        alerted = _best_effort_append(
            self.alerts_path,
            {"alert": alert, "timestamp": timestamp, "action": action_type, "reason": reason},
        )
        logger.error("Diverted %s action to emergency log: %s", action_type or "unknown", reason)
        return stored and alerted

    def entries(self) -> Iterator[Dict[str, Any]]:
        if not self.emergency_path.exists():
            return
        with open(self.emergency_path, "r", encoding="utf-8", errors="replace") as f:
            for line in f:
                line = line.strip()
                if not line:
                    continue
                try:
                    yield json.loads(line)
                except json.JSONDecodeError:
                    yield {"error": "unparseable_emergency_entry", "raw": line}

    def count(self) -> int:
        return _count_lines(self.emergency_path)

    def alert_count(self) -> int:
        return _count_lines(self.alerts_path)
