# continuity/ops/health.py
"""
Health, restart verification and status reports.

None of these stop at the first problem: each report carries every issue it
found so an operator sees the whole picture.
"""

import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

from continuity.chain.state import ChainState
from continuity.core.canon import parse_line
from continuity.core.config import Settings
from continuity.core.exceptions import StateError
from continuity.core.paths import backups_dir, stream_path, utc_today
from continuity.core.types import utc_now_ms
from continuity.ops.workflows import count_active_workflows
from continuity.query.engine import last_action
from continuity.storage.emergency import EmergencySink
from continuity.storage.guard import DiskGuard
from continuity.storage.jsonl import JsonlStorage
from continuity.verify.verifier import IntegrityValidator

logger = logging.getLogger(__name__)


@dataclass
class HealthReport:
    status: str                         # healthy, warning, critical
    healthy: bool
    timestamp: str
    issues: List[str] = field(default_factory=list)
    metrics: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class RestartCheck:
    name: str
    level: str                          # ok, info, warn, error
    detail: str


@dataclass
class RestartReport:
    checks: List[RestartCheck] = field(default_factory=list)

    @property
    def errors(self) -> int:
        return sum(1 for c in self.checks if c.level == "error")

    @property
    def passed(self) -> bool:
        return self.errors == 0

    def add(self, name: str, level: str, detail: str) -> None:
        self.checks.append(RestartCheck(name, level, detail))


def _count_backups(base_dir: Path) -> Optional[int]:
    directory = backups_dir(base_dir)
    if not directory.is_dir():
        return None
    return sum(1 for p in directory.iterdir() if p.is_file())


def _is_writeable(base_dir: Path) -> bool:
    marker = Path(base_dir) / ".write_test"
    try:
        marker.write_text("test", encoding="utf-8")
        marker.unlink()
        return True
    except OSError as e:
        logger.error("Base directory %s is not writeable: %s", base_dir, e)
        return False


def health_check(base_dir: Path, settings: Settings, now: Optional[datetime] = None,
                 guard: Optional[DiskGuard] = None) -> HealthReport:
    guard = guard or DiskGuard(settings.min_disk_space_kb)
    status = "healthy"
    issues: List[str] = []

    disk = guard.authorize(base_dir)
    if not disk:
        status = "critical"
        issues.append("low_disk_space")

    if not _is_writeable(base_dir):
        status = "critical"
        issues.append("not_writeable")

    emergency_count = EmergencySink(base_dir).count()
    if emergency_count > 0:
        if status == "healthy":
            status = "warning"
        issues.append(f"emergency_log_entries:{emergency_count}")

    with JsonlStorage(stream_path(base_dir, utc_today(now))) as today:
        today_actions = today.count()

    return HealthReport(
        status=status,
        healthy=not issues,
        timestamp=utc_now_ms(now),
        issues=issues,
        metrics={
            "today_actions": today_actions,
            "disk_available_kb": disk.available_kb,
            "active_workflows": count_active_workflows(base_dir),
        },
    )


def verify_on_restart(base_dir: Path, settings: Settings, now: Optional[datetime] = None,
                      guard: Optional[DiskGuard] = None) -> RestartReport:
    guard = guard or DiskGuard(settings.min_disk_space_kb)
    report = RestartReport()
    stream = stream_path(base_dir, utc_today(now))

    if stream.exists():
        with JsonlStorage(stream) as storage:
            lines = list(storage.iter_lines())
        invalid = 0
        for _, line in lines:
            try:
                parse_line(line)
            except ValueError:
                invalid += 1
        detail = f"{len(lines)} entries ({len(lines) - invalid} valid, {invalid} invalid)"
        report.add("action_stream", "error" if invalid else "ok", detail)

        chain = IntegrityValidator().validate_lines(lines)
        if chain.is_valid:
            report.add("integrity_chain", "ok", f"{chain.entries} entries verified")
        else:
            report.add("integrity_chain", "error", f"{len(chain.failures)} failures in {chain.entries} entries")
    else:
        report.add("action_stream", "warn", f"No stream for today ({stream.name})")

    state = ChainState(base_dir)
    if state.has_chain():
        report.add("last_hash", "ok", f"Last hash recorded: {state.last_hash()[:16]}...")
    else:
        report.add("last_hash", "warn", "No last hash file (first run or corrupted)")

    try:
        report.add("sequence", "info", f"Current sequence: {state.current_sequence()}")
    except StateError as e:
        report.add("sequence", "error", str(e))

    disk = guard.authorize(base_dir)
    if disk:
        report.add("disk_space", "ok", f"{disk.available_kb} KB available")
    else:
        report.add("disk_space", "error", f"{disk.available_kb} KB available, need {disk.required_kb} KB")

    report.add("workflows", "info", f"Active workflows: {count_active_workflows(base_dir)}")

    backups = _count_backups(base_dir)
    if backups is None:
        report.add("backups", "warn", "No backup directory found")
    else:
        report.add("backups", "ok", f"Backup directory: {backups} files")

    emergency_count = EmergencySink(base_dir).count()
    if emergency_count > 0:
        report.add("emergency_log", "error", f"EMERGENCY LOG HAS {emergency_count} ENTRIES! Review immediately!")
    else:
        report.add("emergency_log", "ok", "Emergency log empty")

    return report


def status_summary(base_dir: Path, settings: Settings, now: Optional[datetime] = None,
                   guard: Optional[DiskGuard] = None) -> Dict[str, Any]:
    guard = guard or DiskGuard(settings.min_disk_space_kb)
    stream = stream_path(base_dir, utc_today(now))
    state = ChainState(base_dir)

    with JsonlStorage(stream) as storage:
        lines = list(storage.iter_lines())
    latest = last_action(stream)
    chain = IntegrityValidator().validate_lines(lines)
    if not lines:
        integrity = "no chain"
    elif chain.is_valid:
        integrity = "valid"
    else:
        integrity = "invalid"
    free_kb = guard.free_kb(base_dir)
    try:
        sequence: Optional[int] = state.current_sequence()
    except StateError:
        sequence = None

    return {
        "today_actions": len(lines),
        "active_workflows": count_active_workflows(base_dir),
        "last_action_time": latest["time"] if latest else None,
        "integrity": integrity,
        "integrity_failures": len(chain.failures),
        "backups": _count_backups(base_dir) or 0,
        "disk_free_mb": free_kb // 1024 if free_kb is not None else None,
        "sequence": sequence,
        "last_hash": state.last_hash(),
    }
