# tests/conftest.py
import json
from datetime import datetime, timezone
from pathlib import Path
from types import SimpleNamespace
from typing import List

import pytest

from continuity.chain.writer import ActionLog
from continuity.core.config import Settings
from continuity.storage.guard import DiskGuard

FIXED_NOW = datetime(2026, 2, 13, 12, 0, 0, 123000, tzinfo=timezone.utc)


def fake_usage(free_kb: int):
    """Stand-in for shutil.disk_usage reporting `free_kb` free."""
    return lambda path: SimpleNamespace(total=free_kb * 2048, used=free_kb * 1024, free=free_kb * 1024)


def read_lines(path: Path) -> List[dict]:
    return [json.loads(line) for line in path.read_text(encoding="utf-8").splitlines() if line.strip()]


def rewrite_line(path: Path, index: int, mutate) -> None:
    """Apply `mutate` to the parsed record on 1-based line `index` and write it back."""
    lines = path.read_text(encoding="utf-8").splitlines()
    record = json.loads(lines[index - 1])
    mutate(record)
    lines[index - 1] = json.dumps(record, separators=(",", ":"))
    path.write_text("\n".join(lines) + "\n", encoding="utf-8")


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return Settings(
        base_dir=tmp_path / "continuity",
        session_id="test-session-001",
        min_disk_space_kb=10240,
        max_hourly_backups=3,
        max_daily_backups=2,
        recall_limit=5,
    )


@pytest.fixture
def roomy_guard() -> DiskGuard:
    return DiskGuard(min_free_kb=10240, usage=fake_usage(10_000_000))


@pytest.fixture
def log(settings: Settings, roomy_guard: DiskGuard) -> ActionLog:
    return ActionLog(settings=settings, guard=roomy_guard, clock=lambda: FIXED_NOW)
