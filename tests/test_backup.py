# tests/test_backup.py
import gzip
import os
from datetime import timedelta
from pathlib import Path

import pytest

from continuity.backup.rotator import HOURLY_PATTERN, BackupRotator, sanitize_description
from continuity.chain.writer import ActionLog
from continuity.core.paths import stream_path
from continuity.storage.guard import DiskGuard

from conftest import FIXED_NOW, fake_usage


@pytest.fixture
def rotator(settings, roomy_guard) -> BackupRotator:
    return BackupRotator(settings=settings, guard=roomy_guard, clock=lambda: FIXED_NOW)


def _seed_backups(directory: Path, names, start: int = 1_700_000_000):
    directory.mkdir(parents=True, exist_ok=True)
    for offset, name in enumerate(names):
        path = directory / name
        path.write_text("{}\n")
        os.utime(path, (start + offset * 60, start + offset * 60))


def test_hourly_copies_todays_stream(log: ActionLog, rotator: BackupRotator):
    log.append("commit", "github", "A")
    result = rotator.hourly()

    assert result
    assert result.path.name == "action-stream-2026-02-13-20260213-1200.jsonl"
    assert result.path.read_bytes() == log.stream_path().read_bytes()


def test_hourly_without_stream_is_not_an_error(rotator: BackupRotator):
    result = rotator.hourly()
    assert result
    assert result.path is None
    assert "No action stream" in result.reason


def test_empty_copy_is_rejected(log: ActionLog, rotator: BackupRotator):
    log.stream_path().parent.mkdir(parents=True, exist_ok=True)
    log.stream_path().write_text("")
    result = rotator.hourly()
    assert not result
    assert result.reason == "Backup file is empty"
    assert list(rotator.backup_dir.iterdir()) == []


def test_rotation_orders_by_mtime_not_name(rotator: BackupRotator):
    # names sort in the opposite order to their ages
    names = [f"action-stream-2026-02-13-20260213-{h:02d}00.jsonl" for h in (9, 8, 7, 6, 5)]
    _seed_backups(rotator.backup_dir, names)

    removed = rotator.rotate(HOURLY_PATTERN, keep=3)
    assert [p.name for p in removed] == names[:2]
    assert sorted(p.name for p in rotator.backup_dir.iterdir()) == sorted(names[2:])


def test_rotation_skips_manual_copies(rotator: BackupRotator):
    _seed_backups(rotator.backup_dir, [
        "action-stream-manual-pre-upgrade-20260101-000000.jsonl",
        "action-stream-2026-02-13-20260213-0100.jsonl",
        "action-stream-2026-02-13-20260213-0200.jsonl",
    ])
    removed = rotator.rotate(HOURLY_PATTERN, keep=1)
    assert [p.name for p in removed] == ["action-stream-2026-02-13-20260213-0100.jsonl"]
    assert (rotator.backup_dir / "action-stream-manual-pre-upgrade-20260101-000000.jsonl").exists()


def test_rotation_tolerates_vanishing_files(rotator: BackupRotator, monkeypatch):
    names = [f"action-stream-2026-02-13-20260213-{h:02d}00.jsonl" for h in range(5)]
    _seed_backups(rotator.backup_dir, names)

    real_unlink = Path.unlink

    def racing_unlink(self, *args, **kwargs):
        if self.name == names[0]:
            real_unlink(self)           # another rotator got there first
            raise FileNotFoundError(self)
        return real_unlink(self, *args, **kwargs)

    monkeypatch.setattr(Path, "unlink", racing_unlink)
    removed = rotator.rotate(HOURLY_PATTERN, keep=2)
    assert [p.name for p in removed] == names[1:3]
    assert sorted(p.name for p in rotator.backup_dir.iterdir()) == names[3:]


def test_hourly_keeps_configured_count(log: ActionLog, rotator: BackupRotator):
    log.append("commit", "github", "A")
    _seed_backups(rotator.backup_dir, [f"action-stream-2026-02-12-20260212-{h:02d}00.jsonl" for h in range(4)])
    result = rotator.hourly()
    assert result
    assert len(result.removed) == 2     # 5 copies, settings keep 3
    assert len(list(rotator.backup_dir.glob(HOURLY_PATTERN))) == 3
    assert result.path.exists()


def test_daily_archives_yesterday_once(settings, roomy_guard, rotator: BackupRotator):
    yesterday = ActionLog(settings=settings, guard=roomy_guard, clock=lambda: FIXED_NOW - timedelta(days=1))
    yesterday.append("commit", "github", "late night fix")
    source = yesterday.stream_path()

    first = rotator.daily()
    second = rotator.daily()

    assert first and second
    assert first.path.name == "action-stream-2026-02-12.jsonl.gz"
    assert second.reason.startswith("Already archived")
    assert list(rotator.backup_dir.glob("*.gz")) == [first.path]
    assert list(rotator.backup_dir.glob("*.tmp")) == []
    with gzip.open(first.path, "rb") as f:
        assert f.read() == source.read_bytes()


def test_daily_retention(settings, roomy_guard, rotator: BackupRotator):
    _seed_backups(rotator.backup_dir, [f"action-stream-2026-01-{d:02d}.jsonl.gz" for d in (1, 2, 3)])
    yesterday = ActionLog(settings=settings, guard=roomy_guard, clock=lambda: FIXED_NOW - timedelta(days=1))
    yesterday.append("commit", "github", "x")

    result = rotator.daily()
    assert result
    assert sorted(p.name for p in result.removed) == ["action-stream-2026-01-01.jsonl.gz",
                                                      "action-stream-2026-01-02.jsonl.gz"]
    assert len(list(rotator.backup_dir.glob("*.gz"))) == 2


def test_daily_without_yesterday_is_not_an_error(rotator: BackupRotator):
    result = rotator.daily()
    assert result
    assert result.path is None


def test_manual_backup_label_is_sanitized(log: ActionLog, rotator: BackupRotator):
    log.append("commit", "github", "A")
    result = rotator.manual("../../etc/passwd; rm -rf")
    assert result
    assert result.path.parent == rotator.backup_dir
    assert result.path.name == "action-stream-manual-etcpasswdrm-rf-20260213-120000.jsonl"


@pytest.mark.parametrize("raw, expected", [
    ("pre-upgrade", "pre-upgrade"),
    ("with space", "withspace"),
    ("!!!", "manual"),
    (None, "manual"),
    ("x" * 80, "x" * 50),
])
def test_sanitize_description(raw, expected):
    assert sanitize_description(raw) == expected


def test_manual_without_stream_fails(rotator: BackupRotator):
    assert not rotator.manual("nothing")


def test_low_disk_refuses_backup(log: ActionLog, settings):
    log.append("commit", "github", "A")
    rotator = BackupRotator(settings=settings, guard=DiskGuard(10240, usage=fake_usage(1)),
                            clock=lambda: FIXED_NOW)
    result = rotator.hourly()
    assert not result
    assert "disk space" in result.reason
    assert list(rotator.backup_dir.iterdir()) == []


def test_unknown_kind(rotator: BackupRotator):
    with pytest.raises(ValueError, match="Unknown backup kind"):
        rotator.create("weekly")


@pytest.mark.parametrize("kind", ["hourly", "daily", "manual"])
def test_low_disk_refuses_every_kind(log: ActionLog, settings, kind):
    log.append("commit", "github", "A")
    rotator = BackupRotator(settings=settings, guard=DiskGuard(10240, usage=fake_usage(1)),
                            clock=lambda: FIXED_NOW)
    result = rotator.create(kind)
    assert not result
    assert result.reason == "Insufficient disk space for backup"


def test_unusable_backup_dir_fails(log: ActionLog, settings, rotator: BackupRotator):
    log.append("commit", "github", "A")
    rotator.backup_dir.rmdir()
    rotator.backup_dir.write_text("not a directory")
    result = rotator.hourly()
    assert not result
    assert result.reason.startswith("Backup directory unavailable")


def test_daily_refuses_empty_stream(settings, rotator: BackupRotator):
    yesterday = stream_path(settings.base_dir, FIXED_NOW.date() - timedelta(days=1))
    yesterday.parent.mkdir(parents=True, exist_ok=True)
    yesterday.write_text("")

    result = rotator.daily()
    assert not result
    assert result.reason == "Archive source is empty"
    assert list(rotator.backup_dir.glob("*.gz")) == []
    assert list(rotator.backup_dir.glob("*.tmp")) == []
