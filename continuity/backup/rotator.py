# continuity/backup/rotator.py
"""
Short-term copies and long-term gzip archives of the daily action streams.

    rotator = BackupRotator(base_dir, settings)
    rotator.hourly()            # copy today's stream, keep newest 24
    rotator.daily()             # gzip yesterday's stream once, keep newest 30
    rotator.manual("pre-upgrade")

Retention always orders by st_mtime; filenames are never parsed for dates.
"""

import gzip
import logging
import os
import re
import shutil
import stat
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Callable, List, Optional

from continuity.core.config import Settings, load_settings
from continuity.core.paths import STREAM_PREFIX, backups_dir, stream_path, utc_today
from continuity.storage.atomic import fsync_dir
from continuity.storage.guard import DiskGuard

logger = logging.getLogger(__name__)

BACKUP_KINDS = ("hourly", "daily", "manual")
HOURLY_PATTERN = f"{STREAM_PREFIX}[0-9]*-*.jsonl"      # excludes manual copies
DAILY_PATTERN = f"{STREAM_PREFIX}*.jsonl.gz"
MAX_DESCRIPTION_LENGTH = 50


@dataclass
class BackupResult:
    ok: bool
    path: Optional[Path] = None
    reason: str = ""
    removed: List[Path] = field(default_factory=list)

    def __bool__(self):
        return self.ok


def sanitize_description(description: Optional[str]) -> str:
    cleaned = re.sub(r"[^A-Za-z0-9_-]", "", description or "")[:MAX_DESCRIPTION_LENGTH]
    return cleaned or "manual"


def _is_non_empty(path: Path) -> bool:
    try:
        return path.stat().st_size > 0
    except FileNotFoundError:
        return False


class BackupRotator:
    def __init__(
        self,
        base_dir: Optional[Path] = None,
        settings: Optional[Settings] = None,
        guard: Optional[DiskGuard] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        if settings is None:
            settings = load_settings(base_dir=base_dir)
        self.settings = settings
        self.base_dir = Path(base_dir) if base_dir is not None else settings.base_dir
        self.backup_dir = backups_dir(self.base_dir)
        self.guard = guard or DiskGuard(settings.min_disk_space_kb)
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def _prepare(self) -> Optional[BackupResult]:
        try:
            self.backup_dir.mkdir(mode=0o700, parents=True, exist_ok=True)
            os.chmod(self.backup_dir, 0o700)
        except OSError as e:
            logger.error("Cannot prepare backup directory %s: %s", self.backup_dir, e)
            return BackupResult(False, reason=f"Backup directory unavailable: {e}")
        if not self.guard.authorize(self.backup_dir):
            return BackupResult(False, reason="Insufficient disk space for backup")
        return None

    def _copy_verified(self, source: Path, target: Path) -> BackupResult:
        try:
            shutil.copyfile(source, target)
            os.chmod(target, 0o600)
        except OSError as e:
            target.unlink(missing_ok=True)
            logger.error("Backup of %s failed: %s", source.name, e)
            return BackupResult(False, reason=f"Copy failed: {e}")
        if not _is_non_empty(target):
            target.unlink(missing_ok=True)
            logger.error("Backup file %s is empty, removing", target.name)
            return BackupResult(False, reason="Backup file is empty")
        fsync_dir(self.backup_dir)
        return BackupResult(True, path=target)

    def hourly(self) -> BackupResult:
        """Timestamped copy of today's stream; keeps the newest max_hourly_backups."""
        rejected = self._prepare()
        if rejected is not None:
            return rejected

        now = self._clock()
        today = utc_today(now)
        source = stream_path(self.base_dir, today)
        if not source.exists():
            return BackupResult(True, reason="No action stream to backup")

        target = self.backup_dir / f"{STREAM_PREFIX}{today.isoformat()}-{now:%Y%m%d-%H%M}.jsonl"
        result = self._copy_verified(source, target)
        if result:
            logger.info("Hourly backup created: %s", target.name)
            result.removed = self.rotate(HOURLY_PATTERN, self.settings.max_hourly_backups)
        return result

    def daily(self) -> BackupResult:
        """gzip yesterday's stream exactly once; keeps the newest max_daily_backups."""
        rejected = self._prepare()
        if rejected is not None:
            return rejected

        yesterday = utc_today(self._clock()) - timedelta(days=1)
        source = stream_path(self.base_dir, yesterday)
        if not source.exists():
            return BackupResult(True, reason="No stream from yesterday to archive")

        archive = self.backup_dir / f"{source.name}.gz"
        if archive.exists():
            return BackupResult(True, path=archive, reason=f"Already archived: {archive.name}")

        # a gzip of nothing still has a header, so emptiness is checked on the source
        if not _is_non_empty(source):
            logger.error("Stream %s is empty, not archiving", source.name)
            return BackupResult(False, reason="Archive source is empty")

        tmp = archive.with_name(archive.name + ".tmp")
        try:
            with open(source, "rb") as src, open(tmp, "wb") as raw:
                with gzip.GzipFile(filename=source.name, mode="wb", fileobj=raw) as dst:
                    shutil.copyfileobj(src, dst)
                raw.flush()
                os.fsync(raw.fileno())
        except OSError as e:
            tmp.unlink(missing_ok=True)
            logger.error("Daily archive of %s failed: %s", source.name, e)
            return BackupResult(False, reason=f"Archive failed: {e}")

        try:
            os.chmod(tmp, 0o600)
            os.replace(tmp, archive)
        except OSError as e:
            tmp.unlink(missing_ok=True)
            logger.error("Could not move archive into place: %s", e)
            return BackupResult(False, reason=f"Archive failed: {e}")
        fsync_dir(self.backup_dir)
        logger.info("Daily archive created: %s", archive.name)
        removed = self.rotate(DAILY_PATTERN, self.settings.max_daily_backups)
        return BackupResult(True, path=archive, removed=removed)

    def manual(self, description: Optional[str] = "manual") -> BackupResult:
        """Copy today's stream under an operator-chosen label. Never rotated."""
        rejected = self._prepare()
        if rejected is not None:
            return rejected

        now = self._clock()
        source = stream_path(self.base_dir, utc_today(now))
        if not source.exists():
            return BackupResult(False, reason="No action stream to backup")

        label = sanitize_description(description)
        target = self.backup_dir / f"{STREAM_PREFIX}manual-{label}-{now:%Y%m%d-%H%M%S}.jsonl"
        result = self._copy_verified(source, target)
        if result:
            logger.info("Manual backup created: %s", target.name)
        return result

    def create(self, kind: str, description: Optional[str] = None) -> BackupResult:
        if kind == "hourly":
            return self.hourly()
        if kind == "daily":
            return self.daily()
        if kind == "manual":
            return self.manual(description or "manual")
        raise ValueError(f"Unknown backup kind {kind!r}, expected one of {', '.join(BACKUP_KINDS)}")

    def rotate(self, pattern: str, keep: int) -> List[Path]:
        """
        Delete the oldest (by st_mtime) files matching `pattern` until `keep` remain.
        Files that vanish between listing and unlink are skipped.
        """
        candidates = []
        for path in self.backup_dir.glob(pattern):
            try:
                st = path.stat()
            except FileNotFoundError:
                continue
            if stat.S_ISREG(st.st_mode):
                candidates.append((st.st_mtime, path.name, path))

        if len(candidates) <= keep:
            return []

        delete_count = len(candidates) - keep
        logger.info("Rotating backups (%s): keeping %d, deleting %d oldest", pattern, keep, delete_count)

        candidates.sort()
        removed = []
        for _, _, path in candidates[:delete_count]:
            try:
                path.unlink()
            except FileNotFoundError:
                continue
            logger.info("  Removing: %s", path.name)
            removed.append(path)
        return removed
