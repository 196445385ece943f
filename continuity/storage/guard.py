# continuity/storage/guard.py
import logging
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Optional

from continuity.core.config import DEFAULT_MIN_DISK_SPACE_KB

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GuardResult:
    ok: bool
    available_kb: Optional[int]
    required_kb: int

    def __bool__(self):
        return self.ok


def _existing_ancestor(path: Path) -> Path:
    path = Path(path)
    for candidate in (path, *path.parents):
        if candidate.exists():
            return candidate
    return Path("/")


class DiskGuard:
    """
    Pre-flight free-space check run before every durable write.
    `usage` defaults to shutil.disk_usage; tests inject a fake.
    """

    def __init__(
        self,
        min_free_kb: int = DEFAULT_MIN_DISK_SPACE_KB,
        usage: Optional[Callable[[str], Any]] = None,
    ):
        self.min_free_kb = min_free_kb
        self._usage = usage or shutil.disk_usage

    def free_kb(self, path: Path) -> Optional[int]:
        """Free KiB on the filesystem backing `path`, or None if it cannot be read."""
        try:
            return int(self._usage(str(_existing_ancestor(path))).free // 1024)
        except OSError as e:
            logger.error("Cannot read free space for %s: %s", path, e)
            return None

    def authorize(self, path: Path) -> GuardResult:
        available = self.free_kb(path)
        ok = available is not None and available >= self.min_free_kb
        if not ok:
            logger.critical(
                "Low disk space (%s KB available, need %d KB) at %s",
                available, self.min_free_kb, path,
            )
        return GuardResult(ok=ok, available_kb=available, required_kb=self.min_free_kb)
