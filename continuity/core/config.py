# continuity/core/config.py
"""
Environment-driven settings.

Every value has a default; a value that is present but unusable is replaced by
the default and a warning is logged, so a typo in a cron environment never
disables logging altogether.
"""

import logging
import os
import socket
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional

logger = logging.getLogger(__name__)

DEFAULT_MIN_DISK_SPACE_KB = 10240   # 10 MiB
DEFAULT_MAX_HOURLY_BACKUPS = 24
DEFAULT_MAX_DAILY_BACKUPS = 30
DEFAULT_RECALL_LIMIT = 20

RECALL_MODES = ("off", "primary", "secondary", "both")
VERBOSITY_LEVELS = ("off", "judgment", "everything")

# long spellings accepted for the same values
CHOICE_ALIASES = {
    "primary-only": "primary",
    "secondary-only": "secondary",
    "judgment-only": "judgment",
}

VERBOSITY_TO_LOG_LEVEL = {
    "off": logging.CRITICAL,
    "judgment": logging.WARNING,
    "everything": logging.DEBUG,
}


def default_base_dir() -> Path:
    return Path.home() / ".continuity"


def default_session_id() -> str:
    return f"{socket.gethostname()}-{os.getpid()}-{int(time.time())}"


@dataclass(frozen=True)
class Settings:
    base_dir: Path
    session_id: str
    min_disk_space_kb: int = DEFAULT_MIN_DISK_SPACE_KB
    max_hourly_backups: int = DEFAULT_MAX_HOURLY_BACKUPS
    max_daily_backups: int = DEFAULT_MAX_DAILY_BACKUPS
    recall_mode: str = "both"
    log_verbosity: str = "judgment"
    recall_limit: int = DEFAULT_RECALL_LIMIT

    @property
    def log_level(self) -> int:
        return VERBOSITY_TO_LOG_LEVEL[self.log_verbosity]


def _positive_int(env: Mapping[str, str], key: str, default: int) -> int:
    raw = env.get(key)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = int(raw.strip())
    except ValueError:
        logger.warning("%s=%r is not an integer, using default %d", key, raw, default)
        return default
    if value <= 0:
        logger.warning("%s=%r must be positive, using default %d", key, raw, default)
        return default
    return value


def _choice(env: Mapping[str, str], key: str, choices: tuple, default: str) -> str:
    raw = env.get(key)
    if raw is None or raw.strip() == "":
        return default
    value = raw.strip().lower()
    value = CHOICE_ALIASES.get(value, value)
    if value not in choices:
        logger.warning("%s=%r is not one of %s, using default %r", key, raw, "/".join(choices), default)
        return default
    return value


def load_settings(
    env: Optional[Mapping[str, str]] = None,
    base_dir: Optional[Path] = None,
) -> Settings:
    """Resolve settings in this order:
    1. explicit base_dir argument (e.g. the --base-dir flag)
    2. CONTINUITY_* environment variables
    3. Defaults (~/.continuity, 10 MiB guard, 24 hourly / 30 daily backups)
    """
    if env is None:
        env = os.environ

    if base_dir is None:
        raw_dir = env.get("CONTINUITY_BASE_DIR", "").strip()
        base_dir = Path(raw_dir).expanduser() if raw_dir else default_base_dir()

    session_id = env.get("CONTINUITY_SESSION_ID", "").strip() or default_session_id()

    return Settings(
        base_dir=Path(base_dir).resolve(),
        session_id=session_id,
        min_disk_space_kb=_positive_int(env, "CONTINUITY_MIN_DISK_SPACE_KB", DEFAULT_MIN_DISK_SPACE_KB),
        max_hourly_backups=_positive_int(env, "CONTINUITY_MAX_HOURLY_BACKUPS", DEFAULT_MAX_HOURLY_BACKUPS),
        max_daily_backups=_positive_int(env, "CONTINUITY_MAX_DAILY_BACKUPS", DEFAULT_MAX_DAILY_BACKUPS),
        recall_mode=_choice(env, "CONTINUITY_RECALL_MODE", RECALL_MODES, "both"),
        log_verbosity=_choice(env, "CONTINUITY_LOG_VERBOSITY", VERBOSITY_LEVELS, "judgment"),
        recall_limit=_positive_int(env, "CONTINUITY_RECALL_LIMIT", DEFAULT_RECALL_LIMIT),
    )
