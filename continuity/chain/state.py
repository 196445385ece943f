# continuity/chain/state.py
import fcntl
import logging
import os
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

from continuity.core.exceptions import StateCorruptError, StateError, StatePersistError
from continuity.core.paths import LAST_HASH_FILENAME, LOCK_FILENAME, SEQUENCE_FILENAME
from continuity.core.types import GENESIS
from continuity.storage.atomic import atomic_write_text

logger = logging.getLogger(__name__)


class ChainState:
    """
    Sequence counter + last-hash pointer, persisted next to the action streams.

    Both files are shared by every writer of a base directory. `lock()` holds an
    exclusive flock on `.chain.lock` so that one append reads and advances them
    as a single step; writers that bypass the lock race each other.
    """

    def __init__(self, base_dir: Path):
        self.base_dir = Path(base_dir)
        self.sequence_file = self.base_dir / SEQUENCE_FILENAME
        self.last_hash_file = self.base_dir / LAST_HASH_FILENAME
        self.lock_file = self.base_dir / LOCK_FILENAME

    @contextmanager
    def lock(self) -> Iterator["ChainState"]:
        try:
            self.base_dir.mkdir(parents=True, exist_ok=True)
            fd = os.open(str(self.lock_file), os.O_RDWR | os.O_CREAT, 0o600)
        except OSError as e:
            raise StateError(f"Cannot open chain lock {self.lock_file}: {e}") from e
        try:
            try:
                fcntl.flock(fd, fcntl.LOCK_EX)
            except OSError as e:
                raise StateError(f"Cannot lock {self.lock_file}: {e}") from e
            try:
                yield self
            finally:
                fcntl.flock(fd, fcntl.LOCK_UN)
        finally:
            os.close(fd)

    def current_sequence(self) -> int:
        if not self.sequence_file.exists():
            return 0
        raw = self.sequence_file.read_text(encoding="utf-8").strip()
        if raw == "":
            return 0
        try:
            value = int(raw)
        except ValueError:
            raise StateCorruptError(f"Sequence file {self.sequence_file} holds {raw[:32]!r}")
        if value < 0:
            raise StateCorruptError(f"Sequence file {self.sequence_file} holds negative value {value}")
        return value

    def next_sequence(self) -> int:
        """Persist current+1 and return it. Never returns a number that is not on disk."""
        value = self.current_sequence() + 1
        try:
            atomic_write_text(self.sequence_file, f"{value}\n")
        except OSError as e:
            raise StatePersistError(f"Could not persist sequence {value}: {e}") from e
        return value

    def last_hash(self) -> str:
        if not self.last_hash_file.exists():
            return GENESIS
        value = self.last_hash_file.read_text(encoding="utf-8").strip()
        return value or GENESIS

    def advance(self, new_hash: str) -> None:
        try:
            atomic_write_text(self.last_hash_file, f"{new_hash}\n")
        except OSError as e:
            raise StatePersistError(f"Could not persist last hash: {e}") from e
        logger.debug("Last hash advanced to %s", new_hash[:16])

    def has_chain(self) -> bool:
        return self.last_hash_file.exists()
