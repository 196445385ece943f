# continuity/storage/jsonl.py
import os
from pathlib import Path
from typing import Iterator, Optional, Tuple

from continuity.core.exceptions import DurabilityError
from . import StorageBackend


class JsonlStorage(StorageBackend):
    """Append-only JSONL file with an fsync barrier on every append."""

    def __init__(self, path: Path):
        self.path = Path(path)
        self._closed = False

    def _check_open(self) -> None:
        if self._closed:
            raise RuntimeError("Storage is closed")

    def append_line(self, line: str) -> None:
        self._check_open()
        if "\n" in line:
            raise ValueError("A record must fit on a single line")
        data = (line + "\n").encode("utf-8")

        fd: Optional[int] = None
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd = os.open(str(self.path), os.O_WRONLY | os.O_CREAT | os.O_APPEND, 0o600)
            written = os.write(fd, data)
            if written != len(data):
                raise DurabilityError(f"Partial write to {self.path}: {written}/{len(data)} bytes")
            os.fsync(fd)
        except OSError as e:
            raise DurabilityError(f"Write to {self.path} failed: {e}") from e
        finally:
            if fd is not None:
                os.close(fd)

    def iter_lines(self) -> Iterator[Tuple[int, str]]:
        self._check_open()
        if not self.path.exists():
            return
        with open(self.path, "r", encoding="utf-8", errors="replace") as f:
            for number, line in enumerate(f, start=1):
                text = line.strip()
                if text:
                    yield number, text

    def count(self) -> int:
        return sum(1 for _ in self.iter_lines())

    def exists(self) -> bool:
        return self.path.exists()

    def has_records(self) -> bool:
        try:
            return self.path.stat().st_size > 0
        except FileNotFoundError:
            return False

    def close(self) -> None:
        self._closed = True

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
