# continuity/storage/__init__.py
"""
Storage backends for durable action streams.
"""

from abc import ABC, abstractmethod
from pathlib import Path
from typing import Iterator, Tuple


class StorageBackend(ABC):
    """Abstract base for append-only line stores."""

    @abstractmethod
    def append_line(self, line: str) -> None:
        """Append one record. Must not return before the data is durable."""

    @abstractmethod
    def iter_lines(self) -> Iterator[Tuple[int, str]]:
        """Yield (line_number, text) for every non-empty line, oldest first."""

    @abstractmethod
    def close(self) -> None:
        pass


def create_storage(uri: str) -> StorageBackend:
    if uri.startswith("jsonl:"):
        from .jsonl import JsonlStorage
        raw_path = uri[len("jsonl:"):]
        if raw_path.startswith("//"):
            raw_path = raw_path[2:]
        if not raw_path:
            raise ValueError(f"Missing path in storage URI: {uri}")
        return JsonlStorage(Path(raw_path).expanduser().resolve())

    elif "://" in uri:
        raise ValueError(f"Unsupported storage URI: {uri}")
    else:
        # Plain file path → JSONL
        from .jsonl import JsonlStorage
        return JsonlStorage(Path(uri).expanduser().resolve())


from .jsonl import JsonlStorage

__all__ = ["StorageBackend", "create_storage", "JsonlStorage"]
