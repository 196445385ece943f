# continuity/core/canon.py
import json
from typing import Any

import jcs


def canonical_json(obj: Any) -> bytes:
    """
    RFC 8785 (JCS) bytes of a record envelope.
    Key order and number formatting never depend on how the dict was built,
    so the writer and the validator always hash the same bytes.
    """
    return jcs.canonicalize(obj)


def chain_preimage(content: Any, previous: str) -> bytes:
    """Bytes fed to sha256 for one link: JCS(content) followed by the previous hash."""
    return canonical_json(content) + previous.encode("utf-8")


def compact_line(obj: Any) -> str:
    """One-line JSON for JSONL files. Not used for hashing."""
    return json.dumps(obj, separators=(",", ":"), ensure_ascii=False, allow_nan=False)


def _reject_constant(name: str) -> Any:
    raise ValueError(f"{name} is not a JSON number")


def parse_line(line: str) -> Any:
    """
    Parse one stream line. NaN and Infinity are refused: compact_line never
    writes them, so a line carrying one was not produced by the writer.
    """
    return json.loads(line, parse_constant=_reject_constant)
