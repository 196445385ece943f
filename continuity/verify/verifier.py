# continuity/verify/verifier.py
import copy
import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, List, Optional, Tuple

from continuity.chain.linker import link
from continuity.core.canon import parse_line
from continuity.core.types import GENESIS
from continuity.storage.jsonl import JsonlStorage


@dataclass
class VerificationFailure:
    index: int                          # 1-based line number in the stream
    message: str
    category: str = "general"           # invalid_json, missing_integrity, chain_broken, hash_mismatch, sequence


@dataclass
class VerificationResult:
    entries: int = 0
    failures: List[VerificationFailure] = field(default_factory=list)
    last_hash: str = GENESIS

    @property
    def is_valid(self) -> bool:
        return not self.failures

    @property
    def first_failure(self) -> Optional[VerificationFailure]:
        return self.failures[0] if self.failures else None

    def failures_at(self, index: int) -> List[VerificationFailure]:
        return [f for f in self.failures if f.index == index]

    def __bool__(self):
        return self.is_valid

    def __str__(self):
        if self.is_valid:
            return f"Integrity validation PASSED ({self.entries} entries verified)"
        lines = [f"Integrity validation FAILED ({len(self.failures)} errors in {self.entries} entries):"]
        for f in self.failures:
            lines.append(f"  • [line {f.index}] {f.category}: {f.message}")
        return "\n".join(lines)


class IntegrityValidator:
    """
    Offline replay of an action stream's hash chain.

    The running previous hash starts at "genesis" and moves to each record's
    stored hash, even after a failure, so one broken link is reported once
    instead of cascading through every later record.
    """

    def validate_lines(self, lines: Iterable[Tuple[int, str]]) -> VerificationResult:
        result = VerificationResult()
        previous = GENESIS
        last_sequence: Optional[int] = None

        for index, line in lines:
            result.entries += 1

            try:
                envelope = parse_line(line)
            except ValueError as e:
                reason = e.msg if isinstance(e, json.JSONDecodeError) else str(e)
                result.failures.append(VerificationFailure(index, f"Invalid JSON: {reason}", "invalid_json"))
                continue
            action = envelope.get("action") if isinstance(envelope, dict) else None
            if not isinstance(action, dict):
                result.failures.append(VerificationFailure(index, "No 'action' object", "invalid_json"))
                continue

            integrity = action.get("_integrity")
            stored_hash = integrity.get("hash") if isinstance(integrity, dict) else None
            stored_prev = integrity.get("previous") if isinstance(integrity, dict) else None
            if not isinstance(stored_hash, str) or not stored_hash:
                result.failures.append(VerificationFailure(index, "No integrity hash", "missing_integrity"))
                continue

            if stored_prev != previous:
                result.failures.append(VerificationFailure(
                    index, f"Chain broken! Expected prev: {previous}, got: {stored_prev}", "chain_broken"))

            content = copy.deepcopy(envelope)
            del content["action"]["_integrity"]
            try:
                expected = link(content, previous)
            except (TypeError, ValueError) as e:
                result.failures.append(VerificationFailure(index, f"Cannot canonicalize: {e}", "invalid_json"))
                expected = None
            if expected is not None and expected != stored_hash:
                result.failures.append(VerificationFailure(
                    index, f"Hash mismatch! Stored: {stored_hash}, Expected: {expected}", "hash_mismatch"))

            sequence = action.get("sequence")
            if isinstance(sequence, int) and not isinstance(sequence, bool):
                if last_sequence is not None and sequence <= last_sequence:
                    result.failures.append(VerificationFailure(
                        index, f"Sequence {sequence} does not follow {last_sequence}", "sequence"))
                last_sequence = sequence

            previous = stored_hash

        result.last_hash = previous
        return result

    def validate_file(self, path: Path) -> VerificationResult:
        with JsonlStorage(path) as storage:
            return self.validate_lines(storage.iter_lines())
