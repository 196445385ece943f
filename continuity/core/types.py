# continuity/core/types.py
import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Dict, Optional

from continuity.core.exceptions import MalformedRecordError

SCHEMA_VERSION = "0.1.0"
GENESIS = "genesis"                 # previous-hash sentinel for the first record


class Severity(str, Enum):
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


def utc_now_ms(now: Optional[datetime] = None) -> str:
    """RFC 3339 UTC timestamp with millisecond precision, e.g. 2026-02-13T12:00:00.123Z"""
    now = (now or datetime.now(timezone.utc)).astimezone(timezone.utc)
    return now.strftime("%Y-%m-%dT%H:%M:%S.") + f"{now.microsecond // 1000:03d}Z"


def coerce_cost(value: Any) -> Optional[float]:
    """
    Turn caller input into a nonnegative amount or None.
    Anything that is not clearly a finite, nonnegative number becomes None,
    never 0 and never a truncated prefix of the input.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, str):
        value = value.strip()
        if value.lower() in ("", "null", "none"):
            return None
    if isinstance(value, float) and not math.isfinite(value):
        return None
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, ValueError):
        return None
    if not amount.is_finite() or amount < 0:
        return None
    result = float(amount)
    if not math.isfinite(result):
        return None                 # e.g. 1e400 overflows a double
    return result


def coerce_severity(value: Any) -> Severity:
    """Unknown or missing severities are recorded as medium."""
    if isinstance(value, Severity):
        return value
    try:
        return Severity(str(value).strip().lower())
    except ValueError:
        return Severity.MEDIUM


@dataclass(frozen=True)
class Integrity:
    """Chain link: digest of this record + the digest it points back to."""
    hash: str
    previous: str


@dataclass(frozen=True)
class ActionRecord:
    """Single entry in the tamper-evident action stream."""
    id: str                         # UUIDv4
    sequence: int                   # 1..N, never reused
    timestamp: str                  # ISO 8601 UTC with millis
    type: str                       # e.g. "purchase", "commit", "message"
    platform: str
    description: str
    session_id: str
    severity: Severity = Severity.MEDIUM
    cost: Optional[float] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    proof: Optional[str] = None     # e.g. on-chain tx hash
    integrity: Optional[Integrity] = None
    schema_version: str = SCHEMA_VERSION

    def action_dict(self) -> dict:
        return {
            "id": self.id,
            "sequence": self.sequence,
            "timestamp": self.timestamp,
            "type": self.type,
            "severity": self.severity.value,
            "platform": self.platform,
            "description": self.description,
            "cost": self.cost,
            "metadata": self.metadata,
            "proof": self.proof,
            "session_id": self.session_id,
        }

    def content_envelope(self) -> dict:
        """The hashed part of the record: everything except _integrity."""
        return {"schema_version": self.schema_version, "action": self.action_dict()}

    def to_envelope(self) -> dict:
        """Full wire object, one of these per JSONL line."""
        envelope = self.content_envelope()
        if self.integrity is not None:
            envelope["action"]["_integrity"] = {
                "hash": self.integrity.hash,
                "previous": self.integrity.previous,
            }
        return envelope

    @classmethod
    def from_envelope(cls, data: Any) -> "ActionRecord":
        if not isinstance(data, dict) or not isinstance(data.get("action"), dict):
            raise MalformedRecordError("record has no 'action' object")
        action = data["action"]

        for key in ("id", "timestamp", "type", "platform", "description", "session_id"):
            if not isinstance(action.get(key), str):
                raise MalformedRecordError(f"field '{key}' missing or not a string")
        sequence = action.get("sequence")
        if not isinstance(sequence, int) or isinstance(sequence, bool):
            raise MalformedRecordError("field 'sequence' missing or not an integer")
        try:
            severity = Severity(action.get("severity", Severity.MEDIUM.value))
        except ValueError:
            raise MalformedRecordError(f"unknown severity {action.get('severity')!r}")
        metadata = action.get("metadata", {})
        if not isinstance(metadata, dict):
            raise MalformedRecordError("field 'metadata' must be an object")

        integrity = None
        raw_integrity = action.get("_integrity")
        if raw_integrity is not None:
            if not isinstance(raw_integrity, dict) or not isinstance(raw_integrity.get("hash"), str) \
                    or not isinstance(raw_integrity.get("previous"), str):
                raise MalformedRecordError("'_integrity' must hold string hash and previous")
            integrity = Integrity(hash=raw_integrity["hash"], previous=raw_integrity["previous"])

        proof = action.get("proof")
        if proof is not None and not isinstance(proof, str):
            raise MalformedRecordError("field 'proof' must be a string or null")

        cost = action.get("cost")
        return cls(
            id=action["id"],
            sequence=sequence,
            timestamp=action["timestamp"],
            type=action["type"],
            platform=action["platform"],
            description=action["description"],
            session_id=action["session_id"],
            severity=severity,
            cost=None if cost is None else coerce_cost(cost),
            metadata=metadata,
            proof=proof,
            integrity=integrity,
            schema_version=data.get("schema_version", SCHEMA_VERSION),
        )
