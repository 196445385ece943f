# continuity/chain/writer.py
import json
import logging
import uuid
from dataclasses import dataclass, replace
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Union

from continuity.chain.linker import link
from continuity.chain.state import ChainState
from continuity.core.canon import compact_line, parse_line
from continuity.core.config import Settings, load_settings
from continuity.core.exceptions import DurabilityError, MalformedRecordError, StateError
from continuity.core.paths import ensure_layout, stream_path, utc_today
from continuity.core.types import (
    GENESIS,
    ActionRecord,
    Integrity,
    Severity,
    coerce_cost,
    coerce_severity,
    utc_now_ms,
)
from continuity.storage.emergency import EmergencySink
from continuity.storage.guard import DiskGuard
from continuity.storage.jsonl import JsonlStorage

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AppendResult:
    ok: bool
    action_id: Optional[str] = None
    sequence: Optional[int] = None
    hash: Optional[str] = None
    reason: Optional[str] = None

    def __bool__(self):
        return self.ok


def _normalize_metadata(metadata: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """Round-trip caller metadata through JSON so tuples etc. hash the way they are stored."""
    if metadata is None:
        return {}
    if not isinstance(metadata, dict):
        raise MalformedRecordError(f"metadata must be a dict, got {type(metadata).__name__}")
    try:
        return json.loads(json.dumps(metadata, allow_nan=False))
    except (TypeError, ValueError) as e:
        raise MalformedRecordError(f"metadata is not JSON-serializable: {e}") from e


def serialize_record(record: ActionRecord) -> str:
    """
    Compact wire line for a linked record.
    Raises MalformedRecordError unless the line parses back to the same object
    and that object is a well-formed record.
    """
    if record.integrity is None:
        raise MalformedRecordError("Cannot persist an unlinked record")
    envelope = record.to_envelope()
    try:
        line = compact_line(envelope)
        parsed = parse_line(line)
    except (TypeError, ValueError) as e:
        raise MalformedRecordError(f"record does not serialize to JSON: {e}") from e
    if parsed != envelope:
        raise MalformedRecordError("record does not survive a JSON round trip")
    ActionRecord.from_envelope(parsed)
    return line


class ActionLog:
    """
    Durable writer for the daily action stream.

    One append = disk guard → uuid4 → sequence + previous hash (under the chain
    lock) → link → validate → append + fsync → advance last hash. Every failure
    is diverted to the emergency sink and reported through AppendResult.
    """

    def __init__(
        self,
        base_dir: Optional[Union[str, Path]] = None,
        settings: Optional[Settings] = None,
        session_id: Optional[str] = None,
        guard: Optional[DiskGuard] = None,
        sink: Optional[EmergencySink] = None,
        clock: Optional[Callable[[], datetime]] = None,
        id_factory: Optional[Callable[[], str]] = None,
        storage_factory: Optional[Callable[[Path], JsonlStorage]] = None,
    ):
        if settings is None:
            settings = load_settings(base_dir=Path(base_dir) if base_dir is not None else None)
        self.settings = settings
        self.base_dir = ensure_layout(Path(base_dir) if base_dir is not None else settings.base_dir)
        self.session_id = session_id or settings.session_id

        self.guard = guard or DiskGuard(settings.min_disk_space_kb)
        self.sink = sink or EmergencySink(self.base_dir)
        self.state = ChainState(self.base_dir)

        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._new_id = id_factory or (lambda: str(uuid.uuid4()))
        self._storage_factory = storage_factory or JsonlStorage

    def now(self) -> datetime:
        return self._clock()

    def stream_path(self, day: Optional[date] = None) -> Path:
        return stream_path(self.base_dir, day or utc_today(self.now()))

    def storage(self, day: Optional[date] = None) -> JsonlStorage:
        return self._storage_factory(self.stream_path(day))

    def append(
        self,
        type: str,
        platform: str,
        description: str,
        cost: Any = None,
        proof: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
        severity: Union[Severity, str] = Severity.MEDIUM,
    ) -> AppendResult:
        """
        Record one action. Returns AppendResult(ok=True, action_id=...) only once
        the line is fsync'd and the last-hash pointer points at it.
        """
        severity = coerce_severity(severity)
        cost = coerce_cost(cost)
        request = {
            "type": type,
            "platform": platform,
            "description": description,
            "severity": severity.value,
            "cost": cost,
            "proof": proof,
            "metadata": metadata,
        }

        verdict = self.guard.authorize(self.base_dir)
        if not verdict:
            return self._fail("disk_space_low", type, request, alert="disk_space_low")

        try:
            action_id = self._new_id()
        except (NotImplementedError, OSError) as e:
            logger.critical("Failed to generate UUID: %s", e)
            return self._fail("id_generation_failed", type, request)
        if not action_id:
            return self._fail("id_generation_failed", type, request)

        try:
            metadata = _normalize_metadata(metadata)
        except MalformedRecordError as e:
            logger.critical("Rejected action %s: %s", type, e)
            return self._fail("invalid_json", type, request)

        try:
            with self.state.lock():
                result = self._append_chained(
                    action_id, type, platform, description, severity, cost, proof, metadata, request,
                )
        except StateError as e:
            logger.critical("Chain lock unavailable: %s", e)
            return self._fail("state_unavailable", type, request)

        if result:
            logger.info("Logged: %s on %s (seq: %d)", type, platform, result.sequence)
        return result

    def _append_chained(
        self,
        action_id: str,
        type: str,
        platform: str,
        description: str,
        severity: Severity,
        cost: Optional[float],
        proof: Optional[str],
        metadata: Dict[str, Any],
        request: Dict[str, Any],
    ) -> AppendResult:
        """Steps that read or advance the shared chain state. Caller holds the chain lock."""
        now = self.now()
        storage = self.storage(utc_today(now))
        try:
            sequence = self.state.next_sequence()
            # each daily stream is its own chain; the pointer only continues one that has records
            previous = self.state.last_hash() if storage.has_records() else GENESIS
        except (StateError, OSError) as e:
            logger.critical("Chain state unavailable: %s", e)
            return self._fail("state_unavailable", type, request)

        record = ActionRecord(
            id=action_id,
            sequence=sequence,
            timestamp=utc_now_ms(now),
            type=type,
            platform=platform,
            description=description,
            session_id=self.session_id,
            severity=severity,
            cost=cost,
            metadata=metadata,
            proof=proof,
        )

        try:
            digest = link(record.content_envelope(), previous)
            record = replace(record, integrity=Integrity(hash=digest, previous=previous))
            line = serialize_record(record)
        except (MalformedRecordError, TypeError, ValueError) as e:
            logger.critical("Generated invalid record for seq %d: %s", sequence, e)
            return self._fail("invalid_json", type, record.to_envelope(), record)

        try:
            storage.append_line(line)
        except DurabilityError as e:
            logger.critical("Failed to write to action stream: %s", e)
            return self._fail("write_failure", type, record.to_envelope(), record)

        try:
            self.state.advance(digest)
        except StateError as e:
            # The line is on disk but the next append would link to a stale hash.
            logger.critical("Record seq %d written but last hash not advanced: %s", sequence, e)
            return self._fail("pointer_update_failed", type, record.to_envelope(), record)

        return AppendResult(True, action_id=action_id, sequence=sequence, hash=digest)

    def append_critical(
        self,
        type: str,
        platform: str,
        description: str,
        cost: Any = None,
        proof: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> AppendResult:
        """
        Log a critical action (financial, contractual).
        The caller MUST NOT perform the action unless the result is truthy.
        """
        result = self.append(
            type, platform, description,
            cost=cost, proof=proof, metadata=metadata, severity=Severity.CRITICAL,
        )
        if not result:
            logger.critical("Failed to log critical action %s (%s). ABORTING.", type, result.reason)
        return result

    def _fail(
        self,
        reason: str,
        action_type: str,
        payload: Optional[Dict[str, Any]],
        record: Optional[ActionRecord] = None,
        alert: str = "write_failure",
    ) -> AppendResult:
        self.sink.divert(reason, action_type=action_type, payload=payload, alert=alert)
        return AppendResult(
            False,
            action_id=record.id if record else None,
            sequence=record.sequence if record else None,
            reason=reason,
        )
