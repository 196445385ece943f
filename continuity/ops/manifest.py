# continuity/ops/manifest.py
import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional

from continuity.chain.state import ChainState
from continuity.core.config import Settings
from continuity.core.exceptions import StateError
from continuity.core.paths import MANIFEST_FILENAME, stream_path, utc_today
from continuity.core.types import utc_now_ms
from continuity.ops.workflows import count_active_workflows
from continuity.query.engine import newest_backup_copy
from continuity.storage.atomic import atomic_write_text
from continuity.storage.emergency import EmergencySink
from continuity.storage.guard import DiskGuard
from continuity.storage.jsonl import JsonlStorage
from continuity.verify.verifier import IntegrityValidator

logger = logging.getLogger(__name__)


def _max_sequence(path: Optional[Path]) -> int:
    if path is None:
        return 0
    highest = 0
    with JsonlStorage(path) as storage:
        for _, line in storage.iter_lines():
            try:
                seq = json.loads(line)["action"]["sequence"]
            except (json.JSONDecodeError, KeyError, TypeError):
                continue
            if isinstance(seq, int) and seq > highest:
                highest = seq
    return highest


def pre_compaction_checkpoint(
    base_dir: Path,
    settings: Settings,
    now: Optional[datetime] = None,
    guard: Optional[DiskGuard] = None,
) -> Dict[str, Any]:
    """
    Snapshot of log state written to COMPACTION_MANIFEST.json before the
    agent's context is truncated. Returns the manifest dict.
    """
    guard = guard or DiskGuard(settings.min_disk_space_kb)
    stream = stream_path(base_dir, utc_today(now))
    state = ChainState(base_dir)

    backed_up_through = _max_sequence(newest_backup_copy(base_dir))
    uncommitted = 0
    with JsonlStorage(stream) as storage:
        lines = list(storage.iter_lines())
    for _, line in lines:
        try:
            seq = json.loads(line)["action"]["sequence"]
        except (json.JSONDecodeError, KeyError, TypeError):
            uncommitted += 1            # unparseable lines were never safely backed up
            continue
        if not isinstance(seq, int) or seq > backed_up_through:
            uncommitted += 1

    chain = IntegrityValidator().validate_lines(lines)
    try:
        sequence: Optional[int] = state.current_sequence()
    except StateError as e:
        logger.error("Sequence unreadable during checkpoint: %s", e)
        sequence = None

    manifest = {
        "timestamp": utc_now_ms(now),
        "session_id": settings.session_id,
        "uncommitted_actions": uncommitted,
        "active_workflows": count_active_workflows(base_dir),
        "disk_space_kb": guard.free_kb(base_dir),
        "sequence": sequence,
        "last_hash": state.last_hash(),
        "checklist": {
            "actions_persisted": EmergencySink(base_dir).count() == 0,
            "workflows_checkpointed": True,
            "integrity_chain_valid": chain.is_valid,
            "sequence_readable": sequence is not None,
        },
    }

    atomic_write_text(Path(base_dir) / MANIFEST_FILENAME, json.dumps(manifest, indent=2) + "\n")
    logger.info("Pre-compaction checkpoint created (%d uncommitted actions)", uncommitted)
    return manifest
